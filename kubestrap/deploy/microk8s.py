"""
Install and look after the single node MicroK8s cluster
"""
import os
import sys
import time

from kubestrap import MICROK8S_GROUP, ARC_CONTROLLER_LABEL
from kubestrap.deploy.helm import Helm
from kubestrap.deploy.k8s import K8S
from kubestrap.util import shell
from kubestrap.util.hue import bold
from kubestrap.util.logger import Logger
from kubestrap.util.util import add_alias, retry

LOGGER = Logger(__name__)

KUBECTL_ALIAS = "alias kubectl='microk8s kubectl'"
HELM_ALIAS = "alias helm='microk8s helm3'"


def route53_secret_command(config):
    """The command which creates the AWS secret cert-manager needs"""
    issuer = config['issuer']
    return (f"kubectl -n {config['cert-manager']['namespace']} create secret "
            f"generic {issuer['secret-name']} \\\n"
            f"  --from-literal={issuer['secret-key-name']}="
            "'YOUR_AWS_SECRET_ACCESS_KEY'")


class MicroK8s:
    """Install MicroK8s with its addons and cert-manager.

    Args:
        config (dict): the kubestrap configuration.
        runner (callable): executes commands.
        k8s (K8S): an API client, created on first use when not given.
        helm (Helm): the helm wrapper, built from the configuration when
            not given.
        reexec (callable): replaces the process to pick up a new group.
        home (str): the home directory of the user.
    """

    def __init__(self, config, runner=shell.run, k8s=None, helm=None,  # pylint: disable=too-many-arguments
                 reexec=shell.reexec_with_group, home=None, sleep=time.sleep):
        self.config = config
        self.run = runner
        self._k8s = k8s
        self.helm = helm or Helm(config['helm'], runner=runner)
        self.reexec = reexec
        self.home = home or os.path.expanduser("~")
        self.sleep = sleep

    @property
    def k8s(self):
        """The API client, loaded from the kubeconfig"""
        if self._k8s is None:
            self._k8s = K8S(kubeconfig=self.config['kubeconfig'] or
                            os.path.join(self.home, ".kube", "config"))
        return self._k8s

    @property
    def kube_dir(self):
        return os.path.join(self.home, ".kube")

    def install_snap(self):
        """snap install is idempotent"""
        LOGGER.info("Installing microk8s snap...")
        self.run("snap install microk8s --classic", sudo=True)

    def ensure_group(self, user, argv=None):
        """Add user to the microk8s group and continue with its rights.

        If the user was added, the running command is re-executed under
        ``sg microk8s``, so this does not return in that case.
        """
        if shell.in_group(user, MICROK8S_GROUP):
            LOGGER.info("User '%s' is an active member of the '%s' group.",
                        user, MICROK8S_GROUP)
            return

        LOGGER.info("Adding user '%s' to the '%s' group...", user,
                    MICROK8S_GROUP)
        self.run(["usermod", "-aG", MICROK8S_GROUP, user], sudo=True)
        self.reexec(MICROK8S_GROUP, argv or sys.argv)

    @retry(shell.CommandError, tries=4, delay=3, logger=LOGGER.warning)
    def cluster_config(self):
        """The kubeconfig of the cluster, the API may still be starting"""
        return self.run("microk8s config").stdout

    def ensure_kubeconfig(self, user):
        """Create ~/.kube and write the cluster's config into it.

        An existing config file is never overwritten.
        """
        LOGGER.info("Ensuring ~/.kube directory exists and has correct "
                    "ownership...")
        os.makedirs(self.kube_dir, exist_ok=True)
        self.run(["chown", "-f", "-R", user, self.kube_dir], sudo=True,
                 check=False)

        path = os.path.join(self.kube_dir, "config")
        if os.path.exists(path):
            LOGGER.debug("%s already exists", path)
            return False

        content = self.cluster_config()
        with open(os.open(path, os.O_WRONLY | os.O_CREAT, 0o600), "w") as fh:
            fh.write(content)
        LOGGER.info("Wrote kubeconfig to %s", path)
        return True

    def ensure_aliases(self):
        aliases = self.config['microk8s']['aliases-file']
        if aliases.startswith("~"):
            aliases = self.home + aliases[1:]
        for line in (KUBECTL_ALIAS, HELM_ALIAS):
            if add_alias(line, aliases):
                LOGGER.info("Adding alias to %s: %s", aliases, line)
            else:
                LOGGER.info("Alias already exists in %s: %s", aliases, line)

    def enable_addons(self):
        LOGGER.info("Waiting for MicroK8s to be ready...")
        self.run("microk8s status --wait-ready")
        addons = self.config['microk8s']['addons']
        LOGGER.info("Enabling MicroK8s addons: %s...", ", ".join(addons))
        for addon in addons:
            self.run(["microk8s", "enable", addon])

    def install_cert_manager(self):
        """Install or upgrade cert-manager with its CRDs"""
        cm = self.config['cert-manager']
        LOGGER.info("Verifying Helm installation: %s", self.helm.version())
        self.helm.ensure_repo(cm['repo-alias'], cm['repo-url'])
        self.helm.repo_update()
        LOGGER.info("Installing/Upgrading cert-manager...")
        self.helm.upgrade_install(cm['release'], cm['chart'], cm['namespace'],
                                  sets={"crds.enabled": "true"})
        self.k8s.wait_for_pods_ready(cm['namespace'],
                                     self.config['microk8s']['timeout'])

    def init(self, user=None, argv=None):
        """Run all installation steps.

        The steps are safe to repeat on an installed cluster.
        """
        user = user or shell.current_user()

        LOGGER.header("Installing and Configuring MicroK8s")
        self.install_snap()
        self.ensure_group(user, argv)
        self.ensure_kubeconfig(user)
        self.ensure_aliases()
        self.enable_addons()

        LOGGER.info("Waiting for addon components to become ready...")
        for namespace in self.config['microk8s']['wait-namespaces']:
            self.k8s.wait_for_pods_ready(namespace,
                                         self.config['microk8s']['timeout'])

        LOGGER.header("Installing and Configuring cert-manager")
        self.install_cert_manager()

        LOGGER.header("INITIALIZATION COMPLETED")
        LOGGER.info("All automated steps are finished. Please complete the "
                    "following manual steps:")
        LOGGER.info("1. For the 'kubectl' and 'helm' aliases to work, open a "
                    "new terminal or run: source ~/.bash_aliases")
        LOGGER.info("2. Create the AWS credentials secret for cert-manager, "
                    "replace 'YOUR_AWS_SECRET_ACCESS_KEY' with your key:")
        LOGGER.info("\n%s\n", bold(route53_secret_command(self.config)))

    def restart(self):
        """Stop and start MicroK8s, then show what the ARC pods do"""
        LOGGER.info("Restarting microk8s...")
        self.run("microk8s stop", sudo=True)
        self.run("microk8s start", sudo=True)
        wait = self.config['microk8s']['restart-wait']
        LOGGER.info("Waiting %s seconds for the cluster to settle...", wait)
        self.sleep(wait)

        namespace = self.config['arc']['namespace']
        kubectl = shell.split(self.config['kubectl'])
        for pod in self.k8s.list_pods(namespace):
            name = pod.metadata.name
            LOGGER.info("Pod %s is %s", name, pod.status.phase)
            LOGGER.info("Logs of pod %s:\n%s", name,
                        self.k8s.pod_logs(name, namespace, tail_lines=100))
            proc = self.run(kubectl + ["describe", "pod", name, "-n", namespace],
                            check=False)
            LOGGER.info("Description of pod %s:\n%s", name, proc.stdout)

    def fix_networking(self):
        """Re-initialize calico and restart the ARC controller.

        This briefly interrupts cluster networking.
        """
        LOGGER.warning("Attempting to fix MicroK8s internal networking...")
        LOGGER.info("Disabling Calico...")
        self.run("microk8s disable calico", sudo=True)
        self.sleep(10)
        LOGGER.info("Re-enabling Calico...")
        self.run("microk8s enable calico", sudo=True)
        self.sleep(10)
        LOGGER.info("Re-enabling DNS...")
        self.run("microk8s enable dns", sudo=True)

        self.sleep(15)
        self.k8s.wait_for_deployment("kube-system", "coredns", timeout=300)

        arc = self.config['arc']
        LOGGER.info("Restarting the ARC controller pod...")
        self.k8s.delete_pods(arc['namespace'], ARC_CONTROLLER_LABEL)
        self.k8s.wait_for_deployment(arc['namespace'], arc['release'],
                                     timeout=arc['timeout'])
        LOGGER.success("Network fix applied")
