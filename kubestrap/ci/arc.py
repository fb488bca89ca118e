"""
arc.py
======

Set up the GitHub Actions Runner Controller (ARC) and a RunnerDeployment
for one repository.

The steps of :class:`ArcSetup` are:

1. create the namespace and the secrets the controller needs
2. install the controller with Helm and make sure its webhook answers
3. deploy the runners
4. optionally set the GitHub repository secrets and write a sample workflow

:meth:`ArcSetup.cleanup` removes everything again.
"""
import os
import shutil
import time

import requests
import urllib3
import yaml

from kubestrap import (GHCR_PULL_SECRET, HARBOR_PULL_SECRET,
                       ARC_CONTROLLER_LABEL, ARC_WEBHOOK_PORT)
from kubestrap.ci import github
from kubestrap.config import ConfigError, require, truthy
from kubestrap.deploy.k8s import docker_registry_secret
from kubestrap.ssl import read_key
from kubestrap.util import shell
from kubestrap.util.hue import bold
from kubestrap.util.logger import Logger
from kubestrap.util.net import healthz_url
from kubestrap.util.util import strip_quotes, wait_for

LOGGER = Logger(__name__)

RUNNER_GROUP = "actions.summerwind.dev"
RUNNER_VERSION = "v1alpha1"
RUNNER_PLURAL = "runnerdeployments"

GHCR_SERVER = "https://ghcr.io"
TESTER_IMAGE = "busybox:1.36"


def runner_deployment_manifest(config):
    """The RunnerDeployment for the configured repository"""
    runner = config['arc']['runner']
    return {
        "apiVersion": f"{RUNNER_GROUP}/{RUNNER_VERSION}",
        "kind": "RunnerDeployment",
        "metadata": {
            "name": runner['name'],
            "namespace": runner['namespace'],
        },
        "spec": {
            "replicas": int(runner['replicas']),
            "template": {
                "spec": {
                    "repository": config['arc']['repository'],
                },
            },
        },
    }


def workflow_document(config):
    """A sample workflow which builds an image, pushes it to Harbor and
    deploys it from the self-hosted runner"""
    wf = config['arc']['workflow']
    runner = config['arc']['runner']
    image = (f"${{{{ secrets.HARBOR_URL }}}}/{wf['harbor-project']}/"
             f"{wf['image']}")
    return {
        "name": "Build and Deploy",
        "on": {
            "push": {"branches": ["main"]},
            "workflow_dispatch": {},
        },
        "env": {
            "IMAGE": image,
            "RUNNER_NAMESPACE": runner['namespace'],
            "RUNNER_DEPLOYMENT_NAME": runner['name'],
        },
        "jobs": {
            "build-and-deploy": {
                "runs-on": ["self-hosted"],
                "steps": [
                    {"name": "Checkout",
                     "uses": "actions/checkout@v4"},
                    {"name": "Log in to Harbor",
                     "uses": "docker/login-action@v3",
                     "with": {
                         "registry": "${{ secrets.HARBOR_URL }}",
                         "username": "${{ secrets.HARBOR_USERNAME }}",
                         "password": "${{ secrets.HARBOR_PASSWORD }}",
                     }},
                    {"name": "Build and push image",
                     "run": ("docker build -t \"$IMAGE:${{ github.sha }}\" .\n"
                             "docker push \"$IMAGE:${{ github.sha }}\"\n")},
                    {"name": "Write kubeconfig",
                     "run": ("mkdir -p \"$HOME/.kube\"\n"
                             "echo \"${{ secrets.KUBE_CONFIG }}\" > "
                             "\"$HOME/.kube/config\"\n")},
                    {"name": "Deploy",
                     "run": (f"sed -i \"s|image: .*|image: $IMAGE:"
                             f"${{{{ github.sha }}}}|\" {wf['manifest-path']}\n"
                             f"kubectl apply -f {wf['manifest-path']}\n")},
                ],
            },
        },
    }


def render_workflow(config):
    return yaml.safe_dump(workflow_document(config), sort_keys=False,
                          default_flow_style=False)


def tester_pod_manifest(name, namespace):
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "containers": [{
                "name": "tester",
                "image": TESTER_IMAGE,
                "command": ["/bin/sh", "-c", "sleep 3600"],
            }],
            "restartPolicy": "Never",
        },
    }


def app_guide(config, prompt, out=print):
    """Walk through creating the GitHub App in the web UI.

    Asks for the App ID, the webhook secret and the private key file and
    prints the command which creates the controller secret.

    Returns:
        the command as string.
    """
    require(config, 'arc.repository', 'arc.namespace',
            'arc.controller-secret', 'arc.redirect-url', 'kubectl')
    arc = config['arc']

    out(bold(f"--- GitHub App Creation via UI for Repository: "
             f"{arc['repository']} ---"))
    for num, step in enumerate(
            github.app_instructions(arc['repository'], arc['redirect-url']),
            start=1):
        out(f"{num:>2}. {step}")
    out("")

    app_id = prompt.required("Enter the App ID")
    webhook_secret = prompt.required("Enter the Webhook Secret", secret=True)

    key_path = prompt.value("Enter the full path to the downloaded private "
                            "key .pem file")
    while True:
        if not key_path:
            question = "Private key file path cannot be empty. Please enter the path"
        elif os.path.isdir(key_path):
            question = (f"Path '{key_path}' is a directory, not a file. "
                        "Please enter a valid file path")
        elif not os.path.isfile(key_path):
            question = f"File not found at '{key_path}'. Please enter a valid path"
        elif not os.access(key_path, os.R_OK):
            question = (f"File at '{key_path}' is not readable. Please check "
                        "permissions and enter a valid path")
        else:
            LOGGER.success("Private key file found and readable: %s", key_path)
            break
        key_path = prompt.value(question)

    cmd = github.controller_secret_command(
        config['kubectl'], arc['controller-secret'], arc['namespace'],
        app_id, webhook_secret, key_path)
    out("")
    out("Run the command below to create the Kubernetes secret for ARC:")
    out("-" * 80)
    out(cmd)
    out("-" * 80)
    out("After creating the secret, remember to update the Webhook URL in "
        "your GitHub App settings once ARC is deployed and reachable.")
    return cmd


class ArcSetup:  # pylint: disable=too-many-instance-attributes
    """Install ARC and deploy the runners.

    Args:
        config (dict): the kubestrap configuration.
        k8s (K8S): the API client.
        helm (Helm): the helm wrapper.
        runner (callable): executes commands.
        prompt (Prompt): asks for missing values.
        microk8s (MicroK8s): used to repair the cluster network.
        session (requests.Session): for the GitHub API and health checks.
    """

    def __init__(self, config, k8s, helm, runner, prompt,  # pylint: disable=too-many-arguments
                 microk8s=None, session=None, sleep=time.sleep):
        self.config = config
        self.arc = config['arc']
        self.k8s = k8s
        self.helm = helm
        self.run = runner
        self.prompt = prompt
        self.microk8s = microk8s
        self.session = session or requests.Session()
        self.sleep = sleep

    @property
    def namespace(self):
        return self.arc['namespace']

    @property
    def runner_namespace(self):
        return self.arc['runner']['namespace']

    @property
    def webhook_service(self):
        return f"{self.arc['release']}-webhook"

    @property
    def serving_cert(self):
        return f"{self.arc['release']}-serving-cert"

    def setup(self):
        """Run all steps"""
        require(self.config, 'arc.repository', 'arc.namespace',
                'arc.release', 'arc.repo-name', 'arc.repo-url',
                'arc.controller-secret', 'arc.runner.name')
        shell.check_deps(self.config['kubectl'], self.config['helm'])

        self.setup_prerequisites()
        self.install_arc()
        self.deploy_runner()
        self.configure_github_extras()

        LOGGER.success("All setup steps completed successfully!")
        LOGGER.info("Your self-hosted runners should be starting up in the "
                    "'%s' namespace.", self.runner_namespace)

    # Step 1

    def create_controller_secret(self):
        secret = self.arc['controller-secret']
        if self.k8s.secret_exists(secret, self.namespace):
            LOGGER.warning("Secret '%s' already exists. Skipping creation.",
                           secret)
            return False

        LOGGER.info("The ARC Controller requires a secret with your GitHub App "
                    "credentials.")
        app = self.arc['github-app']
        app_id = app['id'] or self.prompt.value("Enter your GitHub App ID")
        install_id = (app['installation-id'] or
                      self.prompt.value("Enter your GitHub App Installation ID"))
        key_path = (app['private-key-path'] or
                    self.prompt.value("Enter the path to your GitHub App "
                                      "private key PEM file"))

        if not (app_id and install_id and key_path):
            raise ConfigError("GitHub App credentials cannot be empty.")
        if not os.path.isfile(key_path):
            raise ConfigError(f"Private key file not found at '{key_path}'")

        try:
            key = read_key(key_path)
        except ValueError as exc:
            raise ConfigError(str(exc))

        self.k8s.create_secret(secret, self.namespace, {
            "github_app_id": strip_quotes(app_id),
            "github_app_installation_id": strip_quotes(install_id),
            "github_app_private_key": key.decode(),
        })
        return True

    def github_credentials(self):
        """Ask until we have a PAT with the read:packages scope.

        A token from the configuration is not asked for again, if it is
        not good enough that is an error.
        """
        configured = self.arc['github-token']
        user = self.arc['github-user']
        token = configured
        while True:
            if not user:
                user = self.prompt.value("Enter your GitHub Username")
            if not token:
                LOGGER.info("The PAT requires the 'read:packages' scope.")
                token = self.prompt.value("Enter your GitHub PAT", secret=True)
            if not user or not token:
                raise ConfigError("GitHub credentials for Image Pull Secret "
                                  "cannot be empty.")

            if github.verify_pat_scopes(token, session=self.session):
                return user, token

            if configured:
                raise ConfigError("The pre-configured GitHub token is invalid "
                                  "or missing the 'read:packages' scope.")
            token = ""
            LOGGER.warning("Please try again.")

    def create_ghcr_secret(self):
        if self.k8s.secret_exists(GHCR_PULL_SECRET, self.namespace):
            LOGGER.warning("Image pull secret '%s' already exists. Skipping "
                           "creation.", GHCR_PULL_SECRET)
            return False

        LOGGER.info("To avoid ghcr.io rate limits, a Kubernetes secret with a "
                    "GitHub Personal Access Token (PAT) is created.")
        user, token = self.github_credentials()
        self.k8s.apply_secret(docker_registry_secret(
            GHCR_PULL_SECRET, self.namespace, GHCR_SERVER, user, token))
        return True

    def create_harbor_secret(self):
        """Create the secret to pull application images from Harbor.

        Returns:
            None if the user declined, else whether the secret was created.
        """
        if self.k8s.secret_exists(HARBOR_PULL_SECRET, self.runner_namespace):
            LOGGER.warning("Secret '%s' already exists in '%s'. Skipping "
                           "creation.", HARBOR_PULL_SECRET,
                           self.runner_namespace)
            return False

        LOGGER.info("To allow Kubernetes to pull images from your private "
                    "Harbor registry, a secret with Harbor credentials is "
                    "required.")
        harbor = self.arc['harbor']
        url = self.prompt.required("Enter your Harbor registry URL (e.g., "
                                   "harbor.your-domain.com)", harbor['url'])
        username = self.prompt.required(
            "Enter the Harbor Robot Account Name for Kubernetes image pull "
            "(e.g., 'robot$my-app-github-actions-builder')",
            harbor['username'])
        password = self.prompt.required(
            "Enter Harbor password/robot secret (will not be echoed)",
            harbor['password'], secret=True)

        LOGGER.info("You have provided the following credentials for the "
                    "'%s' secret:", HARBOR_PULL_SECRET)
        LOGGER.info("  - Harbor URL:      %s", url)
        LOGGER.info("  - Harbor Username: %s", username)
        LOGGER.info("  - Harbor Password: [hidden]")
        if not self.prompt.confirm("Proceed with creating the secret in "
                                   f"namespace '{self.runner_namespace}'?",
                                   default=True):
            LOGGER.warning("Secret creation cancelled by user. Application "
                           "deployments from Harbor may fail.")
            return None

        self.k8s.apply_secret(docker_registry_secret(
            HARBOR_PULL_SECRET, self.runner_namespace, url, username,
            password))
        return True

    def wait_for_service_account(self, namespace, timeout=60):
        LOGGER.info("Waiting for the default service account in '%s'...",
                    namespace)
        wait_for(lambda: self.k8s.service_account_exists("default", namespace),
                 timeout=timeout, interval=2,
                 what=f"the default service account in namespace '{namespace}'")

    def setup_prerequisites(self):
        """Create the namespace and secrets and patch the service accounts"""
        LOGGER.header("Step 1: Setting up Namespace and Secrets")
        self.k8s.ensure_namespace(self.namespace)
        self.k8s.ensure_namespace(self.runner_namespace)

        self.create_controller_secret()
        self.create_ghcr_secret()
        if self.create_harbor_secret() is None:
            return

        self.wait_for_service_account(self.namespace)
        self.wait_for_service_account(self.runner_namespace)

        self.k8s.add_image_pull_secret(HARBOR_PULL_SECRET,
                                       self.runner_namespace)
        self.k8s.add_image_pull_secret(GHCR_PULL_SECRET, self.namespace)

        if self.namespace != self.runner_namespace:
            LOGGER.info("Copying image pull secret '%s' to '%s'...",
                        GHCR_PULL_SECRET, self.runner_namespace)
            self.k8s.copy_secret(GHCR_PULL_SECRET, self.namespace,
                                 self.runner_namespace)
            self.k8s.add_image_pull_secret(GHCR_PULL_SECRET,
                                           self.runner_namespace)

        LOGGER.success("Prerequisites configured successfully.")

    # Step 2

    def install_arc(self):
        """Install the controller, an existing release is left alone.

        Returns:
            True if ARC was installed.
        """
        LOGGER.header("Step 2: Installing Actions Runner Controller")
        release = self.arc['release']
        if self.helm.release_exists(release, self.namespace):
            LOGGER.warning("Helm release '%s' already exists. Skipping "
                           "installation.", release)
            LOGGER.info("To recover from a failed state, run 'kubestrap "
                        "cleanup' first.")
            return False

        self.helm.repo_add(self.arc['repo-name'], self.arc['repo-url'],
                           force_update=True)
        self.helm.repo_update()
        LOGGER.info("Installing ARC Helm chart into namespace '%s'...",
                    self.namespace)
        self.helm.install(release, self.arc['chart'], self.namespace,
                          sets={
                              "image.imagePullSecrets[0].name":
                                  GHCR_PULL_SECRET,
                              "authSecret.name": self.arc['controller-secret'],
                          },
                          create_namespace=False)

        self.k8s.wait_for_deployment(self.namespace, release,
                                     timeout=self.arc['timeout'])
        LOGGER.success("Actions Runner Controller installed successfully.")
        self.ensure_webhook_healthy()
        return True

    def webhook_answers(self, pod, url):
        return self.k8s.exec_in_pod(
            pod, self.namespace,
            ["wget", "-q", "--spider", "--timeout=5",
             "--no-check-certificate", url])

    def ensure_webhook_healthy(self, timeout=180, interval=10):
        """Check the webhook service from inside the cluster.

        If it doesn't answer, offer to repair the cluster network and check
        again.

        Raises:
            TimeoutError if the webhook stays down and no repair is done.
        """
        LOGGER.info("Starting ARC webhook health check...")
        url = (f"https://{self.webhook_service}.{self.namespace}.svc:443"
               "/healthz")
        pod = f"webhook-tester-{int(time.time())}"

        LOGGER.info("Creating a temporary pod '%s' to test webhook "
                    "connectivity...", pod)
        self.k8s.create_pod(tester_pod_manifest(pod, self.namespace))
        healthy = False
        try:
            wait_for(lambda: self.k8s.pod_ready(pod, self.namespace),
                     timeout=120, interval=2, what=f"tester pod '{pod}'")
            LOGGER.info("Performing health check against: %s", url)
            wait_for(lambda: self.webhook_answers(pod, url), timeout=timeout,
                     interval=interval, what="the ARC webhook",
                     logger=LOGGER.warning)
            healthy = True
            LOGGER.success("ARC webhook is healthy and responsive.")
        except TimeoutError as exc:
            LOGGER.error("%s", exc)
        finally:
            LOGGER.info("Cleaning up tester pod...")
            self.k8s.delete_pod(pod, self.namespace)

        if healthy:
            return True

        LOGGER.error("ARC webhook did not become healthy within the timeout.")
        if self.microk8s and self.prompt.confirm(
                "Do you want to attempt an automated fix by re-initializing "
                "MicroK8s networking?"):
            self.microk8s.fix_networking()
            return self.ensure_webhook_healthy(timeout, interval)

        raise TimeoutError("ARC webhook is not healthy and the automated fix "
                           "was declined")

    # Step 3

    def webhook_listening(self):
        """True if the controller pod answers on its webhook port"""
        ip = self.k8s.pod_ip(self.namespace, ARC_CONTROLLER_LABEL)
        if not ip:
            return False
        try:
            url = healthz_url(ip, ARC_WEBHOOK_PORT)
        except ValueError as exc:
            LOGGER.warning("%s", exc)
            return False

        # the serving certificate is self-signed, any answer is fine
        try:
            self.session.get(url, verify=False, timeout=5)
        except requests.RequestException:
            return False
        return True

    def deploy_runner(self):
        """Wait until the webhook works, then apply the RunnerDeployment"""
        LOGGER.header("Step 3: Deploying the RunnerDeployment")

        LOGGER.info("Waiting for ARC webhook's TLS certificate to be issued "
                    "by cert-manager...")
        wait_for(lambda: self.k8s.certificate_ready(self.serving_cert,
                                                    self.namespace),
                 timeout=300, interval=5,
                 what=f"certificate '{self.serving_cert}'",
                 logger=LOGGER.info)
        LOGGER.info("Webhook certificate is ready.")

        LOGGER.info("Waiting for ARC webhook service to have active "
                    "endpoints...")
        wait_for(lambda: self.k8s.endpoints_ready(self.webhook_service,
                                                  self.namespace),
                 timeout=120, interval=5, what="the ARC webhook endpoints",
                 logger=LOGGER.info)

        LOGGER.info("Performing active readiness check on ARC webhook "
                    "endpoint...")
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        wait_for(self.webhook_listening, timeout=120, interval=5,
                 what="the ARC webhook endpoint", logger=LOGGER.info)
        LOGGER.success("ARC webhook endpoint is actively listening.")

        self.k8s.ensure_namespace(self.runner_namespace)
        manifest = runner_deployment_manifest(self.config)
        self.k8s.apply_custom_object(RUNNER_GROUP, RUNNER_VERSION,
                                     RUNNER_PLURAL, manifest)
        LOGGER.success("RunnerDeployment '%s' applied successfully.",
                       manifest['metadata']['name'])
        LOGGER.info("ARC will now provision %s runner(s) in the '%s' "
                    "namespace.", self.arc['runner']['replicas'],
                    self.runner_namespace)
        return manifest

    # Step 4

    def ensure_gh(self):
        """Make sure ``gh`` is installed, offer to install it with apt.

        Returns:
            False if the user doesn't want it installed.
        """
        missing = shell.missing_tools("gh")
        if not missing:
            return True

        LOGGER.warning("The following required tools are not installed: %s. "
                       "They are needed for automatic GitHub secret "
                       "configuration.", ", ".join(missing))
        if not self.prompt.confirm("Do you want to attempt to install them now "
                                   "using 'apt'?", default=True):
            LOGGER.warning("Skipping automatic GitHub secret configuration "
                           "and workflow generation because required tools "
                           "are missing.")
            return False

        proc = self.run(["apt-get", "update", "-y"], sudo=True, check=False)
        if proc.returncode:
            LOGGER.warning("Failed to update apt package lists. Continuing "
                           "with install attempt...")
        self.run(["apt-get", "install", "-y"] + missing, sudo=True)
        shell.check_deps(*missing)
        return True

    def set_github_secrets(self):
        repository = self.arc['repository']
        LOGGER.info("Logging into GitHub CLI...")
        self.run(["gh", "auth", "login", "-h", "github.com", "-p", "https"],
                 capture=False)
        LOGGER.info("Configuring secrets in '%s'...", repository)

        harbor = self.arc['harbor']
        url = harbor['url'] or self.prompt.value(
            "Enter your Harbor registry URL (e.g., my-harbor.my-domain.com)")
        username = harbor['username'] or self.prompt.value(
            "Enter the Harbor Robot Account Name for the HARBOR_USERNAME secret")
        password = harbor['password'] or self.prompt.value(
            "Enter Harbor password/robot secret", secret=True)

        if url and username and password:
            github.set_secret(self.run, "HARBOR_URL", url, repository)
            github.set_secret(self.run, "HARBOR_USERNAME", username, repository)
            github.set_secret(self.run, "HARBOR_PASSWORD", password, repository)
        else:
            LOGGER.warning("One or more Harbor credentials were not provided. "
                           "Skipping Harbor secret creation.")

        dockerhub = self.arc['dockerhub']
        if truthy(dockerhub['configure']):
            LOGGER.info("Configuring Docker Hub secrets as requested...")
            user = dockerhub['username'] or self.prompt.value(
                "Enter your Docker Hub Username")
            token = dockerhub['token'] or self.prompt.value(
                "Enter your Docker Hub Access Token", secret=True)
            if user and token:
                github.set_secret(self.run, "DOCKERHUB_USERNAME", user,
                                  repository)
                github.set_secret(self.run, "DOCKERHUB_TOKEN", token,
                                  repository)
            else:
                LOGGER.warning("Docker Hub credentials were not provided. "
                               "Skipping Docker Hub secret creation.")
        else:
            LOGGER.info("Skipping Docker Hub secret creation.")

        LOGGER.info("Generating Kubeconfig for GitHub Actions...")
        kubeconfig = self.run(shell.split(self.config['kubectl']) +
                              ["config", "view", "--raw"]).stdout
        github.set_secret(self.run, "KUBE_CONFIG", kubeconfig, repository)

    def write_workflow(self):
        wf = self.arc['workflow']
        os.makedirs(wf['output-dir'], exist_ok=True)
        path = os.path.join(wf['output-dir'], wf['filename'] or "deploy.yaml")
        with open(path, "w") as fh:
            fh.write(render_workflow(self.config))
        LOGGER.info("Generated workflow file at '%s'", path)
        LOGGER.info("Please review this file and commit it to your "
                    "repository's .github/workflows/ directory.")
        return path

    def configure_github_extras(self):
        """Set the repository secrets and write the sample workflow"""
        LOGGER.header("Step 4: Configuring GitHub Secrets & Workflow")
        if not self.ensure_gh():
            return None

        if self.prompt.confirm("Do you want to automatically configure GitHub "
                               "repository secrets (Harbor, Docker Hub, "
                               "Kubeconfig)?"):
            self.set_github_secrets()
        else:
            LOGGER.warning("Skipping automatic secret configuration.")

        return self.write_workflow()

    def cleanup(self):
        """Remove the runners, the controller and everything created for it.

        This is destructive, the caller asks for confirmation.
        """
        LOGGER.header("Running Cleanup")
        runner = self.arc['runner']
        release = self.arc['release']

        self.k8s.delete_custom_object(RUNNER_GROUP, RUNNER_VERSION,
                                      RUNNER_PLURAL, runner['name'],
                                      runner['namespace'])

        if self.helm.release_exists(release, self.namespace):
            self.helm.uninstall(release, self.namespace, wait=True)
        else:
            LOGGER.warning("Helm release '%s' not found. Skipping uninstall.",
                           release)

        self.helm.repo_remove(self.arc['repo-name'])

        self.k8s.delete_secret(self.arc['controller-secret'], self.namespace)
        self.k8s.delete_secret(GHCR_PULL_SECRET, self.namespace)
        self.k8s.delete_namespace(self.namespace)
        if runner['namespace'] != "default":
            self.k8s.delete_namespace(runner['namespace'])

        out_dir = self.arc['workflow']['output-dir']
        if os.path.isdir(out_dir):
            LOGGER.info("Deleting generated workflow directory '%s'...",
                        out_dir)
            shutil.rmtree(out_dir)

        LOGGER.success("Cleanup complete.")


