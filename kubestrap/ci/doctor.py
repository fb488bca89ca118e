"""
doctor.py
=========

Diagnose a runner setup whose jobs stay queued. The checks go from the
bottom up:

1. cluster nodes and system pods
2. the ARC webhook certificate
3. the controller and its GitHub App credentials
4. the runner pods
5. what GitHub sees

A check never raises, every outcome is recorded as :class:`Finding`.
"""
from collections import namedtuple

import requests
from kubernetes.client.rest import ApiException

from kubestrap import ARC_CONTROLLER_LABEL
from kubestrap.ci import github
from kubestrap.ssl import fingerprint, file_fingerprint
from kubestrap.util import shell
from kubestrap.util.hue import green, red, cyan, bold
from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)

Finding = namedtuple("Finding", ["layer", "name", "ok", "detail"])


class ArcDoctor:
    """Run the diagnostic checks.

    Args:
        config (dict): the kubestrap configuration.
        k8s (K8S): the API client.
        runner (callable): executes ``kubectl describe``.
        session (requests.Session): for the GitHub API.
    """

    def __init__(self, config, k8s, runner=shell.run, session=None):
        self.config = config
        self.arc = config['arc']
        self.k8s = k8s
        self.run = runner
        self.session = session or requests.Session()
        self.findings = []

    @property
    def kubectl(self):
        return shell.split(self.config['kubectl'])

    def record(self, layer, name, ok, detail=""):
        finding = Finding(layer, name, ok, detail)
        self.findings.append(finding)
        if ok:
            LOGGER.info(green(f"[OK] {name}") + (f": {detail}" if detail else ""),
                        color=False)
        else:
            LOGGER.error(f"[FAIL] {name}" + (f": {detail}" if detail else ""))
        return finding

    def show(self, title, cmd):
        """Print the output of a diagnostic command between markers"""
        LOGGER.info(cyan(f"--- START: {title} ---"), color=False)
        try:
            proc = self.run(self.kubectl + cmd, check=False)
            LOGGER.info("%s", (proc.stdout or "") + (proc.stderr or ""),
                        color=False)
            if proc.returncode:
                LOGGER.warning("Command failed to execute or returned a "
                               "non-zero exit code.")
        except shell.CommandError as exc:
            LOGGER.warning("%s", exc)
        LOGGER.info(cyan(f"--- END: {title} ---"), color=False)

    def show_text(self, title, text):
        LOGGER.info(cyan(f"--- START: {title} ---"), color=False)
        LOGGER.info("%s", text, color=False)
        LOGGER.info(cyan(f"--- END: {title} ---"), color=False)

    def check(self, title):
        LOGGER.info(bold(cyan(f"\n[CHECK] {title}")), color=False)

    def run_checks(self):
        """Run all layers.

        Returns:
            list of :class:`Finding`.
        """
        self.findings = []
        LOGGER.header("Actions Runner Controller (ARC) Doctor")
        LOGGER.info("Target GitHub Repository: %s", self.arc['repository'])
        LOGGER.info("ARC Namespace: %s", self.arc['namespace'])
        LOGGER.info("Runner Namespace: %s", self.arc['runner']['namespace'])

        for layer in (self.cluster_health, self.certificate_health,
                      self.controller_health, self.runner_health,
                      self.github_status):
            try:
                layer()
            except (ApiException, requests.RequestException) as exc:
                self.record(0, layer.__name__, False, str(exc))

        failed = [f for f in self.findings if not f.ok]
        if failed:
            LOGGER.error("%d of %d checks failed.", len(failed),
                         len(self.findings))
        else:
            LOGGER.success("All %d checks passed.", len(self.findings))
        return self.findings

    # layer 1
    def cluster_health(self):
        self.check("Checking Kubernetes Node Status")
        nodes = self.k8s.list_nodes()
        not_ready = [name for name, ready in nodes if not ready]
        self.record(1, "nodes ready", bool(nodes) and not not_ready,
                    ", ".join(not_ready) or f"{len(nodes)} node(s)")
        self.show("kubectl get nodes -o wide", ["get", "nodes", "-o", "wide"])

        self.check("Checking Core System Pod Health (kube-system, "
                   "cert-manager)")
        for namespace in ("kube-system", "cert-manager"):
            self.record(1, f"pods in {namespace} ready",
                        self.k8s.pods_ready(namespace))
            self.show(f"kubectl get pods -n {namespace}",
                      ["get", "pods", "-n", namespace])

    # layer 2
    def certificate_health(self):
        namespace = self.arc['namespace']
        cert = f"{self.arc['release']}-serving-cert"

        self.check("Verifying ARC Certificate Issuance")
        self.record(2, "ARC certificate ready",
                    self.k8s.certificate_ready(cert, namespace), cert)
        self.show("Describe ARC Certificate",
                  ["describe", "certificate", "-n", namespace, cert])

        self.check("Verifying ARC Webhook TLS Secret")
        self.record(2, "ARC webhook TLS secret exists",
                    self.k8s.secret_exists(cert, namespace), cert)

    # layer 3
    def controller_health(self):
        namespace = self.arc['namespace']

        self.check("Checking ARC Controller Pod Status")
        pod = self.k8s.first_pod(namespace, ARC_CONTROLLER_LABEL)
        self.record(3, "ARC controller pod found", pod is not None,
                    pod.metadata.name if pod else
                    f"not found in namespace '{namespace}'")
        if pod:
            name = pod.metadata.name
            self.show("Describe ARC Controller Pod",
                      ["describe", "pod", "-n", namespace, name])
            self.show_text("Logs for ARC Controller Pod (last 100 lines)",
                           self.k8s.pod_logs(name, namespace, tail_lines=100))

        self.check("Verifying Credentials in Live Cluster Secret")
        self.compare_credentials()

    def compare_credentials(self):
        secret_name = self.arc['controller-secret']
        secret = self.k8s.read_secret(secret_name, self.arc['namespace'])
        if secret is None:
            self.record(3, "controller secret exists", False, secret_name)
            return

        app = self.arc['github-app']
        for key, configured, label in (
                ("github_app_id", app['id'], "App IDs match"),
                ("github_app_installation_id", app['installation-id'],
                 "Installation IDs match")):
            live = secret.get(key, "")
            self.record(3, label, live == str(configured or ""),
                        f"secret: {live}, config: {configured}")

        key_path = app['private-key-path']
        try:
            local_sum = file_fingerprint(key_path)
        except (OSError, TypeError) as exc:
            self.record(3, "private key checksums match", False,
                        f"can't read local key: {exc}")
            return
        secret_sum = fingerprint(secret.get("github_app_private_key", ""))
        self.record(3, "private key checksums match", local_sum == secret_sum,
                    f"local {local_sum}, secret {secret_sum}")

    # layer 4
    def runner_health(self):
        runner = self.arc['runner']
        namespace = runner['namespace']

        self.check("Checking for Runner Pod(s)")
        pod = self.k8s.first_pod(namespace,
                                 f"runner-deployment-name={runner['name']}")
        self.record(4, "runner pod found", pod is not None,
                    pod.metadata.name if pod else
                    f"no runner pod for deployment '{runner['name']}' in "
                    f"namespace '{namespace}'")
        if pod:
            name = pod.metadata.name
            self.show("Describe Runner Pod",
                      ["describe", "pod", "-n", namespace, name])
            self.show_text("Logs for Runner Container",
                           self.k8s.pod_logs(name, namespace,
                                             container="runner"))

    # layer 5
    def github_status(self):
        self.check("Querying GitHub API for Live Runner Status")
        token = self.arc['github-token']
        if not token:
            LOGGER.warning("No GitHub token configured. Skipping live GitHub "
                           "API checks.")
            return

        try:
            data = github.list_runners(self.arc['repository'], token,
                                       session=self.session)
        except github.GitHubError as exc:
            self.record(5, "GitHub API reachable", False,
                        f"{exc}. The PAT may be invalid or lack 'repo' scope.")
            return

        self.record(5, "GitHub API reachable", True,
                    f"{data.get('total_count', 0)} runner(s)")
        for runner in data.get("runners", []):
            summary = github.runner_summary(runner)
            colour = green if summary["status"] == "online" else red
            LOGGER.info("  %s", colour(str(summary)), color=False)
