"""
Interact with the MicroK8s cluster via the API server
"""
import base64
import json
import logging

from kubernetes import client as k8sclient
from kubernetes.stream import stream
from kubernetes.client.rest import ApiException
from kubernetes.config import kube_config

from kubestrap.util.util import name_validation, wait_for
from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)

NOT_FOUND = 404
CONFLICT = 409

CERT_MANAGER_GROUP = "cert-manager.io"
CERT_MANAGER_VERSION = "v1"


def _decode(data):
    """decode the base64 values of a secret's data"""
    return {k: base64.b64decode(v).decode() for k, v in (data or {}).items()}


def _condition(conditions, ctype):
    """return the status of the condition of type ctype, or None"""
    for cond in conditions or []:
        # custom objects come back as dicts, core objects as models
        if isinstance(cond, dict):
            if cond.get('type') == ctype:
                return cond.get('status')
        elif cond.type == ctype:
            return cond.status
    return None


def pod_is_ready(pod):
    """True if the pod reports the Ready condition"""
    if pod.status.phase == "Succeeded":
        return True
    return _condition(pod.status.conditions, 'Ready') == 'True'


def docker_registry_secret(name, namespace, server, username, password,
                           email=None):
    """Build a ``kubernetes.io/dockerconfigjson`` secret.

    This is the body ``kubectl create secret docker-registry`` would send.
    """
    auth = base64.b64encode(f"{username}:{password}".encode()).decode()
    entry = {"username": username, "password": password, "auth": auth}
    if email:
        entry["email"] = email

    return k8sclient.V1Secret(
        metadata=k8sclient.V1ObjectMeta(name=name, namespace=namespace),
        type="kubernetes.io/dockerconfigjson",
        string_data={".dockerconfigjson": json.dumps(
            {"auths": {server: entry}})})


class K8S:  # pylint: disable=too-many-public-methods
    """Class allowing various interactions with a Kubernetes cluster.

    Args:
        kubeconfig (str): File path for the kubernetes configuration file.
        kubeconfig_dict (dict): an already parsed configuration, e.g. the
            output of ``microk8s config``. Used if kubeconfig is not given.

    If neither is given, the default ``~/.kube/config`` is loaded.
    """

    def __init__(self, kubeconfig=None, kubeconfig_dict=None):
        if kubeconfig:
            kube_config.load_kube_config(config_file=kubeconfig)
        elif kubeconfig_dict:
            kube_config.load_kube_config_from_dict(config_dict=kubeconfig_dict)
        else:
            kube_config.load_kube_config()

        self.api = k8sclient.CoreV1Api()
        self.apps = k8sclient.AppsV1Api()
        self.custom = k8sclient.CustomObjectsApi()

    @property
    def host(self):
        """Retrieve the API server address"""
        return self.api.api_client.configuration.host

    @property
    def is_ready(self):
        """Check if the API server is already available.

        Returns:
            True if it's reachable.
        """
        logging.getLogger("urllib3").setLevel(logging.ERROR)
        try:
            k8sclient.CoreApi().get_api_versions()
            return True
        except Exception:  # pylint: disable=broad-except
            return False
        finally:
            logging.getLogger("urllib3").setLevel(logging.WARNING)

    # namespaces

    def namespace_exists(self, name):
        """Check if namespace exists"""
        try:
            self.api.read_namespace(name)
            return True
        except ApiException as exc:
            if exc.status == NOT_FOUND:
                return False
            raise

    def ensure_namespace(self, name):
        """Create namespace unless it is there.

        Returns:
            True if the namespace was created.
        """
        name_validation(name)
        if self.namespace_exists(name):
            LOGGER.debug("Namespace '%s' already exists", name)
            return False

        body = k8sclient.V1Namespace(
            metadata=k8sclient.V1ObjectMeta(name=name))
        try:
            self.api.create_namespace(body)
        except ApiException as exc:
            if exc.status != CONFLICT:
                raise
            return False

        LOGGER.info("Created namespace '%s'", name)
        return True

    def delete_namespace(self, name):
        """Delete a namespace, a missing one is not an error"""
        try:
            self.api.delete_namespace(name)
            LOGGER.info("Deleted namespace '%s'", name)
        except ApiException as exc:
            if exc.status != NOT_FOUND:
                raise
            LOGGER.debug("Namespace '%s' not found", name)

    # secrets

    def secret_exists(self, name, namespace):
        """Check if secret exists in namespace"""
        try:
            self.api.read_namespaced_secret(name, namespace)
            return True
        except ApiException as exc:
            if exc.status == NOT_FOUND:
                return False
            raise

    def read_secret(self, name, namespace):
        """Return the decoded data of a secret, or None if it doesn't exist"""
        try:
            secret = self.api.read_namespaced_secret(name, namespace)
        except ApiException as exc:
            if exc.status == NOT_FOUND:
                return None
            raise
        return _decode(secret.data)

    def create_secret(self, name, namespace, string_data,
                      secret_type="Opaque"):
        """Create a generic secret from plain text values"""
        body = k8sclient.V1Secret(
            metadata=k8sclient.V1ObjectMeta(name=name, namespace=namespace),
            type=secret_type,
            string_data=string_data)
        self.api.create_namespaced_secret(namespace, body)
        LOGGER.info("Created secret '%s' in namespace '%s'", name, namespace)

    def apply_secret(self, body):
        """Create the secret, or replace it if it already exists"""
        name = body.metadata.name
        namespace = body.metadata.namespace
        try:
            self.api.create_namespaced_secret(namespace, body)
            LOGGER.info("Created secret '%s' in namespace '%s'",
                        name, namespace)
        except ApiException as exc:
            if exc.status != CONFLICT:
                raise
            self.api.replace_namespaced_secret(name, namespace, body)
            LOGGER.info("Replaced secret '%s' in namespace '%s'",
                        name, namespace)

    def copy_secret(self, name, src, dst):
        """Copy a secret to another namespace.

        Only name, type and data survive, server managed metadata like
        the resourceVersion and uid would be rejected.
        """
        secret = self.api.read_namespaced_secret(name, src)
        body = k8sclient.V1Secret(
            metadata=k8sclient.V1ObjectMeta(name=name, namespace=dst),
            type=secret.type,
            data=secret.data)
        self.apply_secret(body)

    def delete_secret(self, name, namespace):
        """Delete a secret, a missing one is not an error"""
        try:
            self.api.delete_namespaced_secret(name, namespace)
            LOGGER.info("Deleted secret '%s' in namespace '%s'",
                        name, namespace)
        except ApiException as exc:
            if exc.status != NOT_FOUND:
                raise
            LOGGER.debug("Secret '%s' in namespace '%s' not found",
                         name, namespace)

    # service accounts

    def service_account_exists(self, name, namespace):
        """Check if the service account exists"""
        try:
            self.api.read_namespaced_service_account(name, namespace)
            return True
        except ApiException as exc:
            if exc.status == NOT_FOUND:
                return False
            raise

    def add_image_pull_secret(self, secret, namespace, account="default"):
        """Add secret to the imagePullSecrets of a service account.

        Returns:
            True if the service account was patched.
        """
        sa = self.api.read_namespaced_service_account(account, namespace)
        names = [ref.name for ref in sa.image_pull_secrets or []]
        if secret in names:
            LOGGER.debug("'%s' already in imagePullSecrets of %s/%s",
                         secret, namespace, account)
            return False

        names.append(secret)
        patch = {"imagePullSecrets": [{"name": n} for n in names]}
        self.api.patch_namespaced_service_account(account, namespace, patch)
        LOGGER.info("Added '%s' to imagePullSecrets of service account %s/%s",
                    secret, namespace, account)
        return True

    # storage

    def apply_persistent_volume(self, body):
        """Create a PV unless a PV with that name exists.

        Returns:
            True if the PV was created.
        """
        name = body["metadata"]["name"]
        try:
            self.api.create_persistent_volume(body)
        except ApiException as exc:
            if exc.status != CONFLICT:
                raise
            LOGGER.info("PersistentVolume '%s' already exists", name)
            return False
        LOGGER.info("Created PersistentVolume '%s'", name)
        return True

    def apply_persistent_volume_claim(self, body):
        """Create a PVC unless a PVC with that name exists.

        Returns:
            True if the PVC was created.
        """
        name = body["metadata"]["name"]
        namespace = body["metadata"]["namespace"]
        try:
            self.api.create_namespaced_persistent_volume_claim(namespace, body)
        except ApiException as exc:
            if exc.status != CONFLICT:
                raise
            LOGGER.info("PersistentVolumeClaim '%s' already exists", name)
            return False
        LOGGER.info("Created PersistentVolumeClaim '%s'", name)
        return True

    def delete_pv(self, name):
        """Delete a PersistentVolume, ignore if not found"""
        try:
            self.api.delete_persistent_volume(name)
            LOGGER.info("Deleted PersistentVolume '%s'", name)
        except ApiException as exc:
            if exc.status != NOT_FOUND:
                raise
            LOGGER.debug("PersistentVolume '%s' not found", name)

    def delete_pvc(self, name, namespace):
        """Delete a PersistentVolumeClaim, ignore if not found"""
        try:
            self.api.delete_namespaced_persistent_volume_claim(name, namespace)
            LOGGER.info("Deleted PersistentVolumeClaim '%s'", name)
        except ApiException as exc:
            if exc.status != NOT_FOUND:
                raise
            LOGGER.debug("PersistentVolumeClaim '%s' not found", name)

    # custom objects

    def apply_custom_object(self, group, version, plural, body):
        """Create a custom object, or patch it if it exists.

        The object is namespaced if its metadata has a namespace.
        """
        name = body["metadata"]["name"]
        namespace = body["metadata"].get("namespace")
        kind = body.get("kind", plural)
        try:
            if namespace:
                self.custom.create_namespaced_custom_object(
                    group, version, namespace, plural, body)
            else:
                self.custom.create_cluster_custom_object(
                    group, version, plural, body)
            LOGGER.info("Created %s '%s'", kind, name)
        except ApiException as exc:
            if exc.status != CONFLICT:
                raise
            if namespace:
                self.custom.patch_namespaced_custom_object(
                    group, version, namespace, plural, name, body)
            else:
                self.custom.patch_cluster_custom_object(
                    group, version, plural, name, body)
            LOGGER.info("Configured %s '%s'", kind, name)

    def delete_custom_object(self, group, version, plural, name,
                             namespace=None):
        """Delete a custom object, ignore if not found"""
        try:
            if namespace:
                self.custom.delete_namespaced_custom_object(
                    group, version, namespace, plural, name)
            else:
                self.custom.delete_cluster_custom_object(
                    group, version, plural, name)
            LOGGER.info("Deleted %s '%s'", plural, name)
        except ApiException as exc:
            if exc.status != NOT_FOUND:
                raise
            LOGGER.debug("%s '%s' not found", plural, name)

    def certificate_ready(self, name, namespace):
        """Check the Ready condition of a cert-manager Certificate"""
        try:
            cert = self.custom.get_namespaced_custom_object(
                CERT_MANAGER_GROUP, CERT_MANAGER_VERSION, namespace,
                "certificates", name)
        except ApiException as exc:
            if exc.status == NOT_FOUND:
                return False
            raise
        conditions = cert.get("status", {}).get("conditions")
        return _condition(conditions, "Ready") == "True"

    # workloads

    def list_nodes(self):
        """Return a list of (name, ready) tuples for all nodes"""
        return [(node.metadata.name,
                 _condition(node.status.conditions, 'Ready') == 'True')
                for node in self.api.list_node().items]

    def list_pods(self, namespace, label_selector=None):
        """Return the pods in namespace, optionally filtered"""
        kwargs = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        return self.api.list_namespaced_pod(namespace, **kwargs).items

    def pods_ready(self, namespace):
        """True if namespace has pods and all of them are Ready"""
        pods = self.list_pods(namespace)
        return bool(pods) and all(pod_is_ready(pod) for pod in pods)

    def wait_for_pods_ready(self, namespace, timeout=300):
        """Block until all pods in namespace are Ready"""
        LOGGER.info("Waiting for pods in '%s' to be ready...", namespace)
        wait_for(lambda: self.pods_ready(namespace), timeout=timeout,
                 interval=5, what=f"pods in namespace '{namespace}'",
                 logger=LOGGER.debug)
        LOGGER.success("All pods in '%s' are ready", namespace)

    def deployment_available(self, namespace, name):
        """Check the Available condition of a deployment"""
        try:
            dep = self.apps.read_namespaced_deployment(name, namespace)
        except ApiException as exc:
            if exc.status == NOT_FOUND:
                return False
            raise
        return _condition(dep.status.conditions, 'Available') == 'True'

    def wait_for_deployment(self, namespace, name, timeout=300):
        """Block until the deployment is Available"""
        LOGGER.info("Waiting for deployment '%s' to be available...", name)
        wait_for(lambda: self.deployment_available(namespace, name),
                 timeout=timeout, interval=5,
                 what=f"deployment '{namespace}/{name}'",
                 logger=LOGGER.debug)
        LOGGER.success("Deployment '%s' is available", name)

    def endpoints_ready(self, service, namespace):
        """True if the service has at least one ready endpoint address"""
        try:
            endpoints = self.api.read_namespaced_endpoints(service, namespace)
        except ApiException as exc:
            if exc.status == NOT_FOUND:
                return False
            raise
        return any(subset.addresses for subset in endpoints.subsets or [])

    def first_pod(self, namespace, label_selector):
        """Return the first pod matching label_selector, or None"""
        pods = self.list_pods(namespace, label_selector)
        return pods[0] if pods else None

    def pod_ip(self, namespace, label_selector):
        """Return the IP of the first pod matching label_selector, or None"""
        pod = self.first_pod(namespace, label_selector)
        if pod is None:
            return None
        return pod.status.pod_ip

    def pod_ready(self, name, namespace):
        """Check if a single pod is Ready"""
        try:
            pod = self.api.read_namespaced_pod(name, namespace)
        except ApiException as exc:
            if exc.status == NOT_FOUND:
                return False
            raise
        return pod_is_ready(pod)

    def pod_logs(self, name, namespace, container=None, tail_lines=None):
        """Return the logs of a pod as string"""
        kwargs = {}
        if container:
            kwargs["container"] = container
        if tail_lines:
            kwargs["tail_lines"] = tail_lines
        return self.api.read_namespaced_pod_log(name, namespace, **kwargs)

    def create_pod(self, body):
        """Create a pod from a manifest dict"""
        namespace = body["metadata"]["namespace"]
        self.api.create_namespaced_pod(namespace, body)
        LOGGER.debug("Created pod '%s'", body["metadata"]["name"])

    def delete_pod(self, name, namespace, grace_period=0):
        """Delete a pod, ignore if not found"""
        try:
            self.api.delete_namespaced_pod(
                name, namespace, grace_period_seconds=grace_period)
            LOGGER.debug("Deleted pod '%s'", name)
        except ApiException as exc:
            if exc.status != NOT_FOUND:
                raise

    def delete_pods(self, namespace, label_selector):
        """Delete all pods matching label_selector"""
        self.api.delete_collection_namespaced_pod(
            namespace, label_selector=label_selector)
        LOGGER.info("Deleted pods '%s' in namespace '%s'",
                    label_selector, namespace)

    def exec_in_pod(self, name, namespace, command, timeout=30):
        """Run command inside a pod.

        Args:
            name (str): the pod.
            namespace (str): the pod's namespace.
            command (list): the command and its arguments.
            timeout (int): seconds to wait for the command.

        Returns:
            True if the command exited with 0.
        """
        resp = stream(self.api.connect_get_namespaced_pod_exec,
                      name, namespace,
                      command=command,
                      stderr=True, stdin=False,
                      stdout=True, tty=False,
                      _preload_content=False)
        resp.run_forever(timeout=timeout)
        LOGGER.debug("STDOUT: %s", resp.read_stdout(timeout=1))
        LOGGER.debug("STDERR: %s", resp.read_stderr(timeout=1))
        code = resp.returncode
        resp.close()
        return code == 0
