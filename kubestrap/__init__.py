# pylint: disable=missing-docstring
from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version('kubestrap')
except PackageNotFoundError:
    __version__ = '0.4.0'

# Defining some constants
MICROK8S_GROUP = "microk8s"
HARBOR_SERVICES = ("registry", "jobservice", "database", "redis", "trivy")
GHCR_PULL_SECRET = "ghcr-io-pull-secret"
HARBOR_PULL_SECRET = "harbor-credentials"
ARC_CONTROLLER_LABEL = "app.kubernetes.io/name=actions-runner-controller"
ARC_WEBHOOK_PORT = 9443
PLACEHOLDER_REPOSITORY = "your-username/your-repo-name"
