"""
Deploy Harbor with the goharbor chart and take it down again
"""
from kubestrap.config import require
from kubestrap.deploy.storage import storage_plan, remove_storage
from kubestrap.util.logger import Logger
from kubestrap.util.util import generate_password, name_validation

LOGGER = Logger(__name__)

# the chart nests the jobservice claim one level deeper
CLAIM_KEYS = {
    "registry": ("registry",),
    "jobservice": ("jobservice", "jobLog"),
    "database": ("database",),
    "redis": ("redis",),
    "trivy": ("trivy",),
}


def admin_secret_name(config):
    return f"{config['harbor']['name']}-admin-password"


def ingress_secret_name(config):
    return f"{config['harbor']['name']}-ingress"


def ensure_admin_password(k8s, config):
    """Return the Harbor admin password, create it on the first run.

    The password lives in the ``<app>-admin-password`` secret. A new password
    is shown exactly once, it can't be displayed again later.
    """
    harbor = config['harbor']
    namespace = harbor['namespace']
    secret = admin_secret_name(config)

    LOGGER.info("Checking for existing Harbor admin password secret ('%s')...",
                secret)
    data = k8s.read_secret(secret, namespace)
    if data is not None:
        LOGGER.success("Secret found. Reading existing password for upgrade.")
        return data['password']

    LOGGER.info("Secret not found. Generating a new random password...")
    password = generate_password()

    LOGGER.important("A new admin password has been generated. THIS IS THE "
                     "ONLY TIME IT WILL BE DISPLAYED.")
    LOGGER.important("Harbor Admin Username: %s", harbor['admin-user'])
    LOGGER.important("Harbor Admin Password: %s", password)
    LOGGER.important("Please save this password in a secure location "
                     "(e.g., a password manager).")

    k8s.ensure_namespace(namespace)
    k8s.create_secret(secret, namespace, {"password": password})
    return password


def harbor_values(config, password):
    """Build the Helm values for the goharbor/harbor chart"""
    harbor = config['harbor']
    claims = {}
    for volume in storage_plan(config):
        *parents, last = CLAIM_KEYS[volume.service]
        node = claims
        for key in parents:
            node = node.setdefault(key, {})
        node[last] = {"existingClaim": volume.pvc,
                      "storageClass": volume.storage_class,
                      "size": volume.size}

    return {
        "expose": {
            "type": "ingress",
            "tls": {
                "enabled": True,
                "certSource": "secret",
                "secret": {"secretName": ingress_secret_name(config)},
            },
            "ingress": {
                "hosts": {"core": harbor['hostname']},
                "className": harbor['ingress-class'],
                "annotations": {
                    "cert-manager.io/cluster-issuer": config['issuer']['name'],
                },
            },
        },
        "externalURL": harbor['url'],
        "harborAdminPassword": password,
        "persistence": {
            "enabled": True,
            "resourcePolicy": "keep",
            "persistentVolumeClaim": claims,
        },
    }


def deploy(k8s, helm, config):
    """Install or upgrade Harbor.

    Safe to run again, the admin password is read back from its secret.
    """
    require(config, 'harbor.name', 'harbor.domain', 'harbor.protocol',
            'harbor.repo-alias', 'harbor.repo-url')
    harbor = config['harbor']
    name_validation(harbor['namespace'])
    name_validation(harbor['release'])

    password = ensure_admin_password(k8s, config)

    helm.ensure_repo(harbor['repo-alias'], harbor['repo-url'], match="name")
    LOGGER.info("Updating Helm repositories...")
    helm.repo_update()

    LOGGER.info("Deploying Harbor with the following configuration:")
    LOGGER.info("Hostname: %s", harbor['hostname'])
    LOGGER.info("Namespace: %s", harbor['namespace'])
    LOGGER.info("Admin password will be sourced from the '%s' secret.",
                admin_secret_name(config))

    helm.upgrade_install(harbor['release'],
                         f"{harbor['repo-alias']}/harbor",
                         harbor['namespace'],
                         values=harbor_values(config, password),
                         create_namespace=True,
                         atomic=True,
                         timeout=harbor['timeout'])
    LOGGER.success("Harbor deployed at %s", harbor['url'])


def undeploy(k8s, helm, runner, config):
    """Remove Harbor including all of its data.

    This is destructive, the caller asks for confirmation.
    """
    harbor = config['harbor']
    namespace = harbor['namespace']

    LOGGER.info("Uninstalling Helm release '%s'...", harbor['release'])
    helm.uninstall(harbor['release'], namespace)

    remove_storage(k8s, runner, config)

    LOGGER.info("Deleting Harbor secrets...")
    k8s.delete_secret(admin_secret_name(config), namespace)
    k8s.delete_secret(ingress_secret_name(config), namespace)

    k8s.delete_namespace(namespace)
    LOGGER.success("Harbor '%s' removed", harbor['name'])
