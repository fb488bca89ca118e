"""
Let's Encrypt ClusterIssuer solving DNS-01 challenges with Route53
"""
from kubestrap.config import ConfigError, require
from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)

REQUIRED = (
    'issuer.email', 'issuer.aws-region', 'issuer.hosted-zone-id',
    'issuer.access-key-id', 'issuer.acme-server', 'issuer.name',
    'issuer.secret-name', 'issuer.secret-key-name', 'cert-manager.namespace',
)


def cluster_issuer_manifest(config):
    """Build the ClusterIssuer as dict"""
    issuer = config['issuer']
    return {
        "apiVersion": "cert-manager.io/v1",
        "kind": "ClusterIssuer",
        "metadata": {"name": issuer['name']},
        "spec": {
            "acme": {
                "server": issuer['acme-server'],
                "email": issuer['email'],
                "privateKeySecretRef": {"name": f"{issuer['name']}-account-key"},
                "solvers": [{
                    "dns01": {
                        "route53": {
                            "region": issuer['aws-region'],
                            "hostedZoneID": issuer['hosted-zone-id'],
                            "accessKeyID": issuer['access-key-id'],
                            "secretAccessKeySecretRef": {
                                "name": issuer['secret-name'],
                                "key": issuer['secret-key-name'],
                            },
                        },
                    },
                }],
            },
        },
    }


def missing_secret_message(config):
    """Explain how to create the AWS secret"""
    issuer = config['issuer']
    namespace = config['cert-manager']['namespace']
    return (
        f"The ClusterIssuer requires a secret named '{issuer['secret-name']}' "
        f"in the '{namespace}' namespace. Please create it first, e.g.:\n\n"
        "  export AWS_SECRET_KEY='your-super-secret-aws-key-goes-here'\n"
        f"  {config['kubectl']} -n {namespace} create secret generic "
        f"{issuer['secret-name']} \\\n"
        f"    --from-literal={issuer['secret-key-name']}=\"$AWS_SECRET_KEY\"\n")


def apply_cluster_issuer(k8s, config):
    """Apply the ClusterIssuer once the AWS secret is in place.

    Raises:
        ConfigError if a setting or the secret is missing.
    """
    require(config, *REQUIRED)
    issuer = config['issuer']
    namespace = config['cert-manager']['namespace']

    LOGGER.info("Checking for prerequisite secret '%s' in namespace '%s'...",
                issuer['secret-name'], namespace)
    if not k8s.secret_exists(issuer['secret-name'], namespace):
        raise ConfigError("prerequisite secret not found. " +
                          missing_secret_message(config))
    LOGGER.success("Prerequisite secret found")

    LOGGER.info("Applying ClusterIssuer with the following configuration:")
    LOGGER.info("Email: %s", issuer['email'])
    LOGGER.info("Region: %s", issuer['aws-region'])
    LOGGER.info("Zone ID: %s", issuer['hosted-zone-id'])
    LOGGER.info("Access Key ID: %s", issuer['access-key-id'])
    LOGGER.info("ACME URL: %s", issuer['acme-server'])

    manifest = cluster_issuer_manifest(config)
    k8s.apply_custom_object("cert-manager.io", "v1", "clusterissuers",
                            manifest)
    LOGGER.success("ClusterIssuer '%s' applied", issuer['name'])
    return manifest
