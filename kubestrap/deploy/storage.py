"""
hostPath PersistentVolumes and Claims for the Harbor services
"""
import posixpath
from collections import namedtuple

from kubestrap import HARBOR_SERVICES
from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)

Volume = namedtuple("Volume", ["service", "pv", "pvc", "storage_class",
                               "path", "size"])


def storage_plan(config):
    """Compute the names, paths and sizes for every Harbor service.

    Provisioning, the Helm values and removal all use this, so the names
    can't drift apart.

    Returns:
        list of :class:`Volume`
    """
    harbor = config['harbor']
    app = harbor['name']
    storage = harbor['storage']
    plan = []
    for service in HARBOR_SERVICES:
        plan.append(Volume(
            service=service,
            pv=f"{app}-{service}-pv",
            pvc=f"{app}-{service}-pvc",
            storage_class=f"{app}-manual-{service}",
            path=posixpath.join(storage['host-path-base'], app, service),
            size=storage['sizes'][service]))
    return plan


def app_path(config):
    """The host directory holding the data of all services"""
    harbor = config['harbor']
    return posixpath.join(harbor['storage']['host-path-base'], harbor['name'])


def pv_manifest(volume):
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolume",
        "metadata": {"name": volume.pv},
        "spec": {
            "capacity": {"storage": volume.size},
            "accessModes": ["ReadWriteOnce"],
            "persistentVolumeReclaimPolicy": "Retain",
            "storageClassName": volume.storage_class,
            "hostPath": {"path": volume.path, "type": "DirectoryOrCreate"},
        },
    }


def pvc_manifest(volume, namespace):
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {"name": volume.pvc, "namespace": namespace},
        "spec": {
            "accessModes": ["ReadWriteOnce"],
            "storageClassName": volume.storage_class,
            "volumeName": volume.pv,
            "resources": {"requests": {"storage": volume.size}},
        },
    }


def apply_storage(k8s, runner, config):
    """Create the host directories, PVs and PVCs.

    Existing PVs and PVCs are kept as they are.
    """
    namespace = config['harbor']['namespace']
    uid = config['harbor']['storage']['owner-uid']

    LOGGER.info("Preparing persistent storage for application: %s",
                config['harbor']['name'])
    LOGGER.info("Ensuring base host directory exists at %s...",
                app_path(config))
    runner(["mkdir", "-p", app_path(config)], sudo=True)

    for volume in storage_plan(config):
        LOGGER.info("Processing storage for service: %s", volume.service)
        LOGGER.debug("Creating host directory: %s", volume.path)
        runner(["mkdir", "-p", volume.path], sudo=True)
        LOGGER.debug("Setting ownership to UID %s", uid)
        runner(["chown", "-R", f"{uid}:{uid}", volume.path], sudo=True)

        k8s.apply_persistent_volume(pv_manifest(volume))
        k8s.ensure_namespace(namespace)
        k8s.apply_persistent_volume_claim(pvc_manifest(volume, namespace))
        LOGGER.success("Storage for '%s' provisioned", volume.service)

    LOGGER.success("All storage provisioning complete for '%s'",
                   config['harbor']['name'])


def remove_storage(k8s, runner, config):
    """Delete PVCs, then PVs, then the data on the host"""
    namespace = config['harbor']['namespace']
    plan = storage_plan(config)

    LOGGER.info("Deleting PersistentVolumeClaims...")
    for volume in plan:
        k8s.delete_pvc(volume.pvc, namespace)

    LOGGER.info("Deleting PersistentVolumes...")
    for volume in plan:
        k8s.delete_pv(volume.pv)

    LOGGER.info("Deleting host data at %s...", app_path(config))
    runner(["rm", "-rf", app_path(config)], sudo=True)
