"""
Drive the helm binary shipped with MicroK8s
"""
import json

import yaml

from kubestrap.util import shell
from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)


class Helm:
    """A thin wrapper around the ``helm`` command line.

    Args:
        command (str): how helm is called, ``microk8s helm3`` by default.
        runner (callable): executes commands, :func:`kubestrap.util.shell.run`
            by default.
    """

    def __init__(self, command="microk8s helm3", runner=shell.run):
        self.command = shell.split(command)
        self.runner = runner

    def _run(self, *args, check=True, input=None):  # pylint: disable=redefined-builtin
        return self.runner(self.command + list(args), check=check, input=input)

    def version(self):
        """Return the helm version string"""
        return self._run("version", "--short").stdout.strip()

    def repos(self):
        """Return the configured repositories as list of dicts"""
        proc = self._run("repo", "list", "-o", "json", check=False)
        if proc.returncode:
            # helm exits with 1 if no repository is configured
            return []
        return json.loads(proc.stdout or "[]")

    def repo_listed(self, name=None, url=None):
        """Check if a repository is configured, by name or by URL"""
        for repo in self.repos():
            if name and repo.get("name") == name:
                return True
            if url and repo.get("url", "").rstrip("/") == url.rstrip("/"):
                return True
        return False

    def repo_add(self, name, url, force_update=False):
        """Add a chart repository"""
        args = ["repo", "add", name, url]
        if force_update:
            args.append("--force-update")
        self._run(*args)
        LOGGER.info("Added helm repository '%s' (%s)", name, url)

    def ensure_repo(self, name, url, match="url"):
        """Add the repository unless it is configured.

        Args:
            match (str): ``url`` or ``name``, how an existing repository
                is recognized.
        """
        listed = (self.repo_listed(url=url) if match == "url"
                  else self.repo_listed(name=name))
        if listed:
            LOGGER.info("Helm repository '%s' already configured", name)
            return False
        self.repo_add(name, url)
        return True

    def repo_update(self):
        """Update all chart repositories"""
        self._run("repo", "update")

    def repo_remove(self, name):
        """Remove a repository, failing is only a warning"""
        proc = self._run("repo", "remove", name, check=False)
        if proc.returncode:
            LOGGER.warning("Could not remove helm repository '%s': %s",
                           name, (proc.stderr or "").strip())
            return False
        LOGGER.info("Removed helm repository '%s'", name)
        return True

    def release_exists(self, release, namespace):
        """Check if a release is installed in namespace"""
        proc = self._run("status", release, "--namespace", namespace,
                         check=False)
        return proc.returncode == 0

    def upgrade_install(self, release, chart, namespace, values=None,  # pylint: disable=too-many-arguments
                        sets=None, create_namespace=True, atomic=False,
                        timeout=None):
        """Install or upgrade a release.

        Args:
            values (dict): chart values, fed to helm on stdin.
            sets (dict): single ``--set key=value`` overrides.
        """
        args = ["upgrade", "--install", release, chart,
                "--namespace", namespace]
        self._install(args, values, sets, create_namespace, atomic, timeout)

    def install(self, release, chart, namespace, values=None, sets=None,  # pylint: disable=too-many-arguments
                create_namespace=True, atomic=False, timeout=None):
        """Install a release, fails if it exists"""
        args = ["install", release, chart, "--namespace", namespace]
        self._install(args, values, sets, create_namespace, atomic, timeout)

    def _install(self, args, values, sets, create_namespace, atomic, timeout):  # pylint: disable=too-many-arguments
        if create_namespace:
            args.append("--create-namespace")
        if atomic:
            args.append("--atomic")
        if timeout:
            args.extend(["--timeout", str(timeout)])
        for key, val in (sets or {}).items():
            args.extend(["--set", f"{key}={val}"])

        stdin = None
        if values:
            args.extend(["--values", "-"])
            stdin = yaml.safe_dump(values, default_flow_style=False)

        LOGGER.debug("helm %s, value sections: %s", args[0], sorted(values or {}))
        self._run(*args, input=stdin)

    def uninstall(self, release, namespace, wait=False):
        """Uninstall a release, a missing release is only logged"""
        args = ["uninstall", release, "--namespace", namespace]
        if wait:
            args.append("--wait")
        proc = self._run(*args, check=False)
        if proc.returncode:
            LOGGER.warning("Could not uninstall release '%s': %s", release,
                           (proc.stderr or "").strip())
            return False
        LOGGER.success("Uninstalled release '%s'", release)
        return True
