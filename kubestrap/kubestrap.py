"""
kubestrap
=========

The main entry point for the home-lab bootstrap.
Don't use it directly, instead install the package with setup.py.
It automatically creates an executable in your path.

The stages are meant to run in this order::

    kubestrap prepare config.yml
    kubestrap init config.yml
    kubestrap issuer config.yml
    kubestrap storage config.yml
    kubestrap harbor config.yml
    kubestrap configure config.yml
    kubestrap app config.yml
    kubestrap arc config.yml
"""
import argparse
import contextlib
import sys

import urllib3
from kubernetes.client.rest import ApiException

from mach import mach1

from . import __version__
from .cli import confirm, Prompt
from .config import ConfigError, load_config, require, truthy
from .ci.arc import ArcSetup, app_guide
from .ci.doctor import ArcDoctor
from .ci.github import GitHubError
from .deploy import harbor as harbor_deploy
from .deploy.certs import apply_cluster_issuer
from .deploy.helm import Helm
from .deploy.k8s import K8S
from .deploy.microk8s import MicroK8s
from .deploy.storage import apply_storage
from .provision.server import ServerPreparer
from .registry.harbor import HarborAPI, HarborError
from .registry.project import ProjectConfigurator
from .util import shell
from .util.logger import Logger, LEVEL_NAMES
from .util.util import normalize_url

LOGGER = Logger(__name__)

EXPECTED_ERRORS = (ConfigError, shell.CommandError, HarborError, GitHubError,
                   TimeoutError, ApiException, OSError, ValueError)


@contextlib.contextmanager
def exit_on_error():
    """Log the errors a stage is expected to run into and exit with 1"""
    try:
        yield
    except urllib3.exceptions.MaxRetryError:
        LOGGER.error("Connection failed! Is MicroK8s running and is the "
                     "kubeconfig correct?")
        sys.exit(1)
    except EXPECTED_ERRORS as exc:
        LOGGER.error(f"Error: {exc}")
        sys.exit(1)


def connect(config):
    """Return a :class:`K8S` for the cluster, exit if it is unreachable"""
    k8s = K8S(config['kubeconfig'])
    if not k8s.is_ready:
        LOGGER.error("Kubernetes API at %s is not reachable. Is MicroK8s "
                     "running?", k8s.host)
        sys.exit(1)
    return k8s


def harbor_api(config, prompt):
    """Build the Harbor client from the configuration.

    The admin password is asked for if it is not configured.
    """
    harbor = config['harbor']
    require(config, 'harbor.url', 'harbor.admin-user', 'harbor.project')

    url, prepended = normalize_url(harbor['url'])
    if prepended:
        LOGGER.warning("Harbor URL '%s' does not have a scheme, using '%s'.",
                       harbor['url'], url)

    password = prompt.required(f"Enter the password for Harbor user "
                               f"'{harbor['admin-user']}'",
                               harbor['admin-password'], secret=True)
    return HarborAPI(url, harbor['admin-user'], password,
                     verify=truthy(harbor['verify-tls']))


@mach1()
class Kubestrap:  # pylint: disable=no-self-use
    """
    The main entry point for the program. This class does the CLI parsing
    and decides which stage should be run
    """
    def __init__(self):
        self.parser.add_argument(  # pylint: disable=no-member
            "--version", action="store_true",
            help="show version and exit",
            default=argparse.SUPPRESS)

        verbosity_help = "".join([
            "set the verbosity level (",
            "0 = quiet, ",
            "1 = error, ",
            "2 = warning, ",
            "3 = info, ",
            "4 = debug)"])
        self.parser.add_argument("--verbosity",  # pylint: disable=no-member
                                 "-v",
                                 help=verbosity_help,
                                 choices=['0', '1', '2', '3', '4', 'quiet',
                                          'error', 'warning', 'info', 'debug'],
                                 type=str,
                                 default=3)

    def _get_version(self, _=None):
        print("%s version: %s" % (self.__class__.__name__, __version__))

    def _get_verbosity(self, _=None):
        pass

    def prepare(self, config: str, iptables_keep: bool = False,
                no_fail2ban: bool = False, upgrades_off: bool = False):
        """
        Prepare the host: legacy iptables, fail2ban, unattended-upgrades

        config - configuration file
        iptables_keep - keep the current iptables backend
        no_fail2ban - don't install fail2ban
        upgrades_off - don't configure unattended-upgrades
        """
        with exit_on_error():
            cfg = load_config(config)
            ServerPreparer(cfg).prepare(iptables=not iptables_keep,
                                        fail2ban=not no_fail2ban,
                                        upgrades=not upgrades_off)

    def init(self, config: str):
        """
        Install MicroK8s, its addons and cert-manager

        config - configuration file
        ---
        If the current user is not in the microk8s group yet, it is added and
        kubestrap restarts itself with the new group membership.
        """
        with exit_on_error():
            cfg = load_config(config)
            shell.check_deps("snap")
            MicroK8s(cfg).init(argv=sys.argv)

    def restart(self, config: str):
        """
        Restart MicroK8s and show the state of the ARC pods

        config - configuration file
        """
        with exit_on_error():
            cfg = load_config(config)
            MicroK8s(cfg).restart()

    def issuer(self, config: str):
        """
        Apply the Let's Encrypt ClusterIssuer using Route53 for DNS-01

        config - configuration file
        """
        with exit_on_error():
            cfg = load_config(config)
            apply_cluster_issuer(connect(cfg), cfg)

    def storage(self, config: str):
        """
        Create the hostPath volumes and claims for Harbor

        config - configuration file
        """
        with exit_on_error():
            cfg = load_config(config)
            apply_storage(connect(cfg), shell.run, cfg)

    def harbor(self, config: str):
        """
        Deploy or upgrade Harbor with Helm

        config - configuration file
        """
        with exit_on_error():
            cfg = load_config(config)
            harbor_deploy.deploy(connect(cfg), Helm(cfg['helm']),
                                 cfg)

    def destroy(self, config: str, force: bool = False):
        """
        Delete Harbor with all of its data

        config - configuration file
        force - don't ask for confirmation
        """
        with exit_on_error():
            cfg = load_config(config)
            LOGGER.question(
                "Deleting Harbor '{}' in namespace '{}' including all "
                "images and the database".format(cfg['harbor']['name'],
                                                 cfg['harbor']['namespace']))
            if not confirm(force):
                LOGGER.info("Operation cancelled.")
                return

            harbor_deploy.undeploy(connect(cfg), Helm(cfg['helm']),
                                   shell.run, cfg)

    def configure(self, config: str):
        """
        Configure the Harbor project, robot account and policies

        config - configuration file
        ---
        The admin password is taken from the HARBOR_ADMIN_PASS environment
        variable or asked for.
        """
        with exit_on_error():
            cfg = load_config(config)
            harbor = cfg['harbor']
            delete_others = truthy(harbor['delete-other-projects'])
            if delete_others:
                # setting delete-other-projects is the consent, runs are
                # unattended
                LOGGER.warning("delete-other-projects is set, all Harbor "
                               "projects except '%s' will be deleted",
                               harbor['project'])

            configurator = ProjectConfigurator(
                harbor_api(cfg, Prompt()),
                harbor['project'],
                harbor['robot'],
                delete_others=delete_others,
                immutable_patterns=harbor['immutable-tags'],
                keep=harbor['retention']['keep'],
                retention_cron=harbor['retention']['cron'],
                gc_cron=harbor['gc-cron'])
            configurator.run()

    def app(self, config: str):
        """
        Guide through creating the GitHub App for the runner controller

        config - configuration file
        """
        with exit_on_error():
            cfg = load_config(config)
            app_guide(cfg, Prompt())

    def arc(self, config: str):
        """
        Install the Actions Runner Controller and deploy the runners

        config - configuration file
        """
        with exit_on_error():
            cfg = load_config(config)
            k8s = connect(cfg)
            helm = Helm(cfg['helm'])
            setup = ArcSetup(cfg, k8s, helm, shell.run, Prompt(),
                             microk8s=MicroK8s(cfg, k8s=k8s, helm=helm))
            setup.setup()

    def cleanup(self, config: str, force: bool = False):
        """
        Remove the runners, the controller and their secrets

        config - configuration file
        force - don't ask for confirmation
        """
        with exit_on_error():
            cfg = load_config(config)
            LOGGER.question(
                "This will permanently delete the ARC installation in "
                "namespace '{}' and the runners in '{}'".format(
                    cfg['arc']['namespace'],
                    cfg['arc']['runner']['namespace']))
            if not confirm(force):
                LOGGER.info("Cleanup cancelled.")
                return

            ArcSetup(cfg, connect(cfg), Helm(cfg['helm']),
                     shell.run, Prompt()).cleanup()

    def doctor(self, config: str):
        """
        Diagnose the runner setup

        config - configuration file
        """
        with exit_on_error():
            cfg = load_config(config)
            findings = ArcDoctor(cfg, connect(cfg)).run_checks()
        if not all(finding.ok for finding in findings):
            sys.exit(1)


def main():
    """
    run and execute kubestrap
    """
    k = Kubestrap()

    # pylint: disable=no-member
    k.parser.description = 'Bootstrap a single node home-lab: MicroK8s, '\
                           'cert-manager, Harbor and GitHub Actions '\
                           'runners. Each stage reads the same YAML '\
                           'configuration file.'

    # Setting verbosity level
    level = k.parser.parse_args().verbosity
    try:
        LOGGER.level = int(level)
    except ValueError:
        LOGGER.level = LEVEL_NAMES[level]

    # pylint misses the fact that Kubestrap is decorated with mach.
    # the mach decorator analyzes the methods in the class and dynamically
    # creates the CLI parser. It also adds the method run to the class.
    k.run()  # pylint: disable=no-member
