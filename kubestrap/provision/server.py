"""
Prepare the host before MicroK8s is installed.

* switch iptables to the legacy backend, the kube-proxy of MicroK8s writes
  its rules there and NodePorts are unreachable in nft mode
* install and configure fail2ban
* install and configure unattended-upgrades
"""
import difflib
import os
import re
import time

from kubestrap.util import shell
from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)

JAIL_CONF = "/etc/fail2ban/jail.conf"
JAIL_LOCAL = "/etc/fail2ban/jail.local"
UNATTENDED_CONF = "/etc/apt/apt.conf.d/50unattended-upgrades"

# configuration key -> apt option
APT_OPTIONS = (
    ('remove-unused-dependencies',
     'Unattended-Upgrade::Remove-Unused-Dependencies'),
    ('automatic-reboot', 'Unattended-Upgrade::Automatic-Reboot'),
    ('automatic-reboot-with-users',
     'Unattended-Upgrade::Automatic-Reboot-WithUsers'),
    ('automatic-reboot-time', 'Unattended-Upgrade::Automatic-Reboot-Time'),
    ('dl-limit', 'Acquire::http::Dl-Limit'),
)


def set_jail_option(text, key, value):
    """Set key in a fail2ban jail file.

    Existing lines, commented out or not, are replaced. If there is no such
    line the option is added below ``[DEFAULT]``.
    """
    line = f"{key} = {value}"
    pattern = re.compile(r"^[# \t]*" + re.escape(key) + r"[ \t]*=.*$", re.M)
    if pattern.search(text):
        return pattern.sub(line, text)

    default = re.compile(r"^\[DEFAULT\][^\n]*$", re.M)
    if default.search(text):
        return default.sub(lambda m: m.group(0) + "\n" + line, text, count=1)

    sep = "" if not text or text.endswith("\n") else "\n"
    return f"{text}{sep}[DEFAULT]\n{line}\n"


def apt_value(value):
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def set_apt_option(text, key, value):
    """Set key in an apt configuration file.

    Only lines which mention the option already are changed, commented
    lines are uncommented. ``Automatic-Reboot`` does not touch
    ``Automatic-Reboot-Time``.
    """
    pattern = re.compile(r"^.*" + re.escape(key) + r"([ \t].*)?$", re.M)
    return pattern.sub(f'{key} "{apt_value(value)}";', text)


def show_diff(old, new, old_name, new_name):
    diff = "".join(difflib.unified_diff(old.splitlines(keepends=True),
                                        new.splitlines(keepends=True),
                                        old_name, new_name))
    if diff:
        LOGGER.info("%s", diff, color=False)
    else:
        LOGGER.info("No changes in %s", new_name)
    return diff


class ServerPreparer:
    """Run the host preparation steps.

    Args:
        config (dict): the kubestrap configuration.
        runner (callable): executes commands.
        home (str): where the unattended-upgrades backup goes.
    """

    def __init__(self, config, runner=shell.run, home=None, clock=time.time):
        self.config = config['server']
        self.run = runner
        self.home = home or os.path.expanduser("~")
        self.clock = clock

    def read(self, path):
        return self.run(["cat", path], sudo=True).stdout

    def write(self, path, text):
        self.run(["tee", path], input=text, sudo=True)

    def prepare(self, iptables=True, fail2ban=True, upgrades=True):
        if iptables:
            self.use_legacy_iptables()
        if fail2ban:
            self.install_fail2ban()
        if upgrades:
            self.configure_unattended_upgrades()
        LOGGER.success("Host preparation finished.")

    def use_legacy_iptables(self):
        LOGGER.header("Switching to legacy iptables")
        for tool in ("iptables", "ip6tables"):
            self.run(["update-alternatives", "--set", tool,
                      f"/usr/sbin/{tool}-legacy"], sudo=True)
        LOGGER.success("iptables and ip6tables use the legacy backend.")

    def install_fail2ban(self):
        """Install fail2ban and set the ban options in jail.local"""
        LOGGER.header("Installing and configuring Fail2Ban")
        opts = self.config['fail2ban']

        self.run(["apt", "update"], sudo=True)
        self.run(["apt", "install", "-y", "fail2ban"], sudo=True)

        if not self.run(["test", "-f", JAIL_LOCAL], sudo=True,
                        check=False).returncode:
            backup = f"{JAIL_LOCAL}.bak.{int(self.clock())}"
            LOGGER.info("%s already exists. Backing it up to %s...",
                        JAIL_LOCAL, backup)
            self.run(["cp", JAIL_LOCAL, backup], sudo=True)

        text = self.read(JAIL_CONF)
        for key in ("bantime", "findtime", "maxretry"):
            text = set_jail_option(text, key, opts[key])
        self.write(JAIL_LOCAL, text)
        LOGGER.success("Configured bantime, findtime and maxretry in "
                       "[DEFAULT] section.")

        self.run(["systemctl", "enable", "fail2ban"], sudo=True)
        self.run(["systemctl", "restart", "fail2ban"], sudo=True)
        self.run(["systemctl", "status", "fail2ban", "--no-pager"],
                 sudo=True, capture=False, check=False)

        LOGGER.info("Check the active jails with 'sudo fail2ban-client "
                    "status' and the SSH jail with 'sudo fail2ban-client "
                    "status sshd'.")
        LOGGER.info("Ensure the [sshd] jail is enabled in %s or in "
                    "/etc/fail2ban/jail.d/.", JAIL_LOCAL)
        return text

    def configure_unattended_upgrades(self):
        LOGGER.header("Configuring unattended-upgrades")
        opts = self.config['unattended-upgrades']

        self.run(["apt", "install", "-y", "unattended-upgrades"], sudo=True)
        self.run(["dpkg-reconfigure", "--priority=low", "unattended-upgrades"],
                 sudo=True, capture=False)

        stamp = time.strftime("%Y%m%d%H%M%S", time.localtime(self.clock()))
        backup = os.path.join(self.home, f"50unattended-upgrades.bak.{stamp}")
        LOGGER.info("Backing up current config to %s...", backup)
        user = shell.current_user()
        self.run(["cp", UNATTENDED_CONF, backup], sudo=True)
        self.run(["chown", f"{user}:{user}", backup], sudo=True)

        old = self.read(UNATTENDED_CONF)
        new = old
        for name, option in APT_OPTIONS:
            new = set_apt_option(new, option, opts[name])
        self.write(UNATTENDED_CONF, new)
        LOGGER.success("Configuration updated successfully.")

        LOGGER.info("Please review the changes made to the configuration "
                    "file:")
        show_diff(old, new, backup, UNATTENDED_CONF)

        LOGGER.info("Testing the unattended-upgrades configuration with dry "
                    "run:")
        self.run(["unattended-upgrades", "--dry-run"], sudo=True,
                 capture=False)
        return new
