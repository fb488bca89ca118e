"""
shell.py
========

Run the external tools the bootstrap stages depend on: ``snap``,
``microk8s``, ``helm``, ``apt``, ``gh`` and friends.

Every call goes through :func:`run` so that a failing command always
surfaces as :class:`CommandError` with its exit code and stderr.
"""
import getpass
import grp
import os
import pwd
import shlex
import shutil
import subprocess as sp

from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)


class CommandError(RuntimeError):
    """An external command failed or is not installed"""

    def __init__(self, cmd, returncode=None, stderr=""):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        msg = "error calling '%s'" % " ".join(cmd) if isinstance(cmd, list) else cmd
        if returncode is not None:
            msg += " (exit code %s)" % returncode
        if self.stderr:
            msg += ": %s" % self.stderr
        super().__init__(msg)


def split(cmd):
    """return cmd as argument list"""
    if isinstance(cmd, str):
        return shlex.split(cmd)
    return list(cmd)


def run(cmd, check=True, input=None, capture=True, sudo=False):  # pylint: disable=redefined-builtin
    """Run a command and wait for it.

    Args:
        cmd (str or list): the command, strings are split with ``shlex``.
        check (bool): raise :class:`CommandError` on a non-zero exit code.
        input (str): passed to the command's stdin.
        capture (bool): capture stdout and stderr instead of letting them
            through to the terminal.
        sudo (bool): prefix the command with ``sudo`` unless we are root.

    Returns:
        ``subprocess.CompletedProcess`` with text output.
    """
    args = split(cmd)
    if sudo and os.geteuid() != 0:
        args = ["sudo"] + args

    LOGGER.debug("Running: %s", " ".join(args))
    try:
        proc = sp.run(args,
                      input=input,
                      encoding="utf-8",
                      stdout=sp.PIPE if capture else None,
                      stderr=sp.PIPE if capture else None,
                      check=False)
    except FileNotFoundError:
        raise CommandError(args, stderr=f"{args[0]}: command not found")

    if proc.stdout:
        LOGGER.debug("STDOUT: %s (Exit code %s)", proc.stdout.strip(),
                     proc.returncode)

    if check and proc.returncode:
        raise CommandError(args, proc.returncode, proc.stderr)

    return proc


def missing_tools(*names):
    """Return the names of all tools which are not on the PATH.

    A name may be a full command line like ``microk8s kubectl``, only the
    executable is looked up.
    """
    return [name for name in names if not shutil.which(split(name)[0])]


def check_deps(*names):
    """Make sure all tools are installed.

    Raises:
        CommandError naming every missing tool.
    """
    missing = missing_tools(*names)
    if missing:
        raise CommandError(
            "check dependencies",
            stderr=("The following required tools are not installed or not "
                    "in your PATH: %s. Please install them to continue."
                    % ", ".join(missing)))
    LOGGER.info("All dependencies found: %s", ", ".join(names))


def current_user():
    """The login name of the user running kubestrap"""
    return getpass.getuser()


def in_group(user, group):
    """Check if user is an *active* member of group.

    This looks at the groups of the running process, since a fresh
    ``usermod -aG`` only takes effect in a new login session.
    """
    try:
        gid = grp.getgrnam(group).gr_gid
    except KeyError:
        return False

    if gid in os.getgroups():
        return True

    try:
        return pwd.getpwnam(user).pw_gid == gid and os.getgid() == gid
    except KeyError:
        return False


def reexec_with_group(group, argv):  # pragma: no coverage
    """Replace the running process with ``sg group -c argv``.

    The new process has the group membership of a fresh login, so the
    current command continues with the correct permissions.
    """
    cmd = " ".join(shlex.quote(arg) for arg in argv)
    LOGGER.info("Group membership updated. Re-executing with new permissions...")
    os.execvp("sg", ["sg", group, "-c", cmd])
