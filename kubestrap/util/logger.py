"""Logging for kubestrap.

All output of the bootstrap stages goes through :class:`Logger`, a
singleton proxy around a stdout ``logging.Logger`` which decorates messages
with coloured status markers.
"""

import logging
import sys
import time

from kubestrap.util.hue import (bad, red, info as infomsg, yellow, run, grey,
                                que, good, green, bold, cyan)

LOG_LEVELS = list(range(5))
DEFAULT_LOG_LEVEL = 3

LEVEL_NAMES = {
    'quiet': 0,
    'error': 1,
    'warning': 2,
    'info': 3,
    'debug': 4}

BANNER = "=" * 68


def get_logger(name):
    """Returns a Python logger writing plain messages to STDOUT.

    Only a single handler is attached per logger name, repeated calls with
    the same name would otherwise print every message multiple times.

    Args:
        name (str): The name of the Logger.

    Returns:
        A Python Logger.
    """

    log = logging.getLogger(name)
    set_level(log, Logger.LOG_LEVEL)

    if not log.handlers:
        sh = logging.StreamHandler(sys.stdout)
        fmt = logging.Formatter("%(message)s")
        sh.setFormatter(fmt)
        log.addHandler(sh)

    return log


def set_level(logger, level):
    """Sets the logging level.

    kubestrap levels map onto the Python levels as follows: 1 is ERROR,
    2 is WARNING, 3 is INFO and 4 is DEBUG. Level 0 disables the logger.

    Args:
        logger: A Python logger object.
        level (int): The logging level.

    Raises:
        ValueError if log level is unsupported.
    """

    if level not in LOG_LEVELS:
        raise ValueError(f"log level {level} is not supported")

    logger.disabled = False
    if level == 1:
        logger.setLevel(logging.ERROR)
    elif level == 2:
        logger.setLevel(logging.WARNING)
    elif level == 3:
        logger.setLevel(logging.INFO)
    elif level == 4:
        logger.setLevel(logging.DEBUG)
    else:
        logger.disabled = True


class Singleton(type):
    """Metaclass returning the same instance for every instantiation.

    A second call re-runs ``__init__`` on the existing instance, so
    ``Logger(__name__)`` in each module rebinds the shared proxy to a
    properly configured ``logging.Logger``.

    Example:
        >>> log1 = Logger(__name__)
        >>> log2 = Logger("kubestrap")
        >>> id(log1) == id(log2)
        True
    """
    _instances = {}

    def __call__(cls, *args, **kwargs):
        if cls not in cls._instances:
            cls._instances[cls] = super(Singleton, cls).__call__(*args, **kwargs)
        else:
            cls._instances[cls].__init__(*args, **kwargs)

        return cls._instances[cls]


class Logger(metaclass=Singleton):
    """Proxy around ``logging.Logger`` with coloured status markers.

    Set ``Logger.LOG_LEVEL`` before the first instantiation, or assign to
    :attr:`level` afterwards. The levels are:

    .. code:: shell

        * 0 - quiet (no output)
        * 1 - error
        * 2 - warning
        * 3 - info
        * 4 - debug

    All functions except for :meth:`question` and :meth:`header` support
    ``f``-, ``%``-, and ``format``-style formatting.

    Example:
        >>> log = Logger(__name__)
        >>> log.info("%s %s", "hello", "world")
        [~] hello world
        >>> log.success("done")
        [+] done

    Attributes:
        LOG_LEVEL (int): The log level to be used across the application.

    Args:
        name (str): The name of the logger.
    """

    LOG_LEVEL = DEFAULT_LOG_LEVEL

    def __init__(self, name):
        self.logger = get_logger(name)

    @property
    def level(self):
        """Returns the Python log level equivalent, 0 if disabled."""
        if not self.logger:
            return None

        if self.logger.disabled:
            return 0

        return self.logger.level

    @level.setter
    def level(self, level):
        try:
            level = LEVEL_NAMES[level]
        except KeyError:
            level = int(level)

        Logger.LOG_LEVEL = level
        set_level(self.logger, level)

    def error(self, msg, *args, color=True, **kwargs):
        """Logs a message on error level, marked with ``[-]`` in red."""

        if color:
            msg = bad(red(msg))

        self.logger.error(msg, *args, **kwargs)

    def warning(self, msg, *args, color=True, **kwargs):
        """Logs a message on warning level, marked with ``[!]`` in yellow."""

        if color:
            msg = infomsg(yellow(msg))

        self.logger.warning(msg, *args, **kwargs)

    def warn(self, msg, *args, color=True, **kwargs):
        """Alias of :meth:`warning`."""

        self.warning(msg, *args, **kwargs, color=color)

    def info(self, msg, *args, color=True, **kwargs):
        """Logs a message on info level, marked with ``[~]`` in grey."""

        if color:
            msg = run(grey(msg))

        self.logger.info(msg, *args, **kwargs)

    def debug(self, msg, *args, color=True, **kwargs):
        """Logs a message on debug level, prefixed with a timestamp."""

        if color:
            now = time.strftime("%Y%m%d-%H%M%S")
            msg = grey(f"[{now}] {msg}")

        self.logger.debug(msg, *args, **kwargs)

    def success(self, msg, *args, color=True, **kwargs):
        """Logs a success on info level, marked with ``[+]`` in green."""

        if color:
            msg = good(green(msg))

        self.logger.info(msg, *args, **kwargs)

    def header(self, title, color=True):
        """Logs a banner announcing the next stage on info level.

        Example:
            >>> log.header("Installing cert-manager")
            ====================================================================
            => Installing cert-manager
            ====================================================================
        """

        lines = ["", BANNER, f"=> {title}", BANNER]
        msg = "\n".join(lines)
        if color:
            msg = bold(cyan(msg))

        self.logger.info(msg)

    @staticmethod
    def question(msg, color=True):
        """Outputs a question, unaffected by the log level.

        Example:
            >>> log.question("Deleting release 'harbor'")
            [?] Deleting release 'harbor'
        """

        if color:
            msg = que(msg)

        print(msg)

    @staticmethod
    def important(msg, *args, color=True):
        """Outputs a message which must be seen, unaffected by the log level.

        Credentials Harbor shows only once go through here.

        Example:
            >>> log.important("Robot Account Token: %s", token)
            Robot Account Token: ...
        """

        if args:
            msg = msg % args
        if color:
            msg = bold(yellow(msg))

        print(msg)
