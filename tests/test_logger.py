from unittest.mock import MagicMock

import pytest

from kubestrap.util.logger import Logger, LOG_LEVELS, DEFAULT_LOG_LEVEL


@pytest.fixture(autouse=True)
def reset_level():
    yield
    Logger.LOG_LEVEL = DEFAULT_LOG_LEVEL
    Logger("test")


def test_logger_default_state():
    assert Logger.LOG_LEVEL == DEFAULT_LOG_LEVEL


def test_logger_creation():
    for i in LOG_LEVELS:
        Logger.LOG_LEVEL = i
        log = Logger("test")
        assert log is not None
        assert log.LOG_LEVEL == i


def test_logger_fail():
    for i in [-1, 100, 23, 42]:
        Logger.LOG_LEVEL = i
        assert Logger.LOG_LEVEL == i

        with pytest.raises(ValueError):
            Logger("test")


def test_logger_is_singleton():
    assert Logger("one") is Logger("two")


def test_level_by_name():
    log = Logger("test")
    log.level = "debug"
    assert Logger.LOG_LEVEL == 4
    log.level = "quiet"
    assert log.level == 0
    log.level = "2"
    assert Logger.LOG_LEVEL == 2


def test_header():
    log = Logger("test")
    log.logger = MagicMock()
    log.header("Installing cert-manager", color=False)
    msg = log.logger.info.call_args[0][0]
    assert "=> Installing cert-manager" in msg
    assert "=" * 68 in msg


def test_quiet_disables_logger():
    Logger.LOG_LEVEL = 0
    log = Logger("test")
    assert log.logger.disabled
    assert log.level == 0


# Run tests with -s to verify the output:
# py.test -s tests/test_logger.py
def test_level_logging():
    for i in LOG_LEVELS:
        Logger.LOG_LEVEL = i
        log = Logger("test")

        msg = "The quick brown fox jumps over the lazy dog"
        msg2 = "-123.00"

        log.error(msg)
        log.error("%s: %s", msg, msg2, color=False)
        log.warning(msg)
        log.warn("%s: %s", msg, msg2, color=False)
        log.info(msg)
        log.info("%s: %s", msg, msg2, color=False)
        log.debug(msg)
        log.debug("%s: %s", msg, msg2, color=False)
        log.question(msg)
        log.success(msg)
        log.success("%s: %s", msg, msg2, color=False)


def test_important_ignores_level(capsys):
    for i in (0, 2):
        Logger.LOG_LEVEL = i
        log = Logger("test")
        log.info("hidden")
        log.important("Token: %s", "t0ken", color=False)
        assert capsys.readouterr().out == "Token: t0ken\n"
