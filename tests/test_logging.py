"""Tests for logging setup."""

import logging

import pytest

from mnemo.core.logging import get_logger, op_tag, setup_logging


@pytest.fixture(autouse=True)
def restore_mnemo_logger():
    logger = logging.getLogger("mnemo")
    level, handlers = logger.level, list(logger.handlers)
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)


def test_setup_is_repeatable(tmp_path):
    """A second call replaces handlers instead of stacking them."""
    setup_logging(logging.INFO, tmp_path / "logs" / "mnemo.log")
    logger = setup_logging(logging.INFO, tmp_path / "logs" / "mnemo.log")

    assert len(logger.handlers) == 2
    assert (tmp_path / "logs" / "mnemo.log").exists()


def test_level_from_string():
    """Settings pass level names; unknown names mean INFO."""
    assert setup_logging("debug").level == logging.DEBUG
    assert setup_logging("chatty").level == logging.INFO


def test_noisy_loggers_quieted():
    """Third-party request logs stay at WARNING even in debug mode."""
    setup_logging(logging.DEBUG)

    assert logging.getLogger("LiteLLM").level == logging.WARNING


def test_child_loggers_and_tags():
    assert get_logger("memory.patterns").name == "mnemo.memory.patterns"
    assert op_tag("user-1", "detect") == "[user=user-1 op=detect]"
