"""
Logging configuration.

Everything logs under the `mnemo` hierarchy. Fallbacks and dropped
background work carry an `[user=<id> op=<name>]` prefix (see `op_tag`)
so one user's trail can be grepped out of a shared log.
"""

import logging
import sys
from pathlib import Path

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("LiteLLM", "httpx", "aiosqlite")


def setup_logging(
    level: int | str = logging.INFO,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure the mnemo logger with console and optional file output.

    Calling it again replaces the handlers of the previous call.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger("mnemo")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Console handler (stderr, the shell owns stdout)
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    logger.addHandler(console)

    # File handler
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger."""
    return logging.getLogger(f"mnemo.{name}")


def op_tag(user_id: str, operation: str) -> str:
    return f"[user={user_id} op={operation}]"
