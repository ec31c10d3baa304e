"""
Logging setup shared by the server and the CLI.

Every module logs through a child of the ``vodguard`` logger. Audit events go
to ``vodguard.audit``, which can run at its own level.
"""

from __future__ import annotations

import logging

PACKAGE_LOGGER = "vodguard"
AUDIT_LOGGER = "vodguard.audit"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(logger: logging.Logger, log_level: int) -> None:
    """Set the level and attach a single formatted StreamHandler."""
    logger.setLevel(log_level)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)


def configure_logging(log_level: int, audit_level: int | None = None) -> logging.Logger:
    """Configure the package logger once per process and return it."""
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    setup_logger(package_logger, log_level)
    logging.getLogger(AUDIT_LOGGER).setLevel(
        log_level if audit_level is None else audit_level
    )
    return package_logger
