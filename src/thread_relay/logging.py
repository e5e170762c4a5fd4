"""Logging setup helpers for thread-relay."""

from __future__ import annotations

import logging

LOGGER_NAME = "thread_relay"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(debug: bool = False) -> None:
    """Install root handlers once and set the package verbosity.

    Safe to call again after the config file is read: handlers are not duplicated,
    only the ``thread_relay`` logger level changes.
    """
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    package_logger().setLevel(logging.DEBUG if debug else logging.INFO)


def package_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)
