"""
Logging setup for the Bookstores service.

Uses the standard library logging module. Local and dev environments get a
human readable text format, prod gets single-line key=value records.
"""
import logging
import sys
from typing import Optional

from . import config

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
PROD_FORMAT = "time=%(asctime)s level=%(levelname)s logger=%(name)s service={service} msg=%(message)r"

_configured = False


def resolve_level(name: str) -> int:
    """
    Map a configured level name to a logging level.

    Unknown names fall back to INFO.
    """
    return LEVELS.get((name or "").lower(), logging.INFO)


def setup_logging(env: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger for the service.

    Safe to call more than once; only the first call installs a handler.

    Args:
        env: Deployment environment (defaults to config.ENV)
        level: Level name (defaults to config.LOG_LEVEL)

    Returns:
        The service logger
    """
    global _configured

    env = env or config.ENV
    root = logging.getLogger()
    root.setLevel(resolve_level(level or config.LOG_LEVEL))

    if not _configured:
        handler = logging.StreamHandler(sys.stdout)
        if env == config.ENV_PROD:
            handler.setFormatter(logging.Formatter(PROD_FORMAT.format(service=config.SERVICE_NAME)))
        else:
            handler.setFormatter(logging.Formatter(TEXT_FORMAT))
        root.addHandler(handler)
        _configured = True

    return logging.getLogger(config.SERVICE_NAME)
