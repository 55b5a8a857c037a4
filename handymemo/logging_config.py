"""
Logging configuration for handymemo.

Library code only creates module loggers. The CLI decides where records go:
quiet by default, stderr with --verbose, and an always-on rotating
operations log next to the cache database.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

OPS_LOG_NAME = "handymemo-ops.log"


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose output.

    Args:
        quiet: If True, only warnings and errors from handymemo reach the
            root handlers. If False, leave levels untouched.
    """
    if quiet:
        warnings.filterwarnings("ignore")
        logging.getLogger("handymemo").setLevel(logging.WARNING)
        logging.getLogger("PIL").setLevel(logging.ERROR)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger("handymemo").setLevel(logging.DEBUG)
    logging.getLogger("PIL").setLevel(logging.INFO)


def configure_ops_log(home: Path):
    """Configure a persistent operations log in the handymemo home directory.

    Writes to {home}/handymemo-ops.log using a rotating file handler
    (1MB max, 3 backups). Active regardless of --verbose.
    Returns the handler so it can be removed on close().
    """
    home = Path(home)
    home.mkdir(parents=True, exist_ok=True)
    log_path = home / OPS_LOG_NAME
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    memo_logger = logging.getLogger("handymemo")
    memo_logger.addHandler(handler)
    # Let INFO through even in quiet mode; stderr handlers filter on their own level
    if memo_logger.level == logging.NOTSET or memo_logger.level > logging.INFO:
        memo_logger.setLevel(logging.INFO)

    return handler


def remove_ops_log(handler) -> None:
    """Detach and close a handler returned by configure_ops_log()."""
    if handler is None:
        return
    logging.getLogger("handymemo").removeHandler(handler)
    handler.close()
