"""
Error types and error logging for handymemo.

Per-file problems (unparsable memo names, broken attachment links,
thumbnail failures) are recovered where they happen. The exceptions here
cross module boundaries. Unexpected CLI errors are written with their full
traceback to a log file while the user sees a one-line message.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class MemoParseError(ValueError):
    """A memo file name or body could not be turned into a memo."""


class TreeUnavailableError(IOError):
    """The configured document tree root cannot be opened."""


class CacheCommitError(RuntimeError):
    """Installing a new cache snapshot failed; the pass may be retried."""


def _error_log_path() -> Path:
    """Resolve error log path, respecting HANDYMEMO_HOME."""
    home = os.environ.get("HANDYMEMO_HOME")
    if home:
        return Path(home) / "handymemo-errors.log"
    return Path.home() / ".handymemo" / "handymemo-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write(f" {type(exc).__name__}: {exc}\n")
            f.write("".join(traceback.format_exception(exc)))
    except OSError:
        pass  # Can't write error log, don't crash over it
    return log_path
