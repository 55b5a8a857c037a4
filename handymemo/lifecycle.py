"""
Application lifecycle tracking.

Background indexing yields to the user: an automatic pass is skipped while
the application is in the foreground. Front ends report transitions here;
the indexer only ever reads the flag.
"""

import logging
import threading

logger = logging.getLogger(__name__)


class AppLifecycle:
    """
    Process-wide foreground/background state.

    Starts in the background. Reads never block writers and vice versa.
    """

    def __init__(self, foreground: bool = False):
        self._foreground = threading.Event()
        if foreground:
            self._foreground.set()

    @property
    def is_foreground(self) -> bool:
        return self._foreground.is_set()

    def on_start(self) -> None:
        """The user started interacting with the application."""
        self._foreground.set()
        logger.debug("Lifecycle: foreground")

    def on_stop(self) -> None:
        """The application went to the background."""
        self._foreground.clear()
        logger.debug("Lifecycle: background")
