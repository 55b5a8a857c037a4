"""
Entry points that open the editor with prepared text.

A widget tap opens the editor with the widget's template; a share action
opens it with the shared content plus the share template. Either leaves a
pending request that the front end consumes exactly once.
"""

import logging
import threading
from typing import Optional

from .config import SettingsRepository

logger = logging.getLogger(__name__)


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def combine_shared_text(
    text: Optional[str],
    subject: Optional[str] = None,
    title: Optional[str] = None,
) -> str:
    """
    Merge a share action's extras into one block of text.

    The subject wins over the title; the title goes on its own line
    above the text. Blank parts are left out.
    """
    heading = subject if not _blank(subject) else (title if not _blank(title) else None)
    parts = []
    if heading is not None:
        parts.append(heading)
        if not _blank(text):
            parts.append("\n")
    if not _blank(text):
        parts.append(text)
    return "".join(parts)


class EditorRequests:
    """Pending "open editor with this text" requests."""

    def __init__(self, settings: SettingsRepository):
        self._settings = settings
        self._pending: Optional[str] = None
        self._has_pending = False
        self._lock = threading.Lock()

    def _set_pending(self, text: Optional[str]) -> None:
        with self._lock:
            self._pending = text
            self._has_pending = True

    @property
    def has_pending(self) -> bool:
        return self._has_pending

    def on_widget_tapped(self, template_text: Optional[str]) -> None:
        """Open the editor with a widget's template (may be None)."""
        self._settings.save_last_used_template(template_text or "")
        self._set_pending(template_text)
        logger.debug("Widget tapped, template %d chars", len(template_text or ""))

    def on_widget_id_tapped(self, widget_id: int) -> Optional[str]:
        """Look up a widget's template and open the editor with it."""
        template_text = self._settings.load_widget_config(widget_id).template_text
        self.on_widget_tapped(template_text)
        return template_text

    def on_share_received(
        self,
        text: Optional[str],
        subject: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Optional[str]:
        """
        Open the editor with shared content followed by the share template.

        Returns:
            The editor text, or None if the share carried nothing
        """
        shared = combine_shared_text(text, subject, title)
        if _blank(shared):
            logger.debug("Ignoring empty share")
            return None

        template = self._settings.share_intent_template
        final_text = shared + template if not _blank(template) else shared
        self._settings.save_last_used_template(final_text)
        self._set_pending(final_text)
        logger.info("Share received, %d chars", len(final_text))
        return final_text

    def consume_pending(self) -> Optional[str]:
        """
        Take the pending editor text.

        Returns the text once; later calls return None until a new request
        arrives. A widget without a template yields None as well, so use
        ``has_pending`` to tell the cases apart before consuming.
        """
        with self._lock:
            text = self._pending
            self._pending = None
            self._has_pending = False
        return text

    def clear_last_used_template(self) -> None:
        self._settings.save_last_used_template("")
