"""
Memo file parsing.

A memo file is ``<yyyyMMddHHmmss>.md``; the name carries the creation time
and the body is free Markdown. Parsing is pure: no tree access, no cache.
"""

from datetime import tzinfo
from typing import Optional

from .attachments import strip_attachment_markup
from .errors import MemoParseError
from .types import (
    MEMO_EXTENSION,
    MemoCacheEntry,
    MemoRecord,
    parse_memo_id,
    to_epoch_ms,
)


def memo_base_name(file_name: str) -> str:
    """Strip the memo extension from a file name (if present)."""
    return file_name.removesuffix(MEMO_EXTENSION)


def is_memo_file_name(file_name: str) -> bool:
    """Whether a file qualifies for indexing (by extension only)."""
    return file_name.endswith(MEMO_EXTENSION)


def parse_memo_file(
    base_name: str,
    text: str,
    zone: Optional[tzinfo] = None,
) -> MemoRecord:
    """
    Parse a memo from its base name and raw content.

    The creation time is the name's wall-clock time in ``zone`` (default:
    the device zone at the moment of parsing). Tags are reserved and
    always empty. Attachments are resolved separately against the tree.

    Raises:
        MemoParseError: If the base name is not a 14-digit timestamp
    """
    try:
        time = parse_memo_id(base_name, zone)
    except ValueError as e:
        raise MemoParseError(f"Invalid memo name {base_name!r}: {e}") from e

    return MemoRecord(
        id=base_name,
        time=time,
        tags=[],
        body_text=strip_attachment_markup(text),
        attachments=[],
    )


def build_cache_entry(
    path: str,
    file_name: str,
    text: str,
    zone: Optional[tzinfo] = None,
) -> MemoCacheEntry:
    """
    Build the cache row for a memo file.

    The raw text is cached unstripped so searches match link text too.

    Raises:
        MemoParseError: If the file name is not a memo timestamp
    """
    base_name = memo_base_name(file_name)
    record = parse_memo_file(base_name, text, zone)
    return MemoCacheEntry(
        path=path,
        display_name=record.id,
        created_at_ms=to_epoch_ms(record.time),
        full_text=text,
    )
