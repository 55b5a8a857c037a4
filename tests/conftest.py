"""
Shared pytest fixtures for handymemo tests.

Builds small memo folders on disk and provides stand-ins for the
collaborators the indexer and service take by injection.
"""

from pathlib import Path
from types import SimpleNamespace

import pytest

from handymemo.cache_store import CacheStore
from handymemo.types import MemoCacheEntry

SCENARIO_MEMO_ID = "20240515120000"
SCENARIO_IMAGE = f"{SCENARIO_MEMO_ID}-0.jpg"
SCENARIO_TEXT = f"Hello ![Image](../../../images/2024/05/{SCENARIO_IMAGE})"


def write_memo(root: Path, memo_id: str, text: str, name: str | None = None) -> Path:
    """Write memos/<yyyy>/<MM>/<memo_id>.md under root and return its path."""
    directory = root / "memos" / memo_id[:4] / memo_id[4:6]
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / (name or f"{memo_id}.md")
    path.write_text(text, encoding="utf-8")
    return path


def make_entry(memo_id: str, created_at_ms: int, text: str = "", path: str | None = None) -> MemoCacheEntry:
    return MemoCacheEntry(
        path=path or f"memos/{memo_id[:4]}/{memo_id[4:6]}/{memo_id}.md",
        display_name=memo_id,
        created_at_ms=created_at_ms,
        full_text=text,
    )


class FakeLifecycle:
    """Lifecycle provider with a settable foreground flag."""

    def __init__(self, foreground: bool = False):
        self.is_foreground = foreground


@pytest.fixture
def lifecycle():
    return FakeLifecycle()


@pytest.fixture
def memo_root(tmp_path):
    """
    A memo folder holding one memo that links one existing image.

    Layout:
        memos/2024/05/20240515120000.md
        images/2024/05/20240515120000-0.jpg
    """
    root = tmp_path / "root"
    write_memo(root, SCENARIO_MEMO_ID, SCENARIO_TEXT)
    image_dir = root / "images" / "2024" / "05"
    image_dir.mkdir(parents=True)
    (image_dir / SCENARIO_IMAGE).write_bytes(b"\xff\xd8\xff\xe0fake-jpeg")
    return root


@pytest.fixture
def settings(memo_root):
    """Minimal settings object pointing at memo_root."""
    return SimpleNamespace(root_tree_location=str(memo_root))


@pytest.fixture
def store(tmp_path):
    """A fresh CacheStore in a temp directory."""
    cache = CacheStore(tmp_path / "cache" / "cache.db")
    yield cache
    cache.close()


@pytest.fixture
def home(tmp_path, monkeypatch):
    """An isolated handymemo home directory."""
    path = tmp_path / "home"
    monkeypatch.setenv("HANDYMEMO_HOME", str(path))
    return path
