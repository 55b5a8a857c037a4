"""
Configuration management for handymemo.

Settings live in a TOML file in the handymemo home directory
(``HANDYMEMO_HOME`` or ``~/.handymemo``). The same directory holds the
cache database, the thumbnail cache and the log files.

The file carries the user's key-value settings (root tree location,
templates), per-widget settings keyed by widget id, and tuning for
indexing and list views.
"""

import os
import threading
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w


CONFIG_FILENAME = "handymemo.toml"
CONFIG_VERSION = 1
CACHE_DB_FILENAME = "cache.db"
THUMBNAIL_DIRNAME = "thumbnails"


@dataclass
class WidgetConfig:
    """Settings for one home-screen widget."""
    template_name: Optional[str] = None
    template_text: Optional[str] = None
    icon_id: Optional[int] = None


@dataclass
class IndexingConfig:
    """Scheduling and fan-out for indexing passes."""
    onetime_delay_seconds: float = 5.0
    periodic_interval_minutes: float = 15.0
    parse_concurrency: int = 4


@dataclass
class ViewConfig:
    """List view paging and search debounce."""
    page_size: int = 20
    debounce_seconds: float = 0.3


@dataclass
class AppConfig:
    """Complete handymemo configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    root_tree_location: Optional[str] = None
    last_used_template_text: str = ""
    share_intent_template_text: str = ""
    widgets: dict[int, WidgetConfig] = field(default_factory=dict)

    indexing: IndexingConfig = field(default_factory=IndexingConfig)
    view: ViewConfig = field(default_factory=ViewConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def cache_db_path(self) -> Path:
        return self.path / CACHE_DB_FILENAME

    @property
    def thumbnail_dir(self) -> Path:
        return self.path / THUMBNAIL_DIRNAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_config_dir(override: Optional[Path] = None) -> Path:
    """
    Resolve the handymemo home directory.

    Priority:
    1. Explicit override (--home)
    2. HANDYMEMO_HOME environment variable
    3. ~/.handymemo
    """
    if override is not None:
        return Path(override).expanduser().resolve()
    env_path = os.environ.get("HANDYMEMO_HOME")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.home() / ".handymemo"


def load_config(home: Path) -> AppConfig:
    """
    Load configuration from a home directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = home / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    settings = data.get("settings", {})
    indexing = data.get("indexing", {})
    view = data.get("view", {})

    widgets: dict[int, WidgetConfig] = {}
    for key, section in data.get("widgets", {}).items():
        try:
            widget_id = int(key)
        except ValueError:
            raise ValueError(f"Invalid widget id in config: {key!r}")
        widgets[widget_id] = WidgetConfig(
            template_name=section.get("template_name"),
            template_text=section.get("template_text"),
            icon_id=section.get("icon_id"),
        )

    defaults_indexing = IndexingConfig()
    defaults_view = ViewConfig()
    return AppConfig(
        path=home,
        version=version,
        created=data.get("store", {}).get("created", ""),
        root_tree_location=settings.get("root_tree_location"),
        last_used_template_text=settings.get("last_used_template_text", ""),
        share_intent_template_text=settings.get("share_intent_template_text", ""),
        widgets=widgets,
        indexing=IndexingConfig(
            onetime_delay_seconds=float(indexing.get(
                "onetime_delay_seconds", defaults_indexing.onetime_delay_seconds)),
            periodic_interval_minutes=float(indexing.get(
                "periodic_interval_minutes", defaults_indexing.periodic_interval_minutes)),
            parse_concurrency=int(indexing.get(
                "parse_concurrency", defaults_indexing.parse_concurrency)),
        ),
        view=ViewConfig(
            page_size=int(view.get("page_size", defaults_view.page_size)),
            debounce_seconds=float(view.get("debounce_seconds", defaults_view.debounce_seconds)),
        ),
    )


def save_config(config: AppConfig) -> None:
    """
    Save configuration to the home directory.

    Creates the directory if it doesn't exist. TOML has no null, so unset
    optional values are omitted.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    def drop_none(d: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in d.items() if v is not None}

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "settings": drop_none({
            "root_tree_location": config.root_tree_location,
            "last_used_template_text": config.last_used_template_text,
            "share_intent_template_text": config.share_intent_template_text,
        }),
        "indexing": {
            "onetime_delay_seconds": config.indexing.onetime_delay_seconds,
            "periodic_interval_minutes": config.indexing.periodic_interval_minutes,
            "parse_concurrency": config.indexing.parse_concurrency,
        },
        "view": {
            "page_size": config.view.page_size,
            "debounce_seconds": config.view.debounce_seconds,
        },
    }
    if config.widgets:
        data["widgets"] = {
            str(widget_id): drop_none({
                "template_name": w.template_name,
                "template_text": w.template_text,
                "icon_id": w.icon_id,
            })
            for widget_id, w in sorted(config.widgets.items())
        }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(home: Path) -> AppConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = home / CONFIG_FILENAME

    if config_path.exists():
        return load_config(home)
    config = AppConfig(path=home)
    save_config(config)
    return config


class SettingsRepository:
    """
    Key-value settings backed by the TOML config.

    Every write is persisted immediately. Writers are serialized so the
    file is never written concurrently from two threads.
    """

    def __init__(self, config: AppConfig):
        self._config = config
        self._lock = threading.Lock()

    @property
    def config(self) -> AppConfig:
        return self._config

    def _save(self) -> None:
        save_config(self._config)

    # -- Global settings --

    @property
    def root_tree_location(self) -> Optional[str]:
        return self._config.root_tree_location

    def save_root_tree_location(self, location: str) -> None:
        with self._lock:
            self._config.root_tree_location = location
            self._save()

    @property
    def last_used_template(self) -> str:
        return self._config.last_used_template_text

    def save_last_used_template(self, template_text: str) -> None:
        with self._lock:
            self._config.last_used_template_text = template_text
            self._save()

    @property
    def share_intent_template(self) -> str:
        return self._config.share_intent_template_text

    def save_share_intent_template(self, template_text: str) -> None:
        with self._lock:
            self._config.share_intent_template_text = template_text
            self._save()

    # -- Per-widget settings --

    def save_widget_config(
        self,
        widget_id: int,
        name: str,
        template_text: str,
        icon_id: int,
    ) -> None:
        with self._lock:
            self._config.widgets[widget_id] = WidgetConfig(
                template_name=name,
                template_text=template_text,
                icon_id=icon_id,
            )
            self._save()

    def load_widget_config(self, widget_id: int) -> WidgetConfig:
        """Settings for a widget; fields are None when never configured."""
        return self._config.widgets.get(widget_id, WidgetConfig())
