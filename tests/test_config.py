"""Tests for configuration loading and the settings repository."""

from pathlib import Path

import pytest
import tomli_w

from handymemo.config import (
    CONFIG_FILENAME,
    AppConfig,
    SettingsRepository,
    get_config_dir,
    load_config,
    load_or_create_config,
    save_config,
)


class TestConfigDir:

    def test_override_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HANDYMEMO_HOME", str(tmp_path / "env"))
        assert get_config_dir(tmp_path / "cli") == (tmp_path / "cli").resolve()

    def test_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HANDYMEMO_HOME", str(tmp_path / "env"))
        assert get_config_dir() == (tmp_path / "env").resolve()

    def test_default(self, monkeypatch):
        monkeypatch.delenv("HANDYMEMO_HOME", raising=False)
        assert get_config_dir() == Path.home() / ".handymemo"


class TestLoadSave:

    def test_create_with_defaults(self, tmp_path):
        config = load_or_create_config(tmp_path / "home")
        assert (tmp_path / "home" / CONFIG_FILENAME).exists()
        assert config.root_tree_location is None
        assert config.indexing.periodic_interval_minutes == 15
        assert config.view.page_size == 20
        assert config.cache_db_path == tmp_path / "home" / "cache.db"

    def test_round_trip(self, tmp_path):
        config = AppConfig(path=tmp_path)
        config.root_tree_location = "/data/memos"
        config.share_intent_template_text = "\n#shared"
        config.indexing.onetime_delay_seconds = 1.5
        config.view.debounce_seconds = 0.1
        save_config(config)

        loaded = load_config(tmp_path)
        assert loaded.root_tree_location == "/data/memos"
        assert loaded.share_intent_template_text == "\n#shared"
        assert loaded.indexing.onetime_delay_seconds == 1.5
        assert loaded.view.debounce_seconds == 0.1
        assert loaded.created == config.created

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_newer_version_rejected(self, tmp_path):
        with open(tmp_path / CONFIG_FILENAME, "wb") as f:
            tomli_w.dump({"store": {"version": 99}}, f)
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    def test_bad_widget_id(self, tmp_path):
        with open(tmp_path / CONFIG_FILENAME, "wb") as f:
            tomli_w.dump({"widgets": {"abc": {"template_text": "x"}}}, f)
        with pytest.raises(ValueError, match="widget id"):
            load_config(tmp_path)


class TestSettingsRepository:

    def test_writes_persist(self, tmp_path):
        repo = SettingsRepository(load_or_create_config(tmp_path))
        repo.save_root_tree_location("/memos")
        repo.save_last_used_template("last")
        repo.save_share_intent_template("share")

        reloaded = SettingsRepository(load_config(tmp_path))
        assert reloaded.root_tree_location == "/memos"
        assert reloaded.last_used_template == "last"
        assert reloaded.share_intent_template == "share"

    def test_widget_config(self, tmp_path):
        repo = SettingsRepository(load_or_create_config(tmp_path))
        repo.save_widget_config(42, "Todo", "- [ ] ", 3)

        widget = SettingsRepository(load_config(tmp_path)).load_widget_config(42)
        assert widget.template_name == "Todo"
        assert widget.template_text == "- [ ] "
        assert widget.icon_id == 3

    def test_unknown_widget(self, tmp_path):
        widget = SettingsRepository(AppConfig(path=tmp_path)).load_widget_config(1)
        assert widget.template_name is None
        assert widget.template_text is None
        assert widget.icon_id is None
