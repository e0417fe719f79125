"""Tests for configuration, entity and module-lifecycle collaborators."""

from __future__ import annotations

from pathlib import Path

import pytest

from updatekit.collaborators import (
    EXTENSION_CONFIG,
    ConfigModuleManager,
    MemoryConfigStore,
    MemoryEntityStore,
    SqliteConfigStore,
    SqliteEntityStore,
)
from updatekit.engine import ModuleInstallError, PersistenceError, StepError


@pytest.fixture(params=["memory", "sqlite"])
def any_config(request, tmp_path: Path):
    if request.param == "memory":
        return MemoryConfigStore()
    return SqliteConfigStore(tmp_path / "state.db")


@pytest.fixture(params=["memory", "sqlite"])
def any_entities(request, tmp_path: Path):
    if request.param == "memory":
        return MemoryEntityStore()
    return SqliteEntityStore(tmp_path / "state.db")


class TestConfigStore:
    def test_missing_object_is_empty(self, any_config):
        assert any_config.get("system.site") == {}

    def test_set_get_delete(self, any_config):
        any_config.set("system.site", {"name": "Hub", "page": {"front": "/stream"}})
        assert any_config.get("system.site")["page"] == {"front": "/stream"}
        assert any_config.names() == ["system.site"]
        any_config.delete("system.site")
        assert any_config.names() == []

    def test_get_returns_copy(self, any_config):
        any_config.set("theme.settings", {"colors": ["blue"]})
        data = any_config.get("theme.settings")
        data["colors"].append("red")
        assert any_config.get("theme.settings") == {"colors": ["blue"]}

    def test_update_merges(self, any_config):
        any_config.set("theme.settings", {"logo": "a.svg", "font": "serif"})
        merged = any_config.update("theme.settings", {"font": "sans"})
        assert merged == {"logo": "a.svg", "font": "sans"}
        assert any_config.get("theme.settings") == merged

    def test_sqlite_config_shares_database_with_state(self, tmp_path: Path):
        from updatekit.engine import SqliteStore

        db_path = tmp_path / "state.db"
        SqliteStore(db_path).set_watermark("core", 1)
        config = SqliteConfigStore(db_path)
        config.set("system.site", {"name": "Hub"})
        assert SqliteStore(db_path).get_watermark("core") == 1
        assert SqliteConfigStore(db_path).get("system.site") == {"name": "Hub"}

    def test_sqlite_config_unusable_directory_raises_persistence_error(self, tmp_path: Path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("", encoding="utf-8")
        with pytest.raises(PersistenceError, match="Cannot create state directory"):
            SqliteConfigStore(blocker / "state.db")


class TestEntityStore:
    def test_save_assigns_sequential_ids(self, any_entities):
        assert any_entities.save("node", {"title": "One"}) == 1
        assert any_entities.save("node", {"title": "Two"}) == 2
        assert any_entities.save("block", {"title": "Footer"}) == 1

    def test_query_filters_and_sorts(self, any_entities):
        any_entities.save("node", {"id": 9, "type": "album"})
        any_entities.save("node", {"id": 3, "type": "album"})
        any_entities.save("node", {"id": 5, "type": "post"})
        assert any_entities.query("node", type="album") == [3, 9]
        assert any_entities.query("node") == [3, 5, 9]
        assert any_entities.query("block") == []
        assert any_entities.save("node", {"type": "post"}) == 10

    def test_load_update_delete(self, any_entities):
        entity_id = any_entities.save("menu_link", {"title": "Albums"})
        record = any_entities.load("menu_link", entity_id)
        record["title"] = "Photo albums"
        any_entities.save("menu_link", record)
        assert any_entities.load("menu_link", entity_id)["title"] == "Photo albums"
        any_entities.delete("menu_link", entity_id)
        assert any_entities.load("menu_link", entity_id) is None

    def test_load_returns_copy(self, any_entities):
        entity_id = any_entities.save("node", {"tags": ["a"]})
        any_entities.load("node", entity_id)["tags"].append("b")
        assert any_entities.load("node", entity_id)["tags"] == ["a"]


class TestSqliteEntityStore:
    def test_records_survive_reopen(self, tmp_path: Path):
        db_path = tmp_path / "state.db"
        SqliteEntityStore(db_path).save("menu_link", {"title": "Albums", "menu": "main"})

        reopened = SqliteEntityStore(db_path)
        assert reopened.query("menu_link", menu="main") == [1]
        assert reopened.load("menu_link", 1) == {"id": 1, "title": "Albums", "menu": "main"}

    def test_unserialisable_record_raises_persistence_error(self, tmp_path: Path):
        entities = SqliteEntityStore(tmp_path / "state.db")
        with pytest.raises(PersistenceError):
            entities.save("node", {"handle": object()})
        assert entities.query("node") == []


class TestConfigModuleManager:
    def test_install_is_idempotent(self):
        config = MemoryConfigStore()
        manager = ConfigModuleManager(config, available=["album", "media_crop"])
        assert manager.install_modules(["media_crop", "album"]) == ["media_crop", "album"]
        assert manager.install_modules(["album"]) == []
        assert manager.installed() == ["album", "media_crop"]
        assert config.get(EXTENSION_CONFIG) == {"modules": ["album", "media_crop"]}

    def test_unavailable_module_installs_nothing(self):
        config = MemoryConfigStore()
        manager = ConfigModuleManager(config, available=["album"])
        with pytest.raises(ModuleInstallError) as excinfo:
            manager.install_modules(["album", "gallery"])
        assert excinfo.value.missing == ["gallery"]
        assert isinstance(excinfo.value, StepError)
        assert not manager.is_installed("album")
