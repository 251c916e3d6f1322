"""
Tests for knowmem.config — defaults, JSON loading, validation, path precedence.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

import json

import pytest

from knowmem.config import (
    DEFAULT_DB_PATH,
    ConfigError,
    KnowledgeConfig,
    SearchConfig,
    StoreConfig,
    load_config,
    resolve_db_path,
)


class TestDefaults:
    def test_store_defaults(self):
        cfg = StoreConfig()
        assert cfg.db_path == DEFAULT_DB_PATH
        assert cfg.wal_mode is True
        assert cfg.busy_timeout_ms == 5000
        assert cfg.synchronous == "NORMAL"

    def test_search_defaults(self):
        cfg = SearchConfig()
        assert cfg.default_limit == 5
        assert cfg.max_limit == 20

    def test_defaults_valid(self):
        assert KnowledgeConfig().validate() == []


class TestLoad:
    def test_none_path(self):
        assert load_config(None) == KnowledgeConfig()

    def test_missing_file(self, tmp_path):
        assert load_config(str(tmp_path / "absent.json")) == KnowledgeConfig()

    def test_partial_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"search": {"default_limit": 3}}))
        cfg = load_config(str(path))
        assert cfg.search.default_limit == 3
        assert cfg.search.max_limit == 20
        assert cfg.store == StoreConfig()

    def test_invalid_json_falls_back(self, tmp_path, caplog):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with caplog.at_level("WARNING", logger="knowmem.config"):
            cfg = load_config(str(path))
        assert cfg == KnowledgeConfig()
        assert "Ignoring invalid config" in caplog.text

    def test_unknown_key_falls_back(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"store": {"colour": "blue"}}))
        assert load_config(str(path)) == KnowledgeConfig()


class TestValidation:
    def test_out_of_range(self):
        cfg = KnowledgeConfig(search=SearchConfig(default_limit=0, max_limit=500))
        errors = cfg.validate()
        assert len(errors) == 2
        assert any("search.max_limit" in e for e in errors)

    def test_default_above_max(self):
        errors = SearchConfig(default_limit=10, max_limit=5).validate()
        assert errors == ["search.default_limit: 10 exceeds max_limit 5"]

    def test_bad_synchronous(self):
        errors = StoreConfig(synchronous="sometimes").validate()
        assert len(errors) == 1 and "store.synchronous" in errors[0]

    def test_wrong_type(self):
        errors = StoreConfig(busy_timeout_ms="slow").validate()
        assert errors == ["store.busy_timeout_ms: expected int, got str"]

    def test_strict_raises(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"store": {"busy_timeout_ms": -1}}))
        with pytest.raises(ConfigError, match="busy_timeout_ms"):
            load_config(str(path), strict=True)

    def test_lenient_resets_invalid_store(self, tmp_path, caplog):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "store": {"busy_timeout_ms": -1, "db_path": "/cfg/memory.db"},
            "search": {"default_limit": 3},
        }))
        with caplog.at_level("WARNING", logger="knowmem.config"):
            cfg = load_config(str(path))
        assert cfg.store == StoreConfig(db_path="/cfg/memory.db")
        assert cfg.search.default_limit == 3
        assert "store.busy_timeout_ms" in caplog.text

    def test_lenient_resets_invalid_search(self, tmp_path, caplog):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"search": {"max_limit": 0}}))
        with caplog.at_level("WARNING", logger="knowmem.config"):
            cfg = load_config(str(path))
        assert cfg.search == SearchConfig()
        assert "search.max_limit" in caplog.text


class TestResolveDbPath:
    def test_explicit_wins(self, monkeypatch):
        monkeypatch.setenv("KNOWMEM_DB", "/env/memory.db")
        assert resolve_db_path("/flag/memory.db") == "/flag/memory.db"

    def test_env_over_config(self, monkeypatch):
        monkeypatch.setenv("KNOWMEM_DB", "/env/memory.db")
        cfg = KnowledgeConfig(store=StoreConfig(db_path="/cfg/memory.db"))
        assert resolve_db_path(None, cfg) == "/env/memory.db"

    def test_config_over_default(self, monkeypatch):
        monkeypatch.delenv("KNOWMEM_DB", raising=False)
        cfg = KnowledgeConfig(store=StoreConfig(db_path="/cfg/memory.db"))
        assert resolve_db_path(None, cfg) == "/cfg/memory.db"

    def test_default(self, monkeypatch):
        monkeypatch.delenv("KNOWMEM_DB", raising=False)
        assert resolve_db_path() == DEFAULT_DB_PATH
