"""Tests for config persistence, validation and derived paths."""

from __future__ import annotations

import json

import pytest

from miniflux_offline import config as config_module
from miniflux_offline.config import (
    _dict_to_config,
    _safe_get,
    apply_config_value,
    get_download_root,
    load_config,
    save_config,
)
from miniflux_offline.models import MAX_ENTRY_LIMIT, UserConfig


class TestSafeGet:
    def test_returns_value_of_expected_type(self):
        assert _safe_get({"limit": 5}, "limit", 100, int) == 5

    def test_wrong_type_falls_back(self):
        assert _safe_get({"limit": "5"}, "limit", 100, int) == 100

    def test_bool_is_not_accepted_as_int(self):
        assert _safe_get({"limit": True}, "limit", 100, int) == 100

    def test_missing_key_uses_default(self):
        assert _safe_get({}, "api_token", "", str) == ""


class TestDictToConfig:
    def test_clamps_limit_and_prefetch(self):
        config = _dict_to_config({"limit": 50_000, "prefetch_count": -3})
        assert config.limit == MAX_ENTRY_LIMIT
        assert config.prefetch_count == 0

    def test_invalid_choices_fall_back(self):
        config = _dict_to_config({"order": "random", "direction": "sideways"})
        assert config.order == "published_at"
        assert config.direction == "desc"

    def test_garbage_scalars_use_defaults(self):
        config = _dict_to_config({"include_images": "yes", "server_address": 42})
        assert config.include_images is True
        assert config.server_address == ""


class TestLoadSave:
    def test_missing_file_returns_defaults(self, tmp_path):
        assert load_config(tmp_path / "nope.json") == UserConfig()

    def test_corrupt_file_returns_defaults(self, tmp_path, caplog):
        path = tmp_path / "config.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_config(path) == UserConfig()
        assert "invalid JSON" in caplog.text

    def test_non_object_payload_returns_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2]", encoding="utf-8")
        assert load_config(path) == UserConfig()

    def test_round_trip_preserves_fields(self, tmp_path, make_config):
        path = tmp_path / "nested" / "config.json"
        original = make_config(limit=25, include_images=False, prefetch_count=10)
        assert save_config(original, path) is True
        assert load_config(path) == original

    def test_save_leaves_no_temp_files(self, tmp_path, make_config):
        path = tmp_path / "config.json"
        save_config(make_config(), path)
        assert [p.name for p in tmp_path.iterdir()] == ["config.json"]

    def test_saved_file_is_plain_json(self, tmp_path, make_config):
        path = tmp_path / "config.json"
        save_config(make_config(), path)
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["server_address"] == "https://reader.example.com"


class TestApplyConfigValue:
    def test_sets_bool(self):
        config = UserConfig()
        assert apply_config_value(config, "include_images", "off") is None
        assert config.include_images is False

    def test_rejects_non_bool(self):
        config = UserConfig()
        assert "expects true or false" in apply_config_value(config, "include_images", "maybe")

    def test_sets_and_clamps_int(self):
        config = UserConfig()
        assert apply_config_value(config, "limit", "5000") is None
        assert config.limit == MAX_ENTRY_LIMIT

    def test_rejects_non_int(self):
        assert "expects an integer" in apply_config_value(UserConfig(), "limit", "ten")

    @pytest.mark.parametrize("key", ["version", "unknown_key"])
    def test_rejects_unknown_keys(self, key):
        assert apply_config_value(UserConfig(), key, "1") == f"Unknown setting: {key}"

    def test_sets_string(self):
        config = UserConfig()
        apply_config_value(config, "server_address", "https://rss.local")
        assert config.server_address == "https://rss.local"


class TestPaths:
    def test_download_root_override(self, tmp_path):
        config = UserConfig(download_dir=str(tmp_path / "offline"))
        assert get_download_root(config) == tmp_path / "offline"

    def test_download_root_default(self, monkeypatch, tmp_path):
        monkeypatch.setattr(config_module, "user_data_dir", lambda _name: str(tmp_path))
        assert get_download_root(UserConfig()) == tmp_path / "entries"

    def test_queue_dir_under_config_dir(self, monkeypatch, tmp_path):
        monkeypatch.setattr(config_module, "user_config_dir", lambda _name: str(tmp_path))
        assert config_module.get_queue_dir() == tmp_path / "queue"


def test_is_configured_requires_address_and_token():
    assert not UserConfig().is_configured
    assert not UserConfig(server_address="https://x", api_token="  ").is_configured
    assert UserConfig(server_address="https://x", api_token="t").is_configured
