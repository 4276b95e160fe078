"""Tests for BKeeperConfig."""

import pytest
import yaml

from bkeeper.core.analysis import DEFAULT_MODEL
from bkeeper.core.config import BKeeperConfig
from bkeeper.core.errors import RecordValidationError, StorageFailure


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.delenv("BKEEPER_SUPABASE_URL", raising=False)
    monkeypatch.delenv("BKEEPER_SUPABASE_KEY", raising=False)
    return BKeeperConfig(tmp_path)


def test_defaults_when_missing(config):
    assert not config.config_file.exists()
    assert config.get("analysis_model") == DEFAULT_MODEL
    assert config.use_ai_analysis is False
    assert config.supabase_url is None
    assert config.has_remote() is False


def test_set_persists_yaml(config):
    config.set("supabase_url", "https://example.supabase.co")
    data = yaml.safe_load(config.config_file.read_text())
    assert data == {"supabase_url": "https://example.supabase.co"}
    assert BKeeperConfig(config.data_dir).supabase_url == "https://example.supabase.co"


def test_set_none_removes_key(config):
    config.set("selected_apiary", "abc")
    config.set("selected_apiary", None)
    assert "selected_apiary" not in (yaml.safe_load(config.config_file.read_text()) or {})


def test_unknown_key_rejected(config):
    with pytest.raises(RecordValidationError):
        config.set("favourite_bee", "Buckfast")


def test_ai_flag_parsed_from_text(config):
    config.set("use_ai_analysis", "ja")
    assert config.use_ai_analysis is True
    config.set("use_ai_analysis", "false")
    assert config.use_ai_analysis is False


def test_environment_overrides_file(config, monkeypatch):
    config.set("supabase_url", "https://file.supabase.co")
    config.set("supabase_key", "file-key")
    monkeypatch.setenv("BKEEPER_SUPABASE_URL", "https://env.supabase.co")

    assert config.supabase_url == "https://env.supabase.co"
    assert config.supabase_key == "file-key"
    assert config.has_remote() is True


def test_show_masks_secrets(config):
    config.set("supabase_key", "super-secret-key")
    shown = config.show()
    assert shown["supabase_key"] == "****-key"
    assert shown["analysis_model"] == DEFAULT_MODEL
    assert "supabase_refresh_token" in shown


def test_invalid_yaml_is_storage_failure(config):
    config.data_dir.mkdir(parents=True, exist_ok=True)
    config.config_file.write_text("- just\n- a list\n")
    with pytest.raises(StorageFailure):
        config.get("supabase_url")


def test_empty_file(config):
    config.data_dir.mkdir(parents=True, exist_ok=True)
    config.config_file.write_text("")
    assert config.get("selected_apiary") is None
