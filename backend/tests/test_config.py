"""Tests for settings / secrets loading."""
import pytest
from pydantic import ValidationError

from app.config import AppConfig, StoreSettings, get_config, load_settings, reset_config, set_config


def test_defaults_when_files_missing(tmp_path):
    cfg = load_settings(tmp_path / "missing.settings.yaml", tmp_path / "missing.secrets.yaml")
    assert cfg.chat.history_limit == 200
    assert cfg.store.backend == "duckdb"
    assert cfg.store.timeout_seconds == 5.0
    assert cfg.auth.token_expire_days == 7
    assert cfg.secrets.jwt.algorithm == "HS256"


def test_settings_and_secrets_are_merged(tmp_path):
    settings_file = tmp_path / "courier.settings.yaml"
    settings_file.write_text(
        "server:\n"
        "  port: 9000\n"
        "logging:\n"
        "  level: debug\n"
        "store:\n"
        "  backend: memory\n"
        "  timeout_seconds: 0\n"
        "chat:\n"
        "  history_limit: 50\n",
        encoding="utf-8",
    )
    secrets_file = tmp_path / "courier.secrets.yaml"
    secrets_file.write_text("jwt:\n  secret_key: s3cret\n", encoding="utf-8")

    cfg = load_settings(settings_file, secrets_file)

    assert cfg.server.port == 9000
    assert cfg.logging.level == "debug"
    assert cfg.store.backend == "memory"
    assert cfg.store.timeout_seconds == 0
    assert cfg.chat.history_limit == 50
    assert cfg.secrets.jwt.secret_key == "s3cret"


def test_empty_yaml_file_uses_defaults(tmp_path):
    settings_file = tmp_path / "courier.settings.yaml"
    settings_file.write_text("", encoding="utf-8")
    cfg = load_settings(settings_file, tmp_path / "none.yaml")
    assert cfg == AppConfig()


def test_unknown_store_backend_is_rejected():
    with pytest.raises(ValidationError):
        StoreSettings(backend="postgres")


def test_negative_timeout_is_rejected():
    with pytest.raises(ValidationError):
        StoreSettings(timeout_seconds=-1)


def test_get_config_is_cached_until_reset():
    custom = AppConfig(store=StoreSettings(backend="memory", db_path="x.duckdb"))
    set_config(custom)
    assert get_config() is custom
    reset_config()
    assert get_config() is not custom
