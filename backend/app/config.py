"""Courier application configuration.

Loads settings from two YAML files:
  * courier.settings.yaml  - non-secret configuration
  * courier.secrets.yaml   - secrets (never committed)

Missing files are not an error; every field has a default so the service
starts with an empty working directory.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("courier.settings.yaml")
SECRETS_FILE  = Path("courier.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 4001


class LoggingSettings(BaseModel):
    level: str = "info"


class ChatSettings(BaseModel):
    """Limits for the non-real-time history surface."""
    history_limit: int = Field(default=200, ge=1)


class StoreSettings(BaseModel):
    """Message store backend.

    ``timeout_seconds`` bounds every store call; 0 disables the bound.
    """
    backend:         Literal["memory", "duckdb"] = "duckdb"
    db_path:         str                         = "messages.duckdb"
    timeout_seconds: float                       = Field(default=5.0, ge=0)


class AuthSettings(BaseModel):
    token_expire_days: int = Field(default=7, ge=1)


class AppConfig(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    chat:    ChatSettings    = Field(default_factory=ChatSettings)
    store:   StoreSettings   = Field(default_factory=StoreSettings)
    auth:    AuthSettings    = Field(default_factory=AuthSettings)
    secrets: Secrets         = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_file: Path = SETTINGS_FILE,
    secrets_file: Path = SECRETS_FILE,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object."""
    settings_data = _load_yaml(settings_file)
    secrets_data  = _load_yaml(secrets_file)

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, store.backend=%s, history_limit=%s)",
        config.server.host,
        config.server.port,
        config.store.backend,
        config.chat.history_limit,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def set_config(config: AppConfig) -> None:
    global _config
    _config = config


def reset_config() -> None:
    """Drop the cached config so the next get_config() reloads it."""
    global _config
    _config = None
