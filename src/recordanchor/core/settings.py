"""
Central configuration for recordanchor.

A single, typed configuration object read from environment variables
(12-factor style) using pydantic-settings.

Usage:

    from recordanchor.core.settings import get_settings

    settings = get_settings()
    if settings.ledger.mode is LedgerMode.HTTP:
        ...
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from recordanchor.merkle.codec import HashAlgorithm
from recordanchor.protocol.enums import LedgerMode, StorageMode

_CONFIG = SettingsConfigDict(populate_by_name=True, extra="ignore")


class LedgerSettings(BaseSettings):
    mode: LedgerMode = Field(
        default=LedgerMode.MEMORY,
        validation_alias="RECORDANCHOR_LEDGER_MODE",
        description="Ledger collaborator: 'memory' (development) or 'http'.",
    )
    url: Optional[str] = Field(
        default=None,
        validation_alias="RECORDANCHOR_LEDGER_URL",
        description="Base URL of the ledger gateway (http mode).",
    )
    timeout: float = Field(
        default=10.0,
        validation_alias="RECORDANCHOR_LEDGER_TIMEOUT",
        description="Per-call ledger timeout in seconds.",
    )
    commit_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias="RECORDANCHOR_COMMIT_ATTEMPTS",
        description="Maximum publish attempts per batch.",
    )
    commit_backoff: float = Field(
        default=0.2,
        ge=0,
        validation_alias="RECORDANCHOR_COMMIT_BACKOFF",
        description="Initial retry delay in seconds (doubles per attempt).",
    )
    commit_max_backoff: float = Field(
        default=2.0,
        ge=0,
        validation_alias="RECORDANCHOR_COMMIT_MAX_BACKOFF",
        description="Upper bound for a single retry delay in seconds.",
    )
    signing_key_file: Optional[str] = Field(
        default=None,
        validation_alias="RECORDANCHOR_SIGNING_KEY_FILE",
        description="PEM Ed25519 private key used to sign commitments (optional).",
    )
    meta_uri_template: str = Field(
        default="reduct://anima-patients/batch-{batch_id}",
        validation_alias="RECORDANCHOR_META_URI_TEMPLATE",
        description="Template for the batch metadata locator.",
    )

    model_config = _CONFIG

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, v):
        return v.lower() if isinstance(v, str) else v

    @model_validator(mode="after")
    def _require_url_for_http(self) -> "LedgerSettings":
        if self.mode is LedgerMode.HTTP and not self.url:
            raise ValueError("RECORDANCHOR_LEDGER_URL is required when the ledger mode is 'http'")
        return self


class StorageSettings(BaseSettings):
    mode: StorageMode = Field(
        default=StorageMode.MEMORY,
        validation_alias="RECORDANCHOR_STORAGE_MODE",
        description="'memory' or 'file' (JSON files under data_dir).",
    )
    data_dir: str = Field(
        default=".recordanchor/data",
        validation_alias="RECORDANCHOR_DATA_DIR",
        description="Directory for queue, batch and record files.",
    )
    sync: bool = Field(
        default=True,
        validation_alias="RECORDANCHOR_STORAGE_SYNC",
        description="fsync every write (disable only for testing).",
    )

    model_config = _CONFIG

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, v):
        return v.lower() if isinstance(v, str) else v


class ServerSettings(BaseSettings):
    """
    HTTP server settings (FastAPI/Uvicorn).
    """

    host: str = Field(
        default="0.0.0.0",
        validation_alias="RECORDANCHOR_HTTP_HOST",
    )
    port: int = Field(
        default=8080,
        validation_alias="RECORDANCHOR_HTTP_PORT",
    )

    model_config = _CONFIG


class RuntimeSettings(BaseSettings):
    log_level: str = Field(
        default="INFO",
        validation_alias="RECORDANCHOR_LOG_LEVEL",
        description="Root log level (DEBUG/INFO/WARNING/ERROR).",
    )
    hash_algo: HashAlgorithm = Field(
        default=HashAlgorithm.SHA256,
        validation_alias="RECORDANCHOR_HASH_ALGO",
        description="Hash algorithm for leaves and nodes.",
    )

    model_config = _CONFIG

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, v):
        return (v or "INFO").upper()

    @field_validator("hash_algo", mode="before")
    @classmethod
    def _normalize_algo(cls, v):
        return v.lower() if isinstance(v, str) else v


class AnchorSettings(BaseSettings):
    """
    Root configuration object.

    Aggregates:
      - Ledger
      - Storage
      - Server
      - Runtime
    """

    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)

    model_config = _CONFIG


@lru_cache(maxsize=1)
def get_settings() -> AnchorSettings:
    """
    Cached accessor for AnchorSettings.

    Usage:
        from recordanchor.core.settings import get_settings
        settings = get_settings()
    """
    return AnchorSettings()
