from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError


class Settings(BaseSettings):
    """Configuration for the media store API + cleaner.

    Values are loaded from environment variables and `.env`, then overlaid with
    an optional YAML file (see `load_settings`).

    Notes:
    - MS_UPLOAD_ROOT must be used only for files the cleaner is allowed to delete.
    - MS_DB picks the reference backend once at startup: "pg" or "mongo".
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore", frozen=True)

    # Backend selection
    MS_DB: str = Field(default="pg")

    # Storage
    MS_UPLOAD_ROOT: Path = Field(default=Path("uploads"))
    # External URL prefix of stored files; the cleaner only considers strings under it.
    MS_REFERENCE_PREFIX: str = Field(default="/uploads")

    # API
    MS_API_HOST: str = Field(default="0.0.0.0")
    MS_API_PORT: int = Field(default=8080)
    MS_MAX_UPLOAD_SIZE: int = Field(default=10 * 1024 * 1024)
    MS_MAX_STREAM_BUFFER: int = Field(default=1024 * 1024)
    MS_DEFAULT_PAGE: int = Field(default=1)
    MS_DEFAULT_SIZE: int = Field(default=40)

    # Cleaner
    MS_CLEANER_ENABLED: bool = Field(default=True)
    MS_CLEANER_INTERVAL_SECONDS: float = Field(default=24 * 60 * 60)
    # Upper bound for the scan and the filesystem walk of a single pass.
    MS_CLEANER_TIMEOUT_SECONDS: float = Field(default=15 * 60)
    MS_CLEANER_DRY_RUN: bool = Field(default=False)
    MS_SCAN_BATCH_SIZE: int = Field(default=1000)

    # PostgreSQL (MS_PG_DSN wins over the individual parts)
    MS_PG_DSN: str | None = Field(default=None)
    MS_PG_HOST: str = Field(default="localhost")
    MS_PG_PORT: int = Field(default=5432)
    MS_PG_USER: str = Field(default="postgres")
    MS_PG_PASSWORD: str = Field(default="postgres")
    MS_PG_DATABASE: str = Field(default="db")
    MS_PG_FIELD: str = Field(default="src")
    # Comma separated; YAML lists are accepted too.
    MS_PG_TABLES: str = Field(default="")
    MS_PG_CONNECT_TIMEOUT: int = Field(default=10)

    # MongoDB
    MS_MONGO_URI: str | None = Field(default=None)
    MS_MONGO_DATABASE: str | None = Field(default=None)
    MS_MONGO_COLLECTIONS: str = Field(default="")
    MS_MONGO_TIMEOUT_MS: int = Field(default=10_000)

    # Logging (stored outside the upload root)
    MS_LOG_DIR: Path = Field(default=Path("_logs"))
    MS_LOG_LEVEL: str = Field(default="INFO")
    MS_LOG_ACCESS: bool = Field(default=False)
    MS_LOG_BACKUP_COUNT: int = Field(default=14)
    # Separate history of cleaner passes and deletions; empty disables it.
    MS_CLEANER_LOG_FILE: str = Field(default="cleaner.log")

    @field_validator("MS_PG_TABLES", "MS_MONGO_COLLECTIONS", mode="before")
    @classmethod
    def _join_lists(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple)):
            return ",".join(str(x).strip() for x in v)
        return v

    @field_validator("MS_REFERENCE_PREFIX")
    @classmethod
    def _normalize_prefix(cls, v: str) -> str:
        s = "/" + str(v or "").strip().strip("/")
        if s == "/":
            raise ValueError("MS_REFERENCE_PREFIX must name a namespace, e.g. /uploads")
        return s

    @property
    def pg_tables(self) -> list[str]:
        return split_csv(self.MS_PG_TABLES)

    @property
    def mongo_collections(self) -> list[str]:
        return split_csv(self.MS_MONGO_COLLECTIONS)

    @property
    def pg_dsn(self) -> str:
        if self.MS_PG_DSN:
            return self.MS_PG_DSN
        return (
            f"postgresql://{self.MS_PG_USER}:{self.MS_PG_PASSWORD}"
            f"@{self.MS_PG_HOST}:{self.MS_PG_PORT}/{self.MS_PG_DATABASE}"
        )


def split_csv(value: str | None) -> list[str]:
    return [part.strip() for part in str(value or "").split(",") if part.strip()]


def read_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML config file into Settings keyword arguments.

    Top-level keys are matched case-insensitively against Settings fields, with
    or without the MS_ prefix (`db: mongo` and `MS_DB: mongo` are equivalent).
    Unknown keys are ignored.
    """

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")

    fields = set(Settings.model_fields)
    out: dict[str, Any] = {}
    for key, value in raw.items():
        name = str(key).strip().upper()
        if not name.startswith("MS_"):
            name = f"MS_{name}"
        if name in fields:
            out[name] = value
    return out


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Build Settings from env/.env plus the optional YAML file.

    Environment variables win over YAML keys. The upload root is created when
    missing.
    """

    path = Path(config_path or os.environ.get("MS_CONFIG_FILE") or "local.config.yaml")
    overrides: dict[str, Any] = {}
    if path.is_file():
        overrides = {k: v for k, v in read_config_file(path).items() if k not in os.environ}

    try:
        s = Settings(**overrides)
    except ValueError as e:
        raise ConfigError(str(e)) from e

    s.MS_UPLOAD_ROOT.mkdir(parents=True, exist_ok=True)
    return s
