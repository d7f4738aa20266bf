"""Uploader configuration.

Loads settings from two YAML files:
  * uploader.settings.yaml  — non-secret configuration
  * uploader.secrets.yaml   — secrets (never committed)

Relative paths (``uploads.tmp_dir``, ``storage.root``, ``expiry.db_path``)
resolve against the directory of the settings file, or against the project
root when the settings file lives in a ``config/`` directory.

Configuration is passed explicitly to the services built from it; nothing
in the pipeline looks it up on its own.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, Field, field_validator

from uploader.media.geometry import Gravity, parse_size

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("uploader.settings.yaml")
SECRETS_FILE  = Path("uploader.secrets.yaml")

MEGABYTE = 1024 * 1024


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve_path(value: str, base_dir: Path) -> str:
    path = Path(value)
    if path.is_absolute():
        return str(path)
    return str(base_dir / path)


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class AwsSecrets(BaseModel):
    access_key_id:     Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token:     Optional[str] = None


class Secrets(BaseModel):
    aws: AwsSecrets = Field(default_factory=AwsSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:  str  = "0.0.0.0"
    port:  int  = 8000
    debug: bool = False


class LoggingSettings(BaseModel):
    level: str = "info"


class UploadSettings(BaseModel):
    """Upload pipeline defaults."""
    max_size_mb:           float = Field(default=100, gt=0)
    thumb_size:            str   = "100x100"
    tmp_dir:               str   = "./tmp/uploads"
    version_workers:       int   = Field(default=4, ge=1)
    fetch_timeout_seconds: float = Field(default=30.0, gt=0)
    scan_content:          bool  = False
    default_gravity:       str   = Gravity.NORTH_EAST.value

    @field_validator("default_gravity")
    @classmethod
    def _check_gravity(cls, value: str) -> str:
        return Gravity.parse(value).value

    @field_validator("thumb_size")
    @classmethod
    def _check_thumb_size(cls, value: str) -> str:
        width, height = parse_size(value)
        if not width or not height:
            raise ValueError(f"thumb_size needs both sides, e.g. 100x100 (got {value!r})")
        return value

    @property
    def max_size_bytes(self) -> int:
        return int(self.max_size_mb * MEGABYTE)

    @property
    def thumb_dims(self) -> Tuple[int, int]:
        width, height = parse_size(self.thumb_size)
        return int(width.rstrip("?")), int(height.rstrip("?"))


class StorageSettings(BaseModel):
    backend:  Literal["local", "s3", "aws"] = "local"
    root:     str = "./public/media"
    base_url: str = "http://localhost:8000/media"


class S3Settings(BaseModel):
    bucket:     Optional[str] = None
    region:     str           = "us-west-2"
    cloudfront: Optional[str] = None
    prefix:     str           = ""


class ExpirySettings(BaseModel):
    """Scheduled deletion of temporal uploads."""
    enabled:                bool = True
    db_path:                str  = "expiry.duckdb"
    sweep_interval_seconds: int  = Field(default=60, ge=1)


class UploaderConfig(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    uploads: UploadSettings  = Field(default_factory=UploadSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    s3:      S3Settings      = Field(default_factory=S3Settings)
    expiry:  ExpirySettings  = Field(default_factory=ExpirySettings)
    secrets: Secrets         = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def _base_dir(settings_path: Path) -> Path:
    settings_dir = settings_path.resolve().parent
    if settings_dir.name == "config":
        return settings_dir.parent
    return settings_dir


def load_config(
    settings_path: Union[str, Path, None] = None,
    secrets_path: Union[str, Path, None] = None,
) -> UploaderConfig:
    """Load and merge settings + secrets into a single *UploaderConfig* object."""
    settings_path = Path(settings_path) if settings_path else SETTINGS_FILE
    secrets_path = Path(secrets_path) if secrets_path else settings_path.with_name(SECRETS_FILE.name)

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in UploaderConfig
    settings_data["secrets"] = secrets_data

    config = UploaderConfig(**settings_data)

    base_dir = _base_dir(settings_path)
    config.uploads.tmp_dir = _resolve_path(config.uploads.tmp_dir, base_dir)
    config.storage.root = _resolve_path(config.storage.root, base_dir)
    config.expiry.db_path = _resolve_path(config.expiry.db_path, base_dir)

    logger.info(
        "Settings loaded (storage=%s, max_size=%sMB, thumb=%s, expiry.enabled=%s)",
        config.storage.backend,
        config.uploads.max_size_mb,
        config.uploads.thumb_size,
        config.expiry.enabled,
    )
    return config


_config: Optional[UploaderConfig] = None


def get_config() -> UploaderConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[UploaderConfig]) -> None:
    """Set (or clear) the process-wide configuration."""
    global _config
    _config = config
