from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv
from omegaconf import MISSING, DictConfig, OmegaConf
from omegaconf.errors import MissingMandatoryValue, ValidationError

from .errors import ConfigurationError

# Load environment variables from .env file
load_dotenv()


@dataclass
class DatabaseSettings:
    url: str = MISSING
    echo: bool = False


@dataclass
class BlobSettings:
    bucket: str = MISSING
    endpoint_url: Optional[str] = None
    region: Optional[str] = None
    public_base_url: Optional[str] = None
    upload_timeout_seconds: float = 30.0
    max_file_bytes: int = 10 * 1024 * 1024
    default_content_type: str = "image/jpeg"


@dataclass
class Settings:
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    blob: BlobSettings = field(default_factory=BlobSettings)
    # Kept below the 300s platform execution limit so a clean 408 is returned.
    request_timeout_seconds: float = 280.0
    max_form_files: int = 1000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


ENVIRONMENT_KEYS: Dict[str, str] = {
    "database.url": "DATABASE_URL",
    "database.echo": "DATABASE_ECHO",
    "blob.bucket": "S3_BUCKET_NAME",
    "blob.endpoint_url": "S3_ENDPOINT_URL",
    "blob.region": "AWS_REGION",
    "blob.public_base_url": "S3_PUBLIC_BASE_URL",
    "blob.upload_timeout_seconds": "UPLOAD_TIMEOUT_SECONDS",
    "blob.max_file_bytes": "MAX_FILE_BYTES",
    "request_timeout_seconds": "REQUEST_TIMEOUT_SECONDS",
    "max_form_files": "MAX_FORM_FILES",
}


def make_runtime_config(environ: Optional[Mapping[str, str]] = None, section: Optional[str] = None) -> DictConfig:
    """Merge environment variables into the default settings, optionally only those of one section."""
    environ = os.environ if environ is None else environ
    config = OmegaConf.structured(Settings)

    for key, variable in ENVIRONMENT_KEYS.items():
        if section and not key.startswith(f"{section}."):
            continue
        value = environ.get(variable)
        if value:
            try:
                OmegaConf.update(config, key, value, merge=True)
            except ValidationError as exc:
                raise ConfigurationError(f"Invalid value for {variable}: {value!r}") from exc
    return config


def _is_missing(config: DictConfig, key: str) -> bool:
    parent, _, leaf = key.rpartition(".")
    node = OmegaConf.select(config, parent) if parent else config
    return OmegaConf.is_missing(node, leaf)


def build_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    config = make_runtime_config(environ)
    missing = sorted(variable for key, variable in ENVIRONMENT_KEYS.items() if _is_missing(config, key))
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    try:
        return OmegaConf.to_object(config)  # type: ignore[return-value]
    except MissingMandatoryValue as exc:  # pragma: no cover - guarded above
        raise ConfigurationError(str(exc)) from exc


def build_database_settings(environ: Optional[Mapping[str, str]] = None) -> DatabaseSettings:
    """Database settings alone, for tools that never touch blob storage."""
    config = make_runtime_config(environ, section="database")
    if _is_missing(config, "database.url"):
        raise ConfigurationError(f"Missing required configuration: {ENVIRONMENT_KEYS['database.url']}")
    return OmegaConf.to_object(config.database)  # type: ignore[return-value]


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    return build_settings()
