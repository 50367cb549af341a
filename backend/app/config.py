"""Configuration loader for the term normalization backend."""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from typing_extensions import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

LOGGER = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = REPO_ROOT / ".env"

ELASTICSEARCH_URL_ENV_VARS = (
    "JURISNORM_ELASTICSEARCH_URL",
    "ES_URL",
)


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


class _FrozenModel(BaseModel):
    """Base model enforcing immutability for config sections."""

    model_config = ConfigDict(frozen=True)


TieBreakName = Literal["lexicographic", "case_insensitive", "longest"]


class NormalizationConfig(_FrozenModel):
    """Clustering defaults and bulk rewrite limits."""

    default_threshold: float = Field(..., ge=0.0, le=1.0)
    min_threshold: float = Field(0.7, ge=0.0, le=1.0)
    max_threshold: float = Field(1.0, ge=0.0, le=1.0)
    default_cap: int = Field(..., ge=1)
    max_cap: int = Field(..., ge=1)
    tie_break: TieBreakName = "lexicographic"
    fold_diacritics: bool = False
    length_bucketing: bool = True
    lookup_limit: int = Field(10000, ge=1)
    max_concurrent_writes: int = Field(4, ge=1)
    rare_value_max_count: int = Field(1, ge=1)
    suggestion_min_similarity: float = Field(0.85, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _validate_bounds(self) -> "NormalizationConfig":
        if self.min_threshold > self.max_threshold:
            msg = "normalization.min_threshold cannot exceed normalization.max_threshold"
            raise ValueError(msg)
        if not self.min_threshold <= self.default_threshold <= self.max_threshold:
            msg = "normalization.default_threshold must lie within the threshold bounds"
            raise ValueError(msg)
        if self.default_cap > self.max_cap:
            msg = "normalization.default_cap cannot exceed normalization.max_cap"
            raise ValueError(msg)
        return self


class FieldConfig(_FrozenModel):
    """Metadata field exposed to the normalization tools."""

    key: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1)
    store_path: str = Field(..., min_length=1)


class StoreConfig(_FrozenModel):
    """Document and term catalog backend settings."""

    backend: Literal["memory", "elasticsearch"] = "memory"
    base_url: Optional[str] = Field(default=None)
    index: str = Field(..., min_length=1)
    username: Optional[str] = Field(default=None)
    password: Optional[str] = Field(default=None)
    timeout_seconds: float = Field(30.0, gt=0)
    max_terms: int = Field(10000, ge=1)
    year_field: str = Field("Data", min_length=1)
    refresh_on_update: bool = True

    @field_validator("base_url")
    @classmethod
    def _strip_base_url(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip().rstrip("/")
        return cleaned or None

    @model_validator(mode="after")
    def _require_url_for_elasticsearch(self) -> "StoreConfig":
        if self.backend == "elasticsearch" and not self.base_url:
            msg = "store.base_url is required when store.backend is 'elasticsearch'"
            raise ValueError(msg)
        return self


class APIConfig(_FrozenModel):
    """HTTP surface settings."""

    allowed_origins: List[str] = Field(default_factory=list)
    analysis_worker_count: int = Field(2, ge=1)


class AppConfig(_FrozenModel):
    """Top-level application configuration composed from config.yaml."""

    version: str = Field(..., min_length=1)
    normalization: NormalizationConfig
    fields: List[FieldConfig] = Field(..., min_length=1)
    store: StoreConfig
    api: APIConfig = Field(default_factory=APIConfig)

    @field_validator("fields")
    @classmethod
    def _ensure_unique_fields(cls, values: List[FieldConfig]) -> List[FieldConfig]:
        seen: set[str] = set()
        for entry in values:
            if entry.key in seen:
                msg = f"Duplicate field key in configuration: {entry.key}"
                raise ValueError(msg)
            seen.add(entry.key)
        return values

    def field_mapping(self) -> Dict[str, str]:
        """Return the logical field to store path mapping."""

        return {entry.key: entry.store_path for entry in self.fields}

    @staticmethod
    def default_path() -> Path:
        """Return the default location of the configuration file.

        Returns:
            Path: Absolute path to config.yaml at the repository root.
        """
        return REPO_ROOT / "config.yaml"


def _determine_env_file_path() -> Optional[Path]:
    """Return the path to the environment file if one should be loaded."""

    override = os.getenv("JURISNORM_ENV_FILE")
    if override:
        candidate = Path(override).expanduser()
        if candidate.exists():
            return candidate
        LOGGER.warning("Configured environment file override does not exist: %s", candidate)
        return None
    if DEFAULT_ENV_FILE.exists():
        return DEFAULT_ENV_FILE
    return None


def _strip_inline_comment(value: str) -> str:
    """Remove inline comments from an environment value when unquoted."""

    comment_index = value.find("#")
    if comment_index == -1:
        return value
    return value[:comment_index].rstrip()


def _load_env_file(path: Path) -> None:
    """Populate ``os.environ`` with values read from a ``.env`` file."""

    try:
        with path.open("r", encoding="utf-8") as handle:
            for raw_line in handle:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                if line.lower().startswith("export "):
                    line = line[7:].lstrip()
                if "=" not in line:
                    continue
                key, raw_value = line.split("=", 1)
                key = key.strip()
                if not key:
                    continue
                existing_value = os.environ.get(key)
                if existing_value is not None and existing_value.strip() != "":
                    continue
                value = raw_value.strip()
                if not value:
                    os.environ[key] = ""
                    continue
                if value[0] in {'"', "'"} and value[-1] == value[0]:
                    os.environ[key] = value[1:-1]
                    continue
                os.environ[key] = _strip_inline_comment(value)
    except OSError:
        LOGGER.warning("Unable to read environment file at %s", path)


def _apply_environment_overrides(raw_content: Dict[str, Any]) -> Dict[str, Any]:
    """Merge environment-based overrides into the raw configuration mapping.

    An Elasticsearch URL found in the environment switches the store backend
    to Elasticsearch. Credentials are read from ``JURISNORM_ES_USERNAME`` and
    ``JURISNORM_ES_PASSWORD``.

    Args:
        raw_content: Parsed YAML configuration prior to Pydantic validation.

    Returns:
        Dict[str, Any]: Configuration mapping with environment overrides applied.
    """

    env_file_path = _determine_env_file_path()
    if env_file_path is not None:
        _load_env_file(env_file_path)

    store_section = raw_content.setdefault("store", {})
    for key in ELASTICSEARCH_URL_ENV_VARS:
        url = (os.getenv(key) or "").strip()
        if not url:
            continue
        store_section["base_url"] = url
        store_section["backend"] = "elasticsearch"
        LOGGER.info("Elasticsearch URL overridden from environment (%s)", key)
        break
    username = os.getenv("JURISNORM_ES_USERNAME")
    if username:
        store_section["username"] = username
    password = os.getenv("JURISNORM_ES_PASSWORD")
    if password:
        store_section["password"] = password
    return raw_content


def _read_yaml(path: Path) -> Dict[str, Any]:
    """Read YAML content from disk.

    Args:
        path: Location of the YAML file.

    Returns:
        Dict[str, Any]: Parsed YAML content.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        LOGGER.error("Configuration file missing at %s", path)
        raise ConfigError("Configuration file not found") from exc
    except yaml.YAMLError as exc:
        LOGGER.error("Invalid YAML syntax in %s", path)
        raise ConfigError("Invalid YAML syntax") from exc
    if not isinstance(data, dict):
        LOGGER.error("Configuration root must be a mapping: %s", path)
        raise ConfigError("Configuration root must be a mapping")
    return data


@lru_cache(maxsize=1)
def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load application configuration from YAML.

    Args:
        path: Optional override path to the YAML file.

    Returns:
        AppConfig: Parsed configuration object.

    Raises:
        ConfigError: If the configuration cannot be loaded or validated.
    """
    config_path = path or AppConfig.default_path()
    raw_content = _read_yaml(config_path)
    raw_content = _apply_environment_overrides(raw_content)
    try:
        return AppConfig(**raw_content)
    except ValidationError as exc:
        LOGGER.error("Invalid configuration values: %s", exc)
        raise ConfigError("Configuration validation failed") from exc
