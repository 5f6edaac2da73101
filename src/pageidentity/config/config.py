"""
Configuration management for page identity using Pydantic.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, ClassVar, List, cast

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pageidentity.protocols import (
    DEFAULT_MAX_CONTENT_DISTANCE,
    DEFAULT_MAX_SOURCE_URLS,
    DEFAULT_MIN_LAYOUT_SIMILARITY,
    DEFAULT_NODE_SAMPLE_LIMIT,
    DEFAULT_QUERY_PARAM_IGNORES,
    DEFAULT_TOKEN_LIMIT,
    IdentityComparisonOptions,
)

log = logging.getLogger(__name__)


class MatchingConfig(BaseModel):
    """Thresholds used when comparing, ranking and merging identities."""

    max_content_distance: int = Field(
        default=DEFAULT_MAX_CONTENT_DISTANCE,
        ge=0,
        le=64,
        description="Maximum Hamming distance (of 64 bits) between content signatures.",
    )
    min_layout_similarity: float = Field(
        default=DEFAULT_MIN_LAYOUT_SIMILARITY,
        ge=0.0,
        le=1.0,
        description="Minimum Jaccard index between layout token sets.",
    )
    require_canonical_agreement: bool = Field(
        default=False, description="Only match when both sides declare the same canonical URL."
    )
    max_source_urls: int = Field(
        default=DEFAULT_MAX_SOURCE_URLS, ge=1, description="Literal URLs remembered per stored record."
    )
    max_layout_tokens: int = Field(
        default=DEFAULT_NODE_SAMPLE_LIMIT, ge=0, description="Layout tokens kept on a stored record."
    )

    def comparison_options(self) -> IdentityComparisonOptions:
        return IdentityComparisonOptions(
            max_content_distance=self.max_content_distance,
            min_layout_similarity=self.min_layout_similarity,
            require_canonical_agreement=self.require_canonical_agreement,
        )


class CaptureConfig(BaseModel):
    """Bounds for sampling a document during capture."""

    token_limit: int = Field(default=DEFAULT_TOKEN_LIMIT, ge=0, description="Maximum text tokens sampled.")
    node_sample_limit: int = Field(
        default=DEFAULT_NODE_SAMPLE_LIMIT, ge=0, description="Maximum text and element nodes visited."
    )
    ignore_query_params: List[str] = Field(
        default_factory=lambda: list(DEFAULT_QUERY_PARAM_IGNORES),
        description="Query parameters dropped during URL normalization.",
    )
    strip_hash: bool = Field(default=True, description="Drop the URL fragment during normalization.")
    yield_to_event_loop: bool = Field(default=True, description="Yield to the event loop before walking the DOM.")


class SQLiteConfig(BaseModel):
    """Configuration for the SQLite page identity store."""

    db_path: Path = Field(
        default_factory=lambda: Path.home() / ".pageidentity" / "identities.db",
        description="Where identity records are persisted.",
    )
    pool_size: int = Field(default=5, ge=1, description="Size of the connection pool.")
    wal_mode: bool = Field(default=True, description="Open the database in WAL journal mode.")
    busy_timeout_ms: int = Field(default=5000, ge=0, description="How long a writer waits on a locked database.")

    @field_validator("db_path", mode="before")
    @classmethod
    def ensure_db_directory(cls, v: Any) -> Path:
        db_path = Path(v)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return db_path


class StorageConfig(BaseModel):
    sqlite: SQLiteConfig = Field(default_factory=SQLiteConfig)


class MonitoringConfig(BaseModel):
    """Configuration for logging and metrics."""

    log_level: str = Field(default="INFO", description="Root log level name.")
    log_file: str | None = Field(default=None, description="Optional JSON log file; console only when unset.")
    prometheus_port: int | None = Field(default=None, description="Serve Prometheus metrics on this port when set.")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        if v.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return v.upper()

    @field_validator("log_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path | None) -> str | None:
        if v is not None:
            Path(v).parent.mkdir(parents=True, exist_ok=True)
            return str(v)
        return None


class Config(BaseSettings):
    project_name: str = "pageidentity"
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(env_prefix="PAGEID_", env_nested_delimiter="__", case_sensitive=False)

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        """Build settings from a YAML file. An empty file yields defaults."""
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"No page identity config at {path}")
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not raw:
            log.warning("Config file %s is empty; using defaults", path)
            return cls()
        return cls(**raw)


def find_config_file() -> Path | None:
    current_dir = Path.cwd()
    for path in (current_dir / "pageidentity.yaml", current_dir / "pageidentity.yml"):
        if path.exists():
            return path
    return None


class LazyConfig:
    """
    Deferred settings proxy.

    Nothing is read from disk or the environment until the first attribute
    lookup; a broken ``pageidentity.yaml`` degrades to defaults with an error
    log instead of failing at import time.
    """

    _config: ClassVar[Config | None] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __getattr__(self, name: str) -> Any:
        cls = type(self)
        if cls._config is None:
            with cls._lock:
                if cls._config is None:
                    cls._config = cls._resolve()
        return getattr(cls._config, name)

    @classmethod
    def _resolve(cls) -> Config:
        path = find_config_file()
        if path is None:
            log.debug("No pageidentity config file in %s; using defaults", Path.cwd())
        else:
            try:
                log.info("Loading page identity settings from %s", path)
                return Config.from_yaml(path)
            except (ValidationError, OSError, yaml.YAMLError) as exc:
                log.error("Ignoring unusable config file %s (%s); using defaults", path, exc)

        try:
            return Config()
        except ValidationError as exc:
            log.critical("Environment produces an invalid configuration: %s", exc, exc_info=True)
            raise RuntimeError(f"Invalid page identity configuration: {exc}") from exc


settings: "Config" = cast("Config", LazyConfig())
