"""Unified configuration schema for roadwatch-sync.

Defines Pydantic models for the YAML config structure: one section per
store, the reconciliation settings, the initial auto-sync configuration
and logging.

Usage:
    from roadwatch_sync.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from .sync.models import AutoSyncConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class AdapterConfig(BaseModel):
    """Connection settings for one record store.

    ``kind: memory`` needs nothing else and is meant for demos and dry
    wiring.  ``kind: rest`` needs a ``url``; env vars and CLI args can
    supply it at runtime instead of the YAML file.
    """

    kind: Literal["memory", "rest"] = Field(
        default="memory", description="Adapter implementation"
    )
    url: str | None = Field(default=None, description="Store API root URL")
    token: str | None = Field(default=None, description="Bearer token")
    connect_timeout: float = Field(
        default=5.0,
        gt=0,
        le=120,
        description="Connect timeout in seconds",
    )
    read_timeout: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Read timeout in seconds",
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )

    model_config = {"frozen": True}


class SyncSettings(BaseModel):
    """Reconciliation engine settings.

    Attributes:
        state_dir: Directory for state, runs, conflicts and logs.
        run_timeout_seconds: Wall-clock bound of one run.
        probe_timeout_seconds: Bound of each health probe.
        max_attempts: Write attempts per record before giving up.
        initial_backoff_seconds: First retry delay.
        backoff_multiplier: Growth factor of the retry delay.
        retention_days: Default age cut-off for ``cleanup_logs``.
    """

    state_dir: str = Field(
        default=".roadwatch_sync/state",
        description="Directory for persisted sync state",
    )
    run_timeout_seconds: float = Field(default=300.0, gt=0, le=86400)
    probe_timeout_seconds: float = Field(default=2.0, gt=0, le=60)
    max_attempts: int = Field(default=3, ge=1, le=10)
    initial_backoff_seconds: float = Field(default=0.5, ge=0, le=60)
    backoff_multiplier: float = Field(default=2.0, ge=1, le=10)
    retention_days: int = Field(default=30, ge=1, le=3650)

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` (two in-memory
    stores, auto-sync off) is always valid.  ``auto_sync`` only seeds the
    scheduler; once changed at runtime the persisted value wins.
    """

    primary: AdapterConfig = Field(default_factory=AdapterConfig)
    secondary: AdapterConfig = Field(default_factory=AdapterConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    auto_sync: AutoSyncConfig = Field(default_factory=AutoSyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_rest_urls(self) -> UnifiedConfig:
        for side in ("primary", "secondary"):
            section: AdapterConfig = getattr(self, side)
            if section.url and not section.url.startswith(
                ("http://", "https://")
            ):
                raise ValueError(
                    f"Invalid {side}.url '{section.url}': must start with "
                    "http:// or https://"
                )
        return self


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.

    Raises:
        pydantic.ValidationError: If a section is malformed.
    """
    if not raw_data:
        return UnifiedConfig()
    return UnifiedConfig(**raw_data)
