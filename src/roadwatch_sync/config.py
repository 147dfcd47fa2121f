"""Runtime configuration for the sync service.

Reads store endpoints and engine settings from CLI args, environment
variables, .env files and the YAML config.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    ROADWATCH_PRIMARY_URL: Primary store API root (selects the rest adapter)
    ROADWATCH_PRIMARY_TOKEN: Primary store bearer token
    ROADWATCH_SECONDARY_URL: Secondary store API root (selects the rest adapter)
    ROADWATCH_SECONDARY_TOKEN: Secondary store bearer token
    ROADWATCH_STATE_DIR: Directory for persisted sync state
    ROADWATCH_INSECURE: Skip SSL verification (optional, default: false)
    ROADWATCH_DEBUG: Enable debug logging (optional, default: false)
    ROADWATCH_RUN_TIMEOUT: Wall-clock bound of one run in seconds (optional, default: 300)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml
from dotenv import load_dotenv

from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import (
    AdapterConfig,
    LoggingConfig,
    SyncSettings,
    UnifiedConfig,
    build_config,
)
from .sync.models import AutoSyncConfig

logger = logging.getLogger(__name__)


@dataclass
class Config:
    primary: AdapterConfig = field(default_factory=AdapterConfig)
    secondary: AdapterConfig = field(default_factory=AdapterConfig)
    sync: SyncSettings = field(default_factory=SyncSettings)
    auto_sync: AutoSyncConfig = field(default_factory=AutoSyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    debug: bool = False

    @property
    def state_dir(self) -> Path:
        return Path(self.sync.state_dir).expanduser()


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Raises:
        ValueError: If a ``rest`` store has no URL or a malformed one.
    """
    for side in ("primary", "secondary"):
        section: AdapterConfig = getattr(config, side)
        if section.kind != "rest":
            continue
        if not section.url:
            raise ValueError(
                f"{side.capitalize()} store URL not found. Set "
                f"ROADWATCH_{side.upper()}_URL, pass --{side}-url, or add "
                f"'{side}.url' to config.yml."
            )
        parsed = urlparse(section.url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError(
                f"Invalid {side} URL '{section.url}': must be an http(s) "
                "URL with a hostname"
            )
        if section.insecure:
            logger.warning(
                "WARNING: SSL verification disabled for %s store. "
                "Use only for development.",
                side,
            )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _resolve_adapter(
    side: str,
    yaml_section: AdapterConfig,
    url: str | None,
    token: str | None,
    insecure: bool,
) -> AdapterConfig:
    env_prefix = f"ROADWATCH_{side.upper()}"
    final_url = url or os.getenv(f"{env_prefix}_URL") or yaml_section.url
    final_token = (
        token or os.getenv(f"{env_prefix}_TOKEN") or yaml_section.token
    )

    if insecure:
        final_insecure = True
    else:
        env_insecure = _get_bool_env("ROADWATCH_INSECURE")
        final_insecure = (
            env_insecure if env_insecure is not None else yaml_section.insecure
        )

    # A URL from CLI or env selects the rest adapter
    kind = "rest" if (url or os.getenv(f"{env_prefix}_URL")) else yaml_section.kind

    return yaml_section.model_copy(
        update={
            "kind": kind,
            "url": final_url.strip().removesuffix("/") if final_url else None,
            "token": final_token.strip() if final_token else None,
            "insecure": final_insecure,
        }
    )


def load_config(
    primary_url: str | None = None,
    primary_token: str | None = None,
    secondary_url: str | None = None,
    secondary_token: str | None = None,
    state_dir: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    yaml_config: UnifiedConfig | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_config > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        primary_url: Override the primary store URL.
        primary_token: Override the primary store token.
        secondary_url: Override the secondary store URL.
        secondary_token: Override the secondary store token.
        state_dir: Override the state directory.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        yaml_config: Parsed YAML config, used as fallback.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a value is invalid after checking all sources.
    """
    unified = yaml_config or UnifiedConfig()

    primary = _resolve_adapter(
        "primary", unified.primary, primary_url, primary_token, insecure
    )
    secondary = _resolve_adapter(
        "secondary", unified.secondary, secondary_url, secondary_token, insecure
    )

    sync_update: dict = {}
    final_state_dir = state_dir or os.getenv("ROADWATCH_STATE_DIR")
    if final_state_dir:
        sync_update["state_dir"] = final_state_dir.strip()

    timeout_raw = os.getenv("ROADWATCH_RUN_TIMEOUT")
    if timeout_raw is not None:
        try:
            timeout = float(timeout_raw)
        except ValueError:
            raise ValueError(
                f"Invalid ROADWATCH_RUN_TIMEOUT '{timeout_raw}': must be a number of seconds"
            ) from None
        if timeout <= 0:
            raise ValueError(
                f"Invalid ROADWATCH_RUN_TIMEOUT '{timeout_raw}': must be positive"
            )
        sync_update["run_timeout_seconds"] = timeout

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("ROADWATCH_DEBUG")
        final_debug = bool(env_debug)

    config = Config(
        primary=primary,
        secondary=secondary,
        sync=unified.sync.model_copy(update=sync_update),
        auto_sync=unified.auto_sync,
        logging=unified.logging,
        debug=final_debug,
    )

    validate_config(config)

    return config


def resolve_runtime_config(
    overrides: dict[str, Any] | None = None,
) -> tuple[Config, list[str]]:
    """Merge .env, YAML files and CLI overrides into a ``Config``.

    Shared by the MCP lifespan and the CLI so both read settings the same
    way.  Loads ``.env`` first so ``${VAR}`` interpolation in YAML can see
    its values.

    Args:
        overrides: CLI values keyed like ``load_config`` parameters.

    Returns:
        Tuple of (config, human-readable list of contributing sources).

    Raises:
        ValueError: If a config file or value is invalid.
    """
    load_dotenv()

    sources: list[str] = []
    unified = None
    config_files = discover_config_files()
    if config_files:
        try:
            raw = load_hierarchical_config()
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid config file: {e}") from e
        unified = build_config(raw)
        sources.append(f"config file: {config_files[0]}")

    overrides = overrides or {}
    config = load_config(
        primary_url=overrides.get("primary_url"),
        primary_token=overrides.get("primary_token"),
        secondary_url=overrides.get("secondary_url"),
        secondary_token=overrides.get("secondary_token"),
        state_dir=overrides.get("state_dir"),
        insecure=overrides.get("insecure", False),
        debug=overrides.get("debug", False),
        yaml_config=unified,
    )

    if any(
        overrides.get(key)
        for key in (
            "primary_url",
            "primary_token",
            "secondary_url",
            "secondary_token",
            "state_dir",
            "insecure",
        )
    ):
        sources.append("CLI arguments")
    sources.append("environment variables")
    return config, sources
