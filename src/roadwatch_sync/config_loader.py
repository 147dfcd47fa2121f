"""
Hierarchical YAML configuration loader for roadwatch-sync.

Finds config files by convention, resolves ``!include`` directives,
interpolates ``${VAR}`` / ``${VAR:-default}`` from the environment and
merges the files with "project wins" semantics.

Usage:
    from roadwatch_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "ROADWATCH_SYNC_CONFIG"
PROJECT_CONFIG_DIR = ".roadwatch_sync"

# ---------------------------------------------------------------------------
# Env var interpolation
# ---------------------------------------------------------------------------

# ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Substitute ``${VAR}`` and ``${VAR:-default}`` in *value*.

    An unset or empty variable yields its default, or ``""`` when there is
    none.  An unterminated ``${`` is left as is.
    """

    def _substitute(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        current = os.environ.get(name)
        if current:
            return current
        return default if default is not None else ""

    return _ENV_VAR_PATTERN.sub(_substitute, value)


def _interpolate_tree(node: Any) -> Any:
    if isinstance(node, str):
        return interpolate_env_vars(node)
    if isinstance(node, dict):
        return {key: _interpolate_tree(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_interpolate_tree(item) for item in node]
    return node


# ---------------------------------------------------------------------------
# YAML loading with !include
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """``yaml.SafeLoader`` that understands ``!include other.yml``.

    A dedicated subclass keeps the global ``SafeLoader`` untouched.  Each
    load carries the chain of files being included so cycles are caught.
    """


def _include(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    chain: list[Path] = getattr(loader, "_include_stack", [])
    if target in chain:
        cycle = " -> ".join(str(p) for p in [*chain, target])
        raise ValueError(f"Circular include detected: {cycle}")
    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} "
            f"(referenced from {Path(loader.name).resolve()})"
        )
    return load_yaml_file(target, _include_stack=[*chain, target])


ConfigLoader.add_constructor("!include", _include)


def load_yaml_file(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    """Parse one YAML file, following ``!include`` directives."""
    path = Path(path).resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config files, highest precedence first.

    Search order:
        1. ``ROADWATCH_SYNC_CONFIG`` env var (explicit path)
        2. ``.roadwatch_sync/config.yml`` in CWD
        3. ``.roadwatch_sync/config.yaml`` in CWD
        4. ``~/.config/roadwatch_sync/config.yml``
    """
    candidates: list[Path] = []

    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())

    project_dir = Path.cwd() / PROJECT_CONFIG_DIR
    candidates.append(project_dir / "config.yml")
    candidates.append(project_dir / "config.yaml")
    candidates.append(
        Path.home() / ".config" / "roadwatch_sync" / "config.yml"
    )

    return [p for p in candidates if p.exists()]


_STARTER_CONFIG = """\
# roadwatch-sync configuration
#
# Store endpoints can also come from environment variables:
#   ROADWATCH_PRIMARY_URL, ROADWATCH_PRIMARY_TOKEN,
#   ROADWATCH_SECONDARY_URL, ROADWATCH_SECONDARY_TOKEN,
#   ROADWATCH_STATE_DIR
#
# primary:
#   kind: rest            # rest | memory
#   url: https://reports.example.org/api/sync
#   token: ${ROADWATCH_PRIMARY_TOKEN}
#
# secondary:
#   kind: rest
#   url: https://field.example.org/api/sync
#   token: ${ROADWATCH_SECONDARY_TOKEN}
#
# sync:
#   state_dir: .roadwatch_sync/state
#   run_timeout_seconds: 300
#   max_attempts: 3
#   retention_days: 30
#
# auto_sync:
#   enabled: false
#   interval_minutes: 15
#   start_time: "06:00"
#   end_time: "22:00"
#
# logging:
#   level: INFO
#   file: null
"""


def resolve_config_path() -> Path:
    """Path of the config file in use, or the project default."""
    existing = discover_config_files()
    if existing:
        return existing[0]
    return Path.cwd() / PROJECT_CONFIG_DIR / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter if none.

    Args:
        target: Where to create the starter file.  Defaults to
            ``resolve_config_path()``.
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or resolve_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load and merge every discovered config file.

    Files are applied from lowest to highest precedence and each file's
    top-level sections replace earlier ones wholesale.  Interpolation
    runs once on the merged result.  Returns ``{}`` when no file exists.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = load_yaml_file(path)
        except Exception:
            logger.exception("Failed to load config file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_tree(merged)
