"""Stale-install detection.

The MCP server is usually launched from an editable checkout.  When the
package metadata and ``pyproject.toml`` disagree the running code is not
the code on disk, which makes sync behaviour confusing to debug, so the
server warns about it on startup.
"""

from pathlib import Path

try:
    import tomllib
except ImportError:  # Python 3.10
    import tomli as tomllib

from . import __version__

PYPROJECT_PATH = Path(__file__).resolve().parents[2] / "pyproject.toml"


def read_source_version(pyproject_path: Path = PYPROJECT_PATH) -> str | None:
    """Return ``project.version`` from *pyproject_path*, ``None`` if absent.

    Raises:
        OSError: The file exists but cannot be read.
        tomllib.TOMLDecodeError: The file is not valid TOML.
    """
    if not pyproject_path.exists():
        return None
    with open(pyproject_path, "rb") as fh:
        data = tomllib.load(fh)
    return data.get("project", {}).get("version")


def check_version_consistency(
    pyproject_path: Path = PYPROJECT_PATH,
) -> tuple[bool, str]:
    """Compare the running ``__version__`` with the checkout's version.

    Returns:
        Tuple of (is_consistent, message).  Never raises; a source tree
        that cannot be read counts as inconsistent.
    """
    try:
        source_version = read_source_version(pyproject_path)
    except (OSError, tomllib.TOMLDecodeError) as e:
        return False, f"Failed to read version from {pyproject_path}: {e}"

    if source_version is None:
        return False, f"Cannot find a project version in {pyproject_path}"

    if source_version != __version__:
        return False, (
            f"Version mismatch detected! Runtime: {__version__}, "
            f"Source: {source_version}. Installed package is stale - "
            "reinstall with: pip install -e ."
        )

    return True, f"Version verified: {__version__}"
