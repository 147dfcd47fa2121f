"""Record store adapters for the primary and secondary stores."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import PRIMARY, SECONDARY, PingResult, RecordStoreAdapter
from .memory import InMemoryRecordAdapter
from .rest import RestRecordAdapter

if TYPE_CHECKING:
    from ..config_schema import AdapterConfig


def build_adapter(side: str, config: AdapterConfig) -> RecordStoreAdapter:
    """Create the adapter described by *config* for *side*.

    Raises:
        ValueError: If a ``rest`` adapter has no URL.
    """
    if config.kind == "memory":
        return InMemoryRecordAdapter(side)
    if not config.url:
        raise ValueError(
            f"{side} adapter of kind 'rest' needs a url. "
            f"Set {side}.url in config.yml or "
            f"ROADWATCH_{side.upper()}_URL."
        )
    return RestRecordAdapter(
        side,
        config.url,
        token=config.token,
        timeout=(config.connect_timeout, config.read_timeout),
        insecure=config.insecure,
    )


__all__ = [
    "PRIMARY",
    "SECONDARY",
    "InMemoryRecordAdapter",
    "PingResult",
    "RecordStoreAdapter",
    "RestRecordAdapter",
    "build_adapter",
]
