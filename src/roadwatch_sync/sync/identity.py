"""Deterministic counterpart ids.

When a record is first copied to the other store it needs an id there.
Deriving it from the source id means a run interrupted between the two
writes finds the same counterpart on retry instead of creating a twin.
"""

from __future__ import annotations

import uuid

_NAMESPACE = uuid.UUID("6f1c5c8e-2f0e-4b8a-9a57-3c1d2e7b9f40")


def secondary_id_for(primary_id: str) -> str:
    """Secondary-store id for a record created from *primary_id*."""
    return str(uuid.uuid5(_NAMESPACE, f"primary:{primary_id}"))


def primary_id_for(secondary_id: str) -> str:
    """Primary-store id for a record created from *secondary_id*."""
    return str(uuid.uuid5(_NAMESPACE, f"secondary:{secondary_id}"))
