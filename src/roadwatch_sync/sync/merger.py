"""Field-level merge and diff utilities for conflict review.

Key design choices:

* Merge operates on **payload fields**, never on serialised text.  A
  field both sides agree on is kept; a field only one side filled in is
  taken from that side; a field both sides filled in differently is
  taken from the primary and reported as contested.
* ``generate_diff`` is a thin wrapper around ``difflib.unified_diff``
  over one ``field: value`` line per field, for display purposes
  (conflict review in the CLI and MCP tools).
"""

from __future__ import annotations

import difflib
import json
from dataclasses import dataclass, field

from .models import Conflict, ReportPayload

_DEFAULTS = ReportPayload().model_dump(mode="json")


@dataclass(frozen=True)
class MergeSuggestion:
    """Starting point for a ``custom`` resolution.

    Attributes:
        payload: The merged payload.
        contested: Fields both sides set to different values.
    """

    payload: ReportPayload
    contested: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.contested


def merge_payloads(
    left: ReportPayload | None, right: ReportPayload | None
) -> MergeSuggestion:
    """Merge two payloads field by field, preferring *left* on contest.

    Args:
        left: Primary-side payload.
        right: Secondary-side payload.

    Returns:
        A ``MergeSuggestion``.
    """
    if left is None and right is None:
        return MergeSuggestion(ReportPayload())
    if right is None:
        return MergeSuggestion(left)
    if left is None:
        return MergeSuggestion(right)

    left_data = left.model_dump(mode="json")
    right_data = right.model_dump(mode="json")
    merged: dict = {}
    contested: list[str] = []

    for name, left_value in left_data.items():
        right_value = right_data[name]
        if name == "attributes":
            merged[name], clashes = _merge_attributes(left_value, right_value)
            contested.extend(f"attributes.{key}" for key in clashes)
            continue
        if left_value == right_value:
            merged[name] = left_value
        elif right_value == _DEFAULTS[name]:
            merged[name] = left_value
        elif left_value == _DEFAULTS[name]:
            merged[name] = right_value
        else:
            merged[name] = left_value
            contested.append(name)

    return MergeSuggestion(ReportPayload.model_validate(merged), contested)


def suggest_merge(conflict: Conflict) -> MergeSuggestion:
    """Suggest a merged payload for *conflict*."""
    return merge_payloads(conflict.left_payload, conflict.right_payload)


def generate_diff(
    old: ReportPayload | None,
    new: ReportPayload | None,
    label_old: str = "primary",
    label_new: str = "secondary",
) -> str:
    """Generate a unified diff between two payloads.

    Returns:
        A unified diff string.  Empty string if the payloads are equal.
    """
    diff_lines = difflib.unified_diff(
        _payload_lines(old),
        _payload_lines(new),
        fromfile=label_old,
        tofile=label_new,
    )
    return "".join(diff_lines)


def _merge_attributes(left: dict, right: dict) -> tuple[dict, list[str]]:
    merged = dict(right)
    clashes: list[str] = []
    for key, value in left.items():
        if key in right and right[key] != value:
            clashes.append(key)
        merged[key] = value
    return merged, sorted(clashes)


def _payload_lines(payload: ReportPayload | None) -> list[str]:
    if payload is None:
        return ["<deleted>\n"]
    data = payload.model_dump(mode="json")
    return [
        f"{name}: {json.dumps(value, sort_keys=True, ensure_ascii=False)}\n"
        for name, value in data.items()
    ]
