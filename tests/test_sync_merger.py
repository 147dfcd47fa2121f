"""Tests for field-level merge and diff utilities."""

from __future__ import annotations

from conftest import make_payload

from roadwatch_sync.sync.merger import (
    generate_diff,
    merge_payloads,
    suggest_merge,
)
from roadwatch_sync.sync.models import (
    Conflict,
    ConflictType,
    ReportPayload,
    ReportStatus,
)


class TestMergePayloads:
    """Tests for merge_payloads()."""

    def test_identical(self):
        payload = make_payload()
        result = merge_payloads(payload, payload)
        assert result.payload == payload
        assert result.is_clean

    def test_one_sided_fields_are_combined(self):
        left = ReportPayload(description="Pothole", level=6)
        right = ReportPayload(description="Pothole", company="Colas")

        result = merge_payloads(left, right)

        assert result.is_clean
        assert result.payload.level == 6
        assert result.payload.company == "Colas"

    def test_contested_field_prefers_primary(self):
        left = make_payload(level=2)
        right = make_payload(level=8)

        result = merge_payloads(left, right)

        assert result.payload.level == 2
        assert result.contested == ["level"]
        assert not result.is_clean

    def test_status_taken_from_the_side_that_moved(self):
        left = make_payload()
        right = make_payload(status=ReportStatus.COMPLETED)

        result = merge_payloads(left, right)

        assert result.payload.status == ReportStatus.COMPLETED

    def test_attributes_merged_per_key(self):
        left = make_payload(attributes={"lane": "north", "photo": 1})
        right = make_payload(attributes={"lane": "south", "night": True})

        result = merge_payloads(left, right)

        assert result.payload.attributes == {
            "lane": "north",
            "photo": 1,
            "night": True,
        }
        assert result.contested == ["attributes.lane"]

    def test_missing_side(self):
        payload = make_payload()
        assert merge_payloads(payload, None).payload == payload
        assert merge_payloads(None, payload).payload == payload
        assert merge_payloads(None, None).payload.is_empty

    def test_suggest_merge_uses_conflict_sides(self):
        conflict = Conflict(
            record_id="pg-1",
            conflict_type=ConflictType.MODIFICATION,
            left_payload=make_payload(budget=900.0),
            right_payload=make_payload(company="Sogea"),
        )

        result = suggest_merge(conflict)

        assert result.payload.budget == 900.0
        assert result.contested == ["budget", "company"]


class TestGenerateDiff:
    """Tests for generate_diff()."""

    def test_basic_diff(self):
        diff = generate_diff(make_payload(level=2), make_payload(level=8))
        assert "--- primary" in diff
        assert "+++ secondary" in diff
        assert "-level: 2" in diff
        assert "+level: 8" in diff

    def test_no_changes(self):
        payload = make_payload()
        assert generate_diff(payload, payload) == ""

    def test_deleted_side(self):
        diff = generate_diff(make_payload(), None)
        assert "+<deleted>" in diff

    def test_custom_labels(self):
        diff = generate_diff(
            make_payload(level=2),
            make_payload(level=3),
            label_old="pg-1",
            label_new="fb-1",
        )
        assert "--- pg-1" in diff
        assert "+++ fb-1" in diff
