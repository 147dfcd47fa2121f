"""Tests for InMemoryRecordAdapter -- clocks, tombstones, injected failures."""

from __future__ import annotations

import pytest
from conftest import make_payload

from roadwatch_sync.adapters import InMemoryRecordAdapter, build_adapter
from roadwatch_sync.config_schema import AdapterConfig
from roadwatch_sync.sync.errors import AdapterError
from roadwatch_sync.sync.models import SyncableRecord


class TestNativeEdits:
    def test_create_bumps_clock(self, primary):
        first = primary.create(make_payload())
        second = primary.create(make_payload())
        assert (first.id, second.id) == ("pg-1", "pg-2")
        assert (first.revision, second.revision) == (1, 2)

    def test_modify_bumps_revision(self, primary):
        record = primary.create(make_payload())
        updated = primary.modify(record.id, make_payload(level=9))
        assert updated.revision == 2
        assert primary.get(record.id).payload.level == 9

    def test_remove_tombstones(self, primary):
        record = primary.create(make_payload())
        dead = primary.remove(record.id)
        assert dead.is_tombstone
        assert dead.revision == 2
        assert primary.get(record.id).is_tombstone


class TestAdapterProtocol:
    def test_upsert_keeps_caller_revision(self, secondary):
        record = SyncableRecord(id="fb-x", revision=40, payload=make_payload())
        secondary.upsert(record)

        assert secondary.get("fb-x").revision == 40
        # Later native edits continue from the copied revision
        assert secondary.create(make_payload()).revision == 41

    def test_list_changed_since(self, primary):
        primary.create(make_payload())
        second = primary.create(make_payload())
        assert [r.id for r in primary.list_changed_since(1)] == [second.id]

    def test_get_by_external_id(self, primary):
        primary.create(make_payload(), external_id="fb-7")
        assert primary.get_by_external_id("fb-7").id == "pg-1"
        assert primary.get_by_external_id("fb-8") is None

    def test_delete_at_revision(self, primary):
        record = primary.create(make_payload())
        dead = primary.delete(record.id, revision=12)
        assert dead.revision == 12
        assert dead.is_tombstone

    def test_delete_missing(self, primary):
        assert primary.delete("pg-404") is None


class TestFailureInjection:
    def test_offline(self, primary):
        primary.online = False
        with pytest.raises(AdapterError):
            primary.get("pg-1")
        assert primary.ping().connected is False

    def test_fail_next_writes(self, secondary):
        secondary.fail_next_writes = 1
        record = SyncableRecord(id="fb-1", payload=make_payload())

        with pytest.raises(AdapterError, match="transient"):
            secondary.upsert(record)
        secondary.upsert(record)

        assert secondary.write_count == 1

    def test_failing_ids(self, secondary):
        secondary.failing_ids.add("fb-1")
        with pytest.raises(AdapterError, match="rejected"):
            secondary.upsert(SyncableRecord(id="fb-1"))


def test_build_adapter_memory():
    adapter = build_adapter("primary", AdapterConfig())
    assert isinstance(adapter, InMemoryRecordAdapter)
    assert adapter.name == "primary"
