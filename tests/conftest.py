"""Shared pytest fixtures for roadwatch-sync tests."""

from pathlib import Path

import pytest

from roadwatch_sync.adapters import InMemoryRecordAdapter
from roadwatch_sync.config import Config
from roadwatch_sync.config_schema import SyncSettings
from roadwatch_sync.service import SyncService
from roadwatch_sync.sync.events import SyncEventLog
from roadwatch_sync.sync.identity import secondary_id_for
from roadwatch_sync.sync.ledger import ConflictLedger
from roadwatch_sync.sync.models import ReportPayload, ReportStatus
from roadwatch_sync.sync.state import SyncStateStore


def no_sleep(_seconds: float) -> None:
    """Backoff sleeper that returns immediately."""


def make_payload(**overrides) -> ReportPayload:
    """Build a realistic report payload."""
    defaults = {
        "description": "Pothole on RN7 near the bridge",
        "latitude": -18.91,
        "longitude": 47.52,
        "surface_m2": 3.5,
        "budget": 1200.0,
        "level": 6,
        "status": ReportStatus.NEW,
        "company": "Colas",
        "reported_by": "field-team-3",
    }
    defaults.update(overrides)
    return ReportPayload(**defaults)


@pytest.fixture
def primary() -> InMemoryRecordAdapter:
    return InMemoryRecordAdapter("primary", id_prefix="pg")


@pytest.fixture
def secondary() -> InMemoryRecordAdapter:
    return InMemoryRecordAdapter("secondary", id_prefix="fb")


@pytest.fixture
def state_store(tmp_path: Path) -> SyncStateStore:
    return SyncStateStore(tmp_path / "state")


@pytest.fixture
def ledger(state_store: SyncStateStore) -> ConflictLedger:
    return ConflictLedger(state_store)


@pytest.fixture
def events(state_store: SyncStateStore) -> SyncEventLog:
    return SyncEventLog(state_store)


@pytest.fixture
def sync_config(tmp_path: Path) -> Config:
    """Config with in-memory stores and a tmp state directory."""
    return Config(sync=SyncSettings(state_dir=str(tmp_path / "state")))


@pytest.fixture
def service(sync_config, primary, secondary):
    """SyncService over in-memory stores with instant backoff."""
    svc = SyncService(
        sync_config,
        primary=primary,
        secondary=secondary,
        sleeper=no_sleep,
    )
    yield svc
    svc.shutdown(wait=1.0)


def make_conflict(service, primary, secondary):
    """Sync one record, edit it on both stores and sync again.

    Returns the single pending conflict.
    """
    record = primary.create(make_payload())
    service.run_once()
    primary.modify(record.id, make_payload(level=2, status="in_progress"))
    secondary.modify(
        secondary_id_for(record.id), make_payload(level=9, company="Sogea")
    )
    service.run_once()
    [conflict] = service.list_conflicts()
    return conflict
