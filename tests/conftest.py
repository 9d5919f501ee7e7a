from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import pytest

# Application directories are resolved at import time; keep test runs out of the user's home.
os.environ["SMARTSHEET_OFFLINE_HOME"] = tempfile.mkdtemp(prefix="smartsheet-offline-tests-")

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from db import LocalStore  # noqa: E402
from fakes import FakeGateway, make_snapshot  # noqa: E402
from offline_core.conflicts import ConflictEngine  # noqa: E402
from offline_core.ledger import PendingEditLedger  # noqa: E402
from offline_core.resolution import ConflictResolver  # noqa: E402
from offline_core.sync_service import SheetSyncService  # noqa: E402


@pytest.fixture
def store(tmp_path) -> LocalStore:
    return LocalStore(tmp_path / "offline.db")


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def cached_sheet(store, gateway):
    """Sheet 1 cached with Status = "Open" in row 100, mirrored on the fake server."""

    snapshot = make_snapshot({(100, 10): "Open", (100, 11): "alice", (101, 10): "Done"})
    store.save_snapshot(snapshot.id, snapshot)
    gateway.snapshots[snapshot.id] = snapshot
    return snapshot


@pytest.fixture
def ledger(store) -> PendingEditLedger:
    return PendingEditLedger(store)


@pytest.fixture
def engine(gateway, store, ledger) -> ConflictEngine:
    return ConflictEngine(gateway, store, ledger)


@pytest.fixture
def resolver(engine, ledger, store) -> ConflictResolver:
    return ConflictResolver(engine, ledger, store)


@pytest.fixture
def service(gateway, store, ledger, engine) -> SheetSyncService:
    return SheetSyncService(
        gateway,
        store,
        ledger,
        engine,
        publish_batch_size=2,
        author=("Ada", "Lovelace"),
    )
