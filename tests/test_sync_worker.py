from __future__ import annotations

import sys
import threading
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from db import StoreError
from offline_core.conflicts import SyncCancelled, SyncFailed
from offline_core.models import Conflict, ColumnType, SyncReport
from offline_core.smartsheet_gateway import CredentialsMissingError
from offline_core.sync_service import PublishError
from offline_core.sync_worker import (
    STATUS_CANCELLED,
    STATUS_CONFLICTS,
    STATUS_ERROR,
    STATUS_LOADING,
    STATUS_SUCCESS,
    SyncWorker,
)


class _StubService:
    def __init__(self, outcome=None):
        self.outcome = outcome
        self.calls = []
        self.started = threading.Event()
        self.release = None

    def sync(self, sheet_id, cancel_event=None):
        self.calls.append(sheet_id)
        self.started.set()
        if self.release is not None:
            self.release.wait(timeout=2)
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelled("cancelled")
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome or SyncReport(sheet_id=sheet_id, published_cells=1)


def _run(outcome):
    statuses = []
    worker = SyncWorker(_StubService(outcome), lambda status, result: statuses.append((status, result)))
    thread = worker.sync_now(1)
    thread.join(timeout=5)
    return statuses


def test_successful_pass_reports_loading_then_success() -> None:
    statuses = _run(None)

    assert [status for status, _ in statuses] == [STATUS_LOADING, STATUS_SUCCESS]
    assert statuses[-1][1].report.published_cells == 1


def test_conflicts_are_reported() -> None:
    conflict = Conflict(
        sheet_id=1,
        row_id=1,
        column_id=1,
        column_type=ColumnType.TEXT_NUMBER,
        server_value="a",
        local_value="b",
    )

    statuses = _run(SyncReport(sheet_id=1, conflicts=[conflict]))

    status, result = statuses[-1]
    assert status == STATUS_CONFLICTS
    assert result.report.conflicts == [conflict]


def test_failures_are_reported_as_errors() -> None:
    missing = SyncFailed("no token")
    missing.__cause__ = CredentialsMissingError("no token")

    assert _run(missing)[-1][1].message == "Sign in to Smartsheet to sync."
    assert _run(SyncFailed("offline"))[-1][0] == STATUS_ERROR
    assert _run(StoreError("disk full"))[-1][0] == STATUS_ERROR

    partial = SyncReport(sheet_id=1, published_cells=2)
    status, result = _run(PublishError("dropped", partial))[-1]
    assert status == STATUS_ERROR
    assert result.report is partial


def test_second_trigger_is_coalesced() -> None:
    service = _StubService()
    service.release = threading.Event()
    worker = SyncWorker(service)

    first = worker.sync_now(1)
    assert service.started.wait(timeout=2)

    assert worker.sync_now(1) is None
    assert worker.is_running(1)

    service.release.set()
    first.join(timeout=5)
    assert service.calls == [1]
    assert not worker.is_running(1)


def test_cancel_reports_cancelled() -> None:
    statuses = []
    service = _StubService()
    service.release = threading.Event()
    worker = SyncWorker(service, lambda status, result: statuses.append(status))

    thread = worker.sync_now(1)
    assert service.started.wait(timeout=2)
    assert worker.cancel(1) is True
    service.release.set()
    thread.join(timeout=5)

    assert statuses == [STATUS_LOADING, STATUS_CANCELLED]
    assert worker.cancel(1) is False


def test_status_callbacks_go_through_dispatcher() -> None:
    queued = []
    statuses = []
    worker = SyncWorker(
        _StubService(),
        lambda status, result: statuses.append(status),
        dispatch=queued.append,
    )

    worker.sync_now(1).join(timeout=5)
    assert statuses == []

    for callback in queued:
        callback()
    assert statuses == [STATUS_LOADING, STATUS_SUCCESS]


def test_background_loop_syncs_provided_sheets() -> None:
    done = threading.Event()
    seen = []

    def _status(status, result):
        if status == STATUS_SUCCESS:
            seen.append(result.sheet_id)
            if len(seen) == 2:
                done.set()

    worker = SyncWorker(_StubService(), _status, sheet_ids_provider=lambda: [4, 5])
    worker.start()
    try:
        assert done.wait(timeout=5)
    finally:
        worker.stop()

    assert seen == [4, 5]
