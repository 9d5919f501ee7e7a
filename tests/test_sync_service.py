from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from fakes import OWNER_COLUMN, STATUS_COLUMN, FakeGateway, drop_row, make_snapshot
from offline_core.conflicts import ConflictEngine, SyncCancelled, SyncFailed
from offline_core.models import Column, ColumnType, Contact, SheetSummary
from offline_core.smartsheet_gateway import GatewayServerError, GatewayUnavailableError
from offline_core.sync_service import PublishError, SheetNotCached, SheetSyncService

ROWS = (100, 101, 102, 103, 104)


@pytest.fixture
def wide_sheet(store, gateway):
    snapshot = make_snapshot({(row_id, STATUS_COLUMN): "Open" for row_id in ROWS}, row_ids=ROWS)
    store.save_snapshot(snapshot.id, snapshot)
    gateway.snapshots[snapshot.id] = snapshot
    return snapshot


@pytest.fixture
def typed_sheet(store, gateway):
    columns = (
        Column(id=1, index=0, title="Name", primary=True),
        Column(id=2, index=1, title="Stage", type=ColumnType.PICKLIST, options=("New", "Done")),
        Column(id=3, index=2, title="Flag", type=ColumnType.CHECKBOX),
        Column(id=4, index=3, title="Owner", type=ColumnType.CONTACT_LIST),
        Column(id=5, index=4, title="Tags", type=ColumnType.MULTI_PICKLIST, options=("Red", "Green", "Blue")),
    )
    snapshot = make_snapshot({(100, 1): "Widget", (100, 2): "New"}, sheet_id=3, row_ids=(100,), columns=columns)
    store.save_snapshot(3, snapshot)
    gateway.snapshots[3] = snapshot
    return snapshot


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


def test_sync_publishes_in_row_batches(service, gateway, ledger, store, wide_sheet) -> None:
    for row_id in ROWS:
        service.edit_cell(1, row_id, STATUS_COLUMN, f"Closed {row_id}")

    report = service.sync(1)

    assert [[edit.row_id for edit in batch] for _, batch in gateway.updates] == [[100, 101], [102, 103], [104]]
    assert report.published_cells == 5
    assert report.refreshed is True
    assert ledger.list_edits(1) == []
    assert store.cached_cell_value(1, 104, STATUS_COLUMN) == "Closed 104"


def test_sync_without_changes_publishes_nothing(service, gateway, cached_sheet) -> None:
    report = service.sync(1)

    assert gateway.updates == []
    assert report.published_cells == 0
    assert report.refreshed is False
    assert report.blocked is False


def test_conflicts_block_publishing(service, gateway, ledger, cached_sheet) -> None:
    service.edit_cell(1, 100, STATUS_COLUMN, "Closed")
    service.edit_cell(1, 101, STATUS_COLUMN, "Reopened")
    gateway.set_server_value(1, 100, STATUS_COLUMN, "In Progress")

    report = service.sync(1)

    assert report.blocked is True
    assert [conflict.row_id for conflict in report.conflicts] == [100]
    assert gateway.updates == []
    assert len(ledger.list_edits(1)) == 2


def test_failed_batch_keeps_unpublished_edits(service, gateway, ledger, wide_sheet) -> None:
    for row_id in ROWS:
        service.edit_cell(1, row_id, STATUS_COLUMN, "Closed")
    gateway.fail_update_after = 1

    with pytest.raises(PublishError) as excinfo:
        service.sync(1)

    assert excinfo.value.report.published_cells == 2
    assert [edit.row_id for edit in ledger.list_edits(1)] == [102, 103, 104]
    assert isinstance(excinfo.value.__cause__, GatewayUnavailableError)


def test_retry_after_failure_publishes_the_rest(service, gateway, ledger, wide_sheet) -> None:
    for row_id in ROWS:
        service.edit_cell(1, row_id, STATUS_COLUMN, "Closed")
    gateway.fail_update_after = 1
    with pytest.raises(PublishError):
        service.sync(1)

    gateway.fail_update_after = None
    report = service.sync(1)

    assert report.published_cells == 3
    assert ledger.list_edits(1) == []


def test_unreachable_server_raises_sync_failed(service, gateway, ledger, cached_sheet) -> None:
    service.edit_cell(1, 100, STATUS_COLUMN, "Closed")
    gateway.fetch_error = GatewayUnavailableError("offline")

    with pytest.raises(SyncFailed):
        service.sync(1)

    assert len(ledger.list_edits(1)) == 1


def test_cancelled_sync_publishes_nothing(service, gateway, cached_sheet) -> None:
    service.edit_cell(1, 100, STATUS_COLUMN, "Closed")
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(SyncCancelled):
        service.sync(1, cancel_event=cancel)

    assert gateway.updates == []


def test_kept_edit_for_deleted_row_is_dropped(service, gateway, ledger, resolver, engine, cached_sheet) -> None:
    service.edit_cell(1, 101, OWNER_COLUMN, "carol")
    service.edit_cell(1, 100, STATUS_COLUMN, "Closed")
    gateway.snapshots[1] = drop_row(gateway.snapshots[1], 101)
    [conflict] = engine.check_for_conflicts(1)
    resolver.resolve(conflict, choose_local=True)

    report = service.sync(1)

    assert report.dropped_cells == 1
    assert report.published_cells == 1
    assert [[edit.row_id for edit in batch] for _, batch in gateway.updates] == [[100]]
    assert ledger.list_edits(1) == []


def test_edit_made_during_publish_stays_pending(store, ledger, cached_sheet) -> None:
    class _RacingGateway(FakeGateway):
        def update_cells(self, sheet_id, edits):
            ledger.record_edit(1, 100, STATUS_COLUMN, ColumnType.TEXT_NUMBER, "Newer")
            return super().update_cells(sheet_id, edits)

    racing = _RacingGateway()
    racing.snapshots[1] = cached_sheet
    racing_engine = ConflictEngine(racing, store, ledger)
    service = SheetSyncService(racing, store, ledger, racing_engine)
    service.edit_cell(1, 100, STATUS_COLUMN, "Closed")

    service.sync(1)

    [edit] = ledger.list_edits(1)
    assert edit.new_value == "Newer"
    assert edit.baseline == "Open"


def test_comments_are_posted_and_cleared(service, gateway, ledger, cached_sheet) -> None:
    service.add_comment(1, "Row note", row_id=100)
    service.add_comment(1, "Sheet note")

    report = service.sync(1)

    assert report.published_discussions == 2
    assert [(d.parent_type.value, d.parent_id) for d in gateway.discussions] == [("ROW", 100), ("SHEET", 1)]
    assert gateway.discussions[0].author_name == "Ada Lovelace"
    assert ledger.list_discussions(1) == []


def test_failed_comment_stays_pending(service, gateway, ledger, cached_sheet) -> None:
    service.add_comment(1, "Row note", row_id=100)
    gateway.discussion_error = GatewayServerError("rejected")

    with pytest.raises(PublishError):
        service.sync(1)

    assert [d.text for d in ledger.list_discussions(1)] == ["Row note"]


def test_sync_log_callback_receives_messages(gateway, store, ledger, engine, cached_sheet) -> None:
    messages = []
    service = SheetSyncService(gateway, store, ledger, engine, log_callback=messages.append)
    service.edit_cell(1, 100, STATUS_COLUMN, "Closed")

    service.sync(1)

    assert any("published 1 cell" in message for message in messages)


# ---------------------------------------------------------------------------
# Local changes
# ---------------------------------------------------------------------------


def test_edit_cell_validates_targets(service, typed_sheet) -> None:
    with pytest.raises(ValueError):
        service.edit_cell(3, 100, 99, "x")
    with pytest.raises(ValueError):
        service.edit_cell(3, 555, 1, "x")
    with pytest.raises(SheetNotCached):
        service.edit_cell(404, 100, 1, "x")


def test_edit_cell_encodes_by_column_type(service, typed_sheet) -> None:
    assert service.edit_cell(3, 100, 2, "Done").new_value == "Done"
    assert service.edit_cell(3, 100, 3, "yes").new_value == "true"

    contact = service.edit_cell(3, 100, 4, None, contacts=[Contact(email="ann@example.com", name="Ann")])
    assert contact.new_value == "Ann"
    assert contact.contacts == (Contact(email="ann@example.com", name="Ann"),)
    assert contact.sheet_name == "Tasks"

    with pytest.raises(ValueError):
        service.edit_cell(3, 100, 2, "Someday")


def test_edit_cell_accepts_several_multi_picklist_options(service, typed_sheet) -> None:
    assert service.edit_cell(3, 100, 5, "Red,Blue").new_value == "Red, Blue"
    assert service.edit_cell(3, 100, 5, "Green").new_value == "Green"

    with pytest.raises(ValueError):
        service.edit_cell(3, 100, 5, "Red, Purple")


def test_sheet_view_overlays_pending_values(service, store, cached_sheet) -> None:
    service.edit_cell(1, 100, STATUS_COLUMN, "Closed")
    service.edit_cell(1, 101, OWNER_COLUMN, "bob")

    view = service.sheet_view(1)

    assert view.row(100).cell(STATUS_COLUMN).value == "Closed"
    assert view.row(101).cell(OWNER_COLUMN).value == "bob"
    assert store.cached_cell_value(1, 100, STATUS_COLUMN) == "Open"


def test_discard_local_changes(service, engine, gateway, ledger, cached_sheet) -> None:
    service.edit_cell(1, 100, STATUS_COLUMN, "Closed")
    service.add_comment(1, "note")
    gateway.set_server_value(1, 100, STATUS_COLUMN, "In Progress")
    engine.check_for_conflicts(1)

    assert service.discard_local_changes(1) == 2
    assert engine.conflicts(1) == []
    assert ledger.has_updates(1) is False


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def test_load_sheet_online_caches_snapshot(service, gateway, store) -> None:
    gateway.snapshots[9] = make_snapshot({(100, STATUS_COLUMN): "x"}, sheet_id=9)

    service.load_sheet(9)

    assert store.cached_cell_value(9, 100, STATUS_COLUMN) == "x"


def test_load_sheet_falls_back_to_cache(service, gateway, cached_sheet) -> None:
    gateway.fetch_error = GatewayUnavailableError("offline")

    assert service.load_sheet(1) == cached_sheet
    with pytest.raises(SheetNotCached):
        service.load_sheet(2)


def test_load_sheet_offline_does_not_touch_network(service, gateway, cached_sheet) -> None:
    assert service.load_sheet(1, online=False) == cached_sheet
    assert gateway.fetch_calls == 0


def test_refresh_sheet_list_falls_back_to_cache(service, gateway) -> None:
    gateway.summaries = [SheetSummary(id=2, name="b"), SheetSummary(id=1, name="A")]
    assert [s.id for s in service.refresh_sheet_list()] == [1, 2]

    gateway.list_error = GatewayUnavailableError("offline")
    assert [s.id for s in service.refresh_sheet_list()] == [1, 2]


def test_sync_does_not_overwrite_server_after_reedit(service, resolver, engine, gateway, ledger, cached_sheet) -> None:
    service.edit_cell(1, 100, STATUS_COLUMN, "Closed")
    gateway.set_server_value(1, 100, STATUS_COLUMN, "In Progress")
    [conflict] = engine.check_for_conflicts(1)
    resolver.resolve(conflict, choose_local=False)
    service.edit_cell(1, 100, STATUS_COLUMN, "Done")
    gateway.set_server_value(1, 100, STATUS_COLUMN, "Blocked")

    report = service.sync(1)

    assert report.blocked is True
    assert gateway.updates == []
    assert gateway.snapshots[1].row(100).cell(STATUS_COLUMN).value == "Blocked"
    assert ledger.get_edit(1, 100, STATUS_COLUMN).new_value == "Done"
