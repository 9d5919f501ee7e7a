"""Business logic for loading, editing and publishing Smartsheet sheets offline."""
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Callable, Iterable, List, Optional

from db import LocalStore
from offline_core.conflicts import ConflictEngine, SyncCancelled
from offline_core.ledger import PendingEditLedger
from offline_core.models import (
    Cell,
    ColumnType,
    Contact,
    ParentType,
    PendingDiscussion,
    PendingEdit,
    Row,
    SheetSnapshot,
    SheetSummary,
    SyncReport,
)
from offline_core.smartsheet_gateway import GatewayError, batch_edits
from offline_core.values import format_for_column, is_legal_option

logger = logging.getLogger(__name__)

LogCallback = Callable[[str], None]


class SheetNotCached(LookupError):
    """Raised when a sheet is requested offline but was never cached."""


class PublishError(RuntimeError):
    """Raised when publishing stops part way; ``report`` holds what was sent."""

    def __init__(self, message: str, report: SyncReport) -> None:
        super().__init__(message)
        self.report = report


class SheetSyncService:
    """Coordinate sheet loading, local edits and publishing."""

    def __init__(
        self,
        gateway,
        store: LocalStore,
        ledger: PendingEditLedger,
        engine: ConflictEngine,
        *,
        publish_batch_size: int = 100,
        author: tuple = ("", ""),
        log_callback: Optional[LogCallback] = None,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._ledger = ledger
        self._engine = engine
        self._batch_size = max(1, int(publish_batch_size))
        self._first_name, self._last_name = author
        self._log_callback = log_callback

    # ------------------------------------------------------------------
    # Sheets
    # ------------------------------------------------------------------
    def refresh_sheet_list(self) -> List[SheetSummary]:
        """List sheets online and cache them; fall back to the cached list."""

        try:
            summaries = self._gateway.list_sheets()
        except GatewayError as exc:
            self._log(f"Sheet list unavailable, showing cached list: {exc}")
            return self._store.list_sheets()
        self._store.save_sheet_list(summaries)
        return self._store.list_sheets()

    def load_sheet(self, sheet_id: int, online: bool = True) -> SheetSnapshot:
        if online:
            try:
                snapshot = self._gateway.fetch_sheet(sheet_id)
            except GatewayError as exc:
                self._log(f"Sheet {sheet_id} could not be fetched, using cached copy: {exc}")
            else:
                self._store.save_snapshot(sheet_id, snapshot)
                return snapshot
        cached = self._store.load_snapshot(sheet_id)
        if cached is None:
            raise SheetNotCached(f"Sheet {sheet_id} is not available offline")
        return cached

    def sheet_view(self, sheet_id: int) -> SheetSnapshot:
        """Return the cached sheet with pending local values applied."""

        cached = self._store.load_snapshot(sheet_id)
        if cached is None:
            raise SheetNotCached(f"Sheet {sheet_id} is not available offline")
        edits = {(edit.row_id, edit.column_id): edit for edit in self._ledger.list_edits(sheet_id)}
        if not edits:
            return cached
        column_ids = {column.id for column in cached.columns}
        rows = []
        for row in cached.rows:
            cells = []
            seen = set()
            for cell in row.cells:
                seen.add(cell.column_id)
                edit = edits.get((row.id, cell.column_id))
                if edit is not None:
                    cell = replace(cell, value=edit.new_value, display_value=edit.new_value)
                cells.append(cell)
            for (row_id, column_id), edit in edits.items():
                if row_id == row.id and column_id not in seen and column_id in column_ids:
                    cells.append(Cell(column_id=column_id, value=edit.new_value, display_value=edit.new_value))
            rows.append(Row(id=row.id, row_number=row.row_number, cells=tuple(cells), modified_at=row.modified_at))
        return replace(cached, rows=tuple(rows))

    # ------------------------------------------------------------------
    # Local changes
    # ------------------------------------------------------------------
    def edit_cell(
        self,
        sheet_id: int,
        row_id: int,
        column_id: int,
        value: object,
        contacts: Optional[Iterable[Contact]] = None,
    ) -> PendingEdit:
        """Validate ``value`` against the cached column and record it as an edit."""

        cached = self._store.load_snapshot(sheet_id)
        if cached is None:
            raise SheetNotCached(f"Sheet {sheet_id} is not available offline")
        column = cached.column(column_id)
        if column is None:
            raise ValueError(f"Column {column_id} does not exist in sheet {sheet_id}")
        if cached.row(row_id) is None:
            raise ValueError(f"Row {row_id} does not exist in sheet {sheet_id}")

        selected = tuple(contacts or ())
        if column.type.is_contact and selected:
            encoded = ", ".join(contact.name or contact.email for contact in selected)
        else:
            encoded = format_for_column(value, column.type)
        if column.options and not column.type.is_contact:
            multiple = column.type is ColumnType.MULTI_PICKLIST
            if not is_legal_option(encoded, column.options, multiple=multiple):
                raise ValueError(f"{encoded!r} is not an option of column {column.title!r}")
        return self._ledger.record_edit(
            sheet_id,
            row_id,
            column_id,
            column.type,
            encoded,
            contacts=selected,
            sheet_name=cached.name,
        )

    def add_comment(
        self, sheet_id: int, text: str, row_id: Optional[int] = None
    ) -> PendingDiscussion:
        if row_id is None:
            return self._ledger.add_discussion(
                sheet_id,
                sheet_id,
                ParentType.SHEET,
                text,
                first_name=self._first_name,
                last_name=self._last_name,
            )
        return self._ledger.add_discussion(
            sheet_id,
            row_id,
            ParentType.ROW,
            text,
            first_name=self._first_name,
            last_name=self._last_name,
        )

    def discard_local_changes(self, sheet_id: int) -> int:
        """Drop every pending edit and comment of a sheet and forget its conflicts."""

        removed = self._ledger.remove_all(sheet_id)
        removed += self._ledger.remove_all_discussions(sheet_id)
        self._engine.clear(sheet_id)
        self._engine.forget_solved(sheet_id)
        self._log(f"Discarded {removed} local change(s) for sheet {sheet_id}")
        return removed

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------
    def sync(self, sheet_id: int, cancel_event: Optional[threading.Event] = None) -> SyncReport:
        """Check for conflicts and publish local changes when none are open.

        Raises :class:`~offline_core.conflicts.SyncFailed` when the server
        cannot be reached and :class:`PublishError` when a publish request
        fails.  Edits are only removed from the ledger once the request that
        carried them succeeded.
        """

        report = SyncReport(sheet_id=sheet_id)
        self._engine.check_for_conflicts(sheet_id, cancel_event)
        unresolved = self._engine.conflicts(sheet_id)
        if unresolved:
            report.conflicts = unresolved
            self._log(f"Sheet {sheet_id}: {len(unresolved)} conflict(s) need a decision")
            return report

        publishable = self._drop_orphaned_edits(sheet_id, report)
        for batch in batch_edits(publishable, self._batch_size):
            if cancel_event is not None and cancel_event.is_set():
                raise SyncCancelled(f"Publishing sheet {sheet_id} was cancelled")
            try:
                self._gateway.update_cells(sheet_id, batch)
            except GatewayError as exc:
                raise PublishError(f"Publishing edits for sheet {sheet_id} failed: {exc}", report) from exc
            for edit in batch:
                self._settle(edit)
            report.published_cells += len(batch)

        for discussion in self._ledger.list_discussions(sheet_id):
            try:
                self._gateway.post_discussion(discussion)
            except GatewayError as exc:
                raise PublishError(f"Posting comment {discussion.id} failed: {exc}", report) from exc
            self._ledger.remove_discussion(discussion.id)
            report.published_discussions += 1

        if report.published_cells or report.published_discussions:
            self._log(
                f"Sheet {sheet_id}: published {report.published_cells} cell(s) and "
                f"{report.published_discussions} comment(s)"
            )
            try:
                snapshot = self._gateway.fetch_sheet(sheet_id)
            except GatewayError as exc:
                logger.warning("Refreshing sheet %s after publish failed: %s", sheet_id, exc)
            else:
                self._store.save_snapshot(sheet_id, snapshot)
                report.refreshed = True
        return report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _drop_orphaned_edits(self, sheet_id: int, report: SyncReport) -> List[PendingEdit]:
        snapshot = self._store.load_snapshot(sheet_id)
        if snapshot is None:
            return self._engine.mergeable_edits(sheet_id)
        row_ids = {row.id for row in snapshot.rows}
        column_ids = {column.id for column in snapshot.columns}
        publishable = []
        for edit in self._engine.mergeable_edits(sheet_id):
            if edit.row_id in row_ids and edit.column_id in column_ids:
                publishable.append(edit)
                continue
            logger.warning(
                "Dropping edit for sheet %s row %s column %s: target no longer exists",
                sheet_id,
                edit.row_id,
                edit.column_id,
            )
            self._ledger.remove(sheet_id, edit.row_id, edit.column_id)
            self._engine.forget_solved(sheet_id, edit.row_id, edit.column_id)
            report.dropped_cells += 1
        return publishable

    def _settle(self, published: PendingEdit) -> None:
        current = self._ledger.get_edit(published.sheet_id, published.row_id, published.column_id)
        if current is not None and (
            current.new_value != published.new_value or current.contacts != published.contacts
        ):
            # Edited again while the request was in flight; keep the newer value pending.
            return
        self._ledger.remove(published.sheet_id, published.row_id, published.column_id)
        self._store.update_cached_cell(
            published.sheet_id, published.row_id, published.column_id, published.new_value
        )
        self._engine.forget_solved(published.sheet_id, published.row_id, published.column_id)

    def _log(self, message: str) -> None:
        logger.info("%s", message)
        if self._log_callback:
            try:
                self._log_callback(message)
            except Exception:  # pragma: no cover - callback failure
                logger.exception("Sync log callback failed")


__all__ = ["PublishError", "SheetNotCached", "SheetSyncService"]
