"""Durable ledger of local edits that have not been published yet."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from db import LocalStore
from offline_core.models import (
    CellKey,
    ColumnType,
    Contact,
    ParentType,
    PendingDiscussion,
    PendingEdit,
)
from offline_core.protected import Protected

logger = logging.getLogger(__name__)

EditsListener = Callable[[Tuple[PendingEdit, ...]], None]
DiscussionsListener = Callable[[Tuple[PendingDiscussion, ...]], None]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class PendingEditLedger:
    """Record local cell edits and discussion posts until they are published.

    Every mutation is written to the :class:`LocalStore` first and then
    committed to the in-memory buffer, whose listeners receive an immutable
    tuple of the current entries.  A store failure leaves the buffer
    untouched.
    """

    def __init__(self, store: LocalStore) -> None:
        self._store = store
        self._edits: Protected[Tuple[PendingEdit, ...]] = Protected(
            tuple(store.load_pending_edits())
        )
        self._discussions: Protected[Tuple[PendingDiscussion, ...]] = Protected(
            tuple(store.load_pending_discussions())
        )

    # ------------------------------------------------------------------
    # Cell edits
    # ------------------------------------------------------------------
    def record_edit(
        self,
        sheet_id: int,
        row_id: int,
        column_id: int,
        column_type: ColumnType,
        new_value: Optional[str],
        contacts: Optional[Iterable[Contact]] = None,
        sheet_name: str = "",
    ) -> PendingEdit:
        """Record ``new_value`` for a cell, capturing its baseline on first edit.

        The baseline is the cached server value at the time the first edit
        to the cell is recorded.  Later edits only replace the new value and
        the selected contacts.
        """

        key = CellKey(sheet_id, row_id, column_id)
        selected = tuple(contacts or ())
        updated_at = _utc_now_iso()
        with self._edits.lock:
            existing = self._find(key)
            if existing is None:
                edit = PendingEdit(
                    sheet_id=sheet_id,
                    row_id=row_id,
                    column_id=column_id,
                    column_type=ColumnType.parse(column_type),
                    baseline=self._store.cached_cell_value(sheet_id, row_id, column_id),
                    new_value=new_value,
                    sheet_name=sheet_name,
                    contacts=selected,
                    updated_at=updated_at,
                )
            else:
                edit = existing.with_new_value(new_value, contacts=selected, updated_at=updated_at)
            self._store.upsert_pending_edit(edit)
            self._edits.update(lambda edits: _replace_edit(edits, edit))
        logger.debug(
            "Recorded edit for sheet %s row %s column %s (baseline=%r)",
            sheet_id,
            row_id,
            column_id,
            edit.baseline,
        )
        return edit

    def list_edits(self, sheet_id: Optional[int] = None) -> List[PendingEdit]:
        edits = self._edits.read()
        if sheet_id is None:
            return list(edits)
        return [edit for edit in edits if edit.sheet_id == sheet_id]

    def get_edit(self, sheet_id: int, row_id: int, column_id: int) -> Optional[PendingEdit]:
        with self._edits.lock:
            return self._find(CellKey(sheet_id, row_id, column_id))

    def remove(self, sheet_id: int, row_id: int, column_id: int) -> bool:
        """Delete the edit for one cell; returns ``False`` when nothing was pending."""

        key = CellKey(sheet_id, row_id, column_id)
        with self._edits.lock:
            if self._find(key) is None:
                return False
            self._store.delete_pending_edit(sheet_id, row_id, column_id)
            self._edits.update(lambda edits: tuple(edit for edit in edits if edit.key != key))
        return True

    def remove_all(self, sheet_id: int) -> int:
        with self._edits.lock:
            count = sum(1 for edit in self._edits.read() if edit.sheet_id == sheet_id)
            self._store.delete_pending_edits(sheet_id)
            self._edits.update(
                lambda edits: tuple(edit for edit in edits if edit.sheet_id != sheet_id)
            )
        if count:
            logger.info("Discarded %d pending edit(s) for sheet %s", count, sheet_id)
        return count

    def has_updates(self, sheet_id: int) -> bool:
        return any(edit.sheet_id == sheet_id for edit in self._edits.read()) or any(
            discussion.sheet_id == sheet_id for discussion in self._discussions.read()
        )

    def subscribe(self, listener: EditsListener, sheet_id: Optional[int] = None) -> Callable[[], None]:
        """Notify ``listener`` with the current edits after every mutation."""

        return self._edits.subscribe(_filtered(listener, sheet_id))

    def _find(self, key: CellKey) -> Optional[PendingEdit]:
        for edit in self._edits.read():
            if edit.key == key:
                return edit
        return None

    # ------------------------------------------------------------------
    # Discussions
    # ------------------------------------------------------------------
    def add_discussion(
        self,
        sheet_id: int,
        parent_id: int,
        parent_type: ParentType,
        text: str,
        *,
        first_name: str = "",
        last_name: str = "",
    ) -> PendingDiscussion:
        if not text or not text.strip():
            raise ValueError("Discussion text must not be empty")
        discussion = PendingDiscussion(
            id=uuid.uuid4().hex,
            sheet_id=sheet_id,
            parent_id=parent_id,
            parent_type=ParentType.parse(parent_type),
            text=text.strip(),
            created_at=_utc_now_iso(),
            first_name=first_name,
            last_name=last_name,
        )
        with self._discussions.lock:
            self._store.insert_pending_discussion(discussion)
            self._discussions.update(lambda items: items + (discussion,))
        return discussion

    def list_discussions(self, sheet_id: Optional[int] = None) -> List[PendingDiscussion]:
        items = self._discussions.read()
        if sheet_id is None:
            return list(items)
        return [item for item in items if item.sheet_id == sheet_id]

    def remove_discussion(self, discussion_id: str) -> bool:
        with self._discussions.lock:
            if not any(item.id == discussion_id for item in self._discussions.read()):
                return False
            self._store.delete_pending_discussion(discussion_id)
            self._discussions.update(
                lambda items: tuple(item for item in items if item.id != discussion_id)
            )
        return True

    def remove_all_discussions(self, sheet_id: int) -> int:
        with self._discussions.lock:
            count = sum(1 for item in self._discussions.read() if item.sheet_id == sheet_id)
            self._store.delete_pending_discussions(sheet_id)
            self._discussions.update(
                lambda items: tuple(item for item in items if item.sheet_id != sheet_id)
            )
        return count

    def subscribe_discussions(
        self, listener: DiscussionsListener, sheet_id: Optional[int] = None
    ) -> Callable[[], None]:
        return self._discussions.subscribe(_filtered(listener, sheet_id))


def _replace_edit(edits: Tuple[PendingEdit, ...], edit: PendingEdit) -> Tuple[PendingEdit, ...]:
    replaced = False
    result = []
    for current in edits:
        if current.key == edit.key:
            result.append(edit)
            replaced = True
        else:
            result.append(current)
    if not replaced:
        result.append(edit)
    return tuple(result)


def _filtered(listener: Callable, sheet_id: Optional[int]) -> Callable:
    if not callable(listener):
        raise TypeError("listener must be callable")
    if sheet_id is None:
        return listener

    def _deliver(items: tuple) -> None:
        listener(tuple(item for item in items if item.sheet_id == sheet_id))

    return _deliver


__all__ = ["PendingEditLedger"]
