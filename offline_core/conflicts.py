"""Three-way conflict detection between pending edits and server content."""
from __future__ import annotations

import json
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from db import LocalStore
from offline_core import app_paths
from offline_core.ledger import PendingEditLedger
from offline_core.models import CellKey, Conflict, ConflictKind, PendingEdit
from offline_core.protected import Protected
from offline_core.smartsheet_gateway import GatewayError

logger = logging.getLogger(__name__)

CONFLICT_LOGGER_NAME = "smartsheet_offline.sync.conflicts"
_CONFLICT_LOGGER = logging.getLogger(CONFLICT_LOGGER_NAME)
_HANDLER_CONFIGURED = False
_RECENT: Deque[Dict[str, object]] = deque(maxlen=50)
_RECENT_LOCK = threading.Lock()

ConflictsListener = Callable[[Tuple[Conflict, ...]], None]


class SyncFailed(RuntimeError):
    """Raised when a conflict pass cannot fetch the server snapshot."""


class SyncCancelled(RuntimeError):
    """Raised when a conflict pass was cancelled before committing."""


# ---------------------------------------------------------------------------
# Conflict log
# ---------------------------------------------------------------------------


def _ensure_logger() -> logging.Logger:
    global _HANDLER_CONFIGURED
    if not _HANDLER_CONFIGURED:
        try:
            handler = logging.FileHandler(app_paths.logs_path("conflicts.log"), encoding="utf-8")
        except OSError:  # pragma: no cover - depends on filesystem permissions
            handler = None
        else:
            handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
            _CONFLICT_LOGGER.addHandler(handler)
        _CONFLICT_LOGGER.setLevel(logging.INFO)
        _HANDLER_CONFIGURED = True
    return _CONFLICT_LOGGER


def record(conflict: Conflict, *, source: str = "check") -> Dict[str, object]:
    """Write ``conflict`` to the JSON-lines conflict log and the recent cache."""

    payload: Dict[str, object] = {
        "sheet_id": conflict.sheet_id,
        "row_id": conflict.row_id,
        "column_id": conflict.column_id,
        "column_type": conflict.column_type.value,
        "kind": conflict.kind.value,
        "server_value": conflict.server_value,
        "local_value": conflict.local_value,
        "baseline": conflict.pending_edit.baseline if conflict.pending_edit else None,
        "source": source,
        "timestamp": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
    }
    _ensure_logger().info("%s", json.dumps(payload, ensure_ascii=False, sort_keys=True))
    with _RECENT_LOCK:
        _RECENT.appendleft(payload)
    return payload


def recent(limit: int = 10) -> List[Dict[str, object]]:
    """Return the most recently logged conflicts, newest first."""

    with _RECENT_LOCK:
        return list(_RECENT)[:limit]


def clear_recent() -> None:
    with _RECENT_LOCK:
        _RECENT.clear()


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def classify_edit(
    edit: PendingEdit, server_value: Optional[str], target_exists: bool = True
) -> Optional[Conflict]:
    """Return a :class:`Conflict` for ``edit`` or ``None`` when it is mergeable.

    * the server still holds the baseline: mergeable
    * the server already holds the local value: mergeable
    * anything else: both sides diverged, a true conflict

    An edit whose row or column no longer exists on the server is always a
    ``REMOTE_DELETED`` conflict.
    """

    if not target_exists:
        return Conflict(
            sheet_id=edit.sheet_id,
            row_id=edit.row_id,
            column_id=edit.column_id,
            column_type=edit.column_type,
            server_value=None,
            local_value=edit.new_value,
            pending_edit=edit,
            kind=ConflictKind.REMOTE_DELETED,
        )
    if server_value == edit.baseline or server_value == edit.new_value:
        return None
    return Conflict(
        sheet_id=edit.sheet_id,
        row_id=edit.row_id,
        column_id=edit.column_id,
        column_type=edit.column_type,
        server_value=server_value,
        local_value=edit.new_value,
        pending_edit=edit,
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ConflictEngine:
    """Reconcile a sheet's pending edits against freshly fetched server content.

    The active conflict list is shared across sheets; every pass replaces
    only the slice belonging to its sheet.  Resolved conflicts are kept in a
    separate solved set that later passes consult, so a decision the user
    already made is never listed again.
    """

    classify_edit = staticmethod(classify_edit)

    def __init__(self, gateway, store: LocalStore, ledger: PendingEditLedger) -> None:
        self._gateway = gateway
        self._store = store
        self._ledger = ledger
        self._conflicts: Protected[Tuple[Conflict, ...]] = Protected(())
        self._solved: Dict[CellKey, Conflict] = {}
        self._solved_lock = threading.Lock()
        self._sheet_locks: Dict[int, threading.Lock] = {}
        self._sheet_locks_guard = threading.Lock()

    def _sheet_lock(self, sheet_id: int) -> threading.Lock:
        with self._sheet_locks_guard:
            lock = self._sheet_locks.get(sheet_id)
            if lock is None:
                lock = threading.Lock()
                self._sheet_locks[sheet_id] = lock
            return lock

    # ------------------------------------------------------------------
    # Conflict pass
    # ------------------------------------------------------------------
    def check_for_conflicts(
        self, sheet_id: int, cancel_event: Optional[threading.Event] = None
    ) -> List[Conflict]:
        """Fetch the server sheet, compare it with the ledger and commit the result.

        Raises :class:`SyncFailed` when the fetch fails and
        :class:`SyncCancelled` when ``cancel_event`` is set once the fetch
        returns.  In both cases neither the cached snapshot nor the conflict
        list is modified.  A second call for the same sheet waits for the
        pass already in flight.
        """

        with self._sheet_lock(sheet_id):
            try:
                snapshot = self._gateway.fetch_sheet(sheet_id)
            except GatewayError as exc:
                logger.warning("Conflict check for sheet %s failed: %s", sheet_id, exc)
                raise SyncFailed(f"Could not fetch sheet {sheet_id}: {exc}") from exc

            if cancel_event is not None and cancel_event.is_set():
                logger.info("Conflict check for sheet %s cancelled", sheet_id)
                raise SyncCancelled(f"Conflict check for sheet {sheet_id} was cancelled")

            values = snapshot.value_map()
            row_ids = {row.id for row in snapshot.rows}
            column_ids = {column.id for column in snapshot.columns}
            candidates = []
            for edit in self._ledger.list_edits(sheet_id):
                exists = edit.row_id in row_ids and edit.column_id in column_ids
                conflict = classify_edit(edit, values.get((edit.row_id, edit.column_id)), exists)
                if conflict is not None:
                    candidates.append(conflict)

            self._store.save_snapshot(sheet_id, snapshot)
            committed: List[Conflict] = []

            def _replace(current: Tuple[Conflict, ...]) -> Tuple[Conflict, ...]:
                committed.extend(c for c in candidates if not self._covered_by_solved(c))
                kept = tuple(c for c in current if c.sheet_id != sheet_id)
                return kept + tuple(committed)

            self._conflicts.update(_replace)

        for conflict in committed:
            record(conflict)
        if committed:
            logger.info("Sheet %s has %d unresolved conflict(s)", sheet_id, len(committed))
        else:
            logger.debug("Sheet %s has no conflicts", sheet_id)
        return list(committed)

    # ------------------------------------------------------------------
    # Solved markers
    # ------------------------------------------------------------------
    def add_solved_conflict(self, conflict: Conflict) -> Conflict:
        """Drop the live entry for ``conflict``'s cell and remember it as solved."""

        solved = conflict if conflict.resolved else conflict.mark_resolved()
        with self._conflicts.lock:
            with self._solved_lock:
                self._solved[solved.key] = solved
            self._conflicts.update(lambda current: tuple(c for c in current if c.key != solved.key))
        return solved

    def discard_conflict(self, key: CellKey) -> bool:
        """Remove an active conflict without recording it as solved."""

        removed = []

        def _drop(current: Tuple[Conflict, ...]) -> Tuple[Conflict, ...]:
            kept = tuple(c for c in current if c.key != key)
            removed.append(len(kept) != len(current))
            return kept

        self._conflicts.update(_drop)
        return removed[0]

    def is_solved(self, key: CellKey) -> bool:
        with self._solved_lock:
            return key in self._solved

    def _covered_by_solved(self, conflict: Conflict) -> bool:
        """Return ``True`` when a decision was already made for this very edit.

        A marker only covers the edit it was made for: an edit recorded
        after the old one was dropped has a new baseline, so the marker is
        discarded and the conflict is listed again.
        """

        with self._solved_lock:
            solved = self._solved.get(conflict.key)
            if solved is None:
                return False
            if solved.pending_edit is None or conflict.pending_edit is None:
                return True
            if solved.pending_edit.baseline == conflict.pending_edit.baseline:
                return True
            del self._solved[conflict.key]
        logger.debug("Dropped solved marker for %s: the edit was recorded again", conflict.key)
        return False

    def solved_conflicts(self, sheet_id: Optional[int] = None) -> List[Conflict]:
        with self._solved_lock:
            items = list(self._solved.values())
        if sheet_id is None:
            return items
        return [item for item in items if item.sheet_id == sheet_id]

    def forget_solved(
        self, sheet_id: int, row_id: Optional[int] = None, column_id: Optional[int] = None
    ) -> int:
        """Forget solved markers for a sheet, a row or a single cell."""

        def _matches(key: CellKey) -> bool:
            return (
                key.sheet_id == sheet_id
                and (row_id is None or key.row_id == row_id)
                and (column_id is None or key.column_id == column_id)
            )

        with self._solved_lock:
            stale = [key for key in self._solved if _matches(key)]
            for key in stale:
                del self._solved[key]
        return len(stale)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    def conflicts(self, sheet_id: int) -> List[Conflict]:
        return [c for c in self._conflicts.read() if c.sheet_id == sheet_id and not c.resolved]

    def all_conflicts(self) -> List[Conflict]:
        return [c for c in self._conflicts.read() if not c.resolved]

    def clear(self, sheet_id: int) -> None:
        self._conflicts.update(lambda current: tuple(c for c in current if c.sheet_id != sheet_id))

    def subscribe(self, listener: ConflictsListener, sheet_id: Optional[int] = None) -> Callable[[], None]:
        """Notify ``listener`` with the unresolved conflicts after every change."""

        if not callable(listener):
            raise TypeError("listener must be callable")

        def _deliver(items: Tuple[Conflict, ...]) -> None:
            listener(
                tuple(
                    c for c in items if not c.resolved and (sheet_id is None or c.sheet_id == sheet_id)
                )
            )

        return self._conflicts.subscribe(_deliver)

    def mergeable_edits(self, sheet_id: int) -> List[PendingEdit]:
        """Pending edits of ``sheet_id`` that have no unresolved conflict."""

        blocked = {c.key for c in self.conflicts(sheet_id)}
        return [edit for edit in self._ledger.list_edits(sheet_id) if edit.key not in blocked]


def summarise(conflicts: Iterable[Conflict]) -> Sequence[str]:
    """Return one readable line per conflict, for logs and the CLI."""

    lines = []
    for conflict in conflicts:
        if conflict.kind is ConflictKind.REMOTE_DELETED:
            lines.append(
                f"row {conflict.row_id} column {conflict.column_id}: removed on server, "
                f"local value {conflict.local_value!r}"
            )
        else:
            lines.append(
                f"row {conflict.row_id} column {conflict.column_id}: server {conflict.server_value!r}, "
                f"local {conflict.local_value!r}"
            )
    return lines


__all__ = [
    "CONFLICT_LOGGER_NAME",
    "ConflictEngine",
    "SyncCancelled",
    "SyncFailed",
    "classify_edit",
    "clear_recent",
    "recent",
    "record",
    "summarise",
]
