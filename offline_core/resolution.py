"""Apply the user's keep-local / keep-remote decision to a conflict."""
from __future__ import annotations

import logging

from db import LocalStore
from offline_core.conflicts import ConflictEngine
from offline_core.ledger import PendingEditLedger
from offline_core.models import Conflict, ConflictKind

logger = logging.getLogger(__name__)


class ConflictResolver:
    def __init__(self, engine: ConflictEngine, ledger: PendingEditLedger, store: LocalStore) -> None:
        self._engine = engine
        self._ledger = ledger
        self._store = store

    def resolve(self, conflict: Conflict, choose_local: bool) -> bool:
        """Commit a decision for ``conflict``.

        Keeping the local value leaves the pending edit in place.  Keeping
        the remote value removes the edit and writes the server value into
        the cached cell.  Either way the cell is marked as solved so later
        conflict passes skip it.

        Returns ``False`` without changing anything when the pending edit no
        longer exists, for example after the user discarded local changes.
        """

        sheet_id, row_id, column_id = conflict.key
        if self._ledger.get_edit(sheet_id, row_id, column_id) is None:
            logger.info(
                "Ignoring stale conflict for sheet %s row %s column %s", sheet_id, row_id, column_id
            )
            self._engine.discard_conflict(conflict.key)
            return False

        if choose_local:
            if conflict.kind is ConflictKind.REMOTE_DELETED:
                logger.warning(
                    "Keeping local value for row %s column %s although it was removed on the server",
                    row_id,
                    column_id,
                )
        else:
            self._ledger.remove(sheet_id, row_id, column_id)
            if conflict.kind is ConflictKind.VALUE:
                self._store.update_cached_cell(sheet_id, row_id, column_id, conflict.server_value)

        self._engine.add_solved_conflict(conflict)
        logger.info(
            "Resolved conflict for sheet %s row %s column %s (%s)",
            sheet_id,
            row_id,
            column_id,
            "local" if choose_local else "remote",
        )
        return True

    def resolve_all(self, sheet_id: int, choose_local: bool) -> int:
        resolved = 0
        for conflict in self._engine.conflicts(sheet_id):
            if self.resolve(conflict, choose_local):
                resolved += 1
        return resolved


__all__ = ["ConflictResolver"]
