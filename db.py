"""SQLite-backed local store for cached sheets and unpublished local changes."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from offline_core import app_paths
from offline_core.models import (
    Cell,
    Column,
    ColumnType,
    Comment,
    Contact,
    Discussion,
    ParentType,
    PendingDiscussion,
    PendingEdit,
    Row,
    SheetSnapshot,
    SheetSummary,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_FILENAME = "smartsheet_offline.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------
# Every table is keyed explicitly by sheet id (and row/column id where it
# applies).  Deleting a sheet cascades manually, child tables first.

SHEET_LIST_COLUMN_DEFINITIONS: Dict[str, str] = {
    "sheet_id": "INTEGER PRIMARY KEY",
    "name": "TEXT NOT NULL",
    "modified_at": "TEXT",
}

SHEET_CONTENT_COLUMN_DEFINITIONS: Dict[str, str] = {
    "sheet_id": "INTEGER PRIMARY KEY",
    "name": "TEXT NOT NULL",
    "modified_at": "TEXT",
    "version": "INTEGER",
    "cached_at": "TEXT NOT NULL",
}

COLUMN_COLUMN_DEFINITIONS: Dict[str, str] = {
    "sheet_id": "INTEGER NOT NULL",
    "column_id": "INTEGER NOT NULL",
    "idx": "INTEGER NOT NULL",
    "title": "TEXT NOT NULL",
    "type": "TEXT NOT NULL",
    "is_primary": "INTEGER NOT NULL DEFAULT 0",
    "hidden": "INTEGER NOT NULL DEFAULT 0",
    "width": "INTEGER NOT NULL DEFAULT 0",
    "system_column_type": "TEXT",
    "format": "TEXT",
}

COLUMN_OPTION_COLUMN_DEFINITIONS: Dict[str, str] = {
    "sheet_id": "INTEGER NOT NULL",
    "column_id": "INTEGER NOT NULL",
    "position": "INTEGER NOT NULL",
    "value": "TEXT NOT NULL",
}

COLUMN_CONTACT_COLUMN_DEFINITIONS: Dict[str, str] = {
    "sheet_id": "INTEGER NOT NULL",
    "column_id": "INTEGER NOT NULL",
    "position": "INTEGER NOT NULL",
    "email": "TEXT NOT NULL",
    "name": "TEXT",
}

ROW_COLUMN_DEFINITIONS: Dict[str, str] = {
    "sheet_id": "INTEGER NOT NULL",
    "row_id": "INTEGER NOT NULL",
    "position": "INTEGER NOT NULL",
    "row_number": "INTEGER NOT NULL",
    "modified_at": "TEXT",
}

CELL_COLUMN_DEFINITIONS: Dict[str, str] = {
    "sheet_id": "INTEGER NOT NULL",
    "row_id": "INTEGER NOT NULL",
    "column_id": "INTEGER NOT NULL",
    "position": "INTEGER NOT NULL",
    "value": "TEXT",
    "display_value": "TEXT",
    "format": "TEXT",
    "conditional_format": "TEXT",
}

DISCUSSION_COLUMN_DEFINITIONS: Dict[str, str] = {
    "sheet_id": "INTEGER NOT NULL",
    "discussion_id": "INTEGER NOT NULL",
    "position": "INTEGER NOT NULL",
    "parent_id": "INTEGER",
    "parent_type": "TEXT NOT NULL",
    "title": "TEXT",
    "comment_count": "INTEGER NOT NULL DEFAULT 0",
    "last_commented_at": "TEXT",
    "created_by_name": "TEXT",
    "created_by_email": "TEXT",
}

COMMENT_COLUMN_DEFINITIONS: Dict[str, str] = {
    "sheet_id": "INTEGER NOT NULL",
    "discussion_id": "INTEGER NOT NULL",
    "comment_id": "INTEGER NOT NULL",
    "position": "INTEGER NOT NULL",
    "text": "TEXT",
    "created_by_name": "TEXT",
    "created_by_email": "TEXT",
    "created_at": "TEXT",
    "modified_at": "TEXT",
}

PENDING_EDIT_COLUMN_DEFINITIONS: Dict[str, str] = {
    "sheet_id": "INTEGER NOT NULL",
    "row_id": "INTEGER NOT NULL",
    "column_id": "INTEGER NOT NULL",
    "column_type": "TEXT NOT NULL",
    "sheet_name": "TEXT",
    "baseline": "TEXT",
    "new_value": "TEXT",
    "updated_at": "TEXT",
}

PENDING_CONTACT_COLUMN_DEFINITIONS: Dict[str, str] = {
    "sheet_id": "INTEGER NOT NULL",
    "row_id": "INTEGER NOT NULL",
    "column_id": "INTEGER NOT NULL",
    "position": "INTEGER NOT NULL",
    "email": "TEXT NOT NULL",
    "name": "TEXT",
}

PENDING_DISCUSSION_COLUMN_DEFINITIONS: Dict[str, str] = {
    "id": "TEXT PRIMARY KEY",
    "sheet_id": "INTEGER NOT NULL",
    "parent_id": "INTEGER NOT NULL",
    "parent_type": "TEXT NOT NULL",
    "text": "TEXT NOT NULL",
    "first_name": "TEXT",
    "last_name": "TEXT",
    "created_at": "TEXT NOT NULL",
}

TABLES: Dict[str, Tuple[Dict[str, str], Tuple[str, ...]]] = {
    "sheet_list": (SHEET_LIST_COLUMN_DEFINITIONS, ()),
    "sheet_content": (SHEET_CONTENT_COLUMN_DEFINITIONS, ()),
    "sheet_columns": (COLUMN_COLUMN_DEFINITIONS, ("PRIMARY KEY (sheet_id, column_id)",)),
    "column_options": (COLUMN_OPTION_COLUMN_DEFINITIONS, ("PRIMARY KEY (sheet_id, column_id, position)",)),
    "column_contacts": (COLUMN_CONTACT_COLUMN_DEFINITIONS, ("PRIMARY KEY (sheet_id, column_id, position)",)),
    "sheet_rows": (ROW_COLUMN_DEFINITIONS, ("PRIMARY KEY (sheet_id, row_id)",)),
    "sheet_cells": (CELL_COLUMN_DEFINITIONS, ("PRIMARY KEY (sheet_id, row_id, column_id)",)),
    "sheet_discussions": (DISCUSSION_COLUMN_DEFINITIONS, ("PRIMARY KEY (sheet_id, discussion_id)",)),
    "discussion_comments": (
        COMMENT_COLUMN_DEFINITIONS,
        ("PRIMARY KEY (sheet_id, discussion_id, comment_id)",),
    ),
    "pending_edits": (PENDING_EDIT_COLUMN_DEFINITIONS, ("PRIMARY KEY (sheet_id, row_id, column_id)",)),
    "pending_contacts": (
        PENDING_CONTACT_COLUMN_DEFINITIONS,
        ("PRIMARY KEY (sheet_id, row_id, column_id, position)",),
    ),
    "pending_discussions": (PENDING_DISCUSSION_COLUMN_DEFINITIONS, ()),
}

# Child tables first: this is the manual cascade order for a cached snapshot.
SNAPSHOT_TABLES: Tuple[str, ...] = (
    "sheet_cells",
    "sheet_rows",
    "column_options",
    "column_contacts",
    "sheet_columns",
    "discussion_comments",
    "sheet_discussions",
    "sheet_content",
)


class StoreError(RuntimeError):
    """Raised when the local store cannot complete a read or write."""


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _ensure_schema(conn: sqlite3.Connection) -> None:
    for table, (definitions, constraints) in TABLES.items():
        parts = [f"{column} {definition}" for column, definition in definitions.items()]
        parts.extend(constraints)
        body = ",\n        ".join(parts)
        conn.execute(f"CREATE TABLE IF NOT EXISTS {table} (\n        {body}\n    )")

        existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
        for column, definition in definitions.items():
            if column not in existing:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")

    conn.execute("CREATE INDEX IF NOT EXISTS idx_pending_edits_sheet ON pending_edits(sheet_id)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_pending_discussions_sheet ON pending_discussions(sheet_id)"
    )


def _bool(value: Any) -> bool:
    return bool(int(value or 0))


class LocalStore:
    """Durable cache of sheet snapshots and the pending-edit ledger."""

    def __init__(self, path: Optional[Path | str] = None) -> None:
        self._path = Path(path or app_paths.data_path(DEFAULT_DB_FILENAME)).resolve()
        self._schema_lock = threading.Lock()
        self._schema_ready = False

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------
    def _ensure_database(self) -> None:
        if self._schema_ready:
            return
        with self._schema_lock:
            if self._schema_ready:
                return
            self._path.parent.mkdir(parents=True, exist_ok=True)
            try:
                with closing(sqlite3.connect(self._path)) as conn:
                    _ensure_schema(conn)
                    conn.commit()
            except sqlite3.Error as exc:
                raise StoreError(f"Could not initialise local store at {self._path}: {exc}") from exc
            self._schema_ready = True

    def get_connection(self) -> sqlite3.Connection:
        self._ensure_database()
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements as one atomic commit."""

        conn = self.get_connection()
        try:
            conn.execute("BEGIN")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreError(str(exc)) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        conn = self.get_connection()
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Sheet list
    # ------------------------------------------------------------------
    def save_sheet_list(self, summaries: Sequence[SheetSummary]) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM sheet_list")
            conn.executemany(
                "INSERT INTO sheet_list (sheet_id, name, modified_at) VALUES (?, ?, ?)",
                [(summary.id, summary.name, summary.modified_at) for summary in summaries],
            )
        logger.debug("Cached %d sheet summaries", len(summaries))

    def list_sheets(self) -> List[SheetSummary]:
        with self._reader() as conn:
            rows = conn.execute(
                "SELECT sheet_id, name, modified_at FROM sheet_list ORDER BY name COLLATE NOCASE, sheet_id"
            ).fetchall()
        return [
            SheetSummary(id=row["sheet_id"], name=row["name"], modified_at=row["modified_at"] or "")
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------
    def save_snapshot(self, sheet_id: int, snapshot: SheetSnapshot) -> None:
        """Replace the cached content of ``sheet_id`` in a single transaction."""

        if snapshot.id != sheet_id:
            raise ValueError(f"Snapshot id {snapshot.id} does not match sheet id {sheet_id}")
        with self.transaction() as conn:
            self._delete_snapshot_rows(conn, sheet_id)
            self._insert_snapshot_rows(conn, snapshot)
        logger.info(
            "Cached sheet %s (%d columns, %d rows)", sheet_id, len(snapshot.columns), len(snapshot.rows)
        )

    def delete_snapshot(self, sheet_id: int) -> None:
        with self.transaction() as conn:
            self._delete_snapshot_rows(conn, sheet_id)

    def has_snapshot(self, sheet_id: int) -> bool:
        with self._reader() as conn:
            row = conn.execute(
                "SELECT 1 FROM sheet_content WHERE sheet_id = ?", (sheet_id,)
            ).fetchone()
        return row is not None

    def load_snapshot(self, sheet_id: int) -> Optional[SheetSnapshot]:
        with self._reader() as conn:
            content = conn.execute(
                "SELECT * FROM sheet_content WHERE sheet_id = ?", (sheet_id,)
            ).fetchone()
            if content is None:
                return None
            columns = self._load_columns(conn, sheet_id)
            rows = self._load_rows(conn, sheet_id)
            discussions = self._load_discussions(conn, sheet_id)
        return SheetSnapshot(
            id=sheet_id,
            name=content["name"],
            columns=columns,
            rows=rows,
            discussions=discussions,
            modified_at=content["modified_at"],
            version=content["version"],
        )

    def cached_cell_value(self, sheet_id: int, row_id: int, column_id: int) -> Optional[str]:
        with self._reader() as conn:
            row = conn.execute(
                "SELECT value FROM sheet_cells WHERE sheet_id = ? AND row_id = ? AND column_id = ?",
                (sheet_id, row_id, column_id),
            ).fetchone()
        return row["value"] if row else None

    def update_cached_cell(
        self, sheet_id: int, row_id: int, column_id: int, value: Optional[str]
    ) -> bool:
        """Write ``value`` into a cached cell; returns ``False`` when the row is not cached."""

        with self.transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM sheet_rows WHERE sheet_id = ? AND row_id = ?", (sheet_id, row_id)
            ).fetchone()
            if row is None:
                return False
            updated = conn.execute(
                "UPDATE sheet_cells SET value = ?, display_value = ? "
                "WHERE sheet_id = ? AND row_id = ? AND column_id = ?",
                (value, value, sheet_id, row_id, column_id),
            ).rowcount
            if not updated:
                position = conn.execute(
                    "SELECT COALESCE(MAX(position) + 1, 0) FROM sheet_cells WHERE sheet_id = ? AND row_id = ?",
                    (sheet_id, row_id),
                ).fetchone()[0]
                conn.execute(
                    "INSERT INTO sheet_cells (sheet_id, row_id, column_id, position, value, display_value) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (sheet_id, row_id, column_id, position, value, value),
                )
        return True

    def _delete_snapshot_rows(self, conn: sqlite3.Connection, sheet_id: int) -> None:
        for table in SNAPSHOT_TABLES:
            conn.execute(f"DELETE FROM {table} WHERE sheet_id = ?", (sheet_id,))

    def _insert_snapshot_rows(self, conn: sqlite3.Connection, snapshot: SheetSnapshot) -> None:
        sheet_id = snapshot.id
        conn.execute(
            "INSERT INTO sheet_content (sheet_id, name, modified_at, version, cached_at) VALUES (?, ?, ?, ?, ?)",
            (sheet_id, snapshot.name, snapshot.modified_at, snapshot.version, _utc_now_iso()),
        )
        for column in snapshot.columns:
            conn.execute(
                "INSERT INTO sheet_columns (sheet_id, column_id, idx, title, type, is_primary, hidden, "
                "width, system_column_type, format) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    sheet_id,
                    column.id,
                    column.index,
                    column.title,
                    column.type.value,
                    int(column.primary),
                    int(column.hidden),
                    column.width,
                    column.system_column_type,
                    column.format,
                ),
            )
            conn.executemany(
                "INSERT INTO column_options (sheet_id, column_id, position, value) VALUES (?, ?, ?, ?)",
                [(sheet_id, column.id, position, option) for position, option in enumerate(column.options)],
            )
            conn.executemany(
                "INSERT INTO column_contacts (sheet_id, column_id, position, email, name) VALUES (?, ?, ?, ?, ?)",
                [
                    (sheet_id, column.id, position, contact.email, contact.name)
                    for position, contact in enumerate(column.contact_options)
                ],
            )
        for position, row in enumerate(snapshot.rows):
            conn.execute(
                "INSERT INTO sheet_rows (sheet_id, row_id, position, row_number, modified_at) VALUES (?, ?, ?, ?, ?)",
                (sheet_id, row.id, position, row.row_number, row.modified_at),
            )
            conn.executemany(
                "INSERT INTO sheet_cells (sheet_id, row_id, column_id, position, value, display_value, "
                "format, conditional_format) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        sheet_id,
                        row.id,
                        cell.column_id,
                        cell_position,
                        cell.value,
                        cell.display_value,
                        cell.format,
                        cell.conditional_format,
                    )
                    for cell_position, cell in enumerate(row.cells)
                ],
            )
        for position, discussion in enumerate(snapshot.discussions):
            conn.execute(
                "INSERT INTO sheet_discussions (sheet_id, discussion_id, position, parent_id, parent_type, "
                "title, comment_count, last_commented_at, created_by_name, created_by_email) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    sheet_id,
                    discussion.id,
                    position,
                    discussion.parent_id,
                    discussion.parent_type.value,
                    discussion.title,
                    discussion.comment_count,
                    discussion.last_commented_at,
                    discussion.created_by_name,
                    discussion.created_by_email,
                ),
            )
            conn.executemany(
                "INSERT INTO discussion_comments (sheet_id, discussion_id, comment_id, position, text, "
                "created_by_name, created_by_email, created_at, modified_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        sheet_id,
                        discussion.id,
                        comment.id,
                        comment_position,
                        comment.text,
                        comment.created_by_name,
                        comment.created_by_email,
                        comment.created_at,
                        comment.modified_at,
                    )
                    for comment_position, comment in enumerate(discussion.comments)
                ],
            )

    def _load_columns(self, conn: sqlite3.Connection, sheet_id: int) -> Tuple[Column, ...]:
        options: Dict[int, List[str]] = {}
        for row in conn.execute(
            "SELECT column_id, value FROM column_options WHERE sheet_id = ? ORDER BY column_id, position",
            (sheet_id,),
        ):
            options.setdefault(row["column_id"], []).append(row["value"])
        contacts: Dict[int, List[Contact]] = {}
        for row in conn.execute(
            "SELECT column_id, email, name FROM column_contacts WHERE sheet_id = ? ORDER BY column_id, position",
            (sheet_id,),
        ):
            contacts.setdefault(row["column_id"], []).append(Contact(email=row["email"], name=row["name"] or ""))

        columns = []
        for row in conn.execute(
            "SELECT * FROM sheet_columns WHERE sheet_id = ? ORDER BY idx, column_id", (sheet_id,)
        ):
            column_id = row["column_id"]
            columns.append(
                Column(
                    id=column_id,
                    index=row["idx"],
                    title=row["title"],
                    type=ColumnType.parse(row["type"]),
                    options=tuple(options.get(column_id, ())),
                    contact_options=tuple(contacts.get(column_id, ())),
                    primary=_bool(row["is_primary"]),
                    hidden=_bool(row["hidden"]),
                    width=row["width"] or 0,
                    system_column_type=row["system_column_type"] or "",
                    format=row["format"],
                )
            )
        return tuple(columns)

    def _load_rows(self, conn: sqlite3.Connection, sheet_id: int) -> Tuple[Row, ...]:
        cells: Dict[int, List[Cell]] = {}
        for row in conn.execute(
            "SELECT * FROM sheet_cells WHERE sheet_id = ? ORDER BY row_id, position", (sheet_id,)
        ):
            cells.setdefault(row["row_id"], []).append(
                Cell(
                    column_id=row["column_id"],
                    value=row["value"],
                    display_value=row["display_value"],
                    format=row["format"],
                    conditional_format=row["conditional_format"],
                )
            )
        return tuple(
            Row(
                id=row["row_id"],
                row_number=row["row_number"],
                cells=tuple(cells.get(row["row_id"], ())),
                modified_at=row["modified_at"],
            )
            for row in conn.execute(
                "SELECT * FROM sheet_rows WHERE sheet_id = ? ORDER BY position", (sheet_id,)
            )
        )

    def _load_discussions(self, conn: sqlite3.Connection, sheet_id: int) -> Tuple[Discussion, ...]:
        comments: Dict[int, List[Comment]] = {}
        for row in conn.execute(
            "SELECT * FROM discussion_comments WHERE sheet_id = ? ORDER BY discussion_id, position",
            (sheet_id,),
        ):
            comments.setdefault(row["discussion_id"], []).append(
                Comment(
                    id=row["comment_id"],
                    text=row["text"] or "",
                    created_by_name=row["created_by_name"],
                    created_by_email=row["created_by_email"],
                    created_at=row["created_at"],
                    modified_at=row["modified_at"],
                )
            )
        return tuple(
            Discussion(
                id=row["discussion_id"],
                parent_id=row["parent_id"],
                parent_type=ParentType.parse(row["parent_type"]),
                title=row["title"],
                comment_count=row["comment_count"] or 0,
                last_commented_at=row["last_commented_at"],
                created_by_name=row["created_by_name"],
                created_by_email=row["created_by_email"],
                comments=tuple(comments.get(row["discussion_id"], ())),
            )
            for row in conn.execute(
                "SELECT * FROM sheet_discussions WHERE sheet_id = ? ORDER BY position", (sheet_id,)
            )
        )

    # ------------------------------------------------------------------
    # Pending edits
    # ------------------------------------------------------------------
    def upsert_pending_edit(self, edit: PendingEdit) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO pending_edits (sheet_id, row_id, column_id, column_type, sheet_name, baseline, "
                "new_value, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(sheet_id, row_id, column_id) DO UPDATE SET "
                "column_type = excluded.column_type, sheet_name = excluded.sheet_name, "
                "new_value = excluded.new_value, updated_at = excluded.updated_at",
                (
                    edit.sheet_id,
                    edit.row_id,
                    edit.column_id,
                    edit.column_type.value,
                    edit.sheet_name,
                    edit.baseline,
                    edit.new_value,
                    edit.updated_at,
                ),
            )
            conn.execute(
                "DELETE FROM pending_contacts WHERE sheet_id = ? AND row_id = ? AND column_id = ?",
                (edit.sheet_id, edit.row_id, edit.column_id),
            )
            conn.executemany(
                "INSERT INTO pending_contacts (sheet_id, row_id, column_id, position, email, name) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (edit.sheet_id, edit.row_id, edit.column_id, position, contact.email, contact.name)
                    for position, contact in enumerate(edit.contacts)
                ],
            )

    def delete_pending_edit(self, sheet_id: int, row_id: int, column_id: int) -> bool:
        with self.transaction() as conn:
            conn.execute(
                "DELETE FROM pending_contacts WHERE sheet_id = ? AND row_id = ? AND column_id = ?",
                (sheet_id, row_id, column_id),
            )
            removed = conn.execute(
                "DELETE FROM pending_edits WHERE sheet_id = ? AND row_id = ? AND column_id = ?",
                (sheet_id, row_id, column_id),
            ).rowcount
        return bool(removed)

    def delete_pending_edits(self, sheet_id: int) -> int:
        with self.transaction() as conn:
            conn.execute("DELETE FROM pending_contacts WHERE sheet_id = ?", (sheet_id,))
            removed = conn.execute("DELETE FROM pending_edits WHERE sheet_id = ?", (sheet_id,)).rowcount
        return int(removed or 0)

    def load_pending_edits(self, sheet_id: Optional[int] = None) -> List[PendingEdit]:
        where = ""
        params: Tuple[Any, ...] = ()
        if sheet_id is not None:
            where = " WHERE sheet_id = ?"
            params = (sheet_id,)
        with self._reader() as conn:
            contacts: Dict[Tuple[int, int, int], List[Contact]] = {}
            for row in conn.execute(
                f"SELECT * FROM pending_contacts{where} ORDER BY sheet_id, row_id, column_id, position", params
            ):
                key = (row["sheet_id"], row["row_id"], row["column_id"])
                contacts.setdefault(key, []).append(Contact(email=row["email"], name=row["name"] or ""))
            rows = conn.execute(
                f"SELECT * FROM pending_edits{where} ORDER BY sheet_id, row_id, column_id", params
            ).fetchall()
        return [_row_to_pending_edit(row, contacts) for row in rows]

    # ------------------------------------------------------------------
    # Pending discussions
    # ------------------------------------------------------------------
    def insert_pending_discussion(self, discussion: PendingDiscussion) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO pending_discussions (id, sheet_id, parent_id, parent_type, text, first_name, "
                "last_name, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    discussion.id,
                    discussion.sheet_id,
                    discussion.parent_id,
                    discussion.parent_type.value,
                    discussion.text,
                    discussion.first_name,
                    discussion.last_name,
                    discussion.created_at,
                ),
            )

    def delete_pending_discussion(self, discussion_id: str) -> bool:
        with self.transaction() as conn:
            removed = conn.execute(
                "DELETE FROM pending_discussions WHERE id = ?", (discussion_id,)
            ).rowcount
        return bool(removed)

    def delete_pending_discussions(self, sheet_id: int) -> int:
        with self.transaction() as conn:
            removed = conn.execute(
                "DELETE FROM pending_discussions WHERE sheet_id = ?", (sheet_id,)
            ).rowcount
        return int(removed or 0)

    def load_pending_discussions(self, sheet_id: Optional[int] = None) -> List[PendingDiscussion]:
        sql = "SELECT * FROM pending_discussions"
        params: Tuple[Any, ...] = ()
        if sheet_id is not None:
            sql += " WHERE sheet_id = ?"
            params = (sheet_id,)
        sql += " ORDER BY created_at, id"
        with self._reader() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            PendingDiscussion(
                id=row["id"],
                sheet_id=row["sheet_id"],
                parent_id=row["parent_id"],
                parent_type=ParentType.parse(row["parent_type"]),
                text=row["text"],
                created_at=row["created_at"],
                first_name=row["first_name"] or "",
                last_name=row["last_name"] or "",
            )
            for row in rows
        ]


def _row_to_pending_edit(
    row: Mapping[str, Any], contacts: Mapping[Tuple[int, int, int], Iterable[Contact]]
) -> PendingEdit:
    key = (row["sheet_id"], row["row_id"], row["column_id"])
    return PendingEdit(
        sheet_id=row["sheet_id"],
        row_id=row["row_id"],
        column_id=row["column_id"],
        column_type=ColumnType.parse(row["column_type"]),
        baseline=row["baseline"],
        new_value=row["new_value"],
        sheet_name=row["sheet_name"] or "",
        contacts=tuple(contacts.get(key, ())),
        updated_at=row["updated_at"],
    )


__all__ = [
    "DEFAULT_DB_FILENAME",
    "LocalStore",
    "StoreError",
    "TABLES",
]
