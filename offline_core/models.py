"""Data containers shared by the store, the ledger and the sync engine."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple


class ColumnType(Enum):
    ABSTRACT_DATETIME = "ABSTRACT_DATETIME"
    CHECKBOX = "CHECKBOX"
    CONTACT_LIST = "CONTACT_LIST"
    DATE = "DATE"
    DATETIME = "DATETIME"
    DURATION = "DURATION"
    MULTI_CONTACT_LIST = "MULTI_CONTACT_LIST"
    MULTI_PICKLIST = "MULTI_PICKLIST"
    PICKLIST = "PICKLIST"
    PREDECESSOR = "PREDECESSOR"
    TEXT_NUMBER = "TEXT_NUMBER"

    @classmethod
    def parse(cls, value: object) -> "ColumnType":
        """Return the matching member, falling back to ``TEXT_NUMBER``."""

        if isinstance(value, ColumnType):
            return value
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.TEXT_NUMBER

    @property
    def is_contact(self) -> bool:
        return self in (ColumnType.CONTACT_LIST, ColumnType.MULTI_CONTACT_LIST)


class ParentType(Enum):
    ROW = "ROW"
    SHEET = "SHEET"

    @classmethod
    def parse(cls, value: object) -> "ParentType":
        if isinstance(value, ParentType):
            return value
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.SHEET


class ConflictKind(Enum):
    VALUE = "VALUE"
    REMOTE_DELETED = "REMOTE_DELETED"


class CellKey(NamedTuple):
    """Identity of a single cell: ``(sheet_id, row_id, column_id)``."""

    sheet_id: int
    row_id: int
    column_id: int


# ---------------------------------------------------------------------------
# Cached sheet content
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Contact:
    email: str
    name: str = ""


@dataclass(frozen=True)
class Column:
    id: int
    index: int
    title: str
    type: ColumnType = ColumnType.TEXT_NUMBER
    options: Tuple[str, ...] = ()
    contact_options: Tuple[Contact, ...] = ()
    primary: bool = False
    hidden: bool = False
    width: int = 0
    system_column_type: str = ""
    format: Optional[str] = None


@dataclass(frozen=True)
class Cell:
    column_id: int
    value: Optional[str] = None
    display_value: Optional[str] = None
    format: Optional[str] = None
    conditional_format: Optional[str] = None


@dataclass(frozen=True)
class Row:
    id: int
    row_number: int
    cells: Tuple[Cell, ...] = ()
    modified_at: Optional[str] = None

    def cell(self, column_id: int) -> Optional[Cell]:
        for cell in self.cells:
            if cell.column_id == column_id:
                return cell
        return None


@dataclass(frozen=True)
class Comment:
    id: int
    text: str = ""
    created_by_name: Optional[str] = None
    created_by_email: Optional[str] = None
    created_at: Optional[str] = None
    modified_at: Optional[str] = None


@dataclass(frozen=True)
class Discussion:
    id: int
    parent_id: Optional[int] = None
    parent_type: ParentType = ParentType.SHEET
    title: Optional[str] = None
    comment_count: int = 0
    last_commented_at: Optional[str] = None
    created_by_name: Optional[str] = None
    created_by_email: Optional[str] = None
    comments: Tuple[Comment, ...] = ()


@dataclass(frozen=True)
class SheetSnapshot:
    """Complete cached representation of a sheet as last fetched from the server."""

    id: int
    name: str
    columns: Tuple[Column, ...] = ()
    rows: Tuple[Row, ...] = ()
    discussions: Tuple[Discussion, ...] = ()
    modified_at: Optional[str] = None
    version: Optional[int] = None

    def column(self, column_id: int) -> Optional[Column]:
        for column in self.columns:
            if column.id == column_id:
                return column
        return None

    def row(self, row_id: int) -> Optional[Row]:
        for row in self.rows:
            if row.id == row_id:
                return row
        return None

    def iter_cells(self) -> Iterator[Tuple[int, Cell]]:
        for row in self.rows:
            for cell in row.cells:
                yield row.id, cell

    def value_map(self) -> Dict[Tuple[int, int], Optional[str]]:
        """Return ``{(row_id, column_id): value}`` for every cell in the sheet."""

        return {(row_id, cell.column_id): cell.value for row_id, cell in self.iter_cells()}

    def discussions_for_row(self, row_id: int) -> List[Discussion]:
        return [
            discussion
            for discussion in self.discussions
            if discussion.parent_type is ParentType.ROW and discussion.parent_id == row_id
        ]


@dataclass(frozen=True)
class SheetSummary:
    id: int
    name: str
    modified_at: str = ""


# ---------------------------------------------------------------------------
# Local changes waiting to be published
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PendingEdit:
    """A local cell change not yet confirmed on the server."""

    sheet_id: int
    row_id: int
    column_id: int
    column_type: ColumnType
    baseline: Optional[str]
    new_value: Optional[str]
    sheet_name: str = ""
    contacts: Tuple[Contact, ...] = ()
    updated_at: Optional[str] = None

    @property
    def key(self) -> CellKey:
        return CellKey(self.sheet_id, self.row_id, self.column_id)

    def with_new_value(
        self,
        new_value: Optional[str],
        *,
        contacts: Tuple[Contact, ...] = (),
        updated_at: Optional[str] = None,
    ) -> "PendingEdit":
        return replace(self, new_value=new_value, contacts=contacts, updated_at=updated_at)


@dataclass(frozen=True)
class PendingDiscussion:
    id: str
    sheet_id: int
    parent_id: int
    parent_type: ParentType
    text: str
    created_at: str
    first_name: str = ""
    last_name: str = ""

    @property
    def author_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Conflict:
    """A pending edit whose cell was changed independently on the server."""

    sheet_id: int
    row_id: int
    column_id: int
    column_type: ColumnType
    server_value: Optional[str]
    local_value: Optional[str]
    pending_edit: Optional[PendingEdit] = None
    resolved: bool = False
    kind: ConflictKind = ConflictKind.VALUE

    @property
    def key(self) -> CellKey:
        return CellKey(self.sheet_id, self.row_id, self.column_id)

    def mark_resolved(self) -> "Conflict":
        return replace(self, resolved=True)


@dataclass
class SyncReport:
    sheet_id: int
    conflicts: List[Conflict] = field(default_factory=list)
    published_cells: int = 0
    dropped_cells: int = 0
    published_discussions: int = 0
    refreshed: bool = False

    @property
    def blocked(self) -> bool:
        return bool(self.conflicts)


__all__ = [
    "CellKey",
    "Cell",
    "Column",
    "ColumnType",
    "Comment",
    "Conflict",
    "ConflictKind",
    "Contact",
    "Discussion",
    "ParentType",
    "PendingDiscussion",
    "PendingEdit",
    "Row",
    "SheetSnapshot",
    "SheetSummary",
    "SyncReport",
]
