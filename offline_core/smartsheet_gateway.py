"""Smartsheet gateway for the offline client.

This module is a thin abstraction around ``smartsheet-python-sdk`` that
covers the operations the sync engine needs:

``fetch_sheet``
    Download a sheet (with discussions) and decode it into a
    :class:`~offline_core.models.SheetSnapshot`.

``list_sheets``
    List every sheet the user can access, for the sheet picker.

``update_cells``
    Publish a batch of pending cell edits with a single ``update_rows``
    request.

``post_discussion``
    Create a row or sheet discussion from a pending comment.

Decoding (:func:`snapshot_from_payload`) and encoding (:func:`rows_payload`)
are pure functions so they can be unit tested without touching the network.
SDK and transport failures are mapped onto the :class:`GatewayError` family.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import requests
import smartsheet
from smartsheet.exceptions import ApiError, HttpError, UnexpectedRequestError

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
from offline_core.values import split_multi_value, to_cell_string

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]
ClientFactory = Callable[[str], Any]

MAX_ROWS_PER_REQUEST = 500


class GatewayError(RuntimeError):
    """Base class for failures talking to Smartsheet."""


class GatewayUnavailableError(GatewayError):
    """Raised when the network or transport layer fails."""


class GatewayServerError(GatewayError):
    """Raised when Smartsheet answers with an API error."""


class DecodeError(GatewayError):
    """Raised when a server payload does not match the expected schema."""


class CredentialsMissingError(GatewayError):
    """Raised when the token provider does not return an access token."""


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _timestamp(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _author(payload: Mapping[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    created_by = payload.get("createdBy") or {}
    if not isinstance(created_by, Mapping):
        return None, None
    return created_by.get("name"), created_by.get("email")


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _decode_column(payload: Mapping[str, Any], position: int) -> Column:
    contacts = tuple(
        Contact(email=str(contact.get("email") or ""), name=str(contact.get("name") or ""))
        for contact in payload.get("contactOptions") or ()
    )
    return Column(
        id=int(payload["id"]),
        index=int(payload.get("index", position)),
        title=str(payload.get("title") or ""),
        type=ColumnType.parse(payload.get("type")),
        options=tuple(str(option) for option in payload.get("options") or ()),
        contact_options=contacts,
        primary=bool(payload.get("primary", False)),
        hidden=bool(payload.get("hidden", False)),
        width=int(payload.get("width") or 0),
        system_column_type=str(payload.get("systemColumnType") or ""),
        format=_optional_text(payload.get("format")),
    )


def _decode_cell(payload: Mapping[str, Any]) -> Cell:
    return Cell(
        column_id=int(payload["columnId"]),
        value=to_cell_string(payload.get("value")),
        display_value=to_cell_string(payload.get("displayValue")),
        format=_optional_text(payload.get("format")),
        conditional_format=_optional_text(payload.get("conditionalFormat")),
    )


def _decode_row(payload: Mapping[str, Any], position: int) -> Row:
    return Row(
        id=int(payload["id"]),
        row_number=int(payload.get("rowNumber") or position + 1),
        cells=tuple(_decode_cell(cell) for cell in payload.get("cells") or ()),
        modified_at=_timestamp(payload.get("modifiedAt")),
    )


def _decode_discussion(payload: Mapping[str, Any]) -> Discussion:
    comments = []
    for comment in payload.get("comments") or ():
        name, email = _author(comment)
        comments.append(
            Comment(
                id=int(comment["id"]),
                text=str(comment.get("text") or ""),
                created_by_name=name,
                created_by_email=email,
                created_at=_timestamp(comment.get("createdAt")),
                modified_at=_timestamp(comment.get("modifiedAt")),
            )
        )
    name, email = _author(payload)
    parent_id = payload.get("parentId")
    return Discussion(
        id=int(payload["id"]),
        parent_id=int(parent_id) if parent_id is not None else None,
        parent_type=ParentType.parse(payload.get("parentType")),
        title=_optional_text(payload.get("title")),
        comment_count=int(payload.get("commentCount") or len(comments)),
        last_commented_at=_timestamp(payload.get("lastCommentedAt")),
        created_by_name=name,
        created_by_email=email,
        comments=tuple(comments),
    )


def snapshot_from_payload(payload: Mapping[str, Any]) -> SheetSnapshot:
    """Decode a camelCase sheet payload into a :class:`SheetSnapshot`.

    Raises :class:`DecodeError` when required fields are missing or have the
    wrong shape.  Numeric and boolean cell values are normalised to strings.
    """

    if not isinstance(payload, Mapping):
        raise DecodeError(f"Expected a sheet object, got {type(payload).__name__}")
    try:
        columns = tuple(
            _decode_column(column, position)
            for position, column in enumerate(payload.get("columns") or ())
        )
        rows = tuple(_decode_row(row, position) for position, row in enumerate(payload.get("rows") or ()))
        discussions = tuple(_decode_discussion(item) for item in payload.get("discussions") or ())
        version = payload.get("version")
        return SheetSnapshot(
            id=int(payload["id"]),
            name=str(payload["name"]),
            columns=columns,
            rows=rows,
            discussions=discussions,
            modified_at=_timestamp(payload.get("modifiedAt")),
            version=int(version) if version is not None else None,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise DecodeError(f"Sheet payload did not match the expected schema: {exc!r}") from exc


def summary_from_payload(payload: Mapping[str, Any]) -> SheetSummary:
    try:
        return SheetSummary(
            id=int(payload["id"]),
            name=str(payload["name"]),
            modified_at=_timestamp(payload.get("modifiedAt")) or "",
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise DecodeError(f"Sheet summary did not match the expected schema: {exc!r}") from exc


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _contact_payload(contact: Contact) -> Dict[str, str]:
    payload = {"objectType": "CONTACT", "email": contact.email}
    if contact.name:
        payload["name"] = contact.name
    return payload


def cell_payload(edit: PendingEdit) -> Dict[str, Any]:
    """Return the ``update_rows`` cell body for a pending edit."""

    if edit.column_type is ColumnType.MULTI_CONTACT_LIST and edit.contacts:
        return {
            "columnId": edit.column_id,
            "objectValue": {
                "objectType": "MULTI_CONTACT",
                "values": [_contact_payload(contact) for contact in edit.contacts],
            },
        }
    if edit.column_type is ColumnType.CONTACT_LIST and edit.contacts:
        return {"columnId": edit.column_id, "objectValue": _contact_payload(edit.contacts[0])}
    if edit.column_type is ColumnType.CHECKBOX and edit.new_value is not None:
        return {"columnId": edit.column_id, "value": edit.new_value.strip().lower() == "true"}
    if edit.column_type is ColumnType.MULTI_PICKLIST and edit.new_value:
        return {
            "columnId": edit.column_id,
            "objectValue": {"objectType": "MULTI_PICKLIST", "values": split_multi_value(edit.new_value)},
        }
    # Smartsheet clears a cell when it receives an empty string.
    value = "" if edit.new_value is None else edit.new_value
    return {"columnId": edit.column_id, "value": value}


def rows_payload(edits: Iterable[PendingEdit]) -> List[Dict[str, Any]]:
    """Group edits into ``update_rows`` bodies, one per row, in first-seen order."""

    rows: Dict[int, List[Dict[str, Any]]] = {}
    for edit in edits:
        rows.setdefault(edit.row_id, []).append(cell_payload(edit))
    return [{"id": row_id, "cells": cells} for row_id, cells in rows.items()]


def batch_edits(edits: Sequence[PendingEdit], rows_per_batch: int) -> Iterator[List[PendingEdit]]:
    """Yield edits in chunks holding at most ``rows_per_batch`` distinct rows."""

    limit = max(1, min(MAX_ROWS_PER_REQUEST, int(rows_per_batch)))
    batch: List[PendingEdit] = []
    rows_in_batch: set = set()
    for edit in edits:
        if edit.row_id not in rows_in_batch and len(rows_in_batch) >= limit:
            yield batch
            batch = []
            rows_in_batch = set()
        batch.append(edit)
        rows_in_batch.add(edit.row_id)
    if batch:
        yield batch


def discussion_payload(discussion: PendingDiscussion) -> Dict[str, Any]:
    return {"comment": {"text": discussion.text}}


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


def _default_client_factory(token: str):
    client = smartsheet.Smartsheet(token)
    client.errors_as_exceptions(True)
    logging.getLogger("smartsheet").setLevel(logging.WARNING)
    return client


def _as_payload(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return value


class SmartsheetGateway:
    """Remote sheet access backed by the Smartsheet SDK."""

    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self._token_provider = token_provider
        self._client_factory = client_factory or _default_client_factory
        self._client = None
        self._client_token: Optional[str] = None

    def _get_client(self):
        token = self._token_provider()
        if not token:
            raise CredentialsMissingError("No Smartsheet access token is available")
        if self._client is None or token != self._client_token:
            self._client = self._client_factory(token)
            self._client_token = token
        return self._client

    def _call(self, action: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ApiError as exc:
            logger.warning("Smartsheet API error during %s: %s", action, exc)
            raise GatewayServerError(f"Smartsheet rejected {action}: {exc}") from exc
        except HttpError as exc:
            logger.warning("Smartsheet HTTP error during %s: %s", action, exc)
            raise GatewayServerError(f"Smartsheet HTTP error during {action}: {exc}") from exc
        except (UnexpectedRequestError, requests.exceptions.RequestException) as exc:
            logger.warning("Smartsheet unreachable during %s: %s", action, exc)
            raise GatewayUnavailableError(f"Smartsheet is unreachable ({action}): {exc}") from exc

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def fetch_sheet(self, sheet_id: int) -> SheetSnapshot:
        client = self._get_client()
        sheet = self._call("get_sheet", client.Sheets.get_sheet, sheet_id, include="discussions")
        snapshot = snapshot_from_payload(_as_payload(sheet))
        logger.debug("Fetched sheet %s with %d rows", sheet_id, len(snapshot.rows))
        return snapshot

    def list_sheets(self) -> List[SheetSummary]:
        client = self._get_client()
        response = self._call("list_sheets", client.Sheets.list_sheets, include_all=True)
        data = getattr(response, "data", None)
        if data is None:
            data = (_as_payload(response) or {}).get("data") or []
        return [summary_from_payload(_as_payload(item)) for item in data]

    def update_cells(self, sheet_id: int, edits: Sequence[PendingEdit]) -> int:
        """Publish ``edits`` with one ``update_rows`` request; returns the row count."""

        payload = rows_payload(edits)
        if not payload:
            return 0
        if len(payload) > MAX_ROWS_PER_REQUEST:
            raise ValueError(f"At most {MAX_ROWS_PER_REQUEST} rows can be updated per request")
        client = self._get_client()
        rows = [smartsheet.models.Row(row) for row in payload]
        self._call("update_rows", client.Sheets.update_rows, sheet_id, rows)
        logger.info("Published %d cell(s) across %d row(s) to sheet %s", len(edits), len(rows), sheet_id)
        return len(rows)

    def post_discussion(self, discussion: PendingDiscussion) -> None:
        client = self._get_client()
        body = smartsheet.models.Discussion(discussion_payload(discussion))
        if discussion.parent_type is ParentType.ROW:
            self._call(
                "create_discussion_on_row",
                client.Discussions.create_discussion_on_row,
                discussion.sheet_id,
                discussion.parent_id,
                body,
            )
        else:
            self._call(
                "create_discussion_on_sheet",
                client.Discussions.create_discussion_on_sheet,
                discussion.sheet_id,
                body,
            )
        logger.info("Posted discussion %s on sheet %s", discussion.id, discussion.sheet_id)


__all__ = [
    "CredentialsMissingError",
    "DecodeError",
    "GatewayError",
    "GatewayServerError",
    "GatewayUnavailableError",
    "MAX_ROWS_PER_REQUEST",
    "SmartsheetGateway",
    "batch_edits",
    "cell_payload",
    "discussion_payload",
    "rows_payload",
    "snapshot_from_payload",
    "summary_from_payload",
]
