"""Composition root and command line interface for the Smartsheet offline client."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from db import LocalStore, StoreError
from offline_core.conflicts import ConflictEngine, SyncCancelled, SyncFailed, summarise
from offline_core.ledger import PendingEditLedger
from offline_core.logging_config import configure_logging, read_log_file
from offline_core.resolution import ConflictResolver
from offline_core.smartsheet_gateway import SmartsheetGateway
from offline_core.sync_service import PublishError, SheetNotCached, SheetSyncService
from settings import SyncSettings, load_sync_settings


@dataclass
class Application:
    settings: SyncSettings
    store: LocalStore
    gateway: object
    ledger: PendingEditLedger
    engine: ConflictEngine
    resolver: ConflictResolver
    service: SheetSyncService


def build_application(settings: Optional[SyncSettings] = None, *, gateway=None) -> Application:
    """Wire the concrete store, gateway, ledger and engine together once."""

    settings = settings or load_sync_settings()
    store = LocalStore(settings.database_path)
    if gateway is None:
        gateway = SmartsheetGateway(settings.access_token)
    ledger = PendingEditLedger(store)
    engine = ConflictEngine(gateway, store, ledger)
    resolver = ConflictResolver(engine, ledger, store)
    service = SheetSyncService(
        gateway,
        store,
        ledger,
        engine,
        publish_batch_size=settings.publish_batch_size,
        author=(settings.user_first_name, settings.user_last_name),
    )
    return Application(
        settings=settings,
        store=store,
        gateway=gateway,
        ledger=ledger,
        engine=engine,
        resolver=resolver,
        service=service,
    )


def _print_conflicts(app: Application, sheet_id: int) -> None:
    conflicts = app.engine.conflicts(sheet_id)
    if not conflicts:
        print("No conflicts.")
        return
    print(f"{len(conflicts)} conflict(s):")
    for line in summarise(conflicts):
        print(f"  {line}")


def command_sheets(args: argparse.Namespace, app: Application) -> int:
    summaries = app.service.refresh_sheet_list()
    if not summaries:
        print("No sheets available.")
        return 0
    for summary in summaries:
        print(f"{summary.id}\t{summary.name}\t{summary.modified_at}")
    return 0


def command_show(args: argparse.Namespace, app: Application) -> int:
    try:
        if args.refresh:
            app.service.load_sheet(args.sheet_id, online=True)
        snapshot = app.service.sheet_view(args.sheet_id)
    except SheetNotCached as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"{snapshot.name} ({snapshot.id})")
    titles = {column.id: column.title for column in snapshot.columns}
    pending = {(edit.row_id, edit.column_id) for edit in app.ledger.list_edits(args.sheet_id)}
    for row in snapshot.rows:
        values = []
        for cell in row.cells:
            marker = "*" if (row.id, cell.column_id) in pending else ""
            values.append(f"{titles.get(cell.column_id, cell.column_id)}={cell.value or ''}{marker}")
        print(f"[{row.row_number}] {row.id}: " + ", ".join(values))
    return 0


def command_edit(args: argparse.Namespace, app: Application) -> int:
    try:
        edit = app.service.edit_cell(args.sheet_id, args.row_id, args.column_id, args.value)
    except (SheetNotCached, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"Pending: {edit.baseline!r} -> {edit.new_value!r}")
    return 0


def command_comment(args: argparse.Namespace, app: Application) -> int:
    try:
        discussion = app.service.add_comment(args.sheet_id, args.text, row_id=args.row_id)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"Comment queued ({discussion.id}).")
    return 0


def command_conflicts(args: argparse.Namespace, app: Application) -> int:
    try:
        app.engine.check_for_conflicts(args.sheet_id)
    except SyncFailed as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    _print_conflicts(app, args.sheet_id)
    return 0


def command_resolve(args: argparse.Namespace, app: Application) -> int:
    try:
        app.engine.check_for_conflicts(args.sheet_id)
    except SyncFailed as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    choose_local = args.keep == "local"
    resolved = 0
    for conflict in app.engine.conflicts(args.sheet_id):
        if args.row_id is not None and conflict.row_id != args.row_id:
            continue
        if args.column_id is not None and conflict.column_id != args.column_id:
            continue
        if app.resolver.resolve(conflict, choose_local):
            resolved += 1
    print(f"Resolved {resolved} conflict(s) keeping the {args.keep} value.")

    if args.publish:
        return _run_sync(app, args.sheet_id)
    return 0


def _run_sync(app: Application, sheet_id: int) -> int:
    try:
        report = app.service.sync(sheet_id)
    except (SyncFailed, SyncCancelled, PublishError, StoreError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    if report.blocked:
        _print_conflicts(app, sheet_id)
        return 2
    print(
        f"Published {report.published_cells} cell(s) and {report.published_discussions} comment(s)."
    )
    if report.dropped_cells:
        print(f"Dropped {report.dropped_cells} edit(s) whose row or column was removed.")
    return 0


def command_sync(args: argparse.Namespace, app: Application) -> int:
    return _run_sync(app, args.sheet_id)


def command_discard(args: argparse.Namespace, app: Application) -> int:
    removed = app.service.discard_local_changes(args.sheet_id)
    print(f"Discarded {removed} local change(s).")
    return 0


def command_logs(args: argparse.Namespace, app: Application) -> int:
    log_file = Path(args.file) if args.file else None
    for entry in reversed(read_log_file(log_file, args.limit, level=args.level)):
        print(f"{entry['timestamp']} [{entry['level']}] {entry['context']}: {entry['message']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Smartsheet offline editing tool")
    parser.add_argument("--settings", help="Path to the settings JSON file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sheets_parser = subparsers.add_parser("sheets", help="List available sheets")
    sheets_parser.set_defaults(func=command_sheets)

    show_parser = subparsers.add_parser("show", help="Show a cached sheet with pending edits")
    show_parser.add_argument("sheet_id", type=int)
    show_parser.add_argument("--refresh", action="store_true", help="Fetch the sheet before showing it")
    show_parser.set_defaults(func=command_show)

    edit_parser = subparsers.add_parser("edit", help="Record a local cell edit")
    edit_parser.add_argument("sheet_id", type=int)
    edit_parser.add_argument("row_id", type=int)
    edit_parser.add_argument("column_id", type=int)
    edit_parser.add_argument("value")
    edit_parser.set_defaults(func=command_edit)

    comment_parser = subparsers.add_parser("comment", help="Queue a comment for publishing")
    comment_parser.add_argument("sheet_id", type=int)
    comment_parser.add_argument("text")
    comment_parser.add_argument("--row", dest="row_id", type=int, help="Attach the comment to a row")
    comment_parser.set_defaults(func=command_comment)

    conflicts_parser = subparsers.add_parser("conflicts", help="Check a sheet for conflicts")
    conflicts_parser.add_argument("sheet_id", type=int)
    conflicts_parser.set_defaults(func=command_conflicts)

    resolve_parser = subparsers.add_parser("resolve", help="Resolve conflicts of a sheet")
    resolve_parser.add_argument("sheet_id", type=int)
    resolve_parser.add_argument("--keep", choices=("local", "remote"), required=True)
    resolve_parser.add_argument("--row", dest="row_id", type=int)
    resolve_parser.add_argument("--column", dest="column_id", type=int)
    resolve_parser.add_argument(
        "--publish",
        action="store_true",
        help="Publish the sheet right after resolving",
    )
    resolve_parser.set_defaults(func=command_resolve)

    sync_parser = subparsers.add_parser("sync", help="Publish local changes of a sheet")
    sync_parser.add_argument("sheet_id", type=int)
    sync_parser.set_defaults(func=command_sync)

    discard_parser = subparsers.add_parser("discard", help="Discard all local changes of a sheet")
    discard_parser.add_argument("sheet_id", type=int)
    discard_parser.set_defaults(func=command_discard)

    logs_parser = subparsers.add_parser("logs", help="Show recent entries of the log file")
    logs_parser.add_argument("--file", help="Log file to read instead of the application log")
    logs_parser.add_argument("--limit", type=int, default=50)
    logs_parser.add_argument("--level", choices=("debug", "info", "warning", "error", "critical"))
    logs_parser.set_defaults(func=command_logs)

    return parser


def main(argv: list[str] | None = None, application: Optional[Application] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if application is None:
        settings = load_sync_settings(args.settings) if args.settings else load_sync_settings()
        configure_logging(settings.logging_level())
        application = build_application(settings)
    return args.func(args, application)


if __name__ == "__main__":
    sys.exit(main())
