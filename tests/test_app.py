from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import app
from fakes import STATUS_COLUMN, FakeGateway, make_snapshot
from offline_core.models import SheetSummary
from offline_core.smartsheet_gateway import GatewayUnavailableError
from settings import SyncSettings


@pytest.fixture
def application(tmp_path):
    gateway = FakeGateway()
    gateway.snapshots[1] = make_snapshot({(100, STATUS_COLUMN): "Open", (101, STATUS_COLUMN): "Done"})
    gateway.summaries = [SheetSummary(id=1, name="Tasks")]
    settings = SyncSettings(database_path=str(tmp_path / "cli.db"), publish_batch_size=10)
    return app.build_application(settings, gateway=gateway)


def _cli(application, *argv) -> int:
    return app.main(list(argv), application=application)


def test_sheets_lists_summaries(application, capsys) -> None:
    assert _cli(application, "sheets") == 0
    assert "1\tTasks" in capsys.readouterr().out


def test_show_requires_a_cached_sheet(application, capsys) -> None:
    assert _cli(application, "show", "1") == 1
    assert "not available offline" in capsys.readouterr().err

    assert _cli(application, "show", "1", "--refresh") == 0
    assert "Status=Open" in capsys.readouterr().out


def test_edit_then_sync(application, capsys) -> None:
    _cli(application, "show", "1", "--refresh")

    assert _cli(application, "edit", "1", "100", str(STATUS_COLUMN), "Closed") == 0
    assert "'Open' -> 'Closed'" in capsys.readouterr().out

    assert _cli(application, "sync", "1") == 0
    assert "Published 1 cell(s)" in capsys.readouterr().out
    assert application.gateway.snapshots[1].row(100).cell(STATUS_COLUMN).value == "Closed"


def test_edit_rejects_unknown_column(application, capsys) -> None:
    _cli(application, "show", "1", "--refresh")

    assert _cli(application, "edit", "1", "100", "999", "x") == 1
    assert "Error" in capsys.readouterr().err


def test_conflict_blocks_sync_until_resolved(application, capsys) -> None:
    _cli(application, "show", "1", "--refresh")
    _cli(application, "edit", "1", "100", str(STATUS_COLUMN), "Closed")
    application.gateway.set_server_value(1, 100, STATUS_COLUMN, "In Progress")
    capsys.readouterr()

    assert _cli(application, "sync", "1") == 2
    assert "1 conflict(s)" in capsys.readouterr().out

    assert _cli(application, "resolve", "1", "--keep", "local", "--publish") == 0
    out = capsys.readouterr().out
    assert "Resolved 1 conflict(s)" in out
    assert "Published 1 cell(s)" in out
    assert application.gateway.snapshots[1].row(100).cell(STATUS_COLUMN).value == "Closed"


def test_comment_and_discard(application, capsys) -> None:
    assert _cli(application, "comment", "1", "Check this", "--row", "100") == 0
    assert _cli(application, "discard", "1") == 0
    assert "Discarded 1 local change(s)." in capsys.readouterr().out


def test_unreachable_server_reports_error(application, capsys) -> None:
    application.gateway.fetch_error = GatewayUnavailableError("down")

    assert _cli(application, "conflicts", "1") == 1
    assert "Could not fetch sheet 1" in capsys.readouterr().err


def test_logs_reads_entries_written_by_an_earlier_run(application, capsys, tmp_path) -> None:
    log_file = tmp_path / "previous.log"
    log_file.write_text(
        "2024-03-01 09:00:00,001 [INFO] offline_core.sync_service: Sheet 1: published 2 cell(s)\n"
        "2024-03-01 09:00:05,010 [WARNING] offline_core.conflicts: Conflict check for sheet 1 failed\n",
        encoding="utf-8",
    )

    assert _cli(application, "logs", "--file", str(log_file), "--level", "warning") == 0

    output = capsys.readouterr().out
    assert "Conflict check for sheet 1 failed" in output
    assert "published 2 cell(s)" not in output
