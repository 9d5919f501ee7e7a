"""Background synchronisation worker for the offline client."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

from db import StoreError
from offline_core.conflicts import SyncCancelled, SyncFailed
from offline_core.models import SyncReport
from offline_core.smartsheet_gateway import CredentialsMissingError
from offline_core.sync_service import PublishError, SheetSyncService

STATUS_LOADING = "loading"
STATUS_SUCCESS = "success"
STATUS_CONFLICTS = "conflicts"
STATUS_ERROR = "error"
STATUS_CANCELLED = "cancelled"

DEFAULT_POLL_INTERVAL = 60


@dataclass
class SyncResult:
    sheet_id: int
    status: str
    message: str
    report: Optional[SyncReport] = None


StatusCallback = Callable[[str, SyncResult], None]
Dispatcher = Callable[[Callable[[], None]], None]


def _call_now(callback: Callable[[], None]) -> None:
    callback()


class SyncWorker:
    """Run sync passes on background threads and report status to the caller.

    A second trigger for a sheet whose pass is still running is skipped.
    ``dispatch`` lets a UI marshal status callbacks onto its own thread.
    """

    def __init__(
        self,
        service: SheetSyncService,
        status_callback: Optional[StatusCallback] = None,
        *,
        dispatch: Optional[Dispatcher] = None,
        sheet_ids_provider: Optional[Callable[[], Iterable[int]]] = None,
        interval_seconds: int = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.service = service
        self.status_callback = status_callback
        self._dispatch = dispatch or _call_now
        self._sheet_ids_provider = sheet_ids_provider
        self._interval = max(15, int(interval_seconds))
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._in_flight: Dict[int, threading.Event] = {}
        self._logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._sheet_ids_provider is None:
            raise RuntimeError("Automatic sync needs a sheet id provider")
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        with self._lock:
            for event in self._in_flight.values():
                event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)
        self._thread = None

    def sync_now(self, sheet_id: int) -> Optional[threading.Thread]:
        """Start a pass for ``sheet_id``; returns ``None`` if one is already running."""

        cancel_event = self._claim(sheet_id)
        if cancel_event is None:
            self._logger.debug("Sync for sheet %s already running; trigger skipped", sheet_id)
            return None
        thread = threading.Thread(
            target=self._execute_sync, args=(sheet_id, cancel_event), daemon=True
        )
        thread.start()
        return thread

    def cancel(self, sheet_id: int) -> bool:
        with self._lock:
            event = self._in_flight.get(sheet_id)
        if event is None:
            return False
        event.set()
        return True

    def is_running(self, sheet_id: int) -> bool:
        with self._lock:
            return sheet_id in self._in_flight

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _claim(self, sheet_id: int) -> Optional[threading.Event]:
        with self._lock:
            if sheet_id in self._in_flight:
                return None
            event = threading.Event()
            self._in_flight[sheet_id] = event
            return event

    def _release(self, sheet_id: int) -> None:
        with self._lock:
            self._in_flight.pop(sheet_id, None)

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                sheet_ids = list(self._sheet_ids_provider() or ())
            except Exception:
                self._logger.exception("Could not determine which sheets to sync")
                sheet_ids = []
            for sheet_id in sheet_ids:
                if self._stop_event.is_set():
                    break
                cancel_event = self._claim(sheet_id)
                if cancel_event is not None:
                    self._execute_sync(sheet_id, cancel_event)
            if self._stop_event.wait(self._interval):
                break

    def _execute_sync(self, sheet_id: int, cancel_event: threading.Event) -> None:
        try:
            self._dispatch_status(
                SyncResult(sheet_id=sheet_id, status=STATUS_LOADING, message="Syncing…")
            )
            try:
                report = self.service.sync(sheet_id, cancel_event)
            except SyncCancelled as exc:
                result = SyncResult(sheet_id=sheet_id, status=STATUS_CANCELLED, message=str(exc))
            except SyncFailed as exc:
                if isinstance(exc.__cause__, CredentialsMissingError):
                    message = "Sign in to Smartsheet to sync."
                else:
                    message = f"Sync failed, try again: {exc}"
                result = SyncResult(sheet_id=sheet_id, status=STATUS_ERROR, message=message)
            except PublishError as exc:
                result = SyncResult(
                    sheet_id=sheet_id, status=STATUS_ERROR, message=str(exc), report=exc.report
                )
                self._logger.warning("Publishing sheet %s failed: %s", sheet_id, exc)
            except StoreError as exc:
                result = SyncResult(
                    sheet_id=sheet_id, status=STATUS_ERROR, message=f"Local storage failed: {exc}"
                )
                self._logger.error("Local store failure during sync of sheet %s: %s", sheet_id, exc)
            except Exception as exc:  # pragma: no cover - best effort logging
                result = SyncResult(sheet_id=sheet_id, status=STATUS_ERROR, message=f"Sync failed: {exc}")
                self._logger.exception("Unexpected error during sync of sheet %s", sheet_id)
            else:
                if report.blocked:
                    result = SyncResult(
                        sheet_id=sheet_id,
                        status=STATUS_CONFLICTS,
                        message=f"{len(report.conflicts)} conflict(s) need a decision",
                        report=report,
                    )
                else:
                    result = SyncResult(
                        sheet_id=sheet_id,
                        status=STATUS_SUCCESS,
                        message=(
                            f"Published {report.published_cells} cell(s) and "
                            f"{report.published_discussions} comment(s)"
                        ),
                        report=report,
                    )
        finally:
            self._release(sheet_id)
        self._dispatch_status(result)

    def _dispatch_status(self, result: SyncResult) -> None:
        if not self.status_callback:
            return

        def callback() -> None:
            self.status_callback(result.status, result)

        try:
            self._dispatch(callback)
        except Exception:
            self._logger.exception("Sync status callback failed")


__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "STATUS_CANCELLED",
    "STATUS_CONFLICTS",
    "STATUS_ERROR",
    "STATUS_LOADING",
    "STATUS_SUCCESS",
    "SyncResult",
    "SyncWorker",
]
