import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from stockflow.core.config import settings
from stockflow.core.observability import log_event, setup_observability
from stockflow.services.reconciliation_service import businesses_with_activity, run_reconciliation
from stockflow.services.transfer_job_service import dispatch_due_transfer_jobs
from stockflow.services.transfer_service import TransferPorts


class TransferWorker:
    """
    In-process polling worker.

    Each tick dispatches due transfer jobs and, once the reconciliation
    interval has elapsed, reconciles every business with ledger activity.
    `tick()` is public so tests and cron wrappers can drive it directly.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        tick_interval_seconds: int | None = None,
        reconciliation_interval: timedelta | None = None,
        reconciliation_mode: str | None = None,
        ports: TransferPorts | None = None,
    ):
        self._session_factory = session_factory
        self._tick_interval = tick_interval_seconds or settings.worker_tick_seconds
        self._reconciliation_interval = reconciliation_interval or timedelta(
            minutes=settings.reconciliation_interval_minutes
        )
        self._reconciliation_mode = reconciliation_mode or settings.reconciliation_mode
        self._ports = ports
        self._last_reconciliation_at: datetime | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self, now: datetime | None = None) -> dict:
        now = now or datetime.now(timezone.utc)
        summary: dict = {"jobs": None, "reconciled_businesses": 0}
        session = self._session_factory()
        try:
            summary["jobs"] = dispatch_due_transfer_jobs(session, ports=self._ports, now=now)
            if self._reconciliation_due(now):
                summary["reconciled_businesses"] = self._reconcile_all(session)
                self._last_reconciliation_at = now
        except Exception as exc:  # noqa: BLE001
            session.rollback()
            log_event("worker_tick_failed", level=logging.ERROR, error=str(exc))
        finally:
            session.close()
        return summary

    def _reconciliation_due(self, now: datetime) -> bool:
        if self._last_reconciliation_at is None:
            return True
        return now - self._last_reconciliation_at >= self._reconciliation_interval

    def _reconcile_all(self, session: Session) -> int:
        reconciled = 0
        for business_id in businesses_with_activity(session):
            if self._stop_event.is_set():
                break
            run_reconciliation(session, business_id=business_id, mode=self._reconciliation_mode)
            reconciled += 1
        return reconciled

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="stockflow-worker", daemon=True)
        self._thread.start()
        log_event("worker_started", tick_interval=self._tick_interval)

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        log_event("worker_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._tick_interval)


def main() -> None:
    from stockflow.db.session import SessionLocal

    setup_observability()
    worker = TransferWorker(SessionLocal)
    worker.start()
    try:
        while worker.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        worker.stop()


if __name__ == "__main__":
    main()
