from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Mapping, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from .change_feed import ChangeFeed, Snapshot, SubscriptionError
from .config import Settings
from .devices import is_device_key, load_type
from .downstream import (
    ConsumptionClient,
    DownstreamError,
    ForwardResult,
    RemoteError,
    ResetCheckResult,
    forward_observation,
)
from .stats import AggregateStats
from .sync_gate import SyncDecision, SyncGate


logger = logging.getLogger("wattch.sync")

SUBSCRIBE_RETRY_S = 30.0


class SyncService:
    """Owns all bridge state: gate records, counters, the forward pool and timers.

    Snapshots arrive on a queue from the change feed and are consumed by a single
    loop (``run_forever``), which keeps per-device ordering. Forwards run on a
    thread pool and report back through a result queue drained by the same loop.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        client: ConsumptionClient,
        feed: ChangeFeed,
        gate: Optional[SyncGate] = None,
        stats: Optional[AggregateStats] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.client = client
        self.feed = feed
        self.gate = gate or SyncGate(sync_interval_s=settings.sync_interval_s)
        self.stats = stats or AggregateStats()
        self.clock = clock

        self._executor = executor or ThreadPoolExecutor(
            max_workers=settings.forward_workers,
            thread_name_prefix="wattch-forward",
        )
        self._snapshots: queue.Queue[Snapshot] = queue.Queue()
        self._results: queue.Queue[ForwardResult] = queue.Queue()

        self._pending_cond = threading.Condition()
        self._pending: set[Future] = set()

        self._stop = threading.Event()
        self._closed = False
        self._scheduler: BackgroundScheduler | None = None

    # -----------------------------
    # Snapshot processing
    # -----------------------------

    def submit_snapshot(self, snapshot: Snapshot) -> None:
        """Change-feed sink; safe to call from any thread."""

        self._snapshots.put(snapshot)

    def process_snapshot(self, snapshot: Any, *, now: Optional[float] = None) -> List[SyncDecision]:
        if not snapshot or not isinstance(snapshot, Mapping):
            logger.error("No data found at path %r", self.settings.firebase_path)
            return []

        ts = float(now if now is not None else self.clock())
        decisions: List[SyncDecision] = []
        for device_id, observation in snapshot.items():
            if not is_device_key(device_id):
                continue
            decision = self.gate.decide(device_id, observation, now=ts)
            decisions.append(decision)
            if decision.forward:
                self._dispatch(decision)
        return decisions

    def _dispatch(self, decision: SyncDecision) -> None:
        future = self._executor.submit(
            forward_observation,
            self.client,
            device_id=decision.device_id,
            load_type=load_type(decision.device_id),
            power=decision.power,
            duration_seconds=decision.duration_seconds,
        )
        with self._pending_cond:
            self._pending.add(future)
        future.add_done_callback(lambda f: self._on_forward_done(f, decision))

    def _on_forward_done(self, future: Future, decision: SyncDecision) -> None:
        exc = future.exception()
        if exc is not None:
            # forward_observation only returns; anything raised here is a bug.
            logger.error("forward task for %s crashed: %r", decision.device_id, exc)
            result = ForwardResult(
                device_id=decision.device_id,
                power=decision.power,
                duration_seconds=decision.duration_seconds,
                error=DownstreamError(f"forward task crashed: {exc!r}"),
            )
        else:
            result = future.result()
        self._results.put(result)

        # Result is queued before the future leaves the pending set.
        with self._pending_cond:
            self._pending.discard(future)
            self._pending_cond.notify_all()

    def drain_results(self) -> int:
        """Apply finished forward results to counters and logs. Returns the count."""

        handled = 0
        while True:
            try:
                result = self._results.get_nowait()
            except queue.Empty:
                return handled
            self._handle_forward_result(result)
            handled += 1

    def _handle_forward_result(self, result: ForwardResult) -> None:
        error = result.error
        fields: dict[str, Any] = {
            "device_id": result.device_id,
            "power": result.power,
            "duration_seconds": result.duration_seconds,
        }
        if error is None:
            self.stats.record_sync()
            logger.debug(
                "Synced %s: %sW (%.1fs) -> %s",
                result.device_id,
                _fmt_power(result.power),
                result.duration_seconds,
                result.bucket_hour,
                extra={"fields": {**fields, "bucket_hour": result.bucket_hour}},
            )
            return

        self.stats.record_sync_error(error.kind)
        fields["error_kind"] = error.kind
        logger.error("Sync failed for %s: %s", result.device_id, error, extra={"fields": fields})
        if isinstance(error, RemoteError):
            logger.error(
                "Response: %s",
                error.payload,
                extra={"fields": {**fields, "status_code": error.status_code}},
            )

    def wait_for_forwards(self, timeout: Optional[float] = None) -> int:
        """Block until in-flight forwards finish, then drain their results."""

        with self._pending_cond:
            self._pending_cond.wait_for(lambda: not self._pending, timeout=timeout)
        return self.drain_results()

    # -----------------------------
    # Periodic jobs
    # -----------------------------

    def run_reset_check(self) -> Optional[ResetCheckResult]:
        try:
            result = self.client.check_reset()
        except DownstreamError as exc:
            self.stats.record_reset_error()
            fields: dict[str, Any] = {"error_kind": exc.kind}
            logger.error("Reset check failed: %s", exc, extra={"fields": fields})
            if isinstance(exc, RemoteError):
                logger.error(
                    "Response: %s",
                    exc.payload,
                    extra={"fields": {**fields, "status_code": exc.status_code}},
                )
            return None

        self.stats.record_reset_check()
        if result.resets_performed:
            logger.info(
                "Performed resets: %s",
                ", ".join(result.resets_performed),
                extra={"fields": {"resets_performed": result.resets_performed}},
            )
        return result

    def status_report(self, *, now: Optional[float] = None) -> str:
        ts = float(now if now is not None else self.clock())
        snap = self.stats.snapshot()

        lines = [
            "=" * 50,
            "Status Report:",
            f"  Total syncs: {snap.sync_count}",
            f"  Errors: {snap.error_count} (network={snap.network_errors} remote={snap.remote_errors})",
            f"  Success rate: {snap.success_rate_pct:.1f}%",
            f"  Reset checks: {snap.reset_check_count} ok, {snap.reset_error_count} failed",
        ]
        for device_id, record in sorted(self.gate.records().items()):
            ago = max(0.0, ts - record.last_sync_time)
            lines.append(f"  {device_id}: {_fmt_power(record.last_power_value)}W (last sync {ago:.0f}s ago)")
        lines.append("=" * 50)

        report = "\n".join(lines)
        logger.info("\n%s", report)
        return report

    def _start_scheduler(self) -> None:
        scheduler = BackgroundScheduler(timezone="UTC")

        scheduler.add_job(
            func=self.status_report,
            trigger="interval",
            seconds=self.settings.status_report_interval_s,
            id="status_report",
            max_instances=1,
            replace_existing=True,
            coalesce=True,
        )
        scheduler.add_job(
            func=self.run_reset_check,
            trigger="interval",
            seconds=self.settings.reset_check_interval_s,
            id="reset_check",
            max_instances=1,
            replace_existing=True,
            coalesce=True,
        )

        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "Scheduler started (status_report_interval_s=%s reset_check_interval_s=%s)",
            self.settings.status_report_interval_s,
            self.settings.reset_check_interval_s,
        )

    def _subscribe(self) -> bool:
        try:
            self.feed.start(self.submit_snapshot)
        except SubscriptionError as exc:
            logger.error("Subscription failed: %s (retrying in %.0fs)", exc, SUBSCRIBE_RETRY_S)
            if self._scheduler is not None and not self._stop.is_set():
                self._scheduler.add_job(
                    func=self._subscribe,
                    trigger="date",
                    run_date=datetime.now(timezone.utc) + timedelta(seconds=SUBSCRIBE_RETRY_S),
                    id="subscribe_retry",
                    replace_existing=True,
                )
            return False
        return True

    # -----------------------------
    # Lifecycle
    # -----------------------------

    def start(self) -> None:
        self._start_scheduler()
        self._subscribe()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run_forever(self, *, poll_s: float = 0.5) -> None:
        self.start()
        try:
            while not self._stop.is_set():
                try:
                    snapshot = self._snapshots.get(timeout=poll_s)
                except queue.Empty:
                    pass
                else:
                    self.process_snapshot(snapshot)
                self.drain_results()
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        self._stop.set()
        if self._closed:
            return
        self._closed = True

        if self._scheduler is not None:
            # Wait for a running reset check before the client is closed.
            self._scheduler.shutdown(wait=True)
            self._scheduler = None
            logger.info("Scheduler stopped")

        try:
            self.feed.close()
        except Exception as exc:
            logger.warning("closing change feed failed: %r", exc)

        # In-flight forwards are bounded by the request timeout.
        self._executor.shutdown(wait=True)
        self.drain_results()
        self.client.close()

        snap = self.stats.snapshot()
        logger.info(
            "Final stats: %s syncs, %s errors, %s reset checks, %s reset check errors",
            snap.sync_count,
            snap.error_count,
            snap.reset_check_count,
            snap.reset_error_count,
        )


def _fmt_power(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"
