from __future__ import annotations

import threading
from dataclasses import dataclass


@dataclass(frozen=True)
class StatsSnapshot:
    sync_count: int
    error_count: int
    network_errors: int
    remote_errors: int
    reset_check_count: int
    reset_error_count: int

    @property
    def success_rate_pct(self) -> float:
        if self.sync_count <= 0:
            return 0.0
        return self.sync_count / (self.sync_count + self.error_count) * 100.0


class AggregateStats:
    """Process-wide counters for forwards and reset checks.

    Forward outcomes and reset-check outcomes are kept as separate streams so a
    failing reconciliation endpoint never shows up as failed syncs.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sync_count = 0
        self._error_count = 0
        self._network_errors = 0
        self._remote_errors = 0
        self._reset_check_count = 0
        self._reset_error_count = 0

    def record_sync(self) -> None:
        with self._lock:
            self._sync_count += 1

    def record_sync_error(self, kind: str) -> None:
        with self._lock:
            self._error_count += 1
            if kind == "network":
                self._network_errors += 1
            elif kind == "remote":
                self._remote_errors += 1

    def record_reset_check(self) -> None:
        with self._lock:
            self._reset_check_count += 1

    def record_reset_error(self) -> None:
        with self._lock:
            self._reset_error_count += 1

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                sync_count=self._sync_count,
                error_count=self._error_count,
                network_errors=self._network_errors,
                remote_errors=self._remote_errors,
                reset_check_count=self._reset_check_count,
                reset_error_count=self._reset_error_count,
            )
