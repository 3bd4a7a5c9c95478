"""Per-device forwarding decisions.

A reading is forwarded downstream when its power value differs from the last
forwarded value, or when the configured interval has passed since the device
was last seen. The "last seen" clock is reset on every observation, forwarded
or not.

Scope
- State is in-memory and per-process; it starts empty on every restart.
- ``last_power_value`` advances *before* the outbound call is made, so a failed
  forward is not retried by a later unchanged reading.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional


@dataclass
class SyncRecord:
    last_sync_time: float
    last_power_value: float


@dataclass(frozen=True)
class SyncDecision:
    device_id: str
    forward: bool
    power: float
    duration_seconds: float
    record: SyncRecord


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def observation_power(observation: Any) -> float:
    """Read ``power`` from an observation; missing, invalid or negative reads as 0.

    Numbers keep the type the device wrote (an int stays an int on the wire).
    Numeric strings such as ``"12.5"`` are parsed.
    """

    if not isinstance(observation, Mapping):
        return 0.0
    value = observation.get("power")
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return 0.0
    if not _is_number(value):
        return 0.0
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


class SyncGate:
    def __init__(self, *, sync_interval_s: float) -> None:
        self.sync_interval_s = float(max(0.0, sync_interval_s))

        self._lock = threading.Lock()
        self._records: Dict[str, SyncRecord] = {}

    def decide(
        self,
        device_id: str,
        observation: Any,
        *,
        now: Optional[float] = None,
    ) -> SyncDecision:
        ts = float(now if now is not None else time.time())
        current_power = observation_power(observation)

        with self._lock:
            record = self._records.get(device_id)
            if record is None:
                record = SyncRecord(last_sync_time=ts, last_power_value=0.0)
                self._records[device_id] = record

            # Clock steps backwards never move last_sync_time back.
            ts = max(ts, record.last_sync_time)
            duration_seconds = ts - record.last_sync_time
            record.last_sync_time = ts

            unchanged = current_power == record.last_power_value
            forward = not (unchanged and duration_seconds < self.sync_interval_s)
            if forward:
                record.last_power_value = current_power

            snapshot = replace(record)

        return SyncDecision(
            device_id=device_id,
            forward=forward,
            power=current_power,
            duration_seconds=duration_seconds,
            record=snapshot,
        )

    def get(self, device_id: str) -> Optional[SyncRecord]:
        with self._lock:
            record = self._records.get(device_id)
            return replace(record) if record is not None else None

    def records(self) -> Dict[str, SyncRecord]:
        with self._lock:
            return {device_id: replace(r) for device_id, r in self._records.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
