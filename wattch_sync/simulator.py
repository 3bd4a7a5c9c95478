from __future__ import annotations

import hashlib
import logging
import random
import threading
from typing import Any, Dict, List, Optional

from .change_feed import SnapshotSink


logger = logging.getLogger("wattch.simulator")

# Typical draw per load category, watts.
_BASE_POWER_W = {
    "ESP1": 12.0,
    "ESP2": 180.0,
    "ESP3": 1500.0,
    "ESP4": 60.0,
}


def _rng_for(device_id: str) -> random.Random:
    seed_bytes = hashlib.sha256(device_id.encode("utf-8")).digest()[:8]
    return random.Random(int.from_bytes(seed_bytes, "big", signed=False))


def simulated_device_ids(count: int) -> List[str]:
    """ESP1_1, ESP2_1, ESP3_1, ESP4_1, ESP1_2, ... (``count`` ids)."""

    ids: List[str] = []
    instance = 1
    while len(ids) < count:
        for category in ("ESP1", "ESP2", "ESP3", "ESP4"):
            if len(ids) >= count:
                break
            ids.append(f"{category}_{instance}")
        instance += 1
    return ids


class SimulatedChangeFeed:
    """Synthetic stand-in for the realtime store, for local runs without Firebase.

    Each tick emits one snapshot covering every simulated device. Readings are
    sticky: a device keeps its last value most of the time and occasionally
    switches on, off, or to a new level, which exercises both gate paths.
    """

    def __init__(
        self,
        *,
        device_count: int = 4,
        tick_s: float = 1.0,
        change_probability: float = 0.2,
    ) -> None:
        self.device_ids = simulated_device_ids(max(1, device_count))
        self.tick_s = max(0.05, float(tick_s))
        self.change_probability = min(1.0, max(0.0, change_probability))

        self._rngs = {device_id: _rng_for(device_id) for device_id in self.device_ids}
        self._power: Dict[str, float] = {device_id: 0.0 for device_id in self.device_ids}
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _next_power(self, device_id: str) -> float:
        rng = self._rngs[device_id]
        current = self._power[device_id]
        if rng.random() >= self.change_probability:
            return current
        if current > 0 and rng.random() < 0.3:
            return 0.0
        base = _BASE_POWER_W.get(device_id[:4], 25.0)
        return round(base * rng.uniform(0.8, 1.2), 1)

    def next_snapshot(self) -> dict[str, Any]:
        snapshot: dict[str, Any] = {}
        for device_id in self.device_ids:
            power = self._next_power(device_id)
            self._power[device_id] = power
            snapshot[device_id] = {"power": power}
        return snapshot

    def start(self, sink: SnapshotSink) -> None:
        def _run() -> None:
            while not self._stop.is_set():
                sink(self.next_snapshot())
                self._stop.wait(self.tick_s)

        self._stop.clear()
        self._thread = threading.Thread(target=_run, name="wattch-simulator", daemon=True)
        self._thread.start()
        logger.info("simulating %d devices every %.1fs", len(self.device_ids), self.tick_s)

    def close(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.tick_s + 1.0)
            self._thread = None
