from __future__ import annotations

import threading
from typing import Any

from wattch_sync.devices import is_device_key
from wattch_sync.simulator import SimulatedChangeFeed, simulated_device_ids


def test_simulated_device_ids_cycle_through_categories() -> None:
    assert simulated_device_ids(6) == ["ESP1_1", "ESP2_1", "ESP3_1", "ESP4_1", "ESP1_2", "ESP2_2"]


def test_snapshots_cover_every_device_with_non_negative_power() -> None:
    feed = SimulatedChangeFeed(device_count=5, change_probability=1.0)

    for _ in range(20):
        snapshot = feed.next_snapshot()
        assert set(snapshot) == set(feed.device_ids)
        for device_id, observation in snapshot.items():
            assert is_device_key(device_id)
            assert observation["power"] >= 0


def test_zero_change_probability_keeps_readings_sticky() -> None:
    feed = SimulatedChangeFeed(device_count=3, change_probability=0.0)

    first = feed.next_snapshot()
    second = feed.next_snapshot()

    assert first == second
    assert all(obs["power"] == 0.0 for obs in first.values())


def test_simulations_are_deterministic_per_device() -> None:
    a = SimulatedChangeFeed(device_count=4, change_probability=0.5)
    b = SimulatedChangeFeed(device_count=4, change_probability=0.5)

    assert [a.next_snapshot() for _ in range(10)] == [b.next_snapshot() for _ in range(10)]


def test_start_pushes_snapshots_until_closed() -> None:
    feed = SimulatedChangeFeed(device_count=2, tick_s=0.05)
    got_one = threading.Event()
    received: list[Any] = []

    def sink(snapshot: Any) -> None:
        received.append(snapshot)
        got_one.set()

    feed.start(sink)
    try:
        assert got_one.wait(timeout=2.0)
    finally:
        feed.close()

    assert received
    assert set(received[0]) == {"ESP1_1", "ESP2_1"}
