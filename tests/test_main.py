from __future__ import annotations

import logging
import signal
import threading
import time
from pathlib import Path
from typing import Any, Callable

import pytest

from wattch_sync import main as cli
from wattch_sync.downstream import RemoteError, ResetCheckResult


class _FakeClient:
    def __init__(self, *, error: Exception | None = None, resets: list[str] | None = None, **_: Any) -> None:
        self.error = error
        self.resets = resets or []
        self.closed = False

    def check_reset(self) -> ResetCheckResult:
        if self.error is not None:
            raise self.error
        return ResetCheckResult(resets_performed=self.resets)

    def sync_consumption(self, **kwargs: Any) -> Any:
        return {"buckets": {"hour": None}}

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _isolate(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "load_dotenv", lambda *args, **kwargs: False)
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)
    monkeypatch.delenv("FIREBASE_KEY_BASE64", raising=False)
    monkeypatch.setenv("FIREBASE_SERVICE_ACCOUNT_PATH", str(tmp_path / "missing.json"))


def test_missing_credentials_exit_non_zero() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main([])

    assert excinfo.value.code not in (0, None)
    assert "missing.json" in str(excinfo.value.code)


def test_check_reset_once_success(monkeypatch: pytest.MonkeyPatch) -> None:
    created: list[_FakeClient] = []

    def factory(**kwargs: Any) -> _FakeClient:
        client = _FakeClient(resets=["daily"], **kwargs)
        created.append(client)
        return client

    monkeypatch.setattr(cli, "ConsumptionClient", factory)

    assert cli.main(["--check-reset-once"]) == 0
    assert created[0].closed is True


def test_check_reset_once_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    error = RemoteError("/consumption/check-reset failed: HTTP 500", status_code=500, payload="boom")
    monkeypatch.setattr(cli, "ConsumptionClient", lambda **kwargs: _FakeClient(error=error))

    assert cli.main(["--check-reset-once"]) == 1


def test_interrupt_stops_service_and_logs_final_stats(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO)
    client = _FakeClient()
    monkeypatch.setattr(cli, "ConsumptionClient", lambda **kwargs: client)

    handlers: dict[int, Callable[[int, Any], None]] = {}
    installed = threading.Event()

    def fake_signal(signum: int, handler: Callable[[int, Any], None]) -> None:
        handlers[signum] = handler
        if signal.SIGINT in handlers and signal.SIGTERM in handlers:
            installed.set()

    monkeypatch.setattr(cli.signal, "signal", fake_signal)

    def interrupt() -> None:
        assert installed.wait(timeout=5.0)
        time.sleep(0.2)
        handlers[signal.SIGINT](signal.SIGINT, None)

    interrupter = threading.Thread(target=interrupt, daemon=True)
    interrupter.start()

    rc = cli.main(["--simulate", "--simulate-tick-s", "0.05"])
    interrupter.join(timeout=5.0)

    assert rc == 0
    assert client.closed is True
    assert "Final stats" in caplog.text
