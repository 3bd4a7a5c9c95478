from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional

import requests


class DownstreamError(RuntimeError):
    """Raised when a call to the consumption API fails."""

    kind = "unknown"


class NetworkError(DownstreamError):
    """No response was received (timeout, DNS, connection refused...)."""

    kind = "network"


class RemoteError(DownstreamError):
    """The API answered with a non-success status.

    ``payload`` is the decoded JSON error body when available, else raw text.
    """

    kind = "remote"

    def __init__(self, message: str, *, status_code: int, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


@dataclass(frozen=True)
class ForwardResult:
    device_id: str
    power: float
    duration_seconds: float
    bucket_hour: Any = None
    error: Optional[DownstreamError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ResetCheckResult:
    resets_performed: List[str]


def _response_payload(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text[:1000]


class ConsumptionClient:
    """Thin client for the consumption endpoints of the downstream API."""

    def __init__(
        self,
        *,
        api_url: str,
        user_database: str,
        timeout_s: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.user_database = user_database
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def _post(self, path: str, payload: dict[str, Any]) -> Any:
        url = f"{self.api_url}{path}"
        try:
            resp = self.session.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise NetworkError(f"{path} request failed: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            body = _response_payload(resp)
            raise RemoteError(
                f"{path} failed: HTTP {resp.status_code}",
                status_code=resp.status_code,
                payload=body,
            )

        return _response_payload(resp)

    def sync_consumption(
        self,
        *,
        socket_id: str,
        load_type: Optional[str],
        power: float,
        duration_seconds: float,
    ) -> Any:
        """POST /consumption/sync-firebase; returns the decoded response body."""

        return self._post(
            "/consumption/sync-firebase",
            {
                "name": self.user_database,
                "load_type": load_type,
                "socket_id": socket_id,
                "power": power,
                "duration_seconds": duration_seconds,
            },
        )

    def check_reset(self) -> ResetCheckResult:
        data = self._post("/consumption/check-reset", {"name": self.user_database})

        performed: List[str] = []
        if isinstance(data, dict):
            raw = data.get("resets_performed")
            if isinstance(raw, list):
                performed = [str(item) for item in raw]
        return ResetCheckResult(resets_performed=performed)

    def close(self) -> None:
        self.session.close()


def bucket_hour(data: Any) -> Any:
    if not isinstance(data, dict):
        return None
    buckets = data.get("buckets")
    if not isinstance(buckets, dict):
        return None
    return buckets.get("hour")


def forward_observation(
    client: ConsumptionClient,
    *,
    device_id: str,
    load_type: Optional[str],
    power: float,
    duration_seconds: float,
) -> ForwardResult:
    """Forward one gated observation. Never raises; failures ride on the result."""

    try:
        data = client.sync_consumption(
            socket_id=device_id,
            load_type=load_type,
            power=power,
            duration_seconds=duration_seconds,
        )
    except DownstreamError as exc:
        return ForwardResult(
            device_id=device_id,
            power=power,
            duration_seconds=duration_seconds,
            error=exc,
        )

    return ForwardResult(
        device_id=device_id,
        power=power,
        duration_seconds=duration_seconds,
        bucket_hour=bucket_hour(data),
    )
