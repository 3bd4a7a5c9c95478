from __future__ import annotations

import logging
import os
from dataclasses import dataclass


logger = logging.getLogger("wattch.config")

DEFAULT_API_URL = "https://jwt-prod.up.railway.app/api"
DEFAULT_FIREBASE_DATABASE_URL = "https://wattch-48f16-default-rtdb.asia-southeast1.firebasedatabase.app"
DEFAULT_SERVICE_ACCOUNT_PATH = "./firebase-service-account.json"


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    value = v.strip().lower()
    if value in {"1", "true", "yes", "y", "on"}:
        return True
    if value in {"0", "false", "no", "n", "off"}:
        return False
    logger.warning("invalid %s=%r; using %s", name, v, default)
    return default


def _get_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("invalid %s=%r; using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("invalid %s=%r; using %s", name, raw, default)
        return default
    return value


def _get_positive_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        logger.warning("invalid %s=%r; using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("invalid %s=%r; using %s", name, raw, default)
        return default
    return value


def _get_optional_str(name: str) -> str | None:
    v = os.getenv(name)
    if v is None:
        return None
    vv = v.strip()
    return vv or None


def normalize_api_url(raw: str | None) -> str:
    """Return the downstream base URL, always ending in ``/api``."""

    value = (raw or "").strip().rstrip("/")
    if not value:
        return DEFAULT_API_URL
    if value.endswith("/api"):
        return value
    return value + "/api"


@dataclass(frozen=True)
class Settings:
    log_level: str
    log_format: str
    debug: bool

    # Downstream consumption API
    api_url: str
    user_database: str
    request_timeout_s: float

    # Realtime store
    firebase_database_url: str
    firebase_path: str
    service_account_path: str
    service_account_base64: str | None

    # Sync gate
    sync_interval_ms: int

    # Background jobs
    status_report_interval_s: int
    reset_check_interval_s: int
    forward_workers: int

    @property
    def sync_interval_s(self) -> float:
        return self.sync_interval_ms / 1000.0


def load_settings() -> Settings:
    log_format = (os.getenv("LOG_FORMAT", "text").strip() or "text").lower()
    if log_format not in {"text", "json"}:
        logger.warning("invalid LOG_FORMAT=%r; using text", log_format)
        log_format = "text"

    return Settings(
        log_level=(os.getenv("LOG_LEVEL", "INFO").strip() or "INFO").upper(),
        log_format=log_format,
        debug=_get_bool("DEBUG", True),
        api_url=normalize_api_url(os.getenv("LARAVEL_API_URL")),
        user_database=(os.getenv("DEFAULT_USER_DB", "admin").strip() or "admin"),
        request_timeout_s=_get_positive_float("REQUEST_TIMEOUT_S", 5.0),
        firebase_database_url=(
            os.getenv("FIREBASE_DATABASE_URL", DEFAULT_FIREBASE_DATABASE_URL).strip()
            or DEFAULT_FIREBASE_DATABASE_URL
        ),
        firebase_path=(os.getenv("FIREBASE_PATH", "WATTch").strip().strip("/") or "WATTch"),
        service_account_path=(
            os.getenv("FIREBASE_SERVICE_ACCOUNT_PATH", DEFAULT_SERVICE_ACCOUNT_PATH).strip()
            or DEFAULT_SERVICE_ACCOUNT_PATH
        ),
        service_account_base64=_get_optional_str("FIREBASE_KEY_BASE64"),
        sync_interval_ms=_get_positive_int("SYNC_INTERVAL", 10_000),
        status_report_interval_s=_get_positive_int("STATUS_REPORT_INTERVAL_S", 60),
        reset_check_interval_s=_get_positive_int("RESET_CHECK_INTERVAL_S", 60),
        forward_workers=_get_positive_int("FORWARD_WORKERS", 8),
    )
