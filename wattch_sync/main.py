from __future__ import annotations

import argparse
import logging
import signal
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv

from .change_feed import ChangeFeed, FirebaseChangeFeed, StartupError
from .config import Settings, load_settings
from .downstream import ConsumptionClient, DownstreamError, RemoteError
from .observability import configure_logging
from .service import SyncService
from .simulator import SimulatedChangeFeed
from .version import __version__


logger = logging.getLogger("wattch")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="wattch-sync",
        description="Forward realtime power readings from Firebase to the consumption API",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Use a synthetic device feed instead of Firebase (no credentials needed)",
    )
    parser.add_argument(
        "--simulate-devices",
        type=int,
        default=4,
        help="Number of simulated devices (with --simulate)",
    )
    parser.add_argument(
        "--simulate-tick-s",
        type=float,
        default=1.0,
        help="Seconds between simulated snapshots (with --simulate)",
    )
    parser.add_argument(
        "--check-reset-once",
        action="store_true",
        help="Run a single check-reset call and exit",
    )
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        default=None,
        help="Override LOG_FORMAT",
    )
    return parser.parse_args(argv)


def _log_banner(settings: Settings, *, source: str) -> None:
    logger.info(
        "Firebase sync service %s starting: api=%s source=%s path=%s user_db=%s sync_interval=%sms",
        __version__,
        settings.api_url,
        source,
        settings.firebase_path,
        settings.user_database,
        settings.sync_interval_ms,
    )


def _check_reset_once(client: ConsumptionClient) -> int:
    try:
        result = client.check_reset()
    except DownstreamError as exc:
        logger.error("Reset check failed: %s", exc)
        if isinstance(exc, RemoteError):
            logger.error("Response: %s", exc.payload)
        return 1
    finally:
        client.close()

    if result.resets_performed:
        logger.info("Performed resets: %s", ", ".join(result.resets_performed))
    else:
        logger.info("No resets performed")
    return 0


def _install_signal_handlers(service: SyncService) -> None:
    def _handle(signum: int, _frame: Any) -> None:
        logger.info("Shutting down Firebase sync service (signal %s)...", signum)
        service.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def main(argv: Optional[List[str]] = None) -> int:
    # Load the working-directory .env (if present), then package-local overrides.
    load_dotenv()
    load_dotenv(Path(__file__).resolve().parent / ".env")

    args = _parse_args(argv)
    settings = load_settings()

    level = getattr(logging, settings.log_level, logging.INFO)
    configure_logging(
        level=level,
        log_format=args.log_format or settings.log_format,
        debug=settings.debug,
    )

    client = ConsumptionClient(
        api_url=settings.api_url,
        user_database=settings.user_database,
        timeout_s=settings.request_timeout_s,
    )

    if args.check_reset_once:
        return _check_reset_once(client)

    feed: ChangeFeed
    if args.simulate:
        feed = SimulatedChangeFeed(device_count=args.simulate_devices, tick_s=args.simulate_tick_s)
        source = "simulator"
    else:
        try:
            feed = FirebaseChangeFeed.from_settings(settings)
        except StartupError as exc:
            client.close()
            logger.error("startup failed: %s", exc)
            raise SystemExit(f"[wattch-sync] {exc}") from exc
        source = settings.firebase_database_url

    _log_banner(settings, source=source)

    service = SyncService(settings=settings, client=client, feed=feed)
    _install_signal_handlers(service)

    logger.info("Firebase sync service is running; press Ctrl+C to stop")
    service.run_forever()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
