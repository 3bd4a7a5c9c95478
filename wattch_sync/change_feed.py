"""Firebase Realtime Database change feed.

``Reference.listen`` delivers incremental ``put``/``patch`` events. The sync
loop wants whole snapshots of the watched path (one mapping of device id to
observation), so events are folded into a local mirror and the full mirror is
handed to the sink after every event.
"""

from __future__ import annotations

import base64
import binascii
import copy
import json
import logging
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

import firebase_admin
from firebase_admin import credentials, db
from firebase_admin.exceptions import FirebaseError

from .config import Settings


logger = logging.getLogger("wattch.change_feed")

Snapshot = Optional[dict[str, Any]]
SnapshotSink = Callable[[Snapshot], None]

FIREBASE_APP_NAME = "wattch-sync"


class StartupError(RuntimeError):
    """Fatal configuration/credential problem; the process cannot start."""


class SubscriptionError(RuntimeError):
    """The realtime subscription could not be opened or failed while reading."""


class ChangeFeed(Protocol):
    def start(self, sink: SnapshotSink) -> None: ...

    def close(self) -> None: ...


def _split_path(path: str) -> list[str]:
    return [p for p in (path or "").split("/") if p]


class SnapshotMirror:
    """In-memory copy of the watched subtree, kept current from listen events."""

    def __init__(self) -> None:
        self._root: Any = None

    def apply(self, event_type: str, path: str, data: Any) -> None:
        if event_type == "put":
            self._put(_split_path(path), copy.deepcopy(data))
        elif event_type == "patch":
            if not isinstance(data, dict):
                return
            base = _split_path(path)
            for key, value in data.items():
                self._put(base + _split_path(str(key)), copy.deepcopy(value))
        else:
            logger.debug("ignoring %s event at %s", event_type, path)

    def _put(self, parts: list[str], data: Any) -> None:
        if not parts:
            self._root = data
            return

        if data is None:
            self._delete(parts)
            return

        if not isinstance(self._root, dict):
            self._root = {}
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = data

    def _delete(self, parts: list[str]) -> None:
        chain: list[tuple[dict[str, Any], str]] = []
        node = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return
            chain.append((node, part))
            node = node[part]

        parent, key = chain.pop()
        del parent[key]

        # RTDB has no empty nodes; prune parents emptied by the delete.
        while chain and not parent:
            parent, key = chain.pop()
            del parent[key]
        if isinstance(self._root, dict) and not self._root:
            self._root = None

    def snapshot(self) -> Snapshot:
        if not isinstance(self._root, dict):
            return None
        return copy.deepcopy(self._root)


def load_credentials(settings: Settings) -> credentials.Certificate:
    """Build service-account credentials from FIREBASE_KEY_BASE64 or the key file."""

    if settings.service_account_base64:
        try:
            cred_dict = json.loads(base64.b64decode(settings.service_account_base64).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            raise StartupError("FIREBASE_KEY_BASE64 is not valid base64 encoded JSON") from exc
        try:
            return credentials.Certificate(cred_dict)
        except ValueError as exc:
            raise StartupError(f"invalid service account in FIREBASE_KEY_BASE64: {exc}") from exc

    path = Path(settings.service_account_path)
    if not path.is_file():
        raise StartupError(
            f"{path} not found; download the service account JSON from the Firebase console "
            "(Project Settings > Service Accounts) or set FIREBASE_KEY_BASE64"
        )
    try:
        return credentials.Certificate(str(path))
    except (OSError, ValueError) as exc:
        raise StartupError(f"invalid service account file {path}: {exc}") from exc


def init_firebase_app(settings: Settings) -> firebase_admin.App:
    try:
        return firebase_admin.get_app(FIREBASE_APP_NAME)
    except ValueError:
        pass

    cred = load_credentials(settings)
    try:
        return firebase_admin.initialize_app(
            cred,
            {"databaseURL": settings.firebase_database_url},
            name=FIREBASE_APP_NAME,
        )
    except ValueError as exc:
        raise StartupError(f"firebase initialization failed: {exc}") from exc


class FirebaseChangeFeed:
    def __init__(self, *, app: firebase_admin.App, path: str) -> None:
        self.app = app
        self.path = path
        self._mirror = SnapshotMirror()
        self._registration: Any = None
        self._sink: Optional[SnapshotSink] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> FirebaseChangeFeed:
        return cls(app=init_firebase_app(settings), path=settings.firebase_path)

    def start(self, sink: SnapshotSink) -> None:
        self._sink = sink
        self._mirror = SnapshotMirror()
        try:
            ref = db.reference(self.path, app=self.app)
            self._registration = ref.listen(self._on_event)
        except (FirebaseError, ValueError) as exc:
            raise SubscriptionError(f"failed to listen on {self.path!r}: {exc}") from exc
        logger.info("listening on %s", self.path)

    def _on_event(self, event: Any) -> None:
        # Runs on the firebase listener thread; an exception here would kill it.
        try:
            self._mirror.apply(event.event_type, event.path, event.data)
            snapshot = self._mirror.snapshot()
        except Exception:
            logger.exception("failed to apply %s event at %s", getattr(event, "event_type", "?"), self.path)
            return
        if self._sink is not None:
            self._sink(snapshot)

    def close(self) -> None:
        registration = self._registration
        self._registration = None
        if registration is not None:
            registration.close()
