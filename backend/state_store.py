"""
Shared tracking state readable by every surface of the app (main API process,
widget snapshots, shortcut handlers), including ones in other processes.

Each signed-in user gets a small JSON file in a shared directory. Every read goes to disk, so
a reader in another process sees the latest completed write; writers replace
the file atomically. After each write, subscribed display surfaces get a
best-effort "please re-render" callback.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import quote

from models import parse_iso, to_iso

logger = logging.getLogger(__name__)

K_IS_TRACKING = "isTracking"
K_START_TIME = "startTime"
K_IS_LOGGED_IN = "isLoggedIn"

Listener = Callable[[], None]


class SessionStateStore:
    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)
        self._listeners: list[Listener] = []

    # --- change notification ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a re-render callback; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def request_reload(self) -> None:
        """Ask display surfaces to re-render without changing any field."""
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.warning("shared state listener failed: %s", e)

    # --- storage ---

    def _read(self) -> dict[str, Any]:
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("shared state unreadable at %s, treating as empty: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, changes: dict[str, Any]) -> None:
        data = self._read()
        data.update(changes)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".shared_state.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        self._notify()

    # --- fields ---

    @property
    def is_tracking(self) -> bool:
        return bool(self._read().get(K_IS_TRACKING, False))

    @is_tracking.setter
    def is_tracking(self, value: bool) -> None:
        self._write({K_IS_TRACKING: bool(value)})

    @property
    def start_time(self) -> Optional[datetime]:
        try:
            return parse_iso(self._read().get(K_START_TIME))
        except ValueError:
            return None

    @start_time.setter
    def start_time(self, value: Optional[datetime]) -> None:
        self._write({K_START_TIME: to_iso(value)})

    @property
    def is_logged_in(self) -> bool:
        return bool(self._read().get(K_IS_LOGGED_IN, False))

    @is_logged_in.setter
    def is_logged_in(self, value: bool) -> None:
        self._write({K_IS_LOGGED_IN: bool(value)})

    def set_tracking(self, is_tracking: bool, start_time: Optional[datetime]) -> None:
        """Write both tracking fields in one replace, so readers never see a half update."""
        self._write({K_IS_TRACKING: bool(is_tracking), K_START_TIME: to_iso(start_time)})

    def snapshot(self) -> dict[str, Any]:
        data = self._read()
        try:
            start = parse_iso(data.get(K_START_TIME))
        except ValueError:
            start = None
        return {
            "is_tracking": bool(data.get(K_IS_TRACKING, False)),
            "start_time": start,
            "is_logged_in": bool(data.get(K_IS_LOGGED_IN, False)),
        }


class SharedStateDirectory:
    """One SessionStateStore per user, as `<root>/<quoted user id>.json`."""

    def __init__(self, root: str | os.PathLike):
        self.root = Path(root)
        self._stores: dict[str, SessionStateStore] = {}

    def path_for(self, user_id: str) -> Path:
        return self.root / f"{quote(user_id, safe='')}.json"

    def for_user(self, user_id: str) -> SessionStateStore:
        store = self._stores.get(user_id)
        if store is None:
            store = self._stores[user_id] = SessionStateStore(self.path_for(user_id))
        return store
