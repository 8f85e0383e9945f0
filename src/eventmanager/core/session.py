"""
Session context for EventManager notifications.

Holds the operator identity and per-session data that used to live in a
global browser-storage singleton. Components that need identity receive a
SessionContext explicitly; persistence is delegated to a SessionStore.
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from .config import SessionConfig

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class SessionStore(Protocol):
    """Backing store for session data."""

    def load(self) -> Dict[str, Any]: ...

    def save(self, data: Dict[str, Any]) -> None: ...

    def clear(self) -> None: ...


class MemorySessionStore:
    """Keeps session data in memory only."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def load(self) -> Dict[str, Any]:
        return dict(self._data)

    def save(self, data: Dict[str, Any]) -> None:
        self._data = dict(data)

    def clear(self) -> None:
        self._data = {}


class FileSessionStore:
    """Persists session data as JSON on disk."""

    def __init__(self, path: Path):
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"Failed to load session from {self.path}: {e}")
            return {}

    def save(self, data: Dict[str, Any]) -> None:
        try:
            with open(self.path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
        except (IOError, TypeError) as e:
            logger.error(f"Failed to save session to {self.path}: {e}")

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()


class SessionContext:
    """Current user and session data, with change listeners."""

    USER_KEY = "user"
    EVENT_KEY = "selected_event"

    def __init__(self, store: Optional[SessionStore] = None):
        self.store = store or MemorySessionStore()
        self._data = self.store.load()
        self._listeners: Dict[str, List[Listener]] = {}

    @classmethod
    def from_config(cls, config: SessionConfig) -> "SessionContext":
        if config.backend == "file":
            return cls(FileSessionStore(config.path))
        return cls(MemorySessionStore())

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        return self._data.get(self.USER_KEY)

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def username(self) -> Optional[str]:
        user = self.user
        if not user:
            return None
        return user.get("username") or user.get("email") or user.get("name")

    def set_user(self, user: Dict[str, Any]) -> None:
        self._data[self.USER_KEY] = user
        self.store.save(self._data)
        self._notify("user_changed", user)

    def logout(self) -> None:
        self._data = {}
        self.store.clear()
        self._notify("user_changed", None)

    def set_selected_event(self, event: Dict[str, Any]) -> None:
        self._data[self.EVENT_KEY] = event
        self.store.save(self._data)

    def get_selected_event(self) -> Optional[Dict[str, Any]]:
        return self._data.get(self.EVENT_KEY)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self.store.save(self._data)

    def subscribe(self, event: str, callback: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.setdefault(event, []).append(callback)

        def unsubscribe() -> None:
            self._listeners[event] = [cb for cb in self._listeners.get(event, []) if cb is not callback]

        return unsubscribe

    def _notify(self, event: str, payload: Any) -> None:
        for callback in list(self._listeners.get(event, [])):
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"Session listener for {event} failed: {e}")
