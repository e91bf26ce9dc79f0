"""Session storage backends.

Attribution and the fingerprint fallback id survive popup close/reopen by
living here. Values are plain strings; callers do their own JSON encoding.
"""

import json
from pathlib import Path
from typing import Dict, Optional, Protocol

from .config import config
from .logging_utils import get_logger

logger = get_logger(__name__)


class SessionStore(Protocol):
    """Key/value storage scoped to one browsing session."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemorySessionStore:
    """Process-local store; lost when the process exits."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileSessionStore:
    """Store backed by a single JSON object on disk."""

    def __init__(self, path: str):
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Session store {self.path} unreadable, starting empty: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Readers only ever see a complete file
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        tmp_path.write_text(json.dumps(data), encoding="utf-8")
        tmp_path.replace(self.path)

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)


def default_session_store() -> SessionStore:
    """File-backed store when ``session_store_path`` is configured, else in-memory."""
    if config.session_store_path:
        return JsonFileSessionStore(config.session_store_path)
    return InMemorySessionStore()
