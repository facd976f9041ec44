from __future__ import annotations

import json
import logging
import os
import threading
from typing import Any, Dict, Optional, Protocol

from reading_log.io.utils import atomic_write_json

logger = logging.getLogger(__name__)


class JsonStorage(Protocol):
    """
    Whole-document JSON storage keyed by name ("books.json", ...).

    read() returns None when the document is missing or unreadable;
    write() replaces the document and may raise OSError.
    """

    def read(self, key: str) -> Optional[Any]:
        ...

    def write(self, key: str, data: Any) -> None:
        ...


class FileStorage:
    def __init__(self, base_dir: str) -> None:
        self.base_dir = base_dir

    def path_for(self, key: str) -> str:
        return os.path.join(self.base_dir, key)

    def read(self, key: str) -> Optional[Any]:
        path = self.path_for(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("unreadable %s, starting fresh: %r", path, e)
            return None

    def write(self, key: str, data: Any) -> None:
        atomic_write_json(data, self.path_for(key))

    def __repr__(self) -> str:
        return f"FileStorage({self.base_dir!r})"


class MemoryStorage:
    """Keeps serialized JSON text so reads never alias written objects."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._lock = threading.Lock()
        self._docs: Dict[str, str] = {}
        for key, data in (initial or {}).items():
            self._docs[key] = json.dumps(data)

    def read(self, key: str) -> Optional[Any]:
        with self._lock:
            text = self._docs.get(key)
        if text is None:
            return None
        try:
            return json.loads(text)
        except ValueError as e:
            logger.warning("unreadable %s, starting fresh: %r", key, e)
            return None

    def write(self, key: str, data: Any) -> None:
        text = json.dumps(data, ensure_ascii=False)
        with self._lock:
            self._docs[key] = text

    def put_raw(self, key: str, text: str) -> None:
        with self._lock:
            self._docs[key] = text

    def keys(self):
        with self._lock:
            return sorted(self._docs)
