"""Key-value preference stores backing the model registry."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

from persona.utils.log import get_logger

logger = get_logger()


class KeyValueStore(Protocol):
    """Scoped string preference storage."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    """Dict-backed store; counts writes so callers can observe persistence."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()
        self.write_count = 0

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value
            self.write_count += 1


class JsonFileStore:
    """Preferences kept as one JSON object of string values on disk."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            logger.warning(
                "Error loading preference store: %s: %s",
                type(e).__name__,
                e,
                extra={"path": str(self.path)},
            )
            return {}
        if not isinstance(data, dict):
            logger.warning(
                "[store] Preference store root is not an object; ignoring",
                extra={"path": str(self.path)},
            )
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp_path.replace(self.path)
        logger.debug(
            "[store] Saved preference",
            extra={"path": str(self.path), "key": key, "size": len(value)},
        )
