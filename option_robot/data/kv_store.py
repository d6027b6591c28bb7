"""Small key-value persistence used for the broker session.

Two backends:
- `JsonFileStore`: one JSON object on disk, rewritten atomically on each change.
- `MemoryStore`: process-local dict (tests, throwaway sessions).

Values are plain strings. Writes never yield to the event loop, so a session
mutation is always observed as a whole.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, *keys: str) -> None: ...


class MemoryStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, *keys: str) -> None:
        for k in keys:
            self._data.pop(k, None)

    def keys(self) -> Iterable[str]:
        return list(self._data)


class JsonFileStore:
    """JSON-object file store. A missing or unreadable file reads as empty."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._data: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable session store %s: %s", self.path, e)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring session store %s: expected a JSON object", self.path)
            return {}
        return {str(k): str(v) for k, v in raw.items() if v is not None}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self.path)

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def delete(self, *keys: str) -> None:
        changed = False
        for k in keys:
            if k in self._data:
                del self._data[k]
                changed = True
        if changed:
            self._flush()


__all__ = ["KeyValueStore", "MemoryStore", "JsonFileStore"]
