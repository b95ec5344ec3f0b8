from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

from .observability.logging import get_logger

log = get_logger("local_store")


class LocalStore:
    """
    Small string key/value store for the local credential cache.

    With a path, entries are kept in a JSON object on disk so a cached token set
    survives a restart. Without one, entries live only as long as the store.
    """

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else None
        self._data: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning("local_store_unreadable", path=str(self.path), error=str(e))
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): str(v) for k, v in raw.items() if isinstance(v, str)}

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so a crash never leaves a half-written cache.
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".local_store.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except Exception:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def put(self, key: str, value: str | None) -> None:
        if value is None:
            if self._data.pop(key, None) is not None:
                self._save()
            return
        self._data[key] = value
        self._save()
