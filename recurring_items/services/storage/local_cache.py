"""
Local Cache Tier

DESIGN DECISION: The local tier is what every write depends on for
durability, so it must always be available:
- MemoryCache keeps values in process (tests, ephemeral sessions)
- JsonFileCache keeps one JSON file per collection on disk

Values are copied on the way in and out so callers can never mutate
cached state by accident.
"""

import copy
import json
import os
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import structlog

from recurring_items.services.storage.interface import LocalCacheError, LocalCacheInterface


logger = structlog.get_logger(__name__)


class MemoryCache(LocalCacheInterface):
    """In-process cache. Lost when the process exits."""

    def __init__(self):
        self._data: dict[str, dict[str, dict]] = {}

    def get(self, collection: str, key: str) -> Optional[dict]:
        value = self._data.get(collection, {}).get(key)
        return copy.deepcopy(value) if value is not None else None

    def set(self, collection: str, key: str, value: dict) -> None:
        self._data.setdefault(collection, {})[key] = copy.deepcopy(value)

    def delete(self, collection: str, key: str) -> bool:
        return self._data.get(collection, {}).pop(key, None) is not None

    def items(self, collection: str) -> dict[str, dict]:
        return copy.deepcopy(self._data.get(collection, {}))

    def replace_collection(self, collection: str, values: dict[str, dict]) -> None:
        self._data[collection] = copy.deepcopy(values)


class JsonFileCache(LocalCacheInterface):
    """
    File-backed cache: <directory>/<percent-encoded collection>.json.

    Each write rewrites the collection file through a temporary file
    and os.replace, so a crash never leaves a half-written file.
    """

    def __init__(self, directory: Path):
        self._directory = Path(directory)
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocalCacheError(f"Cannot create cache directory {self._directory}: {e}")

    def _path(self, collection: str) -> Path:
        # Percent-encoding is reversible, so distinct collections never share a file
        return self._directory / f"{quote(collection, safe='')}.json"

    def _load(self, collection: str) -> dict[str, dict]:
        path = self._path(collection)
        if not path.exists():
            return {}
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            # A corrupt file is treated as empty; the remote tier will refill it
            logger.warning("local_cache_unreadable", path=str(path), error=str(e))
            return {}

    def _save(self, collection: str, data: dict[str, dict]) -> None:
        path = self._path(collection)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            tmp_path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise LocalCacheError(f"Failed to write {path}: {e}")

    def get(self, collection: str, key: str) -> Optional[dict]:
        return self._load(collection).get(key)

    def set(self, collection: str, key: str, value: dict) -> None:
        data = self._load(collection)
        data[key] = value
        self._save(collection, data)

    def delete(self, collection: str, key: str) -> bool:
        data = self._load(collection)
        if key not in data:
            return False
        del data[key]
        self._save(collection, data)
        return True

    def items(self, collection: str) -> dict[str, dict]:
        return self._load(collection)

    def replace_collection(self, collection: str, values: dict[str, dict]) -> None:
        self._save(collection, values)
