"""Storage backends for the HTML fragment cache and the image cache."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import quote, unquote

logger = logging.getLogger("smart_url_view")

TEMP_PREFIX = ".tmp-"


def atomic_write(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` so readers never observe a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        dir=path.parent, prefix=TEMP_PREFIX, delete=False
    ) as tmp:
        tmp_path = Path(tmp.name)
        try:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        except OSError:
            tmp.close()
            tmp_path.unlink(missing_ok=True)
            raise
    try:
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def _check_name(name: str) -> str:
    if not name or "/" in name or "\\" in name or name.startswith("."):
        raise ValueError(f"Invalid cache file name: {name!r}")
    return name


class MemoryCache:
    """Thread-safe in-process cache with per-entry expiry.

    A ``ttl`` of zero or less stores the entry without expiry.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[Optional[float], str]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires, value = entry
            if expires is not None and expires <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl: int) -> None:
        expires = self._clock() + ttl if ttl > 0 else None
        with self._lock:
            self._entries[key] = (expires, value)

    def delete_by_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def count_by_prefix(self, prefix: str) -> int:
        now = self._clock()
        with self._lock:
            return sum(
                1
                for key, (expires, _) in self._entries.items()
                if key.startswith(prefix) and (expires is None or expires > now)
            )


class FileCache:
    """Cache that keeps one JSON file per key, shared across processes."""

    def __init__(self, directory: Path, clock: Callable[[], float] = time.time) -> None:
        self.directory = Path(directory)
        self._clock = clock

    def _path(self, key: str) -> Path:
        return self.directory / (quote(key, safe="") + ".json")

    def _load(self, path: Path) -> Optional[Tuple[Optional[float], str]]:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable cache file %s: %s", path, exc)
            return None
        return payload.get("expires"), payload.get("value", "")

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        entry = self._load(path)
        if entry is None:
            return None
        expires, value = entry
        if expires is not None and expires <= self._clock():
            path.unlink(missing_ok=True)
            return None
        return value

    def set(self, key: str, value: str, ttl: int) -> None:
        expires = self._clock() + ttl if ttl > 0 else None
        payload = json.dumps({"key": key, "expires": expires, "value": value})
        atomic_write(self._path(key), payload.encode("utf-8"))

    def _iter_prefix(self, prefix: str):
        if not self.directory.is_dir():
            return
        encoded = quote(prefix, safe="")
        for path in self.directory.glob("*.json"):
            if path.name.startswith(encoded) and unquote(path.stem).startswith(prefix):
                yield path

    def delete_by_prefix(self, prefix: str) -> int:
        removed = 0
        for path in list(self._iter_prefix(prefix)):
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
        return removed

    def count_by_prefix(self, prefix: str) -> int:
        now = self._clock()
        count = 0
        for path in self._iter_prefix(prefix):
            entry = self._load(path)
            if entry is not None and (entry[0] is None or entry[0] > now):
                count += 1
        return count


class LocalImageStore:
    """Directory of cached images served from ``base_url``."""

    def __init__(self, root: Path, base_url: str) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def path_for(self, name: str) -> Path:
        return self.root / _check_name(name)

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def write(self, name: str, data: bytes) -> None:
        path = self.path_for(name)
        if path.exists():
            return
        atomic_write(path, data)

    def public_url_for(self, name: str) -> str:
        return f"{self.base_url}/{_check_name(name)}"

    def _files(self):
        if not self.root.is_dir():
            return []
        return [
            path
            for path in self.root.iterdir()
            if path.is_file() and not path.name.startswith(TEMP_PREFIX)
        ]

    def clear(self) -> int:
        removed = 0
        for path in self._files():
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
        return removed

    def stats(self) -> Tuple[int, int]:
        files = self._files()
        total = 0
        for path in files:
            try:
                total += path.stat().st_size
            except FileNotFoundError:
                continue
        return len(files), total
