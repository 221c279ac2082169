"""
Shared key-value store used to exchange window state between processes.

Every window writes only its own key and any window may delete another
window's key once it is stale. There are no transactions: a write replaces
the whole value atomically, deleting a missing key is a no-op.
"""

import hashlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote, unquote

from termactivity.logs import get_logger

logger = get_logger(__name__)

_SUFFIX = ".json"
_LONG_PREFIX = "@"
_DIGEST_LENGTH = 16

# Well under the common 255-byte file name limit
MAX_NAME_LENGTH = 200


class SharedStore(Protocol):
    def keys(self) -> list[str]: ...

    def get(self, key: str) -> Any | None: ...

    def put(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """In-process store. Several trackers sharing one instance act like separate windows."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def keys(self) -> list[str]:
        """Every stored key."""
        return list(self._data)

    def get(self, key: str) -> Any | None:
        """Value for key, or None if absent."""
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def put(self, key: str, value: Any) -> None:
        """Store value under key, replacing any previous value."""
        # Stored serialized so readers never share objects with the writer
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> None:
        """Remove key; a missing key is ignored."""
        self._data.pop(key, None)


class FileSharedStore:
    """
    One JSON file per key inside a directory shared by all windows.

    Writes go to a temp file in the same directory and are moved into place
    with os.replace, so readers only ever see complete values.

    A key is normally its own URL-quoted file name. Keys too long for a file
    name (deep workspace paths) get a shortened name starting with "@", which
    quoting never produces, and the file holds {"key": ..., "value": ...} so
    the original key can still be listed.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        """Directory holding the entry files."""
        return self._directory

    def _path(self, key: str) -> Path:
        name = quote(key, safe="")
        if len(name) + len(_SUFFIX) <= MAX_NAME_LENGTH:
            return self._directory / (name + _SUFFIX)
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:_DIGEST_LENGTH]
        keep = MAX_NAME_LENGTH - len(_LONG_PREFIX) - len(digest) - len(_SUFFIX) - 1
        return self._directory / f"{_LONG_PREFIX}{name[:keep]}-{digest}{_SUFFIX}"

    @staticmethod
    def _is_long(path: Path) -> bool:
        return path.name.startswith(_LONG_PREFIX)

    def _read(self, path: Path) -> Any | None:
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.debug("store_entry_unreadable", path=path.name, error=str(e))
            return None

    def keys(self) -> list[str]:
        """Every stored key."""
        try:
            names = sorted(os.listdir(self._directory))
        except FileNotFoundError:
            return []

        keys = []
        for name in names:
            if not name.endswith(_SUFFIX):
                continue
            if not name.startswith(_LONG_PREFIX):
                keys.append(unquote(name[: -len(_SUFFIX)]))
                continue
            wrapped = self._read(self._directory / name)
            if isinstance(wrapped, dict) and isinstance(wrapped.get("key"), str):
                keys.append(wrapped["key"])
        return keys

    def get(self, key: str) -> Any | None:
        """Read a value. Missing or unreadable entries read as None."""
        path = self._path(key)
        data = self._read(path)
        if data is None or not self._is_long(path):
            return data
        if not isinstance(data, dict) or data.get("key") != key:
            return None
        return data.get("value")

    def put(self, key: str, value: Any) -> None:
        """Store value under key, replacing any previous value."""
        path = self._path(key)
        if self._is_long(path):
            value = {"key": key, "value": value}

        self._directory.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            delete=False,
            dir=str(self._directory),
            prefix=".tmp-",
            suffix=".part",
            encoding="utf-8",
        ) as tmp:
            tmp_name = tmp.name
            try:
                json.dump(value, tmp)
                tmp.flush()
                os.fsync(tmp.fileno())
            except BaseException:
                tmp.close()
                os.unlink(tmp_name)
                raise
        os.replace(tmp_name, path)

    def delete(self, key: str) -> None:
        """Remove key; a missing key is ignored."""
        self._path(key).unlink(missing_ok=True)
