"""Key-value backends holding virtual file contents and their metadata."""

from __future__ import annotations

import base64
import binascii
import copy
import hashlib
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from ..errors import StorageUnavailableError

Metadata = Dict[str, Any]


@dataclass(frozen=True)
class StoredValue:
    """A value read back from a backend together with its metadata."""

    value: bytes
    metadata: Metadata | None = None


@dataclass(frozen=True)
class KeyListing:
    """A key returned by a prefix listing."""

    key: str
    metadata: Metadata | None = None


@dataclass(frozen=True)
class ListPage:
    """One page of a prefix listing; ``cursor`` is ``None`` on the last page."""

    keys: List[KeyListing] = field(default_factory=list)
    cursor: str | None = None


class KeyValueBackend(ABC):
    """Interface of the authoritative key-value store.

    Single ``get``, ``put`` and ``delete`` calls are atomic per key. Backends
    that can create a key only when it is absent in one atomic step set
    ``supports_conditional_put`` and implement :meth:`put_if_absent`.
    """

    supports_conditional_put = False

    @abstractmethod
    def get(self, key: str) -> StoredValue | None:
        """Return the value stored at ``key`` or ``None`` when absent."""

    @abstractmethod
    def put(self, key: str, value: bytes, metadata: Metadata | None = None) -> None:
        """Store ``value`` at ``key``, replacing any previous value and metadata."""

    def put_if_absent(
        self, key: str, value: bytes, metadata: Metadata | None = None
    ) -> bool:
        """Store ``value`` only if ``key`` is absent; return whether it was stored."""

        raise NotImplementedError(
            f"{type(self).__name__} does not support conditional writes"
        )

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``; removing an absent key is not an error."""

    @abstractmethod
    def list(
        self, prefix: str, *, cursor: str | None = None, limit: int = 1000
    ) -> ListPage:
        """Return up to ``limit`` keys starting with ``prefix`` after ``cursor``."""


class InMemoryKeyValueBackend(KeyValueBackend):
    """Keep values in local process memory."""

    supports_conditional_put = True

    def __init__(self) -> None:
        self._entries: dict[str, StoredValue] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> StoredValue | None:
        with self._lock:
            stored = self._entries.get(key)
        if stored is None:
            return None
        return StoredValue(value=stored.value, metadata=copy.deepcopy(stored.metadata))

    def put(self, key: str, value: bytes, metadata: Metadata | None = None) -> None:
        stored = StoredValue(value=bytes(value), metadata=copy.deepcopy(metadata))
        with self._lock:
            self._entries[key] = stored

    def put_if_absent(
        self, key: str, value: bytes, metadata: Metadata | None = None
    ) -> bool:
        stored = StoredValue(value=bytes(value), metadata=copy.deepcopy(metadata))
        with self._lock:
            if key in self._entries:
                return False
            self._entries[key] = stored
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def list(
        self, prefix: str, *, cursor: str | None = None, limit: int = 1000
    ) -> ListPage:
        with self._lock:
            matching = sorted(
                (key, stored.metadata)
                for key, stored in self._entries.items()
                if key.startswith(prefix)
            )
        return _paginate(matching, cursor=cursor, limit=limit)


class FileKeyValueBackend(KeyValueBackend):
    """Persist each key as a JSON record on disk.

    Records are named after the SHA-256 of their key and replaced atomically,
    so a reader never observes a half-written value. There is no atomic
    create-if-absent, so :meth:`put_if_absent` is not available.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailableError(
                f"Unable to prepare storage directory '{self.root}': {exc}"
            ) from exc

    def get(self, key: str) -> StoredValue | None:
        record = self._read_record(self._record_path(key))
        if record is None:
            return None
        return StoredValue(
            value=_decode_value(record["value"]), metadata=record.get("metadata")
        )

    def put(self, key: str, value: bytes, metadata: Metadata | None = None) -> None:
        payload = json.dumps(
            {
                "key": key,
                "metadata": metadata,
                "value": base64.b64encode(bytes(value)).decode("ascii"),
            },
            ensure_ascii=False,
        )
        target = self._record_path(key)
        try:
            handle, temp_name = tempfile.mkstemp(dir=self.root, suffix=".tmp")
            try:
                with os.fdopen(handle, "w", encoding="utf-8") as stream:
                    stream.write(payload)
                os.replace(temp_name, target)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageUnavailableError(f"Unable to write key '{key}': {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._record_path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageUnavailableError(f"Unable to delete key '{key}': {exc}") from exc

    def list(
        self, prefix: str, *, cursor: str | None = None, limit: int = 1000
    ) -> ListPage:
        matching: list[tuple[str, Metadata | None]] = []
        try:
            record_paths = sorted(self.root.glob("*.json"))
        except OSError as exc:
            raise StorageUnavailableError(f"Unable to list '{self.root}': {exc}") from exc
        for record_path in record_paths:
            record = self._read_record(record_path)
            if record is None:
                continue
            key = str(record.get("key", ""))
            if key.startswith(prefix):
                matching.append((key, record.get("metadata")))
        matching.sort(key=lambda item: item[0])
        return _paginate(matching, cursor=cursor, limit=limit)

    def _record_path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.root / f"{digest}.json"

    def _read_record(self, path: Path) -> dict[str, Any] | None:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageUnavailableError(f"Unable to read '{path}': {exc}") from exc
        try:
            record = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StorageUnavailableError(f"Corrupt record '{path}': {exc}") from exc
        if not isinstance(record, dict) or "value" not in record:
            raise StorageUnavailableError(f"Corrupt record '{path}'.")
        return record


def _decode_value(encoded: Any) -> bytes:
    try:
        return base64.b64decode(str(encoded), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise StorageUnavailableError(f"Corrupt stored value: {exc}") from exc


def _paginate(
    matching: list[tuple[str, Metadata | None]],
    *,
    cursor: str | None,
    limit: int,
) -> ListPage:
    if limit < 1:
        raise ValueError("limit must be greater than zero")
    if cursor is not None:
        matching = [item for item in matching if item[0] > cursor]
    page = matching[:limit]
    next_cursor = page[-1][0] if len(matching) > limit else None
    return ListPage(
        keys=[
            KeyListing(key=key, metadata=copy.deepcopy(metadata))
            for key, metadata in page
        ],
        cursor=next_cursor,
    )


__all__ = [
    "FileKeyValueBackend",
    "InMemoryKeyValueBackend",
    "KeyListing",
    "KeyValueBackend",
    "ListPage",
    "Metadata",
    "StoredValue",
]
