"""File-backed, concurrency-safe collection of metadata records.

Each store keeps the whole collection in memory and mirrors it to a single
JSON array file. Lookups share a read lock; ``add`` and ``remove_by_key``
take the write lock and rewrite the full snapshot before releasing it.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Callable, Generic, Optional, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from spectre_tipbot.errors import ErrorKind, TipError
from spectre_tipbot.locks import ReadWriteLock

logger = logging.getLogger("spectre_tipbot.storage.metadata_store")

T = TypeVar("T", bound=BaseModel)

# escrow records hold unlock secrets, keep the files owner-only
STORE_FILE_MODE = 0o600


class MetadataStore(Generic[T]):
    """Durable collection of ``model`` records unique on ``key_field``.

    Use :meth:`open` to build an instance; it loads (or initialises) the
    backing file.

    Parameters
    ----------
    path:
        JSON file holding the serialized collection.
    model:
        Pydantic model class of the records.
    key_field:
        Attribute name whose value must be unique across the collection.
    records:
        Initial in-memory collection.
    """

    def __init__(self, path: Path, model: type[T], key_field: str, records: list[T]) -> None:
        self.path = Path(path)
        self.model = model
        self.key_field = key_field
        self._records: list[T] = records
        self._adapter = TypeAdapter(list[model])  # type: ignore[valid-type]
        self._lock = ReadWriteLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    async def open(cls, path: Path, model: type[T], key_field: str) -> MetadataStore[T]:
        """Load the collection from ``path``, creating an empty one if missing."""
        path = Path(path)
        adapter = TypeAdapter(list[model])  # type: ignore[valid-type]
        try:
            raw = await asyncio.to_thread(_read_or_initialise, path)
        except OSError as exc:
            raise TipError(ErrorKind.PERSISTENCE_IO, f"Cannot open metadata store {path}: {exc}", exc) from exc

        try:
            records = adapter.validate_json(raw)
        except ValidationError as exc:
            raise TipError(
                ErrorKind.SERIALIZATION,
                f"Malformed metadata store {path}: {exc.error_count()} invalid entries",
                exc,
            ) from exc

        store = cls(path, model, key_field, records)
        duplicates = store._duplicate_keys()
        if duplicates:
            raise TipError(
                ErrorKind.SERIALIZATION,
                f"Metadata store {path} contains duplicate keys: {sorted(duplicates)}",
            )
        logger.debug(f"Loaded {len(records)} {model.__name__} records from {path}")
        return store

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add(self, record: T) -> None:
        """Append ``record`` and persist, rejecting duplicate keys."""
        key = self._key_of(record)
        async with self._lock.write():
            if any(self._key_of(existing) == key for existing in self._records):
                raise TipError(
                    ErrorKind.DUPLICATE_KEY,
                    f"{self.model.__name__} with {self.key_field}={key!r} already exists",
                )
            snapshot = [*self._records, record]
            await self._persist(snapshot)
            self._records = snapshot

    async def remove_by_key(self, key: str) -> bool:
        """Remove the record with ``key`` if present. Returns whether one was removed."""
        async with self._lock.write():
            snapshot = [r for r in self._records if self._key_of(r) != key]
            if len(snapshot) == len(self._records):
                return False
            await self._persist(snapshot)
            self._records = snapshot
            return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def find_by_key(self, key: str) -> T:
        """Return the record with ``key``; raises ``NOT_FOUND`` when absent."""
        record = await self.get(key)
        if record is None:
            raise TipError(
                ErrorKind.NOT_FOUND,
                f"{self.model.__name__} with {self.key_field}={key!r} not found",
            )
        return record

    async def get(self, key: str) -> Optional[T]:
        async with self._lock.read():
            for record in self._records:
                if self._key_of(record) == key:
                    return record
        return None

    async def find_where(self, predicate: Callable[[T], bool]) -> list[T]:
        """Return every record matching ``predicate``, in insertion order."""
        async with self._lock.read():
            return [r for r in self._records if predicate(r)]

    async def find_first(self, predicate: Callable[[T], bool]) -> Optional[T]:
        async with self._lock.read():
            return next((r for r in self._records if predicate(r)), None)

    async def contains(self, key: str) -> bool:
        return await self.get(key) is not None

    async def all(self) -> list[T]:
        async with self._lock.read():
            return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _key_of(self, record: T) -> str:
        return getattr(record, self.key_field)

    def _duplicate_keys(self) -> set[str]:
        seen: set[str] = set()
        duplicates: set[str] = set()
        for record in self._records:
            key = self._key_of(record)
            if key in seen:
                duplicates.add(key)
            seen.add(key)
        return duplicates

    async def _persist(self, snapshot: list[T]) -> None:
        """Write ``snapshot`` to disk. Caller must hold the write lock."""
        try:
            payload = self._adapter.dump_json(snapshot, by_alias=True, indent=2)
        except (ValueError, TypeError) as exc:
            raise TipError(ErrorKind.SERIALIZATION, f"Cannot serialize {self.path}: {exc}", exc) from exc
        try:
            await asyncio.to_thread(_atomic_write, self.path, payload)
        except OSError as exc:
            raise TipError(ErrorKind.PERSISTENCE_IO, f"Cannot write {self.path}: {exc}", exc) from exc


# ---------------------------------------------------------------------------
# File helpers (run in a worker thread)
# ---------------------------------------------------------------------------

def _read_or_initialise(path: Path) -> bytes:
    if not path.exists():
        _atomic_write(path, b"[]")
        logger.info(f"Created empty metadata store at {path}")
    data = path.read_bytes()
    # an empty file is treated like a fresh store
    return data if data.strip() else b"[]"


def _atomic_write(path: Path, payload: bytes) -> None:
    """Write ``payload`` to a sibling temp file, fsync it, then rename over ``path``.

    Readers of ``path`` see either the previous or the new snapshot, never
    a partial one.
    """
    temp_path = path.with_name(f".{path.name}.tmp")
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, STORE_FILE_MODE)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(temp_path, path)
    except OSError:
        if temp_path.exists():
            temp_path.unlink()
        raise
