"""Record store interface and implementations.

Narrow single-document interface over the user record store. There is no
cross-document transaction primitive: callers build on per-document atomic
create-if-absent and compare-and-set instead.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from loguru import logger

from src.accounts.core.errors import TransientStoreError
from src.accounts.entities.core.user_record.entity import PATCHABLE_FIELDS, UserRecord

T = TypeVar("T")

Predicate = Callable[[UserRecord], bool]

# Fields that may be used with RecordStore.query
QUERYABLE_FIELDS = frozenset({"email", "linked_external_uid", "account_class"})


def apply_patch(record: UserRecord, patch: dict[str, Any]) -> UserRecord:
    """Return a validated copy of ``record`` with ``patch`` applied.

    Raises:
        ValueError: If the patch names an unknown field or ``record_id``.
    """
    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        raise ValueError(f"Patch touches non-patchable fields: {sorted(unknown)}")
    data = record.model_dump()
    data.update(patch)
    return UserRecord.model_validate(data)


def check_query_field(field: str) -> None:
    if field not in QUERYABLE_FIELDS:
        raise ValueError(f"Field {field!r} cannot be queried")


class RecordStore(ABC):
    """Abstract interface for user record storage backends."""

    @abstractmethod
    async def get(self, record_id: str) -> UserRecord | None:
        """Fetch a record by key.

        Returns:
            The record, or None if no record has this key
        """

    @abstractmethod
    async def query(self, field: str, value: Any) -> list[UserRecord]:
        """Return every record whose ``field`` equals ``value``, in no particular order."""

    @abstractmethod
    async def conditional_set(
        self, record_id: str, predicate: Predicate, patch: dict[str, Any]
    ) -> bool:
        """Atomically apply ``patch`` if ``predicate(current)`` holds.

        Returns:
            True if the patch was applied, False if the record is missing or
            the predicate did not hold
        """

    @abstractmethod
    async def create(self, record: UserRecord) -> bool:
        """Atomically create ``record`` if its key is free.

        Returns:
            False if a record with the same key already exists
        """

    @abstractmethod
    async def delete(self, record_id: str) -> None:
        """Delete a record. Deleting a missing record is not an error."""

    @abstractmethod
    async def scan(self) -> list[UserRecord]:
        """Return every record in the store."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Check if the storage backend is healthy."""


class InMemoryRecordStore(RecordStore):
    """In-memory record store, used in tests and local development."""

    def __init__(self, records: list[UserRecord] | None = None) -> None:
        self._data: dict[str, UserRecord] = {}
        self._lock = asyncio.Lock()
        for record in records or []:
            self._data[record.record_id] = record.model_copy(deep=True)

    async def get(self, record_id: str) -> UserRecord | None:
        record = self._data.get(record_id)
        return record.model_copy(deep=True) if record else None

    async def query(self, field: str, value: Any) -> list[UserRecord]:
        check_query_field(field)
        return [
            record.model_copy(deep=True)
            for record in self._data.values()
            if getattr(record, field) == value
        ]

    async def conditional_set(
        self, record_id: str, predicate: Predicate, patch: dict[str, Any]
    ) -> bool:
        async with self._lock:
            current = self._data.get(record_id)
            if current is None or not predicate(current.model_copy(deep=True)):
                return False
            self._data[record_id] = apply_patch(current, patch)
            return True

    async def create(self, record: UserRecord) -> bool:
        async with self._lock:
            if record.record_id in self._data:
                return False
            self._data[record.record_id] = record.model_copy(deep=True)
            return True

    async def delete(self, record_id: str) -> None:
        async with self._lock:
            self._data.pop(record_id, None)

    async def scan(self) -> list[UserRecord]:
        return [record.model_copy(deep=True) for record in self._data.values()]

    async def is_available(self) -> bool:
        return True


class TimeoutRecordStore(RecordStore):
    """Wraps another store and bounds its reads with a timeout.

    A timeout surfaces as TransientStoreError, never as an absent record.

    Writes (``conditional_set``, ``create``, ``delete``) are awaited to
    completion: cancelling the await does not stop a write the backend has
    already started, so a write may only fail if it did not commit. Backends
    bound their own writes instead (see ``DbSessionService``).
    """

    def __init__(self, inner: RecordStore, timeout_seconds: float) -> None:
        self._inner = inner
        self._timeout = timeout_seconds

    async def _bounded(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except TimeoutError as e:
            logger.warning(f"Record store {operation} timed out after {self._timeout}s")
            raise TransientStoreError(f"Record store {operation} timed out") from e

    async def get(self, record_id: str) -> UserRecord | None:
        return await self._bounded("get", self._inner.get(record_id))

    async def query(self, field: str, value: Any) -> list[UserRecord]:
        return await self._bounded("query", self._inner.query(field, value))

    async def conditional_set(
        self, record_id: str, predicate: Predicate, patch: dict[str, Any]
    ) -> bool:
        return await self._inner.conditional_set(record_id, predicate, patch)

    async def create(self, record: UserRecord) -> bool:
        return await self._inner.create(record)

    async def delete(self, record_id: str) -> None:
        await self._inner.delete(record_id)

    async def scan(self) -> list[UserRecord]:
        return await self._bounded("scan", self._inner.scan())

    async def is_available(self) -> bool:
        return await self._inner.is_available()


def with_timeout(store: RecordStore, timeout_seconds: float | None) -> RecordStore:
    """Bound ``store`` with ``timeout_seconds`` unless it already is."""
    if timeout_seconds is None or isinstance(store, TimeoutRecordStore):
        return store
    return TimeoutRecordStore(store, timeout_seconds)


# Global store instance
_store: RecordStore | None = None


def get_record_store() -> RecordStore:
    """Get the configured record store instance."""
    global _store

    if _store is None:
        from src.accounts.runtime.context import get_config

        config = get_config()
        if config.identity.store_backend == "sql":
            from src.accounts.core.services.database.db_session import DbSessionService
            from src.accounts.core.storage.sql_record_store import SqlRecordStore

            _store = SqlRecordStore(DbSessionService())
            logger.info("Record store: SQL ({})", config.database.url.split("://", 1)[0])
        else:
            _store = InMemoryRecordStore()
            logger.info("Record store: in-memory")

    return _store


def _reset_store() -> None:
    """Reset store instance (for testing)."""
    global _store
    _store = None
