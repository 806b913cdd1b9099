"""Record store fixtures and fault-injecting wrappers."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Generator
from typing import Any

import pytest
from sqlalchemy import Engine, StaticPool
from sqlmodel import create_engine

from src.accounts.core.errors import TransientStoreError
from src.accounts.core.services.database.db_session import DbSessionService
from src.accounts.core.storage.record_store import InMemoryRecordStore, Predicate, RecordStore
from src.accounts.core.storage.sql_record_store import SqlRecordStore
from src.accounts.entities.core.user_record import UserRecord

__all__ = [
    "FaultyStore",
    "db_service",
    "memory_store",
    "sql_engine",
    "sql_store",
]


class FaultyStore(RecordStore):
    """Delegates to ``inner`` while failing, stalling or intercepting chosen calls.

    Args:
        fail_on: Operation names that raise TransientStoreError
        fail_delete_ids: Record ids whose delete raises TransientStoreError
        delay: Seconds every operation in ``delay_on`` sleeps before delegating
        before_conditional_set: Awaited before each conditional_set reaches
            ``inner``; lets a test mutate the store to lose a race
    """

    def __init__(
        self,
        inner: RecordStore,
        *,
        fail_on: set[str] | None = None,
        fail_delete_ids: set[str] | None = None,
        delay: float = 0.0,
        delay_on: set[str] | None = None,
        before_conditional_set: Callable[[str], Awaitable[None]] | None = None,
    ) -> None:
        self.inner = inner
        self.fail_on = fail_on or set()
        self.fail_delete_ids = fail_delete_ids or set()
        self.delay = delay
        self.delay_on = delay_on or set()
        self.before_conditional_set = before_conditional_set
        self.calls: list[str] = []

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.delay_on:
            await asyncio.sleep(self.delay)
        if operation in self.fail_on:
            raise TransientStoreError(f"injected {operation} failure")

    def mutations(self) -> list[str]:
        return [c for c in self.calls if c in {"conditional_set", "create", "delete"}]

    async def get(self, record_id: str) -> UserRecord | None:
        await self._enter("get")
        return await self.inner.get(record_id)

    async def query(self, field: str, value: Any) -> list[UserRecord]:
        await self._enter("query")
        return await self.inner.query(field, value)

    async def conditional_set(
        self, record_id: str, predicate: Predicate, patch: dict[str, Any]
    ) -> bool:
        await self._enter("conditional_set")
        if self.before_conditional_set is not None:
            await self.before_conditional_set(record_id)
        return await self.inner.conditional_set(record_id, predicate, patch)

    async def create(self, record: UserRecord) -> bool:
        await self._enter("create")
        return await self.inner.create(record)

    async def delete(self, record_id: str) -> None:
        await self._enter("delete")
        if record_id in self.fail_delete_ids:
            raise TransientStoreError(f"injected delete failure for {record_id}")
        await self.inner.delete(record_id)

    async def scan(self) -> list[UserRecord]:
        await self._enter("scan")
        return await self.inner.scan()

    async def is_available(self) -> bool:
        return "is_available" not in self.fail_on


@pytest.fixture
def memory_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def sql_engine() -> Generator[Engine]:
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def db_service(sql_engine: Engine) -> DbSessionService:
    service = DbSessionService(engine=sql_engine)
    service.create_all()
    return service


@pytest.fixture
def sql_store(db_service: DbSessionService) -> SqlRecordStore:
    return SqlRecordStore(db_service)
