"""SQL-backed record store.

Each operation touches a single row. ``conditional_set`` is an optimistic
compare-and-set on the row's ``revision`` column, so a predicate is always
evaluated against the value that the update replaces.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any

from loguru import logger
from sqlalchemy import delete, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlmodel import select

from src.accounts.core.errors import TransientStoreError
from src.accounts.core.services.database.db_session import DbSessionService
from src.accounts.core.storage.record_store import (
    Predicate,
    RecordStore,
    apply_patch,
    check_query_field,
)
from src.accounts.entities.core.user_record import UserRecord, UserRecordTable


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except IntegrityError:
        raise
    except (OperationalError, DBAPIError) as e:
        logger.warning(f"Record store {operation} failed: {type(e).__name__}")
        raise TransientStoreError(f"Record store {operation} failed") from e


def _column_values(record: UserRecord) -> dict[str, Any]:
    row = UserRecordTable.from_entity(record)
    return {
        "email": row.email,
        "display_name": row.display_name,
        "created_at": row.created_at,
        "account_class": row.account_class,
        "linked_external_uid": row.linked_external_uid,
        "email_verification": row.email_verification,
        "profile": row.profile,
    }


class SqlRecordStore(RecordStore):
    """Record store over a SQL database using the ``userrecord`` table."""

    def __init__(self, db: DbSessionService, max_cas_attempts: int = 5) -> None:
        self._db = db
        self._max_cas_attempts = max_cas_attempts

    @property
    def db(self) -> DbSessionService:
        return self._db

    async def get(self, record_id: str) -> UserRecord | None:
        return await asyncio.to_thread(self._get, record_id)

    async def query(self, field: str, value: Any) -> list[UserRecord]:
        check_query_field(field)
        return await asyncio.to_thread(self._query, field, value)

    async def conditional_set(
        self, record_id: str, predicate: Predicate, patch: dict[str, Any]
    ) -> bool:
        return await asyncio.to_thread(self._conditional_set, record_id, predicate, patch)

    async def create(self, record: UserRecord) -> bool:
        return await asyncio.to_thread(self._create, record)

    async def delete(self, record_id: str) -> None:
        await asyncio.to_thread(self._delete, record_id)

    async def scan(self) -> list[UserRecord]:
        return await asyncio.to_thread(self._scan)

    async def is_available(self) -> bool:
        return await asyncio.to_thread(self._db.health_check)

    def _get(self, record_id: str) -> UserRecord | None:
        with _translate_errors("get"), self._db.get_session() as session:
            row = session.get(UserRecordTable, record_id)
            return row.to_entity() if row else None

    def _query(self, field: str, value: Any) -> list[UserRecord]:
        if isinstance(value, Enum):
            value = value.value
        column = getattr(UserRecordTable, field)
        condition = column.is_(None) if value is None else column == value
        with _translate_errors("query"), self._db.get_session() as session:
            rows = session.exec(select(UserRecordTable).where(condition)).all()
            return [row.to_entity() for row in rows]

    def _conditional_set(
        self, record_id: str, predicate: Predicate, patch: dict[str, Any]
    ) -> bool:
        for _ in range(self._max_cas_attempts):
            with _translate_errors("conditional_set"), self._db.get_session() as session:
                row = session.get(UserRecordTable, record_id)
                if row is None:
                    return False
                current = row.to_entity()
                revision = row.revision

            if not predicate(current):
                return False
            updated = apply_patch(current, patch)

            statement = (
                update(UserRecordTable)
                .where(
                    UserRecordTable.record_id == record_id,
                    UserRecordTable.revision == revision,
                )
                .values(**_column_values(updated), revision=revision + 1)
            )
            with _translate_errors("conditional_set"), self._db.engine.begin() as conn:
                result = conn.execute(statement)
            if result.rowcount == 1:
                return True
            logger.debug(f"Revision moved under record {record_id}; re-reading")

        raise TransientStoreError(
            f"Record {record_id} kept changing during conditional update"
        )

    def _create(self, record: UserRecord) -> bool:
        with _translate_errors("create"), self._db.get_session() as session:
            session.add(UserRecordTable.from_entity(record))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            return True

    def _delete(self, record_id: str) -> None:
        statement = delete(UserRecordTable).where(UserRecordTable.record_id == record_id)
        with _translate_errors("delete"), self._db.engine.begin() as conn:
            conn.execute(statement)

    def _scan(self) -> list[UserRecord]:
        with _translate_errors("scan"), self._db.get_session() as session:
            rows = session.exec(select(UserRecordTable)).all()
            return [row.to_entity() for row in rows]
