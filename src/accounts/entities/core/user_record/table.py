"""User record database table model."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime, String
from sqlmodel import Field, SQLModel

from src.accounts.entities.core.user_record.entity import (
    AccountClass,
    EmailVerification,
    UserRecord,
    utc_now,
)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on DateTime(timezone=True) columns
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class UserRecordTable(SQLModel, table=True):
    """Database persistence model for user records.

    ``email`` and ``linked_external_uid`` are indexed for the resolver's
    field-equality queries. ``revision`` is bumped on every update and backs
    the optimistic compare-and-set in the SQL record store.
    """

    __tablename__ = "userrecord"

    record_id: str = Field(primary_key=True)
    email: str | None = Field(
        default=None, sa_column=Column(String(320), nullable=True, index=True)
    )
    display_name: str | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    account_class: str = Field(default=AccountClass.STANDARD.value, max_length=64)
    linked_external_uid: str | None = Field(
        default=None, sa_column=Column(String(512), nullable=True, index=True)
    )
    email_verification: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )
    profile: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )
    revision: int = Field(default=0, nullable=False)

    @classmethod
    def from_entity(cls, record: UserRecord) -> "UserRecordTable":
        return cls(
            record_id=record.record_id,
            email=record.email,
            display_name=record.display_name,
            created_at=record.created_at,
            account_class=record.account_class.value,
            linked_external_uid=record.linked_external_uid,
            email_verification=record.email_verification.model_dump(mode="json"),
            profile=dict(record.profile),
        )

    def to_entity(self) -> UserRecord:
        return UserRecord(
            record_id=self.record_id,
            email=self.email,
            display_name=self.display_name,
            created_at=_as_utc(self.created_at),
            account_class=AccountClass(self.account_class),
            linked_external_uid=self.linked_external_uid,
            email_verification=EmailVerification.model_validate(
                self.email_verification or {}
            ),
            profile=dict(self.profile or {}),
        )
