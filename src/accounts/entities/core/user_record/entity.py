"""User record domain entity."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class AccountClass(StrEnum):
    """Precedence class of a record.

    This is not a permission level: it only decides which record wins when
    several records share an email.
    """

    STANDARD = "standard"
    PRIVILEGED_PRECEDENCE = "privileged-precedence"


class EmailVerification(BaseModel):
    """Verification state and resend counters owned by the rate limiter."""

    is_verified: bool = Field(default=False)
    verification_count: int = Field(
        default=0, ge=0, description="Verification emails sent on the day of the last send"
    )
    last_verification_sent_at: datetime | None = Field(default=None)


class UserRecord(BaseModel):
    """Canonical application user record.

    ``record_id`` equals the external uid for self-registered users, but
    records pre-provisioned by an administrator (a school roster import, for
    example) carry their own id until an external identity is linked through
    ``linked_external_uid``.
    """

    record_id: str = Field(description="Immutable record key")
    email: str | None = Field(default=None, description="Email address")
    display_name: str | None = Field(default=None, description="Display name")
    created_at: datetime = Field(
        default_factory=utc_now, description="Creation marker used as tie-breaker"
    )
    account_class: AccountClass = Field(default=AccountClass.STANDARD)
    linked_external_uid: str | None = Field(
        default=None, description="External identity linked to this record, if any"
    )
    email_verification: EmailVerification = Field(default_factory=EmailVerification)
    profile: dict[str, Any] = Field(
        default_factory=dict, description="Profile fields not used for resolution"
    )

    @property
    def is_linked(self) -> bool:
        return self.linked_external_uid is not None


# Fields a conditional patch may write. record_id is immutable.
PATCHABLE_FIELDS = frozenset(UserRecord.model_fields) - {"record_id"}
