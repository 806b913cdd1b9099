"""Identity resolution models."""

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

from src.accounts.entities.core.user_record import UserRecord


class IdentityAssertion(BaseModel):
    """What the identity provider tells us after a successful sign-in."""

    external_uid: str = Field(min_length=1, description="Provider-assigned uid")
    email: str | None = Field(default=None, description="Email address, usually present")
    email_verified: bool = Field(default=False)
    provider_id: str = Field(default="password", description="Sign-in provider")
    display_name: str | None = Field(default=None)


class ResolutionStep(StrEnum):
    """Which branch of the resolution algorithm produced the record."""

    DIRECT = "direct"
    REVERSE_LINK = "reverse-link"
    EMAIL_LINKED = "email-linked"
    EMAIL_ALREADY_LINKED = "email-already-linked"
    CREATED = "created"


class ResolvedIdentity(BaseModel):
    record: UserRecord
    step: ResolutionStep

    @property
    def record_id(self) -> str:
        return self.record.record_id


class ResolutionOutcome(BaseModel):
    """Result of resolving the current identity, as seen by the application.

    ``transient_error`` means no state changed and the caller may retry.
    """

    status: Literal["resolved", "conflict", "transient_error", "signed_out"]
    record_id: str | None = None
    record: UserRecord | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "resolved"
