from datetime import datetime

from pydantic import BaseModel, Field

from src.accounts.entities.core.user_record import EmailVerification


class SendDecision(BaseModel):
    """Whether a verification email may be sent right now."""

    allowed: bool
    reason: str | None = None
    retry_after_seconds: int | None = Field(
        default=None, description="Seconds until a resend may be allowed, if known"
    )


class VerificationState(BaseModel):
    record_id: str
    is_verified: bool
    verification_count: int
    last_verification_sent_at: datetime | None = None


class SendReservation(BaseModel):
    """A send counted ahead of dispatch, and the state it replaced."""

    decision: SendDecision
    previous: EmailVerification | None = None
    reserved: EmailVerification | None = None
