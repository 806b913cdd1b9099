"""Errors raised by identity resolution, reconciliation and verification."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.accounts.core.models.reconciliation import GroupReport


class IdentityError(Exception):
    """Base class for errors raised by the identity service."""


class AuthenticationError(IdentityError):
    """The identity provider could not authenticate the caller."""


class AccountConflict(IdentityError):
    """The assertion's email belongs to a record linked to a different identity.

    Terminal for the sign-in attempt and never resolved automatically.
    """

    user_message = "This email is already used by another account."

    def __init__(self, email: str | None, record_id: str, external_uid: str) -> None:
        self.email = email
        self.record_id = record_id
        self.external_uid = external_uid
        super().__init__(
            f"Record {record_id} for {email} is linked to a different external identity"
        )


class TransientStoreError(IdentityError):
    """The record store timed out or was unavailable.

    Retryable. Never to be read as "record does not exist".
    """

    user_message = "Something went wrong on our side. Please try again."


class PartialReconciliationFailure(IdentityError):
    """One or more records of a reconciliation group could not be deleted."""

    def __init__(self, groups: list[GroupReport]) -> None:
        self.groups = groups
        failed = sum(len(group.errors) for group in groups)
        super().__init__(
            f"{failed} record(s) could not be deleted across {len(groups)} group(s)"
        )


class RecordNotFound(IdentityError):
    """No record exists under the requested key."""

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"Record {record_id} not found")


class RateLimited(IdentityError):
    """A verification resend was denied by the rate limiter."""

    def __init__(self, reason: str, retry_after_seconds: int | None = None) -> None:
        self.reason = reason
        self.retry_after_seconds = retry_after_seconds
        super().__init__(reason)
