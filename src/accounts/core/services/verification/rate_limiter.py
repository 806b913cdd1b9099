"""Verification email resend policy.

``can_send`` and ``apply_send`` are pure functions over the verification
sub-record. ``VerificationRateLimiter`` persists their result with a
compare-and-set on ``email_verification`` only, so concurrent profile
updates are never overwritten.
"""

import math
from collections.abc import Callable
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

from loguru import logger

from src.accounts.core.errors import RateLimited, RecordNotFound, TransientStoreError
from src.accounts.core.models.verification import (
    SendDecision,
    SendReservation,
    VerificationState,
)
from src.accounts.core.storage.record_store import RecordStore, with_timeout
from src.accounts.entities.core.user_record import EmailVerification, UserRecord
from src.accounts.entities.core.user_record.entity import utc_now
from src.accounts.runtime.config.config_data import VerificationConfig
from src.accounts.runtime.context import get_config

DAILY_LIMIT_REASON = "Daily verification limit reached. Try again tomorrow."


def _wait_reason(minutes: int) -> str:
    unit = "minute" if minutes == 1 else "minutes"
    return f"Wait {minutes} {unit} before requesting another verification email."


def _same_day(first: datetime, second: datetime, tz: ZoneInfo) -> bool:
    return first.astimezone(tz).date() == second.astimezone(tz).date()


def _seconds_until_next_day(now: datetime, tz: ZoneInfo) -> int:
    local = now.astimezone(tz)
    midnight = datetime.combine(local.date() + timedelta(days=1), time.min, tzinfo=tz)
    return max(1, math.ceil((midnight - local).total_seconds()))


def can_send(
    verification: EmailVerification,
    now: datetime,
    policy: VerificationConfig | None = None,
) -> SendDecision:
    """Decide whether another verification email may be sent at ``now``."""
    policy = policy or get_config().verification
    last_sent = verification.last_verification_sent_at
    if last_sent is None:
        return SendDecision(allowed=True)

    remaining = timedelta(minutes=policy.min_resend_interval_minutes) - (now - last_sent)
    if remaining > timedelta(0):
        seconds = remaining.total_seconds()
        return SendDecision(
            allowed=False,
            reason=_wait_reason(math.ceil(seconds / 60)),
            retry_after_seconds=math.ceil(seconds),
        )

    tz = ZoneInfo(policy.timezone)
    if _same_day(last_sent, now, tz) and verification.verification_count >= policy.max_per_day:
        return SendDecision(
            allowed=False,
            reason=DAILY_LIMIT_REASON,
            retry_after_seconds=_seconds_until_next_day(now, tz),
        )

    return SendDecision(allowed=True)


def apply_send(
    verification: EmailVerification,
    now: datetime,
    policy: VerificationConfig | None = None,
) -> EmailVerification:
    """Return ``verification`` with one more send counted at ``now``.

    The counter restarts at 1 on the first send of a calendar day.
    """
    policy = policy or get_config().verification
    last_sent = verification.last_verification_sent_at
    if last_sent is None or not _same_day(last_sent, now, ZoneInfo(policy.timezone)):
        count = 1
    else:
        count = verification.verification_count + 1
    return verification.model_copy(
        update={"verification_count": count, "last_verification_sent_at": now}
    )


class VerificationRateLimiter:
    def __init__(
        self,
        store: RecordStore,
        policy: VerificationConfig | None = None,
        *,
        timeout_seconds: float | None = None,
        max_attempts: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        config = get_config()
        if timeout_seconds is None:
            timeout_seconds = config.identity.store_timeout_seconds
        self._store = with_timeout(store, timeout_seconds)
        self._policy = policy or config.verification
        self._max_attempts = max_attempts or config.identity.max_resolution_attempts
        self._clock = clock

    async def check(self, record_id: str) -> SendDecision:
        record = await self._get(record_id)
        return can_send(record.email_verification, self._clock(), self._policy)

    async def ensure_can_send(self, record_id: str) -> None:
        """Raise RateLimited unless a verification email may be sent now."""
        decision = await self.check(record_id)
        if not decision.allowed:
            logger.info("Verification resend for {} denied: {}", record_id, decision.reason)
            raise RateLimited(decision.reason, decision.retry_after_seconds)

    async def record_send(self, record_id: str) -> EmailVerification:
        """Count one sent verification email for ``record_id``."""
        now = self._clock()
        return await self._update(
            record_id, "record_send", lambda current: apply_send(current, now, self._policy)
        )

    async def reserve_send(self, record_id: str) -> SendReservation:
        """Count a send before it is dispatched, if the policy allows one.

        The policy is evaluated against the exact state the compare-and-set
        replaces, so concurrent callers cannot both be granted the same slot.
        """
        for _ in range(self._max_attempts):
            record = await self._get(record_id)
            current = record.email_verification
            now = self._clock()
            decision = can_send(current, now, self._policy)
            if not decision.allowed:
                logger.info("Verification resend for {} denied: {}", record_id, decision.reason)
                return SendReservation(decision=decision)

            reserved = apply_send(current, now, self._policy)
            applied = await self._store.conditional_set(
                record_id,
                lambda r: r.email_verification == current,
                {"email_verification": reserved},
            )
            if applied:
                return SendReservation(decision=decision, previous=current, reserved=reserved)

        raise TransientStoreError(
            f"Verification state of {record_id} kept changing during reserve_send"
        )

    async def release_send(self, record_id: str, reservation: SendReservation) -> bool:
        """Give back a reserved send whose email was never dispatched.

        Returns False, keeping the send counted, if the verification state
        changed since the reservation.
        """
        if reservation.reserved is None:
            return False
        released = await self._store.conditional_set(
            record_id,
            lambda r: r.email_verification == reservation.reserved,
            {"email_verification": reservation.previous},
        )
        if not released:
            logger.warning("Could not release verification send for {}; it stays counted", record_id)
        return released

    async def mark_verified(self, record_id: str) -> EmailVerification:
        """Set ``is_verified``. Calling it on a verified record changes nothing."""

        def verify(current: EmailVerification) -> EmailVerification | None:
            if current.is_verified:
                return None
            return current.model_copy(update={"is_verified": True})

        return await self._update(record_id, "mark_verified", verify)

    async def reset_verification(self, record_id: str) -> EmailVerification:
        """Clear the resend counters so the user may request emails again."""
        return await self._update(
            record_id,
            "reset_verification",
            lambda current: current.model_copy(
                update={"verification_count": 0, "last_verification_sent_at": None}
            ),
        )

    async def verification_state(self, record_id: str) -> VerificationState:
        record = await self._get(record_id)
        return VerificationState(
            record_id=record.record_id,
            **record.email_verification.model_dump(),
        )

    async def _get(self, record_id: str) -> UserRecord:
        record = await self._store.get(record_id)
        if record is None:
            raise RecordNotFound(record_id)
        return record

    async def _update(
        self,
        record_id: str,
        operation: str,
        change: Callable[[EmailVerification], EmailVerification | None],
    ) -> EmailVerification:
        for _ in range(self._max_attempts):
            record = await self._get(record_id)
            current = record.email_verification
            updated = change(current)
            if updated is None:
                return current

            applied = await self._store.conditional_set(
                record_id,
                lambda r: r.email_verification == current,
                {"email_verification": updated},
            )
            if applied:
                logger.debug("{} applied to {}", operation, record_id)
                return updated

        raise TransientStoreError(
            f"Verification state of {record_id} kept changing during {operation}"
        )
