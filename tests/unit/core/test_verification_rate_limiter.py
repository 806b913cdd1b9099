"""Unit tests for the verification email rate limiter."""

from datetime import UTC, datetime, timedelta

import pytest

from src.accounts.core.errors import RateLimited, RecordNotFound, TransientStoreError
from src.accounts.core.services import VerificationRateLimiter, apply_send, can_send
from src.accounts.core.services.verification.rate_limiter import DAILY_LIMIT_REASON
from src.accounts.core.storage.record_store import InMemoryRecordStore
from src.accounts.entities.core.user_record import EmailVerification
from src.accounts.runtime.config.config_data import VerificationConfig
from tests.fixtures import DAY1, FaultyStore, make_record

POLICY = VerificationConfig(min_resend_interval_minutes=5, max_per_day=5, timezone="UTC")


def sent(count: int, at: datetime, verified: bool = False) -> EmailVerification:
    return EmailVerification(
        is_verified=verified, verification_count=count, last_verification_sent_at=at
    )


class TestCanSend:
    def test_first_send_is_allowed(self):
        decision = can_send(EmailVerification(), DAY1, POLICY)

        assert decision.allowed
        assert decision.reason is None

    def test_denied_one_second_before_interval_elapses(self):
        """Should deny at 4m59s and ask to wait one minute."""
        decision = can_send(sent(1, DAY1), DAY1 + timedelta(minutes=4, seconds=59), POLICY)

        assert not decision.allowed
        assert decision.reason == "Wait 1 minute before requesting another verification email."
        assert decision.retry_after_seconds == 1

    def test_allowed_exactly_when_interval_elapses(self):
        assert can_send(sent(1, DAY1), DAY1 + timedelta(minutes=5), POLICY).allowed

    def test_wait_reason_rounds_minutes_up(self):
        decision = can_send(sent(1, DAY1), DAY1 + timedelta(seconds=30), POLICY)

        assert decision.reason == "Wait 5 minutes before requesting another verification email."
        assert decision.retry_after_seconds == 270

    def test_sixth_send_of_the_day_is_denied(self):
        decision = can_send(sent(5, DAY1), DAY1 + timedelta(hours=1), POLICY)

        assert not decision.allowed
        assert decision.reason == DAILY_LIMIT_REASON
        # DAY1 is 09:00 UTC, so the next day starts 14 hours later
        assert decision.retry_after_seconds == 14 * 3600

    def test_limit_resets_on_next_calendar_day(self):
        late = DAY1.replace(hour=23, minute=58)

        assert can_send(sent(5, late), late + timedelta(minutes=5), POLICY).allowed

    def test_daily_limit_follows_configured_timezone(self):
        """Should count days in the configured timezone, not in UTC."""
        # 23:30 and 00:30 in New York are the same UTC day
        last = datetime(2024, 3, 2, 4, 30, tzinfo=UTC)
        now = last + timedelta(hours=1)
        new_york = VerificationConfig(timezone="America/New_York")

        assert not can_send(sent(5, last), now, POLICY).allowed
        assert can_send(sent(5, last), now, new_york).allowed


class TestApplySend:
    def test_first_send_counts_one(self):
        updated = apply_send(EmailVerification(), DAY1, POLICY)

        assert updated.verification_count == 1
        assert updated.last_verification_sent_at == DAY1

    def test_same_day_send_increments(self):
        now = DAY1 + timedelta(minutes=10)

        updated = apply_send(sent(2, DAY1), now, POLICY)

        assert updated.verification_count == 3
        assert updated.last_verification_sent_at == now

    def test_new_day_send_restarts_at_one(self):
        updated = apply_send(sent(5, DAY1), DAY1 + timedelta(days=1), POLICY)

        assert updated.verification_count == 1

    def test_verified_flag_is_untouched(self):
        assert apply_send(sent(1, DAY1, verified=True), DAY1 + timedelta(hours=1), POLICY).is_verified

    def test_five_sends_then_denied(self):
        state = EmailVerification()
        now = DAY1
        for _ in range(5):
            assert can_send(state, now, POLICY).allowed
            state = apply_send(state, now, POLICY)
            now += timedelta(minutes=5)

        assert state.verification_count == 5
        assert can_send(state, now, POLICY).reason == DAILY_LIMIT_REASON


@pytest.fixture
def limiter_store() -> InMemoryRecordStore:
    return InMemoryRecordStore([make_record("r1", school="north")])


def limiter_for(store, clock, **kwargs) -> VerificationRateLimiter:
    return VerificationRateLimiter(
        store, POLICY, timeout_seconds=1.0, max_attempts=3, clock=clock, **kwargs
    )


class TestVerificationRateLimiter:
    @pytest.mark.asyncio
    async def test_record_send_persists_only_verification_fields(self, limiter_store, clock):
        limiter = limiter_for(limiter_store, clock)

        updated = await limiter.record_send("r1")

        stored = await limiter_store.get("r1")
        assert updated.verification_count == 1
        assert stored.email_verification == updated
        assert stored.profile == {"school": "north"}

    @pytest.mark.asyncio
    async def test_check_after_send_waits_for_interval(self, limiter_store, clock):
        limiter = limiter_for(limiter_store, clock)
        await limiter.record_send("r1")

        clock.advance(minutes=2)
        assert not (await limiter.check("r1")).allowed

        clock.advance(minutes=3)
        assert (await limiter.check("r1")).allowed

    @pytest.mark.asyncio
    async def test_ensure_can_send_raises_rate_limited(self, limiter_store, clock):
        limiter = limiter_for(limiter_store, clock)
        await limiter.record_send("r1")

        with pytest.raises(RateLimited) as exc_info:
            await limiter.ensure_can_send("r1")

        assert exc_info.value.retry_after_seconds == 300
        assert "Wait 5 minutes" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_mark_verified_is_idempotent(self, limiter_store, clock):
        faulty = FaultyStore(limiter_store)
        limiter = limiter_for(faulty, clock)

        await limiter.mark_verified("r1")
        await limiter.mark_verified("r1")

        assert (await limiter_store.get("r1")).email_verification.is_verified
        assert faulty.mutations() == ["conditional_set"]

    @pytest.mark.asyncio
    async def test_reset_clears_counters(self, limiter_store, clock):
        limiter = limiter_for(limiter_store, clock)
        await limiter.record_send("r1")

        await limiter.reset_verification("r1")

        state = await limiter.verification_state("r1")
        assert state.verification_count == 0
        assert state.last_verification_sent_at is None
        assert (await limiter.check("r1")).allowed

    @pytest.mark.asyncio
    async def test_missing_record_raises_not_found(self, memory_store, clock):
        limiter = limiter_for(memory_store, clock)

        with pytest.raises(RecordNotFound):
            await limiter.check("ghost")
        with pytest.raises(RecordNotFound):
            await limiter.record_send("ghost")

    @pytest.mark.asyncio
    async def test_concurrent_profile_update_is_preserved(self, limiter_store, clock):
        """Should retry the counter update without overwriting a profile change."""
        edits = 0

        async def profile_edit_once(record_id: str) -> None:
            nonlocal edits
            if edits == 0:
                edits += 1
                await limiter_store.conditional_set(
                    record_id,
                    lambda r: True,
                    {"email_verification": sent(3, DAY1), "profile": {"school": "south"}},
                )

        faulty = FaultyStore(limiter_store, before_conditional_set=profile_edit_once)
        clock.advance(hours=1)

        updated = await limiter_for(faulty, clock).record_send("r1")

        stored = await limiter_store.get("r1")
        assert updated.verification_count == 4
        assert stored.email_verification.verification_count == 4
        assert stored.profile == {"school": "south"}

    @pytest.mark.asyncio
    async def test_update_that_never_settles_is_transient(self, limiter_store, clock):
        async def always_moves(record_id: str) -> None:
            current = await limiter_store.get(record_id)
            bumped = current.email_verification.model_copy(
                update={"verification_count": current.email_verification.verification_count + 1}
            )
            await limiter_store.conditional_set(
                record_id, lambda r: True, {"email_verification": bumped}
            )

        faulty = FaultyStore(limiter_store, before_conditional_set=always_moves)

        with pytest.raises(TransientStoreError):
            await limiter_for(faulty, clock).record_send("r1")


class TestSendReservation:
    @pytest.mark.asyncio
    async def test_reserve_counts_the_send(self, limiter_store, clock):
        limiter = limiter_for(limiter_store, clock)

        reservation = await limiter.reserve_send("r1")

        assert reservation.decision.allowed
        assert reservation.previous == EmailVerification()
        stored = (await limiter_store.get("r1")).email_verification
        assert stored == reservation.reserved
        assert stored.verification_count == 1
        assert stored.last_verification_sent_at == clock.now

    @pytest.mark.asyncio
    async def test_second_reservation_in_interval_is_denied(self, limiter_store, clock):
        limiter = limiter_for(limiter_store, clock)
        await limiter.reserve_send("r1")

        reservation = await limiter.reserve_send("r1")

        assert not reservation.decision.allowed
        assert reservation.reserved is None
        assert (await limiter.verification_state("r1")).verification_count == 1

    @pytest.mark.asyncio
    async def test_policy_is_rechecked_after_losing_the_race(self, limiter_store, clock):
        """A send recorded between the read and the write denies the reservation."""
        other = limiter_for(limiter_store, clock)
        raced = False

        async def send_elsewhere_once(record_id: str) -> None:
            nonlocal raced
            if not raced:
                raced = True
                await other.record_send(record_id)

        faulty = FaultyStore(limiter_store, before_conditional_set=send_elsewhere_once)

        reservation = await limiter_for(faulty, clock).reserve_send("r1")

        assert not reservation.decision.allowed
        assert (await limiter_store.get("r1")).email_verification.verification_count == 1

    @pytest.mark.asyncio
    async def test_release_restores_previous_state(self, limiter_store, clock):
        limiter = limiter_for(limiter_store, clock)
        reservation = await limiter.reserve_send("r1")

        assert await limiter.release_send("r1", reservation) is True

        state = await limiter.verification_state("r1")
        assert state.verification_count == 0
        assert state.last_verification_sent_at is None

    @pytest.mark.asyncio
    async def test_release_after_a_concurrent_change_keeps_the_send(self, limiter_store, clock):
        limiter = limiter_for(limiter_store, clock)
        reservation = await limiter.reserve_send("r1")
        await limiter.mark_verified("r1")

        assert await limiter.release_send("r1", reservation) is False

        stored = (await limiter_store.get("r1")).email_verification
        assert stored.is_verified
        assert stored.verification_count == 1
