"""Identity resolution: map an external identity onto one canonical record."""

from collections.abc import Callable
from datetime import datetime

from loguru import logger

from src.accounts.core.errors import AccountConflict, TransientStoreError
from src.accounts.core.models.identity import (
    IdentityAssertion,
    ResolutionStep,
    ResolvedIdentity,
)
from src.accounts.core.services.identity.precedence import PrecedencePolicy
from src.accounts.core.storage.record_store import RecordStore, with_timeout
from src.accounts.entities.core.user_record import (
    AccountClass,
    EmailVerification,
    UserRecord,
)
from src.accounts.entities.core.user_record.entity import utc_now
from src.accounts.runtime.context import get_config


def _is_unlinked(record: UserRecord) -> bool:
    return record.linked_external_uid is None


class IdentityResolver:
    """Returns the canonical record for an identity assertion.

    Steps, first match wins:

    1. direct hit on ``record_id == external_uid``
    2. exactly one record already linked to ``external_uid``
    3. records sharing the assertion's email: adopt the highest-precedence
       one, linking it if unlinked; a record linked to another identity is
       an AccountConflict
    4. create a new record keyed by ``external_uid``

    Each pass performs at most one store mutation. A pass that loses a write
    race returns nothing and the whole sequence restarts, up to
    ``max_attempts`` times.
    """

    def __init__(
        self,
        store: RecordStore,
        policy: PrecedencePolicy | None = None,
        *,
        timeout_seconds: float | None = None,
        max_attempts: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        identity_config = get_config().identity
        if timeout_seconds is None:
            timeout_seconds = identity_config.store_timeout_seconds
        self._store = with_timeout(store, timeout_seconds)
        self._policy = policy or PrecedencePolicy(identity_config.precedence_order)
        self._max_attempts = max_attempts or identity_config.max_resolution_attempts
        self._clock = clock

    async def resolve(self, assertion: IdentityAssertion) -> ResolvedIdentity:
        """Resolve ``assertion`` to its canonical record.

        Raises:
            AccountConflict: The email's canonical record is linked to a
                different external identity.
            TransientStoreError: The store failed or timed out, or every
                attempt lost a race. No state was changed by this call.
        """
        for attempt in range(1, self._max_attempts + 1):
            resolved = await self._resolve_once(assertion)
            if resolved is not None:
                logger.debug(
                    "Resolved {} to record {} via {}",
                    assertion.external_uid,
                    resolved.record_id,
                    resolved.step.value,
                )
                return resolved
            logger.debug(
                "Resolution attempt {} for {} lost a race; retrying",
                attempt,
                assertion.external_uid,
            )

        raise TransientStoreError(
            f"Could not settle a record for {assertion.external_uid} "
            f"after {self._max_attempts} attempts"
        )

    async def _resolve_once(self, assertion: IdentityAssertion) -> ResolvedIdentity | None:
        uid = assertion.external_uid

        record = await self._store.get(uid)
        if record is not None:
            return ResolvedIdentity(record=record, step=ResolutionStep.DIRECT)

        linked = await self._store.query("linked_external_uid", uid)
        if len(linked) == 1:
            return ResolvedIdentity(record=linked[0], step=ResolutionStep.REVERSE_LINK)
        if len(linked) > 1:
            logger.warning(
                "{} records are linked to {}; falling through to email match",
                len(linked),
                uid,
            )

        if assertion.email:
            candidates = await self._store.query("email", assertion.email)
            canonical = self._policy.select_canonical(candidates)
            if canonical is not None:
                return await self._adopt(canonical, assertion)

        return await self._create(assertion)

    async def _adopt(
        self, candidate: UserRecord, assertion: IdentityAssertion
    ) -> ResolvedIdentity | None:
        uid = assertion.external_uid
        record: UserRecord | None = candidate

        if _is_unlinked(candidate):
            applied = await self._store.conditional_set(
                candidate.record_id, _is_unlinked, {"linked_external_uid": uid}
            )
            if applied:
                logger.info(
                    "Linked record {} ({}) to external identity {}",
                    candidate.record_id,
                    candidate.account_class.value,
                    uid,
                )
                return ResolvedIdentity(
                    record=candidate.model_copy(update={"linked_external_uid": uid}),
                    step=ResolutionStep.EMAIL_LINKED,
                )

            # Someone else linked (or removed) it first
            record = await self._store.get(candidate.record_id)
            if record is None or _is_unlinked(record):
                return None

        if record.linked_external_uid == uid:
            return ResolvedIdentity(record=record, step=ResolutionStep.EMAIL_ALREADY_LINKED)

        logger.warning(
            "Refusing sign-in of {}: record {} for {} is linked to another identity",
            uid,
            record.record_id,
            assertion.email,
        )
        raise AccountConflict(assertion.email, record.record_id, uid)

    async def _create(self, assertion: IdentityAssertion) -> ResolvedIdentity | None:
        uid = assertion.external_uid
        record = UserRecord(
            record_id=uid,
            email=assertion.email,
            display_name=assertion.display_name,
            created_at=self._clock(),
            account_class=AccountClass.STANDARD,
            linked_external_uid=uid,
            email_verification=EmailVerification(
                is_verified=assertion.email_verified, verification_count=0
            ),
            profile={"sign_in_provider": assertion.provider_id},
        )
        if await self._store.create(record):
            logger.info("Created record {} for {}", uid, assertion.email)
            return ResolvedIdentity(record=record, step=ResolutionStep.CREATED)

        # A concurrent identical sign-in created it first
        existing = await self._store.get(uid)
        if existing is None:
            return None
        return ResolvedIdentity(record=existing, step=ResolutionStep.DIRECT)
