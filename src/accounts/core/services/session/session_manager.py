"""Effective user id for an authenticated session."""

from cachetools import TTLCache
from loguru import logger

from src.accounts.core.errors import (
    AccountConflict,
    AuthenticationError,
    TransientStoreError,
)
from src.accounts.core.models.identity import IdentityAssertion, ResolutionOutcome
from src.accounts.core.models.verification import SendDecision, VerificationState
from src.accounts.core.services.identity.resolver import IdentityResolver
from src.accounts.core.services.providers.identity_provider import IdentityProvider
from src.accounts.core.services.verification.rate_limiter import VerificationRateLimiter
from src.accounts.entities.core.user_record import UserRecord
from src.accounts.runtime.context import get_config

ALREADY_VERIFIED_REASON = "Email is already verified."


def new_verification_cache() -> TTLCache:
    """Cache of provider verification checks, keyed by record id."""
    return TTLCache(maxsize=10_000, ttl=get_config().verification.status_cache_seconds)


class SessionManager:
    """Resolves the signed-in identity and holds its effective user id.

    Listens to the provider's auth events between ``start()`` and ``stop()``.
    Every other subsystem keys per-user data by ``effective_user_id``, never
    by the raw external uid.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        resolver: IdentityResolver,
        rate_limiter: VerificationRateLimiter,
        verification_cache: TTLCache | None = None,
    ) -> None:
        self._provider = provider
        self._resolver = resolver
        self._rate_limiter = rate_limiter
        self._verification_cache = (
            verification_cache if verification_cache is not None else new_verification_cache()
        )
        self._unsubscribe = None
        self._record: UserRecord | None = None

    @property
    def started(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        if self.started:
            raise RuntimeError("SessionManager is already started")
        self._unsubscribe = self._provider.subscribe(self.handle_auth_event)

    def stop(self) -> None:
        if not self.started:
            return
        self._unsubscribe()
        self._unsubscribe = None
        self._record = None

    @property
    def effective_user_id(self) -> str | None:
        return self._record.record_id if self._record else None

    @property
    def current_record(self) -> UserRecord | None:
        return self._record

    async def handle_auth_event(self, assertion: IdentityAssertion | None) -> ResolutionOutcome:
        """Provider listener: resolve on sign-in, forget the session on sign-out."""
        if assertion is None:
            self._record = None
            return ResolutionOutcome(status="signed_out")
        return await self._resolve(assertion)

    async def resolve_current_identity(self) -> ResolutionOutcome:
        """Resolve whoever the provider says is signed in.

        Raises:
            AuthenticationError: If the provider has no signed-in identity
        """
        assertion = await self._provider.authenticate()
        return await self._resolve(assertion)

    async def _resolve(self, assertion: IdentityAssertion) -> ResolutionOutcome:
        try:
            resolved = await self._resolver.resolve(assertion)
        except AccountConflict as e:
            self._record = None
            logger.warning(
                "Signing out {}: {} belongs to another account", assertion.external_uid, e.email
            )
            await self._provider.sign_out()
            return ResolutionOutcome(
                status="conflict", record_id=e.record_id, message=e.user_message
            )
        except TransientStoreError as e:
            self._record = None
            logger.warning("Could not resolve {}: {}", assertion.external_uid, e)
            return ResolutionOutcome(status="transient_error", message=e.user_message)

        self._record = resolved.record
        return ResolutionOutcome(
            status="resolved", record_id=resolved.record_id, record=resolved.record
        )

    def _require_user_id(self) -> str:
        if self._record is None:
            raise AuthenticationError("No resolved session")
        return self._record.record_id

    async def check_verification_now(self) -> bool:
        """Ask the provider whether the email is verified, reusing recent answers."""
        record_id = self._require_user_id()
        cached = self._verification_cache.get(record_id)
        if cached is not None:
            return cached
        return await self._reload_verification(record_id)

    async def _reload_verification(self, record_id: str) -> bool:
        verified = await self._provider.reload_email_verified()
        if verified:
            await self._rate_limiter.mark_verified(record_id)
        self._verification_cache[record_id] = verified
        return verified

    async def request_verification_resend(self) -> SendDecision:
        """Send another verification email if the resend policy allows it.

        Verification is always re-checked with the provider first. The send
        is reserved before dispatch and given back if the provider refuses it.
        """
        record_id = self._require_user_id()
        if await self._reload_verification(record_id):
            return SendDecision(allowed=False, reason=ALREADY_VERIFIED_REASON)

        reservation = await self._rate_limiter.reserve_send(record_id)
        if not reservation.decision.allowed:
            return reservation.decision

        try:
            await self._provider.send_verification_email()
        except Exception:
            await self._rate_limiter.release_send(record_id, reservation)
            raise
        logger.info("Verification email sent for {}", record_id)
        return reservation.decision

    async def verification_state(self) -> VerificationState:
        return await self._rate_limiter.verification_state(self._require_user_id())
