"""External identity provider adapters."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from loguru import logger

from src.accounts.core.errors import AuthenticationError
from src.accounts.core.models.claims import TokenClaims
from src.accounts.core.models.identity import IdentityAssertion

# Called with the new assertion on sign-in and with None on sign-out
AuthListener = Callable[[IdentityAssertion | None], Awaitable[object]]
VerificationSender = Callable[[IdentityAssertion], Awaitable[None]]
VerificationLookup = Callable[[str], Awaitable[bool]]


class IdentityProvider(ABC):
    """The subset of an external identity provider this service relies on."""

    def __init__(self) -> None:
        self._listeners: list[AuthListener] = []

    @abstractmethod
    async def authenticate(self) -> IdentityAssertion:
        """Return the assertion for the signed-in identity.

        Raises:
            AuthenticationError: If no identity is signed in
        """

    @abstractmethod
    async def reload_email_verified(self) -> bool:
        """Re-fetch the email verification flag from the provider."""

    @abstractmethod
    async def send_verification_email(self) -> None:
        """Ask the provider to dispatch a verification email."""

    @abstractmethod
    async def sign_out(self) -> None:
        """Sign the external identity out and notify listeners."""

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register an auth state listener and return its unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def notify(self, assertion: IdentityAssertion | None) -> None:
        for listener in list(self._listeners):
            await listener(assertion)


async def log_verification_sender(assertion: IdentityAssertion) -> None:
    """Development sender: records the request instead of sending mail."""
    logger.info(
        "Verification email requested for {} <{}>", assertion.external_uid, assertion.email
    )


class TokenIdentityProvider(IdentityProvider):
    """Request-scoped provider backed by verified bearer token claims.

    The token carries the provider's view of the identity at issue time.
    ``verification_lookup`` may be supplied to query the provider for a
    fresher verification flag than the one in the token.
    """

    def __init__(
        self,
        claims: TokenClaims,
        sender: VerificationSender | None = None,
        verification_lookup: VerificationLookup | None = None,
    ) -> None:
        super().__init__()
        self._claims = claims
        self._sender = sender or log_verification_sender
        self._verification_lookup = verification_lookup
        self._signed_out = False

    @property
    def claims(self) -> TokenClaims:
        return self._claims

    def _assertion(self) -> IdentityAssertion:
        uid = self._claims.uid or self._claims.subject
        if not uid:
            raise AuthenticationError("Token carries no user id")
        return IdentityAssertion(
            external_uid=uid,
            email=self._claims.email,
            email_verified=self._claims.email_verified,
            provider_id=self._claims.sign_in_provider or self._claims.issuer or "password",
            display_name=self._claims.name,
        )

    async def authenticate(self) -> IdentityAssertion:
        if self._signed_out:
            raise AuthenticationError("Identity was signed out")
        return self._assertion()

    async def reload_email_verified(self) -> bool:
        assertion = await self.authenticate()
        if self._verification_lookup is None:
            return assertion.email_verified
        return await self._verification_lookup(assertion.external_uid)

    async def send_verification_email(self) -> None:
        await self._sender(await self.authenticate())

    async def sign_out(self) -> None:
        if self._signed_out:
            return
        self._signed_out = True
        logger.info("Signed out external identity {}", self._claims.uid or self._claims.subject)
        await self.notify(None)

    async def sign_in(self) -> None:
        """Announce the token's identity to subscribed listeners."""
        await self.notify(await self.authenticate())
