"""Identity provider test doubles."""

from __future__ import annotations

from src.accounts.core.errors import AuthenticationError
from src.accounts.core.models.identity import IdentityAssertion
from src.accounts.core.services.providers.identity_provider import IdentityProvider

__all__ = ["FakeIdentityProvider"]


class FakeIdentityProvider(IdentityProvider):
    """In-process provider whose verification flag and outages are scripted."""

    def __init__(
        self,
        assertion: IdentityAssertion | None = None,
        *,
        verified: bool = False,
        fail_send: bool = False,
    ) -> None:
        super().__init__()
        self.assertion = assertion
        self.verified = verified
        self.fail_send = fail_send
        self.sent: list[str] = []
        self.reload_calls = 0
        self.sign_out_calls = 0

    async def authenticate(self) -> IdentityAssertion:
        if self.assertion is None:
            raise AuthenticationError("Nobody is signed in")
        return self.assertion

    async def reload_email_verified(self) -> bool:
        self.reload_calls += 1
        return self.verified

    async def send_verification_email(self) -> None:
        assertion = await self.authenticate()
        if self.fail_send:
            raise ConnectionError("mail transport unavailable")
        self.sent.append(assertion.external_uid)

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        self.assertion = None
        await self.notify(None)

    async def sign_in(self, assertion: IdentityAssertion) -> None:
        self.assertion = assertion
        await self.notify(assertion)
