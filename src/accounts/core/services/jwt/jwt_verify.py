"""JWT verification service."""

import time

from authlib.jose import JoseError, jwt
from loguru import logger

from src.accounts.core.errors import AuthenticationError
from src.accounts.core.models.claims import TokenClaims
from src.accounts.core.services.jwt.jwt_utils import create_token_claims, preview_jwt
from src.accounts.runtime.context import get_config


class JwtVerificationService:
    """Verifies bearer identity tokens signed with the shared session secret."""

    def __init__(self, secret: str | None = None):
        self._secret = secret

    async def verify_jwt(self, token: str) -> TokenClaims:
        """Verify signature and registered claims of ``token``.

        Raises:
            AuthenticationError: If the token is malformed, expired, signed
                with a disallowed algorithm or the wrong key, or has no subject
        """
        cfg = get_config()
        pv = preview_jwt(token)

        # alg allowlist
        if pv.alg not in cfg.jwt.allowed_algorithms:
            raise AuthenticationError("Disallowed JWT algorithm")

        secret = self._secret or cfg.app.session_signing_secret
        if not secret:
            raise AuthenticationError("JWT signing secret not configured")

        claims_options = None
        if cfg.jwt.audiences:
            claims_options = {"aud": {"essential": True, "values": cfg.jwt.audiences}}

        try:
            claims = jwt.decode(token, secret, claims_options=claims_options)
            claims.validate(leeway=cfg.jwt.clock_skew)
        except (JoseError, ValueError) as exc:
            logger.debug(f"Rejected bearer token: {exc}")
            raise AuthenticationError(f"JWT error: {exc}") from exc

        # extra temporal sanity
        now = int(time.time())
        for k, check in (
            ("exp", lambda v: now > int(v) + cfg.jwt.clock_skew),
            ("nbf", lambda v: now < int(v) - cfg.jwt.clock_skew),
            ("iat", lambda v: int(v) > now + cfg.jwt.clock_skew),
        ):
            v = claims.get(k)
            if v is not None and check(v):
                raise AuthenticationError(f"Invalid {k} with skew")

        if not claims.get("sub"):
            raise AuthenticationError("Missing sub claim")

        return create_token_claims(token=token, claims=dict(claims))
