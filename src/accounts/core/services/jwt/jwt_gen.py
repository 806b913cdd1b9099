import time
from typing import Any

from authlib.jose import JoseError, jwt
from loguru import logger

from src.accounts.core.errors import AuthenticationError
from src.accounts.runtime.context import get_config


class JwtGeneratorService:
    """Issues identity tokens in the shape the identity provider hands out.

    Used for local development and tests; production tokens come from the
    identity provider itself.
    """

    def generate_identity_token(
        self,
        external_uid: str,
        email: str | None = None,
        email_verified: bool = False,
        name: str | None = None,
        sign_in_provider: str = "password",
        roles: list[str] | None = None,
        expires_in_seconds: int = 3600,
        algorithm: str = "HS256",
        secret: str | None = None,
        issuer: str = "accounts-dev",
        **extra_claims: Any,
    ) -> str:
        """Generate a signed identity token.

        Args:
            external_uid: Provider uid, written to both ``sub`` and the uid claim
            email: Email address claim
            email_verified: Whether the provider considers the email verified
            name: Display name claim
            sign_in_provider: Provider id, nested the way Firebase does it
            roles: Role claims, e.g. the configured admin role
            expires_in_seconds: Token lifetime in seconds (default: 1 hour)
            algorithm: Signing algorithm (default: HS256)
            secret: Signing secret. If None, the configured secret is used.
            issuer: Issuer (iss) claim
            **extra_claims: Additional claims to include

        Raises:
            AuthenticationError: If no secret is available or the algorithm
                is not allowed
        """
        config = get_config()
        secret = secret or config.app.session_signing_secret
        if not secret:
            raise AuthenticationError("JWT signing secret not configured")

        if algorithm not in config.jwt.allowed_algorithms:
            logger.debug(f"Attempted to use disallowed algorithm: {algorithm}")
            raise AuthenticationError(f"Algorithm {algorithm} not allowed")

        now = int(time.time())
        payload: dict[str, Any] = {
            "iss": issuer,
            "sub": external_uid,
            "iat": now,
            "nbf": now,
            "exp": now + expires_in_seconds,
            config.jwt.claims.user_id: external_uid,
            "email_verified": email_verified,
            "firebase": {"sign_in_provider": sign_in_provider},
        }
        if config.jwt.audiences:
            payload["aud"] = config.jwt.audiences[0]
        if email:
            payload["email"] = email
        if name:
            payload["name"] = name
        if roles:
            payload["roles"] = roles
        payload.update(extra_claims)

        try:
            token = jwt.encode({"alg": algorithm, "typ": "JWT"}, payload, secret)
        except JoseError as e:
            raise AuthenticationError(f"JWT encoding failed: {e}") from e

        # authlib returns bytes, decode to string
        return token.decode() if isinstance(token, bytes) else token
