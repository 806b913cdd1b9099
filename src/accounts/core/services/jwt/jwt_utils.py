import base64
import json
import time
from dataclasses import dataclass
from typing import Any, Final

from loguru import logger

from src.accounts.core.errors import AuthenticationError
from src.accounts.core.models.claims import TokenClaims
from src.accounts.runtime.context import get_config

# ---------------- tunables ----------------
MAX_JWT_CHARS: Final = 4096
MAX_SEGMENT_CHARS: Final = 4096
MAX_HEADER_BYTES: Final = 8 * 1024
MAX_PAYLOAD_BYTES: Final = 64 * 1024
_ALLOWED: Final = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_."
)  # no '='


# --------------- one-pass prefilter ---------------
def _prefilter_compact_jwt(token: str) -> tuple[str, str, str]:
    if not token or len(token) > MAX_JWT_CHARS:
        raise AuthenticationError("Invalid JWT size")
    first = second = -1
    for i, ch in enumerate(token):
        if ch not in _ALLOWED:
            raise AuthenticationError("Invalid JWT characters")
        if ch == ".":
            if first < 0:
                first = i
            elif second < 0:
                second = i
            else:  # third dot
                raise AuthenticationError("Invalid JWT format")
    # require exactly two dots and non-empty segments
    if first <= 0 or second - first <= 1 or second >= len(token) - 1:
        raise AuthenticationError("Invalid JWT format")
    h, p, s = token[:first], token[first + 1 : second], token[second + 1 :]
    if max(len(h), len(p), len(s)) > MAX_SEGMENT_CHARS:
        raise AuthenticationError("Invalid JWT segment size")
    return h, p, s


def _b64url_decode_unpadded(seg: str, what: str, max_bytes: int) -> bytes:
    pad = (-len(seg)) % 4
    try:
        raw = base64.urlsafe_b64decode((seg + "=" * pad).encode("ascii"))
    except ValueError as e:
        raise AuthenticationError(f"Invalid base64url in {what}") from e
    if len(raw) > max_bytes:
        raise AuthenticationError(f"{what} too large")
    return raw


def _decode_json_object(raw: bytes, what: str) -> dict[str, Any]:
    try:
        obj = json.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise AuthenticationError(f"Non-UTF8 {what}") from e
    except json.JSONDecodeError as e:
        raise AuthenticationError(f"Invalid JSON in {what}") from e
    if not isinstance(obj, dict):
        raise AuthenticationError(f"{what} must be a JSON object")
    return obj


@dataclass(frozen=True)
class JwtPreview:
    header: dict[str, Any]
    claims: dict[str, Any]
    alg: str | None


def preview_jwt(token: str) -> JwtPreview:
    """Split and decode header+payload exactly once, without verifying."""
    h_seg, p_seg, _ = _prefilter_compact_jwt(token)
    header = _decode_json_object(
        _b64url_decode_unpadded(h_seg, "JWT header", MAX_HEADER_BYTES), "JWT header"
    )
    claims = _decode_json_object(
        _b64url_decode_unpadded(p_seg, "JWT payload", MAX_PAYLOAD_BYTES), "JWT payload"
    )
    return JwtPreview(header=header, claims=claims, alg=header.get("alg"))


def lookup_claim(claims: dict[str, Any], path: str) -> Any:
    """Follow a dotted claim path such as ``firebase.sign_in_provider``."""
    value: Any = claims
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def extract_uid(claims: dict[str, Any]) -> str | None:
    uid_claim = get_config().jwt.claims.user_id
    uid = lookup_claim(claims, uid_claim) if uid_claim else None
    return uid or claims.get("sub") or None


def extract_roles(claims: dict[str, Any]) -> list[str]:
    """Extract roles from the ``role``, ``roles`` or ``groups`` claims."""
    roles: list[str] = []
    for role_claim in ("role", "roles", "groups"):
        value = claims.get(role_claim)
        if not value:
            continue
        if isinstance(value, list):
            roles.extend(str(v) for v in value)
        elif isinstance(value, str):
            roles.extend(value.split())
        else:
            roles.append(str(value))
    return roles


def create_token_claims(token: str, claims: dict[str, Any]) -> TokenClaims:
    """Create a TokenClaims instance from verified JWT claims."""
    claim_names = get_config().jwt.claims
    now = int(time.time())

    logger.debug(f"Creating TokenClaims for subject {claims.get('sub')}")

    provider = lookup_claim(claims, claim_names.provider)
    return TokenClaims(
        uid=extract_uid(claims),
        raw_token=token,
        issuer=claims.get("iss") or "",
        subject=claims.get("sub") or "",
        audience=claims.get("aud") or [],
        expires_at=claims.get("exp", now + 3600),
        issued_at=claims.get("iat", now),
        email=lookup_claim(claims, claim_names.email),
        email_verified=bool(claims.get("email_verified", False)),
        name=lookup_claim(claims, claim_names.name),
        sign_in_provider=provider if isinstance(provider, str) else None,
        roles=extract_roles(claims),
        all_claims=dict(claims),
    )
