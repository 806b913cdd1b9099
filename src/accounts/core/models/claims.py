"""Structured bearer-token claims."""

from typing import Any

from pydantic import BaseModel, Field


class TokenClaims(BaseModel):
    """Structured representation of JWT token claims."""

    # custom uid claim for user identification
    uid: str | None = Field(default=None, description="UID claim for user identification")

    raw_token: str = Field(default="", description="Original JWT token")

    # Standard claims
    issuer: str = Field(description="Issuer")
    subject: str = Field(description="Subject (user ID)")
    audience: str | list[str] = Field(default_factory=list, description="Audience")
    expires_at: int = Field(description="Expiration time")
    issued_at: int = Field(description="Issued at")

    # Common user claims
    email: str | None = Field(default=None, description="Email address")
    email_verified: bool = Field(default=False, description="Email verification status")
    name: str | None = Field(default=None, description="Full name")
    sign_in_provider: str | None = Field(
        default=None, description="Provider the user signed in with"
    )

    roles: list[str] = Field(default_factory=list, description="User roles")

    all_claims: dict[str, Any] = Field(
        default_factory=dict, description="All claims (including custom claims)"
    )

    def has_role(self, role: str) -> bool:
        return role in self.roles
