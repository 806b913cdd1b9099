"""Core services exports."""

# Database Service
from .database.db_session import DbSessionService

# Identity Services
from .identity.precedence import PrecedencePolicy
from .identity.reconciler import DuplicateReconciler
from .identity.resolver import IdentityResolver

# JWT Services
from .jwt.jwt_gen import JwtGeneratorService
from .jwt.jwt_verify import JwtVerificationService

# Identity Provider
from .providers.identity_provider import IdentityProvider, TokenIdentityProvider

# Session Services
from .session.session_manager import SessionManager

# Verification Services
from .verification.rate_limiter import VerificationRateLimiter, apply_send, can_send

__all__ = [
    # Database Service
    "DbSessionService",
    # Identity Services
    "DuplicateReconciler",
    "IdentityResolver",
    "PrecedencePolicy",
    # JWT Services
    "JwtGeneratorService",
    "JwtVerificationService",
    # Identity Provider
    "IdentityProvider",
    "TokenIdentityProvider",
    # Session Services
    "SessionManager",
    # Verification Services
    "VerificationRateLimiter",
    "apply_send",
    "can_send",
]
