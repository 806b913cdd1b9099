"""FastAPI dependency implementations."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, HTTPException, Request

from src.accounts.api.http.app_data import ApplicationDependencies
from src.accounts.core.models.claims import TokenClaims
from src.accounts.core.models.identity import ResolutionOutcome
from src.accounts.core.services import (
    DuplicateReconciler,
    JwtVerificationService,
    SessionManager,
    TokenIdentityProvider,
    VerificationRateLimiter,
)
from src.accounts.core.storage.record_store import RecordStore
from src.accounts.runtime.context import get_config


def get_app_dependencies(request: Request) -> ApplicationDependencies:
    return request.app.state.app_dependencies


def get_record_store(request: Request) -> RecordStore:
    """Get the record store instance."""
    return get_app_dependencies(request).record_store


def get_reconciler(request: Request) -> DuplicateReconciler:
    """Get the duplicate reconciler instance."""
    return get_app_dependencies(request).reconciler


def get_rate_limiter(request: Request) -> VerificationRateLimiter:
    """Get the verification rate limiter instance."""
    return get_app_dependencies(request).rate_limiter


def get_jwt_verify_service(request: Request) -> JwtVerificationService:
    """Get the JWT verification service instance."""
    return get_app_dependencies(request).jwt_verify_service


async def get_token_claims(
    request: Request,
    jwt_verify: JwtVerificationService = Depends(get_jwt_verify_service),
) -> TokenClaims:
    """Verify the request's Bearer identity token."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")

    claims = await jwt_verify.verify_jwt(auth_header.split(" ", 1)[1])
    request.state.claims = claims
    request.state.roles = claims.roles
    return claims


def get_identity_provider(
    claims: TokenClaims = Depends(get_token_claims),
) -> TokenIdentityProvider:
    return TokenIdentityProvider(claims)


async def get_session_manager(
    request: Request,
    provider: TokenIdentityProvider = Depends(get_identity_provider),
) -> AsyncIterator[SessionManager]:
    """A started SessionManager for the caller, stopped when the request ends."""
    app_deps = get_app_dependencies(request)
    manager = SessionManager(
        provider,
        app_deps.resolver,
        app_deps.rate_limiter,
        verification_cache=app_deps.verification_cache,
    )
    manager.start()
    try:
        yield manager
    finally:
        manager.stop()


def raise_for_outcome(outcome: ResolutionOutcome) -> None:
    """Turn an unsuccessful resolution into the matching HTTP error."""
    if outcome.status == "conflict":
        raise HTTPException(status_code=409, detail=outcome.message)
    if outcome.status == "transient_error":
        raise HTTPException(
            status_code=503, detail=outcome.message, headers={"Retry-After": "1"}
        )
    if not outcome.ok:
        raise HTTPException(status_code=401, detail="Not signed in")


async def get_resolved_session(
    manager: SessionManager = Depends(get_session_manager),
) -> SessionManager:
    """Session manager whose identity has been resolved to a record."""
    raise_for_outcome(await manager.resolve_current_identity())
    return manager


def require_role(required_role: str):
    """Create a dependency that requires a specific role for the authenticated user."""

    async def dep(claims: TokenClaims = Depends(get_token_claims)) -> None:
        if not claims.has_role(required_role):
            raise HTTPException(
                status_code=403, detail=f"Missing required role: {required_role}"
            )

    return dep


async def require_admin(claims: TokenClaims = Depends(get_token_claims)) -> None:
    """Require the configured administrative role."""
    await require_role(get_config().identity.admin_role)(claims)
