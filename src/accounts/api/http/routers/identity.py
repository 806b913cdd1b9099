"""Sign-in resolution and email verification endpoints."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.accounts.api.http.deps import (
    get_resolved_session,
    get_session_manager,
    raise_for_outcome,
)
from src.accounts.core.errors import RateLimited
from src.accounts.core.models.identity import ResolutionOutcome
from src.accounts.core.models.verification import SendDecision, VerificationState
from src.accounts.core.services import SessionManager

router = APIRouter(prefix="/identity", tags=["identity"])


class VerificationCheck(BaseModel):
    verified: bool


@router.post("/session", response_model=ResolutionOutcome)
async def resolve_session(
    manager: SessionManager = Depends(get_session_manager),
) -> ResolutionOutcome:
    """Resolve the bearer identity to its canonical record.

    Call once per sign-in. The returned ``record_id`` is the effective user
    id the client must use for every per-user resource.
    """
    outcome = await manager.resolve_current_identity()
    raise_for_outcome(outcome)
    return outcome


@router.get("/verification", response_model=VerificationState)
async def verification_state(
    manager: SessionManager = Depends(get_resolved_session),
) -> VerificationState:
    return await manager.verification_state()


@router.post("/verification/resend", response_model=SendDecision)
async def resend_verification(
    manager: SessionManager = Depends(get_resolved_session),
) -> SendDecision:
    decision = await manager.request_verification_resend()
    if not decision.allowed and decision.retry_after_seconds is not None:
        raise RateLimited(decision.reason, decision.retry_after_seconds)
    return decision


@router.post("/verification/check", response_model=VerificationCheck)
async def check_verification(
    manager: SessionManager = Depends(get_resolved_session),
) -> VerificationCheck:
    """Force a fresh verification check with the identity provider."""
    return VerificationCheck(verified=await manager.check_verification_now())
