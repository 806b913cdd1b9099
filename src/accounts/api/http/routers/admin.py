"""Administrative endpoints for duplicate reconciliation and verification support."""

from fastapi import APIRouter, Depends, Query

from src.accounts.api.http.deps import get_rate_limiter, get_reconciler, require_admin
from src.accounts.core.models.reconciliation import (
    DuplicateCheck,
    EmailDiagnosis,
    GroupReport,
    ReconciliationReport,
)
from src.accounts.core.models.verification import VerificationState
from src.accounts.core.services import DuplicateReconciler, VerificationRateLimiter

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/reconcile", response_model=ReconciliationReport)
async def reconcile_all(
    dry_run: bool | None = Query(default=None),
    reconciler: DuplicateReconciler = Depends(get_reconciler),
) -> ReconciliationReport:
    """Collapse every email with several records onto its canonical record.

    Groups that could not be fully cleaned are listed with per-record errors;
    they never stop the pass.
    """
    return await reconciler.reconcile_all(dry_run=dry_run)


@router.post("/reconcile/{email}", response_model=GroupReport)
async def reconcile_email(
    email: str,
    dry_run: bool | None = Query(default=None),
    reconciler: DuplicateReconciler = Depends(get_reconciler),
) -> GroupReport:
    return await reconciler.reconcile_email(email, dry_run=dry_run)


@router.get("/duplicates/{email}", response_model=DuplicateCheck)
async def find_duplicates(
    email: str, reconciler: DuplicateReconciler = Depends(get_reconciler)
) -> DuplicateCheck:
    return await reconciler.find_duplicates(email)


@router.get("/diagnose/{email}", response_model=EmailDiagnosis)
async def diagnose_email(
    email: str, reconciler: DuplicateReconciler = Depends(get_reconciler)
) -> EmailDiagnosis:
    return await reconciler.diagnose_email(email)


@router.post("/verification/{record_id}/reset", response_model=VerificationState)
async def reset_verification(
    record_id: str,
    rate_limiter: VerificationRateLimiter = Depends(get_rate_limiter),
) -> VerificationState:
    verification = await rate_limiter.reset_verification(record_id)
    return VerificationState(record_id=record_id, **verification.model_dump())
