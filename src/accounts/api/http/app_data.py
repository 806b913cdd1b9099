from dataclasses import dataclass

from cachetools import TTLCache

from src.accounts.core.services import (
    DuplicateReconciler,
    IdentityResolver,
    JwtVerificationService,
    VerificationRateLimiter,
)
from src.accounts.core.services.session.session_manager import new_verification_cache
from src.accounts.core.storage.record_store import RecordStore


@dataclass
class ApplicationDependencies:
    record_store: RecordStore
    resolver: IdentityResolver
    reconciler: DuplicateReconciler
    rate_limiter: VerificationRateLimiter
    jwt_verify_service: JwtVerificationService
    verification_cache: TTLCache

    @classmethod
    def build(cls, record_store: RecordStore) -> "ApplicationDependencies":
        return cls(
            record_store=record_store,
            resolver=IdentityResolver(record_store),
            reconciler=DuplicateReconciler(record_store),
            rate_limiter=VerificationRateLimiter(record_store),
            jwt_verify_service=JwtVerificationService(),
            verification_cache=new_verification_cache(),
        )
