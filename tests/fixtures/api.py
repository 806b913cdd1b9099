"""FastAPI test client fixtures."""

from __future__ import annotations

from collections.abc import Callable, Generator

import pytest
from cachetools import TTLCache
from fastapi.testclient import TestClient

from src.accounts.api.http.app import app
from src.accounts.api.http.app_data import ApplicationDependencies
from src.accounts.core.services import (
    DuplicateReconciler,
    IdentityResolver,
    JwtVerificationService,
    PrecedencePolicy,
    VerificationRateLimiter,
)
from src.accounts.core.storage.record_store import InMemoryRecordStore, RecordStore
from src.accounts.runtime.config.config_data import VerificationConfig

__all__ = ["api_client", "auth_headers", "client_for", "make_dependencies"]


def make_dependencies(store: RecordStore, signing_secret: str) -> ApplicationDependencies:
    """Dependencies wired to ``store`` with short timeouts and fixed policies."""
    policy = PrecedencePolicy()
    return ApplicationDependencies(
        record_store=store,
        resolver=IdentityResolver(store, policy, timeout_seconds=1.0, max_attempts=3),
        reconciler=DuplicateReconciler(store, policy, timeout_seconds=1.0),
        rate_limiter=VerificationRateLimiter(
            store,
            VerificationConfig(min_resend_interval_minutes=5, max_per_day=5),
            timeout_seconds=1.0,
            max_attempts=3,
        ),
        jwt_verify_service=JwtVerificationService(secret=signing_secret),
        verification_cache=TTLCache(maxsize=100, ttl=60),
    )


@pytest.fixture
def client_for(signing_secret: str) -> Generator[Callable[[RecordStore], TestClient]]:
    """Build a started TestClient over a given record store."""
    clients: list[TestClient] = []

    def _client(store: RecordStore) -> TestClient:
        app.state.app_dependencies = make_dependencies(store, signing_secret)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _client

    for client in clients:
        client.__exit__(None, None, None)
    app.state.app_dependencies = None


@pytest.fixture
def api_client(
    client_for: Callable[[RecordStore], TestClient], memory_store: InMemoryRecordStore
) -> TestClient:
    return client_for(memory_store)


@pytest.fixture
def auth_headers(token_factory: Callable[..., str]) -> Callable[..., dict[str, str]]:
    """Authorization headers for a freshly issued identity token."""

    def _headers(external_uid: str = "u1", email: str | None = "a@x.com", **kwargs) -> dict[str, str]:
        return {"Authorization": f"Bearer {token_factory(external_uid, email, **kwargs)}"}

    return _headers
