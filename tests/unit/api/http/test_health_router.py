"""Tests for the health check endpoints."""

from src.accounts.core.storage.record_store import InMemoryRecordStore
from tests.fixtures import FaultyStore


class TestHealthRouter:
    def test_liveness(self, api_client):
        response = api_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "accounts"}

    def test_ready_when_store_is_reachable(self, api_client):
        response = api_client.get("/health/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["checks"]["record_store"]["status"] == "healthy"

    def test_not_ready_when_store_is_down(self, client_for):
        client = client_for(FaultyStore(InMemoryRecordStore(), fail_on={"is_available"}))

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
