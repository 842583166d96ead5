"""Integration tests for the erasure API endpoints."""

from datetime import UTC, datetime, timedelta
from uuid import UUID

import pytest
from httpx import AsyncClient

from letright.core.exceptions import StoreUnavailableError
from letright.db.models.audit import AuditEventType

FAR_FUTURE = datetime(2100, 1, 1, tzinfo=UTC)


async def create_request(client: AsyncClient, **overrides) -> dict:
    body = {"subject_id": "renter-1", "subject_type": "renter", **overrides}
    response = await client.post("/v1/erasure/requests", json=body)
    assert response.status_code == 201, response.text
    return response.json()


async def tokens_for(components, subject_id: str = "renter-1"):
    [request, *_] = await components.service.list_requests_for_subject(subject_id)
    return request.verification_token, request.cancellation_token


@pytest.mark.asyncio
class TestCreateRequest:
    """Tests for POST /v1/erasure/requests."""

    async def test_create_request(self, authenticated_client: AsyncClient, test_components):
        """Test a request is created pending verification without exposing tokens."""
        data = await create_request(authenticated_client, reason="moving abroad")

        assert data["status"] == "pending_verification"
        assert data["subject_id"] == "renter-1"
        assert data["reason"] == "moving abroad"
        assert "verification_token" not in data
        assert "cancellation_token" not in data

        requested = datetime.fromisoformat(data["requested_at"])
        scheduled = datetime.fromisoformat(data["scheduled_deletion_at"])
        assert scheduled - requested == timedelta(days=30)

    async def test_links_dispatched(self, authenticated_client, test_components, gateway):
        """Test the verification links are handed to the gateway."""
        await create_request(authenticated_client)
        await test_components.dispatcher.drain()

        verify_token, cancel_token = await tokens_for(test_components)
        assert gateway.sent == [
            {
                "subject_id": "renter-1",
                "subject_type": "renter",
                "verify_token": verify_token,
                "cancel_token": cancel_token,
            }
        ]

    async def test_operator_is_audited(self, authenticated_client, test_components):
        """Test the operator identity reaches the audit trail."""
        await create_request(authenticated_client)

        [entry] = test_components.audit.of_type(AuditEventType.ERASURE_REQUESTED)
        assert entry.actor_id.startswith("operator:")

    async def test_requires_auth(self, test_client: AsyncClient):
        """Test operator endpoints reject requests without an API key."""
        response = await test_client.post(
            "/v1/erasure/requests", json={"subject_id": "renter-1", "subject_type": "renter"}
        )

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["error_code"] == "unauthorized"

    async def test_wrong_api_key(self, test_client: AsyncClient):
        """Test an incorrect API key is rejected."""
        response = await test_client.get(
            "/v1/erasure/requests",
            params={"subject_id": "renter-1"},
            headers={"Authorization": "Bearer not-the-key"},
        )

        assert response.status_code == 401

    async def test_unknown_subject(self, authenticated_client: AsyncClient):
        """Test a subject without a profile of that type returns 404."""
        response = await authenticated_client.post(
            "/v1/erasure/requests", json={"subject_id": "renter-1", "subject_type": "landlord"}
        )

        assert response.status_code == 404
        data = response.json()
        assert data["error_code"] == "subject_not_found"
        assert data["details"] == {"subject_id": "renter-1", "subject_type": "landlord"}

    async def test_duplicate_request(self, authenticated_client: AsyncClient):
        """Test a second active request for the same subject returns 409."""
        first = await create_request(authenticated_client)

        response = await authenticated_client.post(
            "/v1/erasure/requests", json={"subject_id": "renter-1", "subject_type": "renter"}
        )

        assert response.status_code == 409
        data = response.json()
        assert data["error_code"] == "duplicate_request"
        assert data["details"]["existing_request_id"] == first["id"]

    async def test_invalid_subject_type(self, authenticated_client: AsyncClient):
        """Test an unknown subject type fails validation."""
        response = await authenticated_client.post(
            "/v1/erasure/requests", json={"subject_id": "renter-1", "subject_type": "tenant"}
        )

        assert response.status_code == 422

    async def test_subject_lookup_unavailable(
        self, authenticated_client: AsyncClient, test_components
    ):
        """Test a failed profile lookup returns 503."""

        async def broken(subject_id, subject_type):
            raise StoreUnavailableError("subject_exists", "timed out after 10.0s")

        test_components.subjects.subject_exists = broken

        response = await authenticated_client.post(
            "/v1/erasure/requests", json={"subject_id": "renter-1", "subject_type": "renter"}
        )

        assert response.status_code == 503
        assert response.json()["error_code"] == "store_unavailable"


@pytest.mark.asyncio
class TestVerifyAndCancel:
    """Tests for the public token endpoints."""

    async def test_verify(self, authenticated_client, test_client, test_components):
        """Test the verification token confirms the request without an API key."""
        created = await create_request(authenticated_client)
        verify_token, _ = await tokens_for(test_components)

        response = await test_client.post("/v1/erasure/verify", json={"token": verify_token})

        assert response.status_code == 200
        data = response.json()
        assert data["request_id"] == created["id"]
        assert data["status"] == "verified"

    async def test_verify_token_single_use(
        self, authenticated_client, test_client, test_components
    ):
        """Test a verification token cannot be replayed."""
        await create_request(authenticated_client)
        verify_token, _ = await tokens_for(test_components)
        await test_client.post("/v1/erasure/verify", json={"token": verify_token})

        response = await test_client.post("/v1/erasure/verify", json={"token": verify_token})

        assert response.status_code == 400
        assert response.json()["error_code"] == "invalid_token"

    async def test_cancel(self, authenticated_client, test_client, test_components):
        """Test the cancellation token withdraws the request."""
        await create_request(authenticated_client)
        _, cancel_token = await tokens_for(test_components)

        response = await test_client.post("/v1/erasure/cancel", json={"token": cancel_token})

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    async def test_unknown_token(self, test_client: AsyncClient):
        """Test an unknown token returns 400 without details."""
        response = await test_client.post("/v1/erasure/cancel", json={"token": "0" * 64})

        assert response.status_code == 400
        data = response.json()
        assert data["error_code"] == "invalid_token"
        assert data["details"] is None

    async def test_short_token_rejected(self, test_client: AsyncClient):
        """Test a malformed token fails validation."""
        response = await test_client.post("/v1/erasure/verify", json={"token": "abc"})

        assert response.status_code == 422


@pytest.mark.asyncio
class TestReadRequests:
    """Tests for GET endpoints."""

    async def test_get_request(self, authenticated_client: AsyncClient):
        """Test a request can be fetched by ID."""
        created = await create_request(authenticated_client)

        response = await authenticated_client.get(f"/v1/erasure/requests/{created['id']}")

        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

    async def test_get_unknown_request(self, authenticated_client: AsyncClient):
        """Test an unknown ID returns 404."""
        response = await authenticated_client.get(
            "/v1/erasure/requests/00000000-0000-7000-8000-000000000000"
        )

        assert response.status_code == 404
        assert response.json()["error_code"] == "request_not_found"

    async def test_list_requests(self, authenticated_client, test_client, test_components):
        """Test a subject's requests are listed newest first."""
        first = await create_request(authenticated_client)
        _, cancel_token = await tokens_for(test_components)
        await test_client.post("/v1/erasure/cancel", json={"token": cancel_token})
        second = await create_request(authenticated_client)

        response = await authenticated_client.get(
            "/v1/erasure/requests", params={"subject_id": "renter-1"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["subject_id"] == "renter-1"
        assert {r["id"] for r in data["requests"]} == {first["id"], second["id"]}


@pytest.mark.asyncio
class TestJobs:
    """Tests for the operator job endpoints."""

    async def test_execute_due_requests(self, authenticated_client, test_client, test_components):
        """Test a verified, due request is executed through the API."""
        created = await create_request(authenticated_client)
        verify_token, _ = await tokens_for(test_components)
        await test_client.post("/v1/erasure/verify", json={"token": verify_token})

        response = await authenticated_client.post(
            "/v1/erasure/jobs/execute", json={"now": FAR_FUTURE.isoformat()}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["executed"] == 1
        assert data["completed"] == 1
        assert data["failed"] == 0
        [result] = data["results"]
        assert result["request_id"] == created["id"]
        assert "renter_profiles" in result["tables_affected"]
        assert test_components.collections.count("renter_profiles", "id", "renter-1") == 0

    async def test_execute_with_skip_grace(
        self, authenticated_client, test_client, test_components
    ):
        """Test an operator request without grace period runs on the next batch."""
        await create_request(authenticated_client, skip_grace_period=True)
        verify_token, _ = await tokens_for(test_components)
        await test_client.post("/v1/erasure/verify", json={"token": verify_token})

        response = await authenticated_client.post("/v1/erasure/jobs/execute")

        assert response.json()["completed"] == 1

    async def test_execute_nothing_due(self, authenticated_client: AsyncClient):
        """Test an empty run reports zero counts."""
        response = await authenticated_client.post("/v1/erasure/jobs/execute")

        assert response.status_code == 200
        assert response.json() == {"executed": 0, "completed": 0, "failed": 0, "results": []}

    async def test_requeue_failed_request(self, authenticated_client, test_components):
        """Test a failed request can be re-queued by an operator."""
        created = await create_request(authenticated_client)
        service = test_components.service
        request = await service.get_request(UUID(created["id"]))
        verified = await service.verify_deletion(request.verification_token)
        claimed = await service.claim(verified)
        await service.mark_failed(claimed, "DeletionPlanError: no plan")

        response = await authenticated_client.post(
            f"/v1/erasure/requests/{created['id']}/requeue", json={"delay_seconds": 60}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "verified"
        assert data["last_error"] is None

    async def test_requeue_not_failed(self, authenticated_client: AsyncClient):
        """Test re-queueing a request that has not failed returns 409."""
        created = await create_request(authenticated_client)

        response = await authenticated_client.post(
            f"/v1/erasure/requests/{created['id']}/requeue"
        )

        assert response.status_code == 409
        data = response.json()
        assert data["error_code"] == "invalid_transition"
        assert data["details"]["current_status"] == "pending_verification"

    async def test_recover_stale(self, authenticated_client, test_components):
        """Test recover-stale returns abandoned claims to verified."""
        created = await create_request(authenticated_client)
        service = test_components.service
        request = await service.get_request(UUID(created["id"]))
        verified = await service.verify_deletion(request.verification_token)
        wall_clock = service.clock
        service.clock = lambda: datetime.now(UTC) - timedelta(hours=1)
        await service.claim(verified)
        service.clock = wall_clock
        test_components.settings.erasure.stale_processing_minutes = 1

        response = await authenticated_client.post("/v1/erasure/jobs/recover-stale")

        assert response.status_code == 200
        [recovered] = response.json()["recovered"]
        assert recovered["id"] == created["id"]
        assert recovered["status"] == "verified"


@pytest.mark.asyncio
class TestRequestId:
    """Tests for request ID propagation."""

    async def test_request_id_echoed(self, test_client: AsyncClient):
        """Test a supplied X-Request-ID is returned unchanged."""
        response = await test_client.get("/health", headers={"X-Request-ID": "req-abc"})

        assert response.headers["X-Request-ID"] == "req-abc"

    async def test_request_id_on_errors(self, test_client: AsyncClient):
        """Test error bodies carry the request ID."""
        response = await test_client.post(
            "/v1/erasure/verify",
            json={"token": "0" * 64},
            headers={"X-Request-ID": "req-err"},
        )

        assert response.json()["request_id"] == "req-err"
