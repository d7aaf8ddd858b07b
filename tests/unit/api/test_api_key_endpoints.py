"""Unit tests for API key administration endpoints."""

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.v1.dependencies import AdminContext, get_admin_auth, get_validation_service
from src.api.v1.endpoints.api_keys import get_api_key_service, get_usage_service, router
from src.core.database import get_db_session
from src.core.exceptions import setup_exception_handlers
from src.core.result import ErrorCode, Result
from src.models.domain.api_key import ApiKeyCreateResponse, ApiKeyRead, IpWhitelistEntryRead
from src.models.domain.usage import UsageLogPage, UsageStats
from src.models.domain.validation import ApiKeyValidationResult


@pytest.fixture
def mock_key_service() -> MagicMock:
    """Create a mock API key service."""
    return MagicMock()


@pytest.fixture
def mock_usage_service() -> MagicMock:
    """Create a mock usage service."""
    return MagicMock()


@pytest.fixture
def mock_validation_service() -> MagicMock:
    """Create a mock validation service."""
    return MagicMock()


@pytest.fixture
def app(
    mock_key_service: MagicMock,
    mock_usage_service: MagicMock,
    mock_validation_service: MagicMock,
) -> FastAPI:
    """Create test app with mocked dependencies."""
    test_app = FastAPI()
    test_app.include_router(router, prefix="/api-keys")
    setup_exception_handlers(test_app)

    test_app.dependency_overrides[get_admin_auth] = lambda: AdminContext(actor="alice")
    test_app.dependency_overrides[get_db_session] = lambda: AsyncMock()
    test_app.dependency_overrides[get_api_key_service] = lambda: mock_key_service
    test_app.dependency_overrides[get_usage_service] = lambda: mock_usage_service
    test_app.dependency_overrides[get_validation_service] = lambda: mock_validation_service

    return test_app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create test client."""
    return TestClient(app)


def make_key_read(key_id: uuid.UUID | None = None, **overrides: object) -> ApiKeyRead:
    """Create an ApiKeyRead response."""
    now = datetime.now(UTC)
    fields: dict = {
        "id": key_id or uuid.uuid4(),
        "api_client_id": uuid.uuid4(),
        "name": "Integration-1",
        "key_prefix": "b2b_AbCd1234...",
        "is_active": True,
        "rate_limit_per_minute": 60,
        "scopes": ["products:read"],
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return ApiKeyRead(**fields)


class TestCreateKey:
    """Tests for POST /api-keys."""

    def test_create_returns_plaintext(
        self, client: TestClient, mock_key_service: MagicMock
    ) -> None:
        """Test successful creation returns the key once."""
        read = make_key_read()
        mock_key_service.create_key = AsyncMock(
            return_value=Result.ok(ApiKeyCreateResponse(key="b2b_secret", **read.model_dump()))
        )

        response = client.post(
            "/api-keys",
            json={
                "name": "Integration-1",
                "api_client_id": str(read.api_client_id),
                "scopes": ["products:read"],
            },
        )

        assert response.status_code == 201
        assert response.json()["key"] == "b2b_secret"
        assert mock_key_service.create_key.call_args.kwargs["created_by"] == "alice"

    def test_invalid_scopes_is_422(self, client: TestClient, mock_key_service: MagicMock) -> None:
        mock_key_service.create_key = AsyncMock(
            return_value=Result.fail(
                ErrorCode.INVALID_PERMISSIONS,
                "Invalid permission scopes: bogus",
                invalid_scopes=["bogus"],
            )
        )

        response = client.post(
            "/api-keys",
            json={"name": "k", "api_client_id": str(uuid.uuid4()), "scopes": ["bogus"]},
        )

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "INVALID_PERMISSIONS"
        assert body["details"]["invalid_scopes"] == ["bogus"]

    def test_client_not_found_is_404(
        self, client: TestClient, mock_key_service: MagicMock
    ) -> None:
        mock_key_service.create_key = AsyncMock(
            return_value=Result.fail(ErrorCode.CLIENT_NOT_FOUND, "API client not found")
        )

        response = client.post("/api-keys", json={"name": "k", "api_client_id": str(uuid.uuid4())})

        assert response.status_code == 404
        assert response.json()["code"] == "CLIENT_NOT_FOUND"

    def test_zero_rate_limit_rejected_by_schema(self, client: TestClient) -> None:
        response = client.post(
            "/api-keys",
            json={"name": "k", "api_client_id": str(uuid.uuid4()), "rate_limit_per_minute": 0},
        )
        assert response.status_code == 422


class TestKeyLifecycle:
    """Tests for key read, revoke, rotate and state endpoints."""

    def test_get_key(self, client: TestClient, mock_key_service: MagicMock) -> None:
        read = make_key_read()
        mock_key_service.get_key = AsyncMock(return_value=Result.ok(read))

        response = client.get(f"/api-keys/{read.id}")

        assert response.status_code == 200
        assert "key" not in response.json()
        assert "key_hash" not in response.json()

    def test_get_missing_key(self, client: TestClient, mock_key_service: MagicMock) -> None:
        mock_key_service.get_key = AsyncMock(
            return_value=Result.fail(ErrorCode.KEY_NOT_FOUND, "API key not found")
        )

        response = client.get(f"/api-keys/{uuid.uuid4()}")

        assert response.status_code == 404

    def test_revoke(self, client: TestClient, mock_key_service: MagicMock) -> None:
        key_id = uuid.uuid4()
        mock_key_service.revoke_key = AsyncMock(
            return_value=Result.ok(make_key_read(key_id, is_revoked=True, revoked_reason="leak"))
        )

        response = client.post(f"/api-keys/{key_id}/revoke", json={"reason": "leak"})

        assert response.status_code == 200
        assert response.json()["is_revoked"] is True
        mock_key_service.revoke_key.assert_awaited_once_with(
            key_id, reason="leak", revoked_by="alice"
        )

    def test_revoke_twice_is_409(self, client: TestClient, mock_key_service: MagicMock) -> None:
        mock_key_service.revoke_key = AsyncMock(
            return_value=Result.fail(ErrorCode.ALREADY_REVOKED, "API key is already revoked")
        )

        response = client.post(f"/api-keys/{uuid.uuid4()}/revoke", json={"reason": "x"})

        assert response.status_code == 409
        assert "application/problem+json" in response.headers["content-type"]

    def test_rotate(self, client: TestClient, mock_key_service: MagicMock) -> None:
        read = make_key_read(name="Integration-1 (rotated)")
        mock_key_service.rotate_key = AsyncMock(
            return_value=Result.ok(ApiKeyCreateResponse(key="b2b_new", **read.model_dump()))
        )

        response = client.post(f"/api-keys/{uuid.uuid4()}/rotate")

        assert response.status_code == 200
        assert response.json()["key"] == "b2b_new"

    @pytest.mark.parametrize(("action", "active"), [("activate", True), ("deactivate", False)])
    def test_set_active(
        self, client: TestClient, mock_key_service: MagicMock, action: str, active: bool
    ) -> None:
        key_id = uuid.uuid4()
        mock_key_service.set_key_active = AsyncMock(
            return_value=Result.ok(make_key_read(key_id, is_active=active))
        )

        response = client.post(f"/api-keys/{key_id}/{action}")

        assert response.status_code == 200
        mock_key_service.set_key_active.assert_awaited_once_with(key_id, active, updated_by="alice")

    def test_update_permissions(self, client: TestClient, mock_key_service: MagicMock) -> None:
        key_id = uuid.uuid4()
        mock_key_service.update_permissions = AsyncMock(
            return_value=Result.ok(make_key_read(key_id, scopes=["*"]))
        )

        response = client.put(f"/api-keys/{key_id}/permissions", json={"scopes": ["*"]})

        assert response.json()["scopes"] == ["*"]

    def test_list_by_client(self, client: TestClient, mock_key_service: MagicMock) -> None:
        mock_key_service.list_keys_for_client = AsyncMock(
            return_value=Result.ok([make_key_read(), make_key_read()])
        )

        response = client.get(f"/api-keys/by-client/{uuid.uuid4()}")

        assert response.status_code == 200
        assert len(response.json()) == 2


class TestIpWhitelist:
    """Tests for whitelist endpoints."""

    def test_add_entry(self, client: TestClient, mock_key_service: MagicMock) -> None:
        entry = IpWhitelistEntryRead(
            id=uuid.uuid4(), ip_address="10.0.0.0/8", created_at=datetime.now(UTC)
        )
        mock_key_service.add_ip_whitelist = AsyncMock(return_value=Result.ok(entry))

        response = client.post(
            f"/api-keys/{uuid.uuid4()}/ip-whitelist", json={"ip_address": "10.0.0.0/8"}
        )

        assert response.status_code == 201
        assert response.json()["ip_address"] == "10.0.0.0/8"

    def test_add_duplicate_is_409(self, client: TestClient, mock_key_service: MagicMock) -> None:
        mock_key_service.add_ip_whitelist = AsyncMock(
            return_value=Result.fail(ErrorCode.DUPLICATE_IP, "already whitelisted")
        )

        response = client.post(
            f"/api-keys/{uuid.uuid4()}/ip-whitelist", json={"ip_address": "10.0.0.1"}
        )

        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_IP"

    def test_remove_entry(self, client: TestClient, mock_key_service: MagicMock) -> None:
        mock_key_service.remove_ip_whitelist = AsyncMock(return_value=Result.ok(None))

        response = client.delete(f"/api-keys/{uuid.uuid4()}/ip-whitelist/{uuid.uuid4()}")

        assert response.status_code == 204


class TestScopesAndValidation:
    """Tests for the scope catalogue and diagnostic validation."""

    def test_available_scopes(self, client: TestClient) -> None:
        response = client.get("/api-keys/available-scopes")

        scopes = response.json()["scopes"]
        assert "*" in scopes
        assert "orders:*" in scopes
        assert scopes == sorted(scopes)

    def test_validate_returns_specific_code(
        self, client: TestClient, mock_validation_service: MagicMock
    ) -> None:
        mock_validation_service.validate = AsyncMock(
            return_value=ApiKeyValidationResult.failure(ErrorCode.KEY_EXPIRED, "API key has expired")
        )

        response = client.post(
            "/api-keys/validate", json={"api_key": "b2b_x", "ip_address": "203.0.113.5"}
        )

        assert response.status_code == 200
        assert response.json()["error_code"] == "KEY_EXPIRED"
        mock_validation_service.validate.assert_awaited_once_with(
            "b2b_x", "203.0.113.5", track_usage=False
        )


class TestUsageEndpoints:
    """Tests for usage logs and statistics."""

    def test_usage_logs_query_params(
        self, client: TestClient, mock_usage_service: MagicMock
    ) -> None:
        key_id = uuid.uuid4()
        mock_usage_service.get_usage_logs = AsyncMock(
            return_value=Result.ok(UsageLogPage(items=[], total=0, page=2, page_size=10))
        )

        response = client.get(
            f"/api-keys/{key_id}/usage",
            params={"from": "2024-05-01T00:00:00Z", "page": 2, "page_size": 10},
        )

        assert response.status_code == 200
        kwargs = mock_usage_service.get_usage_logs.call_args.kwargs
        assert kwargs["from_timestamp"] == datetime(2024, 5, 1, tzinfo=UTC)
        assert kwargs["page"] == 2
        assert kwargs["page_size"] == 10

    def test_usage_page_size_capped(self, client: TestClient) -> None:
        response = client.get(f"/api-keys/{uuid.uuid4()}/usage", params={"page_size": 1000})
        assert response.status_code == 422

    def test_stats(self, client: TestClient, mock_usage_service: MagicMock) -> None:
        key_id = uuid.uuid4()
        mock_usage_service.get_usage_stats = AsyncMock(
            return_value=Result.ok(UsageStats(api_key_id=key_id, total_requests=3))
        )

        response = client.get(f"/api-keys/{key_id}/stats")

        assert response.json()["total_requests"] == 3


class TestAdminAuthRequired:
    """Requests without the admin override hit the real bearer check."""

    def test_missing_token_is_401(self, app: FastAPI) -> None:
        del app.dependency_overrides[get_admin_auth]

        response = TestClient(app).get("/api-keys/available-scopes")

        assert response.status_code == 401
