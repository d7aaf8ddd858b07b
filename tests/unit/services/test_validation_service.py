"""Tests for the API key validation pipeline."""

from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest

from src.core.result import ErrorCode
from src.core.security import generate_api_key
from src.models.domain.api_client import ApiClientCreate
from src.models.domain.api_key import ApiKeyCreate, IpWhitelistEntryCreate
from src.services.api_client_service import ApiClientService
from src.services.api_key_service import ApiKeyService
from src.services.validation_service import ValidationService

CALLER_IP = "203.0.113.5"


@pytest.fixture
def accountant() -> MagicMock:
    return MagicMock()


@pytest.fixture
def validator(mock_session: MagicMock, key_repo: Any, accountant: MagicMock) -> ValidationService:
    """Create ValidationService backed by the in-memory key repository."""
    svc = ValidationService(mock_session, accountant=accountant)
    svc.repo = key_repo
    return svc


class TestValidationPipeline:
    """Tests for each step of validate()."""

    async def test_valid_key(
        self,
        validator: ValidationService,
        make_client: Any,
        make_key: Any,
        accountant: MagicMock,
    ) -> None:
        client = make_client()
        plaintext, key = make_key(client, scopes=["orders:read", "products:read"])

        result = await validator.validate(plaintext, CALLER_IP)

        assert result.valid is True
        assert result.api_key_id == key.id
        assert result.api_client_id == client.id
        assert result.client_name == "Acme"
        assert result.user_id == client.user_id
        assert result.scopes == ["orders:read", "products:read"]
        assert result.rate_limit_per_minute == 60
        assert result.key_prefix == key.display_prefix
        assert result.error_code is None
        accountant.mark_used.assert_called_once()
        args = accountant.mark_used.call_args.args
        assert args[0] == key.id
        assert args[1] == CALLER_IP

    async def test_track_usage_disabled(
        self,
        validator: ValidationService,
        make_client: Any,
        make_key: Any,
        accountant: MagicMock,
    ) -> None:
        plaintext, _ = make_key(make_client())

        result = await validator.validate(plaintext, CALLER_IP, track_usage=False)

        assert result.valid is True
        accountant.mark_used.assert_not_called()

    @pytest.mark.parametrize(
        "presented",
        [None, "", "sk_live_abcdef", "b2b_short", "b2b_" + "a" * 40 + "!"],
    )
    async def test_invalid_format(
        self, validator: ValidationService, presented: str | None
    ) -> None:
        result = await validator.validate(presented, CALLER_IP)

        assert result.valid is False
        assert result.error_code == ErrorCode.INVALID_FORMAT

    async def test_unknown_key(self, validator: ValidationService) -> None:
        result = await validator.validate(generate_api_key().plaintext, CALLER_IP)
        assert result.error_code == ErrorCode.KEY_NOT_FOUND

    async def test_revoked_checked_before_expired_and_inactive(
        self, validator: ValidationService, make_client: Any, make_key: Any
    ) -> None:
        client = make_client()
        plaintext, key = make_key(client, expires_at=datetime.now(UTC) - timedelta(days=1))
        key.deactivate()
        key.revoke("compromised")
        client.deactivate()

        result = await validator.validate(plaintext, CALLER_IP)

        assert result.error_code == ErrorCode.KEY_REVOKED

    async def test_expired_checked_before_inactive(
        self, validator: ValidationService, make_client: Any, make_key: Any
    ) -> None:
        plaintext, key = make_key(
            make_client(), expires_at=datetime.now(UTC) - timedelta(seconds=1)
        )
        key.deactivate()

        result = await validator.validate(plaintext, CALLER_IP)

        assert result.error_code == ErrorCode.KEY_EXPIRED

    async def test_inactive_key(
        self, validator: ValidationService, make_client: Any, make_key: Any
    ) -> None:
        plaintext, key = make_key(make_client())
        key.deactivate()

        result = await validator.validate(plaintext, CALLER_IP)

        assert result.error_code == ErrorCode.KEY_INACTIVE

    async def test_inactive_client(
        self,
        validator: ValidationService,
        make_client: Any,
        make_key: Any,
        accountant: MagicMock,
    ) -> None:
        client = make_client()
        plaintext, _ = make_key(client, ip_whitelist=[("198.51.100.0/24", None)])
        client.deactivate()

        result = await validator.validate(plaintext, CALLER_IP)

        assert result.error_code == ErrorCode.CLIENT_INACTIVE
        accountant.mark_used.assert_not_called()

    async def test_ip_not_allowed(
        self, validator: ValidationService, make_client: Any, make_key: Any
    ) -> None:
        plaintext, _ = make_key(make_client(), ip_whitelist=[("198.51.100.0/24", None)])

        result = await validator.validate(plaintext, CALLER_IP)

        assert result.error_code == ErrorCode.IP_NOT_ALLOWED
        assert CALLER_IP in (result.error_message or "")

    async def test_ip_in_cidr_range(
        self, validator: ValidationService, make_client: Any, make_key: Any
    ) -> None:
        plaintext, _ = make_key(make_client(), ip_whitelist=[("203.0.113.0/24", None)])

        result = await validator.validate(plaintext, CALLER_IP)

        assert result.valid is True

    async def test_works_without_accountant(
        self, mock_session: MagicMock, key_repo: Any, make_client: Any, make_key: Any
    ) -> None:
        validator = ValidationService(mock_session)
        validator.repo = key_repo
        plaintext, _ = make_key(make_client())

        result = await validator.validate(plaintext, CALLER_IP)

        assert result.valid is True

    async def test_public_result_hides_key_state(
        self, validator: ValidationService, make_client: Any, make_key: Any
    ) -> None:
        plaintext, key = make_key(make_client())
        key.revoke("gone")

        result = (await validator.validate(plaintext, CALLER_IP)).public()

        assert result.error_code == ErrorCode.UNAUTHORIZED
        assert result.error_message == "Invalid or missing API key"

    async def test_public_result_keeps_ip_failure(
        self, validator: ValidationService, make_client: Any, make_key: Any
    ) -> None:
        plaintext, _ = make_key(make_client(), ip_whitelist=[("10.0.0.1", None)])

        result = (await validator.validate(plaintext, CALLER_IP)).public()

        assert result.error_code == ErrorCode.IP_NOT_ALLOWED


class TestEndToEnd:
    """Lifecycle operations followed by validation of the issued plaintext."""

    @pytest.fixture
    def clients(self, mock_session: MagicMock, client_repo: Any) -> ApiClientService:
        svc = ApiClientService(mock_session)
        svc.repo = client_repo
        return svc

    @pytest.fixture
    def keys(self, mock_session: MagicMock, client_repo: Any, key_repo: Any) -> ApiKeyService:
        svc = ApiKeyService(mock_session)
        svc.repo = key_repo
        svc.client_repo = client_repo
        return svc

    async def _issue(
        self,
        clients: ApiClientService,
        keys: ApiKeyService,
        expires_at: datetime | None = None,
    ) -> tuple[str, Any]:
        client = (
            await clients.create_client(ApiClientCreate(name="Acme", contact_email="ops@acme.test"))
        ).unwrap()
        created = (
            await keys.create_key(
                ApiKeyCreate(
                    name="Integration-1",
                    api_client_id=client.id,
                    scopes=["products:read"],
                    rate_limit_per_minute=60,
                    expires_at=expires_at,
                )
            )
        ).unwrap()
        return created.key, created

    async def test_issue_and_validate(
        self, clients: ApiClientService, keys: ApiKeyService, validator: ValidationService
    ) -> None:
        plaintext, _ = await self._issue(clients, keys)

        result = await validator.validate(plaintext, CALLER_IP)

        assert result.valid is True
        assert result.scopes == ["products:read"]
        assert result.rate_limit_per_minute == 60

    async def test_whitelist_excludes_caller(
        self, clients: ApiClientService, keys: ApiKeyService, validator: ValidationService
    ) -> None:
        plaintext, created = await self._issue(clients, keys)
        await keys.add_ip_whitelist(created.id, IpWhitelistEntryCreate(ip_address="198.51.100.0/24"))

        result = await validator.validate(plaintext, CALLER_IP)

        assert result.valid is False
        assert result.error_code == ErrorCode.IP_NOT_ALLOWED

    async def test_revoked_key_rejected(
        self, clients: ApiClientService, keys: ApiKeyService, validator: ValidationService
    ) -> None:
        plaintext, created = await self._issue(clients, keys)
        await keys.revoke_key(created.id, "compromised")

        result = await validator.validate(plaintext, CALLER_IP)

        assert result.error_code == ErrorCode.KEY_REVOKED

    async def test_key_created_already_expired(
        self, clients: ApiClientService, keys: ApiKeyService, validator: ValidationService
    ) -> None:
        plaintext, _ = await self._issue(
            clients, keys, expires_at=datetime.now(UTC) - timedelta(seconds=1)
        )

        result = await validator.validate(plaintext, CALLER_IP)

        assert result.error_code == ErrorCode.KEY_EXPIRED

    async def test_rotation(
        self, clients: ApiClientService, keys: ApiKeyService, validator: ValidationService
    ) -> None:
        old_plaintext, created = await self._issue(clients, keys)
        rotated = (await keys.rotate_key(created.id)).unwrap()

        old_result = await validator.validate(old_plaintext, CALLER_IP)
        new_result = await validator.validate(rotated.key, CALLER_IP)

        assert old_result.error_code == ErrorCode.KEY_REVOKED
        assert new_result.valid is True
        assert new_result.scopes == created.scopes

    async def test_client_deactivation_is_reversible(
        self, clients: ApiClientService, keys: ApiKeyService, validator: ValidationService
    ) -> None:
        plaintext, created = await self._issue(clients, keys)

        (await clients.deactivate_client(created.api_client_id, reason="billing hold")).unwrap()
        suspended = await validator.validate(plaintext, CALLER_IP)

        (await clients.activate_client(created.api_client_id)).unwrap()
        restored = await validator.validate(plaintext, CALLER_IP)

        assert suspended.valid is False
        assert suspended.error_code == ErrorCode.CLIENT_INACTIVE
        assert restored.valid is True
        assert restored.api_key_id == created.id
        assert restored.scopes == ["products:read"]
        assert restored.rate_limit_per_minute == 60

    async def test_deleted_client_keys_not_found(
        self, clients: ApiClientService, keys: ApiKeyService, validator: ValidationService
    ) -> None:
        plaintext, created = await self._issue(clients, keys)
        await keys.revoke_key(created.id, "offboarding")
        await clients.delete_client(created.api_client_id)

        result = await validator.validate(plaintext, CALLER_IP)

        assert result.error_code == ErrorCode.KEY_NOT_FOUND
