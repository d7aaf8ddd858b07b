"""Tests for the ApiClient and ServiceAccount models."""

from datetime import UTC, datetime, timedelta

import pytest

from src.core.exceptions import DomainError
from src.core.result import ErrorCode
from src.models.db.api_client import ApiClient, ServiceAccount
from src.models.db.api_key import ApiKey


def _attach_key(client: ApiClient, **overrides: object) -> ApiKey:
    fields: dict = {
        "api_client_id": client.id,
        "name": "Key",
        "key_hash": "b" * 64,
        "key_prefix": "ZyXw9876",
        "rate_limit_per_minute": 60,
        "scopes": [],
    }
    fields.update(overrides)
    key = ApiKey.create(**fields)
    client.api_keys.append(key)
    return key


class TestServiceAccount:
    """Tests for ServiceAccount."""

    def test_for_client_builds_unique_username(self) -> None:
        first = ServiceAccount.for_client("Acme Logistics")
        second = ServiceAccount.for_client("Acme Logistics")

        assert first.username.startswith("integration-acme-logistics-")
        assert first.username != second.username
        assert first.display_name == "Integration: Acme Logistics"

    def test_disable_is_idempotent(self) -> None:
        account = ServiceAccount.for_client("Acme")

        account.disable()
        disabled_at = account.disabled_at
        account.disable()

        assert account.is_active is False
        assert account.disabled_at == disabled_at


class TestApiClient:
    """Tests for ApiClient lifecycle."""

    def test_create_links_service_account(self) -> None:
        client = ApiClient.create(name="  Acme ", contact_email="ops@acme.test", created_by="admin")

        assert client.name == "Acme"
        assert client.is_active is True
        assert client.is_deleted is False
        assert client.service_account is not None
        assert client.user_id == client.service_account.id

    @pytest.mark.parametrize(
        ("name", "email"),
        [("", "ops@acme.test"), ("Acme", "  ")],
    )
    def test_create_requires_name_and_email(self, name: str, email: str) -> None:
        with pytest.raises(DomainError):
            ApiClient.create(name=name, contact_email=email)

    def test_deactivate_records_reason(self) -> None:
        client = ApiClient.create(name="Acme", contact_email="ops@acme.test")

        client.deactivate(reason="contract ended", by="alice")

        assert client.is_active is False
        assert client.deactivation_reason == "contract ended"
        assert client.deactivated_by == "alice"
        assert client.deactivated_at is not None

    def test_activate_clears_deactivation(self) -> None:
        client = ApiClient.create(name="Acme", contact_email="ops@acme.test")
        client.deactivate(reason="pause")

        client.activate(by="bob")

        assert client.is_active is True
        assert client.deactivated_at is None
        assert client.deactivation_reason is None

    def test_double_transitions_fail(self) -> None:
        client = ApiClient.create(name="Acme", contact_email="ops@acme.test")

        with pytest.raises(DomainError) as exc_info:
            client.activate()
        assert exc_info.value.code == ErrorCode.ALREADY_ACTIVE

        client.deactivate()
        with pytest.raises(DomainError) as exc_info:
            client.deactivate()
        assert exc_info.value.code == ErrorCode.ALREADY_INACTIVE

    def test_deactivate_leaves_keys_untouched(self) -> None:
        client = ApiClient.create(name="Acme", contact_email="ops@acme.test")
        key = _attach_key(client)

        client.deactivate()

        assert key.is_active is True

    def test_soft_delete_blocked_by_valid_key(self) -> None:
        client = ApiClient.create(name="Acme", contact_email="ops@acme.test")
        _attach_key(client)

        with pytest.raises(DomainError) as exc_info:
            client.soft_delete()
        assert exc_info.value.code == ErrorCode.HAS_ACTIVE_KEYS
        assert client.is_deleted is False

    @pytest.mark.parametrize("kill", ["revoke", "deactivate", "expire"])
    def test_soft_delete_allowed_when_keys_unusable(self, kill: str) -> None:
        client = ApiClient.create(name="Acme", contact_email="ops@acme.test")
        key = _attach_key(client)
        if kill == "revoke":
            key.revoke("done")
        elif kill == "deactivate":
            key.deactivate()
        else:
            key.expires_at = datetime.now(UTC) - timedelta(days=1)

        client.soft_delete(by="alice")

        assert client.is_deleted is True
        assert client.is_active is False
        assert client.deleted_by == "alice"
        assert client.service_account.is_active is False
