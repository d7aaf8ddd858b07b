"""API client and service account database models."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.exceptions import DomainError
from src.core.result import ErrorCode
from src.models.db.base import AuditMixin, Base, SoftDeleteMixin, TimestampMixin, utcnow

if TYPE_CHECKING:
    from src.models.db.api_key import ApiKey


class ServiceAccount(Base, TimestampMixin):
    """Administrative identity linked to an API client for audit attribution."""

    __tablename__ = "service_accounts"

    username: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    disabled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    @classmethod
    def for_client(cls, client_name: str) -> "ServiceAccount":
        """Build the service account that represents a new client."""
        slug = "-".join(client_name.lower().split())
        return cls(
            id=uuid.uuid4(),
            username=f"integration-{slug}-{uuid.uuid4().hex[:8]}",
            display_name=f"Integration: {client_name}",
            is_active=True,
        )

    def disable(self) -> None:
        """Disable the account. Idempotent."""
        if self.is_active:
            self.is_active = False
            self.disabled_at = utcnow()


class ApiClient(Base, TimestampMixin, AuditMixin, SoftDeleteMixin):
    """An integration partner that owns API keys.

    State changes go through the methods below rather than attribute
    assignment so that the deletion and activation rules hold.
    """

    __tablename__ = "api_clients"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_email: Mapped[str] = mapped_column(String(320), nullable=False)
    contact_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("service_accounts.id", ondelete="SET NULL"),
        nullable=True,
    )
    deactivated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    deactivated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    deactivation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Relationships
    service_account: Mapped["ServiceAccount | None"] = relationship(lazy="selectin")
    api_keys: Mapped[list["ApiKey"]] = relationship(
        back_populates="api_client",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ApiKey.created_at",
    )

    @classmethod
    def create(
        cls,
        name: str,
        contact_email: str,
        description: str | None = None,
        contact_phone: str | None = None,
        created_by: str | None = None,
    ) -> "ApiClient":
        """Create a new active client with a linked service account.

        Raises:
            DomainError: If name or contact email is blank
        """
        name = _require(name, "name")
        contact_email = _require(contact_email, "contact_email")
        now = utcnow()
        account = ServiceAccount.for_client(name)
        return cls(
            id=uuid.uuid4(),
            name=name,
            description=description,
            contact_email=contact_email,
            contact_phone=contact_phone,
            is_active=True,
            is_deleted=False,
            service_account=account,
            user_id=account.id,
            created_by=created_by,
            created_at=now,
            updated_at=now,
            api_keys=[],
        )

    def update(
        self,
        name: str,
        contact_email: str,
        description: str | None = None,
        contact_phone: str | None = None,
        updated_by: str | None = None,
    ) -> None:
        """Replace the client's descriptive attributes."""
        self.name = _require(name, "name")
        self.contact_email = _require(contact_email, "contact_email")
        self.description = description
        self.contact_phone = contact_phone
        self.updated_by = updated_by
        self.updated_at = utcnow()

    def activate(self, by: str | None = None) -> None:
        """Reactivate the client; its keys become usable again."""
        if self.is_active:
            raise DomainError("API client is already active", ErrorCode.ALREADY_ACTIVE)
        self.is_active = True
        self.deactivated_at = None
        self.deactivated_by = None
        self.deactivation_reason = None
        self.updated_by = by
        self.updated_at = utcnow()

    def deactivate(self, reason: str | None = None, by: str | None = None) -> None:
        """Deactivate the client.

        Keys are left untouched; they fail validation while the client is
        inactive.
        """
        if not self.is_active:
            raise DomainError("API client is already inactive", ErrorCode.ALREADY_INACTIVE)
        now = utcnow()
        self.is_active = False
        self.deactivated_at = now
        self.deactivated_by = by
        self.deactivation_reason = reason
        self.updated_by = by
        self.updated_at = now

    def valid_keys(self, now: datetime | None = None) -> list["ApiKey"]:
        """Keys that are active, unrevoked and unexpired."""
        return [key for key in self.api_keys if key.is_valid(now)]

    def has_valid_keys(self, now: datetime | None = None) -> bool:
        return bool(self.valid_keys(now))

    def soft_delete(self, by: str | None = None) -> None:
        """Soft-delete the client and disable its service account.

        Raises:
            DomainError: If any owned key is still valid
        """
        if self.has_valid_keys():
            raise DomainError(
                "Cannot delete API client with active API keys",
                ErrorCode.HAS_ACTIVE_KEYS,
            )
        now = utcnow()
        self.is_deleted = True
        self.deleted_at = now
        self.deleted_by = by
        self.is_active = False
        if self.service_account is not None:
            self.service_account.disable()


def _require(value: str, field: str) -> str:
    if value is None or not value.strip():
        raise DomainError(f"{field} must not be blank")
    return value.strip()


# Case-insensitive uniqueness among non-deleted clients
Index(
    "uq_api_clients_name_lower",
    func.lower(ApiClient.name),
    unique=True,
    postgresql_where=ApiClient.is_deleted.is_(False),
)
