"""API key, permission and IP whitelist database models."""

import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.exceptions import DomainError
from src.core.result import ErrorCode
from src.core.scopes import normalize_scope
from src.core.security import display_prefix
from src.models.db.base import AuditMixin, Base, TimestampMixin, as_utc, utcnow

if TYPE_CHECKING:
    from src.models.db.api_client import ApiClient

REVOKED_REASON_ROTATED = "rotated"


class ApiKey(Base, TimestampMixin, AuditMixin):
    """API key credential owned by an API client.

    Only the hash and a short prefix of the secret are stored. Revocation
    is terminal: nothing resets ``revoked_at`` once it is set.
    """

    __tablename__ = "api_keys"

    api_client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("api_clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    key_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="HMAC-SHA256 of the full key - never store plaintext",
    )
    key_prefix: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="Leading characters of the random part, display only",
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Human-readable name for identification",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    rate_limit_per_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_used_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    revoked_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    revoked_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Relationships
    api_client: Mapped["ApiClient"] = relationship(
        back_populates="api_keys",
        lazy="selectin",
    )
    permissions: Mapped[list["ApiKeyPermission"]] = relationship(
        back_populates="api_key",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    ip_whitelist: Mapped[list["ApiKeyIpWhitelist"]] = relationship(
        back_populates="api_key",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("rate_limit_per_minute > 0", name="ck_api_keys_rate_limit_positive"),
        Index("uq_api_keys_key_hash", "key_hash", unique=True),
        Index("ix_api_keys_key_prefix", "key_prefix"),
    )

    @classmethod
    def create(
        cls,
        api_client_id: uuid.UUID,
        name: str,
        key_hash: str,
        key_prefix: str,
        rate_limit_per_minute: int,
        scopes: Iterable[str],
        expires_at: datetime | None = None,
        ip_whitelist: Iterable[tuple[str, str | None]] | None = None,
        created_by: str | None = None,
    ) -> "ApiKey":
        """Build a new active key with its scopes and whitelist.

        Args:
            api_client_id: Owning client
            name: Display name
            key_hash: Hash of the generated plaintext
            key_prefix: Display prefix of the generated plaintext
            rate_limit_per_minute: Advisory limit, must be positive
            scopes: Scopes already checked against the catalogue
            expires_at: Optional expiration
            ip_whitelist: (address, description) pairs
            created_by: Acting administrator

        Raises:
            DomainError: On a blank name, non-positive rate limit or
                duplicate whitelist address
        """
        now = utcnow()
        key = cls(
            id=uuid.uuid4(),
            api_client_id=api_client_id,
            name=_require_name(name),
            key_hash=key_hash,
            key_prefix=key_prefix,
            is_active=True,
            rate_limit_per_minute=_require_rate_limit(rate_limit_per_minute),
            expires_at=as_utc(expires_at),
            created_by=created_by,
            created_at=now,
            updated_at=now,
            permissions=[],
            ip_whitelist=[],
        )
        key.replace_permissions(scopes)
        for ip_address, description in ip_whitelist or ():
            key.add_ip(ip_address, description)
        return key

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def is_valid(self, now: datetime | None = None) -> bool:
        """Active, unrevoked and unexpired. Client state is checked separately."""
        return self.is_active and not self.is_revoked and not self.is_expired(now)

    @property
    def scopes(self) -> list[str]:
        return sorted(permission.scope for permission in self.permissions)

    @property
    def ip_addresses(self) -> list[str]:
        return [entry.ip_address for entry in self.ip_whitelist]

    @property
    def display_prefix(self) -> str:
        return display_prefix(self.key_prefix)

    def _ensure_mutable(self) -> None:
        if self.is_revoked:
            raise DomainError("API key has been revoked", ErrorCode.KEY_REVOKED)

    def update_details(
        self,
        name: str,
        rate_limit_per_minute: int,
        expires_at: datetime | None,
        updated_by: str | None = None,
    ) -> None:
        self._ensure_mutable()
        self.name = _require_name(name)
        self.rate_limit_per_minute = _require_rate_limit(rate_limit_per_minute)
        self.expires_at = as_utc(expires_at)
        self.updated_by = updated_by
        self.updated_at = utcnow()

    def activate(self, by: str | None = None) -> None:
        self._ensure_mutable()
        if self.is_active:
            raise DomainError("API key is already active", ErrorCode.ALREADY_ACTIVE)
        self.is_active = True
        self.updated_by = by
        self.updated_at = utcnow()

    def deactivate(self, by: str | None = None) -> None:
        self._ensure_mutable()
        if not self.is_active:
            raise DomainError("API key is already inactive", ErrorCode.ALREADY_INACTIVE)
        self.is_active = False
        self.updated_by = by
        self.updated_at = utcnow()

    def revoke(self, reason: str, by: str | None = None) -> None:
        """Revoke this API key permanently.

        Raises:
            DomainError: If the key is already revoked
        """
        if self.is_revoked:
            raise DomainError("API key is already revoked", ErrorCode.ALREADY_REVOKED)
        now = utcnow()
        self.revoked_at = now
        self.revoked_reason = reason
        self.revoked_by = by
        self.updated_by = by
        self.updated_at = now

    def replace_permissions(self, scopes: Iterable[str]) -> None:
        """Replace the scope set, keeping rows for scopes that survive."""
        self._ensure_mutable()
        wanted = {normalize_scope(scope) for scope in scopes}
        self.permissions[:] = [p for p in self.permissions if p.scope in wanted]
        existing = {p.scope for p in self.permissions}
        for scope in sorted(wanted - existing):
            self.permissions.append(ApiKeyPermission(id=uuid.uuid4(), scope=scope))

    def add_ip(self, ip_address: str, description: str | None = None) -> "ApiKeyIpWhitelist":
        """Append a whitelist entry.

        Raises:
            DomainError: If the address is already listed (case-insensitive)
        """
        self._ensure_mutable()
        ip_address = ip_address.strip()
        if any(e.ip_address.lower() == ip_address.lower() for e in self.ip_whitelist):
            raise DomainError(
                f"IP address '{ip_address}' is already whitelisted",
                ErrorCode.DUPLICATE_IP,
            )
        entry = ApiKeyIpWhitelist(
            id=uuid.uuid4(),
            ip_address=ip_address,
            description=description,
            created_at=utcnow(),
        )
        self.ip_whitelist.append(entry)
        return entry

    def find_ip_entry(self, entry_id: uuid.UUID) -> "ApiKeyIpWhitelist | None":
        return next((e for e in self.ip_whitelist if e.id == entry_id), None)

    def remove_ip_entry(self, entry_id: uuid.UUID) -> None:
        """Remove a whitelist entry by id.

        Raises:
            DomainError: If no such entry belongs to this key
        """
        self._ensure_mutable()
        entry = self.find_ip_entry(entry_id)
        if entry is None:
            raise DomainError("IP whitelist entry not found", ErrorCode.IP_ENTRY_NOT_FOUND)
        self.ip_whitelist.remove(entry)

    def record_usage(self, used_at: datetime, ip_address: str | None) -> None:
        """Move last-used forward; never backwards."""
        if self.last_used_at is None or used_at > self.last_used_at:
            self.last_used_at = used_at
            self.last_used_ip = ip_address


class ApiKeyPermission(Base):
    """A single scope granted to an API key."""

    __tablename__ = "api_key_permissions"

    api_key_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("api_keys.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    scope: Mapped[str] = mapped_column(String(100), nullable=False)

    api_key: Mapped["ApiKey"] = relationship(back_populates="permissions")

    __table_args__ = (
        UniqueConstraint("api_key_id", "scope", name="uq_api_key_permissions_key_scope"),
    )


class ApiKeyIpWhitelist(Base):
    """An address or CIDR range allowed to use an API key."""

    __tablename__ = "api_key_ip_whitelist"

    api_key_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("api_keys.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    api_key: Mapped["ApiKey"] = relationship(back_populates="ip_whitelist")

    __table_args__ = (
        UniqueConstraint("api_key_id", "ip_address", name="uq_api_key_ip_whitelist_key_ip"),
    )


def _require_name(name: str) -> str:
    if name is None or not name.strip():
        raise DomainError("name must not be blank")
    return name.strip()


def _require_rate_limit(rate_limit: int) -> int:
    if rate_limit is None or rate_limit <= 0:
        raise DomainError("rate_limit_per_minute must be greater than zero")
    return rate_limit
