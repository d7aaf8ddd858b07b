"""Database models package."""

from src.models.db.api_client import ApiClient, ServiceAccount
from src.models.db.api_key import ApiKey, ApiKeyIpWhitelist, ApiKeyPermission
from src.models.db.base import Base, TimestampMixin
from src.models.db.usage_log import ApiKeyUsageLog

__all__ = [
    "ApiClient",
    "ApiKey",
    "ApiKeyIpWhitelist",
    "ApiKeyPermission",
    "ApiKeyUsageLog",
    "Base",
    "ServiceAccount",
    "TimestampMixin",
]
