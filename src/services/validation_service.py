"""API key validation pipeline."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.ip_whitelist import is_ip_allowed
from src.core.metrics import api_key_validations_total
from src.core.result import ErrorCode
from src.core.security import (
    API_KEY_PREFIX,
    KEY_PREFIX_LENGTH,
    hash_api_key,
    is_valid_api_key_format,
)
from src.models.db.base import utcnow
from src.models.domain.validation import ApiKeyValidationResult
from src.repositories.api_key_repo import ApiKeyRepository
from src.services.usage_accountant import UsageAccountant

logger = logging.getLogger(__name__)


class ValidationService:
    """Resolves a presented API key to a validated identity.

    Checks run cheapest first and stop at the first failure:
    format, existence, revoked, expired, key inactive, client inactive,
    IP whitelist. An invalid key is an ordinary outcome, so nothing here
    raises for one. Storage errors do propagate.
    """

    def __init__(
        self,
        session: AsyncSession,
        accountant: UsageAccountant | None = None,
    ) -> None:
        self.session = session
        self.repo = ApiKeyRepository(session)
        self.accountant = accountant

    async def validate(
        self,
        api_key: str | None,
        caller_ip: str,
        track_usage: bool = True,
    ) -> ApiKeyValidationResult:
        """Validate a presented API key.

        Args:
            api_key: Plaintext key as presented by the caller
            caller_ip: Caller's network address
            track_usage: Queue a last-used update on success

        Returns:
            ApiKeyValidationResult with the identity or a specific error code
        """
        if not api_key or not is_valid_api_key_format(api_key):
            return self._reject(ErrorCode.INVALID_FORMAT, "Invalid API key format", None, caller_ip)

        prefix = api_key[len(API_KEY_PREFIX) : len(API_KEY_PREFIX) + KEY_PREFIX_LENGTH]

        key = await self.repo.get_by_hash(hash_api_key(api_key))
        if key is None:
            return self._reject(ErrorCode.KEY_NOT_FOUND, "API key not found", prefix, caller_ip)

        now = utcnow()
        if key.is_revoked:
            return self._reject(ErrorCode.KEY_REVOKED, "API key has been revoked", prefix, caller_ip)
        if key.is_expired(now):
            return self._reject(ErrorCode.KEY_EXPIRED, "API key has expired", prefix, caller_ip)
        if not key.is_active:
            return self._reject(ErrorCode.KEY_INACTIVE, "API key is inactive", prefix, caller_ip)

        client = key.api_client
        if client is None or not client.is_active:
            return self._reject(ErrorCode.CLIENT_INACTIVE, "API client is inactive", prefix, caller_ip)

        if not is_ip_allowed(caller_ip, key.ip_addresses):
            return self._reject(
                ErrorCode.IP_NOT_ALLOWED,
                f"IP address {caller_ip} is not allowed for this API key",
                prefix,
                caller_ip,
            )

        api_key_validations_total.labels(outcome="success").inc()
        if track_usage and self.accountant is not None:
            self.accountant.mark_used(key.id, caller_ip, now)

        return ApiKeyValidationResult(
            valid=True,
            api_key_id=key.id,
            api_client_id=client.id,
            client_name=client.name,
            user_id=client.user_id,
            scopes=key.scopes,
            rate_limit_per_minute=key.rate_limit_per_minute,
            key_prefix=key.display_prefix,
        )

    @staticmethod
    def _reject(
        code: ErrorCode,
        message: str,
        key_prefix: str | None,
        caller_ip: str,
    ) -> ApiKeyValidationResult:
        api_key_validations_total.labels(outcome=code.lower()).inc()
        logger.warning(
            "API key validation failed",
            extra={"code": code.value, "key_prefix": key_prefix, "client_ip": caller_ip},
        )
        return ApiKeyValidationResult.failure(code, message)
