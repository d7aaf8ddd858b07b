"""FastAPI dependencies for API v1."""

import hmac
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Annotated

from fastapi import Depends, Header, Request

from src.core.config import Settings, get_settings
from src.core.database import DbSession
from src.core.exceptions import ForbiddenError, UnauthorizedError
from src.core.result import ErrorCode
from src.core.scopes import scope_grants
from src.services.usage_accountant import UsageAccountant
from src.services.usage_counter import UsageCounter
from src.services.validation_service import ValidationService

AppSettings = Annotated[Settings, Depends(get_settings)]


@dataclass
class AuthContext:
    """Authentication context containing validated API key info."""

    api_key_id: uuid.UUID
    api_client_id: uuid.UUID
    client_name: str
    user_id: uuid.UUID | None = None
    scopes: list[str] = field(default_factory=list)
    rate_limit_per_minute: int = 0
    client_ip: str = ""

    def has_scope(self, scope: str) -> bool:
        return scope_grants(self.scopes, scope)


@dataclass
class AdminContext:
    """Authenticated administrator."""

    actor: str


def get_client_ip(request: Request, settings: AppSettings) -> str:
    """Resolve the caller's address.

    Uses X-Forwarded-For (first hop), then X-Real-IP, then the socket peer
    when forwarded headers are trusted.
    """
    if settings.trust_forwarded_headers:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            first = forwarded_for.split(",")[0].strip()
            if first:
                return first
        real_ip = request.headers.get("X-Real-IP")
        if real_ip and real_ip.strip():
            return real_ip.strip()
    return request.client.host if request.client else "unknown"


ClientIp = Annotated[str, Depends(get_client_ip)]


def get_usage_accountant(request: Request) -> UsageAccountant | None:
    """Usage accountant started in the application lifespan, if any."""
    return getattr(request.app.state, "usage_accountant", None)


def get_usage_counter(request: Request) -> UsageCounter | None:
    """Redis usage counter created in the application lifespan, if any."""
    return getattr(request.app.state, "usage_counter", None)


Accountant = Annotated[UsageAccountant | None, Depends(get_usage_accountant)]
UsageCounterDep = Annotated[UsageCounter | None, Depends(get_usage_counter)]


def get_validation_service(session: DbSession, accountant: Accountant) -> ValidationService:
    """Get validation service instance."""
    return ValidationService(session, accountant=accountant)


async def get_api_key_auth(
    request: Request,
    settings: AppSettings,
    client_ip: ClientIp,
    service: Annotated[ValidationService, Depends(get_validation_service)],
) -> AuthContext:
    """Validate API key and return authentication context.

    Args:
        request: Incoming request; the key header name comes from settings
        settings: Application settings
        client_ip: Resolved caller address
        service: Validation pipeline

    Returns:
        AuthContext with validated API key information

    Raises:
        UnauthorizedError: If the key is missing, unknown or not usable
        ForbiddenError: If the caller's IP is not whitelisted for the key
    """
    presented = request.headers.get(settings.api_key_header)
    if not presented:
        raise UnauthorizedError(f"API key required. Provide {settings.api_key_header} header.")

    result = await service.validate(presented, client_ip)
    if not result.valid:
        if not settings.expose_validation_errors:
            result = result.public()
        if result.error_code == ErrorCode.IP_NOT_ALLOWED:
            raise ForbiddenError(result.error_message or "IP address not allowed", code=result.error_code)
        raise UnauthorizedError(result.error_message or "Invalid API key", code=result.error_code)

    request.state.api_key_id = result.api_key_id
    request.state.client_ip = client_ip

    return AuthContext(
        api_key_id=result.api_key_id,  # type: ignore[arg-type]
        api_client_id=result.api_client_id,  # type: ignore[arg-type]
        client_name=result.client_name or "",
        user_id=result.user_id,
        scopes=result.scopes,
        rate_limit_per_minute=result.rate_limit_per_minute or 0,
        client_ip=client_ip,
    )


# Type alias for dependency injection
Auth = Annotated[AuthContext, Depends(get_api_key_auth)]


def require_scope(scope: str) -> Callable[[AuthContext], Awaitable[AuthContext]]:
    """Build a dependency that requires a scope, honouring wildcards.

    Args:
        scope: Required scope, e.g. ``orders:write``

    Returns:
        Dependency returning the AuthContext when the scope is granted
    """

    async def dependency(auth: Auth) -> AuthContext:
        if not auth.has_scope(scope):
            raise ForbiddenError(f"API key lacks required scope '{scope}'")
        return auth

    return dependency


async def get_admin_auth(
    settings: AppSettings,
    authorization: Annotated[str | None, Header()] = None,
    x_admin_user: Annotated[str | None, Header(alias="X-Admin-User")] = None,
) -> AdminContext:
    """Authenticate the administrative surface with a bearer token.

    Raises:
        UnauthorizedError: If the token is missing or wrong
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise UnauthorizedError("Admin bearer token required", code=None)

    token = authorization[len("bearer ") :].strip()
    expected = settings.admin_api_token.get_secret_value()
    if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise UnauthorizedError("Invalid admin token", code=None)

    return AdminContext(actor=(x_admin_user or "admin").strip() or "admin")


Admin = Annotated[AdminContext, Depends(get_admin_auth)]
