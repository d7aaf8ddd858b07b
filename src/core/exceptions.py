"""Custom exceptions and error handling for RFC 7807 Problem Details."""

import logging
from typing import Any, TypeVar

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError

from src.core.result import ErrorCode, Failure, Result

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AppError(Exception):
    """Base application error with RFC 7807 Problem Details support."""

    def __init__(
        self,
        title: str,
        detail: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_type: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.title = title
        self.detail = detail
        self.status_code = status_code
        self.error_type = error_type or f"about:blank#{status_code}"
        self.instance = instance
        self.extra = extra or {}
        self.headers = headers
        super().__init__(detail)

    def to_problem_detail(self) -> dict[str, Any]:
        """Convert to RFC 7807 Problem Details format."""
        problem = {
            "type": self.error_type,
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
        }
        if self.instance:
            problem["instance"] = self.instance
        problem.update(self.extra)
        return problem


def _code_extra(code: ErrorCode | None, details: dict[str, Any] | None) -> dict[str, Any]:
    extra: dict[str, Any] = {}
    if code is not None:
        extra["code"] = code.value
    if details:
        extra["details"] = details
    return extra


class NotFoundError(AppError):
    """Resource not found error."""

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        detail: str | None = None,
        code: ErrorCode | None = None,
    ) -> None:
        if detail is None:
            detail = f"{resource} not found"
            if resource_id:
                detail = f"{resource} with id '{resource_id}' not found"
        super().__init__(
            title="Not Found",
            detail=detail,
            status_code=status.HTTP_404_NOT_FOUND,
            error_type="about:blank#not-found",
            extra=_code_extra(code, None),
        )


class ValidationError(AppError):
    """Validation error."""

    def __init__(
        self,
        detail: str,
        errors: list[dict[str, Any]] | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        extra: dict[str, Any] = {"errors": errors or []}
        extra.update(_code_extra(code, details))
        super().__init__(
            title="Validation Error",
            detail=detail,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_type="about:blank#validation-error",
            extra=extra,
        )


class UnauthorizedError(AppError):
    """Authentication required error."""

    def __init__(
        self,
        detail: str = "Authentication required",
        code: ErrorCode | None = ErrorCode.UNAUTHORIZED,
    ) -> None:
        super().__init__(
            title="Unauthorized",
            detail=detail,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_type="about:blank#unauthorized",
            extra=_code_extra(code, None),
            headers={"WWW-Authenticate": "ApiKey"},
        )


class ForbiddenError(AppError):
    """Permission denied error."""

    def __init__(
        self,
        detail: str = "Permission denied",
        code: ErrorCode | None = None,
    ) -> None:
        super().__init__(
            title="Forbidden",
            detail=detail,
            status_code=status.HTTP_403_FORBIDDEN,
            error_type="about:blank#forbidden",
            extra=_code_extra(code, None),
        )


class ConflictError(AppError):
    """Resource conflict error."""

    def __init__(
        self,
        detail: str,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            title="Conflict",
            detail=detail,
            status_code=status.HTTP_409_CONFLICT,
            error_type="about:blank#conflict",
            extra=_code_extra(code, details),
        )


class ServiceUnavailableError(AppError):
    """Infrastructure failure; the caller should retry with backoff."""

    def __init__(
        self,
        detail: str = "Service temporarily unavailable",
        retry_after: int = 5,
    ) -> None:
        super().__init__(
            title="Service Unavailable",
            detail=detail,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_type="about:blank#service-unavailable",
            extra={"retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


class DomainError(Exception):
    """An aggregate invariant was violated by a caller.

    Services check preconditions and return typed failures first, so
    reaching this usually means a programming error.
    """

    def __init__(self, message: str, code: ErrorCode | None = None) -> None:
        self.message = message
        self.code = code
        super().__init__(message)


_NOT_FOUND_CODES = {
    ErrorCode.CLIENT_NOT_FOUND: "API client",
    ErrorCode.KEY_NOT_FOUND: "API key",
    ErrorCode.IP_ENTRY_NOT_FOUND: "IP whitelist entry",
}

_VALIDATION_CODES = {
    ErrorCode.INVALID_FORMAT,
    ErrorCode.INVALID_PERMISSIONS,
    ErrorCode.INVALID_IP_ADDRESS,
    ErrorCode.INVALID_RATE_LIMIT,
}


def error_from_failure(failure: Failure) -> AppError:
    """Map a typed failure to its HTTP problem representation.

    Args:
        failure: The failure returned by a service

    Returns:
        The AppError to raise from an endpoint
    """
    if failure.code in _NOT_FOUND_CODES:
        return NotFoundError(
            _NOT_FOUND_CODES[failure.code],
            detail=failure.message,
            code=failure.code,
        )
    if failure.code in _VALIDATION_CODES:
        return ValidationError(
            failure.message,
            code=failure.code,
            details=failure.details,
        )
    if failure.code == ErrorCode.UNAUTHORIZED:
        return UnauthorizedError(failure.message)
    if failure.code == ErrorCode.IP_NOT_ALLOWED:
        return ForbiddenError(failure.message, code=failure.code)
    return ConflictError(failure.message, code=failure.code, details=failure.details)


def unwrap_result(result: Result[T]) -> T:
    """Return a result's value or raise the matching AppError."""
    if result.failure is not None:
        raise error_from_failure(result.failure)
    return result.value  # type: ignore[return-value]


def _problem_response(error: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_problem_detail(),
        media_type="application/problem+json",
        headers=error.headers,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:  # noqa: ARG001
    """Handle AppError exceptions."""
    return _problem_response(exc)


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:  # noqa: ARG001
    """Handle aggregate invariant violations."""
    return _problem_response(ValidationError(exc.message, code=exc.code))


async def infrastructure_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle storage outages and lifecycle deadlines."""
    logger.error(
        "Infrastructure failure",
        extra={"path": request.url.path, "error_type": type(exc).__name__},
    )
    return _problem_response(ServiceUnavailableError())


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # noqa: ARG001
    """Handle unexpected exceptions."""
    error = AppError(
        title="Internal Server Error",
        detail="An unexpected error occurred",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    return _problem_response(error)


def setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers with the FastAPI application."""
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DomainError, domain_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(OperationalError, infrastructure_error_handler)
    app.add_exception_handler(InterfaceError, infrastructure_error_handler)
    app.add_exception_handler(TimeoutError, infrastructure_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
