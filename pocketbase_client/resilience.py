"""
Retry and error classification helpers for code that calls the client.

The request pipeline never retries on its own; callers wrap calls in
``with_retry`` or ``safe_call`` to get a closed set of ``AppError`` kinds.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any, Callable, Generic, TypeVar

import requests

from pocketbase_client.config import ClientSettings
from pocketbase_client.http import ClientResponseError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AppError(Exception):
    """Base class for classified client failures."""

    code = "UNKNOWN_001"

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    @property
    def technical_message(self) -> str:
        text = f"[{self.code}] {self.message}"
        if self.cause is not None:
            text += f" | Cause: {self.cause}"
        return text


class AuthError(AppError):
    pass


class InvalidCredentialsError(AuthError):
    code = "AUTH_001"

    def __init__(self, cause: BaseException | None = None):
        super().__init__("Invalid email or password.", cause)


class SessionExpiredError(AuthError):
    code = "AUTH_002"

    def __init__(self, cause: BaseException | None = None):
        super().__init__("Your session has expired. Please log in again.", cause)


class UnauthorizedError(AuthError):
    code = "AUTH_003"

    def __init__(self, cause: BaseException | None = None):
        super().__init__("You are not authorized to perform this action.", cause)


class ValidationError(AppError):
    code = "VALIDATION_001"

    def __init__(
        self,
        message: str = "Validation failed.",
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message, cause)
        self.details = details or {}


class NetworkError(AppError):
    pass


class NoConnectionError(NetworkError):
    code = "NETWORK_001"

    def __init__(self, cause: BaseException | None = None):
        super().__init__("No internet connection available. Please check your network.", cause)


class NetworkTimeoutError(NetworkError):
    code = "NETWORK_002"

    def __init__(self, cause: BaseException | None = None):
        super().__init__("Request timed out. Please try again.", cause)


class ServerError(NetworkError):
    code = "NETWORK_003"

    def __init__(self, status_code: int, message: str | None = None, cause: BaseException | None = None):
        super().__init__(message or f"Server error occurred (HTTP {status_code})", cause)
        self.status_code = status_code


class ServiceUnavailableError(NetworkError):
    code = "NETWORK_004"

    def __init__(self, cause: BaseException | None = None):
        super().__init__("Service is temporarily unavailable. Please try again later.", cause)


class BusinessError(AppError):
    pass


class ResourceNotFoundError(BusinessError):
    code = "BUSINESS_001"

    def __init__(self, resource: str = "Resource", resource_id: str | None = None, cause: BaseException | None = None):
        suffix = f" with id {resource_id}" if resource_id else ""
        super().__init__(f"{resource}{suffix} not found.", cause)
        self.resource = resource
        self.resource_id = resource_id


class ParsingError(AppError):
    code = "PARSING_001"

    def __init__(self, message: str = "Failed to parse data.", cause: BaseException | None = None):
        super().__init__(message, cause)


class UnknownError(AppError):
    code = "UNKNOWN_001"

    def __init__(self, message: str = "An unexpected error occurred.", cause: BaseException | None = None):
        super().__init__(message, cause)


@dataclass(frozen=True)
class Result(Generic[T]):
    value: T | None = None
    error: AppError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def to_app_error(exc: BaseException) -> AppError:
    if isinstance(exc, AppError):
        return exc

    if isinstance(exc, ClientResponseError):
        status = exc.status_code
        if status == 400:
            return ValidationError(exc.message or "Validation failed.", details=exc.data, cause=exc)
        if status == 401:
            return SessionExpiredError(exc)
        if status == 403:
            return UnauthorizedError(exc)
        if status == 404:
            return ResourceNotFoundError(cause=exc)
        if status == 408:
            return NetworkTimeoutError(exc)
        if status == 429:
            return ServerError(429, "Too many requests. Please try again later.", exc)
        if 500 <= status <= 599:
            return ServiceUnavailableError(exc)
        return ServerError(status, cause=exc)

    if isinstance(exc, requests.Timeout):
        return NetworkTimeoutError(exc)
    if isinstance(exc, requests.ConnectionError):
        return NoConnectionError(exc)
    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return ParsingError(cause=exc)

    return UnknownError(str(exc) or "An unexpected error occurred.", exc)


def safe_call(block: Callable[[], T]) -> Result[T]:
    try:
        return Result(value=block())
    except Exception as exc:
        return Result(error=to_app_error(exc))


def with_retry(
    block: Callable[[], T],
    max_attempts: int = 3,
    initial_delay_seconds: float = 0.5,
    factor: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``block`` until it succeeds, sleeping between failed attempts.

    Auth and validation failures are raised immediately. Every other failure
    is retried up to ``max_attempts`` times and the last one is raised as an
    ``AppError``.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    delay = initial_delay_seconds
    last_error: AppError | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            return block()
        except Exception as exc:
            last_error = to_app_error(exc)
            if isinstance(last_error, (AuthError, ValidationError)):
                raise last_error from (None if last_error is exc else exc)

            if attempt == max_attempts:
                logger.error("Request failed after %s attempts: %s", max_attempts, last_error.technical_message)
                raise last_error from (None if last_error is exc else exc)

            logger.warning(
                "Request failed (attempt %s/%s). Retrying in %.2fs: %s",
                attempt,
                max_attempts,
                delay,
                last_error.technical_message,
            )
            sleep(delay)
            delay *= factor

    raise last_error or UnknownError()


def with_settings_retry(settings: ClientSettings, block: Callable[[], T]) -> T:
    return with_retry(
        block,
        max_attempts=settings.retry_attempts + 1,
        initial_delay_seconds=settings.retry_delay_ms / 1000.0,
    )
