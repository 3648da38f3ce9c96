"""
Error taxonomy and classification shared by every integration.

Every failure that crosses the resilience layer is expressed as an
:class:`AppError` subclass. Typed errors keep their declared kind and
retryability; anything else is classified heuristically by :func:`classify`
from its HTTP status and message. The helpers at the bottom of the module turn
a classified error into a log severity, a user-facing message and a ranked list
of recovery suggestions. They are presentation only: the executor consults
nothing but :attr:`AppError.retryable` to decide control flow.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from logging import Logger, LoggerAdapter
from typing import Any, ClassVar, Dict, List, Mapping, Optional

import httpx


class ErrorKind(str, Enum):
    """Failure categories understood by the executor and the CLI."""

    API = "api"
    AUTH = "auth"
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    FILE_SYSTEM = "file_system"
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    PROVIDER = "provider"
    DATA_PROCESSING = "data_processing"


class Severity(str, Enum):
    """Log severity assigned to a classified error."""

    ERROR = "error"
    WARNING = "warning"
    DEBUG = "debug"

    @property
    def log_level(self) -> int:
        return {Severity.ERROR: logging.ERROR, Severity.WARNING: logging.WARNING, Severity.DEBUG: logging.DEBUG}[self]


class AppError(RuntimeError):
    """
    Base class for all application errors.

    Attributes
    ----------
    kind:
        Category of the failure.
    context:
        Structured details (service, endpoint, field, ...) used for logging.
    retryable:
        Whether repeating the operation may succeed.
    """

    kind: ClassVar[ErrorKind] = ErrorKind.NETWORK
    default_retryable: ClassVar[bool] = False

    def __init__(
        self,
        message: str,
        *,
        context: Optional[Mapping[str, Any]] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {key: value for key, value in (context or {}).items() if value is not None}
        self.retryable = self.default_retryable if retryable is None else retryable

    @property
    def code(self) -> str:
        return f"{self.kind.value.upper()}_ERROR"


class ApiError(AppError):
    """Non-2xx response from a remote API. Retryable for 5xx and 429."""

    kind = ErrorKind.API

    def __init__(
        self,
        message: str,
        status_code: int,
        service: str,
        endpoint: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        merged = {"service": service, "endpoint": endpoint, "status_code": status_code, **(context or {})}
        super().__init__(message, context=merged, retryable=status_code >= 500 or status_code == 429)
        self.status_code = status_code
        self.service = service
        self.endpoint = endpoint

    @property
    def code(self) -> str:
        return f"API_{self.status_code}"


class AuthError(AppError):
    kind = ErrorKind.AUTH

    def __init__(self, message: str, service: str, context: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message, context={"service": service, **(context or {})})
        self.service = service


class ConfigurationError(AppError):
    kind = ErrorKind.CONFIGURATION

    def __init__(
        self,
        message: str,
        section: str,
        field: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message, context={"section": section, "field": field, **(context or {})})
        self.section = section
        self.field = field


class ValidationError(AppError):
    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        field: str,
        value: Any = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message, context={"field": field, "value": value, **(context or {})})
        self.field = field
        self.value = value


class FileSystemError(AppError):
    kind = ErrorKind.FILE_SYSTEM

    def __init__(
        self,
        message: str,
        operation: str,
        path: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message, context={"operation": operation, "path": path, **(context or {})})
        self.operation = operation
        self.path = path


class NetworkError(AppError):
    kind = ErrorKind.NETWORK
    default_retryable = True

    def __init__(
        self,
        message: str,
        service: str,
        endpoint: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message, context={"service": service, "endpoint": endpoint, **(context or {})})
        self.service = service
        self.endpoint = endpoint


class CircuitOpenError(NetworkError):
    """Raised without invoking the operation while its circuit breaker is open."""

    default_retryable = False

    def __init__(self, operation_name: str) -> None:
        super().__init__(f"Circuit breaker is OPEN for {operation_name}", service=operation_name)
        self.operation_name = operation_name


class RateLimitError(AppError):
    kind = ErrorKind.RATE_LIMIT
    default_retryable = True

    def __init__(
        self,
        message: str,
        service: str,
        retry_after: Optional[float] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message, context={"service": service, "retry_after": retry_after, **(context or {})})
        self.service = service
        self.retry_after = retry_after


class OperationTimeoutError(AppError):
    """Wall-clock limit exceeded for a single call."""

    kind = ErrorKind.TIMEOUT
    default_retryable = True

    def __init__(
        self,
        message: str,
        service: str,
        timeout: Optional[float] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message, context={"service": service, "timeout": timeout, **(context or {})})
        self.service = service
        self.timeout = timeout


class ProviderError(AppError):
    kind = ErrorKind.PROVIDER
    default_retryable = True

    def __init__(
        self,
        message: str,
        provider: str,
        model: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message, context={"provider": provider, "model": model, **(context or {})})
        self.provider = provider
        self.model = model


class DataProcessingError(AppError):
    kind = ErrorKind.DATA_PROCESSING

    def __init__(
        self,
        message: str,
        operation: str,
        data_type: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message, context={"operation": operation, "data_type": data_type, **(context or {})})
        self.operation = operation
        self.data_type = data_type


# -- Classification ------------------------------------------------------------

_UNKNOWN_SERVICE = "unknown"
_STATUS_PATTERN = re.compile(r"\b([45]\d{2})\b")
_AUTH_PATTERN = re.compile(r"unauthori[sz]ed|forbidden|invalid[\s_-]*token|expired[\s_-]*token", re.IGNORECASE)
_RATE_LIMIT_PATTERN = re.compile(r"rate[\s_-]?limit|too[\s_-]?many[\s_-]?requests|quota[\s_-]?exceeded|throttl", re.IGNORECASE)
_TIMEOUT_PATTERN = re.compile(r"ETIMEDOUT|timeout|timed[\s_-]?out", re.IGNORECASE)
_NETWORK_PATTERN = re.compile(r"ECONNRESET|ENOTFOUND|ECONNREFUSED|EAI_AGAIN|network|connection (?:reset|refused|aborted)", re.IGNORECASE)
_FILE_SYSTEM_TYPES = (FileNotFoundError, PermissionError, IsADirectoryError, NotADirectoryError, FileExistsError)


def _extract_status(exc: BaseException, text: str) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    match = _STATUS_PATTERN.search(text)
    if match:
        return int(match.group(1))
    return None


def _extract_retry_after(exc: BaseException) -> Optional[float]:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    return parse_retry_after(headers.get("retry-after"))


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a ``Retry-After`` header expressed in seconds."""

    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return max(seconds, 0.0)


def classify(exc: BaseException) -> AppError:
    """
    Map an arbitrary exception onto the error taxonomy.

    Typed :class:`AppError` instances are returned unchanged. Other exceptions
    are matched, in priority order, as authentication, rate limit,
    timeout/network, client error, file system, and finally a retryable
    network error for anything unrecognised.
    """

    if isinstance(exc, AppError):
        return exc

    text = str(exc) or exc.__class__.__name__
    status = _extract_status(exc, text)
    context = {"original_type": type(exc).__name__, "status_code": status}

    if status in (401, 403) or _AUTH_PATTERN.search(text):
        return AuthError(text, _UNKNOWN_SERVICE, context=context)

    if status == 429 or _RATE_LIMIT_PATTERN.search(text):
        return RateLimitError(text, _UNKNOWN_SERVICE, retry_after=_extract_retry_after(exc), context=context)

    if isinstance(exc, (TimeoutError, httpx.TimeoutException)) or _TIMEOUT_PATTERN.search(text):
        return OperationTimeoutError(text, _UNKNOWN_SERVICE, context=context)

    if (
        (status is not None and status >= 500)
        or isinstance(exc, (ConnectionError, httpx.TransportError))
        or _NETWORK_PATTERN.search(text)
    ):
        return NetworkError(text, _UNKNOWN_SERVICE, context=context)

    if status is not None and 400 <= status < 500:
        if status in (400, 422):
            return ValidationError(text, field="request", context=context)
        return ApiError(text, status, _UNKNOWN_SERVICE, context=context)

    if isinstance(exc, _FILE_SYSTEM_TYPES):
        return FileSystemError(text, operation="io", path=getattr(exc, "filename", None), context=context)

    return NetworkError(text, _UNKNOWN_SERVICE, context=context)


def is_retryable(exc: BaseException) -> bool:
    return classify(exc).retryable


# -- Presentation --------------------------------------------------------------


def severity(exc: BaseException) -> Severity:
    """Return the log severity for ``exc``."""

    error = classify(exc)
    if error.retryable:
        return Severity.WARNING
    if error.kind is ErrorKind.AUTH:
        return Severity.ERROR
    if error.kind in (ErrorKind.VALIDATION, ErrorKind.CONFIGURATION):
        return Severity.WARNING
    return Severity.ERROR


_USER_MESSAGES: Mapping[ErrorKind, str] = {
    ErrorKind.AUTH: "Authentication failed. Please check your credentials.",
    ErrorKind.CONFIGURATION: "Configuration error. Please check your configuration file and environment variables.",
    ErrorKind.VALIDATION: "Invalid input. Please check your arguments.",
    ErrorKind.RATE_LIMIT: "Rate limit exceeded. Please try again later.",
    ErrorKind.TIMEOUT: "Operation timed out. Please try again.",
    ErrorKind.FILE_SYSTEM: "File system error. Please check file permissions and paths.",
    ErrorKind.DATA_PROCESSING: "Data processing error. Please check your data format.",
}

_RECOVERY_SUGGESTIONS: Mapping[ErrorKind, tuple[str, ...]] = {
    ErrorKind.AUTH: (
        "Check your API credentials and tokens",
        "Verify your authentication configuration",
        "Ensure your tokens are not expired",
    ),
    ErrorKind.CONFIGURATION: (
        "Check your environment variables",
        "Verify your configuration settings",
        "Ensure all required fields are provided",
    ),
    ErrorKind.VALIDATION: (
        "Check your command line arguments",
        "Verify date formats (YYYY-MM-DD)",
        "Ensure output paths are writable files",
    ),
    ErrorKind.RATE_LIMIT: (
        "Wait before retrying the operation",
        "Check your API rate limits",
        "Consider using a shorter time period",
    ),
    ErrorKind.TIMEOUT: (
        "Check your network connection",
        "Try again with a smaller date range",
        "Verify API endpoints are accessible",
    ),
    ErrorKind.FILE_SYSTEM: (
        "Check file and directory permissions",
        "Verify output paths exist and are writable",
        "Ensure sufficient disk space",
    ),
    ErrorKind.DATA_PROCESSING: (
        "Check your data format",
        "Verify API responses are valid",
        "Try with a different date range",
    ),
    ErrorKind.NETWORK: (
        "Check your network connection",
        "Verify the service base URL is reachable",
        "Try again in a few minutes",
    ),
}

_FALLBACK_SUGGESTIONS = (
    "Check the logs for more details",
    "Verify your configuration",
    "Try with a smaller date range",
)


def user_message(exc: BaseException) -> str:
    """Return a short, user-facing description of ``exc``."""

    error = classify(exc)
    message = _USER_MESSAGES.get(error.kind)
    if message:
        return message
    return error.message or "An unexpected error occurred."


def recovery_suggestions(exc: BaseException) -> List[str]:
    """Return recovery hints for ``exc``, most useful first."""

    error = classify(exc)
    return list(_RECOVERY_SUGGESTIONS.get(error.kind, _FALLBACK_SUGGESTIONS))


def error_context(exc: BaseException) -> Dict[str, Any]:
    """Flatten an exception into log-friendly fields."""

    error = classify(exc)
    payload: Dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_kind": error.kind.value,
        "error_code": error.code,
        "retryable": error.retryable,
        "error": str(exc),
    }
    for key, value in error.context.items():
        payload.setdefault(key, value)
    return payload


def log_error(
    logger: LoggerAdapter | Logger,
    exc: BaseException,
    operation: str,
    *,
    extra: Optional[Mapping[str, Any]] = None,
) -> None:
    """Log ``exc`` at its classified severity with structured context."""

    payload = error_context(exc)
    payload["operation"] = operation
    if extra:
        payload.update(extra)
    logger.log(severity(exc).log_level, f"{operation} failed: {user_message(exc)}", extra=payload)
