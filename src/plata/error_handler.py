"""
Centralized error types and handling for request execution.
"""
import logging
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


RETRY_CODES = frozenset([
    'SignatureDoesNotMatch',
    'ThrottlingException',
    'ProvisionedThroughputExceededException',
    'InternalFailure',
    'InternalServerError',
    'ServiceUnavailableException',
    'UnrecognizedClientException',
])

THROTTLE_CODES = frozenset([
    'ThrottlingException',
    'ProvisionedThroughputExceededException',
])

UNKNOWN_ERROR_CODE = 'UnknownError'


class ErrorType(Enum):
    """Standard error types for consistent categorization."""
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    DECODE_ERROR = "DECODE_ERROR"
    SIGNING_ERROR = "SIGNING_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    CREDENTIALS_ERROR = "CREDENTIALS_ERROR"
    REQUEST_STATE_ERROR = "REQUEST_STATE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class PlataError(Exception):
    """Base exception class for all request execution errors."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL_ERROR,
        original_error: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_type = error_type
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)


def normalize_code(code: Optional[str]) -> str:
    """
    Normalize a provider error code by upper-casing its first letter.

    Args:
        code: Raw error code as returned by the service

    Returns:
        Normalized code, ``UnknownError`` when the code is missing
    """
    if not code:
        return UNKNOWN_ERROR_CODE
    code = str(code)
    return code[:1].upper() + code[1:]


class ClientError(PlataError):
    """Error reported by the service in a response body."""

    def __init__(
        self,
        code: Optional[str],
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.code = normalize_code(code)
        self.status_code = status_code
        super().__init__(
            message if message is not None else self.code,
            ErrorType.CLIENT_ERROR,
            context=context
        )

    def can_retry(self) -> bool:
        return self.code in RETRY_CODES

    def throttled(self) -> bool:
        return self.code in THROTTLE_CODES

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class RetriesExhaustedError(ClientError):
    """A retryable error that was still failing when the retry ceiling was hit."""

    def __init__(self, error: ClientError, attempts: int):
        super().__init__(error.code, error.message, error.status_code, dict(error.context))
        self.attempts = attempts
        self.original_error = error


class TransportError(PlataError):
    """Connection-level failure. Never retried automatically."""

    def __init__(self, message: str, original_error: Optional[Exception] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorType.TRANSPORT_ERROR, original_error, context)


class ResponseDecodeError(PlataError):
    """A successful response whose body could not be decoded."""

    def __init__(self, message: str, original_error: Optional[Exception] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorType.DECODE_ERROR, original_error, context)


class SigningError(PlataError):
    """Exception raised for request signing errors."""

    def __init__(self, message: str, original_error: Optional[Exception] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorType.SIGNING_ERROR, original_error, context)


class ConfigurationError(PlataError):
    """Exception raised for invalid client configuration."""

    def __init__(self, message: str, original_error: Optional[Exception] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorType.CONFIGURATION_ERROR, original_error, context)


class CredentialsNotFoundError(PlataError):
    """Raised when AWS credentials cannot be resolved."""

    def __init__(self, message: str, original_error: Optional[Exception] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorType.CREDENTIALS_ERROR, original_error, context)


class RequestStateError(PlataError):
    """Raised when a request is executed more than once."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorType.REQUEST_STATE_ERROR, context=context)


def handle_error(
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    log_level: int = logging.ERROR,
    log: Optional[logging.Logger] = None
) -> PlataError:
    """
    Log an error with structured context and return it as a PlataError.

    Args:
        error: The original exception
        context: Additional context information
        log_level: Logging level for the error
        log: Logger to write to (defaults to this module's logger)

    Returns:
        The error itself when it already is a PlataError, otherwise a wrapping PlataError
    """
    log = log or logger

    if isinstance(error, PlataError):
        if context:
            error.context.update(context)
        extra_fields = {
            "error_type": error.error_type.value,
            "context": error.context,
            "original_error": str(error.original_error) if error.original_error else None
        }
        if isinstance(error, ClientError):
            extra_fields["code"] = error.code
            extra_fields["status_code"] = error.status_code
        log.log(log_level, f"[{error.error_type.value}] {error.message}", extra={
            "extra_fields": extra_fields
        })
        return error

    error_context = dict(context or {})
    error_context.update({
        "exception_type": type(error).__name__,
        "traceback": traceback.format_exc()
    })

    wrapped = PlataError(
        message=str(error) or type(error).__name__,
        error_type=ErrorType.INTERNAL_ERROR,
        original_error=error,
        context=error_context
    )

    log.log(log_level, f"[{wrapped.error_type.value}] {error}", extra={
        "extra_fields": {
            "error_type": wrapped.error_type.value,
            "context": error_context,
            "original_error": str(error)
        }
    })

    return wrapped
