"""Uniform success/error envelopes and classification of backend failures.

Every public store operation returns an :class:`Envelope`.  Failures raised
anywhere below the store (lookups, validation, the sheets backend) are turned
into the error shape here instead of escaping to the caller.
"""

from __future__ import annotations

import functools
import logging
import traceback
from datetime import datetime, timezone
from enum import Enum
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional

import requests
from gspread.exceptions import APIError
from pydantic import BaseModel, ConfigDict
from pydantic_core import to_jsonable_python

logger = logging.getLogger(__name__)


class ErrorType(str, Enum):
    VALIDATION = "VALIDATION_ERROR"
    AUTHENTICATION = "AUTHENTICATION_ERROR"
    PERMISSION = "PERMISSION_ERROR"
    NOT_FOUND = "NOT_FOUND_ERROR"
    NETWORK = "NETWORK_ERROR"
    GOOGLE_API = "GOOGLE_API_ERROR"
    INTERNAL = "INTERNAL_ERROR"


class GoogleAPIRateLimitError(RuntimeError):
    """Client-side refusal: the request budget for Google API calls is spent."""

    def __init__(self, message: str, code: str = "GOOGLE_RATE_LIMIT_EXCEEDED"):
        super().__init__(message)
        self.code = code
        self.message = message


class SheetStoreError(RuntimeError):
    """Base error raised inside the store; carries its envelope classification."""

    error_type = ErrorType.INTERNAL
    status = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})


class RecordValidationError(SheetStoreError):
    """Caller input is missing or cannot be written."""

    error_type = ErrorType.VALIDATION
    status = HTTPStatus.BAD_REQUEST


class RecordNotFoundError(SheetStoreError):
    """No record or header matched the request."""

    error_type = ErrorType.NOT_FOUND
    status = HTTPStatus.NOT_FOUND


class ApiError(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: str
    message: str
    details: Any = None
    code: int


class Envelope(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    status: int
    message: str
    data: Any = None
    error: Optional[ApiError] = None
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()

    def to_json_dict(self) -> Dict[str, Any]:
        """JSON-safe dict; values of unknown types are rendered as text."""
        return to_jsonable_python(self.model_dump(), serialize_unknown=True)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def success(
    data: Any = None,
    status: int = HTTPStatus.OK,
    message: str = "Success",
) -> Envelope:
    return Envelope(
        success=True,
        status=int(status),
        message=message,
        data=data,
        error=None,
        timestamp=_now(),
    )


def failure(
    message: str = "An error occurred",
    status: int = HTTPStatus.INTERNAL_SERVER_ERROR,
    error_type: ErrorType = ErrorType.INTERNAL,
    details: Any = None,
) -> Envelope:
    return Envelope(
        success=False,
        status=int(status),
        message="Error",
        data=None,
        error=ApiError(
            type=ErrorType(error_type).value,
            message=message,
            details=details,
            code=int(status),
        ),
        timestamp=_now(),
    )


def backend_error_payload(error: BaseException) -> Optional[Dict[str, Any]]:
    """Structured ``{code, message, status}`` reported by the sheets backend, if any."""
    if not isinstance(error, APIError):
        return None

    payload = getattr(error, "error", None)
    if isinstance(payload, Mapping) and payload.get("code") is not None:
        return dict(payload)

    response = getattr(error, "response", None)
    try:
        body = response.json() if response is not None else None
    except ValueError:
        body = None
    if isinstance(body, Mapping) and isinstance(body.get("error"), Mapping):
        return dict(body["error"])

    code = getattr(error, "code", None) or getattr(response, "status_code", None)
    if code is None:
        return None
    return {"code": code, "message": str(error)}


def _is_network_error(error: BaseException) -> bool:
    return isinstance(error, (requests.exceptions.RequestException, ConnectionError, TimeoutError))


def map_backend_error(
    error: BaseException,
    operation: str = "Operation",
    context: Optional[Mapping[str, Any]] = None,
) -> Envelope:
    """Classify a backend failure by the backend's own status code."""
    backend_error = backend_error_payload(error)
    if backend_error is not None:
        code = int(backend_error.get("code") or 0)
        backend_message = backend_error.get("message", "")
        if code == 400:
            status, error_type = HTTPStatus.BAD_REQUEST, ErrorType.VALIDATION
            message = f"Invalid request: {backend_message}"
        elif code == 401:
            status, error_type = HTTPStatus.UNAUTHORIZED, ErrorType.AUTHENTICATION
            message = "Authentication required. Please login again."
        elif code == 403:
            status, error_type = HTTPStatus.FORBIDDEN, ErrorType.PERMISSION
            message = "Permission denied. Check sheet permissions."
        elif code == 404:
            status, error_type = HTTPStatus.NOT_FOUND, ErrorType.NOT_FOUND
            message = "Sheet or range not found."
        elif code == 429:
            status, error_type = HTTPStatus.SERVICE_UNAVAILABLE, ErrorType.GOOGLE_API
            message = "Rate limit exceeded. Please try again later."
        else:
            status, error_type = HTTPStatus.INTERNAL_SERVER_ERROR, ErrorType.GOOGLE_API
            message = f"Google API error: {backend_message}"
        original: Any = backend_error
    elif isinstance(error, GoogleAPIRateLimitError):
        status, error_type = HTTPStatus.SERVICE_UNAVAILABLE, ErrorType.GOOGLE_API
        message = "Rate limit exceeded. Please try again later."
        original = {"code": error.code, "message": error.message}
    else:
        status, error_type = HTTPStatus.INTERNAL_SERVER_ERROR, ErrorType.NETWORK
        message = f"Network error during {operation}"
        original = {"exception": type(error).__name__, "message": str(error)}

    return failure(
        message,
        status,
        error_type,
        {"operation": operation, "original_error": original, **dict(context or {})},
    )


def error_envelope(
    error: BaseException,
    operation: str,
    context: Optional[Mapping[str, Any]] = None,
) -> Envelope:
    """Envelope for any exception caught at the store boundary."""
    context = dict(context or {})
    if isinstance(error, SheetStoreError):
        return failure(
            error.message,
            error.status,
            error.error_type,
            {"operation": operation, **error.details, **context},
        )
    if (
        backend_error_payload(error) is not None
        or isinstance(error, GoogleAPIRateLimitError)
        or _is_network_error(error)
    ):
        return map_backend_error(error, operation, context)
    return failure(
        str(error) or f"Error in {operation}",
        HTTPStatus.INTERNAL_SERVER_ERROR,
        ErrorType.INTERNAL,
        {
            "operation": operation,
            "exception": type(error).__name__,
            "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
            **context,
        },
    )


def validate_required_fields(data: Mapping[str, Any], required_fields: Iterable[str]) -> Optional[Envelope]:
    """VALIDATION failure listing the missing fields, or ``None`` when all are present."""
    missing = [field for field in required_fields if data.get(field) in (None, "")]
    if missing:
        return failure(
            f"Missing required fields: {', '.join(missing)}",
            HTTPStatus.BAD_REQUEST,
            ErrorType.VALIDATION,
            {"missingFields": missing},
        )
    return None


def with_error_handling(operation: str) -> Callable[[Callable[..., Awaitable[Envelope]]], Callable[..., Awaitable[Envelope]]]:
    """Wrap an async store method so every exception becomes a failure envelope.

    The wrapped method's owner supplies context through an ``error_context()``
    method (sheet identifiers and similar).
    """

    def decorator(func: Callable[..., Awaitable[Envelope]]) -> Callable[..., Awaitable[Envelope]]:
        @functools.wraps(func)
        async def wrapper(self, *args: Any, **kwargs: Any) -> Envelope:
            try:
                return await func(self, *args, **kwargs)
            except SheetStoreError as exc:
                logger.warning("%s failed: %s", operation, exc.message)
                return error_envelope(exc, operation, self.error_context())
            except Exception as exc:  # noqa: BLE001
                logger.error("Error in %s: %s", operation, exc, exc_info=True)
                return error_envelope(exc, operation, self.error_context())

        return wrapper

    return decorator
