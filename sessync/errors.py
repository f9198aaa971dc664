"""
Error classification for remote delivery failures.

Every failure raised by a delivery call is mapped onto one of four kinds:

    CONNECTION         the service could not be reached or the session broke
                       (DNS, refused, reset, timeouts). Retried on the patient
                       track after the client is recreated.
    TRANSIENT          the service answered but is overloaded or not ready
                       (5xx, 408, 429, quota). Retried on the normal track.
    PAYLOAD_TOO_LARGE  the request body exceeded the service limit. Never
                       retried at the same size; the chunk is split instead.
    FATAL              anything else. The chunk is rejected immediately.

Typed azure-core exceptions are checked first; untyped exceptions fall back to
message signatures.
"""

import enum
import re
from typing import Optional

from azure.core.exceptions import (
    HttpResponseError,
    ServiceRequestError,
    ServiceResponseError,
)


class ErrorKind(str, enum.Enum):
    CONNECTION = "connection"
    TRANSIENT = "transient"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    FATAL = "fatal"


class LedgerSaveError(Exception):
    """Raised when the delivery ledger cannot be written to disk."""


class ConfigError(ValueError):
    """Raised for missing or invalid configuration."""


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------

TOO_LARGE_STATUS = 413
TOO_LARGE_CODES = {"RequestBodyTooLarge"}
TRANSIENT_STATUSES = {404, 408, 429, 500, 502, 503, 504}
TRANSIENT_CODES = {"ServerBusy", "OperationTimedOut", "InternalError"}

_TOO_LARGE_MARKERS = ("request entity too large", "requestbodytoolarge")
_CONNECTION_MARKERS = (
    "broken pipe",
    "connection reset",
    "connection refused",
    "connection error",
    "unexpected end of file",
)
_TRANSIENT_MARKERS = (
    "rate limit",
    "quota",
    "timeout",
    "timed out",
    "not found",
    "deleted",
)

# Bare status codes only count as whole words, so "row 1500" is not a 500
_TOO_LARGE_CODE = re.compile(r"\b413\b")
_TRANSIENT_CODE = re.compile(r"\b(?:429|500|503)\b")


def describe(error: BaseException) -> str:
    """Render an exception and its causes as ``"outer | inner"``."""
    messages = []
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        messages.append(str(current) or type(current).__name__)
        current = current.__cause__ or current.__context__
    return " | ".join(messages)


def _status_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def _classify_message(message: str) -> ErrorKind:
    lowered = message.lower()
    if _TOO_LARGE_CODE.search(message) or any(marker in lowered for marker in _TOO_LARGE_MARKERS):
        return ErrorKind.PAYLOAD_TOO_LARGE
    if "EOF" in message or any(marker in lowered for marker in _CONNECTION_MARKERS):
        return ErrorKind.CONNECTION
    if _TRANSIENT_CODE.search(message) or any(marker in lowered for marker in _TRANSIENT_MARKERS):
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def classify(error: BaseException) -> ErrorKind:
    """Label a failure raised by a remote delivery call."""
    if isinstance(error, (ServiceRequestError, ServiceResponseError)):
        return ErrorKind.CONNECTION
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorKind.CONNECTION

    if isinstance(error, HttpResponseError):
        status = _status_of(error)
        code = getattr(error, "error_code", None)
        if status == TOO_LARGE_STATUS or code in TOO_LARGE_CODES:
            return ErrorKind.PAYLOAD_TOO_LARGE
        if status in TRANSIENT_STATUSES or code in TRANSIENT_CODES:
            return ErrorKind.TRANSIENT
        if status is not None:
            # 403 is only retryable when the service is throttling a quota
            lowered = describe(error).lower()
            if "quota" in lowered or "rate limit" in lowered:
                return ErrorKind.TRANSIENT
            return ErrorKind.FATAL

    return _classify_message(describe(error))


def is_retryable(kind: ErrorKind) -> bool:
    return kind in (ErrorKind.CONNECTION, ErrorKind.TRANSIENT)
