"""Classifies failures of outbound calls as transient or fatal.

Transient: timeouts, connection errors, 5xx responses and rate-limit
signals (429). Fatal: validation and auth errors, other 4xx, and any
exception type not recognised here.
"""

import asyncio
import enum
import logging
from typing import Optional

import openai

from devrelbot.domain.errors import FatalError, TransientError

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429

_TRANSIENT_OPENAI_ERRORS = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
)

_FATAL_OPENAI_ERRORS = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.BadRequestError,
    openai.NotFoundError,
    openai.UnprocessableEntityError,
    openai.APIResponseValidationError,
)


class ErrorClass(str, enum.Enum):
    TRANSIENT = "transient"
    FATAL = "fatal"


def status_code_of(error: BaseException) -> Optional[int]:
    """Best-effort HTTP status extraction (openai, httpx-style and our markers)."""
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_rate_limit_signal(error: BaseException) -> bool:
    if isinstance(error, openai.RateLimitError):
        return True
    return status_code_of(error) == RATE_LIMIT_STATUS


def retry_after_ms_of(error: BaseException) -> Optional[float]:
    """Server-provided retry hint, from our marker or a Retry-After header."""
    hint = getattr(error, "retry_after_ms", None)
    if isinstance(hint, (int, float)) and hint > 0:
        return float(hint)
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    try:
        value = headers.get("retry-after")
    except AttributeError:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds * 1000 if seconds > 0 else None


def classify_error(error: BaseException) -> ErrorClass:
    """Returns TRANSIENT if retrying `error` may help, FATAL otherwise."""
    if isinstance(error, TransientError):
        return ErrorClass.TRANSIENT
    if isinstance(error, FatalError):
        return ErrorClass.FATAL
    if isinstance(error, _TRANSIENT_OPENAI_ERRORS):
        return ErrorClass.TRANSIENT
    if isinstance(error, _FATAL_OPENAI_ERRORS):
        return ErrorClass.FATAL
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorClass.TRANSIENT

    status = status_code_of(error)
    if status is not None:
        if status == RATE_LIMIT_STATUS or status >= 500:
            return ErrorClass.TRANSIENT
        return ErrorClass.FATAL

    logger.debug(f"Unrecognised error type {type(error).__name__}; treating as fatal")
    return ErrorClass.FATAL
