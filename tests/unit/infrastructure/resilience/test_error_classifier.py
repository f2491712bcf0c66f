import asyncio

import httpx
import openai
import pytest

from devrelbot.domain.errors import FatalError, TransientError
from devrelbot.infrastructure.resilience.error_classifier import (
    ErrorClass,
    classify_error,
    is_rate_limit_signal,
    retry_after_ms_of,
)

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def openai_status_error(cls, status, headers=None):
    response = httpx.Response(status, request=REQUEST, headers=headers or {})
    return cls("provider error", response=response, body=None)


class HttpError(Exception):
    def __init__(self, status_code):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


@pytest.mark.parametrize("error", [
    TransientError("flaky"),
    asyncio.TimeoutError(),
    TimeoutError(),
    ConnectionResetError(),
    HttpError(429),
    HttpError(500),
    HttpError(503),
])
def test_transient_errors(error):
    assert classify_error(error) == ErrorClass.TRANSIENT


@pytest.mark.parametrize("error", [
    FatalError("bad input"),
    HttpError(400),
    HttpError(401),
    HttpError(404),
    ValueError("validation"),
    KeyError("unknown type"),
])
def test_fatal_errors(error):
    assert classify_error(error) == ErrorClass.FATAL


def test_marker_wins_over_status_code():
    assert classify_error(FatalError("quota", status_code=503)) == ErrorClass.FATAL
    assert classify_error(TransientError("busy", status_code=400)) == ErrorClass.TRANSIENT


def test_openai_errors():
    assert classify_error(openai_status_error(openai.RateLimitError, 429)) == ErrorClass.TRANSIENT
    assert classify_error(openai_status_error(openai.InternalServerError, 500)) == ErrorClass.TRANSIENT
    assert classify_error(openai.APITimeoutError(request=REQUEST)) == ErrorClass.TRANSIENT
    assert classify_error(openai_status_error(openai.AuthenticationError, 401)) == ErrorClass.FATAL
    assert classify_error(openai_status_error(openai.BadRequestError, 400)) == ErrorClass.FATAL


def test_rate_limit_signal():
    assert is_rate_limit_signal(openai_status_error(openai.RateLimitError, 429))
    assert is_rate_limit_signal(HttpError(429))
    assert not is_rate_limit_signal(HttpError(503))


def test_retry_after_hint():
    assert retry_after_ms_of(TransientError("slow down", retry_after_ms=1500)) == 1500
    error = openai_status_error(openai.RateLimitError, 429, headers={"retry-after": "2"})
    assert retry_after_ms_of(error) == 2000
    assert retry_after_ms_of(HttpError(429)) is None
