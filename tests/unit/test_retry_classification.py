"""Retry classification and backoff ladder tests."""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from pipeline_xray.errors import (
    ErrorKind,
    ExecutionNotFoundError,
    FatalJobError,
    StepNotFoundError,
    TransientError,
    classify_error,
    is_retryable,
)
from pipeline_xray.utils.retry import next_retry_at, retry_delay


class CodedError(Exception):
    def __init__(self, message, code):
        super().__init__(message)
        self.code = code


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://llm.example/v1/chat")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError("bad status", request=request, response=response)


@pytest.mark.parametrize(
    "error",
    [
        TransientError("provider overloaded"),
        asyncio.TimeoutError(),
        ConnectionResetError("reset by peer"),
        httpx.ConnectError("dns"),
        _status_error(429),
        _status_error(503),
        RuntimeError("rate_limit_exceeded for model"),
        RuntimeError("upstream answered 502"),
        CodedError("socket closed", "ECONNRESET"),
        CodedError("lookup failed", "ENOTFOUND"),
    ],
)
def test_transient_errors(error):
    assert classify_error(error) is ErrorKind.TRANSIENT
    assert is_retryable(error)


@pytest.mark.parametrize(
    "error",
    [
        ExecutionNotFoundError("exec-1"),
        StepNotFoundError("exec-1", "rank"),
        FatalJobError("bad request that mentions timeout"),
        _status_error(400),
        ValueError("invalid literal"),
    ],
)
def test_fatal_errors(error):
    assert classify_error(error) is ErrorKind.FATAL


def test_retry_delay_ladder_clamps():
    ladder = [1.0, 2.0, 4.0, 8.0]
    assert [retry_delay(n, ladder) for n in range(1, 7)] == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]
    assert retry_delay(0, ladder) == 1.0
    assert retry_delay(3, []) == 0.0


def test_next_retry_at_offsets_from_now():
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert next_retry_at(2, [1, 2, 4], now=now) == now + timedelta(seconds=2)
