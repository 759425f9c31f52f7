"""Error types and retry classification for pipeline-xray."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

import httpx


class ErrorKind(str, Enum):
    """Whether a failed reasoning job may be retried."""

    TRANSIENT = "transient"
    FATAL = "fatal"


class XRayError(Exception):
    """Base class for pipeline-xray errors."""

    kind: Optional[ErrorKind] = None


class InvalidExecutionError(XRayError):
    """Raised when an execution is not fit to be persisted."""

    kind = ErrorKind.FATAL


class ExecutionNotFoundError(XRayError):
    """Raised when an execution id is unknown to the repository."""

    kind = ErrorKind.FATAL

    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Execution {execution_id} not found")
        self.execution_id = execution_id


class StepNotFoundError(XRayError):
    """Raised when a step name is missing from an execution."""

    kind = ErrorKind.FATAL

    def __init__(self, execution_id: str, step_name: str) -> None:
        super().__init__(f"Step {step_name} not found in execution {execution_id}")
        self.execution_id = execution_id
        self.step_name = step_name


class DuplicateJobError(XRayError):
    """Raised when a second live job is created for the same step."""

    def __init__(self, execution_id: str, step_name: str) -> None:
        super().__init__(
            f"A reasoning job for {execution_id}/{step_name} is already pending"
        )
        self.execution_id = execution_id
        self.step_name = step_name


class TransientError(XRayError):
    """A failure expected to clear up on retry (network, rate limits)."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class FatalJobError(XRayError):
    """A failure that retrying cannot fix."""

    kind = ErrorKind.FATAL


class CollectorError(XRayError):
    """Raised when the collector server rejects an execution."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


TRANSIENT_SIGNATURES = (
    "ECONNRESET",
    "ETIMEDOUT",
    "ENOTFOUND",
    "rate_limit_exceeded",
    "service_unavailable",
    "timeout",
    "429",
    "503",
    "502",
)

TRANSIENT_STATUS_CODES = frozenset({429, 502, 503})


def classify_error(error: BaseException) -> ErrorKind:
    """Decide whether ``error`` is worth retrying.

    Errors that carry their own ``kind`` are trusted. Well-known network
    exception types are transient. Anything else is matched against the
    transient signatures on its message and ``code`` attribute.
    """
    kind = getattr(error, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind

    if isinstance(error, (asyncio.TimeoutError, ConnectionError, httpx.TransportError)):
        return ErrorKind.TRANSIENT
    if isinstance(error, httpx.HTTPStatusError):
        if error.response.status_code in TRANSIENT_STATUS_CODES:
            return ErrorKind.TRANSIENT
        return ErrorKind.FATAL

    message = str(error)
    code = getattr(error, "code", None)
    for signature in TRANSIENT_SIGNATURES:
        if signature in message or (code is not None and str(code) == signature):
            return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def is_retryable(error: BaseException) -> bool:
    return classify_error(error) is ErrorKind.TRANSIENT
