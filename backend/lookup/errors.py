"""Failure taxonomy for upstream bill lookups."""

from __future__ import annotations

from typing import Any

PREVIEW_LIMIT = 1000


def truncate_preview(text: str | None, limit: int = PREVIEW_LIMIT) -> str:
    if not text:
        return ""
    return str(text)[:limit]


class ClassifiedError(Exception):
    """Upstream failure tagged as retryable or fatal."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        preview: str | None = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.preview = truncate_preview(preview)
        self.payload = payload

    @property
    def kind(self) -> str:
        return "retryable" if self.retryable else "fatal"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status!r}, message={self.message!r})"


class RetryableError(ClassifiedError):
    """Transport errors, timeouts, HTTP 429 and 5xx responses."""

    retryable = True


class FatalError(ClassifiedError):
    """Client errors and malformed success bodies; never retried."""


class BatchValidationError(ValueError):
    """Raised when a batch request is rejected before any upstream call."""


__all__ = [
    "PREVIEW_LIMIT",
    "BatchValidationError",
    "ClassifiedError",
    "FatalError",
    "RetryableError",
    "truncate_preview",
]
