"""
Typed failures surfaced by adapters, the retry controller and the orchestrator.
"""
from __future__ import annotations

from typing import Mapping

import httpx


class GenerationError(Exception):
    """Base class for every failure a caller can receive in a GenerationResult."""

    kind = "generation_error"

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider

    def __str__(self) -> str:
        if self.provider:
            return f"[{self.provider}] {self.message}"
        return self.message


class ValidationError(GenerationError):
    """The request is malformed or was rejected as such; never retried."""

    kind = "validation_error"


class RateLimited(GenerationError):
    """The backend asked us to slow down."""

    kind = "rate_limited"

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        attempts: int = 1,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.attempts = attempts
        self.retry_after = retry_after


class BackendFailure(GenerationError):
    """The backend reported failure or cancellation, or answered with an unusable payload."""

    kind = "backend_failure"

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status: str | int | None = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.status = status


class TimedOut(GenerationError):
    """The local deadline elapsed before the backend reached a terminal state."""

    kind = "timed_out"


class NotConfigured(GenerationError):
    """No adapter is available for the requested purpose."""

    kind = "not_configured"


class TransportError(GenerationError):
    """A result reference could not be fetched or decoded."""

    kind = "transport_error"


class AllProvidersFailed(GenerationError):
    """Every adapter in the fallback chain failed; keeps the last error of each."""

    kind = "all_providers_failed"

    def __init__(self, errors: Mapping[str, GenerationError]) -> None:
        self.errors = dict(errors)
        summary = "; ".join(f"{name}: {exc.kind} ({exc.message})" for name, exc in self.errors.items())
        super().__init__(f"All {len(self.errors)} provider(s) failed: {summary}")


_VALIDATION_STATUSES = {400, 404, 413, 415, 422}
_AUTH_STATUSES = {401, 402, 403}


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def error_from_response(provider: str, response: httpx.Response, context: str) -> GenerationError:
    """Map a non-2xx backend response onto the error taxonomy."""
    status = response.status_code
    try:
        detail = response.text[:500]
    except httpx.ResponseNotRead:
        detail = ""
    message = f"{context} failed ({status})"
    if detail:
        message = f"{message}: {detail}"

    if status == 429:
        return RateLimited(message, provider=provider, retry_after=_retry_after(response))
    if status in _VALIDATION_STATUSES:
        return ValidationError(message, provider=provider)
    if status in _AUTH_STATUSES:
        return BackendFailure(f"{message} (check credentials)", provider=provider, status=status)
    return BackendFailure(message, provider=provider, status=status)
