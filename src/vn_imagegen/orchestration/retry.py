from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from ..clients.base import ProviderAdapter
from ..config import RetryPolicy
from ..errors import BackendFailure, GenerationError, RateLimited, TimedOut, TransportError
from ..types import Asset, GenerationRequest

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RetryController:
    """Runs one adapter invocation with rate-limit retries and a hard deadline.

    Only ``RateLimited`` is retried; every other failure is surfaced on the first
    occurrence. Whatever the adapter raises leaves here as a GenerationError.
    """

    def __init__(self, policy: RetryPolicy | None = None, *, sleep: Sleep = asyncio.sleep) -> None:
        self._policy = policy or RetryPolicy()
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def invoke(
        self,
        adapter: ProviderAdapter,
        request: GenerationRequest,
        *,
        deadline_seconds: float | None = None,
    ) -> Asset:
        loop = asyncio.get_running_loop()
        budget = deadline_seconds if deadline_seconds is not None else adapter.deadline_seconds
        deadline = loop.time() + budget

        base = self._policy.backoff_base_seconds
        backoff = wait_incrementing(start=base, increment=base)

        def wait(retry_state: RetryCallState) -> float:
            # Never sleep past the deadline; the next attempt then times out at once.
            return min(backoff(retry_state), max(0.0, deadline - loop.time()))

        def log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "%s rate limited (attempt %d/%d), retrying in %.1fs: %s",
                adapter.name,
                retry_state.attempt_number,
                self._policy.max_attempts,
                retry_state.next_action.sleep if retry_state.next_action else 0.0,
                exc,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._policy.max_attempts),
            wait=wait,
            retry=retry_if_exception_type(RateLimited),
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=True,
        )

        asset: Asset | None = None
        try:
            async for attempt in retrying:
                with attempt:
                    asset = await self._attempt(adapter, request, deadline)
        except RateLimited as exc:
            attempts = self._policy.max_attempts
            raise RateLimited(
                f"Still rate limited after {attempts} attempt(s): {exc.message}",
                provider=adapter.name,
                attempts=attempts,
                retry_after=exc.retry_after,
            ) from exc

        if asset is None:  # pragma: no cover - tenacity either yields a result or raises
            raise BackendFailure("Adapter returned no asset", provider=adapter.name)
        return asset

    async def _attempt(self, adapter: ProviderAdapter, request: GenerationRequest, deadline: float) -> Asset:
        loop = asyncio.get_running_loop()
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise TimedOut("Deadline elapsed before the attempt started", provider=adapter.name)

        try:
            return await asyncio.wait_for(adapter.run(request, deadline=deadline), timeout=remaining)
        except asyncio.TimeoutError as exc:
            raise TimedOut(f"No result within {remaining:.1f}s", provider=adapter.name) from exc
        except GenerationError as exc:
            if exc.provider is None:
                exc.provider = adapter.name
            raise
        except httpx.HTTPError as exc:
            raise TransportError(f"Network failure: {exc}", provider=adapter.name) from exc
        except Exception as exc:
            logger.exception("%s raised an unexpected error", adapter.name)
            raise BackendFailure(f"Unexpected adapter error: {exc}", provider=adapter.name) from exc
