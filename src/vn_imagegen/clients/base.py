from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Dict, Mapping

import httpx

from ..errors import BackendFailure, TimedOut, TransportError, ValidationError, error_from_response
from ..transport import AssetTransport
from ..types import Asset, GenerationRequest, JobState, ProviderJob, Purpose

logger = logging.getLogger(__name__)


class ProviderAdapter(ABC):
    """Uniform submit/poll contract over one backend's wire protocol.

    ``submit`` either finishes the request outright (returns an Asset) or hands back
    a ProviderJob; ``poll`` advances that job and returns the Asset once it has
    succeeded, ``None`` while it is still running. ``run`` owns the polling cadence
    and the deadline, so concrete adapters only describe the wire format.
    """

    name: ClassVar[str]
    purposes: ClassVar[frozenset[Purpose]]

    def __init__(
        self,
        *,
        base_url: str,
        headers: Mapping[str, str],
        deadline_seconds: float,
        poll_interval_seconds: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
        assets: AssetTransport | None = None,
    ) -> None:
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        self.deadline_seconds = deadline_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._session = httpx.AsyncClient(
            base_url=base_url,
            headers=dict(headers),
            timeout=httpx.Timeout(120.0),
            transport=transport,
        )
        self._owns_assets = assets is None
        self._assets = assets or AssetTransport(transport=transport)

    def supports(self, purpose: Purpose) -> bool:
        return purpose in self.purposes

    @abstractmethod
    async def submit(self, request: GenerationRequest) -> Asset | ProviderJob:
        """Start the request; synchronous backends return the finished Asset."""

    async def poll(self, job: ProviderJob) -> Asset | None:
        """Check an in-flight job once. Synchronous adapters never hand out jobs."""
        raise NotImplementedError(f"{self.name} does not create pollable jobs")

    async def run(self, request: GenerationRequest, *, deadline: float) -> Asset:
        """Submit and poll until a terminal state or the absolute ``deadline``.

        ``deadline`` is expressed on the running event loop's clock.
        """
        loop = asyncio.get_running_loop()
        submitted = await self.submit(request)
        if isinstance(submitted, Asset):
            return submitted

        job = submitted
        logger.info("%s job %s submitted, polling every %.1fs", self.name, job.job_id, self.poll_interval_seconds)
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                self._time_out(job)
            await asyncio.sleep(min(self.poll_interval_seconds, remaining))
            if loop.time() >= deadline:
                self._time_out(job)

            job.polls += 1
            asset = await self.poll(job)
            if asset is not None:
                logger.info("%s job %s succeeded after %d poll(s)", self.name, job.job_id, job.polls)
                return asset

    def _time_out(self, job: ProviderJob) -> None:
        job.resolve(JobState.TIMED_OUT)
        raise TimedOut(
            f"Job {job.job_id} did not complete before the deadline ({job.polls} poll(s))",
            provider=self.name,
        )

    # ------------------------------------------------------------------ #
    # Helpers shared by the concrete adapters
    # ------------------------------------------------------------------ #
    def _require_reference(self, request: GenerationRequest) -> Asset:
        if request.reference_image is None:
            raise ValidationError(
                f"{request.purpose.value} requires a reference image", provider=self.name
            )
        return request.reference_image

    async def _post_json(self, url: str, *, context: str, **kwargs: Any) -> Dict[str, Any]:
        response = await self._send("POST", url, context=context, **kwargs)
        return self._decode_json(response, context)

    async def _get_json(self, url: str, *, context: str, **kwargs: Any) -> Dict[str, Any]:
        response = await self._send("GET", url, context=context, **kwargs)
        return self._decode_json(response, context)

    async def _send(self, method: str, url: str, *, context: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._session.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{context} request failed: {exc}", provider=self.name) from exc
        if response.is_error:
            raise error_from_response(self.name, response, context)
        return response

    async def _poll_json(self, url: str) -> Dict[str, Any] | None:
        """GET a status document; ``None`` means "no news", not failure."""
        try:
            response = await self._session.get(url)
        except httpx.HTTPError as exc:
            logger.debug("%s status poll transport error (%s); will retry", self.name, exc)
            return None
        if response.is_error:
            logger.debug("%s status poll returned %d; will retry", self.name, response.status_code)
            return None
        try:
            data = response.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    def _decode_json(self, response: httpx.Response, context: str) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise BackendFailure(f"{context} returned invalid JSON", provider=self.name) from exc
        if not isinstance(data, dict):
            raise BackendFailure(f"{context} returned unexpected JSON: {type(data).__name__}", provider=self.name)
        return data

    def _fail(self, job: ProviderJob, state: JobState, message: str) -> BackendFailure:
        job.resolve(state)
        return BackendFailure(message, provider=self.name, status=state.value)

    async def aclose(self) -> None:
        await self._session.aclose()
        if self._owns_assets:
            await self._assets.aclose()

    async def __aenter__(self) -> "ProviderAdapter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.aclose()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
