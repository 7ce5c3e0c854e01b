from __future__ import annotations

import logging
from typing import Sequence

from ..clients.base import ProviderAdapter
from ..errors import AllProvidersFailed, GenerationError, NotConfigured, ValidationError
from ..types import GenerationRequest, GenerationResult
from .retry import RetryController

logger = logging.getLogger(__name__)


class FallbackOrchestrator:
    """Try adapters strictly in the given order; the first success wins.

    Adapters are never run concurrently. ``generate`` always returns a
    GenerationResult and never raises a taxonomy error.
    """

    def __init__(self, retry: RetryController | None = None) -> None:
        self._retry = retry or RetryController()

    async def generate(
        self,
        request: GenerationRequest,
        adapters: Sequence[ProviderAdapter],
    ) -> GenerationResult:
        if not adapters:
            logger.error("No provider configured for %s", request.purpose.value)
            return GenerationResult.failed(
                NotConfigured(f"No provider configured for purpose '{request.purpose.value}'")
            )

        if request.purpose.is_edit and request.reference_image is None:
            return GenerationResult.failed(
                ValidationError(f"{request.purpose.value} requires a reference image")
            )

        errors: dict[str, GenerationError] = {}
        for position, adapter in enumerate(adapters, start=1):
            if not adapter.supports(request.purpose):
                errors[adapter.name] = ValidationError(
                    f"does not support {request.purpose.value}", provider=adapter.name
                )
                logger.info("Skipping %s: purpose %s unsupported", adapter.name, request.purpose.value)
                continue

            logger.info(
                "Generating %s with %s (%d/%d)", request.purpose.value, adapter.name, position, len(adapters)
            )
            try:
                asset = await self._retry.invoke(adapter, request)
            except GenerationError as exc:
                logger.warning("%s failed with %s: %s", adapter.name, exc.kind, exc.message)
                errors[adapter.name] = exc
                continue

            logger.info("%s produced %r", adapter.name, asset)
            return GenerationResult.success(asset, adapter.name)

        return GenerationResult.failed(AllProvidersFailed(errors))
