from __future__ import annotations

import asyncio
import logging

import httpx

from .clients import StabilityMattingClient
from .config import AppConfig
from .errors import GenerationError
from .matting import remove_background as _remove_background
from .orchestration import FallbackOrchestrator, ProviderRegistry, RetryController
from .types import Asset, GenerationRequest, GenerationResult

logger = logging.getLogger(__name__)


class ImageGenerationPipeline:
    """Generate through the configured fallback chain, then matte sprite outputs.

    Matting goes to the hosted remover first when one is configured; any failure
    there falls through to the local edge-based engine.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        registry: ProviderRegistry | None = None,
        orchestrator: FallbackOrchestrator | None = None,
        remote_matting: StabilityMattingClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._registry = registry or ProviderRegistry.from_config(config, transport=transport)
        self._orchestrator = orchestrator or FallbackOrchestrator(RetryController(config.retry))
        if remote_matting is None and config.stability is not None:
            remote_matting = StabilityMattingClient(config.stability, transport=transport)
        self._remote_matting = remote_matting

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    async def generate(
        self,
        request: GenerationRequest,
        *,
        remove_background: bool | None = None,
    ) -> GenerationResult:
        """Run the request; ``remove_background`` overrides the per-purpose matting default."""
        chain = self._registry.chain_for(request.purpose)
        logger.info(
            "Provider chain for %s: %s",
            request.purpose.value,
            " -> ".join(adapter.name for adapter in chain) or "empty",
        )
        result = await self._orchestrator.generate(request, chain)
        if not result.ok or result.asset is None:
            return result

        should_matte = remove_background
        if should_matte is None:
            should_matte = request.purpose in self._config.matting.sprite_purposes
        if not should_matte:
            return result

        matted = await self.remove_background(result.asset)
        return GenerationResult.success(matted, result.provider_used or "")

    async def remove_background(self, asset: Asset) -> Asset:
        if self._remote_matting is not None:
            try:
                return await self._remote_matting.remove_background(asset)
            except GenerationError as exc:
                logger.warning("Hosted background removal failed, using local matting: %s", exc)
        # CPU-bound pixel passes run off the event loop.
        return await asyncio.to_thread(_remove_background, asset, self._config.matting)

    async def aclose(self) -> None:
        await self._registry.aclose()
        if self._remote_matting is not None:
            await self._remote_matting.aclose()

    async def __aenter__(self) -> "ImageGenerationPipeline":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.aclose()
