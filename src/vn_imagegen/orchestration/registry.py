from __future__ import annotations

import logging
from typing import Iterable, Sequence

import httpx

from ..clients import (
    DashScopeClient,
    FalQueueClient,
    GeminiImageClient,
    GrokImageClient,
    NovelAIClient,
    ProviderAdapter,
    ReplicateClient,
    RunPodComfyClient,
)
from ..config import AppConfig
from ..transport import AssetTransport
from ..types import Purpose

logger = logging.getLogger(__name__)

# Quality/cost preference among configured backends. Edits go to the
# unfiltered SDXL worker first, portraits to Gemini, other text-to-image to Replicate.
DEFAULT_PRIORITY: tuple[str, ...] = ("runpod", "fal", "dashscope", "grok", "gemini", "replicate", "novelai")


class ProviderRegistry:
    """Holds the adapters built once at startup and hands out ordered chains per purpose."""

    def __init__(
        self,
        adapters: Iterable[ProviderAdapter],
        *,
        order: Sequence[str] = (),
        assets: AssetTransport | None = None,
    ) -> None:
        self._adapters = {adapter.name: adapter for adapter in adapters}
        self._assets = assets
        preferred = [name for name in order if name in self._adapters]
        rest = [name for name in DEFAULT_PRIORITY if name in self._adapters and name not in preferred]
        extra = [name for name in self._adapters if name not in preferred and name not in rest]
        self._order = preferred + rest + extra

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ProviderRegistry":
        assets = AssetTransport(transport=transport)
        adapters: list[ProviderAdapter] = []
        if config.runpod is not None:
            adapters.append(RunPodComfyClient(config.runpod, transport=transport, assets=assets))
        if config.fal is not None:
            adapters.append(FalQueueClient(config.fal, transport=transport, assets=assets))
        if config.dashscope is not None:
            adapters.append(DashScopeClient(config.dashscope, transport=transport, assets=assets))
        if config.grok is not None:
            adapters.append(GrokImageClient(config.grok, transport=transport, assets=assets))
        if config.gemini is not None:
            adapters.append(GeminiImageClient(config.gemini, transport=transport, assets=assets))
        if config.replicate is not None:
            adapters.append(ReplicateClient(config.replicate, transport=transport, assets=assets))
        if config.novelai is not None:
            adapters.append(NovelAIClient(config.novelai, transport=transport, assets=assets))

        unknown = [name for name in config.provider_order if name not in DEFAULT_PRIORITY]
        if unknown:
            logger.warning("Ignoring unknown provider names in provider_order: %s", ", ".join(unknown))
        registry = cls(adapters, order=config.provider_order, assets=assets)
        logger.info("Configured providers: %s", ", ".join(registry.names) or "none")
        return registry

    @property
    def names(self) -> list[str]:
        return list(self._order)

    def chain_for(self, purpose: Purpose) -> list[ProviderAdapter]:
        return [self._adapters[name] for name in self._order if self._adapters[name].supports(purpose)]

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()
        if self._assets is not None:
            await self._assets.aclose()

    async def __aenter__(self) -> "ProviderRegistry":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.aclose()
