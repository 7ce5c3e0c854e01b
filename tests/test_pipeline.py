from __future__ import annotations

import asyncio
import base64

from conftest import StubAdapter, decode_rgba, make_sprite, no_sleep, png_bytes, reply
from vn_imagegen import AppConfig, ImageGenerationPipeline
from vn_imagegen.config import RetryPolicy, StabilityConfig
from vn_imagegen.errors import RateLimited
from vn_imagegen.orchestration import FallbackOrchestrator, ProviderRegistry, RetryController
from vn_imagegen.types import Asset, GenerationRequest, Purpose

SPRITE = Asset(data=png_bytes(make_sprite()), media_type="image/png")


def rate_limited(_: int) -> Asset:
    raise RateLimited("429 Too Many Requests")


def white_backdrop(_: int) -> Asset:
    return SPRITE


def build(*adapters: StubAdapter, config: AppConfig | None = None, transport=None) -> ImageGenerationPipeline:
    return ImageGenerationPipeline(
        config or AppConfig(),
        registry=ProviderRegistry(adapters),
        orchestrator=FallbackOrchestrator(RetryController(RetryPolicy(max_attempts=2), sleep=no_sleep)),
        transport=transport,
    )


def generate(pipeline: ImageGenerationPipeline, request: GenerationRequest, **kwargs):
    async def go():
        async with pipeline:
            return await pipeline.generate(request, **kwargs)

    return asyncio.run(go())


def test_portrait_falls_back_and_comes_out_matted():
    first = StubAdapter("first", rate_limited)
    second = StubAdapter("second", white_backdrop)

    result = generate(
        build(first, second),
        GenerationRequest(purpose=Purpose.PORTRAIT, prompt="silver-haired mage, white background"),
    )

    assert result.ok
    assert result.provider_used == "second"
    assert first.calls == 2
    rgba = decode_rgba(result.asset)
    assert rgba[0, 0, 3] == 0 and rgba[119, 99, 3] == 0
    assert rgba[60, 50, 3] == 255


def test_backgrounds_are_not_matted():
    result = generate(
        build(StubAdapter("only", white_backdrop)),
        GenerationRequest(purpose=Purpose.BACKGROUND, prompt="classroom at dusk"),
    )

    assert result.asset == SPRITE


def test_matting_override():
    request = GenerationRequest(purpose=Purpose.PORTRAIT, prompt="silver-haired mage")

    result = generate(build(StubAdapter("only", white_backdrop)), request, remove_background=False)

    assert result.asset == SPRITE


def test_no_provider_for_purpose():
    adapter = StubAdapter("text-only", white_backdrop)
    adapter.purposes = frozenset({Purpose.PORTRAIT})

    result = generate(build(adapter), GenerationRequest(purpose=Purpose.KEY_ART, prompt="cast lineup"))

    assert not result.ok
    assert result.failure.kind == "not_configured"


REMOVE_BACKGROUND = "https://api.stability.ai/v2beta/stable-image/edit/remove-background"
HOSTED = AppConfig(stability=StabilityConfig(api_key="sk-stab"))
PORTRAIT = GenerationRequest(purpose=Purpose.PORTRAIT, prompt="silver-haired mage, white background")


def test_hosted_matting_is_used_when_configured(backend):
    cutout = png_bytes(make_sprite(background=(0, 0, 0)))
    backend.add(
        "POST",
        REMOVE_BACKGROUND,
        reply(json={"image": base64.b64encode(cutout).decode("ascii"), "finish_reason": "SUCCESS"}),
    )

    result = generate(build(StubAdapter("only", white_backdrop), config=HOSTED, transport=backend.transport), PORTRAIT)

    assert result.ok
    assert result.asset.data == cutout
    assert result.asset.media_type == "image/png"
    call = backend.calls[0]
    assert call.headers["authorization"] == "Bearer sk-stab"
    assert call.headers["accept"] == "application/json"
    assert call.headers["content-type"].startswith("multipart/form-data")
    assert b'name="output_format"' in call.content and SPRITE.data in call.content


def test_hosted_matting_failure_falls_back_to_local(backend):
    backend.add("POST", REMOVE_BACKGROUND, reply(500, json={"errors": ["internal error"]}))

    result = generate(build(StubAdapter("only", white_backdrop), config=HOSTED, transport=backend.transport), PORTRAIT)

    assert result.ok
    assert backend.count("POST", REMOVE_BACKGROUND) == 1
    rgba = decode_rgba(result.asset)
    assert rgba[0, 0, 3] == 0
    assert rgba[60, 50, 3] == 255


def test_hosted_matting_response_without_image_falls_back_to_local(backend):
    backend.add("POST", REMOVE_BACKGROUND, reply(json={"finish_reason": "CONTENT_FILTERED"}))

    result = generate(build(StubAdapter("only", white_backdrop), config=HOSTED, transport=backend.transport), PORTRAIT)

    assert decode_rgba(result.asset)[0, 0, 3] == 0
