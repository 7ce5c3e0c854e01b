from __future__ import annotations

import asyncio
import io
from typing import Any, Callable

import httpx
import numpy as np
import pytest
from PIL import Image

from vn_imagegen.clients.base import ProviderAdapter
from vn_imagegen.types import Asset, GenerationRequest, Purpose


def png_bytes(pixels: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(pixels.astype(np.uint8)).save(buffer, format="PNG")
    return buffer.getvalue()


def make_sprite(
    width: int = 100,
    height: int = 120,
    background: tuple[int, int, int] = (255, 255, 255),
    subject: tuple[int, int, int] = (200, 30, 30),
    box: tuple[int, int, int, int] = (30, 30, 70, 90),
) -> np.ndarray:
    """Flat backdrop with a solid rectangle (x0, y0, x1, y1) standing in for the character."""
    pixels = np.empty((height, width, 3), dtype=np.uint8)
    pixels[:, :] = background
    x0, y0, x1, y1 = box
    pixels[y0:y1, x0:x1] = subject
    return pixels


def decode_rgba(asset: Asset) -> np.ndarray:
    with Image.open(io.BytesIO(asset.data)) as image:
        return np.array(image.convert("RGBA"))


def reply(status: int = 200, **kwargs: Any) -> dict[str, Any]:
    return {"status": status, **kwargs}


class FakeBackend:
    """Scripted HTTP backend for httpx.MockTransport.

    Each route holds a queue of replies; the last reply repeats once the queue is
    drained. A reply can also be an exception instance, which is raised instead.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.calls: list[httpx.Request] = []

    def add(self, method: str, url: str, *replies: Any) -> "FakeBackend":
        self.routes.setdefault((method, url), []).extend(replies)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, f"{request.url.scheme}://{request.url.host}{request.url.path}")
        queue = self.routes.get(key)
        if not queue:
            return httpx.Response(599, json={"error": f"no route for {key}"})
        scripted = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(scripted, Exception):
            raise scripted
        scripted = dict(scripted)
        return httpx.Response(scripted.pop("status"), **scripted)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, method: str, url: str) -> int:
        return sum(
            1
            for call in self.calls
            if call.method == method and f"{call.url.scheme}://{call.url.host}{call.url.path}" == url
        )


class StubAdapter(ProviderAdapter):
    """In-memory adapter driven by a callable, for orchestration tests."""

    purposes = frozenset(Purpose)

    def __init__(self, name: str, behaviour: Callable[[int], Asset], *, deadline_seconds: float = 5.0) -> None:
        super().__init__(base_url="http://stub.invalid", headers={}, deadline_seconds=deadline_seconds)
        self.name = name
        self.behaviour = behaviour
        self.calls = 0

    async def submit(self, request: GenerationRequest) -> Asset:
        self.calls += 1
        return self.behaviour(self.calls)


async def no_sleep(_: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def sprite_png() -> bytes:
    return png_bytes(make_sprite())


@pytest.fixture
def reference_asset(sprite_png: bytes) -> Asset:
    return Asset(data=sprite_png, media_type="image/png")
