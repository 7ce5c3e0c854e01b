"""
Edge-based background removal for generated character sprites.

The backdrop colour is inferred from the four image borders, the region of
backdrop-coloured pixels connected to the border is grown by flood fill,
cleaned up with a neighbourhood vote and carved out of the alpha channel with
a feathered ramp. It is a heuristic: when the background model looks wrong
the input is returned untouched rather than half-erased.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
from PIL import Image

from .config import MattingSettings
from .types import Asset

logger = logging.getLogger(__name__)

EDGE_NAMES = ("top", "bottom", "left", "right")


@dataclass(frozen=True)
class BackgroundModel:
    """What the borders say about the backdrop."""

    edge_colors: tuple[tuple[int, int, int], ...]
    achromatic: bool
    chroma_key: bool
    brightness: float
    threshold: float
    feather: float

    @property
    def kind(self) -> str:
        if self.chroma_key:
            return "chroma-key"
        if self.achromatic:
            return "achromatic"
        return "chromatic"


@dataclass(frozen=True)
class MattingReport:
    model: BackgroundModel | None
    background_fraction: float
    applied: bool
    reason: str = ""


def _upper_median(samples: np.ndarray) -> tuple[int, int, int]:
    ordered = np.sort(samples, axis=0)
    r, g, b = ordered[len(ordered) // 2]
    return int(r), int(g), int(b)


def sample_edges(rgb: np.ndarray, stride: int = 2) -> tuple[tuple[int, int, int], ...]:
    """Per-channel median colour of each border, sampling every ``stride``-th pixel."""
    height, width = rgb.shape[:2]
    top = rgb[0, 0:width:stride]
    bottom = rgb[height - 1, 0:width:stride]
    left = rgb[0:height:stride, 0]
    right = rgb[0:height:stride, width - 1]
    return tuple(_upper_median(edge) for edge in (top, bottom, left, right))


def classify_background(
    edge_colors: Sequence[tuple[int, int, int]],
    settings: MattingSettings,
) -> BackgroundModel:
    achromatic = all(max(color) - min(color) < settings.achromatic_spread for color in edge_colors)
    chroma_key = any(
        g > settings.chroma_green_min and r < settings.chroma_other_max and b < settings.chroma_other_max
        for r, g, b in edge_colors
    )
    brightness = sum(sum(color) / 3.0 for color in edge_colors) / len(edge_colors)

    if chroma_key:
        threshold = settings.chroma_threshold
    elif achromatic:
        threshold = settings.dark_threshold if brightness < settings.dark_brightness else settings.bright_threshold
    else:
        threshold = settings.chromatic_threshold

    return BackgroundModel(
        edge_colors=tuple(edge_colors),
        achromatic=achromatic,
        chroma_key=chroma_key,
        brightness=brightness,
        threshold=threshold,
        feather=settings.feather,
    )


def edge_distance(rgb: np.ndarray, edge_colors: Sequence[tuple[int, int, int]]) -> np.ndarray:
    """Euclidean RGB distance of every pixel to the nearest edge colour."""
    pixels = rgb.astype(np.float32)
    nearest = np.full(rgb.shape[:2], np.inf, dtype=np.float32)
    for color in edge_colors:
        diff = pixels - np.asarray(color, dtype=np.float32)
        np.minimum(nearest, np.sqrt((diff * diff).sum(axis=-1)), out=nearest)
    return nearest


def low_saturation(rgb: np.ndarray, settings: MattingSettings) -> np.ndarray:
    channels = rgb.astype(np.int16)
    max_ch = channels.max(axis=-1)
    min_ch = channels.min(axis=-1)
    spread = max_ch - min_ch
    relative = spread / np.maximum(max_ch, 1)
    return (max_ch <= settings.near_black_max) | (
        (spread < settings.low_saturation_abs) & (relative < settings.low_saturation_rel)
    )


def _border_indices(width: int, height: int) -> list[int]:
    last_row = (height - 1) * width
    seeds = list(range(width)) + [last_row + x for x in range(width)]
    for y in range(1, height - 1):
        seeds.append(y * width)
        seeds.append(y * width + width - 1)
    return seeds


def flood_from_border(passable: np.ndarray) -> np.ndarray:
    """4-connected flood fill seeded from every border pixel through ``passable`` pixels."""
    height, width = passable.shape
    size = width * height
    open_px = passable.astype(np.uint8).tobytes()
    reached = bytearray(size)
    visited = bytearray(size)
    stack = _border_indices(width, height)

    while stack:
        px = stack.pop()
        if visited[px]:
            continue
        visited[px] = 1
        if not open_px[px]:
            continue
        reached[px] = 1
        x = px % width
        if x > 0 and not visited[px - 1]:
            stack.append(px - 1)
        if x < width - 1 and not visited[px + 1]:
            stack.append(px + 1)
        if px >= width and not visited[px - width]:
            stack.append(px - width)
        if px < size - width and not visited[px + width]:
            stack.append(px + width)

    return np.frombuffer(bytes(reached), dtype=np.uint8).reshape(height, width).astype(bool)


def majority_filter(mask: np.ndarray, radius: int, fraction: float) -> np.ndarray:
    """Keep mask pixels whose (2r+1)^2 neighbourhood, clipped to the image, is mostly mask."""
    height, width = mask.shape
    integral = np.zeros((height + 1, width + 1), dtype=np.int64)
    integral[1:, 1:] = mask.astype(np.int64).cumsum(axis=0).cumsum(axis=1)

    ys0 = np.clip(np.arange(height) - radius, 0, height)
    ys1 = np.clip(np.arange(height) + radius + 1, 0, height)
    xs0 = np.clip(np.arange(width) - radius, 0, width)
    xs1 = np.clip(np.arange(width) + radius + 1, 0, width)

    counts = (
        integral[np.ix_(ys1, xs1)]
        - integral[np.ix_(ys0, xs1)]
        - integral[np.ix_(ys1, xs0)]
        + integral[np.ix_(ys0, xs0)]
    )
    totals = np.outer(ys1 - ys0, xs1 - xs0)
    return mask & (counts >= totals * fraction)


def carve_alpha(
    alpha: np.ndarray,
    background: np.ndarray,
    distance: np.ndarray,
    threshold: float,
    feather: float,
) -> np.ndarray:
    """Lower alpha on background pixels: 0 below ``threshold``, linear ramp across the feather band."""
    ramp = np.floor((distance - threshold) / feather * 255.0 + 0.5)
    ramp = np.clip(ramp, 0, 255)
    ramp[distance < threshold] = 0
    carved = np.minimum(alpha, ramp.astype(np.uint8))
    return np.where(background, carved, alpha).astype(np.uint8)


def analyze_background(asset: Asset, settings: MattingSettings | None = None) -> BackgroundModel:
    settings = settings or MattingSettings()
    with Image.open(io.BytesIO(asset.data)) as image:
        rgb = np.asarray(image.convert("RGB"), dtype=np.uint8)
    return classify_background(sample_edges(rgb, settings.edge_stride), settings)


def matte(asset: Asset, settings: MattingSettings | None = None) -> tuple[Asset, MattingReport]:
    """Run the full matting pass and report what happened; the original comes back on any doubt."""
    settings = settings or MattingSettings()
    try:
        with Image.open(io.BytesIO(asset.data)) as image:
            rgba = np.array(image.convert("RGBA"), dtype=np.uint8)
    except Exception as exc:  # Pillow raises a zoo of error types for bad input
        logger.warning("Background removal skipped, image could not be decoded: %s", exc)
        return asset, MattingReport(model=None, background_fraction=0.0, applied=False, reason="decode failed")

    try:
        return _matte_pixels(asset, rgba, settings)
    except Exception:
        logger.exception("Background removal failed, keeping the original image")
        return asset, MattingReport(model=None, background_fraction=0.0, applied=False, reason="internal error")


def _matte_pixels(asset: Asset, rgba: np.ndarray, settings: MattingSettings) -> tuple[Asset, MattingReport]:
    if rgba.ndim != 3 or rgba.shape[0] < 1 or rgba.shape[1] < 1:
        return asset, MattingReport(model=None, background_fraction=0.0, applied=False, reason="empty image")

    rgb = rgba[:, :, :3]
    model = classify_background(sample_edges(rgb, settings.edge_stride), settings)
    distance = edge_distance(rgb, model.edge_colors)

    candidate = distance < model.threshold + model.feather
    if model.achromatic:
        # Only for grey/white/black backdrops; chroma-key backgrounds skip this guard.
        candidate &= low_saturation(rgb, settings)

    region = flood_from_border(candidate)
    connected = flood_from_border(region)
    background = majority_filter(connected, settings.neighborhood_radius, settings.majority_fraction)

    fraction = float(background.mean())
    logger.debug(
        "Background model %s (edges %s), threshold %.0f, background fraction %.3f",
        model.kind,
        dict(zip(EDGE_NAMES, model.edge_colors)),
        model.threshold,
        fraction,
    )
    if fraction < settings.min_background_fraction or fraction > settings.max_background_fraction:
        logger.info("Background fraction %.3f outside sane range, keeping original image", fraction)
        return asset, MattingReport(model=model, background_fraction=fraction, applied=False, reason="sanity guard")

    rgba[:, :, 3] = carve_alpha(rgba[:, :, 3], background, distance, model.threshold, model.feather)
    buffer = io.BytesIO()
    Image.fromarray(rgba).save(buffer, format="PNG")
    result = Asset(data=buffer.getvalue(), media_type="image/png")
    return result, MattingReport(model=model, background_fraction=fraction, applied=True)


def remove_background(asset: Asset, settings: MattingSettings | None = None) -> Asset:
    """Return ``asset`` with its inferred backdrop made transparent. Never raises."""
    result, _ = matte(asset, settings)
    return result
