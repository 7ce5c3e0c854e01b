from __future__ import annotations

import numpy as np
import pytest

from conftest import decode_rgba, make_sprite, png_bytes
from vn_imagegen.config import MattingSettings
from vn_imagegen.matting import (
    analyze_background,
    classify_background,
    flood_from_border,
    low_saturation,
    majority_filter,
    matte,
    remove_background,
    sample_edges,
)
from vn_imagegen.types import Asset


def as_asset(pixels: np.ndarray) -> Asset:
    return Asset(data=png_bytes(pixels), media_type="image/png")


def test_white_backdrop_becomes_transparent_subject_stays_opaque():
    result = remove_background(as_asset(make_sprite()))

    rgba = decode_rgba(result)
    assert result.media_type == "image/png"
    for y, x in [(0, 0), (0, 99), (119, 0), (119, 99), (10, 50)]:
        assert rgba[y, x, 3] == 0
    assert rgba[60, 50, 3] == 255
    assert (rgba[30:90, 30:70, 3] == 255).all()


def test_edge_median_ignores_outlier_pixels():
    pixels = make_sprite()
    pixels[0, 10:14] = (0, 0, 0)  # a short dark seam on the top border

    edges = sample_edges(pixels)

    assert edges[0] == (255, 255, 255)
    assert len(edges) == 4


def test_classification_thresholds():
    settings = MattingSettings()

    white = classify_background([(250, 250, 250)] * 4, settings)
    assert white.achromatic and not white.chroma_key
    assert white.threshold == 70

    black = classify_background([(5, 5, 5)] * 4, settings)
    assert black.achromatic
    assert black.threshold == 110

    green = classify_background([(0, 255, 0), (0, 250, 10), (250, 250, 250), (250, 250, 250)], settings)
    assert green.chroma_key and not green.achromatic
    assert green.threshold == 80

    blue = classify_background([(40, 60, 200)] * 4, settings)
    assert blue.kind == "chromatic"
    assert blue.threshold == 70
    assert blue.feather == 15


def test_thresholds_come_from_settings():
    settings = MattingSettings(bright_threshold=40, feather=10)
    model = classify_background([(255, 255, 255)] * 4, settings)
    assert model.threshold == 40
    assert model.feather == 10


def test_low_saturation_rules():
    pixels = np.array(
        [[[5, 0, 9], [100, 100, 100], [200, 180, 170], [100, 80, 80], [200, 190, 185]]],
        dtype=np.uint8,
    )
    assert low_saturation(pixels, MattingSettings()).tolist() == [[True, True, False, False, True]]


def test_exact_edge_colour_is_fully_transparent_and_far_pixels_keep_alpha():
    pixels = make_sprite()
    rgba = np.dstack([pixels, np.full(pixels.shape[:2], 200, dtype=np.uint8)])

    result = decode_rgba(remove_background(as_asset(rgba)))

    assert result[5, 5, 3] == 0
    # The subject is far beyond threshold + feather: its (non-opaque) alpha is untouched.
    assert (result[30:90, 30:70, 3] == 200).all()


def test_feather_band_interpolates_alpha():
    pixels = make_sprite()
    # Grey 210 sits ~77.9 away from white: inside the 70..85 feather band.
    pixels[5:25, 5:25] = (210, 210, 210)

    rgba = decode_rgba(remove_background(as_asset(pixels)))

    assert rgba[15, 15, 3] == 135


def test_enclosed_pale_region_is_not_removed():
    pixels = make_sprite()
    pixels[45:75, 40:60] = (250, 250, 250)  # pale shirt fully enclosed by the subject

    rgba = decode_rgba(remove_background(as_asset(pixels)))

    assert (rgba[45:75, 40:60, 3] == 255).all()
    assert rgba[0, 0, 3] == 0


def test_chroma_key_background_removed():
    pixels = make_sprite(background=(0, 255, 0), subject=(230, 200, 180))

    rgba = decode_rgba(remove_background(as_asset(pixels)))

    assert rgba[0, 0, 3] == 0
    assert rgba[60, 50, 3] == 255


def test_near_black_background_removed():
    pixels = make_sprite(background=(8, 8, 10), subject=(240, 220, 60))
    model = analyze_background(as_asset(pixels))

    rgba = decode_rgba(remove_background(as_asset(pixels)))

    assert model.achromatic and model.brightness < 50
    assert rgba[119, 99, 3] == 0
    assert rgba[60, 50, 3] == 255


def test_mostly_flat_image_is_returned_unchanged():
    pixels = np.full((100, 100, 3), 240, dtype=np.uint8)
    pixels[48:52, 48:52] = (10, 10, 200)
    asset = as_asset(pixels)

    result, report = matte(asset)

    assert result == asset
    assert not report.applied
    assert report.background_fraction > 0.92


def test_busy_image_without_flat_backdrop_is_returned_unchanged():
    rng = np.random.default_rng(7)
    asset = as_asset(rng.integers(0, 256, size=(60, 60, 3), dtype=np.uint8))

    result, report = matte(asset)

    assert result == asset
    assert report.background_fraction < 0.05


def test_matting_is_stable_when_run_twice():
    first, first_report = matte(as_asset(make_sprite()))
    second, second_report = matte(first)

    assert first_report.applied and second_report.applied
    assert abs(first_report.background_fraction - second_report.background_fraction) < 0.01
    changed = np.count_nonzero(decode_rgba(first)[:, :, 3] != decode_rgba(second)[:, :, 3])
    assert changed / (100 * 120) < 0.01


@pytest.mark.parametrize("payload", [b"", b"definitely not an image", b"\x89PNG\r\n\x1a\nbroken"])
def test_undecodable_input_is_returned_unchanged(payload):
    asset = Asset(data=payload, media_type="image/png")
    assert remove_background(asset) == asset


def test_single_pixel_image_does_not_raise():
    asset = as_asset(np.full((1, 1, 3), 255, dtype=np.uint8))
    assert remove_background(asset) == asset


def test_flood_fill_reaches_only_border_connected_pixels():
    passable = np.ones((7, 7), dtype=bool)
    passable[1:6, 1:6] = False
    passable[3, 3] = True  # island

    reached = flood_from_border(passable)

    assert reached[0].all() and reached[:, 0].all()
    assert not reached[3, 3]


def test_majority_filter_drops_isolated_pixels():
    mask = np.zeros((15, 15), dtype=bool)
    mask[7, 7] = True
    assert not majority_filter(mask, 3, 0.65).any()

    full = np.ones((15, 15), dtype=bool)
    assert majority_filter(full, 3, 0.65).all()
