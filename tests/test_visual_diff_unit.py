"""Unit tests for comparison/visual_diff.py.

Tests cover:
- grayscale conversion
- windowed SSIM and its small-image fallback
- resampling of differently sized pages
"""
from __future__ import annotations

import numpy as np
import pytest
from PIL import Image, ImageDraw

from comparison.visual_diff import (
    compare_page_images,
    compute_ssim,
    match_dimensions,
    ssim_grayscale,
    to_grayscale,
)


# =============================================================================
# Fixtures
# =============================================================================

def _page_image(width: int = 120, height: int = 160) -> Image.Image:
    """A white page with a heading bar and two text blocks."""
    image = Image.new("L", (width, height), color=255)
    draw = ImageDraw.Draw(image)
    draw.rectangle([10, 10, 110, 25], fill=0)
    draw.rectangle([10, 40, 100, 80], fill=90)
    draw.rectangle([10, 90, 70, 130], fill=160)
    return image


# =============================================================================
# Grayscale
# =============================================================================

def test_to_grayscale_uses_luma_weights():
    red = Image.new("RGB", (2, 2), color=(255, 0, 0))
    gray = to_grayscale(red)
    assert gray.shape == (2, 2)
    assert gray[0, 0] == pytest.approx(0.299 * 255)


def test_to_grayscale_accepts_arrays():
    array = np.full((4, 5, 3), 100, dtype=np.uint8)
    assert to_grayscale(array) == pytest.approx(np.full((4, 5), 100.0))


# =============================================================================
# SSIM
# =============================================================================

def test_ssim_identical_pages():
    image = _page_image()
    assert compute_ssim(image, image) == pytest.approx(1.0)


def test_ssim_is_symmetric():
    a = _page_image()
    b = _page_image()
    ImageDraw.Draw(b).rectangle([20, 100, 60, 120], fill=0)
    assert compute_ssim(a, b) == pytest.approx(compute_ssim(b, a))
    assert compute_ssim(a, b) < 1.0


def test_single_pixel_speckle_lowers_ssim():
    clean = _page_image()
    speckled = clean.copy()
    speckled.putpixel((60, 150), 0)
    assert compute_ssim(clean, speckled) < compute_ssim(clean, clean)
    assert compute_ssim(clean, speckled) > 0.9


def test_ssim_missing_image_scores_zero():
    assert compute_ssim(None, _page_image()) == 0.0
    assert compute_ssim(_page_image(), None) == 0.0


def test_ssim_small_image_falls_back_to_global():
    a = np.arange(16, dtype=np.float64).reshape(4, 4)
    assert ssim_grayscale(a, a, window_size=8) == pytest.approx(1.0)
    assert ssim_grayscale(a, a[::-1], window_size=8) < 1.0


def test_ssim_shape_mismatch_raises():
    with pytest.raises(ValueError):
        ssim_grayscale(np.zeros((8, 8)), np.zeros((8, 9)))


def test_ssim_invalid_window():
    with pytest.raises(ValueError):
        compute_ssim(_page_image(), _page_image(), window_size=0)


def test_ssim_result_is_clamped():
    white = Image.new("L", (32, 32), color=255)
    black = Image.new("L", (32, 32), color=0)
    score = compute_ssim(white, black)
    assert 0.0 <= score <= 1.0


# =============================================================================
# Dimension matching
# =============================================================================

def test_match_dimensions_resizes_to_max():
    a = Image.new("L", (40, 30))
    b = Image.new("L", (20, 60))
    ra, rb = match_dimensions(a, b)
    assert ra.size == (40, 60)
    assert rb.size == (40, 60)


def test_match_dimensions_noop_for_equal_sizes():
    a = _page_image()
    b = _page_image()
    ra, rb = match_dimensions(a, b)
    assert ra is a and rb is b


def test_compare_differently_sized_pages():
    larger = _page_image().resize((240, 320), Image.Resampling.NEAREST)
    score = compare_page_images(_page_image(), larger)
    assert 0.5 < score <= 1.0
