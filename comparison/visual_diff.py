"""Structural similarity (SSIM) between rendered page images."""
from __future__ import annotations

from typing import Optional, Tuple, Union

import numpy as np
from PIL import Image

from config.settings import settings
from utils.logging import logger

ImageLike = Union[Image.Image, np.ndarray]

_K1 = 0.01
_K2 = 0.03
_DYNAMIC_RANGE = 255.0
C1 = (_K1 * _DYNAMIC_RANGE) ** 2
C2 = (_K2 * _DYNAMIC_RANGE) ** 2

_LUMA = np.array([0.299, 0.587, 0.114], dtype=np.float64)


def _as_pil(image: ImageLike) -> Image.Image:
    if isinstance(image, Image.Image):
        return image
    array = np.asarray(image)
    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)
    return Image.fromarray(array)


def _size(image: ImageLike) -> Tuple[int, int]:
    """(width, height) of a PIL image or array."""
    if isinstance(image, Image.Image):
        return image.size
    array = np.asarray(image)
    return array.shape[1], array.shape[0]


def to_grayscale(image: ImageLike) -> np.ndarray:
    """Convert an image to a float64 luminance array (0.299R + 0.587G + 0.114B)."""
    if isinstance(image, Image.Image):
        if image.mode in ("L", "I", "F"):
            return np.asarray(image, dtype=np.float64)
        image = image.convert("RGB")
    array = np.asarray(image, dtype=np.float64)
    if array.ndim == 2:
        return array
    if array.ndim == 3 and array.shape[2] >= 3:
        return array[:, :, :3] @ _LUMA
    if array.ndim == 3 and array.shape[2] == 1:
        return array[:, :, 0]
    raise ValueError(f"Unsupported image shape for grayscale conversion: {array.shape}")


def match_dimensions(image_a: ImageLike, image_b: ImageLike) -> Tuple[ImageLike, ImageLike]:
    """Resample both images to their common maximum width and height."""
    size_a = _size(image_a)
    size_b = _size(image_b)
    if size_a == size_b:
        return image_a, image_b

    target = (max(size_a[0], size_b[0]), max(size_a[1], size_b[1]))
    logger.debug("Resizing images %s and %s to %s for SSIM", size_a, size_b, target)
    if size_a != target:
        image_a = _as_pil(image_a).resize(target, Image.Resampling.BILINEAR)
    if size_b != target:
        image_b = _as_pil(image_b).resize(target, Image.Resampling.BILINEAR)
    return image_a, image_b


def _ssim_from_stats(mu_a, mu_b, var_a, var_b, cov):
    numerator = (2.0 * mu_a * mu_b + C1) * (2.0 * cov + C2)
    denominator = (mu_a ** 2 + mu_b ** 2 + C1) * (var_a + var_b + C2)
    return numerator / denominator


def _global_ssim(gray_a: np.ndarray, gray_b: np.ndarray) -> float:
    a = gray_a.ravel()
    b = gray_b.ravel()
    ddof = 1 if a.size > 1 else 0
    mu_a = a.mean()
    mu_b = b.mean()
    var_a = a.var(ddof=ddof)
    var_b = b.var(ddof=ddof)
    cov = ((a - mu_a) * (b - mu_b)).sum() / max(a.size - ddof, 1)
    return float(_ssim_from_stats(mu_a, mu_b, var_a, var_b, cov))


def ssim_grayscale(gray_a: np.ndarray, gray_b: np.ndarray, window_size: int = 8) -> float:
    """Mean SSIM over non-overlapping windows of two equally sized luminance arrays.

    Windows are tiled from the top-left corner; the partial strip at the
    right/bottom edge is not scored. Window means divide by n, variance and
    covariance divide by n - 1.
    """
    if gray_a.shape != gray_b.shape:
        raise ValueError(f"Shape mismatch: {gray_a.shape} vs {gray_b.shape}")
    if gray_a.size == 0:
        return 0.0

    height, width = gray_a.shape
    if height < window_size or width < window_size:
        return _global_ssim(gray_a, gray_b)

    rows = height // window_size
    cols = width // window_size
    n = window_size * window_size

    def windows(gray: np.ndarray) -> np.ndarray:
        cropped = gray[: rows * window_size, : cols * window_size]
        blocks = cropped.reshape(rows, window_size, cols, window_size).swapaxes(1, 2)
        return blocks.reshape(rows, cols, n)

    wa = windows(gray_a)
    wb = windows(gray_b)
    mu_a = wa.mean(axis=2)
    mu_b = wb.mean(axis=2)
    da = wa - mu_a[..., None]
    db = wb - mu_b[..., None]
    var_a = (da * da).sum(axis=2) / (n - 1)
    var_b = (db * db).sum(axis=2) / (n - 1)
    cov = (da * db).sum(axis=2) / (n - 1)

    return float(_ssim_from_stats(mu_a, mu_b, var_a, var_b, cov).mean())


def compute_ssim(
    image_a: Optional[ImageLike],
    image_b: Optional[ImageLike],
    window_size: Optional[int] = None,
) -> float:
    """SSIM between two page images in [0, 1].

    Images of different sizes are resampled to a common size first. A
    missing image scores 0.0.
    """
    if image_a is None or image_b is None:
        return 0.0
    if window_size is None:
        window_size = settings.ssim_window_size
    if window_size <= 0:
        raise ValueError("window_size must be positive")

    image_a, image_b = match_dimensions(image_a, image_b)
    score = ssim_grayscale(to_grayscale(image_a), to_grayscale(image_b), window_size)
    return min(1.0, max(0.0, score))


def compare_page_images(image_a: Optional[ImageLike], image_b: Optional[ImageLike]) -> float:
    """SSIM with the configured window; convenience for callers without a window override."""
    return compute_ssim(image_a, image_b, settings.ssim_window_size)
