from __future__ import annotations

import base64

import numpy as np
import pytest
from PIL import Image

from utils.page_checksum import (
    compute_perceptual_hash,
    compute_text_checksum,
    decode_hash,
    encode_bits,
    hamming_distance,
    hash_similarity,
)


def _gradient(width: int = 64, height: int = 64) -> Image.Image:
    row = np.linspace(0, 255, width, dtype=np.uint8)
    return Image.fromarray(np.tile(row, (height, 1)))


# =============================================================================
# Text checksum
# =============================================================================

def test_text_checksum_ignores_formatting_noise():
    assert compute_text_checksum("Hello,  World") == compute_text_checksum("hello world")
    assert len(compute_text_checksum("hello")) == 12


def test_text_checksum_empty():
    assert compute_text_checksum("") == ""
    assert compute_text_checksum(" .,; ") == ""


# =============================================================================
# Perceptual hash
# =============================================================================

def test_perceptual_hash_is_base64_of_grid_bits():
    value = compute_perceptual_hash(_gradient(), method="dhash", grid_size=8)
    assert value is not None
    assert len(base64.b64decode(value)) == 8

    ahash = compute_perceptual_hash(_gradient(), method="ahash", grid_size=16)
    assert len(base64.b64decode(ahash)) == 32


def test_perceptual_hash_unknown_method():
    with pytest.raises(ValueError):
        compute_perceptual_hash(_gradient(), method="phash")


def test_perceptual_hash_none_image():
    assert compute_perceptual_hash(None) is None


def test_perceptual_hash_accepts_arrays():
    gray = np.asarray(_gradient())
    expected = compute_perceptual_hash(_gradient())
    assert compute_perceptual_hash(gray) == expected
    assert compute_perceptual_hash(np.stack([gray] * 3, axis=2)) == expected
    assert compute_perceptual_hash(gray[:, :, None]) == expected


def test_perceptual_hash_unreadable_image_returns_none():
    assert compute_perceptual_hash(np.zeros((64, 64, 2), dtype=np.uint8)) is None
    assert compute_perceptual_hash(np.zeros((4, 4, 4, 4), dtype=np.uint8)) is None


def test_small_speckle_keeps_hash_similarity_high():
    clean = _gradient()
    speckled = np.asarray(clean).copy()
    speckled[30, 30] = 0
    hash_a = compute_perceptual_hash(clean)
    hash_b = compute_perceptual_hash(Image.fromarray(speckled))
    assert hash_similarity(hash_a, hash_b) >= 0.9


def test_encode_bits_packs_row_major():
    bits = np.zeros((2, 8), dtype=bool)
    bits[0, 0] = True
    bits[1, 7] = True
    assert base64.b64decode(encode_bits(bits)) == bytes([0b10000000, 0b00000001])


# =============================================================================
# Hamming / similarity
# =============================================================================

def test_hamming_distance_over_overlap():
    assert hamming_distance(b"\x00", b"\xff") == 8
    assert hamming_distance(b"\x0f\xff", b"\x0f") == 0
    assert hamming_distance(b"", b"\xff") == 0


def test_hash_similarity_self_and_symmetry():
    a = base64.b64encode(bytes([0b10101010, 0xFF])).decode()
    b = base64.b64encode(bytes([0b10101011, 0xFF])).decode()
    assert hash_similarity(a, a) == 1.0
    assert hash_similarity(a, b) == pytest.approx(1.0 - 1 / 16)
    assert hash_similarity(a, b) == hash_similarity(b, a)


def test_hash_similarity_truncates_to_shorter_hash():
    short = base64.b64encode(b"\xaa").decode()
    long = base64.b64encode(b"\xaa\x00\x00").decode()
    assert hash_similarity(short, long) == 1.0


@pytest.mark.parametrize("other", [None, "", "not base64!!"])
def test_hash_similarity_missing_or_invalid(other):
    valid = base64.b64encode(b"\xaa").decode()
    assert hash_similarity(valid, other) == 0.0
    assert hash_similarity(other, valid) == 0.0


def test_decode_hash_rejects_garbage():
    assert decode_hash("@@@") is None
    assert decode_hash(None) is None
