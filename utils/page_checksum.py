"""Page checksums: text hashes and perceptual image hashes.

Two signatures are computed per page:

1. Text checksum
   - MD5 of the normalized page text, truncated to 12 hex chars
   - Cheap equality test for digital pages

2. Perceptual hash
   - dHash (gradient) or aHash (mean) of a coarse grayscale thumbnail
   - Computed with the imagehash library, bit-packed and base64-encoded
   - Compared by normalized Hamming distance, so minor rendering noise
     still scores close to 1.0
"""
from __future__ import annotations

import base64
import binascii
import hashlib
from typing import TYPE_CHECKING, Optional, Union

import numpy as np

from utils.logging import logger
from utils.text_normalization import normalize_text

if TYPE_CHECKING:
    from PIL import Image


HASH_METHODS = ("dhash", "ahash")


# =============================================================================
# Text Checksum
# =============================================================================

def compute_text_checksum(text: str) -> str:
    """Compute a short checksum of normalized text. Empty text hashes to ""."""
    normalized = normalize_text(text)
    if not normalized:
        return ""
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()[:12]


# =============================================================================
# Perceptual Hash
# =============================================================================

def _as_hashable(image: Union["Image.Image", np.ndarray]) -> "Image.Image":
    """Page images may arrive as PIL images or uint8-compatible arrays."""
    from PIL import Image

    if isinstance(image, Image.Image):
        return image
    array = np.asarray(image)
    if array.ndim == 3 and array.shape[2] >= 3:
        array = array[:, :, :3]
    elif array.ndim == 3 and array.shape[2] == 1:
        array = array[:, :, 0]
    elif array.ndim != 2:
        raise ValueError(f"Unsupported image shape for hashing: {array.shape}")
    return Image.fromarray(np.clip(array, 0, 255).astype(np.uint8))


def compute_perceptual_hash(
    image: Union["Image.Image", np.ndarray],
    method: str = "dhash",
    grid_size: int = 8,
) -> Optional[str]:
    """Compute a base64-encoded perceptual hash of a rendered page.

    Args:
        image: Rendered page image, PIL (any mode) or array; converted to grayscale
        method: "dhash" compares each cell to its right neighbour on a
            (grid+1) x grid thumbnail; "ahash" compares each cell to the
            thumbnail mean on a grid x grid thumbnail
        grid_size: Cells per side; the hash has grid_size**2 bits

    Returns:
        Base64 string of the packed bits, or None if the image could not be hashed
    """
    if image is None:
        return None
    if method not in HASH_METHODS:
        raise ValueError(f"Unknown hash method: {method}")

    import imagehash

    try:
        image = _as_hashable(image)
        if method == "dhash":
            image_hash = imagehash.dhash(image, hash_size=grid_size)
        else:
            image_hash = imagehash.average_hash(image, hash_size=grid_size)
    except Exception as exc:
        logger.warning("Perceptual hash failed (%s): %s. Continuing without it.", method, exc)
        return None

    return encode_bits(image_hash.hash)


def encode_bits(bits: np.ndarray) -> str:
    """Pack a boolean bit matrix row-major into bytes and base64-encode it."""
    packed = np.packbits(np.asarray(bits, dtype=bool).flatten())
    return base64.b64encode(packed.tobytes()).decode("ascii")


def decode_hash(value: Optional[str]) -> Optional[bytes]:
    """Decode a base64 hash string. Empty or malformed input returns None."""
    if not value:
        return None
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None
    return decoded or None


def hamming_distance(a: bytes, b: bytes) -> int:
    """Count differing bits over the overlapping prefix of two byte strings.

    Hashes of unequal length are truncated to the shorter one; the extra
    trailing bytes are ignored rather than counted as differences.
    """
    overlap = min(len(a), len(b))
    if overlap == 0:
        return 0
    xa = np.frombuffer(a[:overlap], dtype=np.uint8)
    xb = np.frombuffer(b[:overlap], dtype=np.uint8)
    return int(np.unpackbits(np.bitwise_xor(xa, xb)).sum())


def hash_similarity(hash_a: Optional[str], hash_b: Optional[str]) -> float:
    """Similarity in [0, 1]: 1 - normalized Hamming distance over the overlap.

    Missing or undecodable hashes score 0.0.
    """
    if not hash_a or not hash_b:
        return 0.0

    bytes_a = decode_hash(hash_a)
    bytes_b = decode_hash(hash_b)
    if bytes_a is None or bytes_b is None:
        logger.debug("Undecodable perceptual hash; scoring 0.0")
        return 0.0
    if hash_a == hash_b:
        return 1.0

    overlap = min(len(bytes_a), len(bytes_b))
    distance = hamming_distance(bytes_a, bytes_b)
    return 1.0 - distance / (8.0 * overlap)
