"""
Perceptual difference hashing (dHash) for near-duplicate pre-filtering.

The fingerprint is a bit string built from horizontal luminance gradients
of a tiny resized copy of the image, so it survives recompression and
resizing but not heavy edits.
"""

import io
from typing import Optional

import numpy as np
import structlog
from PIL import Image, UnidentifiedImageError

from copyguard import config
from copyguard.errors import DecodeError

logger = structlog.get_logger()

# Any fixed filter keeps the fingerprint deterministic for identical bytes
RESAMPLE_FILTER = Image.Resampling.LANCZOS


def load_image(data: bytes) -> Image.Image:
    """Decode raw bytes into a PIL image, raising DecodeError when that is impossible."""
    # Pillow reports corrupt chunks found during load() as SyntaxError
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
        return image
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, SyntaxError) as e:
        raise DecodeError(f"Cannot decode image: {e}") from e


def dhash_bits(image: Image.Image, hash_size: int = config.FINGERPRINT_HASH_SIZE,
               height: Optional[int] = None) -> str:
    """
    Generate a difference hash for an already decoded image.

    The image is resized to (hash_size + 1) x height, each pixel's luminance
    is the plain mean of its R, G and B channels (alpha is ignored), and every
    adjacent horizontal pair emits '1' when the left pixel is strictly
    brighter than the right one. Bits are emitted row by row.
    """
    height = height or hash_size

    rgb = image.convert("RGB")
    resized = rgb.resize((hash_size + 1, height), RESAMPLE_FILTER)

    pixels = np.asarray(resized, dtype=np.float64)
    luminance = pixels.mean(axis=2)

    diff = luminance[:, :-1] > luminance[:, 1:]
    return ''.join('1' if b else '0' for b in diff.flatten())


def fingerprint(data: bytes, hash_size: int = config.FINGERPRINT_HASH_SIZE) -> str:
    """
    Compute the perceptual fingerprint of encoded image bytes.

    Returns:
        Bit string of length hash_size * hash_size (64 by default)

    Raises:
        DecodeError: if the bytes are not a readable image
    """
    image = load_image(data)
    try:
        bits = dhash_bits(image, hash_size)
    except (OSError, ValueError) as e:
        raise DecodeError(f"Cannot rasterize image: {e}") from e

    logger.debug("Generated fingerprint", hash_size=hash_size, size=image.size, mode=image.mode)
    return bits
