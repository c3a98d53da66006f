"""Grayscale conversion and linear contrast stretching.

Both operate on the RGB channels of an RGB or RGBA image and leave the
alpha channel untouched.
"""

import numpy as np

from docscan.utils.logger import get_logger

logger = get_logger(__name__)

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])


def luminance(image: np.ndarray) -> np.ndarray:
    """Compute the rounded ITU-R BT.601 luminance of an RGB(A) image.

    Args:
        image: RGB or RGBA image of shape ``(height, width, channels)``.

    Returns:
        ``uint8`` array of shape ``(height, width)``.
    """
    rgb = image[..., :3].astype(np.float64)
    gray = np.floor(rgb @ LUMA_WEIGHTS + 0.5)
    return np.clip(gray, 0, 255).astype(np.uint8)


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Replace R, G and B with the pixel luminance.

    Args:
        image: RGB or RGBA image.

    Returns:
        New array with the same shape and channel count as the input.
    """
    result = image.copy()
    gray = luminance(image)
    result[..., 0] = gray
    result[..., 1] = gray
    result[..., 2] = gray
    logger.debug("Applied grayscale conversion")
    return result


def adjust_contrast(image: np.ndarray, factor: float = 1.2) -> np.ndarray:
    """Stretch contrast around mid-gray.

    Each colour sample becomes ``clamp(p * factor + 128 * (1 - factor), 0, 255)``.

    Args:
        image: RGB or RGBA image.
        factor: Contrast multiplier; 1.0 leaves the image unchanged.

    Returns:
        New array with the same shape as the input.
    """
    result = image.copy()
    intercept = 128.0 * (1.0 - factor)
    stretched = image[..., :3].astype(np.float64) * factor + intercept
    result[..., :3] = np.clip(np.rint(stretched), 0, 255).astype(np.uint8)
    logger.debug("Applied contrast stretch (factor=%.2f)", factor)
    return result
