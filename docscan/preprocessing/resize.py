"""Downscaling of oversized captures.

Phone cameras routinely produce 4000px+ frames; recognition engines gain
nothing from that resolution and remote engines reject large uploads.
"""

import cv2
import numpy as np

from docscan.utils.logger import get_logger

logger = get_logger(__name__)


def fit_within(
    width: int, height: int, max_width: int, max_height: int
) -> tuple[int, int]:
    """Compute target dimensions that fit the bound while keeping aspect ratio.

    Args:
        width: Source width in pixels.
        height: Source height in pixels.
        max_width: Maximum allowed width.
        max_height: Maximum allowed height.

    Returns:
        ``(width, height)`` after scaling. Images already within the bound
        are returned unchanged; images are never upscaled.
    """
    if width <= max_width and height <= max_height:
        return width, height

    ratio = min(max_width / width, max_height / height)
    new_width = min(max_width, max(1, round(width * ratio)))
    new_height = min(max_height, max(1, round(height * ratio)))
    return new_width, new_height


def resize_to_bound(
    image: np.ndarray, max_width: int = 2000, max_height: int = 2000
) -> np.ndarray:
    """Scale an image down so neither side exceeds the bound.

    Args:
        image: RGB or RGBA image of shape ``(height, width, channels)``.
        max_width: Maximum output width.
        max_height: Maximum output height.

    Returns:
        A new array; a copy of the input when no resizing is needed.
    """
    height, width = image.shape[:2]
    new_width, new_height = fit_within(width, height, max_width, max_height)
    if (new_width, new_height) == (width, height):
        return image.copy()

    result = cv2.resize(image, (new_width, new_height), interpolation=cv2.INTER_AREA)
    logger.debug(
        "Resized %dx%d -> %dx%d", width, height, new_width, new_height
    )
    return result
