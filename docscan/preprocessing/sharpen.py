"""Light 3x3 sharpening to recover stroke edges after downscaling."""

import numpy as np

from docscan.utils.logger import get_logger

logger = get_logger(__name__)

SHARPEN_KERNEL = np.array([[0, -1, 0], [-1, 5, -1], [0, -1, 0]])


def sharpen(image: np.ndarray) -> np.ndarray:
    """Convolve interior pixels with :data:`SHARPEN_KERNEL`.

    Every output pixel is computed from the unmodified input, and the
    one-pixel border is copied through as is. Images smaller than 3x3 are
    returned unchanged.

    Args:
        image: RGB or RGBA image.

    Returns:
        New array of the same shape; alpha is preserved.
    """
    result = image.copy()
    height, width = image.shape[:2]
    if height < 3 or width < 3:
        return result

    src = image[..., :3].astype(np.int32)
    center = src[1:-1, 1:-1]
    up = src[:-2, 1:-1]
    down = src[2:, 1:-1]
    left = src[1:-1, :-2]
    right = src[1:-1, 2:]

    sharpened = 5 * center - up - down - left - right
    result[1:-1, 1:-1, :3] = np.clip(sharpened, 0, 255).astype(np.uint8)
    logger.debug("Applied sharpen kernel")
    return result
