"""Global binarization with an Otsu threshold.

Produces pure black/white pages, which helps both engines on faded or
unevenly lit handwriting.
"""

import numpy as np

from docscan.utils.logger import get_logger

from .tone import luminance

logger = get_logger(__name__)

DEFAULT_THRESHOLD = 128


def otsu_threshold(gray: np.ndarray) -> int:
    """Pick the threshold that maximizes inter-class variance.

    All 256 candidate thresholds are evaluated on the grayscale histogram.
    A pixel belongs to the background class when its value is less than or
    equal to the threshold.

    Args:
        gray: Single-channel ``uint8`` image.

    Returns:
        Threshold in ``[0, 255]``. Uniform images, which have no
        separating threshold, return 128.
    """
    histogram = np.bincount(gray.ravel(), minlength=256).astype(np.float64)
    total = histogram.sum()
    levels = np.arange(256, dtype=np.float64)

    weight_bg = np.cumsum(histogram)
    weight_fg = total - weight_bg
    sum_bg = np.cumsum(levels * histogram)
    sum_all = sum_bg[-1]

    valid = (weight_bg > 0) & (weight_fg > 0)
    if not valid.any():
        return DEFAULT_THRESHOLD

    mean_bg = np.divide(sum_bg, weight_bg, out=np.zeros(256), where=valid)
    mean_fg = np.divide(sum_all - sum_bg, weight_fg, out=np.zeros(256), where=valid)
    variance = np.where(valid, weight_bg * weight_fg * (mean_bg - mean_fg) ** 2, 0.0)

    if variance.max() <= 0:
        return DEFAULT_THRESHOLD
    return int(np.argmax(variance))


def binarize_otsu(image: np.ndarray) -> np.ndarray:
    """Map every pixel to pure black or pure white.

    Args:
        image: RGB or RGBA image.

    Returns:
        New array of the same shape whose colour channels only contain
        0 and 255; alpha is preserved.
    """
    gray = luminance(image)
    threshold = otsu_threshold(gray)
    binary = np.where(gray > threshold, 255, 0).astype(np.uint8)

    result = image.copy()
    for channel in range(3):
        result[..., channel] = binary
    logger.debug("Applied Otsu binarization (threshold=%d)", threshold)
    return result
