"""Image preprocessing pipeline for photographed documents.

Decodes the capture, runs the enabled steps in a fixed order (resize,
grayscale, contrast, binarization, sharpen) and re-encodes the result as
PNG. Each step is a pure function returning a fresh array, so the steps
can be tested in isolation.
"""

import io
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from docscan.ocr.errors import PreprocessingDegraded
from docscan.ocr.models import NormalizedImage, ProcessingOptions, RawImage
from docscan.utils.logger import get_logger

from .binarize import binarize_otsu
from .resize import resize_to_bound
from .sharpen import sharpen
from .tone import adjust_contrast, to_grayscale

logger = get_logger(__name__)


@dataclass(frozen=True)
class PipelineStep:
    """One named transform and the option that switches it on."""

    name: str
    enabled: Callable[[ProcessingOptions], bool]
    apply: Callable[[np.ndarray, ProcessingOptions], np.ndarray]


PIPELINE_STEPS: tuple[PipelineStep, ...] = (
    PipelineStep(
        "resize",
        lambda opts: True,
        lambda img, opts: resize_to_bound(img, opts.max_width, opts.max_height),
    ),
    PipelineStep(
        "grayscale", lambda opts: opts.grayscale, lambda img, opts: to_grayscale(img)
    ),
    PipelineStep(
        "contrast",
        lambda opts: opts.contrast,
        lambda img, opts: adjust_contrast(img, opts.contrast_factor),
    ),
    PipelineStep(
        "binarize", lambda opts: opts.binarize, lambda img, opts: binarize_otsu(img)
    ),
    PipelineStep("sharpen", lambda opts: opts.sharpen, lambda img, opts: sharpen(img)),
)


def decode_image(data: bytes) -> np.ndarray:
    """Decode encoded image bytes into an RGB or RGBA array.

    EXIF orientation is applied so phone captures come out upright.

    Args:
        data: Encoded image (PNG, JPEG, WebP, BMP or TIFF).

    Returns:
        ``uint8`` array of shape ``(height, width, 3 or 4)``.
    """
    with Image.open(io.BytesIO(data)) as img:
        img = ImageOps.exif_transpose(img)
        has_alpha = img.mode in ("RGBA", "LA", "PA") or (
            img.mode == "P" and "transparency" in img.info
        )
        converted = img.convert("RGBA" if has_alpha else "RGB")
        return np.array(converted)


def encode_png(image: np.ndarray) -> bytes:
    """Encode an RGB or RGBA array as lossless PNG."""
    buf = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(image)).save(buf, format="PNG")
    return buf.getvalue()


class PreprocessingPipeline:
    """Turns raw captures into normalized images ready for recognition.

    The pipeline never raises: when decoding or a transform fails, the
    original image is re-encoded unmodified and the result is flagged as
    degraded.

    Args:
        steps: Ordered transforms to run. Defaults to :data:`PIPELINE_STEPS`.
    """

    def __init__(self, steps: tuple[PipelineStep, ...] = PIPELINE_STEPS) -> None:
        self.steps = steps

    def process(
        self, raw: RawImage, options: ProcessingOptions | None = None
    ) -> NormalizedImage:
        """Run the enabled steps on ``raw``.

        Args:
            raw: Encoded capture from the upload layer.
            options: Step switches; defaults to :class:`ProcessingOptions`.

        Returns:
            PNG-encoded normalized image.
        """
        options = options or ProcessingOptions()

        try:
            original = decode_image(raw.data)
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            return self._degraded(raw, None, exc)

        height, width = original.shape[:2]
        try:
            result = original
            applied = []
            for step in self.steps:
                if step.enabled(options):
                    result = step.apply(result, options)
                    applied.append(step.name)
            data = encode_png(result)
        except Exception as exc:
            return self._degraded(raw, original, exc)

        out_height, out_width = result.shape[:2]
        logger.info(
            "Preprocessing complete: %dx%d -> %dx%d (%s)",
            width,
            height,
            out_width,
            out_height,
            ", ".join(applied),
        )
        return NormalizedImage(
            data=data,
            width=out_width,
            height=out_height,
            original_width=width,
            original_height=height,
        )

    def passthrough(self, raw: RawImage) -> NormalizedImage:
        """Wrap ``raw`` without transforming it, for pipeline-disabled calls."""
        try:
            original = decode_image(raw.data)
        except (UnidentifiedImageError, OSError, ValueError):
            return NormalizedImage(
                data=raw.data,
                width=raw.width or 0,
                height=raw.height or 0,
                mime_type=raw.mime_type,
                original_width=raw.width,
                original_height=raw.height,
            )
        height, width = original.shape[:2]
        return NormalizedImage(
            data=raw.data,
            width=width,
            height=height,
            mime_type=raw.mime_type,
            original_width=width,
            original_height=height,
        )

    @staticmethod
    def _degraded(
        raw: RawImage, original: np.ndarray | None, exc: Exception
    ) -> NormalizedImage:
        logger.warning(
            "%s: preprocessing failed, using original image: %s",
            PreprocessingDegraded.reason,
            exc,
        )
        if original is None:
            return NormalizedImage(
                data=raw.data,
                width=raw.width or 0,
                height=raw.height or 0,
                mime_type=raw.mime_type,
                degraded=True,
                original_width=raw.width,
                original_height=raw.height,
            )

        height, width = original.shape[:2]
        return NormalizedImage(
            data=encode_png(original),
            width=width,
            height=height,
            degraded=True,
            original_width=width,
            original_height=height,
        )
