"""In-process Tesseract engine with a shared, lazily started worker.

The worker is owned by a :class:`WorkerPool`. The pool creates it on first
use (safe under concurrent first calls), serializes recognitions on it and
releases it on demand; a later call simply starts a new one.
"""

import io
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import pytesseract
from PIL import Image, UnidentifiedImageError

from docscan.utils.config import LocalEngineConfig
from docscan.utils.logger import get_logger

from .errors import EngineReportedError
from .models import EngineId, EngineResult, NormalizedImage

logger = get_logger(__name__)


class TesseractWorker:
    """A verified Tesseract session bound to one language.

    Args:
        language: Tesseract language code.
        tesseract_cmd: Path to the Tesseract executable.
            If ``None``, uses the system default.
    """

    def __init__(self, language: str = "eng", tesseract_cmd: str | None = None) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.language = language
        self.version = str(pytesseract.get_tesseract_version())
        self.closed = False
        logger.info(
            "Tesseract worker ready (version %s, lang=%s)", self.version, language
        )

    def recognize(self, image: Image.Image, psm: int) -> tuple[str, float]:
        """Run one recognition pass.

        Args:
            image: Image to recognize.
            psm: Tesseract page segmentation mode.

        Returns:
            Tuple of (text, mean word confidence on a 0-100 scale).
        """
        if self.closed:
            raise RuntimeError("Tesseract worker has been terminated")

        config = f"--psm {psm}"
        text = pytesseract.image_to_string(image, lang=self.language, config=config)
        data = pytesseract.image_to_data(
            image,
            lang=self.language,
            config=config,
            output_type=pytesseract.Output.DICT,
        )

        confidences = [
            float(conf)
            for conf, word in zip(data["conf"], data["text"])
            if float(conf) > 0 and str(word).strip()
        ]
        mean_conf = sum(confidences) / len(confidences) if confidences else 0.0
        return text, mean_conf

    def terminate(self) -> None:
        self.closed = True


class WorkerPool:
    """Owner of the single shared worker.

    Args:
        factory: Creates a new worker; called at most once per lifetime.
    """

    def __init__(self, factory: Callable[[], TesseractWorker]) -> None:
        self._factory = factory
        self._worker: TesseractWorker | None = None
        self._init_lock = threading.Lock()
        self._usage_lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        return self._worker is not None

    def acquire(self) -> TesseractWorker:
        """Return the shared worker, starting it if needed."""
        worker = self._worker
        if worker is not None:
            return worker
        with self._init_lock:
            if self._worker is None:
                logger.info("Starting local OCR worker")
                self._worker = self._factory()
            return self._worker

    @contextmanager
    def session(self) -> Iterator[TesseractWorker]:
        """Hold the worker exclusively for the duration of the block."""
        with self._usage_lock:
            yield self.acquire()

    def release(self) -> None:
        """Terminate the worker. Calling it again, or before any use, is a no-op."""
        with self._usage_lock, self._init_lock:
            worker, self._worker = self._worker, None
        if worker is not None:
            worker.terminate()
            logger.info("Local OCR worker released")


_default_pool: WorkerPool | None = None
_default_pool_lock = threading.Lock()


def default_pool(config: LocalEngineConfig | None = None) -> WorkerPool:
    """Return the process-wide pool, created from the first caller's config."""
    global _default_pool
    with _default_pool_lock:
        if _default_pool is None:
            config = config or LocalEngineConfig()
            _default_pool = WorkerPool(
                lambda: TesseractWorker(config.language, config.tesseract_cmd)
            )
        return _default_pool


def release_default_worker() -> None:
    """Release the process-wide worker if one was started."""
    with _default_pool_lock:
        pool = _default_pool
    if pool is not None:
        pool.release()


class LocalEngine:
    """Recognition on the shared Tesseract worker.

    Runs the primary segmentation mode first and, when the text is blank or
    the confidence is below ``confidence_threshold``, a second pass with the
    fallback mode. The longer non-blank text wins.

    Args:
        pool: Worker owner; defaults to the process-wide pool.
        primary_psm: First page segmentation mode (6, uniform block of text).
        fallback_psm: Second mode (11, sparse text).
        confidence_threshold: Mean confidence (0-100) below which the
            fallback mode is tried.
    """

    def __init__(
        self,
        pool: WorkerPool | None = None,
        primary_psm: int = 6,
        fallback_psm: int = 11,
        confidence_threshold: float = 30.0,
    ) -> None:
        self.pool = pool or default_pool()
        self.primary_psm = primary_psm
        self.fallback_psm = fallback_psm
        self.confidence_threshold = confidence_threshold

    @classmethod
    def from_config(
        cls, config: LocalEngineConfig, pool: WorkerPool | None = None
    ) -> "LocalEngine":
        return cls(
            pool=pool or default_pool(config),
            primary_psm=config.primary_psm,
            fallback_psm=config.fallback_psm,
            confidence_threshold=config.confidence_threshold,
        )

    def recognize(self, image: NormalizedImage) -> EngineResult:
        """Recognize text in ``image``.

        Args:
            image: Normalized image.

        Returns:
            Recognition result; its text may be blank.

        Raises:
            EngineReportedError: The image could not be decoded or
                Tesseract failed.
        """
        try:
            with Image.open(io.BytesIO(image.data)) as img:
                img.load()
                pil_image = img.copy()
        except (UnidentifiedImageError, OSError) as exc:
            raise EngineReportedError(
                f"Cannot decode image: {exc}", EngineId.LOCAL
            ) from exc

        try:
            with self.pool.session() as worker:
                return self._recognize_with(worker, pil_image)
        except (pytesseract.TesseractError, OSError, RuntimeError) as exc:
            logger.error("Tesseract error: %s", exc)
            raise EngineReportedError(str(exc), EngineId.LOCAL) from exc

    def _recognize_with(
        self, worker: TesseractWorker, image: Image.Image
    ) -> EngineResult:
        text, confidence = worker.recognize(image, self.primary_psm)
        psm_used = self.primary_psm
        fallback_attempted = False

        needs_fallback = not text.strip() or confidence < self.confidence_threshold
        if needs_fallback and self.fallback_psm != self.primary_psm:
            fallback_attempted = True
            logger.debug(
                "Local OCR weak result (conf=%.1f), retrying with psm %d",
                confidence,
                self.fallback_psm,
            )
            alt_text, alt_confidence = worker.recognize(image, self.fallback_psm)
            if alt_text.strip() and len(alt_text.strip()) > len(text.strip()):
                text, confidence = alt_text, alt_confidence
                psm_used = self.fallback_psm

        diagnostics: dict[str, Any] = {
            "psm_used": psm_used,
            "confidence": confidence,
            "word_count": len(text.split()),
            "fallback_attempted": fallback_attempted,
        }
        logger.info(
            "Local OCR extracted %d words with confidence %.1f (psm %d)",
            diagnostics["word_count"],
            confidence,
            psm_used,
        )
        return EngineResult(
            text=text,
            engine=EngineId.LOCAL,
            confidence=f"{round(confidence)}%" if confidence > 0 else "unknown",
            raw_diagnostics=diagnostics,
        )
