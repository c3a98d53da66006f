"""Engine selection, fallback and diagnostics for a recognition call.

A call walks a small state machine::

    PREPROCESS -> ATTEMPT_PRIMARY -> [ATTEMPT_FALLBACK] -> DONE | FAILED

The engines tried, and their order, come from :data:`ENGINE_PLANS`. Blank
text counts as a failure; in ``auto`` mode any remote failure leads to
exactly one local attempt on the same normalized image.
"""

import time
from collections.abc import Iterable, Iterator
from enum import StrEnum
from typing import Any

from docscan.preprocessing.pipeline import PreprocessingPipeline
from docscan.utils.config import AppConfig
from docscan.utils.logger import get_logger

from .errors import AllEnginesExhausted, EngineError, RecognitionError
from .local_engine import LocalEngine, WorkerPool
from .models import (
    AttemptRecord,
    BatchItem,
    Diagnostics,
    EngineId,
    EngineResult,
    NormalizedImage,
    ProcessingOptions,
    RawImage,
    RecognitionMode,
    RecognitionOutcome,
)
from .remote_engine import RemoteEngine, RemoteOptions

logger = get_logger(__name__)

NO_TEXT_MESSAGE = "No text detected"


class RecognitionState(StrEnum):
    PREPROCESS = "preprocess"
    ATTEMPT_PRIMARY = "attempt_primary"
    ATTEMPT_FALLBACK = "attempt_fallback"
    DONE = "done"
    FAILED = "failed"


class TransitionCause(StrEnum):
    PREPROCESSED = "preprocessed"
    ENGINE_SUCCEEDED = "engine_succeeded"
    ENGINE_FAILED = "engine_failed"
    BLANK_TEXT = "blank_text"
    NO_FALLBACK = "no_fallback"


ENGINE_PLANS: dict[RecognitionMode, tuple[EngineId, ...]] = {
    RecognitionMode.AUTO: (EngineId.REMOTE, EngineId.LOCAL),
    RecognitionMode.REMOTE: (EngineId.REMOTE,),
    RecognitionMode.LOCAL: (EngineId.LOCAL,),
}


class _Trace:
    """Collects diagnostics when enabled; every method is a no-op otherwise."""

    def __init__(self, enabled: bool) -> None:
        self.diagnostics = Diagnostics() if enabled else None

    def transition(self, state: RecognitionState, cause: TransitionCause) -> None:
        if self.diagnostics is not None:
            self.diagnostics.transitions.append((state.value, cause.value))

    def image(self, normalized: NormalizedImage, applied: bool) -> None:
        if self.diagnostics is None:
            return
        if normalized.original_width is not None:
            self.diagnostics.dimensions_before = (
                normalized.original_width,
                normalized.original_height or 0,
            )
        self.diagnostics.dimensions_after = (normalized.width, normalized.height)
        self.diagnostics.preprocessing_applied = applied
        self.diagnostics.preprocessing_degraded = normalized.degraded

    def attempt(self, record: AttemptRecord, result: EngineResult | None) -> None:
        if self.diagnostics is None:
            return
        self.diagnostics.engines_attempted.append(record.engine)
        self.diagnostics.attempts.append(record)
        if result is not None and result.raw_diagnostics:
            self.diagnostics.engine_diagnostics[record.engine.value] = (
                result.raw_diagnostics
            )

    def finish(self, text: str) -> Diagnostics | None:
        if self.diagnostics is not None:
            self.diagnostics.text_length = len(text)
            self.diagnostics.token_count = len(text.split())
        return self.diagnostics


class Orchestrator:
    """Runs preprocessing and the engines according to the selection policy.

    Args:
        preprocessor: Image preprocessing pipeline.
        remote: Networked engine.
        local: In-process engine.
        pipeline_enabled: When ``False``, preprocessing is skipped and
            ``auto`` mode uses the local engine only.
        debug: Collect :class:`Diagnostics` for every call.
        processing_options: Default preprocessing options.
    """

    def __init__(
        self,
        preprocessor: PreprocessingPipeline,
        remote: RemoteEngine,
        local: LocalEngine,
        pipeline_enabled: bool = True,
        debug: bool = False,
        processing_options: ProcessingOptions | None = None,
    ) -> None:
        self.preprocessor = preprocessor
        self.remote = remote
        self.local = local
        self.pipeline_enabled = pipeline_enabled
        self.debug = debug
        self.processing_options = processing_options or ProcessingOptions()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        pool: WorkerPool | None = None,
        **remote_kwargs: Any,
    ) -> "Orchestrator":
        """Assemble the orchestrator and both engines from configuration.

        Args:
            config: Application configuration.
            pool: Worker pool for the local engine; defaults to the
                process-wide pool.
            **remote_kwargs: Extra arguments for :class:`RemoteEngine`,
                such as ``transport`` or ``sleep``.
        """
        remote_kwargs.setdefault("collect_raw", config.debug)
        return cls(
            preprocessor=PreprocessingPipeline(),
            remote=RemoteEngine.from_config(config.remote, **remote_kwargs),
            local=LocalEngine.from_config(config.local, pool=pool),
            pipeline_enabled=config.pipeline_enabled and config.preprocessing.enabled,
            debug=config.debug,
            processing_options=config.preprocessing.to_options(),
        )

    def plan(self, mode: RecognitionMode) -> tuple[EngineId, ...]:
        """Engines to try for ``mode``, in order."""
        if mode == RecognitionMode.AUTO and not self.pipeline_enabled:
            return ENGINE_PLANS[RecognitionMode.LOCAL]
        return ENGINE_PLANS[mode]

    def recognize(
        self,
        raw: RawImage,
        mode: RecognitionMode | str = RecognitionMode.AUTO,
        options: ProcessingOptions | None = None,
        preprocess: bool = True,
        debug: bool | None = None,
        remote_options: RemoteOptions | None = None,
    ) -> RecognitionOutcome:
        """Recognize the text of one image.

        Args:
            raw: Encoded capture.
            mode: ``auto``, ``local`` or ``remote``.
            options: Preprocessing options for this call.
            preprocess: Set to ``False`` to skip preprocessing for this call.
            debug: Override the configured diagnostics switch.
            remote_options: Request parameters for the remote engine;
                defaults to the engine's configured options.

        Returns:
            Outcome with the recognized text and the engine that produced it.

        Raises:
            EngineError: In single-engine modes, the adapter failure as is.
            AllEnginesExhausted: Every attempted engine failed or
                returned blank text.
        """
        mode = RecognitionMode(mode)
        trace = _Trace(self.debug if debug is None else debug)
        plan = self.plan(mode)

        normalized = self._prepare(raw, options, preprocess, trace)
        trace.transition(RecognitionState.ATTEMPT_PRIMARY, TransitionCause.PREPROCESSED)

        attempts: list[AttemptRecord] = []
        last_error: EngineError | None = None
        cause = TransitionCause.NO_FALLBACK

        for index, engine in enumerate(plan):
            start = time.perf_counter()
            try:
                result = self._run_engine(engine, normalized, remote_options)
            except EngineError as exc:
                record = AttemptRecord(
                    engine, "failed", exc.reason, _elapsed_ms(start)
                )
                attempts.append(record)
                trace.attempt(record, None)
                if len(plan) == 1:
                    trace.transition(
                        RecognitionState.FAILED, TransitionCause.ENGINE_FAILED
                    )
                    raise
                last_error = exc
                cause = TransitionCause.ENGINE_FAILED
                logger.warning("%s engine failed: %s", engine.value, exc)
            else:
                if result.is_blank:
                    record = AttemptRecord(
                        engine, "blank", "blank_text", _elapsed_ms(start)
                    )
                    attempts.append(record)
                    trace.attempt(record, result)
                    last_error = None
                    cause = TransitionCause.BLANK_TEXT
                    logger.warning("%s engine returned blank text", engine.value)
                else:
                    record = AttemptRecord(
                        engine, "success", None, _elapsed_ms(start)
                    )
                    attempts.append(record)
                    trace.attempt(record, result)
                    trace.transition(
                        RecognitionState.DONE, TransitionCause.ENGINE_SUCCEEDED
                    )
                    return self._outcome(result, fallback_used=index > 0, trace=trace)

            if index + 1 < len(plan):
                logger.warning("Falling back to %s engine", plan[index + 1].value)
                trace.transition(RecognitionState.ATTEMPT_FALLBACK, cause)

        trace.transition(RecognitionState.FAILED, cause)
        logger.error("No text detected after %d attempt(s)", len(attempts))
        raise AllEnginesExhausted(attempts) from last_error

    def recognize_many(
        self,
        images: Iterable[tuple[str, RawImage]],
        mode: RecognitionMode | str = RecognitionMode.AUTO,
        options: ProcessingOptions | None = None,
    ) -> Iterator[BatchItem]:
        """Recognize images one at a time, yielding each result as it completes.

        A failing image yields an item carrying the error and processing
        moves on to the next image.

        Args:
            images: ``(name, image)`` pairs.
            mode: Engine selection policy for every image.
            options: Preprocessing options for every image.
        """
        for name, raw in images:
            try:
                outcome = self.recognize(raw, mode=mode, options=options)
            except RecognitionError as exc:
                logger.warning("Recognition failed for %s: %s", name, exc)
                yield BatchItem(name=name, error=NO_TEXT_MESSAGE, reason=exc.reason)
            else:
                yield BatchItem(name=name, outcome=outcome)

    def close(self) -> None:
        """Release the local worker."""
        self.local.pool.release()

    def __enter__(self) -> "Orchestrator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _run_engine(
        self,
        engine: EngineId,
        normalized: NormalizedImage,
        remote_options: RemoteOptions | None,
    ) -> EngineResult:
        if engine == EngineId.REMOTE:
            return self.remote.recognize(normalized, remote_options)
        return self.local.recognize(normalized)

    def _prepare(
        self,
        raw: RawImage,
        options: ProcessingOptions | None,
        preprocess: bool,
        trace: _Trace,
    ) -> NormalizedImage:
        if preprocess and self.pipeline_enabled:
            normalized = self.preprocessor.process(
                raw, options or self.processing_options
            )
            trace.image(normalized, applied=not normalized.degraded)
        else:
            normalized = self.preprocessor.passthrough(raw)
            trace.image(normalized, applied=False)
        return normalized

    def _outcome(
        self, result: EngineResult, fallback_used: bool, trace: _Trace
    ) -> RecognitionOutcome:
        logger.info(
            "Recognized %d characters with %s engine%s",
            len(result.text),
            result.engine.value,
            " (fallback)" if fallback_used else "",
        )
        return RecognitionOutcome(
            text=result.text,
            engine_used=result.engine,
            confidence=result.confidence,
            fallback_used=fallback_used,
            diagnostics=trace.finish(result.text),
        )


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)
