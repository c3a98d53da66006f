"""Error taxonomy for the recognition pipeline.

Every failure raised by the engines or the orchestrator derives from
:class:`RecognitionError`, so outer surfaces can map the whole family to a
single "No text detected" message.
"""

from .models import AttemptRecord, EngineId


class RecognitionError(Exception):
    """Base class for recognition failures."""

    reason = "recognition_error"


class EngineError(RecognitionError):
    """Failure reported by a single engine.

    Args:
        message: Human-readable description.
        engine: Engine that produced the failure.
    """

    reason = "engine_error"
    retryable = False

    def __init__(self, message: str, engine: EngineId) -> None:
        super().__init__(message)
        self.engine = engine


class EngineTimeout(EngineError):
    """The engine did not answer within the configured timeout."""

    reason = "timeout"


class EngineRateLimited(EngineError):
    """The engine rejected the call because of rate limiting (HTTP 429)."""

    reason = "rate_limited"
    retryable = True


class EngineReportedError(EngineError):
    """The engine answered but reported a processing error.

    Args:
        message: Error message surfaced by the engine.
        engine: Engine that produced the failure.
        retryable: Whether the adapter may try again within its budget.
    """

    reason = "engine_reported_error"

    def __init__(
        self, message: str, engine: EngineId, retryable: bool = False
    ) -> None:
        super().__init__(message, engine)
        self.retryable = retryable


class EngineNetworkError(EngineError):
    """Transport-level failure while reaching a networked engine."""

    reason = "network_error"


class EmptyResult(EngineError):
    """The call succeeded technically but returned no usable text."""

    reason = "empty_result"
    retryable = True

    def __init__(self, engine: EngineId, message: str = "No text detected") -> None:
        super().__init__(message, engine)


class AllEnginesExhausted(RecognitionError):
    """Every attempted engine failed or returned blank text.

    Args:
        attempts: Per-engine records collected during the call.
    """

    reason = "all_engines_exhausted"

    def __init__(self, attempts: list[AttemptRecord] | None = None) -> None:
        super().__init__("No text detected")
        self.attempts = attempts or []


class PreprocessingDegraded(RecognitionError):
    """A preprocessing step failed and the unmodified image was used instead.

    Never propagated to callers; the pipeline logs it and flags the
    :class:`~docscan.ocr.models.NormalizedImage` as degraded.
    """

    reason = "preprocessing_degraded"
