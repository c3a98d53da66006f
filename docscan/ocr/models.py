"""Data types shared by the preprocessing pipeline, the engines and the orchestrator."""

import mimetypes
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any


class EngineId(StrEnum):
    """Recognition engines known to the orchestrator."""

    LOCAL = "local"
    REMOTE = "remote"


class RecognitionMode(StrEnum):
    """Engine selection policy for a recognition call."""

    AUTO = "auto"
    LOCAL = "local"
    REMOTE = "remote"


SUPPORTED_MIME_TYPES = frozenset(
    {
        "image/png",
        "image/jpeg",
        "image/webp",
        "image/bmp",
        "image/tiff",
        "application/octet-stream",
    }
)


@dataclass
class RawImage:
    """Encoded image bytes as received from the capture layer.

    ``width`` and ``height`` are the dimensions declared by the caller; they
    are optional and only used when the bytes cannot be decoded.
    """

    data: bytes
    width: int | None = None
    height: int | None = None
    mime_type: str = "image/png"

    @classmethod
    def from_path(cls, path: Path) -> "RawImage":
        """Read an image file, guessing the MIME type from its suffix."""
        mime_type, _ = mimetypes.guess_type(path.name)
        return cls(
            data=Path(path).read_bytes(),
            mime_type=mime_type or "application/octet-stream",
        )


@dataclass(frozen=True)
class ProcessingOptions:
    """Per-call preprocessing switches. Steps run in declaration order."""

    max_width: int = 2000
    max_height: int = 2000
    grayscale: bool = True
    contrast: bool = True
    contrast_factor: float = 1.2
    binarize: bool = False
    sharpen: bool = False


@dataclass(frozen=True)
class NormalizedImage:
    """Preprocessed image ready for recognition, PNG encoded."""

    data: bytes
    width: int
    height: int
    mime_type: str = "image/png"
    degraded: bool = False
    original_width: int | None = None
    original_height: int | None = None


@dataclass
class EngineResult:
    """Text returned by a single engine."""

    text: str
    engine: EngineId
    confidence: str
    raw_diagnostics: dict[str, Any] | None = None

    @property
    def is_blank(self) -> bool:
        return not self.text or not self.text.strip()


@dataclass
class AttemptRecord:
    """Outcome of one engine attempt within a recognition call."""

    engine: EngineId
    outcome: str
    reason: str | None = None
    elapsed_ms: float = 0.0


@dataclass
class Diagnostics:
    """Structured trace of the decisions taken during one recognition call."""

    dimensions_before: tuple[int, int] | None = None
    dimensions_after: tuple[int, int] | None = None
    preprocessing_applied: bool = False
    preprocessing_degraded: bool = False
    engines_attempted: list[EngineId] = field(default_factory=list)
    attempts: list[AttemptRecord] = field(default_factory=list)
    transitions: list[tuple[str, str]] = field(default_factory=list)
    engine_diagnostics: dict[str, Any] = field(default_factory=dict)
    text_length: int = 0
    token_count: int = 0


@dataclass
class RecognitionOutcome:
    """Final result handed back to the caller."""

    text: str
    engine_used: EngineId
    confidence: str
    fallback_used: bool = False
    diagnostics: Diagnostics | None = None


@dataclass
class BatchItem:
    """Result for one image of a batch: either an outcome or an error message."""

    name: str
    outcome: RecognitionOutcome | None = None
    error: str | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is not None
