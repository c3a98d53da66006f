"""Pydantic request/response schemas for the FastAPI endpoints."""

from pydantic import BaseModel


class AttemptResponse(BaseModel):
    """One engine attempt as reported in diagnostics."""

    engine: str
    outcome: str
    reason: str | None = None
    elapsed_ms: float


class DiagnosticsResponse(BaseModel):
    """Per-call diagnostics, present only when requested."""

    dimensions_before: tuple[int, int] | None = None
    dimensions_after: tuple[int, int] | None = None
    preprocessing_applied: bool
    preprocessing_degraded: bool
    engines_attempted: list[str]
    attempts: list[AttemptResponse]
    transitions: list[tuple[str, str]]
    engine_diagnostics: dict[str, dict]
    text_length: int
    token_count: int


class RecognitionResponse(BaseModel):
    """Response schema for a single recognition request."""

    success: bool
    document_id: str
    text: str
    engine_used: str
    confidence: str
    fallback_used: bool
    processing_time_ms: float
    diagnostics: DiagnosticsResponse | None = None


class BatchItemResponse(BaseModel):
    """Response schema for a single item in a batch recognition."""

    filename: str
    result: RecognitionResponse | None = None
    error: str | None = None


class BatchRecognitionResponse(BaseModel):
    """Response schema for batch recognition of multiple images."""

    success: bool
    total_documents: int
    successful: int
    failed: int
    results: list[BatchItemResponse]


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    tesseract_available: bool
    remote_configured: bool
    local_worker_active: bool
