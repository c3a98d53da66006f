"""FastAPI application exposing the recognition pipeline over HTTP.

Accepts raw image uploads, runs the orchestrator in a worker thread and
returns the recognized text. Every recognition failure is reported with
the same "No text detected" message; details are only available through
diagnostics.
"""

import dataclasses
import shutil
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from docscan import __version__
from docscan.ocr.errors import RecognitionError
from docscan.ocr.local_engine import default_pool, release_default_worker
from docscan.ocr.models import (
    SUPPORTED_MIME_TYPES,
    RawImage,
    RecognitionMode,
    RecognitionOutcome,
)
from docscan.ocr.orchestrator import NO_TEXT_MESSAGE, Orchestrator
from docscan.utils.config import AppConfig, load_config
from docscan.utils.logger import get_logger

from .schemas import (
    BatchItemResponse,
    BatchRecognitionResponse,
    DiagnosticsResponse,
    HealthResponse,
    RecognitionResponse,
)

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Return the application configuration, read once per process."""
    return load_config()


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    get_config()
    yield
    release_default_worker()


app = FastAPI(
    title="Document Scanner OCR API",
    description="Extract text from photographed documents",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_orchestrator(config: AppConfig) -> Orchestrator:
    """Build an orchestrator from the current configuration.

    The local engine always uses the process-wide worker, so building a
    new orchestrator per request does not restart Tesseract.
    """
    return Orchestrator.from_config(config)


def _to_response(
    outcome: RecognitionOutcome, processing_time_ms: float
) -> RecognitionResponse:
    diagnostics = None
    if outcome.diagnostics is not None:
        diagnostics = DiagnosticsResponse.model_validate(
            dataclasses.asdict(outcome.diagnostics)
        )
    return RecognitionResponse(
        success=True,
        document_id=str(uuid.uuid4()),
        text=outcome.text,
        engine_used=outcome.engine_used.value,
        confidence=outcome.confidence,
        fallback_used=outcome.fallback_used,
        processing_time_ms=processing_time_ms,
        diagnostics=diagnostics,
    )


@app.get("/health", response_model=HealthResponse)
async def health_check(
    config: Annotated[AppConfig, Depends(get_config)],
) -> HealthResponse:
    """Return system health status."""
    tesseract_cmd = config.local.tesseract_cmd or "tesseract"
    return HealthResponse(
        status="healthy",
        version=__version__,
        tesseract_available=shutil.which(tesseract_cmd) is not None,
        remote_configured=bool(config.remote.api_key),
        local_worker_active=default_pool(config.local).is_active,
    )


@app.post("/ocr", response_model=RecognitionResponse)
async def recognize_image(
    file: Annotated[UploadFile, File(...)],
    config: Annotated[AppConfig, Depends(get_config)],
    mode: Annotated[RecognitionMode | None, Query()] = None,
    debug: Annotated[bool, Query()] = False,
) -> RecognitionResponse:
    """Recognize the text of an uploaded image.

    Args:
        file: Uploaded image (PNG, JPEG, WebP, BMP or TIFF).
        mode: Engine selection policy; defaults to the configured mode.
        debug: Include diagnostics in the response.

    Returns:
        Recognized text and the engine that produced it.
    """
    start_time = time.time()

    if file.content_type and file.content_type not in SUPPORTED_MIME_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type: {file.content_type}",
        )

    try:
        orchestrator = _get_orchestrator(config)
        raw = RawImage(
            data=await file.read(),
            mime_type=file.content_type or "application/octet-stream",
        )
        outcome = await run_in_threadpool(
            orchestrator.recognize,
            raw,
            mode=mode or config.default_mode,
            debug=debug or None,
        )
    except RecognitionError as exc:
        logger.warning("Recognition failed (%s): %s", exc.reason, exc)
        raise HTTPException(status_code=422, detail=NO_TEXT_MESSAGE) from exc
    except Exception as exc:
        logger.error("Recognition failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return _to_response(outcome, (time.time() - start_time) * 1000)


@app.post("/ocr/batch", response_model=BatchRecognitionResponse)
async def recognize_batch(
    files: Annotated[list[UploadFile], File(...)],
    config: Annotated[AppConfig, Depends(get_config)],
    mode: Annotated[RecognitionMode | None, Query()] = None,
) -> BatchRecognitionResponse:
    """Recognize several uploaded images one after another.

    Args:
        files: Uploaded images.
        mode: Engine selection policy for every image.

    Returns:
        Per-file outcomes; a failed file does not affect the others.
    """
    results: list[BatchItemResponse] = []
    successful = 0

    for file in files:
        try:
            result = await recognize_image(file, config, mode=mode)
            results.append(
                BatchItemResponse(filename=file.filename or "unknown", result=result)
            )
            successful += 1
        except HTTPException as exc:
            results.append(
                BatchItemResponse(filename=file.filename or "unknown", error=exc.detail)
            )

    return BatchRecognitionResponse(
        success=successful > 0,
        total_documents=len(files),
        successful=successful,
        failed=len(files) - successful,
        results=results,
    )
