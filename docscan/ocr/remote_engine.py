"""Client for an OCR.space-compatible recognition endpoint.

Uploads the normalized image as multipart form data and classifies the
answer into text or one of the engine errors. Rate limiting, engine-side
processing errors and empty results are retried within a fixed backoff
budget; empty results additionally walk an ordered list of mitigations
(switch to the alternate engine variant, flip orientation detection).
"""

import json
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from typing import Any

import httpx

from docscan.utils.config import RemoteEngineConfig
from docscan.utils.logger import get_logger

from .errors import (
    EmptyResult,
    EngineError,
    EngineNetworkError,
    EngineRateLimited,
    EngineReportedError,
    EngineTimeout,
)
from .models import EngineId, EngineResult, NormalizedImage

logger = get_logger(__name__)

ENGINE_VARIANTS = {"accurate": 2, "alternate": 1}
PLACEHOLDER_TEXT = "No text detected"


@dataclass(frozen=True)
class RemoteOptions:
    """Request parameters for one remote recognition call."""

    variant: str = "accurate"
    language: str = "eng"
    detect_orientation: bool = True
    scale: bool = True
    api_key: str | None = None

    def __post_init__(self) -> None:
        if self.variant not in ENGINE_VARIANTS:
            raise ValueError(
                f"Unknown engine variant {self.variant!r}, "
                f"expected one of: {', '.join(ENGINE_VARIANTS)}"
            )

    def to_params(self) -> dict[str, str]:
        params = {
            "language": self.language,
            "isOverlayRequired": "true",
            "detectOrientation": str(self.detect_orientation).lower(),
            "scale": str(self.scale).lower(),
            "OCREngine": str(ENGINE_VARIANTS[self.variant]),
        }
        if self.api_key:
            params["apikey"] = self.api_key
        return params


def switch_variant(options: RemoteOptions) -> RemoteOptions:
    """Move from the accurate variant to the alternate one; no-op otherwise."""
    if options.variant == "accurate":
        return replace(options, variant="alternate")
    return options


def flip_orientation(options: RemoteOptions) -> RemoteOptions:
    """Toggle orientation detection."""
    return replace(options, detect_orientation=not options.detect_orientation)


MITIGATIONS: dict[str, Callable[[RemoteOptions], RemoteOptions]] = {
    "switch_variant": switch_variant,
    "flip_orientation": flip_orientation,
}


class RemoteEngine:
    """Stateless client for the networked engine.

    A fresh HTTP client is opened per call, so one instance can be shared
    across threads.

    Args:
        endpoint: URL of the parse endpoint.
        options: Default request parameters.
        timeout_s: Wall-clock limit for each attempt, in seconds. A timeout
            is never retried.
        backoff_s: Delay before each retry; its length is the retry budget.
        mitigations: Names from :data:`MITIGATIONS`, applied in order, one
            per empty result.
        transport: Optional ``httpx`` transport, mainly for tests.
        sleep: Function used to wait between retries.
        collect_raw: Attach the raw JSON answer to the result diagnostics.
    """

    def __init__(
        self,
        endpoint: str = "https://api.ocr.space/parse/image",
        options: RemoteOptions | None = None,
        timeout_s: float = 15.0,
        backoff_s: Sequence[float] = (0.5, 1.5),
        mitigations: Sequence[str] = ("switch_variant", "flip_orientation"),
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        collect_raw: bool = False,
    ) -> None:
        unknown = [name for name in mitigations if name not in MITIGATIONS]
        if unknown:
            raise ValueError(f"Unknown remote mitigation(s): {', '.join(unknown)}")

        self.endpoint = endpoint
        self.options = options or RemoteOptions()
        self.timeout_s = timeout_s
        self.backoff_s = tuple(backoff_s)
        self.mitigations = tuple(mitigations)
        self.transport = transport
        self.sleep = sleep
        self.collect_raw = collect_raw

    @classmethod
    def from_config(cls, config: RemoteEngineConfig, **kwargs: Any) -> "RemoteEngine":
        """Build an engine from the ``remote`` configuration section."""
        options = RemoteOptions(
            variant=config.variant,
            language=config.language,
            detect_orientation=config.detect_orientation,
            scale=config.scale,
            api_key=config.api_key,
        )
        return cls(
            endpoint=config.endpoint,
            options=options,
            timeout_s=config.timeout_s,
            backoff_s=config.backoff_s,
            mitigations=config.mitigations,
            **kwargs,
        )

    @property
    def max_retries(self) -> int:
        return len(self.backoff_s)

    def recognize(
        self, image: NormalizedImage, options: RemoteOptions | None = None
    ) -> EngineResult:
        """Recognize text in ``image``, retrying within the backoff budget.

        Args:
            image: Normalized image to upload.
            options: Request parameters; defaults to the engine defaults.

        Returns:
            Non-blank recognition result.

        Raises:
            EngineTimeout: The request timed out.
            EngineRateLimited: Still rate limited after the last retry.
            EngineReportedError: The engine reported an error.
            EngineNetworkError: The endpoint could not be reached.
            EmptyResult: No text after every retry and mitigation.
        """
        options = options or self.options
        retries = 0
        empty_results = 0

        while True:
            try:
                return self._attempt(image, options, retries)
            except EngineError as exc:
                if not exc.retryable or retries >= self.max_retries:
                    raise
                if isinstance(exc, EmptyResult):
                    options = self._mitigate(options, empty_results)
                    empty_results += 1

                delay = self.backoff_s[retries]
                retries += 1
                logger.warning(
                    "Remote OCR %s, retry %d/%d in %.1fs (variant=%s, orientation=%s)",
                    exc.reason,
                    retries,
                    self.max_retries,
                    delay,
                    options.variant,
                    options.detect_orientation,
                )
                self.sleep(delay)

    def _mitigate(self, options: RemoteOptions, index: int) -> RemoteOptions:
        if index >= len(self.mitigations):
            return options
        name = self.mitigations[index]
        logger.debug("Applying remote mitigation: %s", name)
        return MITIGATIONS[name](options)

    def _attempt(
        self, image: NormalizedImage, options: RemoteOptions, retry_count: int
    ) -> EngineResult:
        files = {"file": ("image.png", image.data, image.mime_type)}
        # httpx timeouts apply per phase and per read; the deadline caps the
        # whole attempt, including a body that trickles in slowly.
        deadline = time.monotonic() + self.timeout_s
        try:
            with httpx.Client(
                transport=self.transport, timeout=self.timeout_s
            ) as client:
                with client.stream(
                    "POST", self.endpoint, params=options.to_params(), files=files
                ) as response:
                    body = _read_before(response, deadline)
        except httpx.TimeoutException as exc:
            raise EngineTimeout("OCR request timeout", EngineId.REMOTE) from exc
        except httpx.HTTPError as exc:
            raise EngineNetworkError(
                f"OCR request failed: {exc}", EngineId.REMOTE
            ) from exc

        status_code = response.status_code
        if status_code == 429:
            raise EngineRateLimited("HTTP 429: rate limited", EngineId.REMOTE)
        if not response.is_success:
            text = body.decode("utf-8", errors="replace")
            raise EngineReportedError(f"HTTP {status_code}: {text}", EngineId.REMOTE)

        try:
            data = json.loads(body)
        except ValueError as exc:
            raise _malformed("response is not JSON") from exc

        return self._parse(data, status_code, options, retry_count)

    def _parse(
        self,
        data: Any,
        status_code: int,
        options: RemoteOptions,
        retry_count: int,
    ) -> EngineResult:
        if not isinstance(data, dict):
            raise _malformed(f"expected an object, got {type(data).__name__}")

        if data.get("IsErroredOnProcessing") is True:
            message = data.get("ErrorMessage") or "Unknown OCR engine error"
            if isinstance(message, list):
                message = "; ".join(str(m) for m in message)
            logger.debug("Remote engine error payload: %s", data)
            raise EngineReportedError(str(message), EngineId.REMOTE, retryable=True)

        parsed_results = data.get("ParsedResults") or []
        if not isinstance(parsed_results, list):
            raise _malformed("ParsedResults is not a list")
        if not parsed_results:
            raise EmptyResult(EngineId.REMOTE)

        first = parsed_results[0]
        if not isinstance(first, dict):
            raise _malformed("ParsedResults entry is not an object")
        text = first.get("ParsedText") or ""
        if not isinstance(text, str):
            raise _malformed("ParsedText is not a string")
        if not text.strip() or text.strip() == PLACEHOLDER_TEXT:
            raise EmptyResult(EngineId.REMOTE)

        overlay = first.get("TextOverlay")
        has_overlay = isinstance(overlay, dict) and bool(overlay.get("HasOverlay"))
        diagnostics: dict[str, Any] = {
            "http_status": status_code,
            "engine_variant": ENGINE_VARIANTS[options.variant],
            "detect_orientation": options.detect_orientation,
            "retry_count": retry_count,
        }
        if self.collect_raw:
            diagnostics["raw_response"] = data

        logger.info(
            "Remote OCR returned %d characters after %d retries",
            len(text),
            retry_count,
        )
        return EngineResult(
            text=text,
            engine=EngineId.REMOTE,
            confidence="high" if has_overlay else "medium",
            raw_diagnostics=diagnostics,
        )


def _read_before(response: httpx.Response, deadline: float) -> bytes:
    """Read the whole body, giving up once ``deadline`` has passed."""
    chunks: list[bytes] = []
    for chunk in response.iter_bytes():
        chunks.append(chunk)
        if time.monotonic() > deadline:
            raise EngineTimeout("OCR request timeout", EngineId.REMOTE)
    if time.monotonic() > deadline:
        raise EngineTimeout("OCR request timeout", EngineId.REMOTE)
    return b"".join(chunks)


def _malformed(detail: str) -> EngineReportedError:
    return EngineReportedError(
        f"Malformed OCR response: {detail}", EngineId.REMOTE, retryable=True
    )
