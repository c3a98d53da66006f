"""Tests for the remote OCR engine client (mocked transport)."""

import time
from collections.abc import Iterator

import httpx
import pytest

from docscan.ocr.errors import (
    EmptyResult,
    EngineNetworkError,
    EngineRateLimited,
    EngineReportedError,
    EngineTimeout,
)
from docscan.ocr.models import EngineId, NormalizedImage
from docscan.ocr.remote_engine import (
    RemoteEngine,
    RemoteOptions,
    flip_orientation,
    switch_variant,
)
from docscan.utils.config import RemoteEngineConfig

IMAGE = NormalizedImage(data=b"\x89PNG fake", width=10, height=10)


def ocr_space_payload(text: str = "INVOICE 12345", overlay: bool = True) -> dict:
    """Build a successful OCR.space-style JSON answer."""
    return {
        "ParsedResults": [
            {
                "ParsedText": text,
                "TextOverlay": {"HasOverlay": overlay, "Lines": []},
                "FileParseExitCode": 1,
            }
        ],
        "OCRExitCode": 1,
        "IsErroredOnProcessing": False,
    }


def _engine(
    transport: httpx.MockTransport, delays: list[float], **kwargs
) -> RemoteEngine:
    return RemoteEngine(
        endpoint="https://ocr.test/parse/image",
        transport=transport,
        sleep=delays.append,
        **kwargs,
    )


def _empty() -> httpx.Response:
    return httpx.Response(200, json=ocr_space_payload(text="   "))


def _variant_and_orientation(params: httpx.QueryParams) -> tuple[str, str]:
    return params["OCREngine"], params["detectOrientation"]


class TestRemoteOptions:
    """Tests for request parameters and mitigations."""

    def test_default_params(self) -> None:
        params = RemoteOptions().to_params()
        assert params["OCREngine"] == "2"
        assert params["detectOrientation"] == "true"
        assert params["scale"] == "true"
        assert params["isOverlayRequired"] == "true"
        assert params["language"] == "eng"
        assert "apikey" not in params

    def test_api_key_param(self) -> None:
        assert RemoteOptions(api_key="secret").to_params()["apikey"] == "secret"

    def test_switch_variant_once(self) -> None:
        switched = switch_variant(RemoteOptions())
        assert switched.variant == "alternate"
        assert switch_variant(switched) is switched

    def test_flip_orientation(self) -> None:
        assert flip_orientation(RemoteOptions()).detect_orientation is False

    def test_unknown_mitigation_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown remote mitigation"):
            RemoteEngine(mitigations=("rotate",))

    def test_unknown_variant_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown engine variant"):
            RemoteOptions(variant="fastest")


class TestRemoteEngine:
    """Tests for response classification and the retry policy."""

    def test_success(self, json_transport, no_sleep) -> None:
        transport = json_transport(httpx.Response(200, json=ocr_space_payload()))
        result = _engine(transport, no_sleep).recognize(IMAGE)

        assert result.text == "INVOICE 12345"
        assert result.engine == EngineId.REMOTE
        assert result.confidence == "high"
        assert result.raw_diagnostics["retry_count"] == 0
        assert "raw_response" not in result.raw_diagnostics
        assert no_sleep == []

        request = transport.requests[0]
        assert request.method == "POST"
        assert request.url.params["OCREngine"] == "2"
        assert b'name="file"' in request.content

    def test_medium_confidence_without_overlay(self, json_transport, no_sleep) -> None:
        transport = json_transport(
            httpx.Response(200, json=ocr_space_payload(overlay=False))
        )
        result = _engine(transport, no_sleep, collect_raw=True).recognize(IMAGE)
        assert result.confidence == "medium"
        assert result.raw_diagnostics["raw_response"]["OCRExitCode"] == 1

    def test_rate_limited_twice_then_success(self, json_transport, no_sleep) -> None:
        transport = json_transport(
            httpx.Response(429),
            httpx.Response(429),
            httpx.Response(200, json=ocr_space_payload()),
        )
        result = _engine(transport, no_sleep).recognize(IMAGE)

        assert result.text == "INVOICE 12345"
        assert len(transport.requests) == 3
        assert result.raw_diagnostics["retry_count"] == 2
        assert no_sleep == [0.5, 1.5]

    def test_rate_limited_exhausts_budget(self, json_transport, no_sleep) -> None:
        transport = json_transport(httpx.Response(429))
        with pytest.raises(EngineRateLimited):
            _engine(transport, no_sleep).recognize(IMAGE)
        assert len(transport.requests) == 3

    def test_empty_result_mitigations(self, json_transport, no_sleep) -> None:
        transport = json_transport(_empty())
        with pytest.raises(EmptyResult):
            _engine(transport, no_sleep).recognize(IMAGE)

        params = [request.url.params for request in transport.requests]
        assert len(params) == 3
        assert _variant_and_orientation(params[0]) == ("2", "true")
        assert _variant_and_orientation(params[1]) == ("1", "true")
        assert _variant_and_orientation(params[2]) == ("1", "false")
        assert no_sleep == [0.5, 1.5]

    def test_mitigation_order_is_tunable(self, json_transport, no_sleep) -> None:
        transport = json_transport(_empty())
        engine = _engine(
            transport, no_sleep, mitigations=("flip_orientation", "switch_variant")
        )
        with pytest.raises(EmptyResult):
            engine.recognize(IMAGE)
        second = transport.requests[1].url.params
        assert (second["OCREngine"], second["detectOrientation"]) == ("2", "false")

    def test_missing_parsed_results_is_empty(self, json_transport, no_sleep) -> None:
        transport = json_transport(
            httpx.Response(
                200, json={"ParsedResults": [], "IsErroredOnProcessing": False}
            ),
            httpx.Response(200, json=ocr_space_payload("Recovered")),
        )
        result = _engine(transport, no_sleep).recognize(IMAGE)
        assert result.text == "Recovered"
        assert transport.requests[1].url.params["OCREngine"] == "1"

    def test_placeholder_text_is_empty(self, json_transport, no_sleep) -> None:
        transport = json_transport(
            httpx.Response(200, json=ocr_space_payload("No text detected"))
        )
        with pytest.raises(EmptyResult):
            _engine(transport, no_sleep, backoff_s=()).recognize(IMAGE)
        assert len(transport.requests) == 1

    def test_engine_reported_error_retried(self, json_transport, no_sleep) -> None:
        transport = json_transport(
            httpx.Response(
                200,
                json={
                    "IsErroredOnProcessing": True,
                    "ErrorMessage": ["E500: busy", "try later"],
                },
            )
        )
        with pytest.raises(EngineReportedError, match="E500: busy; try later"):
            _engine(transport, no_sleep).recognize(IMAGE)
        assert len(transport.requests) == 3

    def test_http_error_not_retried(self, json_transport, no_sleep) -> None:
        transport = json_transport(httpx.Response(403, text="Forbidden"))
        with pytest.raises(EngineReportedError, match="HTTP 403: Forbidden"):
            _engine(transport, no_sleep).recognize(IMAGE)
        assert len(transport.requests) == 1
        assert no_sleep == []

    def test_timeout_not_retried(self, json_transport, no_sleep) -> None:
        transport = json_transport(httpx.ReadTimeout("slow"))
        with pytest.raises(EngineTimeout):
            _engine(transport, no_sleep).recognize(IMAGE)
        assert len(transport.requests) == 1
        assert no_sleep == []

    def test_network_error(self, json_transport, no_sleep) -> None:
        transport = json_transport(httpx.ConnectError("refused"))
        with pytest.raises(EngineNetworkError):
            _engine(transport, no_sleep).recognize(IMAGE)

    def test_from_config(self, json_transport, no_sleep) -> None:
        config = RemoteEngineConfig(
            api_key="k",
            variant="alternate",
            detect_orientation=False,
            backoff_s=[0.1],
        )
        transport = json_transport(httpx.Response(200, json=ocr_space_payload()))
        engine = RemoteEngine.from_config(
            config, transport=transport, sleep=no_sleep.append
        )
        engine.recognize(IMAGE)

        params = transport.requests[0].url.params
        assert params["apikey"] == "k"
        assert params["OCREngine"] == "1"
        assert params["detectOrientation"] == "false"
        assert engine.max_retries == 1

    @pytest.mark.parametrize(
        "body",
        [
            [],
            "oops",
            {"ParsedResults": [None]},
            {"ParsedResults": [{"ParsedText": 5}]},
            {"ParsedResults": {"ParsedText": "INVOICE"}},
        ],
    )
    def test_unexpected_json_shape(self, json_transport, no_sleep, body) -> None:
        transport = json_transport(httpx.Response(200, json=body))
        with pytest.raises(EngineReportedError, match="Malformed OCR response"):
            _engine(transport, no_sleep).recognize(IMAGE)
        assert len(transport.requests) == 3

    def test_non_json_body(self, json_transport, no_sleep) -> None:
        transport = json_transport(
            httpx.Response(200, text="<html>maintenance</html>"),
            httpx.Response(200, json=ocr_space_payload()),
        )
        result = _engine(transport, no_sleep).recognize(IMAGE)
        assert result.text == "INVOICE 12345"
        assert no_sleep == [0.5]

    def test_slow_body_hits_deadline(self, no_sleep) -> None:
        requests: list[httpx.Request] = []

        def trickle() -> Iterator[bytes]:
            for _ in range(40):
                time.sleep(0.05)
                yield b" "

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=trickle())

        engine = _engine(httpx.MockTransport(handler), no_sleep, timeout_s=0.3)
        start = time.monotonic()
        with pytest.raises(EngineTimeout):
            engine.recognize(IMAGE)

        assert time.monotonic() - start < 1.5
        assert len(requests) == 1
        assert no_sleep == []
