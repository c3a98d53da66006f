"""Shared test fixtures for the document scanner test suite."""

import io
from collections.abc import Callable
from pathlib import Path

import httpx
import numpy as np
import pytest
from PIL import Image, ImageDraw

from docscan.ocr.local_engine import TesseractWorker, WorkerPool
from docscan.ocr.models import RawImage


def encode_image(image: np.ndarray | Image.Image, fmt: str = "PNG") -> bytes:
    """Encode an array or PIL image to bytes."""
    pil = Image.fromarray(image) if isinstance(image, np.ndarray) else image
    buf = io.BytesIO()
    pil.save(buf, format=fmt)
    return buf.getvalue()


class FakeWorker(TesseractWorker):
    """Worker returning canned ``(text, confidence)`` pairs per PSM."""

    def __init__(self, answers: dict[int, tuple[str, float]] | None = None) -> None:
        self.language = "eng"
        self.version = "fake"
        self.closed = False
        self.answers = answers or {6: ("INVOICE 12345", 91.0)}
        self.calls: list[int] = []

    def recognize(self, image: Image.Image, psm: int) -> tuple[str, float]:
        self.calls.append(psm)
        return self.answers.get(psm, ("", 0.0))


@pytest.fixture
def sample_color_image() -> np.ndarray:
    """Create a simple synthetic RGB test image."""
    image = np.full((200, 300, 3), 230, dtype=np.uint8)
    image[50:150, 50:250] = (40, 90, 160)
    return image


@pytest.fixture
def invoice_image() -> RawImage:
    """A clear, synthetic document photo reading "INVOICE 12345"."""
    img = Image.new("RGB", (400, 120), "white")
    ImageDraw.Draw(img).text((20, 40), "INVOICE 12345", fill="black")
    return RawImage(data=encode_image(img), width=400, height=120)


@pytest.fixture
def raw_from_array() -> Callable[[np.ndarray], RawImage]:
    """Wrap an array as a PNG-encoded RawImage."""

    def _make(image: np.ndarray) -> RawImage:
        height, width = image.shape[:2]
        return RawImage(data=encode_image(image), width=width, height=height)

    return _make


@pytest.fixture
def fake_pool() -> Callable[..., WorkerPool]:
    """Build a WorkerPool around a FakeWorker with the given answers."""

    def _make(answers: dict[int, tuple[str, float]] | None = None) -> WorkerPool:
        worker = FakeWorker(answers)
        return WorkerPool(lambda: worker)

    return _make


@pytest.fixture
def no_sleep() -> list[float]:
    """Collects the delays a RemoteEngine would have slept."""
    return []


@pytest.fixture
def json_transport() -> Callable[..., httpx.MockTransport]:
    """Mock transport answering successive requests from a list of responses.

    Each item is either an ``httpx.Response`` or an exception to raise.
    Requests are recorded on ``transport.requests``.
    """

    def _make(*responses: httpx.Response | Exception) -> httpx.MockTransport:
        queue = list(responses)
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            item = queue.pop(0) if len(queue) > 1 else queue[0]
            if isinstance(item, Exception):
                raise item
            return item

        transport = httpx.MockTransport(handler)
        transport.requests = requests
        return transport

    return _make


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent
