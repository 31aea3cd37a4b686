"""
Shared test configuration for docharvest.

Provides settings fixtures, scripted fake backends and small document
builders. Heavy third-party parsers (PyMuPDF, RapidOCR, ImageMagick) are
never required: tests fake them with MagicMock / patch.dict("sys.modules").
"""

import io
import zipfile
from types import MappingProxyType
from typing import Dict, List, Optional

import pytest

from docharvest.config import ExtractionSettings
from docharvest.core.backends import BackendId, ParserBackend
from docharvest.core.metadata import DocumentMetadata
from docharvest.core.result import ExtractionOutcome


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# =============================================================================
# FAKE BACKENDS
# =============================================================================


class FakeBackend(ParserBackend):
    """
    Scripted backend: reads the whole buffer, records what it saw and
    returns a fixed text / page count (or raises ``error``).
    """

    def __init__(
        self,
        backend_id: BackendId,
        text: str = "",
        page_count: Optional[int] = None,
        content_type: str = "application/pdf",
        error: Optional[Exception] = None,
    ):
        self.backend_id = backend_id
        self.text = text
        self.page_count = page_count
        self.content_type = content_type
        self.error = error
        self.seen: List[bytes] = []

    def parse(self, buffer, document_id=None):
        self.seen.append(buffer.read_all())
        if self.error is not None:
            raise self.error
        return ExtractionOutcome(
            text=self.text,
            metadata=DocumentMetadata(
                content_type=self.content_type,
                page_count=self.page_count,
                extra={"fake:document-id": document_id},
            ),
            bytes_consumed=buffer.position(),
        )


def fake_backend_set(**overrides: ParserBackend) -> Dict[BackendId, ParserBackend]:
    """One FakeBackend per strategy; keyword overrides by lower-case BackendId name."""
    backends = {
        BackendId.GENERIC: FakeBackend(BackendId.GENERIC, text="generic text", content_type="text/plain"),
        BackendId.PDF_TEXT_ONLY: FakeBackend(BackendId.PDF_TEXT_ONLY, text="text layer", page_count=3),
        BackendId.PDF_OCR: FakeBackend(BackendId.PDF_OCR, text="ocr text", page_count=3),
        BackendId.PDF_SINGLE_PAGE_OCR: FakeBackend(BackendId.PDF_SINGLE_PAGE_OCR, text="legacy ocr", page_count=1),
    }
    for name, backend in overrides.items():
        backends[BackendId[name.upper()]] = backend
    return backends


def factory_for(backends: Dict[BackendId, ParserBackend]):
    """Backend factory returning a read-only view of ``backends``."""
    def factory(settings, ocr_engine):
        return MappingProxyType(dict(backends))
    return factory


@pytest.fixture
def settings():
    """Default settings, isolated from any config file on the host."""
    return ExtractionSettings()


@pytest.fixture
def fake_backends():
    return fake_backend_set()


# =============================================================================
# DOCUMENT BUILDERS
# =============================================================================


def make_pdf_bytes(size: int) -> bytes:
    """PDF-looking bytes of exactly ``size`` bytes (header included)."""
    header = b"%PDF-1.7\n"
    return header + b"0" * max(size - len(header), 0)


def make_zip(members: Dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return buf.getvalue()


def make_png(width: int = 8, height: int = 8) -> bytes:
    from PIL import Image

    buf = io.BytesIO()
    Image.new("RGB", (width, height), "white").save(buf, format="PNG")
    return buf.getvalue()


class NonSeekableStream(io.RawIOBase):
    """Read-once stream, like a socket or an upload body."""

    def __init__(self, data: bytes):
        self._inner = io.BytesIO(data)

    def readable(self):
        return True

    def seekable(self):
        return False

    def readinto(self, b):
        chunk = self._inner.read(len(b))
        b[:len(chunk)] = chunk
        return len(chunk)
