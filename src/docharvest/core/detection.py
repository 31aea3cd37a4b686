"""
Media type detection from leading bytes.

Sniffs the document's media type without consuming the stream: the header
is peeked through StreamBuffer and zip containers are inspected with the
position restored afterwards. Only the PDF / non-PDF distinction drives
routing in the extraction policy; the finer-grained type selects the
format handler inside the generic parser.

Sources for signatures:
- https://en.wikipedia.org/wiki/List_of_file_signatures
- https://www.garykessler.net/library/file_sigs.html
"""

from __future__ import annotations

import codecs
import logging
import mimetypes
import zipfile
from dataclasses import dataclass
from pathlib import PurePath
from typing import Optional

from docharvest.exceptions import DetectionError, UnsupportedOperationError

from .constants import DETECTION_HEADER_SIZE
from .stream import StreamBuffer

logger = logging.getLogger(__name__)

__all__ = [
    "MediaType",
    "TypeDetector",
    "APPLICATION_PDF",
    "APPLICATION_ZIP",
    "OCTET_STREAM",
    "TEXT_PLAIN",
]


@dataclass(frozen=True)
class MediaType:
    """A type/subtype media type, e.g. application/pdf."""
    type: str
    subtype: str

    @classmethod
    def parse(cls, value: str) -> "MediaType":
        base = value.split(";", 1)[0].strip().lower()
        if "/" not in base:
            raise ValueError(f"Not a media type: {value!r}")
        type_, subtype = base.split("/", 1)
        return cls(type_, subtype)

    @property
    def is_pdf(self) -> bool:
        return self == APPLICATION_PDF

    def __str__(self) -> str:
        return f"{self.type}/{self.subtype}"


APPLICATION_PDF = MediaType("application", "pdf")
APPLICATION_ZIP = MediaType("application", "zip")
APPLICATION_XML = MediaType("application", "xml")
APPLICATION_RTF = MediaType("application", "rtf")
APPLICATION_OLE2 = MediaType("application", "x-tika-msoffice")
OCTET_STREAM = MediaType("application", "octet-stream")
TEXT_PLAIN = MediaType("text", "plain")
TEXT_HTML = MediaType("text", "html")
TEXT_CSV = MediaType("text", "csv")
TEXT_TSV = MediaType("text", "tab-separated-values")

DOCX = MediaType("application", "vnd.openxmlformats-officedocument.wordprocessingml.document")
XLSX = MediaType("application", "vnd.openxmlformats-officedocument.spreadsheetml.sheet")
PPTX = MediaType("application", "vnd.openxmlformats-officedocument.presentationml.presentation")


# --- MAGIC BYTE SIGNATURES ---
# Each entry: (media type, [(byte_sequence, offset), ...]). Order matters.
MAGIC_SIGNATURES = [
    (APPLICATION_OLE2, [(b"\xD0\xCF\x11\xE0\xA1\xB1\x1A\xE1", 0)]),
    (APPLICATION_RTF, [(b"{\\rtf", 0)]),
    (MediaType("image", "png"), [(b"\x89PNG\r\n\x1a\n", 0)]),
    (MediaType("image", "jpeg"), [(b"\xFF\xD8\xFF", 0)]),
    (MediaType("image", "gif"), [(b"GIF87a", 0), (b"GIF89a", 0)]),
    (MediaType("image", "tiff"), [(b"II\x2A\x00", 0), (b"MM\x00\x2A", 0)]),
    (MediaType("image", "bmp"), [(b"BM", 0)]),
]

# WebP is a RIFF container - must have "WEBP" at offset 8
WEBP = MediaType("image", "webp")

# Distinguishing members of OOXML packages
OOXML_MARKERS = [
    ("word/document.xml", DOCX),
    ("xl/workbook.xml", XLSX),
    ("ppt/presentation.xml", PPTX),
]

# Delimited text is recognised by extension; mimetypes tables vary by platform
DELIMITED_EXTENSIONS = {".csv": TEXT_CSV, ".tsv": TEXT_TSV, ".tab": TEXT_TSV}

# Container types an uncompressed leading "mimetype" entry may declare (ODF, EPUB OCF)
CONTAINER_MIMETYPE_PREFIXES = ("application/vnd.oasis.opendocument.", "application/epub+zip")

_BOM = b"\xef\xbb\xbf"


def _matches(header: bytes, signature: bytes, offset: int) -> bool:
    return header[offset:offset + len(signature)] == signature


def _declared_container_type(archive: zipfile.ZipFile) -> Optional[MediaType]:
    """The type named by a leading, stored "mimetype" entry, or None."""
    entries = archive.infolist()
    if not entries:
        return None
    first = entries[0]
    if first.filename != "mimetype" or first.compress_type != zipfile.ZIP_STORED:
        return None
    declared = archive.read(first).decode("ascii", errors="ignore").strip().lower()
    if not declared.startswith(CONTAINER_MIMETYPE_PREFIXES):
        return None
    return MediaType.parse(declared)


def _looks_like_text(header: bytes) -> bool:
    """No NUL bytes, and either valid UTF-8 or mostly printable single-byte text."""
    if b"\x00" in header:
        return False
    try:
        # Incremental decode tolerates a multi-byte sequence cut off at the end
        codecs.getincrementaldecoder("utf-8")().decode(header, final=False)
        return True
    except UnicodeDecodeError:
        non_printable = sum(1 for b in header if b < 32 and b not in (9, 10, 12, 13))
        return non_printable / len(header) <= 0.1


class TypeDetector:
    """
    Magic-byte media type detector.

    Usage:
        detector = TypeDetector()
        media_type = detector.detect(buffer, resource_name="scan.pdf")
        if media_type.is_pdf:
            ...
    """

    def __init__(self, header_size: int = DETECTION_HEADER_SIZE):
        self.header_size = header_size

    def detect(self, buffer: StreamBuffer, resource_name: Optional[str] = None) -> MediaType:
        """
        Detect the media type of the bytes at the buffer's current position.

        Args:
            buffer: Replayable buffer; its position is unchanged on return
            resource_name: Optional file name used as a hint for text formats

        Raises:
            DetectionError: If the stream cannot be read
        """
        try:
            header = buffer.peek(self.header_size)
        except UnsupportedOperationError:
            raise
        except (OSError, ValueError) as e:
            raise DetectionError(
                f"Unable to read document header: {e}",
                document_id=resource_name,
            ) from e

        media_type = self._detect_from_header(buffer, header, resource_name)
        logger.debug(f"Detected {media_type} for {resource_name or '<stream>'}")
        return media_type

    def _detect_from_header(
        self,
        buffer: StreamBuffer,
        header: bytes,
        resource_name: Optional[str],
    ) -> MediaType:
        if not header:
            return OCTET_STREAM

        stripped = header[len(_BOM):] if header.startswith(_BOM) else header
        stripped = stripped.lstrip()

        if stripped.startswith(b"%PDF-"):
            return APPLICATION_PDF

        if _matches(header, b"PK\x03\x04", 0):
            return self._detect_zip_container(buffer)

        for media_type, signatures in MAGIC_SIGNATURES:
            if any(_matches(header, sig, off) for sig, off in signatures):
                return media_type

        if _matches(header, b"RIFF", 0) and _matches(header, b"WEBP", 8):
            return WEBP

        if _looks_like_text(header):
            return self._detect_text(stripped, resource_name)

        return self._guess_from_name(resource_name) or OCTET_STREAM

    def _detect_zip_container(self, buffer: StreamBuffer) -> MediaType:
        """Tell OOXML / ODF packages apart from plain zip archives."""
        try:
            with buffer.preserving_position() as raw:
                with zipfile.ZipFile(raw) as archive:
                    declared = _declared_container_type(archive)
                    names = set(archive.namelist())
        except (zipfile.BadZipFile, OSError, ValueError) as e:
            # Truncated or damaged archives are still zips as far as routing goes
            logger.debug(f"Could not read zip directory: {e}")
            return APPLICATION_ZIP

        if declared is not None:
            return declared
        for marker, media_type in OOXML_MARKERS:
            if marker in names:
                return media_type
        return APPLICATION_ZIP

    def _detect_text(self, stripped: bytes, resource_name: Optional[str]) -> MediaType:
        lowered = stripped[:64].lower()
        if lowered.startswith(b"<!doctype html") or lowered.startswith(b"<html"):
            return TEXT_HTML
        if lowered.startswith(b"<?xml"):
            return APPLICATION_XML

        hinted = self._guess_from_name(resource_name)
        if hinted is not None and hinted.type == "text":
            return hinted
        return TEXT_PLAIN

    @staticmethod
    def _guess_from_name(resource_name: Optional[str]) -> Optional[MediaType]:
        if not resource_name:
            return None
        suffix = PurePath(resource_name).suffix.lower()
        if suffix in DELIMITED_EXTENSIONS:
            return DELIMITED_EXTENSIONS[suffix]
        guessed, _ = mimetypes.guess_type(resource_name)
        if guessed is None:
            return None
        return MediaType.parse(guessed)
