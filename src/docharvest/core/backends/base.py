"""Parser backend contract and identifiers."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import ClassVar, Optional

from ..result import ExtractionOutcome
from ..stream import StreamBuffer


class BackendId(str, Enum):
    """Tags for the four extraction strategies. The value is the provenance identifier."""
    GENERIC = "GenericParser"
    PDF_TEXT_ONLY = "PdfTextOnlyParser"
    PDF_OCR = "PdfOcrParser"
    PDF_SINGLE_PAGE_OCR = "PdfSinglePageOcrParser"


class ParserBackend(ABC):
    """
    Base class for extraction backends.

    Backends are configured once at construction with immutable options and
    hold no per-request state, so one instance serves concurrent requests.
    """

    backend_id: ClassVar[BackendId]

    @abstractmethod
    def parse(self, buffer: StreamBuffer, document_id: Optional[str] = None) -> ExtractionOutcome:
        """
        Extract text and metadata from the buffer's current position.

        Args:
            buffer: Replayable document stream; reading advances its position
            document_id: Logical identifier / file name hint

        Returns:
            ExtractionOutcome whose bytes_consumed is the buffer position
            after parsing

        Raises:
            ParseError: On malformed or encrypted input, timeouts or
                        backend failures
        """
        ...
