"""
Extraction outcomes and the final processing result.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from .metadata import DocumentMetadata

__all__ = [
    "ERROR_PREFIX",
    "ExtractionOutcome",
    "ProcessingResult",
    "assemble_result",
]

ERROR_PREFIX = "Exception caught while processing the document: "


@dataclass(frozen=True)
class ExtractionOutcome:
    """Output of a single backend invocation."""
    text: str
    metadata: DocumentMetadata
    bytes_consumed: int = 0

    @property
    def text_length(self) -> int:
        """Length of the extracted text in UTF-8 bytes."""
        return len(self.text.encode("utf-8"))


@dataclass(frozen=True)
class ProcessingResult:
    """Terminal result of one process() call. Never mutated after construction."""
    success: bool
    text: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "text": self.text,
            "metadata": self.metadata,
            "error": self.error,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


def assemble_result(
    outcome: Optional[ExtractionOutcome] = None,
    error: Optional[str] = None,
    success: bool = True,
) -> ProcessingResult:
    """
    Package an outcome or an error into a ProcessingResult.

    Successful results are stamped with the current UTC time; failed
    results carry no timestamp, text or metadata.
    """
    if not success:
        return ProcessingResult(success=False, error=f"{ERROR_PREFIX}{error or ''}")

    if outcome is None:
        raise ValueError("A successful result requires an outcome")

    return ProcessingResult(
        success=True,
        text=outcome.text,
        metadata=outcome.metadata.to_dict(),
        timestamp=datetime.now(timezone.utc),
    )
