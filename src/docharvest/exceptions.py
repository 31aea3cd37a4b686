"""
Unified exception hierarchy for docharvest.

All exception classes live here. No per-module exception files.

Hierarchy:
    DocHarvestError (base)
    ├── DetectionError
    ├── ParseError
    │   ├── EncryptedDocumentError
    │   └── OcrTimeoutError
    ├── UnsupportedOperationError
    ├── DocumentTooLargeError
    └── ConfigurationError

Usage:
    from docharvest.exceptions import ParseError, EncryptedDocumentError
"""

from __future__ import annotations

from typing import Any

# =============================================================================
# ROOT
# =============================================================================


class DocHarvestError(Exception):
    """
    Base exception for all docharvest errors.

    Attributes:
        message: Human-readable error description
        context: Additional context about what was being done
        details: Technical details (backend, document id, sizes, etc.)
    """

    def __init__(
        self,
        message: str,
        context: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.context = context
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        if self.context:
            parts.append(f"Context: {self.context}")
        if self.details:
            detail_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            parts.append(f"Details: {detail_str}")
        return ". ".join(parts)


# =============================================================================
# DETECTION & PARSING
# =============================================================================


class DetectionError(DocHarvestError):
    """Raised when the stream cannot be sniffed for its media type."""

    def __init__(
        self,
        message: str,
        document_id: str | None = None,
        **kwargs: Any,
    ):
        details = kwargs.pop("details", {})
        if document_id:
            details["document_id"] = document_id
        super().__init__(message, details=details, **kwargs)
        self.document_id = document_id


class ParseError(DocHarvestError):
    """
    Raised when a parser backend fails.

    Covers malformed documents, password protection, OCR or conversion
    timeouts and external tool failures. The message is preserved verbatim
    in the final processing result so callers can match on it.
    """

    def __init__(
        self,
        message: str,
        backend: str | None = None,
        cause: BaseException | None = None,
        **kwargs: Any,
    ):
        details = kwargs.pop("details", {})
        if backend:
            details["backend"] = backend
        super().__init__(message, details=details, **kwargs)
        self.backend = backend
        self.cause = cause


class EncryptedDocumentError(ParseError):
    """The document is password protected and cannot be opened."""

    def __init__(self, backend: str | None = None, **kwargs: Any):
        super().__init__("document is encrypted", backend=backend, **kwargs)


class OcrTimeoutError(ParseError):
    """An OCR invocation exceeded its configured timeout."""

    def __init__(self, timeout: float, backend: str | None = None, **kwargs: Any):
        super().__init__(
            f"OCR timed out after {timeout:g}s",
            backend=backend,
            **kwargs,
        )
        self.timeout = timeout


# =============================================================================
# STREAMS
# =============================================================================


class UnsupportedOperationError(DocHarvestError):
    """The stream does not support the requested operation (e.g. replay)."""

    def __init__(self, message: str, operation: str | None = None, **kwargs: Any):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(message, details=details, **kwargs)
        self.operation = operation


class DocumentTooLargeError(DocHarvestError):
    """The document exceeds the configured maximum size for buffering."""

    def __init__(self, max_size: int, **kwargs: Any):
        details = kwargs.pop("details", {})
        details["max_size"] = max_size
        super().__init__(
            f"Document exceeds the maximum buffered size of {max_size} bytes",
            details=details,
            **kwargs,
        )
        self.max_size = max_size


# =============================================================================
# CONFIGURATION
# =============================================================================


class ConfigurationError(DocHarvestError):
    """Raised when settings cannot be loaded or fail validation."""

    def __init__(self, message: str, source: str | None = None, **kwargs: Any):
        details = kwargs.pop("details", {})
        if source:
            details["source"] = source
        super().__init__(message, details=details, **kwargs)
        self.source = source
