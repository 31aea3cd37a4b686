"""
docharvest core: detection, replayable streams, backends and the
extraction policy.

Usage:
    from docharvest.core import ExtractionPolicy

    policy = ExtractionPolicy()
    result = policy.process(open("scan.pdf", "rb"), document_id="scan.pdf")
"""

from .backends import BackendId, ParserBackend, build_backends
from .detection import MediaType, TypeDetector
from .metadata import DocumentMetadata, page_count_of, tag_provenance
from .policy import ExtractionPolicy, ExtractionRequest, PolicyState
from .result import ExtractionOutcome, ProcessingResult, assemble_result
from .stream import StreamBuffer

__all__ = [
    # Orchestration
    "ExtractionPolicy",
    "ExtractionRequest",
    "PolicyState",
    # Backends
    "BackendId",
    "ParserBackend",
    "build_backends",
    # Detection & streams
    "MediaType",
    "TypeDetector",
    "StreamBuffer",
    # Results
    "DocumentMetadata",
    "ExtractionOutcome",
    "ProcessingResult",
    "assemble_result",
    "page_count_of",
    "tag_provenance",
]
