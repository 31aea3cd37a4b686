"""
Core constants for docharvest.

All magic numbers, timeouts, and limits defined here.
Import from this module rather than hardcoding values.
"""

from pathlib import Path

__all__ = [
    # Extraction policy defaults
    "DEFAULT_PDF_MIN_DOC_TEXT_LENGTH",
    "DEFAULT_PDF_MIN_DOC_BYTE_SIZE",
    # OCR
    "DEFAULT_OCR_TIMEOUT",
    "DEFAULT_OCR_LANGUAGE",
    "RENDER_DPI",
    # Legacy single-page conversion
    "DEFAULT_CONVERSION_TIMEOUT",
    "DEFAULT_LEGACY_OCR_TIMEOUT",
    "DEFAULT_CONVERSION_DENSITY",
    "DEFAULT_CONVERT_BINARY",
    # Streams & detection
    "DETECTION_HEADER_SIZE",
    "MAX_DOCUMENT_SIZE",
    "SPOOL_MEMORY_THRESHOLD",
    "STREAM_CHUNK_SIZE",
    # File processing & security
    "MAX_DOCUMENT_PAGES",
    "MAX_SPREADSHEET_ROWS",
    "MAX_DECOMPRESSED_SIZE",
    "MAX_ARCHIVE_NESTING_DEPTH",
    "MAX_FILES_PER_ARCHIVE",
    # Metadata keys
    "CONTENT_TYPE_KEY",
    "PAGE_COUNT_KEY",
    "PARSED_BY_KEY",
    # Data directories
    "DATA_DIR",
    "DEFAULT_MODELS_DIR",
]

# --- EXTRACTION POLICY ---
DEFAULT_PDF_MIN_DOC_TEXT_LENGTH = 100  # bytes of UTF-8 text
DEFAULT_PDF_MIN_DOC_BYTE_SIZE = 10000  # bytes read from the stream

# --- OCR ---
DEFAULT_OCR_TIMEOUT = 300  # seconds per OCR invocation
DEFAULT_OCR_LANGUAGE = "eng"
RENDER_DPI = 150  # DPI for rendering PDF pages before OCR

# --- LEGACY SINGLE-PAGE CONVERSION (ImageMagick) ---
DEFAULT_CONVERSION_TIMEOUT = 120  # seconds
DEFAULT_LEGACY_OCR_TIMEOUT = 120  # seconds, OCR inside the legacy backend
DEFAULT_CONVERSION_DENSITY = 300  # DPI
DEFAULT_CONVERT_BINARY = "convert"

# --- STREAMS & DETECTION ---
DETECTION_HEADER_SIZE = 1024  # Bounded peek for magic-byte sniffing
MAX_DOCUMENT_SIZE = 200 * 1024 * 1024  # 200MB spooling guard for non-seekable sources
SPOOL_MEMORY_THRESHOLD = 8 * 1024 * 1024  # Spill to disk past 8MB
STREAM_CHUNK_SIZE = 64 * 1024

# --- FILE PROCESSING & SECURITY ---
MAX_DOCUMENT_PAGES = 500  # Maximum pages to OCR per document (prevents DoS)
MAX_SPREADSHEET_ROWS = 100000  # Per-sheet row limit
# DOCX/XLSX/PPTX are ZIP files - malicious files could decompress to gigabytes
MAX_DECOMPRESSED_SIZE = 200 * 1024 * 1024
MAX_ARCHIVE_NESTING_DEPTH = 3  # Prevent deeply nested zip bombs
MAX_FILES_PER_ARCHIVE = 1000

# --- METADATA KEYS ---
CONTENT_TYPE_KEY = "Content-Type"
PAGE_COUNT_KEY = "page-count"
PARSED_BY_KEY = "X-Parsed-By"

# --- DATA DIRECTORIES ---
# Structure:
#   ~/.docharvest/
#     config.yaml
#     models/
#       rapidocr/ (det.onnx, rec.onnx, cls.onnx)
#       rapidocr/<language>/ (optional per-language models)
DATA_DIR = Path.home() / ".docharvest"
DEFAULT_MODELS_DIR = DATA_DIR / "models"
