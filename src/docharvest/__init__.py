"""
docharvest - Adaptive document text & metadata extraction

This package provides:
- Core: content-type detection, replayable streams and the extraction policy
  that escalates from text-layer extraction to OCR for scanned PDFs
- Backends: generic, PDF text-only, PDF OCR and legacy single-page OCR parsers
- CLI: command-line extraction and configuration tools
"""

__version__ = "1.0.0"
