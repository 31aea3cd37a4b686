"""
Format handlers used by the generic parser.

A handler maps raw document bytes to a FormatResult: the text, a page count
where the format has one (sheets for workbooks, slides for decks) and any
metadata the format exposes. Tabular content is flattened one row per line
with non-empty cells joined by " | ".

Office documents are ZIP packages that can inflate far beyond their size on
disk, so the handlers for them meter the text they produce against
MAX_DECOMPRESSED_SIZE.

Library exceptions are not caught here; GenericParser turns them into
ParseError.
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .constants import MAX_DECOMPRESSED_SIZE, MAX_SPREADSHEET_ROWS

logger = logging.getLogger(__name__)

# latin-1 decodes any byte sequence, so it terminates the fallback chain
TEXT_ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")
CELL_SEPARATOR = " | "


@dataclass
class FormatResult:
    text: str
    page_count: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


class _TextBudget:
    """Running total of extracted characters for one document."""

    def __init__(self, limit: int = MAX_DECOMPRESSED_SIZE):
        self.limit = limit
        self.used = 0

    def spend(self, text: str) -> str:
        self.used += len(text)
        if self.used > self.limit:
            raise ValueError(
                f"Decompression bomb detected: extracted content exceeds "
                f"{self.limit // (1024 * 1024)}MB limit"
            )
        return text


def _decode(content: bytes) -> str:
    *attempts, fallback = TEXT_ENCODINGS
    for encoding in attempts:
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    return content.decode(fallback)


def _row(values: Iterable[Any]) -> str:
    """Non-empty cell values joined on one line ("" when the row is blank)."""
    cells = (str(value).strip() for value in values if value is not None)
    return CELL_SEPARATOR.join(cell for cell in cells if cell)


def _visible_lines(markup: str) -> str:
    from bs4 import BeautifulSoup

    soup = BeautifulSoup(markup, "html.parser")
    for element in soup(["script", "style", "head", "meta", "link", "noscript"]):
        element.decompose()
    lines = (line.strip() for line in soup.get_text(separator="\n").splitlines())
    return "\n".join(line for line in lines if line)


# =============================================================================
# TEXT FORMATS
# =============================================================================


def extract_plain_text(content: bytes) -> FormatResult:
    return FormatResult(text=_decode(content))


def extract_delimited(content: bytes, delimiter: str = ",") -> FormatResult:
    result = FormatResult(text="")
    lines = []
    for index, record in enumerate(csv.reader(io.StringIO(_decode(content)), delimiter=delimiter)):
        if index == MAX_SPREADSHEET_ROWS:
            result.warnings.append(f"Truncated at {MAX_SPREADSHEET_ROWS} rows")
            break
        line = _row(record)
        if line:
            lines.append(line)
    result.text = "\n".join(lines)
    return result


def extract_html(content: bytes) -> FormatResult:
    """Visible text; <title> becomes dc:title."""
    from bs4 import BeautifulSoup

    markup = _decode(content)
    title = BeautifulSoup(markup, "html.parser").title
    extra = {}
    if title is not None and title.string:
        extra["dc:title"] = title.string.strip()
    return FormatResult(text=_visible_lines(markup), extra=extra)


def extract_xml(content: bytes) -> FormatResult:
    return FormatResult(text=_visible_lines(_decode(content)))


def extract_rtf(content: bytes) -> FormatResult:
    from striprtf.striprtf import rtf_to_text

    return FormatResult(text=rtf_to_text(_decode(content)))


# =============================================================================
# OFFICE OPEN XML
# =============================================================================


def extract_docx(content: bytes) -> FormatResult:
    """Body paragraphs, then table rows; core properties as Dublin Core keys."""
    from docx import Document

    document = Document(io.BytesIO(content))
    budget = _TextBudget()

    blocks = [budget.spend(p.text.strip()) for p in document.paragraphs if p.text.strip()]
    for table in document.tables:
        for table_row in table.rows:
            line = _row(cell.text for cell in table_row.cells)
            if line:
                blocks.append(budget.spend(line))

    props = document.core_properties
    return FormatResult(
        text="\n\n".join(blocks),
        extra={
            "dc:title": props.title or None,
            "dc:creator": props.author or None,
            "dcterms:created": props.created.isoformat() if props.created else None,
            "dcterms:modified": props.modified.isoformat() if props.modified else None,
        },
    )


def extract_xlsx(content: bytes) -> FormatResult:
    """
    Cached cell values of every sheet, each introduced by a "[Sheet: name]"
    header. Empty sheets are listed in sheet-names but contribute no text.
    """
    from openpyxl import load_workbook

    workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    budget = _TextBudget()
    result = FormatResult(text="")
    sections = []
    try:
        names = list(workbook.sheetnames)
        for name in names:
            lines = []
            for index, values in enumerate(workbook[name].iter_rows(values_only=True)):
                if index == MAX_SPREADSHEET_ROWS:
                    result.warnings.append(f"Sheet '{name}' truncated at {MAX_SPREADSHEET_ROWS} rows")
                    break
                line = _row(values)
                if line:
                    lines.append(budget.spend(line))
            if lines:
                sections.append("\n".join([f"[Sheet: {name}]", *lines]))
    finally:
        workbook.close()

    result.text = "\n\n".join(sections)
    result.page_count = len(names)
    result.extra["sheet-names"] = names
    return result


def _slide_blocks(slide, budget: _TextBudget) -> List[str]:
    blocks = []
    for shape in slide.shapes:
        if getattr(shape, "has_text_frame", False):
            text = shape.text_frame.text.strip()
            if text:
                blocks.append(budget.spend(text))
        if getattr(shape, "has_table", False):
            for table_row in shape.table.rows:
                line = _row(cell.text for cell in table_row.cells)
                if line:
                    blocks.append(budget.spend(line))

    if slide.has_notes_slide and slide.notes_slide.notes_text_frame is not None:
        notes = slide.notes_slide.notes_text_frame.text.strip()
        if notes:
            blocks.append(budget.spend(f"[Notes: {notes}]"))
    return blocks


def extract_pptx(content: bytes) -> FormatResult:
    from pptx import Presentation

    presentation = Presentation(io.BytesIO(content))
    budget = _TextBudget()

    slides = []
    for number, slide in enumerate(presentation.slides, start=1):
        blocks = _slide_blocks(slide, budget)
        if blocks:
            slides.append("\n".join([f"[Slide {number}]", *blocks]))

    return FormatResult(text="\n\n".join(slides), page_count=len(presentation.slides))
