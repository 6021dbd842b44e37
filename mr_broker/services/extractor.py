# =============================================================================
# Text Extractor - Docs, Slides, Sheets and PDFs to Plain Text
# =============================================================================
#
# Turns one tenant document into plain text for the chunker.
#
# Per type:
#   - Google Docs: plain-text export
#   - Google Slides: every text run of every shape, one block per shape
#   - Google Sheets: first 3 sheets, cells A1:Z100, comma-joined rows
#   - PDF: ordered strategy chain (see below)
#   - anything else: ExtractionError("unsupported type")
#
# PDF STRATEGY CHAIN:
# 1. pypdf text layer - fast, no models, works for born-digital PDFs
# 2. Docling layout pipeline, page by page - slower, handles scanned pages
#    and complex layouts
# The first strategy producing non-blank text wins. When all fail, a single
# ExtractionError lists every strategy's reason, so "empty document" and
# "tooling failed" stay distinguishable. A PDF never returns "" silently.
#
# Page tracking: for PDFs (pages) and decks (slides) the result carries the
# character offset at which each page starts, for chunk page attribution.
# =============================================================================

from __future__ import annotations

import io
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from docling.datamodel.base_models import DocumentStream, InputFormat
from docling.datamodel.pipeline_options import PdfPipelineOptions
from docling.document_converter import DocumentConverter, PdfFormatOption
from docling_core.types.doc.labels import DocItemLabel
from pypdf import PdfReader

from mr_broker.errors import ExtractionError
from mr_broker.services.document_store import (
    GOOGLE_DOC_MIME,
    GOOGLE_SHEET_MIME,
    GOOGLE_SLIDES_MIME,
    PDF_MIME,
    DocumentFile,
    DocumentStore,
)

logger = logging.getLogger(__name__)

PAGE_SEPARATOR = "\n\n"
MAX_SHEETS = 3
SHEET_RANGE = "A1:Z100"


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ExtractedText:
    """Plain text of one document plus the start offset of every page."""

    text: str
    page_starts: list[int] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract_text(store: DocumentStore, file: DocumentFile) -> str:
    """Plain text of `file`. See extract_document()."""
    return extract_document(store, file).text


def extract_document(store: DocumentStore, file: DocumentFile) -> ExtractedText:
    """
    Extract the text of one document.

    Args:
        store: Where the document's content is read from.
        file: The document descriptor (id and mime type are used).

    Returns:
        ExtractedText with non-blank text.

    Raises:
        ExtractionError: Unsupported type, no text, or every PDF strategy failed.
        DocumentStoreError: The store could not be read.
    """
    if file.mime_type == PDF_MIME:
        return extract_pdf(store.get_content(file.id), name=file.name)

    if file.mime_type == GOOGLE_DOC_MIME:
        extracted = ExtractedText(store.export_as_text(file.id).lstrip("\ufeff"))
    elif file.mime_type == GOOGLE_SLIDES_MIME:
        extracted = slides_to_text(store.get_presentation(file.id))
    elif file.mime_type == GOOGLE_SHEET_MIME:
        extracted = ExtractedText(
            sheets_to_text(store.get_sheet_values(file.id, MAX_SHEETS, SHEET_RANGE))
        )
    else:
        raise ExtractionError(f"unsupported type: {file.mime_type or 'unknown'}")

    if not extracted.text.strip():
        raise ExtractionError("no text")

    logger.info(
        "Extracted %d chars from '%s' (%s)", len(extracted.text), file.name, file.mime_type
    )
    return extracted


# ---------------------------------------------------------------------------
# Slides and Sheets
# ---------------------------------------------------------------------------


def slides_to_text(presentation: dict) -> ExtractedText:
    """Concatenate the text runs of every shape, one blank line between shapes."""
    slide_texts = []
    for slide in presentation.get("slides", []):
        blocks = []
        for element in slide.get("pageElements", []):
            runs = element.get("shape", {}).get("text", {}).get("textElements", [])
            text = "".join(run.get("textRun", {}).get("content", "") for run in runs)
            if text.strip():
                blocks.append(text.strip())
        slide_texts.append(PAGE_SEPARATOR.join(blocks))
    return join_pages(slide_texts)


def sheets_to_text(sheets: Sequence[Sequence[Sequence[str]]]) -> str:
    """One block per sheet, rows joined with ", "; sheets without rows omitted."""
    blocks = ["\n".join(", ".join(row) for row in rows) for rows in sheets]
    return PAGE_SEPARATOR.join(block for block in blocks if block)


def join_pages(pages: Sequence[str]) -> ExtractedText:
    """
    Join per-page texts with a blank line, skipping blank pages, and record
    where each page (blank or not) starts in the joined text.
    """
    parts: list[str] = []
    starts: list[int] = []
    cursor = 0
    for page in pages:
        text = page.strip()
        offset = cursor + (len(PAGE_SEPARATOR) if parts else 0)
        starts.append(offset)
        if text:
            parts.append(text)
            cursor = offset + len(text)
    return ExtractedText(PAGE_SEPARATOR.join(parts), starts)


# ---------------------------------------------------------------------------
# PDF Strategy Chain
# ---------------------------------------------------------------------------


def _pdf_text_layer(data: bytes, name: str) -> ExtractedText:
    reader = PdfReader(io.BytesIO(data))
    return join_pages([page.extract_text() or "" for page in reader.pages])


_converter: DocumentConverter | None = None


def _get_converter() -> DocumentConverter:
    """Lazily initialize and cache the Docling DocumentConverter."""
    global _converter
    if _converter is None:
        logger.info("Initializing Docling DocumentConverter (first use)...")
        pipeline_options = PdfPipelineOptions()
        pipeline_options.do_table_structure = True
        pipeline_options.do_ocr = True
        _converter = DocumentConverter(
            format_options={
                InputFormat.PDF: PdfFormatOption(pipeline_options=pipeline_options),
            }
        )
    return _converter


def _pdf_layout(data: bytes, name: str) -> ExtractedText:
    result = _get_converter().convert(DocumentStream(name=name, stream=io.BytesIO(data)))
    document = result.document

    by_page: dict[int, list[str]] = {}
    for item, _level in document.iterate_items():
        if not getattr(item, "prov", None):
            continue
        if getattr(item, "label", None) == DocItemLabel.TABLE:
            text = item.export_to_markdown(doc=document)
        else:
            text = getattr(item, "text", "")
        if text and text.strip():
            by_page.setdefault(item.prov[0].page_no, []).append(text.strip())

    page_count = max(by_page, default=0)
    return join_pages([
        PAGE_SEPARATOR.join(by_page.get(page_no, []))
        for page_no in range(1, page_count + 1)
    ])


PdfStrategy = Callable[[bytes, str], ExtractedText]

PDF_STRATEGIES: list[tuple[str, PdfStrategy]] = [
    ("text-layer", _pdf_text_layer),
    ("layout", _pdf_layout),
]


def extract_pdf(
    data: bytes,
    name: str = "document.pdf",
    strategies: Sequence[tuple[str, PdfStrategy]] | None = None,
) -> ExtractedText:
    """
    Run the PDF strategies in order and return the first non-blank result.

    Raises:
        ExtractionError: Every strategy raised or produced blank text.
    """
    failures: list[str] = []
    for label, strategy in strategies or PDF_STRATEGIES:
        try:
            extracted = strategy(data, name)
        except Exception as exc:
            logger.warning("PDF strategy '%s' failed for '%s': %s", label, name, exc)
            failures.append(f"{label}: {exc}")
            continue

        if extracted.text.strip():
            logger.info(
                "Extracted %d chars from '%s' (strategy=%s)",
                len(extracted.text), name, label,
            )
            return extracted
        failures.append(f"{label}: no text")

    raise ExtractionError("PDF text extraction failed (" + "; ".join(failures) + ")")
