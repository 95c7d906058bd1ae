from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import List

import fitz

from notegenie.core.config import settings

logger = logging.getLogger("parser")

PDF_MIME = "application/pdf"
PAGINATED_MIME_TYPES = {PDF_MIME}


@dataclass(frozen=True)
class ParsedPage:
    page_number: int
    text: str


@dataclass(frozen=True)
class ExtractedText:
    """Ordered page texts. Empty means extraction failed; callers go multimodal."""

    pages: List[ParsedPage] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.pages)

    def __len__(self) -> int:
        return len(self.pages)

    @property
    def text(self) -> str:
        return "".join(f"--- Page {p.page_number} ---\n{p.text}\n\n" for p in self.pages)


@dataclass(frozen=True)
class Document:
    data: bytes
    mime_type: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def is_paginated(self) -> bool:
        return (self.mime_type or "").lower() in PAGINATED_MIME_TYPES


def sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def configure_extractor() -> None:
    """
    One-time PyMuPDF setup, called by the hosting app before first use.
    Broken PDFs are an expected input; keep MuPDF from printing to stderr.
    """
    fitz.TOOLS.mupdf_display_errors(False)
    fitz.TOOLS.mupdf_display_warnings(False)


def parse_pdf_bytes(data: bytes, max_pages: int) -> List[ParsedPage]:
    doc = fitz.open(stream=data, filetype="pdf")
    pages: List[ParsedPage] = []
    try:
        for i in range(min(doc.page_count, max_pages)):
            page = doc.load_page(i)
            text = " ".join((page.get_text("text") or "").split())
            if text:
                pages.append(ParsedPage(page_number=i + 1, text=text))
    finally:
        doc.close()
    return pages


def extract_text(document: Document, max_pages: int = 0) -> ExtractedText:
    """
    Best-effort text for paginated documents, capped at max_pages
    (settings.max_pages by default). Never raises: other mime types and
    decode failures both return an empty ExtractedText.
    """
    if not document.is_paginated:
        return ExtractedText()

    cap = max_pages or settings.max_pages
    try:
        pages = parse_pdf_bytes(document.data, max_pages=cap)
    except Exception:
        logger.warning(
            "pdf extraction failed size=%s, falling back to multimodal", document.size_bytes, exc_info=True
        )
        return ExtractedText()

    logger.info("pdf extracted pages=%s cap=%s", len(pages), cap)
    return ExtractedText(pages=pages)
