# ============================================================================
# src/care_ingestion/extractors/pdf.py
# ============================================================================
"""
Local PDF handling.

Text extraction:
1. pypdfium2: fast, good Unicode support
2. pdfplumber: fallback for PDFs pdfium cannot read

Page rendering (scanned PDFs with no text layer):
- pymupdf renders the first pages to PNG for the vision model
"""

import io
import logging
from typing import List

import pdfplumber
import pymupdf
import pypdfium2

from ..config import ai_settings
from ..utils.exceptions import DocumentConversionError

logger = logging.getLogger(__name__)


def extract_pdf_text(pdf_bytes: bytes) -> str:
    """
    Extract the text layer of a PDF.

    Returns "" when no extractor can read the file, so callers fall back
    to page rendering instead of failing the job.
    """
    try:
        return _extract_with_pypdfium2(pdf_bytes)
    except Exception as e:
        logger.warning(f"pypdfium2 failed, trying pdfplumber: {e}")

    try:
        return _extract_with_pdfplumber(pdf_bytes)
    except Exception as e:
        logger.warning(f"pdfplumber failed, no text layer available: {e}")
        return ""


def _extract_with_pypdfium2(pdf_bytes: bytes) -> str:
    pdf = pypdfium2.PdfDocument(pdf_bytes)
    try:
        pages = []
        for i in range(len(pdf)):
            page = pdf[i]
            textpage = page.get_textpage()
            pages.append(textpage.get_text_range())
            textpage.close()
            page.close()
        return "\n\n".join(pages)
    finally:
        pdf.close()


def _extract_with_pdfplumber(pdf_bytes: bytes) -> str:
    with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
        return "\n\n".join(page.extract_text() or "" for page in pdf.pages)


def render_pdf_pages(
    pdf_bytes: bytes,
    max_pages: int = ai_settings.PDF_MAX_PAGES,
    dpi: int = ai_settings.PDF_RENDER_DPI
) -> List[bytes]:
    """
    Render up to `max_pages` pages to PNG.

    Raises:
        DocumentConversionError: the PDF cannot be opened or has no pages
    """
    try:
        doc = pymupdf.open(stream=pdf_bytes, filetype="pdf")
    except Exception as e:
        raise DocumentConversionError(f"PDF could not be opened for rendering: {e}") from e

    try:
        images = []
        matrix = pymupdf.Matrix(dpi / 72, dpi / 72)
        for page_num in range(min(len(doc), max_pages)):
            pix = doc[page_num].get_pixmap(matrix=matrix)
            images.append(pix.tobytes("png"))
    except Exception as e:
        raise DocumentConversionError(f"PDF page rendering failed: {e}") from e
    finally:
        doc.close()

    if not images:
        raise DocumentConversionError("PDF has no pages to render")

    logger.info(f"Rendered {len(images)} PDF page(s) at {dpi} DPI")
    return images
