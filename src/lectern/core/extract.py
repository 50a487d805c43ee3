"""PDF text extraction (PyMuPDF) and document download."""

import logging
import re
from typing import List

import fitz  # PyMuPDF
import httpx
from pydantic import BaseModel

from .errors import ExtractionFailed

logger = logging.getLogger(__name__)

_DISALLOWED_CHARS = re.compile(r"[^\w\s.,()\-:;]")
_BLANK_LINES = re.compile(r"\n\s*\n")
_SPACES = re.compile(r" +")


class ExtractedPage(BaseModel):
    """Text of one source page."""
    page: int  # 1-based
    text: str


def clean_text(text: str) -> str:
    """
    Normalize extracted text while keeping lecture terminology intact.

    Replaces anything other than word characters, whitespace and ``. , ( ) - : ;``
    with spaces, collapses blank-line runs into one paragraph break and runs
    of spaces into one, then trims.
    """
    text = _DISALLOWED_CHARS.sub(" ", text)
    text = _BLANK_LINES.sub("\n\n", text)
    text = _SPACES.sub(" ", text)
    return text.strip()


def extract_pages(data: bytes, clean: bool = True) -> List[ExtractedPage]:
    """
    Extract text per page from PDF bytes.

    Args:
        data: Raw document bytes
        clean: Whether to run :func:`clean_text` on every page

    Returns:
        Pages in document order; pages without a text layer have empty text

    Raises:
        ExtractionFailed: If the bytes are not a readable PDF
    """
    if not data:
        raise ExtractionFailed("Document is empty")

    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        # fitz.FileDataError is a RuntimeError
        raise ExtractionFailed(f"Cannot open PDF: {e}") from e

    try:
        # fitz sniffs the content and will happily open HTML, XPS or images
        if not doc.is_pdf:
            raise ExtractionFailed("Document is not a PDF")
        if doc.needs_pass:
            raise ExtractionFailed("PDF is password protected")
        if doc.page_count == 0:
            raise ExtractionFailed("PDF has no pages")

        pages = []
        for page_num in range(doc.page_count):
            try:
                text = doc[page_num].get_text()
            except RuntimeError as e:
                raise ExtractionFailed(f"Cannot read page {page_num + 1}: {e}") from e
            pages.append(ExtractedPage(page=page_num + 1, text=clean_text(text) if clean else text))
    finally:
        doc.close()

    logger.info(f"Extracted {len(pages)} pages")
    return pages


def fetch_document(url: str, timeout: float = 60.0) -> bytes:
    """
    Download a document.

    Raises:
        ExtractionFailed: On transport errors or a non-2xx response
    """
    try:
        response = httpx.get(url, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise ExtractionFailed(
            f"Failed to download PDF ({e.response.status_code})", source=url
        ) from e
    except httpx.HTTPError as e:
        raise ExtractionFailed(f"Failed to download PDF: {e}", source=url) from e

    logger.info(f"Downloaded {len(response.content)} bytes from {url}")
    return response.content
