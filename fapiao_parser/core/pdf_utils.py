"""PDF rasterization helpers.

All functions are synchronous and side-effect free; callers run them in a
worker thread so the event loop is not blocked while pages render.
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager

import fitz  # PyMuPDF

from .exceptions import InputError

logger = logging.getLogger(__name__)


@contextmanager
def open_pdf(pdf_bytes: bytes, name: str) -> Generator[fitz.Document, None, None]:
    """Context manager that opens PDF bytes and always closes the document.

    Args:
        pdf_bytes: Raw PDF file content
        name: File name used in error messages

    Yields:
        Opened PDF document

    Raises:
        InputError: If the PDF is corrupted or has no pages
    """
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as e:
        raise InputError("PDF file is corrupted or unreadable", name, e)

    try:
        if doc.page_count == 0:
            raise InputError("PDF has no pages", name)
        yield doc
    finally:
        doc.close()


def get_page_count(pdf_bytes: bytes, name: str) -> int:
    """Get the total number of pages in a PDF."""
    with open_pdf(pdf_bytes, name) as doc:
        return doc.page_count


def render_last_page(pdf_bytes: bytes, name: str, scale: float = 2.0) -> bytes:
    """Rasterize a PDF to a PNG image of its last page.

    Only one image is produced per PDF: when a document has several pages,
    earlier pages are not sent to the model. Multi-page invoices therefore
    lose everything but their final page.

    Args:
        pdf_bytes: Raw PDF file content
        name: File name used in error messages and logs
        scale: Zoom factor applied to the page (2.0 roughly doubles 72 DPI)

    Returns:
        PNG bytes of the last page

    Raises:
        InputError: If the PDF cannot be opened or rendered
    """
    with open_pdf(pdf_bytes, name) as doc:
        if doc.page_count > 1:
            logger.warning(
                f"[PREPROCESS] {name} has {doc.page_count} pages; only the last page is sent to the model"
            )
        try:
            page = doc.load_page(doc.page_count - 1)
            pixmap = page.get_pixmap(matrix=fitz.Matrix(scale, scale))
            return pixmap.tobytes("png")
        except Exception as e:
            raise InputError("unable to render PDF page", name, e)
