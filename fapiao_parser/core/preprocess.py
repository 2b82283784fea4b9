"""Normalization of uploaded files into model-ready image payloads."""
import asyncio
import logging
import mimetypes
from typing import Callable, List, Optional, Sequence

from .exceptions import InputError
from .models import EncodedImage, SourceFile
from .pdf_utils import render_last_page
from .spreadsheet import SPREADSHEET_SUFFIXES

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
DEFAULT_IMAGE_MIME_TYPE = "image/jpeg"

FileCallback = Callable[[int, int, str], None]


def detect_mime_type(source: SourceFile) -> str:
    """MIME type of a source: the declared one, else guessed from the name."""
    declared = (source.mime_type or "").split(";")[0].strip().lower()
    if declared and declared != "application/octet-stream":
        return declared
    guessed, _ = mimetypes.guess_type(source.name)
    return guessed or DEFAULT_IMAGE_MIME_TYPE


def is_pdf(source: SourceFile) -> bool:
    return source.suffix == ".pdf" or detect_mime_type(source) == PDF_MIME_TYPE


def encode_source_sync(source: SourceFile, pdf_render_scale: float = 2.0) -> EncodedImage:
    """
    Turn one input file into a base64 image payload.

    PDFs are rasterized (last page only); images are passed through as-is.

    Raises:
        InputError: If the file is empty, a spreadsheet, or an unreadable PDF
    """
    if not source.content:
        raise InputError("file is empty", source.name)

    if source.suffix in SPREADSHEET_SUFFIXES:
        raise InputError("spreadsheets are only accepted as the template file", source.name)

    if is_pdf(source):
        png_bytes = render_last_page(source.content, source.name, pdf_render_scale)
        return EncodedImage.from_bytes(source.name, "image/png", png_bytes)

    return EncodedImage.from_bytes(source.name, detect_mime_type(source), source.content)


async def encode_source(source: SourceFile, pdf_render_scale: float = 2.0) -> EncodedImage:
    """Encode one file in a worker thread."""
    return await asyncio.to_thread(encode_source_sync, source, pdf_render_scale)


async def encode_sources(
    sources: Sequence[SourceFile],
    pdf_render_scale: float = 2.0,
    on_file: Optional[FileCallback] = None,
) -> List[EncodedImage]:
    """
    Encode all files in input order.

    A single unreadable file aborts the whole call.

    Args:
        sources: Input files
        pdf_render_scale: Zoom factor for PDF rasterization
        on_file: Called as ``on_file(index, total, name)`` after each file

    Returns:
        Encoded images, same order as ``sources``
    """
    images: List[EncodedImage] = []
    total = len(sources)
    for index, source in enumerate(sources, start=1):
        image = await encode_source(source, pdf_render_scale)
        logger.debug(f"[PREPROCESS] {source.name} - encoded as {image.mime_type} ({index}/{total})")
        images.append(image)
        if on_file:
            on_file(index, total, source.name)
    return images
