"""Tests for PDF utility functions."""
import fitz
import pytest

from conftest import PNG_SIGNATURE, make_pdf

from fapiao_parser.core.exceptions import InputError
from fapiao_parser.core.pdf_utils import get_page_count, open_pdf, render_last_page


class TestPDFUtils:
    """Test class for PDF utility functions."""

    def test_get_page_count(self):
        assert get_page_count(make_pdf(3), "three.pdf") == 3

    def test_open_pdf_closes_document(self):
        with open_pdf(make_pdf(1), "one.pdf") as doc:
            assert doc.page_count == 1
        assert doc.is_closed

    def test_render_last_page_returns_png(self):
        png_bytes = render_last_page(make_pdf(1), "one.pdf")
        assert png_bytes.startswith(PNG_SIGNATURE)

    def test_render_last_page_uses_final_page(self):
        """Test only the last page is rendered (pages have different widths)."""
        png_bytes = render_last_page(make_pdf(3), "three.pdf", scale=1.0)
        pixmap = fitz.Pixmap(png_bytes)
        assert pixmap.width == 600
        assert pixmap.height == 100

    def test_render_scale(self):
        png_bytes = render_last_page(make_pdf(1), "one.pdf", scale=2.0)
        pixmap = fitz.Pixmap(png_bytes)
        assert pixmap.width == 400

    def test_corrupted_pdf(self):
        with pytest.raises(InputError) as exc_info:
            get_page_count(b"This is not a valid PDF file", "broken.pdf")
        assert "broken.pdf" in str(exc_info.value)
