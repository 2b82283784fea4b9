"""Shared fixtures: recorded model replies and a scripted model client."""
import json
import logging
from pathlib import Path
from typing import Callable, List, Optional

import fitz
import pytest

from fapiao_parser.config import Settings
from fapiao_parser.core.models import SourceFile
from fapiao_parser.logging_config import LIBRARY_LEVELS
from fapiao_parser.prompts import TaskKind

FIXTURES_DIR = Path(__file__).parent / "fixtures"
with open(FIXTURES_DIR / "mock_responses.json", encoding="utf-8") as f:
    MOCK_RESPONSES = json.load(f)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def make_pdf(page_count: int, width: float = 200, height: float = 100) -> bytes:
    """PDF whose page n is n times as wide as the first."""
    doc = fitz.open()
    for number in range(1, page_count + 1):
        page = doc.new_page(width=width * number, height=height)
        page.insert_text((20, 50), f"Page {number}")
    pdf_bytes = doc.tobytes()
    doc.close()
    return pdf_bytes


def envelope(text: str) -> dict:
    """Wrap reply text the way the multimodal endpoint does."""
    return {
        "output": {
            "choices": [
                {"finish_reason": "stop", "message": {"role": "assistant", "content": [{"text": text}]}}
            ]
        },
        "request_id": "test-request",
    }


def echo_records(images) -> dict:
    """Extraction reply with one record per image, seller set to the file name."""
    return envelope(json.dumps(
        [{"seller": image.source_name, "amount": 10, "date": "2024-01-01",
          "items": [{"name": "服务", "category": "餐饮"}]} for image in images],
        ensure_ascii=False,
    ))


class FakeModelClient:
    """Stands in for ModelClient; replies are produced by callables keyed on the task."""

    def __init__(
        self,
        extract: Optional[Callable] = None,
        aggregate: Optional[Callable] = None,
    ):
        self.extract = extract or (lambda images, stage: echo_records(images))
        self.aggregate = aggregate or (lambda prompt: MOCK_RESPONSES["aggregation"])
        self.calls: List[dict] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    async def generate(self, images, prompt, *, task, stage, token=None):
        self.calls.append({"images": list(images), "prompt": prompt, "task": task, "stage": stage, "token": token})
        if task == TaskKind.EXTRACT:
            return self.extract(images, stage)
        return self.aggregate(prompt)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        api_token="test-token",
        batch_size=8,
        responses_directory=tmp_path / "responses",
        output_directory=tmp_path / "output",
        logs_directory=tmp_path / "logs",
    )


@pytest.fixture
def image_files():
    """Seventeen tiny 'images'; content is passed through untouched."""
    return [SourceFile(name=f"fapiao_{i:02d}.png", content=f"image-{i}".encode(), mime_type="image/png")
            for i in range(17)]


@pytest.fixture
def restore_logging():
    """Undo setup_logging so later tests see the default logging tree."""
    yield
    for name in ("fapiao_parser", *LIBRARY_LEVELS):
        configured = logging.getLogger(name)
        for handler in configured.handlers[:]:
            configured.removeHandler(handler)
            handler.close()
        configured.propagate = True
        configured.setLevel(logging.NOTSET)
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
