"""
Shared Test Fixtures for the Formatting Pipeline Tests

This file contains:
- FastAPI TestClient setup
- Fake model collaborators (text + vision)
- Test image and document generators
"""
import io
import json
import os
import sys
from typing import Generator, AsyncGenerator, List, Optional, Sequence
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport

# Add app to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import Settings
from app.main import app
from app.models.schemas import MimeClass


# ═══════════════════════════════════════════════════════════════
# FAKE COLLABORATORS
# ═══════════════════════════════════════════════════════════════

class FakeRateLimitError(Exception):
    """Looks like an HTTP 429 from a model API."""
    status_code = 429


class FakeTextGenerator:
    """Replays canned responses; exceptions in the script are raised."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return item


class FakeVisionGenerator:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: List[MimeClass] = []

    async def generate(self, image: bytes, mime_class: MimeClass, prompt: str) -> str:
        self.calls.append(mime_class)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return item


class SleepRecorder:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# ═══════════════════════════════════════════════════════════════
# SETTINGS FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def settings() -> Settings:
    """Settings with a formatting key and no vision key."""
    return Settings(_env_file=None, openai_api_key="test-key", vision_api_key=None)


@pytest.fixture
def vision_settings() -> Settings:
    """Settings with both credentials configured."""
    return Settings(_env_file=None, openai_api_key="test-key", vision_api_key="test-vision-key")


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


# ═══════════════════════════════════════════════════════════════
# FASTAPI CLIENT FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Synchronous FastAPI test client."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    """Asynchronous FastAPI test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def use_pipeline():
    """Route the API through a given pipeline instance."""
    patchers = []

    def _use(pipeline):
        patcher = patch("app.main.get_formatting_pipeline", return_value=pipeline)
        patcher.start()
        patchers.append(patcher)
        return pipeline

    yield _use
    for patcher in patchers:
        patcher.stop()


# ═══════════════════════════════════════════════════════════════
# IMAGE FIXTURES
# ═══════════════════════════════════════════════════════════════

def make_image(fmt: str, width: int, height: int, **save_kwargs) -> bytes:
    """Create real image bytes with Pillow."""
    from PIL import Image
    img = Image.new("RGB", (width, height), (40, 120, 200))
    buffer = io.BytesIO()
    img.save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return make_image("PNG", 320, 200)


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image("JPEG", 800, 600)


# ═══════════════════════════════════════════════════════════════
# DOCUMENT FIXTURES
# ═══════════════════════════════════════════════════════════════

def build_docx(
    paragraphs: Sequence[str] = (),
    table_rows: Optional[Sequence[Sequence[str]]] = None,
    images: Sequence[bytes] = (),
) -> bytes:
    """Create a .docx with python-docx."""
    from docx import Document
    from docx.shared import Inches

    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    if table_rows:
        table = doc.add_table(rows=len(table_rows), cols=max(len(row) for row in table_rows))
        for r, row in enumerate(table_rows):
            for c, value in enumerate(row):
                table.cell(r, c).text = value
    for data in images:
        doc.add_picture(io.BytesIO(data), width=Inches(1))

    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


def read_docx(data: bytes):
    from docx import Document
    return Document(io.BytesIO(data))


@pytest.fixture
def hello_docx() -> bytes:
    return build_docx(paragraphs=["Hello world"])


@pytest.fixture
def rich_docx(png_bytes) -> bytes:
    """Document with text, one table and one image."""
    return build_docx(
        paragraphs=["Quarterly Report", "Revenue grew in every region."],
        table_rows=[["Region", "Q1"], ["North", "10"], ["South", "12"]],
        images=[png_bytes],
    )


@pytest.fixture
def plan_json() -> str:
    """A model response that mentions no images."""
    return json.dumps({
        "title": "Quarterly Report",
        "sections": [
            {
                "heading": "Overview",
                "elements": [
                    {"type": "text", "content": "Revenue grew in every region.", "style": "paragraph"},
                    {"type": "table", "tableIndex": 0, "title": "Revenue by Region"},
                ],
            }
        ],
    })
