"""Pytest configuration and fixtures."""

import asyncio
import io
from typing import Callable, Optional

import pytest
from PIL import Image

from medparse.config import Settings
from medparse.errors import ExtractionBackendUnavailableError
from medparse.models import OcrDocument, OcrPage, OcrPageMetadata, ParserModel
from medparse.parsers.base import (
    DocumentInput,
    DocumentParser,
    VisionInput,
    VisionParser,
    coerce_checkup_payload,
)
from medparse.parsers.registry import ParserRegistries, ParserRegistry
from medparse.storage import LocalObjectStore


def make_png(width: int = 40, height: int = 60, color: str = "white") -> bytes:
    """Encode a solid-color PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeDocumentParser(DocumentParser):
    """In-memory document parser returning canned page texts."""

    def __init__(
        self,
        page_texts: Optional[dict[str, str]] = None,
        default_text: str = "",
        enabled: bool = True,
        fail_with: Optional[Exception] = None,
    ):
        self.page_texts = page_texts or {}
        self.default_text = default_text
        self._enabled = enabled
        self.fail_with = fail_with
        self.ocr_calls: list[DocumentInput] = []
        self.parse_calls: list[DocumentInput] = []

    @property
    def name(self) -> str:
        return "FakeDoc"

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def list_models(self) -> list[ParserModel]:
        return [ParserModel(id="doc-model", name="Doc Model")]

    async def ocr(self, document: DocumentInput, model: ParserModel, api_key: str = "") -> OcrDocument:
        self.ocr_calls.append(document)
        if self.fail_with:
            raise self.fail_with
        return OcrDocument(
            pages=[OcrPage(id=0, width=100, height=100, text="ocr text")],
            metadata_pages=[OcrPageMetadata(page=1, width=100, height=100)],
            text="ocr text",
        )

    async def parse(self, document: DocumentInput, model: ParserModel, api_key: str = "") -> str:
        self.parse_calls.append(document)
        if self.fail_with:
            raise self.fail_with
        # Page keys end with `_{index}.{ext}`
        index = document.filename.rsplit("_", 1)[-1].split(".", 1)[0]
        return self.page_texts.get(index, self.default_text)


class FakeVisionParser(VisionParser):
    """Vision parser whose answers come from a callback.

    The callback receives the VisionInput and returns a `{name, date,
    test_result}` payload or raises.
    """

    def __init__(self, respond: Callable[[VisionInput], dict], delay: float = 0.0):
        self.respond = respond
        self.delay = delay
        self.calls: list[VisionInput] = []
        self.prompts = []

    @property
    def name(self) -> str:
        return "FakeVision"

    async def list_models(self, api_url: Optional[str] = None, api_key: str = "") -> list[ParserModel]:
        return [ParserModel(id="vision-model", name="Vision Model")]

    async def extract(self, model, prompt, page_input, api_key="", api_url=None):
        self.calls.append(page_input)
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        return coerce_checkup_payload(self.respond(page_input), page_input)


@pytest.fixture
def pipeline_settings(tmp_path):
    """Settings isolated from the environment."""
    return Settings(
        _env_file=None,
        upload_dir=str(tmp_path / "uploads"),
        public_url="http://testserver",
        default_vision_provider="FakeVision",
        default_vision_model="vision-model",
    )


@pytest.fixture
def store(tmp_path):
    """Local object store in a temporary directory."""
    return LocalObjectStore(root_dir=tmp_path / "uploads", public_url="http://testserver")


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def png_factory():
    """PNG encoder taking width, height and color."""
    return make_png


@pytest.fixture
def make_registries():
    """Build registries from fake providers."""

    def _make(document_parsers=(), vision_parsers=()):
        return ParserRegistries(
            document=ParserRegistry("document", document_parsers),
            vision=ParserRegistry("vision", vision_parsers),
        )

    return _make


@pytest.fixture
def unavailable_error():
    return ExtractionBackendUnavailableError("Docling timed out after 20s")


@pytest.fixture
def fake_document_parser():
    """FakeDocumentParser class."""
    return FakeDocumentParser


@pytest.fixture
def fake_vision_parser():
    """FakeVisionParser class."""
    return FakeVisionParser
