"""Tests for extraction backends and the parser registry."""

import io
from unittest.mock import AsyncMock, MagicMock, patch

import openai
import pytesseract
import pytest
from PIL import Image

from medparse.config import Settings
from medparse.errors import (
    ExtractionBackendError,
    InvalidModelSelectionError,
    InvalidParserSelectionError,
)
from medparse.models import ExtractionStrategy, ParserModel
from medparse.parsers import (
    DoclingDocumentParser,
    DocumentInput,
    OllamaVisionParser,
    OpenAIVisionParser,
    ParserRegistry,
    VisionInput,
    build_registries,
    coerce_checkup_payload,
    convert_coordinates,
    parse_json_content,
    resolve_model,
)
from medparse.parsers.document import (
    TesseractDocumentParser,
    convert_json_content,
    preprocess_for_ocr,
    words_from_data,
)
from medparse.pipeline.stage_prompt import build_prompt

IMAGE_DATA = "data:image/png;base64,aGVsbG8="


@pytest.fixture
def page_input():
    return VisionInput(
        page_index=0,
        strategy=ExtractionStrategy.TOTAL,
        context="Glucose 95 mg/dL",
        image_data=IMAGE_DATA,
    )


@pytest.fixture
def local_settings():
    return Settings(_env_file=None, deployment_env="local")


class TestConvertCoordinates:
    """Tests for bounding box conversion."""

    def test_flips_y_axis(self):
        polygon = convert_coordinates({"l": 10, "t": 80, "r": 50, "b": 70}, 100)

        assert [(v.x, v.y) for v in polygon.vertices] == [(10, 20), (50, 20), (50, 30), (10, 30)]

    def test_rounds_to_nearest(self):
        polygon = convert_coordinates({"l": 10.4, "t": 80.5, "r": 50.5, "b": 70.2}, 100)

        assert [(v.x, v.y) for v in polygon.vertices] == [(10, 20), (51, 20), (51, 30), (10, 30)]

    def test_missing_box(self):
        assert convert_coordinates(None, 100) is None


class TestConvertJsonContent:
    """Tests for Docling JSON conversion."""

    @pytest.fixture
    def json_content(self):
        return {
            "pages": {
                "1": {"size": {"width": 600, "height": 800}},
                "2": {"size": {"width": 600, "height": 800}},
            },
            "texts": [
                {"text": "Glucose", "prov": [{"page_no": 1, "bbox": {"l": 10, "t": 790, "r": 60, "b": 780}}]},
                {"text": "95 mg/dL", "prov": [{"page_no": 2, "bbox": {"l": 70, "t": 790, "r": 120, "b": 780}}]},
                {"text": "Footer", "prov": []},
            ],
        }

    def test_pages_and_words(self, json_content):
        result = convert_json_content(json_content)

        assert [page.id for page in result.pages] == [0, 1]
        assert [word.text for word in result.pages[0].words] == ["Glucose"]
        assert result.pages[0].words[0].bounding_box.vertices[0].y == 10
        assert result.pages[0].words[0].confidence == 0.98
        assert [meta.page for meta in result.metadata_pages] == [1, 2]

    def test_document_text_covers_all_pages(self, json_content):
        result = convert_json_content(json_content)

        assert result.text == "Glucose\n95 mg/dL"
        assert result.word_count == 2

    def test_skips_non_object_entries(self, json_content):
        json_content["texts"] = ["oops", {"text": "Glucose", "prov": ["bad", {"page_no": 1}]}]

        result = convert_json_content(json_content)

        assert [word.text for word in result.pages[0].words] == ["Glucose"]
        assert result.pages[0].words[0].bounding_box is None
        assert result.pages[1].words == []

    def test_empty_document(self):
        result = convert_json_content({})

        assert result.pages == []
        assert result.text == ""


class TestWordsFromData:
    """Tests for pytesseract output conversion."""

    def test_skips_structural_entries(self):
        data = {
            "text": ["", "Glucose", "  ", "95"],
            "conf": [-1, 96.0, -1, 88.5],
            "left": [0, 10, 0, 60],
            "top": [0, 20, 0, 20],
            "width": [0, 40, 0, 20],
            "height": [0, 10, 0, 10],
        }

        words = words_from_data(data, page_height=100)

        assert [(word.id, word.text) for word in words] == [(0, "Glucose"), (1, "95")]
        assert words[0].confidence == pytest.approx(0.96)
        assert [(v.x, v.y) for v in words[0].bounding_box.vertices] == [(10, 20), (50, 20), (50, 30), (10, 30)]


class TestParseJsonContent:
    def test_plain_json(self):
        assert parse_json_content('{"name": "Jan"}') == {"name": "Jan"}

    def test_code_fence(self):
        assert parse_json_content('```json\n{"date": "2024-01-01"}\n```') == {"date": "2024-01-01"}

    def test_invalid_json(self):
        with pytest.raises(ExtractionBackendError):
            parse_json_content("The patient is healthy.")

    def test_non_object(self):
        with pytest.raises(ExtractionBackendError):
            parse_json_content("[1, 2, 3]")


class TestCoerceCheckupPayload:
    """Tests for relaxed parsing of model answers."""

    def test_keeps_all_test_names(self, page_input):
        result = coerce_checkup_payload(
            {
                "name": "Jan Kowalski",
                "date": "02.01.2024",
                "test_result": {
                    "Hemoglobina": {"value": 13.5, "unit": "g/dl", "reference": "12-16"},
                    "Glukoza": "95",
                    "ALT": None,
                    "Broken": ["not", "an", "entry"],
                },
            },
            page_input,
        )

        assert result.name == "Jan Kowalski"
        assert result.test_result["Hemoglobina"].value == "13.5"
        assert result.test_result["Hemoglobina"].category == ""
        assert result.test_result["Glukoza"].value == "95"
        assert result.test_result["ALT"] is None
        assert result.test_result["Broken"] is None
        assert result.text_content == "Glucose 95 mg/dL"

    def test_missing_test_result(self, page_input):
        result = coerce_checkup_payload({"name": None, "date": 2024}, page_input)

        assert result.test_result == {}
        assert result.name is None
        assert result.date == "2024"


class TestParserRegistry:
    """Tests for name-keyed provider lookup."""

    def test_get_unknown_parser(self, fake_vision_parser):
        registry = ParserRegistry("vision", [fake_vision_parser(lambda _: {})])

        with pytest.raises(InvalidParserSelectionError) as exc_info:
            registry.get("Missing")

        assert exc_info.value.details["available"] == ["FakeVision"]

    def test_duplicate_names(self, fake_vision_parser):
        with pytest.raises(ValueError):
            ParserRegistry("vision", [fake_vision_parser(lambda _: {}), fake_vision_parser(lambda _: {})])

    def test_available_filters_disabled(self, fake_document_parser):
        registry = ParserRegistry("document", [fake_document_parser(enabled=False)])

        assert "FakeDoc" in registry
        assert registry.available() == []

    @pytest.mark.asyncio
    async def test_resolve_model(self, fake_vision_parser):
        parser = fake_vision_parser(lambda _: {})

        model = await resolve_model(parser, "vision-model")

        assert model == ParserModel(id="vision-model", name="Vision Model")

    @pytest.mark.asyncio
    async def test_resolve_unknown_model(self, fake_vision_parser):
        with pytest.raises(InvalidModelSelectionError) as exc_info:
            await resolve_model(fake_vision_parser(lambda _: {}), "gpt-9")

        assert exc_info.value.details["available"] == ["vision-model"]

    def test_build_registries(self):
        registries = build_registries(Settings(_env_file=None, deployment_env="production"))

        assert registries.document.names() == ["Docling", "Tesseract"]
        assert registries.vision.names() == ["Ollama", "OpenAI"]
        assert not registries.document.get("Docling").enabled
        assert [parser.name for parser in registries.vision.available()] == ["OpenAI"]


class TestDoclingDocumentParser:
    """Tests for the Docling provider."""

    @pytest.fixture
    def parser(self, local_settings):
        return DoclingDocumentParser(local_settings, base_url="http://docling:5001/")

    def test_describe(self, parser):
        descriptor = parser.describe()

        assert descriptor.name == "Docling"
        assert descriptor.kind == "document"
        assert descriptor.enabled
        assert not descriptor.api_key_required
        assert parser.base_url == "http://docling:5001"

    @pytest.mark.asyncio
    async def test_ocr(self, parser):
        response = {
            "document": {
                "json_content": {
                    "pages": {"1": {"size": {"width": 100, "height": 200}}},
                    "texts": [{"text": "CRP", "prov": [{"page_no": 1, "bbox": {"l": 1, "t": 190, "r": 20, "b": 180}}]}],
                }
            }
        }
        with patch.object(parser, "_convert", new=AsyncMock(return_value=response)) as mock_convert:
            result = await parser.ocr(DocumentInput(data=b"%PDF", filename="a.pdf"), ParserModel(id="document-parse", name="x"))

        assert result.text == "CRP"
        mock_convert.assert_awaited_once()
        assert mock_convert.await_args.kwargs == {"to_format": "json", "force_ocr": False}

    @pytest.mark.asyncio
    async def test_parse_markdown(self, parser):
        response = {"document": {"md_content": "| Test | Value |\n| CRP | 4 |"}}
        with patch.object(parser, "_convert", new=AsyncMock(return_value=response)):
            markdown = await parser.parse(DocumentInput(data=b"png", filename="a_0.png"), ParserModel(id="document-parse", name="x"))

        assert markdown.startswith("| Test | Value |")

    @pytest.mark.asyncio
    async def test_unexpected_response(self, parser):
        with patch.object(parser, "_convert", new=AsyncMock(return_value={"status": "failure"})):
            with pytest.raises(ExtractionBackendError):
                await parser.parse(DocumentInput(data=b"png", filename="a_0.png"), ParserModel(id="document-parse", name="x"))

    @pytest.mark.asyncio
    async def test_malformed_json_content(self, parser):
        """A json_content that is not an object is a backend error."""
        response = {"document": {"json_content": ["oops"]}}
        with patch.object(parser, "_convert", new=AsyncMock(return_value=response)):
            with pytest.raises(ExtractionBackendError):
                await parser.ocr(DocumentInput(data=b"%PDF", filename="a.pdf"), ParserModel(id="document-parse", name="x"))


class TestOllamaVisionParser:
    """Tests for the Ollama provider."""

    @pytest.fixture
    def parser(self, local_settings):
        return OllamaVisionParser(local_settings, api_url="http://ollama:11434")

    def test_build_messages(self, parser, page_input):
        prompt = build_prompt("en", include_text=True, include_image=True)

        messages = parser.build_messages(prompt, page_input)

        assert messages[0] == {"role": "system", "content": prompt.system_prompt}
        assert "Glucose 95 mg/dL" in messages[1]["content"]
        assert "{context}" not in messages[1]["content"]
        assert messages[1]["images"] == ["aGVsbG8="]

    def test_build_messages_without_image(self, parser):
        page_input = VisionInput(page_index=0, strategy=ExtractionStrategy.TEXT_ONLY, context="ALT 22")
        prompt = build_prompt("en", include_text=True, include_image=False)

        messages = parser.build_messages(prompt, page_input)

        assert "images" not in messages[1]

    @pytest.mark.asyncio
    async def test_list_models(self, parser):
        tags = {"models": [{"name": "qwen3:8b", "model": "qwen3:8b"}, {"name": "llava", "model": "llava:latest"}]}
        with patch.object(parser, "_request_json", new=AsyncMock(return_value=tags)) as mock_request:
            models = await parser.list_models()

        assert [model.id for model in models] == ["qwen3:8b", "llava:latest"]
        mock_request.assert_awaited_once_with("GET", "http://ollama:11434/api/tags")

    @pytest.mark.asyncio
    async def test_extract(self, parser, page_input):
        answer = {"message": {"content": '{"name": "Jan", "date": "", "test_result": {"Glucose": {"value": 95, "unit": "mg/dL"}}}'}}
        with patch.object(parser, "_request_json", new=AsyncMock(return_value=answer)) as mock_request:
            result = await parser.extract(ParserModel(id="qwen3:8b", name="qwen3:8b"), build_prompt("en"), page_input)

        method, url, payload = mock_request.await_args.args
        assert (method, url) == ("POST", "http://ollama:11434/api/chat")
        assert payload["format"] == "json"
        assert payload["stream"] is False
        assert result.test_result["Glucose"].value == "95"
        assert result.strategy == ExtractionStrategy.TOTAL

    @pytest.mark.asyncio
    async def test_extract_malformed_response(self, parser, page_input):
        with patch.object(parser, "_request_json", new=AsyncMock(return_value={"error": "model not found"})):
            with pytest.raises(ExtractionBackendError):
                await parser.extract(ParserModel(id="x", name="x"), build_prompt("en"), page_input)


class TestOpenAIVisionParser:
    """Tests for the OpenAI provider."""

    @pytest.fixture
    def parser(self):
        return OpenAIVisionParser(Settings(_env_file=None, openai_api_key="sk-test"))

    def test_requires_api_key(self, parser):
        assert parser.api_key_required
        assert not parser.api_url_required

    def test_build_messages_with_image(self, parser, page_input):
        messages = parser.build_messages(build_prompt("en"), page_input)

        content = messages[1]["content"]
        assert content[0]["type"] == "text"
        assert content[1] == {"type": "image_url", "image_url": {"url": IMAGE_DATA}}

    def test_build_messages_text_only(self, parser):
        page_input = VisionInput(page_index=0, strategy=ExtractionStrategy.TEXT_ONLY, context="ALT 22")

        messages = parser.build_messages(build_prompt("en", include_image=False), page_input)

        assert isinstance(messages[1]["content"], str)

    @pytest.mark.asyncio
    async def test_extract(self, parser, page_input):
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.content = '{"name": "Anna", "date": "2024-05-01", "test_result": {}}'

        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=response)
        client.close = AsyncMock()

        with patch("medparse.parsers.vision.openai_vision.AsyncOpenAI", return_value=client):
            result = await parser.extract(ParserModel(id="gpt-4o", name="gpt-4o"), build_prompt("en"), page_input)

        assert result.name == "Anna"
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_api_error(self, parser, page_input):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=openai.OpenAIError("quota exceeded"))
        client.close = AsyncMock()

        with patch("medparse.parsers.vision.openai_vision.AsyncOpenAI", return_value=client):
            with pytest.raises(ExtractionBackendError):
                await parser.extract(ParserModel(id="gpt-4o", name="gpt-4o"), build_prompt("en"), page_input)


class TestTesseractDocumentParser:
    """Tests for the local Tesseract provider."""

    @pytest.fixture
    def parser(self, local_settings):
        return TesseractDocumentParser(local_settings, preprocess=True)

    def test_preprocess_returns_grayscale(self, png_factory):
        image = Image.open(io.BytesIO(png_factory(30, 20, "gray")))

        processed = preprocess_for_ocr(image)

        assert processed.mode == "L"
        assert processed.size == (30, 20)

    @pytest.mark.asyncio
    @patch("medparse.parsers.document.tesseract.pytesseract.image_to_data")
    async def test_ocr(self, mock_image_to_data, parser, png_factory):
        mock_image_to_data.return_value = {
            "text": ["Glucose", "95"],
            "conf": [91.0, 87.0],
            "left": [1, 20],
            "top": [2, 2],
            "width": [15, 5],
            "height": [4, 4],
        }

        result = await parser.ocr(
            DocumentInput(data=png_factory(40, 60), filename="wyniki_pl.png", mime="image/png"),
            ParserModel(id="tesseract", name="Tesseract OCR"),
        )

        assert result.text == "Glucose 95"
        assert result.pages[0].height == 60
        assert mock_image_to_data.call_args.kwargs["lang"] == "pol+eng"

    @pytest.mark.asyncio
    @patch("medparse.parsers.document.tesseract.pytesseract.image_to_string")
    async def test_tesseract_missing(self, mock_image_to_string, parser, png_factory):
        mock_image_to_string.side_effect = pytesseract.TesseractNotFoundError()

        with pytest.raises(ExtractionBackendError):
            await parser.parse(
                DocumentInput(data=png_factory(), filename="scan.png", mime="image/png"),
                ParserModel(id="tesseract", name="Tesseract OCR"),
            )


class TestDoclingHealth:
    @pytest.mark.asyncio
    async def test_unreachable_backend(self, local_settings):
        parser = DoclingDocumentParser(local_settings, base_url="http://127.0.0.1:9")

        status = await parser.health()

        assert status["ok"] is False
        assert status["url"] == "http://127.0.0.1:9"
