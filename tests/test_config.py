"""Tests for settings, errors and logging setup."""

import logging

from rich.logging import RichHandler

from medparse.config import Settings
from medparse.errors import (
    ExtractionBackendError,
    ExtractionBackendUnavailableError,
    InvalidParserSelectionError,
    MedParseError,
    ParserSelectionError,
    UnsupportedFormatError,
)
from medparse.log import setup_logging


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self, monkeypatch):
        for name in ("MEDPARSE_DEFAULT_VISION_MODEL", "MEDPARSE_DEPLOYMENT_ENV"):
            monkeypatch.delenv(name, raising=False)

        config = Settings(_env_file=None)

        assert config.document_backend_url == "http://localhost:5001"
        assert config.default_vision_provider == "Ollama"
        assert config.default_vision_model == "qwen3:8b"
        assert config.default_ocr_languages == ["eng", "pol", "deu", "fra", "spa", "ita", "rus"]
        assert config.document_timeout_seconds == 20.0
        assert config.is_local

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("MEDPARSE_DEFAULT_VISION_MODEL", "llava:13b")
        monkeypatch.setenv("MEDPARSE_DEPLOYMENT_ENV", "production")
        monkeypatch.setenv("MEDPARSE_VISION_CONCURRENCY", "8")

        config = Settings(_env_file=None)

        assert config.default_vision_model == "llava:13b"
        assert config.vision_concurrency == 8
        assert not config.is_local


class TestErrors:
    """Tests for the exception hierarchy."""

    def test_str_includes_details(self):
        error = MedParseError("Backend failed", {"url": "http://docling:5001"})

        assert str(error) == "Backend failed | Details: {'url': 'http://docling:5001'}"

    def test_str_without_details(self):
        assert str(MedParseError("Backend failed")) == "Backend failed"

    def test_hierarchy(self):
        assert issubclass(ExtractionBackendUnavailableError, ExtractionBackendError)
        assert issubclass(InvalidParserSelectionError, ParserSelectionError)
        assert issubclass(UnsupportedFormatError, MedParseError)

    def test_selection_error_details(self):
        error = InvalidParserSelectionError("vision", "Gemini", ["Ollama", "OpenAI"])

        assert error.message == "Invalid vision parser 'Gemini'"
        assert error.details["available"] == ["Ollama", "OpenAI"]


class TestSetupLogging:
    def test_installs_rich_handler(self):
        setup_logging("debug")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0], RichHandler)
        assert logging.getLogger("aiohttp").level == logging.WARNING
