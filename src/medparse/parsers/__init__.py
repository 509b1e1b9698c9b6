"""Extraction backends.

Document parsers (OCR word boxes, page markdown):
- Docling - docling-serve over HTTP
- Tesseract - local pytesseract

Vision parsers (structured test results):
- Ollama - local multimodal models
- OpenAI - OpenAI-compatible chat completions

Providers are selected by name through `ParserRegistries`.
"""

from .base import (
    BaseParser,
    DocumentInput,
    DocumentParser,
    ParserDescriptor,
    VisionInput,
    VisionParser,
    coerce_checkup_payload,
    convert_coordinates,
    parse_json_content,
)
from .document import DoclingDocumentParser, TesseractDocumentParser
from .registry import ParserRegistries, ParserRegistry, build_registries, resolve_model
from .vision import OllamaVisionParser, OpenAIVisionParser

__all__ = [
    # Interfaces
    "BaseParser",
    "DocumentInput",
    "DocumentParser",
    "ParserDescriptor",
    "VisionInput",
    "VisionParser",
    # Helpers
    "coerce_checkup_payload",
    "convert_coordinates",
    "parse_json_content",
    # Providers
    "DoclingDocumentParser",
    "TesseractDocumentParser",
    "OllamaVisionParser",
    "OpenAIVisionParser",
    # Registry
    "ParserRegistries",
    "ParserRegistry",
    "build_registries",
    "resolve_model",
]
