"""Document / OCR parser providers."""

from .docling import DoclingDocumentParser, convert_json_content
from .tesseract import TesseractDocumentParser, preprocess_for_ocr, words_from_data

__all__ = [
    "DoclingDocumentParser",
    "TesseractDocumentParser",
    "convert_json_content",
    "preprocess_for_ocr",
    "words_from_data",
]
