"""Docling document parser.

Talks to a docling-serve instance over HTTP. Every call is bounded by the
configured document timeout; unreachable or timed-out backends raise
ExtractionBackendUnavailableError so the pipeline can fall back to
vision-only extraction.
"""

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from medparse.config import Settings, settings
from medparse.errors import ExtractionBackendError, ExtractionBackendUnavailableError
from medparse.models import OcrDocument, OcrPage, OcrPageMetadata, OcrWord, ParserModel
from medparse.parsers.base import DocumentInput, DocumentParser, convert_coordinates
from medparse.pipeline.stage_language import resolve_ocr_languages

logger = logging.getLogger(__name__)

# Docling does not report per-element confidence
DEFAULT_WORD_CONFIDENCE = 0.98


def convert_json_content(data: dict[str, Any]) -> OcrDocument:
    """Convert Docling's JSON export into an OcrDocument.

    Text elements become words; each element is attached to every page its
    provenance points at, with coordinates flipped against that page's height.
    Text and provenance entries that are not objects are skipped.

    Args:
        data: `document.json_content` from the convert endpoint.

    Returns:
        OcrDocument with one OcrPage per Docling page.
    """
    pages: list[OcrPage] = []
    metadata_pages: list[OcrPageMetadata] = []
    texts = data.get("texts") or []

    for page_key, page_info in (data.get("pages") or {}).items():
        page_no = int(page_key)
        width = page_info["size"]["width"]
        height = page_info["size"]["height"]
        metadata_pages.append(OcrPageMetadata(page=page_no, width=width, height=height))

        words = []
        for text in texts:
            if not isinstance(text, dict):
                continue
            for prov in text.get("prov") or []:
                if not isinstance(prov, dict) or str(prov.get("page_no")) != str(page_key):
                    continue
                words.append(
                    OcrWord(
                        id=len(words),
                        text=text.get("text", ""),
                        confidence=DEFAULT_WORD_CONFIDENCE,
                        bounding_box=convert_coordinates(prov.get("bbox"), height),
                    )
                )

        pages.append(
            OcrPage(
                id=page_no - 1,
                width=width,
                height=height,
                text=" ".join(word.text for word in words).strip(),
                words=words,
            )
        )

    return OcrDocument(
        pages=pages,
        metadata_pages=metadata_pages,
        text="\n".join(page.text for page in pages if page.text),
        stored=False,
    )


class DoclingDocumentParser(DocumentParser):
    """Document parser backed by docling-serve."""

    convert_path = "/v1alpha/convert/file"
    health_path = "/health"

    def __init__(
        self,
        config: Settings = settings,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize parser.

        Args:
            config: Settings providing defaults
            base_url: Docling base URL (default from settings)
            timeout: Per-call timeout in seconds (default from settings)
        """
        self.config = config
        self.base_url = (base_url or config.document_backend_url).rstrip("/")
        self.timeout = timeout or config.document_timeout_seconds

    @property
    def name(self) -> str:
        return "Docling"

    @property
    def enabled(self) -> bool:
        return self.config.is_local

    async def list_models(self) -> list[ParserModel]:
        return [ParserModel(id="document-parse", name="Document Parse")]

    def build_form(self, document: DocumentInput, to_format: str, force_ocr: bool) -> aiohttp.FormData:
        """Multipart body for the convert endpoint."""
        form = aiohttp.FormData()
        form.add_field("ocr_engine", "tesseract")
        form.add_field("pdf_backend", "dlparse_v2")
        for source_format in ("pdf", "docx", "image"):
            form.add_field("from_formats", source_format)
        form.add_field("force_ocr", "true" if force_ocr else "false")
        form.add_field("image_export_mode", "placeholder")
        for code in resolve_ocr_languages(document.hint_name, self.config.default_ocr_languages):
            form.add_field("ocr_lang", code)
        form.add_field("table_mode", "fast")
        form.add_field("files", document.data, filename=document.filename, content_type=document.mime)
        form.add_field("abort_on_error", "false")
        form.add_field("to_formats", to_format)
        form.add_field("return_as_file", "false")
        form.add_field("do_ocr", "true")
        return form

    async def _convert(self, document: DocumentInput, to_format: str, force_ocr: bool) -> dict[str, Any]:
        url = f"{self.base_url}{self.convert_path}"
        form = self.build_form(document, to_format, force_ocr)
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, data=form, headers={"accept": "application/json"}) as response:
                    if response.status >= 400:
                        body = await response.text()
                        raise ExtractionBackendError(
                            f"Docling returned HTTP {response.status}",
                            {"url": url, "body": body[:200]},
                        )
                    return await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise ExtractionBackendUnavailableError(
                f"Docling timed out after {self.timeout:.0f}s",
                {"url": url},
            ) from e
        except aiohttp.ClientError as e:
            raise ExtractionBackendUnavailableError(f"Docling unreachable: {e}", {"url": url}) from e
        except ValueError as e:
            raise ExtractionBackendError("Docling returned invalid JSON", {"url": url}) from e

    async def ocr(self, document: DocumentInput, model: ParserModel, api_key: str = "") -> OcrDocument:
        data = await self._convert(document, to_format="json", force_ocr=False)
        try:
            json_content = data["document"]["json_content"]
            result = convert_json_content(json_content)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ExtractionBackendError(f"Unexpected Docling JSON response: {e}") from e

        logger.info("Docling OCR: %d page(s), %d word(s)", len(result.pages), result.word_count)
        return result

    async def parse(self, document: DocumentInput, model: ParserModel, api_key: str = "") -> str:
        data = await self._convert(document, to_format="md", force_ocr=True)
        try:
            markdown = data["document"]["md_content"]
        except (KeyError, TypeError) as e:
            raise ExtractionBackendError(f"Unexpected Docling markdown response: {e}") from e
        return markdown or ""

    async def health(self) -> dict[str, Any]:
        """Probe the backend's health endpoint.

        Returns:
            `{"ok": bool, "url": str, ...}`; never raises for transport errors.
        """
        timeout = aiohttp.ClientTimeout(total=self.config.document_health_timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(f"{self.base_url}{self.health_path}") as response:
                    if response.status >= 400:
                        return {"ok": False, "url": self.base_url, "status": response.status}
                    try:
                        data = await response.json(content_type=None)
                    except ValueError:
                        data = {}
                    return {"ok": True, "url": self.base_url, "data": data}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return {"ok": False, "url": self.base_url, "error": str(e) or type(e).__name__}
