"""Local Tesseract document parser.

Runs pytesseract in a worker thread on the machine itself, for deployments
without a Docling service. PDFs are rendered with PyMuPDF first. Word boxes
go through the same coordinate conversion as Docling's so both providers
produce comparable OCR results.
"""

import asyncio
import io
import logging
import shutil
from typing import Optional

import cv2
import numpy as np
import pytesseract
from PIL import Image

from medparse.config import Settings, settings
from medparse.errors import ExtractionBackendError, ExtractionBackendUnavailableError
from medparse.models import OcrDocument, OcrPage, OcrPageMetadata, OcrWord, ParserModel
from medparse.parsers.base import DocumentInput, DocumentParser, convert_coordinates
from medparse.pipeline.stage_language import resolve_ocr_languages
from medparse.pipeline.stage_render import PDF_MIME, render_pdf_pages, sniff_mime

logger = logging.getLogger(__name__)


def preprocess_for_ocr(image: Image.Image) -> Image.Image:
    """Binarize and denoise a page to improve OCR quality.

    Args:
        image: Page image in any mode.

    Returns:
        Grayscale preprocessed image.
    """
    gray = cv2.cvtColor(np.array(image.convert("RGB")), cv2.COLOR_RGB2GRAY)

    # Binarization using Otsu's method
    _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)

    denoised = cv2.fastNlMeansDenoising(binary, h=10)
    return Image.fromarray(denoised)


def words_from_data(data: dict, page_height: int) -> list[OcrWord]:
    """Convert `pytesseract.image_to_data` output into OcrWords.

    Tesseract reports top-left origin boxes; they are expressed as bottom-left
    `{l, t, r, b}` boxes first so `convert_coordinates` yields top-left vertices.
    """
    words = []
    for i in range(len(data["text"])):
        text = str(data["text"][i]).strip()
        conf = float(data["conf"][i])

        # Skip empty or structural entries
        if not text or conf < 0:
            continue

        left, top = data["left"][i], data["top"][i]
        width, height = data["width"][i], data["height"][i]
        raw_box = {
            "l": left,
            "t": page_height - top,
            "r": left + width,
            "b": page_height - (top + height),
        }
        words.append(
            OcrWord(
                id=len(words),
                text=text,
                confidence=min(conf / 100.0, 1.0),
                bounding_box=convert_coordinates(raw_box, page_height),
            )
        )
    return words


class TesseractDocumentParser(DocumentParser):
    """Document parser using a local Tesseract installation."""

    def __init__(
        self,
        config: Settings = settings,
        psm: int = 3,
        oem: int = 3,
        preprocess: bool = False,
        timeout: Optional[float] = None,
    ):
        """Initialize parser.

        Args:
            config: Settings providing defaults
            psm: Page segmentation mode (3 = fully automatic)
            oem: OCR Engine mode (3 = default, based on what's available)
            preprocess: Binarize pages before OCR
            timeout: Per-call timeout in seconds (default from settings)
        """
        self.config = config
        self.psm = psm
        self.oem = oem
        self.preprocess = preprocess
        self.timeout = timeout or config.document_timeout_seconds

    @property
    def name(self) -> str:
        return "Tesseract"

    @property
    def enabled(self) -> bool:
        return shutil.which(pytesseract.pytesseract.tesseract_cmd) is not None

    async def list_models(self) -> list[ParserModel]:
        return [ParserModel(id="tesseract", name="Tesseract OCR")]

    def _build_config(self) -> str:
        return f"--psm {self.psm} --oem {self.oem}"

    def _load_images(self, document: DocumentInput) -> list[Image.Image]:
        if sniff_mime(document.data) == PDF_MIME:
            rendered = render_pdf_pages(document.data, self.config.render_dpi)
            images = [Image.open(io.BytesIO(png)) for png, _, _ in rendered]
        else:
            images = [Image.open(io.BytesIO(document.data))]

        if self.preprocess:
            images = [preprocess_for_ocr(image) for image in images]
        return images

    def _ocr_sync(self, document: DocumentInput, languages: list[str]) -> OcrDocument:
        pages, metadata_pages = [], []
        for page_id, image in enumerate(self._load_images(document)):
            width, height = image.size
            data = pytesseract.image_to_data(
                image,
                lang="+".join(languages),
                config=self._build_config(),
                output_type=pytesseract.Output.DICT,
            )
            words = words_from_data(data, height)
            metadata_pages.append(OcrPageMetadata(page=page_id + 1, width=width, height=height))
            pages.append(
                OcrPage(
                    id=page_id,
                    width=width,
                    height=height,
                    text=" ".join(word.text for word in words),
                    words=words,
                )
            )

        return OcrDocument(
            pages=pages,
            metadata_pages=metadata_pages,
            text="\n".join(page.text for page in pages if page.text),
        )

    def _parse_sync(self, document: DocumentInput, languages: list[str]) -> str:
        texts = [
            pytesseract.image_to_string(
                image,
                lang="+".join(languages),
                config=self._build_config(),
            ).strip()
            for image in self._load_images(document)
        ]
        return "\n\n".join(text for text in texts if text)

    async def _run(self, func, document: DocumentInput):
        languages = resolve_ocr_languages(document.hint_name, self.config.default_ocr_languages)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, document, languages),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ExtractionBackendUnavailableError(
                f"Tesseract timed out after {self.timeout:.0f}s",
            ) from e
        except pytesseract.TesseractNotFoundError as e:
            raise ExtractionBackendUnavailableError("Tesseract is not installed") from e
        except (RuntimeError, OSError, ValueError) as e:
            raise ExtractionBackendError(f"Tesseract failed: {e}") from e

    async def ocr(self, document: DocumentInput, model: ParserModel, api_key: str = "") -> OcrDocument:
        result = await self._run(self._ocr_sync, document)
        logger.info("Tesseract OCR: %d page(s), %d word(s)", len(result.pages), result.word_count)
        return result

    async def parse(self, document: DocumentInput, model: ParserModel, api_key: str = "") -> str:
        return await self._run(self._parse_sync, document)
