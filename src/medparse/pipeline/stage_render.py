"""Rendering Stage - Convert source documents to page images.

This is the first stage of the pipeline.
Uses PyMuPDF (fitz) for PDF rendering and Pillow to identify raster images.
A document is either rendered completely or not at all.
"""

import asyncio
import hashlib
import io
import logging
from collections import OrderedDict
from typing import Optional

import fitz  # PyMuPDF
from PIL import Image, UnidentifiedImageError

from medparse.config import settings
from medparse.errors import RasterizationFailedError, UnsupportedFormatError
from medparse.models import PageImage, SourceDocument
from medparse.storage import ObjectStore

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"

PIL_FORMAT_MIMES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "GIF": "image/gif",
    "WEBP": "image/webp",
    "TIFF": "image/tiff",
    "BMP": "image/bmp",
    # Multi-picture JPEG, as written by many phone cameras
    "MPO": "image/jpeg",
}


def compute_content_hash(data: bytes) -> str:
    """Compute SHA-256 hash of document bytes for deduplication."""
    return hashlib.sha256(data).hexdigest()


def sniff_mime(data: bytes) -> Optional[str]:
    """Identify the document type from its content.

    Args:
        data: Raw document bytes.

    Returns:
        Mime type, or None if the content is not a supported format.
    """
    # The PDF header may be preceded by junk within the first 1024 bytes
    if b"%PDF-" in data[:1024]:
        return PDF_MIME

    try:
        with Image.open(io.BytesIO(data)) as image:
            return PIL_FORMAT_MIMES.get(image.format)
    except (UnidentifiedImageError, OSError):
        return None


def render_pdf_pages(data: bytes, dpi: int) -> list[tuple[bytes, int, int]]:
    """Render every page of a PDF to PNG.

    Returns:
        List of (png_bytes, width, height) in page order.
    """
    # PDF base is 72 DPI; equal zoom on both axes keeps the aspect ratio
    zoom = dpi / 72.0
    matrix = fitz.Matrix(zoom, zoom)

    pdf_doc = fitz.open(stream=data, filetype="pdf")
    try:
        rendered = []
        for page_num in range(len(pdf_doc)):
            pixmap = pdf_doc[page_num].get_pixmap(matrix=matrix, alpha=False)
            rendered.append((pixmap.tobytes("png"), pixmap.width, pixmap.height))
        return rendered
    finally:
        pdf_doc.close()


def _image_size(data: bytes) -> tuple[int, int]:
    with Image.open(io.BytesIO(data)) as image:
        return image.size


class DocumentRasterizer:
    """Turns source documents into ordered page images.

    Rendered page sets are cached in memory by content hash, so submitting
    the same bytes again skips rendering.
    """

    def __init__(
        self,
        dpi: Optional[int] = None,
        timeout: Optional[float] = None,
        cache_size: Optional[int] = None,
    ):
        """Initialize rasterizer.

        Args:
            dpi: Rendering DPI (default from settings)
            timeout: Seconds allowed for rendering a whole document
            cache_size: Number of documents kept in the page cache
        """
        self.dpi = dpi or settings.render_dpi
        self.timeout = timeout or settings.render_timeout_seconds
        self.cache_size = cache_size if cache_size is not None else settings.render_cache_size
        self._cache: OrderedDict[str, tuple[PageImage, ...]] = OrderedDict()

    def load_document(
        self,
        data: bytes,
        filename: str = "uploaded_file",
        declared_mime: Optional[str] = None,
    ) -> SourceDocument:
        """Create a SourceDocument, sniffing its type from content.

        Raises:
            UnsupportedFormatError: If the content is not a PDF or raster image.
        """
        mime = sniff_mime(data)
        if mime is None:
            raise UnsupportedFormatError(declared_mime=declared_mime, filename=filename)

        if declared_mime and declared_mime != mime:
            logger.info("Declared mime %s for %s, content is %s", declared_mime, filename, mime)

        return SourceDocument(
            data=data,
            filename=filename,
            declared_mime=declared_mime,
            mime=mime,
            content_hash=compute_content_hash(data),
        )

    async def rasterize(self, document: SourceDocument) -> list[PageImage]:
        """Render all pages of a document.

        Args:
            document: Document to render

        Returns:
            Page images in page order.

        Raises:
            RasterizationFailedError: Renderer crashed, timed out or found no pages.
        """
        cached = self._cache.get(document.content_hash)
        if cached is not None:
            self._cache.move_to_end(document.content_hash)
            logger.debug("Page cache hit for %s", document.content_hash[:16])
            return list(cached)

        if document.is_pdf:
            rendered = await self._run_renderer(render_pdf_pages, document.data, self.dpi)
            mime = "image/png"
        else:
            width, height = await self._run_renderer(_image_size, document.data)
            rendered = [(document.data, width, height)]
            mime = document.mime

        if not rendered:
            raise RasterizationFailedError(
                "Document has no pages",
                {"content_hash": document.content_hash},
            )

        pages = tuple(
            PageImage(
                index=index,
                data=image_bytes,
                mime=mime,
                width=width,
                height=height,
                content_hash=document.content_hash,
            )
            for index, (image_bytes, width, height) in enumerate(rendered)
        )
        logger.info("Rasterized %s into %d page(s)", document.filename, len(pages))

        self._remember(document.content_hash, pages)
        return list(pages)

    async def publish(self, pages: list[PageImage], store: ObjectStore) -> list[PageImage]:
        """Write page images to storage and attach their URLs.

        Keys are content-addressed, so publishing the same pages twice is a no-op
        on the storage side.
        """
        urls = await asyncio.gather(
            *(store.put(page.key, page.data, page.mime) for page in pages)
        )
        return [page.model_copy(update={"url": url}) for page, url in zip(pages, urls)]

    async def rasterize_and_publish(
        self,
        document: SourceDocument,
        store: ObjectStore,
    ) -> list[PageImage]:
        """Render the complete page set, then publish it."""
        pages = await self.rasterize(document)
        return await self.publish(pages, store)

    async def _run_renderer(self, func, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise RasterizationFailedError(
                f"Rendering timed out after {self.timeout:.0f}s",
                {"timeout": self.timeout},
            ) from e
        except Exception as e:
            raise RasterizationFailedError(f"Rendering failed: {e}") from e

    def _remember(self, content_hash: str, pages: tuple[PageImage, ...]) -> None:
        if self.cache_size <= 0:
            return
        self._cache[content_hash] = pages
        self._cache.move_to_end(content_hash)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
