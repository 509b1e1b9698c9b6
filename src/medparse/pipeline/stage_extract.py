"""Extraction Stage - Run one strategy over every page.

A strategy decides which modalities reach the vision parser:
- TOTAL: page text and page image
- TEXT_ONLY: page text
- IMAGE_ONLY: page image

Each page gets its own prompt, built in the language detected from that
page's text. Calls go through `process_batch` so at most a fixed number of
requests is in flight per stage.
"""

import base64
import logging
from typing import Optional, Sequence

from medparse.config import settings
from medparse.models import ExtractionStrategy, PageImage, ParserModel, StrategyResult
from medparse.parsers.base import DocumentInput, DocumentParser, VisionInput, VisionParser
from medparse.storage import ObjectStore

from .batch import process_batch
from .stage_merge import merge_pages
from .stage_prompt import build_adaptive_prompt

logger = logging.getLogger(__name__)


def page_document_input(page: PageImage, source_filename: Optional[str] = None) -> DocumentInput:
    """Wrap a page image for a document parser."""
    return DocumentInput(
        data=page.data,
        filename=page.key,
        mime=page.mime,
        source_filename=source_filename,
    )


def to_data_uri(data: bytes, mime: str) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


async def extract_page_texts(
    pages: Sequence[PageImage],
    document_parser: DocumentParser,
    model: ParserModel,
    api_key: str = "",
    source_filename: Optional[str] = None,
    concurrency: Optional[int] = None,
) -> list[str]:
    """Markdown text of every page, in page order.

    Args:
        pages: Rasterized pages
        document_parser: Parser used for page text
        model: Document parser model
        api_key: Provider API key, if required
        source_filename: Original upload name, used for OCR language hints
        concurrency: Parallel parse calls (default from settings)

    Returns:
        One text per page; `result[i]` belongs to `pages[i]`.
    """
    concurrency = concurrency or settings.text_extraction_concurrency

    async def parse_page(page: PageImage) -> str:
        return await document_parser.parse(
            page_document_input(page, source_filename),
            model,
            api_key,
        )

    texts = await process_batch(pages, parse_page, concurrency)
    logger.info("Extracted text from %d page(s) with %s", len(texts), document_parser.name)
    return texts


async def encode_page_images(
    pages: Sequence[PageImage],
    store: ObjectStore,
    concurrency: Optional[int] = None,
) -> list[str]:
    """Data URIs for every page, read back from storage.

    Pages without a storage URL are encoded from their in-memory bytes.
    """
    concurrency = concurrency or settings.image_encoding_concurrency

    async def encode(page: PageImage) -> str:
        data = await store.get(page.url) if page.url else page.data
        return to_data_uri(data, page.mime)

    return await process_batch(pages, encode, concurrency)


async def run_strategy(
    strategy: ExtractionStrategy,
    pages: Sequence[PageImage],
    vision_parser: VisionParser,
    vision_model: ParserModel,
    store: ObjectStore,
    api_key: str = "",
    api_url: Optional[str] = None,
    page_texts: Optional[Sequence[str]] = None,
    document_parser: Optional[DocumentParser] = None,
    document_model: Optional[ParserModel] = None,
    document_api_key: str = "",
    source_filename: Optional[str] = None,
    concurrency: Optional[int] = None,
    encoding_concurrency: Optional[int] = None,
) -> StrategyResult:
    """Extract test results from all pages with one strategy.

    Page texts are taken from `page_texts` when given; otherwise they are
    extracted with the document parser. Strategies that include text need
    one or the other.

    `concurrency` bounds vision calls and `encoding_concurrency` bounds image
    reads; both default to settings.

    Returns:
        Level-1 merged result for the strategy.

    Raises:
        ExtractionBackendError: If any page fails; other pages are cancelled.
        ValueError: If text is required but there is no source for it.
    """
    concurrency = concurrency or settings.vision_concurrency

    texts: list[Optional[str]] = [None] * len(pages)
    if strategy.include_text:
        if page_texts is not None:
            texts = list(page_texts)
        elif document_parser is not None and document_model is not None:
            texts = await extract_page_texts(
                pages,
                document_parser,
                document_model,
                api_key=document_api_key,
                source_filename=source_filename,
            )
        else:
            raise ValueError(f"Strategy {strategy.value} needs page text or a document parser")

    images: list[Optional[str]] = [None] * len(pages)
    if strategy.include_image:
        images = await encode_page_images(pages, store, encoding_concurrency)

    inputs = [
        VisionInput(
            page_index=page.index,
            strategy=strategy,
            context=text,
            image_data=image,
        )
        for page, text, image in zip(pages, texts, images)
    ]

    async def extract(page_input: VisionInput):
        prompt = build_adaptive_prompt(
            page_input.context or "",
            include_text=strategy.include_text,
            include_image=strategy.include_image,
        )
        return await vision_parser.extract(vision_model, prompt, page_input, api_key, api_url)

    logger.info(
        "Running %s over %d page(s) with %s/%s",
        strategy.value,
        len(inputs),
        vision_parser.name,
        vision_model.id,
    )
    page_results = await process_batch(inputs, extract, concurrency)
    return merge_pages(page_results, strategy)
