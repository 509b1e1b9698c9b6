"""Pipeline orchestrator.

Runs the stages for one document:

1. Validate parser and model selection
2. Rasterize and publish pages
3. Document stage: whole-document OCR plus per-page text
4. Three extraction strategies in parallel
5. Reconcile the strategies into one record

If the document parser is missing, disabled or fails, the orchestrator falls
back to a single IMAGE_ONLY pass and returns no OCR results.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from medparse.config import Settings, settings
from medparse.errors import ExtractionBackendError
from medparse.models import (
    ExtractionStrategy,
    OcrDocument,
    PageImage,
    ParseResult,
    ParserModel,
    SourceDocument,
)
from medparse.parsers.base import DocumentInput, DocumentParser, VisionParser
from medparse.parsers.registry import ParserRegistries, resolve_model
from medparse.storage import ObjectStore

from .batch import process_batch
from .stage_extract import page_document_input, run_strategy
from .stage_merge import reconcile, to_record
from .stage_render import DocumentRasterizer

logger = logging.getLogger(__name__)


@dataclass
class VisionParserOptions:
    """Caller's vision parser selection; unset fields use settings."""

    parser: Optional[str] = None
    model: Optional[str] = None
    api_key: str = ""
    api_url: Optional[str] = None


@dataclass
class DocumentParserOptions:
    """Caller's document parser selection; the first model is used if unset."""

    parser: str
    model: Optional[str] = None
    api_key: str = ""


@dataclass
class DocumentStageOutcome:
    """Result of the document stage.

    `available` is False when the document backend could not be used; the
    pipeline then falls back to vision-only extraction.
    """

    available: bool
    ocr: Optional[OcrDocument] = None
    page_texts: list[str] = field(default_factory=list)
    error: Optional[Exception] = None

    @classmethod
    def unavailable(cls, error: Optional[Exception] = None) -> "DocumentStageOutcome":
        return cls(available=False, error=error)


@dataclass
class _ResolvedVision:
    parser: VisionParser
    model: ParserModel
    api_key: str
    api_url: Optional[str]


@dataclass
class _ResolvedDocument:
    parser: DocumentParser
    model: ParserModel
    api_key: str


class HealthDataPipeline:
    """Turns an uploaded document into a health checkup record."""

    def __init__(
        self,
        registries: ParserRegistries,
        store: ObjectStore,
        rasterizer: Optional[DocumentRasterizer] = None,
        config: Settings = settings,
    ):
        """Initialize pipeline.

        Args:
            registries: Document and vision parser registries
            store: Storage for published page images
            rasterizer: Page renderer (a new one with settings defaults if omitted)
            config: Settings for defaults and concurrency
        """
        self.registries = registries
        self.store = store
        self.rasterizer = rasterizer or DocumentRasterizer(
            dpi=config.render_dpi,
            timeout=config.render_timeout_seconds,
            cache_size=config.render_cache_size,
        )
        self.config = config

    async def resolve_vision(self, options: Optional[VisionParserOptions] = None) -> _ResolvedVision:
        """Look up the vision parser and model.

        Raises:
            InvalidParserSelectionError: Unknown parser name.
            InvalidModelSelectionError: Model not offered by the parser.
        """
        options = options or VisionParserOptions()
        parser = self.registries.vision.get(options.parser or self.config.default_vision_provider)
        model = await resolve_model(
            parser,
            options.model or self.config.default_vision_model,
            api_url=options.api_url,
            api_key=options.api_key,
        )
        return _ResolvedVision(parser, model, options.api_key, options.api_url)

    async def resolve_document(
        self,
        options: Optional[DocumentParserOptions] = None,
    ) -> Optional[_ResolvedDocument]:
        """Look up the document parser and model.

        Returns:
            None when no parser was requested or the parser is disabled.

        Raises:
            InvalidParserSelectionError: Unknown parser name.
            InvalidModelSelectionError: Model not offered by the parser.
        """
        if options is None:
            return None

        parser = self.registries.document.get(options.parser)
        if not parser.enabled:
            logger.warning("Document parser %s is disabled in this deployment", parser.name)
            return None

        if options.model:
            model = await resolve_model(parser, options.model)
        else:
            models = await parser.list_models()
            if not models:
                logger.warning("Document parser %s offers no models", parser.name)
                return None
            model = models[0]
        return _ResolvedDocument(parser, model, options.api_key)

    async def run_document_stage(
        self,
        document: SourceDocument,
        pages: list[PageImage],
        resolved: _ResolvedDocument,
    ) -> DocumentStageOutcome:
        """Whole-document OCR, then page text for every page.

        Any parser failure is returned as an unavailable outcome rather than raised.
        Cancellation still propagates.
        """
        try:
            ocr = await resolved.parser.ocr(
                DocumentInput(
                    data=document.data,
                    filename=document.filename,
                    mime=document.mime,
                    source_filename=document.filename,
                ),
                resolved.model,
                resolved.api_key,
            )

            async def parse_page(page: PageImage) -> str:
                return await resolved.parser.parse(
                    page_document_input(page, document.filename),
                    resolved.model,
                    resolved.api_key,
                )

            page_texts = await process_batch(
                pages,
                parse_page,
                self.config.warmup_parse_concurrency,
            )
        except ExtractionBackendError as e:
            logger.warning("Document parser %s unavailable: %s", resolved.parser.name, e)
            return DocumentStageOutcome.unavailable(e)
        except Exception as e:
            logger.warning(
                "Document parser %s failed: %s: %s",
                resolved.parser.name,
                type(e).__name__,
                e,
            )
            return DocumentStageOutcome.unavailable(e)

        logger.info(
            "Document stage: %d OCR page(s), %d word(s), %d page text(s)",
            len(ocr.pages),
            ocr.word_count,
            len(page_texts),
        )
        return DocumentStageOutcome(available=True, ocr=ocr, page_texts=page_texts)

    async def run_fallback(self, pages: list[PageImage], vision: _ResolvedVision) -> ParseResult:
        """Vision-only extraction. Failures here are not absorbed."""
        result = await run_strategy(
            ExtractionStrategy.IMAGE_ONLY,
            pages,
            vision.parser,
            vision.model,
            self.store,
            api_key=vision.api_key,
            api_url=vision.api_url,
            concurrency=self.config.vision_concurrency,
            encoding_concurrency=self.config.image_encoding_concurrency,
        )
        record, provenance = to_record(result)
        return ParseResult(data=[record], pages=[provenance], ocr_results=[], fallback_used=True)

    async def run_strategies(
        self,
        pages: list[PageImage],
        vision: _ResolvedVision,
        outcome: DocumentStageOutcome,
    ):
        """Run TOTAL, TEXT_ONLY and IMAGE_ONLY and wait for all three."""
        strategies = [
            ExtractionStrategy.TOTAL,
            ExtractionStrategy.TEXT_ONLY,
            ExtractionStrategy.IMAGE_ONLY,
        ]
        results = await asyncio.gather(
            *(
                run_strategy(
                    strategy,
                    pages,
                    vision.parser,
                    vision.model,
                    self.store,
                    api_key=vision.api_key,
                    api_url=vision.api_url,
                    page_texts=outcome.page_texts,
                    concurrency=self.config.vision_concurrency,
                    encoding_concurrency=self.config.image_encoding_concurrency,
                )
                for strategy in strategies
            ),
            return_exceptions=True,
        )

        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, ExtractionBackendError):
                raise result
        return results

    async def parse(
        self,
        document: SourceDocument,
        vision: Optional[VisionParserOptions] = None,
        document_parser: Optional[DocumentParserOptions] = None,
    ) -> ParseResult:
        """Extract a health checkup record from a document.

        Args:
            document: Source document
            vision: Vision parser selection (settings defaults if omitted)
            document_parser: Document parser selection (vision-only if omitted)

        Returns:
            ParseResult with one record and its page provenance.

        Raises:
            ParserSelectionError: Invalid parser or model selection.
            RasterizationFailedError: Document could not be rendered.
            ExtractionBackendError: Vision extraction failed with no fallback left.
        """
        resolved_vision = await self.resolve_vision(vision)
        resolved_document = await self.resolve_document(document_parser)

        pages = await self.rasterizer.rasterize_and_publish(document, self.store)
        logger.info("Processing %s: %d page(s)", document.filename, len(pages))

        if resolved_document is None:
            logger.warning("No document parser available, using vision-only extraction")
            return await self.run_fallback(pages, resolved_vision)

        outcome = await self.run_document_stage(document, pages, resolved_document)
        if not outcome.available:
            logger.warning("Falling back to vision-only extraction")
            return await self.run_fallback(pages, resolved_vision)

        results = await self.run_strategies(pages, resolved_vision, outcome)
        errors = [result for result in results if isinstance(result, ExtractionBackendError)]
        if errors:
            logger.warning("Strategy extraction failed (%s), falling back to vision-only", errors[0])
            return await self.run_fallback(pages, resolved_vision)

        total, text_only, image_only = results
        record, provenance = reconcile(total, text_only, image_only)
        return ParseResult(
            data=[record],
            pages=[provenance],
            ocr_results=[outcome.ocr],
            fallback_used=False,
        )

    async def parse_bytes(
        self,
        data: bytes,
        filename: str = "uploaded_file",
        declared_mime: Optional[str] = None,
        vision: Optional[VisionParserOptions] = None,
        document_parser: Optional[DocumentParserOptions] = None,
    ) -> ParseResult:
        """Load raw upload bytes and parse them.

        Raises:
            UnsupportedFormatError: Content is not a PDF or supported image.
        """
        document = self.rasterizer.load_document(data, filename, declared_mime)
        return await self.parse(document, vision, document_parser)
