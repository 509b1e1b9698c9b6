"""Data models for the health document parser.

Pydantic models describing data flowing through the pipeline:

- SourceDocument → PageImage (rasterization)
- PageImage → PageExtractionResult (one per page and strategy)
- PageExtractionResult → StrategyResult (Level-1 merge)
- StrategyResult → MergedHealthRecord (Level-2 reconciliation)
"""

from .base import (
    STRATEGY_PRECEDENCE,
    ExtractionStrategy,
    PageProvenance,
    ParserModel,
)
from .document import (
    MIME_EXTENSIONS,
    PageImage,
    SourceDocument,
)
from .ocr import (
    BoundingPolygon,
    OcrDocument,
    OcrPage,
    OcrPageMetadata,
    OcrWord,
    Vertex,
)
from .result import (
    MergedHealthRecord,
    PageExtractionResult,
    ParseResult,
    StrategyResult,
    TestResultEntry,
)

__all__ = [
    # Base types
    "ExtractionStrategy",
    "STRATEGY_PRECEDENCE",
    "PageProvenance",
    "ParserModel",
    # Documents
    "MIME_EXTENSIONS",
    "PageImage",
    "SourceDocument",
    # OCR
    "BoundingPolygon",
    "OcrDocument",
    "OcrPage",
    "OcrPageMetadata",
    "OcrWord",
    "Vertex",
    # Results
    "MergedHealthRecord",
    "PageExtractionResult",
    "ParseResult",
    "StrategyResult",
    "TestResultEntry",
]
