"""Extraction and merge result models.

Test names are free-form keys in the source document's language and are
never normalized. Intermediate maps may hold entries without a value; only
`MergedHealthRecord` enforces that every entry carries one.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .base import ExtractionStrategy, PageProvenance
from .ocr import OcrDocument, OcrWord


def _as_text(value: Any) -> Any:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    return value


class TestResultEntry(BaseModel):
    """A single test result as reported by a vision parser."""

    __test__ = False  # not a pytest class

    value: Optional[str] = None
    unit: str = ""
    reference: str = ""
    category: str = ""

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: Any) -> Any:
        return _as_text(value)

    @field_validator("unit", "reference", "category", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if value is None:
            return ""
        return _as_text(value)

    @property
    def has_value(self) -> bool:
        return self.value is not None


class PageExtractionResult(BaseModel):
    """Output of one vision call for one (page, strategy) pair."""

    page_index: int = Field(..., ge=0, description="0-indexed page number")
    strategy: ExtractionStrategy
    text_content: Optional[str] = None
    words: Optional[list[OcrWord]] = None
    name: Optional[str] = None
    date: Optional[str] = None
    test_result: dict[str, Optional[TestResultEntry]] = Field(default_factory=dict)


class StrategyResult(BaseModel):
    """Pages of one strategy merged into a single document-level result."""

    strategy: ExtractionStrategy
    name: str = ""
    date: str = ""
    test_result: dict[str, TestResultEntry] = Field(default_factory=dict)
    pages: dict[str, PageProvenance] = Field(default_factory=dict)


class MergedHealthRecord(BaseModel):
    """Final health checkup record returned to callers."""

    name: str = ""
    date: str = ""
    test_result: dict[str, TestResultEntry] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _values_present(self) -> "MergedHealthRecord":
        missing = [key for key, entry in self.test_result.items() if entry.value is None]
        if missing:
            raise ValueError(f"test results without a value: {missing}")
        return self


class ParseResult(BaseModel):
    """Everything the pipeline hands back for one document."""

    data: list[MergedHealthRecord] = Field(default_factory=list)
    pages: list[dict[str, PageProvenance]] = Field(default_factory=list)
    ocr_results: list[OcrDocument] = Field(default_factory=list)
    fallback_used: bool = Field(default=False, description="Vision-only path was taken")

    @property
    def record(self) -> MergedHealthRecord:
        """The single record produced for the document."""
        return self.data[0]
