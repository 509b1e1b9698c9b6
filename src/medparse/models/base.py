"""Base models and common types for the health document parser."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ExtractionStrategy(str, Enum):
    """Which modalities are supplied to a vision inference pass."""

    TOTAL = "total"  # page text + page image
    TEXT_ONLY = "text_only"
    IMAGE_ONLY = "image_only"

    @property
    def include_text(self) -> bool:
        """Whether extracted page text is part of the prompt."""
        return self in (ExtractionStrategy.TOTAL, ExtractionStrategy.TEXT_ONLY)

    @property
    def include_image(self) -> bool:
        """Whether the page image is attached to the prompt."""
        return self in (ExtractionStrategy.TOTAL, ExtractionStrategy.IMAGE_ONLY)


# Level-2 precedence, strongest first
STRATEGY_PRECEDENCE = (
    ExtractionStrategy.TOTAL,
    ExtractionStrategy.TEXT_ONLY,
    ExtractionStrategy.IMAGE_ONLY,
)


class ParserModel(BaseModel):
    """A model offered by a document or vision parser."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Identifier passed to the backend")
    name: str = Field(..., description="Human readable name")


class PageProvenance(BaseModel):
    """Page a merged test result was taken from."""

    page: int = Field(..., ge=1, description="1-indexed page number")
