"""Structured OCR output produced by document parsers.

Coordinates are integer pixels (or PDF points, depending on the backend)
with the origin flipped relative to the backend's raw boxes.
"""

from typing import Optional

from pydantic import BaseModel, Field


class Vertex(BaseModel):
    """A polygon corner."""

    x: int
    y: int


class BoundingPolygon(BaseModel):
    """Four corners: top-left, top-right, bottom-right, bottom-left."""

    vertices: list[Vertex] = Field(..., min_length=4, max_length=4)


class OcrWord(BaseModel):
    """A recognized text element with its location."""

    id: int = Field(..., ge=0)
    text: str
    confidence: float = Field(default=0.98, ge=0.0, le=1.0)
    bounding_box: Optional[BoundingPolygon] = None


class OcrPageMetadata(BaseModel):
    """Page size summary."""

    page: int = Field(..., ge=1, description="1-indexed page number")
    width: float
    height: float


class OcrPage(BaseModel):
    """Recognized content of a single page."""

    id: int = Field(..., ge=0, description="0-indexed page number")
    width: float
    height: float
    text: str = ""
    words: list[OcrWord] = Field(default_factory=list)


class OcrDocument(BaseModel):
    """OCR result for a whole document."""

    pages: list[OcrPage] = Field(default_factory=list)
    metadata_pages: list[OcrPageMetadata] = Field(default_factory=list)
    text: str = ""
    stored: bool = False

    @property
    def word_count(self) -> int:
        return sum(len(page.words) for page in self.pages)
