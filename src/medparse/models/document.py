"""Source document and page image models."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

MIME_EXTENSIONS = {
    "application/pdf": "pdf",
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/tiff": "tiff",
    "image/bmp": "bmp",
}


class SourceDocument(BaseModel):
    """
    An uploaded document, immutable once created.

    The mime type used by the pipeline is always the one sniffed from
    content; the declared mime is kept for logging only.
    """

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(..., repr=False)
    filename: str = Field(default="uploaded_file")
    declared_mime: Optional[str] = None
    mime: str = Field(..., description="Mime type sniffed from content")
    content_hash: str = Field(..., description="SHA-256 hash of the raw bytes")

    @property
    def is_pdf(self) -> bool:
        """Check if document is a PDF."""
        return self.mime == "application/pdf"

    @property
    def size_bytes(self) -> int:
        """Size of the raw document."""
        return len(self.data)


class PageImage(BaseModel):
    """
    One rasterized page of a source document.

    Pages are addressed by `{content_hash}_{index}.{ext}` so identical
    uploads map to identical storage keys.
    """

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0, description="0-indexed page number")
    data: bytes = Field(..., repr=False)
    mime: str = Field(default="image/png")
    width: int = Field(..., gt=0, description="Width in pixels")
    height: int = Field(..., gt=0, description="Height in pixels")
    content_hash: str = Field(..., description="Hash of the source document")
    url: Optional[str] = Field(None, description="Storage URL once published")

    @property
    def page_number(self) -> int:
        """1-indexed page number."""
        return self.index + 1

    @property
    def extension(self) -> str:
        return MIME_EXTENSIONS.get(self.mime, "png")

    @property
    def key(self) -> str:
        """Content-addressed storage key."""
        return f"{self.content_hash}_{self.index}.{self.extension}"
