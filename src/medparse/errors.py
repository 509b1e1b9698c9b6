"""
Exceptions raised by the health document parser.

Configuration errors (unsupported input, unknown parser or model) are raised
before any backend is contacted. Document backend errors are absorbed by the
vision-only fallback in the orchestrator; vision backend errors propagate.
"""

from typing import Any, Optional


class MedParseError(Exception):
    """Base exception for all parser errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# Input / Rasterization
# =============================================================================


class UnsupportedFormatError(MedParseError):
    """Document content is not a PDF or a supported raster image."""

    def __init__(self, declared_mime: Optional[str] = None, filename: Optional[str] = None) -> None:
        message = "Unsupported document format"
        if filename:
            message += f" for '{filename}'"
        super().__init__(message, {"declared_mime": declared_mime, "filename": filename})


class RasterizationFailedError(MedParseError):
    """Rendering the document to page images failed; no pages are returned."""

    pass


# =============================================================================
# Parser Selection
# =============================================================================


class ParserSelectionError(MedParseError):
    """Base exception for caller configuration errors."""

    pass


class InvalidParserSelectionError(ParserSelectionError):
    """No provider is registered under the requested name."""

    def __init__(self, kind: str, name: str, available: list[str]) -> None:
        message = f"Invalid {kind} parser '{name}'"
        super().__init__(message, {"kind": kind, "name": name, "available": available})


class InvalidModelSelectionError(ParserSelectionError):
    """The provider does not offer the requested model."""

    def __init__(self, parser: str, model: str, available: list[str]) -> None:
        message = f"Invalid model '{model}' for parser '{parser}'"
        super().__init__(message, {"parser": parser, "model": model, "available": available})


# =============================================================================
# Extraction Backends
# =============================================================================


class ExtractionBackendError(MedParseError):
    """A backend call timed out, failed in transport, or returned garbage."""

    pass


class ExtractionBackendUnavailableError(ExtractionBackendError):
    """The document backend could not be reached."""

    pass


# =============================================================================
# Storage
# =============================================================================


class StorageError(MedParseError):
    """Object storage rejected a key or could not find an object."""

    pass
