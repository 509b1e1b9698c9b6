"""Parser interfaces shared by all extraction backends.

Two capability sets:
- DocumentParser: OCR word boxes and page markdown from a document backend
- VisionParser: structured test results from a multimodal model

Providers are looked up by name in a `ParserRegistry`.
"""

import json
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from medparse.errors import ExtractionBackendError
from medparse.models import (
    BoundingPolygon,
    ExtractionStrategy,
    OcrDocument,
    PageExtractionResult,
    ParserModel,
    TestResultEntry,
    Vertex,
)
from medparse.pipeline.stage_prompt import PromptBundle

logger = logging.getLogger(__name__)

CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass(frozen=True)
class DocumentInput:
    """A document or page image sent to a document parser."""

    data: bytes
    filename: str
    mime: str = "application/octet-stream"
    source_filename: Optional[str] = None  # original upload name, for language hints

    @property
    def hint_name(self) -> str:
        return self.source_filename or self.filename


@dataclass(frozen=True)
class VisionInput:
    """Per-page input to a vision parser."""

    page_index: int
    strategy: ExtractionStrategy
    context: Optional[str] = None
    image_data: Optional[str] = None  # data URI

    @property
    def image_base64(self) -> Optional[str]:
        """Image payload without the `data:<mime>;base64,` prefix."""
        if self.image_data is None:
            return None
        return self.image_data.split(",", 1)[-1]


@dataclass(frozen=True)
class ParserDescriptor:
    """Capability summary of a provider."""

    kind: str
    name: str
    api_key_required: bool
    enabled: bool


class BaseParser(ABC):
    """Common provider properties."""

    kind = "parser"

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry name."""

    @property
    def api_key_required(self) -> bool:
        return False

    @property
    def enabled(self) -> bool:
        """Whether the provider can be used in the current deployment."""
        return True

    def describe(self) -> ParserDescriptor:
        return ParserDescriptor(
            kind=self.kind,
            name=self.name,
            api_key_required=self.api_key_required,
            enabled=self.enabled,
        )


class DocumentParser(BaseParser):
    """Document / OCR backend."""

    kind = "document"

    @abstractmethod
    async def list_models(self) -> list[ParserModel]:
        """Models offered by the backend."""

    @abstractmethod
    async def ocr(self, document: DocumentInput, model: ParserModel, api_key: str = "") -> OcrDocument:
        """Word boxes for every page of the document."""

    @abstractmethod
    async def parse(self, document: DocumentInput, model: ParserModel, api_key: str = "") -> str:
        """Markdown text of the document."""


class VisionParser(BaseParser):
    """Multimodal model backend."""

    kind = "vision"

    @property
    def api_url_required(self) -> bool:
        return False

    @abstractmethod
    async def list_models(self, api_url: Optional[str] = None, api_key: str = "") -> list[ParserModel]:
        """Models offered by the backend."""

    @abstractmethod
    async def extract(
        self,
        model: ParserModel,
        prompt: PromptBundle,
        page_input: VisionInput,
        api_key: str = "",
        api_url: Optional[str] = None,
    ) -> PageExtractionResult:
        """Extract name, date and test results from one page."""


def _round(value: float) -> int:
    # Nearest integer, halves rounded up
    return math.floor(value + 0.5)


def convert_coordinates(bbox: Optional[Mapping[str, float]], page_height: float) -> Optional[BoundingPolygon]:
    """Convert an `{l, t, r, b}` box into a four-vertex polygon with a flipped Y axis.

    Args:
        bbox: Raw box from the backend.
        page_height: Height of the page in the same units.

    Returns:
        Polygon `(l, H-t), (r, H-t), (r, H-b), (l, H-b)`, or None without a box.
    """
    if not bbox:
        return None

    left, top, right, bottom = bbox["l"], bbox["t"], bbox["r"], bbox["b"]
    return BoundingPolygon(
        vertices=[
            Vertex(x=_round(left), y=_round(page_height - top)),
            Vertex(x=_round(right), y=_round(page_height - top)),
            Vertex(x=_round(right), y=_round(page_height - bottom)),
            Vertex(x=_round(left), y=_round(page_height - bottom)),
        ]
    )


def parse_json_content(content: str) -> dict[str, Any]:
    """Decode a model's JSON answer, tolerating a Markdown code fence.

    Raises:
        ExtractionBackendError: If the content is not a JSON object.
    """
    text = (content or "").strip()
    fenced = CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ExtractionBackendError(
            "Vision backend returned invalid JSON",
            {"content": text[:200]},
        ) from e

    if not isinstance(payload, dict):
        raise ExtractionBackendError(
            "Vision backend returned a non-object JSON value",
            {"type": type(payload).__name__},
        )
    return payload


def _coerce_entry(key: str, raw: Any) -> Optional[TestResultEntry]:
    if raw is None:
        return None
    if isinstance(raw, (str, int, float)):
        return TestResultEntry(value=raw)
    if isinstance(raw, dict):
        try:
            return TestResultEntry.model_validate(raw)
        except ValidationError:
            logger.debug("Dropping malformed test result %r: %r", key, raw)
            return None
    return None


def _coerce_scalar(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    return raw if isinstance(raw, str) else str(raw)


def coerce_checkup_payload(
    payload: Mapping[str, Any],
    page_input: VisionInput,
) -> PageExtractionResult:
    """Build a PageExtractionResult from a model's `{name, date, test_result}` answer.

    All test names are kept as returned; entries that cannot be read become None.
    """
    raw_results = payload.get("test_result")
    if not isinstance(raw_results, dict):
        raw_results = {}

    return PageExtractionResult(
        page_index=page_input.page_index,
        strategy=page_input.strategy,
        text_content=page_input.context,
        name=_coerce_scalar(payload.get("name")),
        date=_coerce_scalar(payload.get("date")),
        test_result={str(key): _coerce_entry(str(key), raw) for key, raw in raw_results.items()},
    )
