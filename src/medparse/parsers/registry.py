"""Name-keyed registries of parser providers.

Registries are built once at startup with `build_registries` and passed to
the pipeline explicitly.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Generic, Iterable, Iterator, TypeVar

from medparse.config import Settings, settings
from medparse.errors import InvalidModelSelectionError, InvalidParserSelectionError
from medparse.models import ParserModel

from .base import BaseParser, DocumentParser, VisionParser
from .document import DoclingDocumentParser, TesseractDocumentParser
from .vision import OllamaVisionParser, OpenAIVisionParser

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=BaseParser)


class ParserRegistry(Generic[P]):
    """Closed set of providers for one capability."""

    def __init__(self, kind: str, parsers: Iterable[P]):
        """Initialize registry.

        Args:
            kind: Capability label used in error messages ("document", "vision")
            parsers: Providers; names must be unique

        Raises:
            ValueError: On duplicate provider names.
        """
        self.kind = kind
        entries: dict[str, P] = {}
        for parser in parsers:
            if parser.name in entries:
                raise ValueError(f"Duplicate {kind} parser name: {parser.name}")
            entries[parser.name] = parser
        self._parsers = MappingProxyType(entries)

    def __contains__(self, name: object) -> bool:
        return name in self._parsers

    def __iter__(self) -> Iterator[P]:
        return iter(self._parsers.values())

    def __len__(self) -> int:
        return len(self._parsers)

    def names(self) -> list[str]:
        return list(self._parsers)

    def available(self) -> list[P]:
        """Providers enabled in the current deployment."""
        return [parser for parser in self._parsers.values() if parser.enabled]

    def get(self, name: str) -> P:
        """Look up a provider by name.

        Raises:
            InvalidParserSelectionError: If no provider has that name.
        """
        try:
            return self._parsers[name]
        except KeyError:
            raise InvalidParserSelectionError(self.kind, name, self.names()) from None


async def resolve_model(parser: BaseParser, model_id: str, **list_kwargs) -> ParserModel:
    """Find a model offered by a provider.

    Args:
        parser: Provider to query.
        model_id: Requested model identifier.
        **list_kwargs: Passed to the provider's `list_models`.

    Raises:
        InvalidModelSelectionError: If the provider does not offer the model.
    """
    models = await parser.list_models(**list_kwargs)
    for model in models:
        if model.id == model_id:
            return model
    raise InvalidModelSelectionError(parser.name, model_id, [model.id for model in models])


@dataclass(frozen=True)
class ParserRegistries:
    """Document and vision registries used by one pipeline."""

    document: ParserRegistry[DocumentParser]
    vision: ParserRegistry[VisionParser]


def build_registries(config: Settings = settings) -> ParserRegistries:
    """Construct the provider registries for a process."""
    registries = ParserRegistries(
        document=ParserRegistry(
            "document",
            [
                DoclingDocumentParser(config),
                TesseractDocumentParser(config),
            ],
        ),
        vision=ParserRegistry(
            "vision",
            [
                OllamaVisionParser(config),
                OpenAIVisionParser(config),
            ],
        ),
    )
    logger.debug(
        "Registered parsers: document=%s vision=%s",
        registries.document.names(),
        registries.vision.names(),
    )
    return registries
