"""Vision parser providers."""

from .ollama import OllamaVisionParser
from .openai_vision import OpenAIVisionParser

__all__ = [
    "OllamaVisionParser",
    "OpenAIVisionParser",
]
