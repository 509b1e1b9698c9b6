"""Ollama vision parser.

Uses Ollama's native chat API with JSON output mode. Images are sent as
raw base64 in the message's `images` list.
"""

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from medparse.config import Settings, settings
from medparse.errors import ExtractionBackendError
from medparse.models import PageExtractionResult, ParserModel
from medparse.parsers.base import VisionInput, VisionParser, coerce_checkup_payload, parse_json_content
from medparse.pipeline.stage_prompt import PromptBundle

logger = logging.getLogger(__name__)


class OllamaVisionParser(VisionParser):
    """Vision parser backed by a local Ollama server."""

    def __init__(
        self,
        config: Settings = settings,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize parser.

        Args:
            config: Settings providing defaults
            api_url: Ollama base URL (default from settings)
            timeout: Per-call timeout in seconds (default from settings)
        """
        self.config = config
        self.api_url = (api_url or config.vision_backend_url).rstrip("/")
        self.timeout = timeout or config.vision_timeout_seconds

    @property
    def name(self) -> str:
        return "Ollama"

    @property
    def enabled(self) -> bool:
        return self.config.is_local

    @property
    def api_url_required(self) -> bool:
        return True

    async def _request_json(
        self,
        method: str,
        url: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url, json=payload) as response:
                    if response.status >= 400:
                        body = await response.text()
                        raise ExtractionBackendError(
                            f"Ollama returned HTTP {response.status}",
                            {"url": url, "body": body[:200]},
                        )
                    return await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise ExtractionBackendError(
                f"Ollama timed out after {self.timeout:.0f}s",
                {"url": url},
            ) from e
        except aiohttp.ClientError as e:
            raise ExtractionBackendError(f"Ollama request failed: {e}", {"url": url}) from e
        except ValueError as e:
            raise ExtractionBackendError("Ollama returned invalid JSON", {"url": url}) from e

    async def list_models(self, api_url: Optional[str] = None, api_key: str = "") -> list[ParserModel]:
        base_url = (api_url or self.api_url).rstrip("/")
        data = await self._request_json("GET", f"{base_url}/api/tags")
        return [
            ParserModel(id=model["model"], name=model.get("name", model["model"]))
            for model in data.get("models") or []
        ]

    def build_messages(self, prompt: PromptBundle, page_input: VisionInput) -> list[dict[str, Any]]:
        """Chat messages for one page."""
        user_message: dict[str, Any] = {
            "role": "user",
            "content": prompt.render_user_prompt(page_input.context or ""),
        }
        if page_input.image_base64:
            user_message["images"] = [page_input.image_base64]

        return [
            {"role": "system", "content": prompt.system_prompt},
            user_message,
        ]

    async def extract(
        self,
        model: ParserModel,
        prompt: PromptBundle,
        page_input: VisionInput,
        api_key: str = "",
        api_url: Optional[str] = None,
    ) -> PageExtractionResult:
        base_url = (api_url or self.api_url).rstrip("/")
        logger.debug(
            "Ollama extract page %d (%s) with %s, language %s",
            page_input.page_index,
            page_input.strategy.value,
            model.id,
            prompt.language,
        )

        data = await self._request_json(
            "POST",
            f"{base_url}/api/chat",
            {
                "model": model.id,
                "messages": self.build_messages(prompt, page_input),
                "format": "json",
                "stream": False,
            },
        )

        try:
            content = data["message"]["content"]
        except (KeyError, TypeError) as e:
            raise ExtractionBackendError(f"Unexpected Ollama response: {e}") from e

        logger.debug("Raw Ollama response: %s", content)
        return coerce_checkup_payload(parse_json_content(content), page_input)
