"""OpenAI-compatible vision parser.

Works with the OpenAI API or any server implementing its chat completions
endpoint (set `api_url` / `openai_base_url`).
"""

import logging
from typing import Any, Optional

import openai
from openai import AsyncOpenAI

from medparse.config import Settings, settings
from medparse.errors import ExtractionBackendError
from medparse.models import PageExtractionResult, ParserModel
from medparse.parsers.base import VisionInput, VisionParser, coerce_checkup_payload, parse_json_content
from medparse.pipeline.stage_prompt import PromptBundle

logger = logging.getLogger(__name__)


class OpenAIVisionParser(VisionParser):
    """Vision parser using `openai.AsyncOpenAI`."""

    def __init__(
        self,
        config: Settings = settings,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.config = config
        self.api_key = api_key or config.openai_api_key
        self.base_url = base_url or config.openai_base_url or None
        self.timeout = timeout or config.vision_timeout_seconds

    @property
    def name(self) -> str:
        return "OpenAI"

    @property
    def api_key_required(self) -> bool:
        return True

    def _client(self, api_key: str = "", api_url: Optional[str] = None) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=api_key or self.api_key,
            base_url=api_url or self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    async def list_models(self, api_url: Optional[str] = None, api_key: str = "") -> list[ParserModel]:
        client = self._client(api_key, api_url)
        try:
            page = await client.models.list()
        except openai.OpenAIError as e:
            raise ExtractionBackendError(f"OpenAI model listing failed: {e}") from e
        finally:
            await client.close()
        return [ParserModel(id=model.id, name=model.id) for model in page.data]

    def build_messages(self, prompt: PromptBundle, page_input: VisionInput) -> list[dict[str, Any]]:
        """Chat messages for one page."""
        user_text = prompt.render_user_prompt(page_input.context or "")
        if page_input.image_data:
            user_content: Any = [
                {"type": "text", "text": user_text},
                {"type": "image_url", "image_url": {"url": page_input.image_data}},
            ]
        else:
            user_content = user_text

        return [
            {"role": "system", "content": prompt.system_prompt},
            {"role": "user", "content": user_content},
        ]

    async def extract(
        self,
        model: ParserModel,
        prompt: PromptBundle,
        page_input: VisionInput,
        api_key: str = "",
        api_url: Optional[str] = None,
    ) -> PageExtractionResult:
        client = self._client(api_key, api_url)
        try:
            response = await client.chat.completions.create(
                model=model.id,
                messages=self.build_messages(prompt, page_input),
                response_format={"type": "json_object"},
                temperature=0,
            )
        except openai.OpenAIError as e:
            raise ExtractionBackendError(f"OpenAI request failed: {e}", {"model": model.id}) from e
        finally:
            await client.close()

        if not response.choices:
            raise ExtractionBackendError("OpenAI returned no choices", {"model": model.id})

        content = response.choices[0].message.content or ""
        logger.debug("Raw OpenAI response: %s", content)
        return coerce_checkup_payload(parse_json_content(content), page_input)
