"""Gemini adapter for the LLM abstraction layer.

Uses response_schema for structured JSON output and the location-aware
client cache from santavid.services.vertex_client.
"""

import logging
from typing import Optional, Type

from google.genai import types as genai_types
from tenacity import before_sleep_log, retry, retry_if_exception, stop_after_attempt, wait_exponential

from santavid.services.llm.base import LLMAdapter, SchemaT, retry_llm_call
from santavid.services.vertex_client import get_genai_client, location_for_model

logger = logging.getLogger(__name__)


class VertexAIAdapter(LLMAdapter):
    """LLM adapter backed by the google-genai SDK (Vertex AI or Developer API)."""

    def __init__(self, model_id: str) -> None:
        self._model_id = model_id

    async def generate_text(
        self,
        prompt: str,
        schema: Type[SchemaT],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> SchemaT:
        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception(retry_llm_call),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def _call() -> SchemaT:
            client = get_genai_client(location=location_for_model(self._model_id))
            config = genai_types.GenerateContentConfig(
                temperature=temperature,
                response_mime_type="application/json",
                response_schema=schema,
                system_instruction=system_prompt or None,
            )
            response = await client.aio.models.generate_content(
                model=self._model_id,
                contents=prompt,
                config=config,
            )
            return schema.model_validate_json(response.text)

        return await _call()
