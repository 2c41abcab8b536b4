"""Ollama adapter for the LLM abstraction layer.

Uses format='json' and appends a compact schema description to the system
prompt; Ollama does not reliably enforce a full JSON schema passed via the
format parameter.
"""

import json
import logging
from typing import Optional, Type

from ollama import AsyncClient
from tenacity import before_sleep_log, retry, retry_if_exception, stop_after_attempt, wait_exponential

from santavid.services.llm.base import LLMAdapter, SchemaT, retry_llm_call

logger = logging.getLogger(__name__)


def _schema_instruction(schema: Type[SchemaT]) -> str:
    schema_json = json.dumps(schema.model_json_schema(), indent=2)
    return (
        "\n\nRespond with a single JSON object only (no markdown, no commentary). "
        "It must conform to this JSON schema:\n"
        f"{schema_json}\n"
        "All string fields must be strings, not arrays."
    )


def _strip_code_fence(raw: str) -> str:
    """Remove a ```json ... ``` wrapper some models add despite format='json'."""
    stripped = raw.strip()
    if not stripped.startswith("```"):
        return raw
    first_newline = stripped.find("\n")
    stripped = stripped[first_newline + 1:] if first_newline != -1 else ""
    if stripped.endswith("```"):
        stripped = stripped[:-3].rstrip()
    return stripped


class OllamaAdapter(LLMAdapter):
    """LLM adapter backed by a local or hosted Ollama instance.

    Model IDs carry an "ollama/" prefix that is stripped before the call.
    """

    def __init__(
        self,
        model_id: str,
        base_url: str = "http://localhost:11434",
        api_key: Optional[str] = None,
    ) -> None:
        self._ollama_model = model_id.removeprefix("ollama/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = AsyncClient(host=base_url, headers=headers)

    async def generate_text(
        self,
        prompt: str,
        schema: Type[SchemaT],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> SchemaT:
        system = (system_prompt or "") + _schema_instruction(schema)

        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception(retry_llm_call),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def _call() -> SchemaT:
            response = await self._client.chat(
                model=self._ollama_model,
                messages=[
                    {"role": "system", "content": system.lstrip()},
                    {"role": "user", "content": prompt},
                ],
                format="json",
                options={"temperature": temperature},
                stream=False,
            )
            return schema.model_validate_json(_strip_code_fence(response.message.content))

        return await _call()
