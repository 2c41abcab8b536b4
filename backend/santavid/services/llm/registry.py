"""Provider registry for LLM adapters.

Model IDs prefixed "ollama/" route to Ollama; everything else goes to Gemini.
"""

import logging
from typing import Optional

from santavid.config import settings
from santavid.services.llm.base import LLMAdapter

logger = logging.getLogger(__name__)


def get_adapter(model_id: Optional[str] = None) -> LLMAdapter:
    """Return the adapter for `model_id` (defaults to settings.models.script_llm)."""
    model_id = model_id or settings.models.script_llm

    if model_id.startswith("ollama/"):
        from santavid.services.llm.ollama_adapter import OllamaAdapter

        logger.debug(f"Routing {model_id} to OllamaAdapter ({settings.models.ollama_endpoint})")
        return OllamaAdapter(
            model_id=model_id,
            base_url=settings.models.ollama_endpoint,
            api_key=settings.models.ollama_api_key or None,
        )

    from santavid.services.llm.vertex_adapter import VertexAIAdapter

    logger.debug(f"Routing {model_id} to VertexAIAdapter")
    return VertexAIAdapter(model_id=model_id)
