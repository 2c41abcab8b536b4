"""LLM provider abstraction layer.

Usage:
    from santavid.services.llm import get_adapter

    adapter = get_adapter("gemini-2.5-flash")
    script = await adapter.generate_text(prompt, SantaScript)
"""

from santavid.services.llm.base import LLMAdapter
from santavid.services.llm.registry import get_adapter

__all__ = ["LLMAdapter", "get_adapter"]
