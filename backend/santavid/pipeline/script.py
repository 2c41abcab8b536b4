"""Santa script generation.

Builds the prompt from the order's children and asks the configured LLM for
a SantaScript. The scene count is clamped to pipeline.max_scenes.
"""

import logging
from typing import Optional

from santavid.config import settings
from santavid.errors import ExternalGenerationFailure
from santavid.schemas.script import SantaScript
from santavid.services.base import ChildProfile, ScriptGenerator
from santavid.services.llm import LLMAdapter, get_adapter

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a screenwriter for magical, personalized video messages from Santa Claus. "
    "Santa is warm, jolly and encouraging and never scolds. Keep language right for the "
    "children's ages and use their names naturally."
)


def build_script_prompt(
    children: list[ChildProfile],
    custom_message: Optional[str] = None,
    scene_count: Optional[int] = None,
) -> str:
    """Prompt describing the children and the required scene structure."""
    scene_count = scene_count or settings.pipeline.max_scenes

    lines = ["Write Santa's script for these children:"]
    for child in children:
        lines.append(
            f"- {child.name}, age {child.age}. Praise: {child.good_behavior}. "
            f"Gently encourage improving: {child.thing_to_improve}. "
            f"Cheer on learning: {child.thing_to_learn}."
        )
    if custom_message:
        lines.append(f"Message from the parents to weave in: {custom_message}")

    lines += [
        "",
        f"Return exactly {scene_count} scenes numbered 1 to {scene_count}, each about "
        f"{settings.pipeline.clip_duration} seconds of speech.",
        "Open with Santa greeting the children at home, find their names on the Nice List, "
        "praise, encourage, and end with a warm Christmas goodbye and a final 'Ho ho ho!'.",
        "For every scene give title, setting, santa_dialogue, visual_description and emotional_tone.",
    ]
    return "\n".join(lines)


class LLMScriptGenerator(ScriptGenerator):
    """ScriptGenerator backed by an LLMAdapter (Gemini or Ollama)."""

    def __init__(self, adapter: Optional[LLMAdapter] = None):
        self._adapter = adapter

    async def generate(
        self,
        children: list[ChildProfile],
        custom_message: Optional[str] = None,
    ) -> SantaScript:
        adapter = self._adapter or get_adapter()
        prompt = build_script_prompt(children, custom_message)
        try:
            script = await adapter.generate_text(
                prompt,
                SantaScript,
                temperature=0.9,
                system_prompt=SYSTEM_PROMPT,
                max_retries=settings.pipeline.retry_max_attempts,
            )
        except Exception as e:
            raise ExternalGenerationFailure("script", f"Script generation failed: {type(e).__name__}: {e}") from e

        max_scenes = settings.pipeline.max_scenes
        if len(script.scenes) > max_scenes:
            logger.warning(f"Script had {len(script.scenes)} scenes, keeping the first {max_scenes}")
            script = script.model_copy(update={"scenes": script.scenes[:max_scenes]})
        if len(script.scenes) < settings.pipeline.min_scenes:
            raise ExternalGenerationFailure(
                "script", f"Script had {len(script.scenes)} scenes, need at least {settings.pipeline.min_scenes}"
            )
        return script
