"""Keyframe generation: one reference image per scene.

Images are generated concurrently (bounded by pipeline.keyframe_concurrency)
and uploaded under {order_id}/keyframes/scene_{n}.png. One failed scene
fails the whole stage; no partial keyframe set is returned.
"""

import logging
import uuid

from santavid.config import settings
from santavid.pipeline.fanout import gather_fail_fast
from santavid.schemas.script import SantaScript, ScriptScene
from santavid.services.base import ChildProfile, ImageGenerator, StorageSink

logger = logging.getLogger(__name__)


def build_keyframe_prompt(scene: ScriptScene, children: list[ChildProfile]) -> str:
    names = ", ".join(child.name for child in children)
    return (
        f"{settings.pipeline.style} film still, {settings.pipeline.aspect_ratio} frame. "
        f"Santa Claus, {scene.visual_description}. Setting: {scene.setting}. "
        f"Mood: {scene.emotional_tone}. Scene for a video message to {names}. "
        "No text, no captions, no watermark."
    )


async def generate_keyframes(
    order_id: uuid.UUID,
    script: SantaScript,
    children: list[ChildProfile],
    image_generator: ImageGenerator,
    storage: StorageSink,
) -> list[str]:
    """Generate and store one keyframe per scene. Returns URLs in scene order."""

    def _job(scene: ScriptScene):
        async def _run() -> str:
            image = await image_generator.generate(build_keyframe_prompt(scene, children))
            key = f"{order_id}/keyframes/scene_{scene.scene_number}.png"
            url = await storage.store(image.data, key, image.mime_type)
            logger.info(f"Order {order_id}: keyframe for scene {scene.scene_number} stored")
            return url

        return _run

    urls = await gather_fail_fast(
        "keyframes",
        {scene.scene_number: _job(scene) for scene in script.scenes},
        settings.pipeline.keyframe_concurrency,
    )
    return [urls[n] for n in sorted(urls)]
