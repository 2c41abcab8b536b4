"""Keyframe image generation with Gemini image models."""

import logging
from typing import Optional

from google import genai
from google.genai import types

from santavid.config import settings
from santavid.errors import ExternalGenerationFailure
from santavid.services.base import GeneratedImage, ImageGenerator
from santavid.services.retry import provider_retry
from santavid.services.vertex_client import get_genai_client, location_for_model

logger = logging.getLogger(__name__)


class GeminiImageGenerator(ImageGenerator):
    """Text-to-image via generate_content with response_modalities=["IMAGE"]."""

    def __init__(self, model_id: Optional[str] = None, client: Optional[genai.Client] = None):
        self._model_id = model_id or settings.models.image_gen
        self._client = client

    async def generate(self, prompt: str) -> GeneratedImage:
        @provider_retry()
        async def _call() -> types.GenerateContentResponse:
            client = self._client or get_genai_client(location=location_for_model(self._model_id))
            return await client.aio.models.generate_content(
                model=self._model_id,
                contents=prompt,
                config=types.GenerateContentConfig(
                    response_modalities=["IMAGE"],
                ),
            )

        response = await _call()
        for candidate in response.candidates or []:
            if candidate.content is None:
                continue
            for part in candidate.content.parts or []:
                if part.inline_data and part.inline_data.data:
                    return GeneratedImage(
                        data=part.inline_data.data,
                        mime_type=part.inline_data.mime_type or "image/png",
                    )

        raise ExternalGenerationFailure("keyframes", f"{self._model_id} returned no image")
