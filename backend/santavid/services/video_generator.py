"""Scene video generation with Veo long-running operations.

`start` submits one image-to-video job and returns the operation name;
`poll` fetches that operation once and maps it to running / complete /
failed. Completed videos are exposed as an https URL: a gs:// result is
rewritten to its storage.googleapis.com form, and inline bytes are uploaded
through the storage sink.
"""

import logging
from typing import Optional

import httpx
from google import genai
from google.genai import types

from santavid.config import settings
from santavid.schemas.operations import VideoJobStatus
from santavid.schemas.script import ScriptScene
from santavid.services.base import SceneVideoGenerator, StorageSink
from santavid.services.retry import provider_retry
from santavid.services.vertex_client import get_genai_client, location_for_model

logger = logging.getLogger(__name__)

NEGATIVE_PROMPT = (
    "text overlay, watermark, logo, subtitles, blurry, deformed hands, "
    "extra fingers, scary, dark, violent"
)


def build_video_prompt(scene: ScriptScene) -> str:
    """Prompt for one scene: visuals, tone and Santa's spoken line."""
    return (
        f"{scene.visual_description} Setting: {scene.setting}. "
        f"Mood: {scene.emotional_tone}, {settings.pipeline.style}. "
        f"Santa Claus looks into the camera and says warmly: \"{scene.santa_dialogue}\""
    )


def gcs_to_https(uri: str) -> str:
    """gs://bucket/path -> https://storage.googleapis.com/bucket/path."""
    if uri.startswith("gs://"):
        return "https://storage.googleapis.com/" + uri[len("gs://"):]
    return uri


class VeoSceneVideoGenerator(SceneVideoGenerator):

    def __init__(
        self,
        storage: Optional[StorageSink] = None,
        *,
        model_id: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        client: Optional[genai.Client] = None,
    ):
        self._storage = storage
        self._model_id = model_id or settings.models.video_gen
        self._http = http_client
        self._client = client

    def _genai(self) -> genai.Client:
        return self._client or get_genai_client(location=location_for_model(self._model_id))

    async def _fetch_reference(self, url: str) -> bytes:
        @provider_retry()
        async def _get() -> bytes:
            if self._http is not None:
                response = await self._http.get(url)
            else:
                async with httpx.AsyncClient(timeout=60.0, follow_redirects=True) as http:
                    response = await http.get(url)
            response.raise_for_status()
            return response.content

        return await _get()

    async def start(self, scene: ScriptScene, reference_image_url: str) -> str:
        image_bytes = await self._fetch_reference(reference_image_url)
        config = types.GenerateVideosConfig(
            aspect_ratio=settings.pipeline.aspect_ratio,
            duration_seconds=settings.pipeline.clip_duration,
            number_of_videos=1,
            negative_prompt=NEGATIVE_PROMPT,
            person_generation="allow_adult",
        )
        if settings.google_cloud.use_vertex_ai:
            config.generate_audio = True

        @provider_retry()
        async def _submit() -> types.GenerateVideosOperation:
            return await self._genai().aio.models.generate_videos(
                model=self._model_id,
                prompt=build_video_prompt(scene),
                image=types.Image(image_bytes=image_bytes, mime_type="image/png"),
                config=config,
            )

        operation = await _submit()
        logger.info(f"Scene {scene.scene_number}: submitted Veo job {operation.name}")
        return operation.name

    async def poll(self, handle: str) -> VideoJobStatus:
        @provider_retry(max_attempts=2)
        async def _get() -> types.GenerateVideosOperation:
            return await self._genai().aio.operations.get(
                operation=types.GenerateVideosOperation(name=handle)
            )

        operation = await _get()
        if not operation.done:
            return VideoJobStatus(state="running")

        if operation.error:
            message = operation.error.get("message") if isinstance(operation.error, dict) else None
            return VideoJobStatus(state="failed", error=message or str(operation.error))

        videos = list(operation.response.generated_videos or []) if operation.response else []
        if not videos or videos[0].video is None:
            filtered = getattr(operation.response, "rai_media_filtered_count", 0) or 0
            reason = "filtered by content policy" if filtered else "no video generated"
            return VideoJobStatus(state="failed", error=reason)

        video = videos[0].video
        if video.uri:
            return VideoJobStatus(state="complete", video_url=gcs_to_https(video.uri))
        if video.video_bytes and self._storage is not None:
            key = f"scenes/{handle.rsplit('/', 1)[-1]}.mp4"
            url = await self._storage.store(video.video_bytes, key, video.mime_type or "video/mp4")
            return VideoJobStatus(state="complete", video_url=url)

        return VideoJobStatus(state="failed", error="video returned without a retrievable location")
