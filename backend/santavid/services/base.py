"""Abstract interfaces for the pipeline's external collaborators.

The orchestrator only talks to these interfaces; concrete vendors (Gemini,
Veo, Supabase, Resend) live in sibling modules and tests substitute fakes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from santavid.schemas.operations import VideoJobStatus
from santavid.schemas.script import SantaScript, ScriptScene


@dataclass(frozen=True)
class ChildProfile:
    """Immutable view of a child used for script and prompt generation."""

    name: str
    age: int
    good_behavior: str
    thing_to_improve: str
    thing_to_learn: str
    photo_url: Optional[str] = None


@dataclass(frozen=True)
class GeneratedImage:
    data: bytes
    mime_type: str = "image/png"


class ScriptGenerator(ABC):
    @abstractmethod
    async def generate(
        self,
        children: list[ChildProfile],
        custom_message: Optional[str] = None,
    ) -> SantaScript:
        """Write the multi-scene script for an order."""
        ...


class ImageGenerator(ABC):
    @abstractmethod
    async def generate(self, prompt: str) -> GeneratedImage:
        """Generate one keyframe image from a scene prompt."""
        ...


class SceneVideoGenerator(ABC):
    """Long-running scene video generation: kickoff returns a handle to poll."""

    @abstractmethod
    async def start(self, scene: ScriptScene, reference_image_url: str) -> str:
        """Start a job for one scene and return its opaque handle."""
        ...

    @abstractmethod
    async def poll(self, handle: str) -> VideoJobStatus:
        """Query the remote status of a job once.

        Raises on transport/remote faults; an explicit generation failure is
        returned as VideoJobStatus(state="failed").
        """
        ...


class StorageSink(ABC):
    @abstractmethod
    async def store(self, data: bytes, key: str, content_type: str) -> str:
        """Upload bytes under key (replacing any existing object) and return a public URL."""
        ...


class Notifier(ABC):
    @abstractmethod
    async def send(self, to: str, subject: str, html: str) -> None:
        ...
