"""Pydantic schemas for the Santa script structured output.

The script is a bounded list of scenes with a fixed schema per scene, so the
scene count (and therefore keyframe and scene-operation counts) is fixed at
generation time and scene numbers are always 1..N.
"""

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field, model_validator

MAX_SCRIPT_SCENES = 10


def _coerce_to_str(v: Any) -> str:
    """Coerce list values to a single string.

    Some LLM providers return arrays for fields declared as string in the
    JSON schema.
    """
    if isinstance(v, list):
        return " ".join(str(item) for item in v)
    return v


CoercedStr = Annotated[str, BeforeValidator(_coerce_to_str)]


class ScriptScene(BaseModel):
    """One narrative segment of the final video."""

    scene_number: int = Field(ge=1, description="1-based position of the scene in the video")
    title: CoercedStr = Field(description="Short scene title")
    setting: CoercedStr = Field(description="Where the scene takes place in Santa's world")
    santa_dialogue: CoercedStr = Field(
        description="Exactly what Santa says, addressing the children by name, under 8 seconds spoken"
    )
    visual_description: CoercedStr = Field(
        description="Camera framing, Santa's pose and the surroundings for the keyframe image"
    )
    emotional_tone: CoercedStr = Field(description="e.g. 'warm', 'proud', 'playful', 'encouraging'")


class SantaScript(BaseModel):
    """Complete multi-scene script for one order."""

    title: CoercedStr = Field(default="", description="Title of the video")
    scenes: list[ScriptScene] = Field(min_length=1, max_length=MAX_SCRIPT_SCENES)

    @model_validator(mode="after")
    def _scene_numbers_are_sequential(self) -> "SantaScript":
        numbers = sorted(scene.scene_number for scene in self.scenes)
        if numbers != list(range(1, len(self.scenes) + 1)):
            raise ValueError(f"scene numbers must be 1..{len(self.scenes)}, got {numbers}")
        self.scenes.sort(key=lambda s: s.scene_number)
        return self
