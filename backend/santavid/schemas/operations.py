"""Schemas for scene-video operations, poll results and stitch segments."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

OperationStatus = Literal["pending", "running", "complete", "failed"]
TERMINAL_OPERATION_STATUSES = frozenset({"complete", "failed"})

ERROR_TIMEOUT = "timeout"
ERROR_GENERATION_FAILED = "generation_failed"


class SceneOperationState(BaseModel):
    """Snapshot of one scene's video-generation job."""

    scene_number: int = Field(ge=1)
    external_handle: str
    status: OperationStatus = "pending"
    video_url: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    poll_count: int = 0
    started_at: Optional[datetime] = None
    last_polled_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_OPERATION_STATUSES


class PollResult(BaseModel):
    """Refreshed operations plus aggregate predicates.

    all_complete means every entry is terminal (complete or failed), not that
    every entry succeeded. An empty set is never complete.
    """

    operations: list[SceneOperationState]
    all_complete: bool
    any_failed: bool
    completed_count: int
    total_count: int

    @classmethod
    def from_operations(cls, operations: list[SceneOperationState]) -> "PollResult":
        return cls(
            operations=operations,
            all_complete=bool(operations) and all(op.is_terminal for op in operations),
            any_failed=any(op.status == "failed" for op in operations),
            completed_count=sum(1 for op in operations if op.status == "complete"),
            total_count=len(operations),
        )


class VideoJobStatus(BaseModel):
    """Remote status reported by the scene-video generator for one handle."""

    state: Literal["running", "complete", "failed"]
    video_url: Optional[str] = None
    error: Optional[str] = None


class Segment(BaseModel):
    """One completed video segment to stitch. `order` defines final sequence."""

    url: str
    type: str = "veo"
    order: int
