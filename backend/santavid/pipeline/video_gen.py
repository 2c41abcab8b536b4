"""Scene video kickoff and the operation poller.

Kickoff starts one scene-video job per scene concurrently and returns the
handles keyed by scene number; persisting them is the orchestrator's job.

The poller takes a snapshot of outstanding operations, queries each
non-terminal one once, and returns the refreshed list. It has no side
effects beyond the status queries, so repeated invocation (from an interval
driver or the status endpoint) is how completion is observed.
Queries for one operation are spaced at least video_poll_interval apart, so a
caller hammering the status endpoint cannot exhaust video_poll_max early.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from santavid.config import settings
from santavid.db.models import utcnow
from santavid.pipeline.fanout import gather_fail_fast
from santavid.schemas.operations import (
    ERROR_GENERATION_FAILED,
    ERROR_TIMEOUT,
    PollResult,
    SceneOperationState,
)
from santavid.schemas.script import SantaScript, ScriptScene
from santavid.services.base import SceneVideoGenerator

logger = logging.getLogger(__name__)


async def kickoff_scene_videos(
    script: SantaScript,
    keyframe_urls: list[str],
    generator: SceneVideoGenerator,
) -> dict[int, str]:
    """Start one job per scene. Any kickoff failure fails the stage."""
    if len(keyframe_urls) != len(script.scenes):
        raise ValueError(
            f"Expected {len(script.scenes)} keyframes, found {len(keyframe_urls)}"
        )

    def _job(scene: ScriptScene, image_url: str):
        return lambda: generator.start(scene, image_url)

    return await gather_fail_fast(
        "scene_kickoff",
        {
            scene.scene_number: _job(scene, url)
            for scene, url in zip(script.scenes, keyframe_urls)
        },
        settings.pipeline.video_kickoff_concurrency,
    )


def _timed_out(
    op: SceneOperationState,
    now: datetime,
    max_polls: int,
    timeout_seconds: float,
) -> SceneOperationState:
    """Convert a still-open operation to a timeout failure once a bound is hit."""
    elapsed = (now - op.started_at).total_seconds() if op.started_at else 0.0
    if op.poll_count < max_polls and elapsed <= timeout_seconds:
        return op
    return op.model_copy(update={
        "status": "failed",
        "error_code": ERROR_TIMEOUT,
        "error": f"Scene {op.scene_number} did not resolve after {op.poll_count} polls ({int(elapsed)}s)",
    })


async def poll_operations(
    operations: list[SceneOperationState],
    generator: SceneVideoGenerator,
    *,
    max_polls: Optional[int] = None,
    timeout_seconds: Optional[float] = None,
    concurrency: Optional[int] = None,
    min_interval: Optional[float] = None,
    now: Optional[datetime] = None,
) -> PollResult:
    """Refresh each pending/running operation once.

    - Terminal entries are returned unchanged without a query.
    - An entry queried less than min_interval seconds ago is not queried
      again; only the wall-time bound is checked. poll_count therefore counts
      spaced-out queries, however often the cycle itself is triggered.
    - A query that raises leaves the entry as it was (poll_count included).
    - An explicit remote failure becomes failed/generation_failed.
    - An entry still open after max_polls queries, or older than
      timeout_seconds, becomes failed/timeout.
    Output order matches input order.
    """
    max_polls = max_polls if max_polls is not None else settings.pipeline.video_poll_max
    timeout_seconds = (
        timeout_seconds if timeout_seconds is not None else settings.pipeline.video_timeout_seconds
    )
    min_interval = (
        min_interval if min_interval is not None else settings.pipeline.video_poll_interval
    )
    now = now or utcnow()
    semaphore = asyncio.Semaphore(max(1, concurrency or settings.pipeline.poll_concurrency))

    async def _refresh(op: SceneOperationState) -> SceneOperationState:
        if op.is_terminal:
            return op
        if op.last_polled_at and (now - op.last_polled_at).total_seconds() < min_interval:
            return _timed_out(op, now, max_polls, timeout_seconds)

        async with semaphore:
            try:
                remote = await generator.poll(op.external_handle)
            except Exception as e:
                logger.warning(
                    f"Scene {op.scene_number}: status query failed, will retry next cycle: "
                    f"{type(e).__name__}: {e}"
                )
                return _timed_out(op, now, max_polls, timeout_seconds)

        polls = op.poll_count + 1
        if remote.state == "complete" and remote.video_url:
            return op.model_copy(update={
                "status": "complete",
                "video_url": remote.video_url,
                "error": None,
                "error_code": None,
                "poll_count": polls,
                "last_polled_at": now,
            })
        if remote.state in ("complete", "failed"):
            error = remote.error or "completed without a video URL"
            logger.warning(f"Scene {op.scene_number}: generation failed: {error}")
            return op.model_copy(update={
                "status": "failed",
                "error": error,
                "error_code": ERROR_GENERATION_FAILED,
                "poll_count": polls,
                "last_polled_at": now,
            })

        running = op.model_copy(update={"status": "running", "poll_count": polls, "last_polled_at": now})
        return _timed_out(running, now, max_polls, timeout_seconds)

    refreshed = await asyncio.gather(*(_refresh(op) for op in operations))
    return PollResult.from_operations(list(refreshed))
