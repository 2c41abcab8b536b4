"""Pipeline orchestrator: drives an order from paid to a published video.

Each invocation is an independent unit of work that re-derives every
decision from the persisted order:

    paid -> generating_script -> generating_keyframes -> keyframes_ready
         -> generating_scenes (kickoff, then one poll cycle per invocation)
         -> stitching -> complete

Stages that must run at most once are claimed with a compare-and-set
transition; an invocation that loses a claim returns without side effects.
Scene generation does not block: kickoff records the operation handles and
returns, and later invocations (status endpoint, advance trigger, CLI watch
or sweep) poll them until every scene is terminal.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from santavid.config import settings
from santavid.db.models import Order, PipelineRun, utcnow
from santavid.errors import ExternalGenerationFailure, InvalidTransition, Timeout, Unauthorized
from santavid.orchestrator import state
from santavid.pipeline.keyframes import generate_keyframes
from santavid.pipeline.stitcher import SegmentStitcher, order_segments, segments_from_operations
from santavid.pipeline.video_gen import kickoff_scene_videos, poll_operations
from santavid.schemas.operations import ERROR_TIMEOUT, PollResult, SceneOperationState, Segment
from santavid.schemas.script import SantaScript
from santavid.services import order_service
from santavid.services.base import (
    ChildProfile,
    ImageGenerator,
    Notifier,
    SceneVideoGenerator,
    ScriptGenerator,
    StorageSink,
)
from santavid.services.notifications import notify_customer

logger = logging.getLogger(__name__)


@dataclass
class PipelineServices:
    """External collaborators used by the orchestrator."""

    script_generator: ScriptGenerator
    image_generator: ImageGenerator
    video_generator: SceneVideoGenerator
    storage: StorageSink
    notifier: Notifier
    stitcher: SegmentStitcher


def build_default_services() -> PipelineServices:
    """Gemini script/images, Veo scenes, Supabase storage, Resend e-mail."""
    from santavid.pipeline.script import LLMScriptGenerator
    from santavid.services.image_generator import GeminiImageGenerator
    from santavid.services.notifications import ResendNotifier
    from santavid.services.storage import SupabaseStorageSink
    from santavid.services.video_generator import VeoSceneVideoGenerator

    storage = SupabaseStorageSink()
    return PipelineServices(
        script_generator=LLMScriptGenerator(),
        image_generator=GeminiImageGenerator(),
        video_generator=VeoSceneVideoGenerator(storage),
        storage=storage,
        notifier=ResendNotifier(),
        stitcher=SegmentStitcher(storage),
    )


def child_profiles(order: Order) -> list[ChildProfile]:
    return [
        ChildProfile(
            name=child.name,
            age=child.age,
            good_behavior=child.good_behavior,
            thing_to_improve=child.thing_to_improve,
            thing_to_learn=child.thing_to_learn,
            photo_url=child.photo_url,
        )
        for child in order.children
    ]


def _is_stale(order: Order) -> bool:
    """True when a mid-stage order has not been touched for stage_stale_seconds."""
    age = utcnow() - order.updated_at
    return age > timedelta(seconds=settings.pipeline.stage_stale_seconds)


async def _claim(session: AsyncSession, order_id: uuid.UUID, from_status: str, to_status: str) -> bool:
    """Compare-and-set that reports a lost race as False instead of raising."""
    try:
        await order_service.transition(session, order_id, from_status, to_status)
    except InvalidTransition as e:
        logger.info(f"Order {order_id}: {from_status} -> {to_status} claimed elsewhere (now {e.current})")
        return False
    return True


def scene_failure(operations: list[SceneOperationState]) -> ExternalGenerationFailure:
    """Aggregate failed operations into one error (Timeout when all timed out)."""
    failed = [op for op in operations if op.status == "failed"]
    failures = {op.scene_number: op.error or op.error_code or "failed" for op in failed}
    if failed and all(op.error_code == ERROR_TIMEOUT for op in failed):
        return Timeout.aggregate("scene_videos", failures)
    return ExternalGenerationFailure.aggregate("scene_videos", failures)


async def _notify(session: AsyncSession, order_id: uuid.UUID, services: PipelineServices, kind: str) -> None:
    order = await order_service.get_order(session, order_id, with_children=True, refresh=True)
    await notify_customer(services.notifier, order, kind)


async def _stitch(
    session: AsyncSession,
    order_id: uuid.UUID,
    segments: list[Segment],
    services: PipelineServices,
) -> str:
    """Stitch an order already claimed into `stitching`; fail it on error."""
    try:
        url = await services.stitcher.stitch(session, order_id, segments)
    except Exception as e:
        await session.rollback()
        if await order_service.fail_order(session, order_id, f"stitching failed: {type(e).__name__}: {e}"):
            await _notify(session, order_id, services, "failed")
        raise
    await _notify(session, order_id, services, "ready")
    return url


async def poll_scenes(
    session: AsyncSession,
    order_id: uuid.UUID,
    services: PipelineServices,
) -> PollResult:
    """Run one poll cycle for an order and persist the refreshed statuses.

    When every operation is terminal and at least one failed, the order is
    moved to failed with the aggregated scene errors. Stitching is left to
    run_pipeline so that it happens in exactly one invocation.
    """
    operations = await order_service.load_scene_operations(session, order_id)
    if not operations:
        return PollResult.from_operations([])

    result = await poll_operations(operations, services.video_generator)
    await order_service.apply_poll_results(session, order_id, operations, result.operations)

    # re-read: a concurrent cycle may have resolved some entries first
    stored = PollResult.from_operations(await order_service.load_scene_operations(session, order_id))
    await order_service.update_progress(
        session,
        order_id,
        stage=state.GENERATING_SCENES,
        scenes_complete=stored.completed_count,
        scenes_failed=sum(1 for op in stored.operations if op.status == "failed"),
        total_scenes=stored.total_count,
    )

    if stored.all_complete and stored.any_failed:
        error = scene_failure(stored.operations)
        logger.error(f"Order {order_id}: {error}")
        if await order_service.fail_order(session, order_id, str(error)):
            await _notify(session, order_id, services, "failed")

    return stored


async def _advance_scenes(
    session: AsyncSession,
    order: Order,
    services: PipelineServices,
) -> str:
    """Poll once; stitch when every scene succeeded."""
    result = await poll_scenes(session, order.id, services)

    if result.total_count == 0:
        if _is_stale(order):
            message = "scene kickoff did not record any operations"
            if await order_service.fail_order(session, order.id, message):
                await _notify(session, order.id, services, "failed")
            return state.FAILED
        return state.GENERATING_SCENES

    if not result.all_complete:
        logger.info(
            f"Order {order.id}: {result.completed_count}/{result.total_count} scenes complete, "
            "waiting for next poll"
        )
        return state.GENERATING_SCENES
    if result.any_failed:
        return state.FAILED

    if not await _claim(session, order.id, state.GENERATING_SCENES, state.STITCHING):
        return state.STITCHING
    await _stitch(session, order.id, segments_from_operations(result.operations), services)
    return state.COMPLETE


async def run_pipeline(
    session: AsyncSession,
    order_id: uuid.UUID,
    services: PipelineServices,
    *,
    trigger: str = "manual",
    progress_callback: Optional[Callable[[str], None]] = None,
) -> str:
    """Advance an order as far as it can go in this invocation.

    Safe to call repeatedly: ineligible statuses are a no-op, the script is
    generated once, and kickoff and stitching each run in exactly one
    invocation.

    Args:
        session: Async database session for all operations
        order_id: UUID of the order to advance
        services: External collaborators
        trigger: What started this invocation (recorded on the PipelineRun)
        progress_callback: Optional callback for status updates (CLI display)

    Returns:
        The order status when this invocation stopped.

    Raises:
        NotFound: If the order does not exist.
        Exception: Re-raises a stage failure after persisting the failed state.
    """
    order = await order_service.get_order(session, order_id, with_children=True, refresh=True)
    status = order.status

    if status not in state.GENERATION_ELIGIBLE:
        logger.info(f"Order {order_id}: status '{status}' is not eligible for generation, nothing to do")
        return status
    if status in (state.GENERATING_SCRIPT, state.GENERATING_KEYFRAMES) and not _is_stale(order):
        logger.info(f"Order {order_id}: '{status}' is in progress in another invocation")
        return status

    logger.info(f"Starting pipeline for order {order_id} ({trigger}), current status: {status}")

    run = PipelineRun(order_id=order_id, trigger=trigger)
    session.add(run)
    await session.commit()

    step_log: Dict[str, float] = {}
    pipeline_start = time.monotonic()
    step_name = status

    def _progress(message: str) -> None:
        if progress_callback:
            progress_callback(message)

    try:
        if status == state.PAID:
            if not await _claim(session, order_id, state.PAID, state.GENERATING_SCRIPT):
                status = (await order_service.get_order(session, order_id, refresh=True)).status
                return status
            status = state.GENERATING_SCRIPT

        # Script, once per order
        if status == state.GENERATING_SCRIPT:
            step_name = "script"
            step_start = time.monotonic()
            _progress("Writing Santa's script...")
            extra = {}
            if order.generated_script is None:
                script = await services.script_generator.generate(child_profiles(order), order.custom_message)
                extra["generated_script"] = script.model_dump()
                logger.info(f"Order {order_id}: script generated with {len(script.scenes)} scenes")
            else:
                logger.info(f"Order {order_id}: reusing recorded script")
            await order_service.transition(
                session, order_id, state.GENERATING_SCRIPT, state.GENERATING_KEYFRAMES, **extra
            )
            status = state.GENERATING_KEYFRAMES
            step_log["script"] = time.monotonic() - step_start

        # Keyframes, fail fast
        if status == state.GENERATING_KEYFRAMES:
            step_name = "keyframes"
            step_start = time.monotonic()
            _progress("Creating scene images...")
            order = await order_service.get_order(session, order_id, with_children=True, refresh=True)
            script = SantaScript.model_validate(order.generated_script)
            await order_service.update_progress(
                session, order_id, stage=state.GENERATING_KEYFRAMES,
                keyframes_complete=0, total_scenes=len(script.scenes),
            )
            urls = await generate_keyframes(
                order_id, script, child_profiles(order), services.image_generator, services.storage
            )
            await order_service.transition(
                session, order_id, state.GENERATING_KEYFRAMES, state.KEYFRAMES_READY, keyframe_urls=urls
            )
            await order_service.update_progress(
                session, order_id, stage=state.KEYFRAMES_READY, keyframes_complete=len(urls)
            )
            status = state.KEYFRAMES_READY
            step_log["keyframes"] = time.monotonic() - step_start

        # Kick off scene videos and record handles
        if status == state.KEYFRAMES_READY:
            step_name = "scene_kickoff"
            step_start = time.monotonic()
            _progress("Starting scene videos...")
            if not await _claim(session, order_id, state.KEYFRAMES_READY, state.GENERATING_SCENES):
                return (await order_service.get_order(session, order_id, refresh=True)).status
            order = await order_service.get_order(session, order_id, refresh=True)
            script = SantaScript.model_validate(order.generated_script)
            handles = await kickoff_scene_videos(script, order.keyframe_urls, services.video_generator)
            await order_service.record_scene_operations(session, order_id, handles)
            await order_service.update_progress(
                session, order_id, stage=state.GENERATING_SCENES,
                scenes_complete=0, scenes_failed=0, total_scenes=len(handles),
            )
            logger.info(f"Order {order_id}: {len(handles)} scene videos started")
            status = state.GENERATING_SCENES
            step_log["scene_kickoff"] = time.monotonic() - step_start

        # Poll and, when everything succeeded, stitch
        elif status == state.GENERATING_SCENES:
            step_name = "scene_videos"
            step_start = time.monotonic()
            _progress("Checking scene videos...")
            status = await _advance_scenes(session, order, services)
            step_log["scene_videos"] = time.monotonic() - step_start

        return status

    except InvalidTransition as e:
        # another writer moved the order; its state wins
        logger.warning(f"Order {order_id}: superseded during {step_name}: {e}")
        status = e.current
        return status

    except Exception as e:
        logger.error(f"Pipeline failed for order {order_id} at {step_name}: {type(e).__name__}: {str(e)}")
        await session.rollback()
        status = state.FAILED
        if await order_service.fail_order(
            session, order_id, f"{step_name} failed: {type(e).__name__}: {str(e)}"
        ):
            await _notify(session, order_id, services, "failed")
        raise

    finally:
        run.completed_at = utcnow()
        run.total_duration_seconds = time.monotonic() - pipeline_start
        run.outcome = status
        run.log = step_log
        await session.commit()


async def finalize_order(
    session: AsyncSession,
    order_id: uuid.UUID,
    segments: list[Segment],
    services: PipelineServices,
) -> str:
    """Stitch caller-supplied segments for an order in generating_scenes.

    The generating_scenes -> stitching transition admits exactly one
    finalize (or pipeline stitch) per order.

    Raises:
        InvalidTransition: the order is not awaiting a stitch.
    """
    order_segments(segments)
    await order_service.transition(session, order_id, state.GENERATING_SCENES, state.STITCHING)
    return await _stitch(session, order_id, segments, services)


async def retry_order(session: AsyncSession, order_id: uuid.UUID, user_id: str) -> None:
    """Reset a failed order owned by user_id back to paid.

    Raises:
        NotFound: unknown order.
        Unauthorized: user_id does not own the order.
        InvalidTransition: the order is not failed.
    """
    order = await order_service.get_order(session, order_id, refresh=True)
    if order.user_id != user_id:
        raise Unauthorized(f"Order {order_id} does not belong to this user")
    if not state.can_retry(order.status):
        raise InvalidTransition(order_id, order.status, state.PAID)
    await order_service.reset_for_retry(session, order_id)
