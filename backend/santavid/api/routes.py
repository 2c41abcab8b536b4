"""API route handlers for the order pipeline.

Every pipeline trigger (payment webhook, advance, status poll, retry) either
answers from the persisted order or hands a full orchestrator invocation to a
background task with its own database session.
"""

import logging
import uuid
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from santavid.config import settings
from santavid.db import async_session, get_session
from santavid.db.models import PipelineRun
from santavid.errors import ValidationError
from santavid.orchestrator import state
from santavid.orchestrator.pipeline import (
    PipelineServices,
    build_default_services,
    finalize_order,
    poll_scenes,
    retry_order,
    run_pipeline,
)
from santavid.schemas.operations import PollResult, Segment
from santavid.services import order_service
from santavid.services.notifications import notify_customer
from santavid.services.payments import verify_payment_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ============================================================================
# Dependencies
# ============================================================================

@lru_cache(maxsize=1)
def get_services() -> PipelineServices:
    return build_default_services()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session


async def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity, set by the authenticating proxy in front of the API."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id


# ============================================================================
# Request/Response Models
# ============================================================================

class ChildInput(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    age: int = Field(ge=1, le=17)
    photo_url: Optional[str] = None
    good_behavior: str = Field(min_length=1)
    thing_to_improve: str = Field(min_length=1)
    thing_to_learn: str = Field(min_length=1)


class CreateOrderRequest(BaseModel):
    """Request schema for POST /api/orders."""
    customer_email: Optional[str] = Field(default=None, max_length=320)
    custom_message: Optional[str] = Field(default=None, max_length=1000)
    children: list[ChildInput] = Field(min_length=1, max_length=order_service.MAX_CHILDREN)
    draft: bool = False


class OrderCreatedResponse(BaseModel):
    order_id: str
    status: str
    status_url: str


class OperationRef(BaseModel):
    scene_number: int
    external_handle: str


class StatusTriggerRequest(BaseModel):
    """Request schema for POST /api/generate-video/status."""
    order_id: uuid.UUID
    operations: Optional[list[OperationRef]] = None


class RetryRequest(BaseModel):
    order_id: uuid.UUID


class RetryResponse(BaseModel):
    order_id: str
    status: str
    status_url: str


class FinalizeRequest(BaseModel):
    """Request schema for POST /api/finalize-video."""
    order_id: uuid.UUID
    segments: list[Segment]


class FinalizeResponse(BaseModel):
    video_url: str


class OrderStatusResponse(BaseModel):
    """Response schema for GET /api/orders/{id}/status."""
    order_id: str
    status: str
    stage_label: str
    progress_percent: int
    children_names: list[str]
    keyframes_complete: int
    scenes_complete: int
    scenes_failed: int
    total_scenes: int
    video_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: str
    updated_at: str
    completed_at: Optional[str] = None
    last_run_outcome: Optional[str] = None


# ============================================================================
# Background execution
# ============================================================================

async def run_pipeline_background(
    order_id: uuid.UUID,
    services: PipelineServices,
    session_factory: async_sessionmaker[AsyncSession],
    trigger: str,
) -> None:
    """Run one orchestrator invocation in its own session.

    Failures are already persisted on the order by run_pipeline; this only
    keeps them from escaping the background task.
    """
    async with session_factory() as session:
        try:
            await run_pipeline(session, order_id, services, trigger=trigger)
        except Exception as e:
            logger.error(f"Background pipeline for order {order_id} ({trigger}) failed: {type(e).__name__}: {e}")


# ============================================================================
# Routes
# ============================================================================

@router.post("/orders", response_model=OrderCreatedResponse, status_code=201)
async def create_order(
    request: CreateOrderRequest,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
):
    """Create an order at checkout (pending_payment, or draft when requested)."""
    order = await order_service.create_order(
        session,
        user_id=user_id,
        customer_email=request.customer_email,
        children=[child.model_dump() for child in request.children],
        custom_message=request.custom_message,
        status=state.DRAFT if request.draft else state.PENDING_PAYMENT,
    )
    return OrderCreatedResponse(
        order_id=str(order.id),
        status=order.status,
        status_url=f"/api/orders/{order.id}/status",
    )


@router.post("/webhooks/payment")
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    services: PipelineServices = Depends(get_services),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    stripe_signature: Optional[str] = Header(default=None),
):
    """Apply a signed payment confirmation.

    Invalid signatures are rejected before anything is read or written.
    Redelivered events for an already-paid order are acknowledged as no-ops.
    """
    event = verify_payment_event(await request.body(), stripe_signature)
    if not event.confirms_payment:
        logger.info(f"Ignoring payment event {event.event_type}")
        return {"received": True}

    newly_paid = await order_service.mark_paid(
        session, event.order_id, event.payment_reference, event.amount_paid
    )
    if newly_paid:
        order = await order_service.get_order(session, event.order_id, with_children=True, refresh=True)
        await notify_customer(services.notifier, order, "confirmed")
        if settings.payments.auto_start_on_payment:
            background_tasks.add_task(
                run_pipeline_background, event.order_id, services, session_factory, "payment"
            )

    return {"received": True, "order_id": str(event.order_id), "applied": newly_paid}


@router.post("/orders/{order_id}/advance", status_code=202)
async def advance_order(
    order_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    services: PipelineServices = Depends(get_services),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Run one orchestrator pass in the background (interval timer / cron surface)."""
    order = await order_service.get_order(session, order_id)
    if order.status in state.GENERATION_ELIGIBLE:
        background_tasks.add_task(run_pipeline_background, order_id, services, session_factory, "advance")
    return {"order_id": str(order_id), "status": order.status, "scheduled": order.status in state.GENERATION_ELIGIBLE}


@router.post("/generate-video/status", response_model=PollResult)
async def generate_video_status(
    request: StatusTriggerRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    services: PipelineServices = Depends(get_services),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Poll the order's scene operations once and report aggregate progress.

    The persisted operations are authoritative; when the caller passes its
    own list it must name the same scenes and handles. Once every scene has
    succeeded, stitching is started in the background.
    """
    order = await order_service.get_order(session, request.order_id)
    stored = await order_service.load_scene_operations(session, order.id)

    if request.operations is not None:
        expected = {(op.scene_number, op.external_handle) for op in stored}
        given = {(op.scene_number, op.external_handle) for op in request.operations}
        if given != expected:
            raise ValidationError("Operations do not match the order's recorded scene operations")

    if order.status != state.GENERATING_SCENES:
        return PollResult.from_operations(stored)

    result = await poll_scenes(session, order.id, services)
    if result.all_complete and not result.any_failed:
        background_tasks.add_task(run_pipeline_background, order.id, services, session_factory, "status")
    return result


@router.post("/retry-generation", response_model=RetryResponse, status_code=202)
async def retry_generation(
    request: RetryRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_session),
    services: PipelineServices = Depends(get_services),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Reset a failed order to paid and restart generation (fire-and-forget)."""
    await retry_order(session, request.order_id, user_id)
    background_tasks.add_task(run_pipeline_background, request.order_id, services, session_factory, "retry")
    return RetryResponse(
        order_id=str(request.order_id),
        status=state.PAID,
        status_url=f"/api/orders/{request.order_id}/status",
    )


@router.post("/finalize-video", response_model=FinalizeResponse)
async def finalize_video(
    request: FinalizeRequest,
    session: AsyncSession = Depends(get_session),
    services: PipelineServices = Depends(get_services),
):
    """Stitch the given segments into the order's final video."""
    video_url = await finalize_order(session, request.order_id, request.segments, services)
    return FinalizeResponse(video_url=video_url)


@router.get("/orders/{order_id}/status", response_model=OrderStatusResponse)
async def get_order_status(
    order_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    """Customer-facing progress for one order."""
    order = await order_service.get_order(session, order_id, with_children=True)
    progress = order.generation_progress or {}
    scenes_complete = progress.get("scenes_complete", 0)
    total_scenes = progress.get("total_scenes", 0)

    latest_run = (
        await session.execute(
            select(PipelineRun)
            .where(PipelineRun.order_id == order.id)
            .order_by(PipelineRun.started_at.desc())
            .limit(1)
        )
    ).scalar_one_or_none()

    return OrderStatusResponse(
        order_id=str(order.id),
        status=order.status,
        stage_label=state.ORDER_STATES.get(order.status, order.status),
        progress_percent=state.progress_percent(order.status, scenes_complete, total_scenes),
        children_names=[child.name for child in order.children],
        keyframes_complete=progress.get("keyframes_complete", len(order.keyframe_urls or [])),
        scenes_complete=scenes_complete,
        scenes_failed=progress.get("scenes_failed", 0),
        total_scenes=total_scenes,
        video_url=order.final_video_url,
        error_message=order.error_message if order.status == state.FAILED else None,
        created_at=order.created_at.isoformat(),
        updated_at=order.updated_at.isoformat(),
        completed_at=order.completed_at.isoformat() if order.completed_at else None,
        last_run_outcome=latest_run.outcome if latest_run else None,
    )
