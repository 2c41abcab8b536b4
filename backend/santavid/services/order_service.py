"""Order state machine persistence.

Every status change is a single UPDATE keyed by order id with the expected
current status in the WHERE clause (compare-and-set). When no row matches,
the order is re-read to report NotFound or InvalidTransition; nothing is
written in either case. Scene-operation refreshes are likewise conditional on
the stored row still being non-terminal, so two concurrent poll cycles can
never regress or overwrite a resolved scene.
"""

import logging
import uuid
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from santavid.db.models import Child, Order, SceneOperation, utcnow
from santavid.errors import InvalidTransition, NotFound, ValidationError
from santavid.orchestrator import state
from santavid.schemas.operations import SceneOperationState

logger = logging.getLogger(__name__)

MAX_CHILDREN = 3
_OPEN_OPERATION_STATUSES = ("pending", "running")


async def get_order(
    session: AsyncSession,
    order_id: uuid.UUID,
    *,
    with_children: bool = False,
    refresh: bool = False,
) -> Order:
    """Load an order or raise NotFound.

    refresh=True bypasses the session identity map so values written by
    other sessions are observed.
    """
    stmt = select(Order).where(Order.id == order_id)
    if with_children:
        stmt = stmt.options(selectinload(Order.children))
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    order = (await session.execute(stmt)).scalar_one_or_none()
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    return order


async def _current_status(session: AsyncSession, order_id: uuid.UUID) -> Optional[str]:
    return await session.scalar(select(Order.status).where(Order.id == order_id))


async def transition(
    session: AsyncSession,
    order_id: uuid.UUID,
    from_status: str,
    to_status: str,
    *,
    commit: bool = True,
    **values: Any,
) -> None:
    """Atomically move an order from `from_status` to `to_status`.

    Extra keyword arguments are written in the same UPDATE.

    Raises:
        NotFound: no order with this id.
        InvalidTransition: the transition table forbids the move, or the
            order is no longer in `from_status`.
    """
    if not state.can_transition(from_status, to_status):
        current = await _current_status(session, order_id)
        if current is None:
            raise NotFound(f"Order {order_id} not found")
        raise InvalidTransition(order_id, current, to_status)

    stmt = (
        update(Order)
        .where(Order.id == order_id, Order.status == from_status)
        .values(status=to_status, updated_at=utcnow(), **values)
    )
    result = await session.execute(stmt)
    if result.rowcount == 0:
        current = await _current_status(session, order_id)
        if current is None:
            raise NotFound(f"Order {order_id} not found")
        raise InvalidTransition(order_id, current, to_status)

    if commit:
        await session.commit()
    logger.info(f"Order {order_id}: {from_status} -> {to_status}")


async def create_order(
    session: AsyncSession,
    *,
    user_id: str,
    customer_email: Optional[str],
    children: list[dict],
    custom_message: Optional[str] = None,
    status: str = state.PENDING_PAYMENT,
) -> Order:
    """Create an order with its children at checkout."""
    if status not in (state.DRAFT, state.PENDING_PAYMENT):
        raise ValidationError(f"New orders start as draft or pending_payment, not '{status}'")
    if not 1 <= len(children) <= MAX_CHILDREN:
        raise ValidationError(f"An order needs between 1 and {MAX_CHILDREN} children")

    order = Order(
        user_id=user_id,
        customer_email=customer_email,
        status=status,
        child_count=len(children),
        custom_message=custom_message,
        keyframe_urls=[],
    )
    for i, child in enumerate(children, start=1):
        order.children.append(Child(sequence_number=i, **child))
    session.add(order)
    await session.commit()
    logger.info(f"Order {order.id}: created for user {user_id} with {len(children)} children")
    return order


async def submit_for_payment(session: AsyncSession, order_id: uuid.UUID) -> None:
    await transition(session, order_id, state.DRAFT, state.PENDING_PAYMENT)


async def mark_paid(
    session: AsyncSession,
    order_id: uuid.UUID,
    payment_reference: Optional[str],
    amount_paid: Optional[int] = None,
) -> bool:
    """Apply a confirmed payment. Returns False for an already-paid order.

    Payment events may be redelivered; an order that has already moved past
    pending_payment is left untouched.
    """
    try:
        await transition(
            session,
            order_id,
            state.PENDING_PAYMENT,
            state.PAID,
            payment_reference=payment_reference,
            amount_paid=amount_paid,
        )
    except InvalidTransition as e:
        if e.current in state.PAID_OR_LATER:
            logger.info(f"Order {order_id}: payment already applied (status {e.current})")
            return False
        raise
    return True


async def reset_for_retry(session: AsyncSession, order_id: uuid.UUID) -> None:
    """Move a failed order back to paid and clear per-attempt artifacts.

    The recorded script is kept; keyframes and scene operations are discarded
    so the next run regenerates them.
    """
    await transition(
        session,
        order_id,
        state.FAILED,
        state.PAID,
        commit=False,
        error_message=None,
        generation_progress=None,
        keyframe_urls=[],
    )
    await session.execute(delete(SceneOperation).where(SceneOperation.order_id == order_id))
    await session.commit()
    logger.info(f"Order {order_id}: reset for retry")


async def fail_order(session: AsyncSession, order_id: uuid.UUID, message: str) -> bool:
    """Mark a non-terminal order failed. Returns False if it was already terminal."""
    non_terminal = [s for s in state.ORDER_STATES if not state.is_terminal(s)]
    result = await session.execute(
        update(Order)
        .where(Order.id == order_id, Order.status.in_(non_terminal))
        .values(status=state.FAILED, error_message=message, updated_at=utcnow())
    )
    await session.commit()
    if result.rowcount == 0:
        if await _current_status(session, order_id) is None:
            raise NotFound(f"Order {order_id} not found")
        return False
    logger.info(f"Order {order_id}: -> failed ({message})")
    return True


async def complete_order(session: AsyncSession, order_id: uuid.UUID, final_video_url: str) -> None:
    """stitching -> complete, recording the final video URL exactly once."""
    now = utcnow()
    await transition(
        session,
        order_id,
        state.STITCHING,
        state.COMPLETE,
        final_video_url=final_video_url,
        completed_at=now,
    )


async def update_progress(session: AsyncSession, order_id: uuid.UUID, **progress: Any) -> None:
    """Merge keys into generation_progress (last writer wins)."""
    # column-only read: leaves relationships already loaded on the Order intact
    row = (
        await session.execute(select(Order.generation_progress).where(Order.id == order_id))
    ).one_or_none()
    if row is None:
        raise NotFound(f"Order {order_id} not found")
    merged = dict(row[0] or {})
    merged.update(progress)
    await session.execute(
        update(Order).where(Order.id == order_id).values(generation_progress=merged)
    )
    await session.commit()


async def record_scene_operations(
    session: AsyncSession,
    order_id: uuid.UUID,
    handles: dict[int, str],
) -> list[SceneOperationState]:
    """Insert one pending operation row per scene."""
    rows = [
        SceneOperation(order_id=order_id, scene_number=n, external_handle=handle, status="pending")
        for n, handle in sorted(handles.items())
    ]
    session.add_all(rows)
    await session.commit()
    return [_to_state(row) for row in rows]


async def load_scene_operations(
    session: AsyncSession, order_id: uuid.UUID
) -> list[SceneOperationState]:
    result = await session.execute(
        select(SceneOperation)
        .where(SceneOperation.order_id == order_id)
        .order_by(SceneOperation.scene_number)
        .execution_options(populate_existing=True)
    )
    return [_to_state(row) for row in result.scalars().all()]


async def apply_poll_results(
    session: AsyncSession,
    order_id: uuid.UUID,
    previous: list[SceneOperationState],
    refreshed: list[SceneOperationState],
) -> int:
    """Persist changed entries from a poll cycle. Returns rows written.

    Each UPDATE only matches a row that is still pending/running.
    """
    before = {op.scene_number: op for op in previous}
    written = 0
    for op in refreshed:
        prior = before.get(op.scene_number)
        if prior is None or prior.is_terminal or prior == op:
            continue
        result = await session.execute(
            update(SceneOperation)
            .where(
                SceneOperation.order_id == order_id,
                SceneOperation.scene_number == op.scene_number,
                SceneOperation.status.in_(_OPEN_OPERATION_STATUSES),
            )
            .values(
                status=op.status,
                video_url=op.video_url,
                error=op.error,
                error_code=op.error_code,
                poll_count=op.poll_count,
                last_polled_at=op.last_polled_at,
                updated_at=utcnow(),
            )
        )
        written += result.rowcount
    await session.commit()
    return written


def _to_state(row: SceneOperation) -> SceneOperationState:
    return SceneOperationState(
        scene_number=row.scene_number,
        external_handle=row.external_handle,
        status=row.status,
        video_url=row.video_url,
        error=row.error,
        error_code=row.error_code,
        poll_count=row.poll_count,
        started_at=row.created_at,
        last_polled_at=row.last_polled_at,
    )
