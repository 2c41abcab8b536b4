"""Order state machine: transition table and compare-and-set persistence."""

import uuid

import pytest

from santavid.errors import InvalidTransition, NotFound, ValidationError
from santavid.orchestrator import state
from santavid.services import order_service

from conftest import CHILDREN, make_order


# ============================================================================
# Transition table
# ============================================================================

def test_forward_chain_is_allowed():
    chain = [
        state.DRAFT, state.PENDING_PAYMENT, state.PAID, state.GENERATING_SCRIPT,
        state.GENERATING_KEYFRAMES, state.KEYFRAMES_READY, state.GENERATING_SCENES,
        state.STITCHING, state.COMPLETE,
    ]
    for current, nxt in zip(chain, chain[1:]):
        assert state.can_transition(current, nxt)


def test_every_non_terminal_status_can_fail():
    for status in state.ORDER_STATES:
        if not state.is_terminal(status):
            assert state.can_transition(status, state.FAILED)


def test_complete_is_terminal():
    for status in state.ORDER_STATES:
        assert not state.can_transition(state.COMPLETE, status)


def test_failed_only_goes_back_to_paid():
    allowed = [s for s in state.ORDER_STATES if state.can_transition(state.FAILED, s)]
    assert allowed == [state.PAID]


def test_no_skipping_stages():
    assert not state.can_transition(state.PAID, state.GENERATING_SCENES)
    assert not state.can_transition(state.GENERATING_SCENES, state.COMPLETE)


def test_can_retry_only_from_failed():
    assert state.can_retry(state.FAILED)
    assert not state.can_retry(state.PENDING_PAYMENT)
    assert not state.can_retry(state.COMPLETE)


def test_progress_percent_interpolates_scene_band():
    assert state.progress_percent(state.PAID) == 5
    assert state.progress_percent(state.GENERATING_SCENES, 0, 4) == 50
    assert state.progress_percent(state.GENERATING_SCENES, 2, 4) == 70
    assert state.progress_percent(state.COMPLETE) == 100


# ============================================================================
# Persistence
# ============================================================================

async def test_transition_writes_status_and_values(session):
    order_id = await make_order(session, state.PAID)

    await order_service.transition(
        session, order_id, state.PAID, state.GENERATING_SCRIPT, error_message=None
    )

    order = await order_service.get_order(session, order_id, refresh=True)
    assert order.status == state.GENERATING_SCRIPT


async def test_second_claim_of_same_transition_is_rejected(session):
    order_id = await make_order(session, state.PAID)
    await order_service.transition(session, order_id, state.PAID, state.GENERATING_SCRIPT)

    with pytest.raises(InvalidTransition) as exc_info:
        await order_service.transition(session, order_id, state.PAID, state.GENERATING_SCRIPT)

    assert exc_info.value.current == state.GENERATING_SCRIPT
    assert exc_info.value.requested == state.GENERATING_SCRIPT


async def test_illegal_transition_leaves_order_unchanged(session):
    order_id = await make_order(session, state.COMPLETE)

    with pytest.raises(InvalidTransition) as exc_info:
        await order_service.reset_for_retry(session, order_id)

    assert exc_info.value.current == state.COMPLETE
    order = await order_service.get_order(session, order_id, refresh=True)
    assert order.status == state.COMPLETE
    assert order.final_video_url == "https://storage.test/final.mp4"


async def test_unknown_order_is_not_found(session):
    with pytest.raises(NotFound):
        await order_service.transition(session, uuid.uuid4(), state.PAID, state.GENERATING_SCRIPT)
    with pytest.raises(NotFound):
        await order_service.get_order(session, uuid.uuid4())


async def test_final_video_url_set_only_on_complete(session):
    order_id = await make_order(session, state.STITCHING)
    order = await order_service.get_order(session, order_id, refresh=True)
    assert order.final_video_url is None

    await order_service.complete_order(session, order_id, "https://storage.test/x/final.mp4")

    order = await order_service.get_order(session, order_id, refresh=True)
    assert order.status == state.COMPLETE
    assert order.final_video_url == "https://storage.test/x/final.mp4"
    assert order.completed_at is not None


async def test_create_order_validates_child_count(session):
    with pytest.raises(ValidationError):
        await order_service.create_order(session, user_id="u", customer_email=None, children=[])
    with pytest.raises(ValidationError):
        await order_service.create_order(
            session, user_id="u", customer_email=None, children=CHILDREN * 2
        )


async def test_create_order_numbers_children(session):
    order_id = await make_order(session)

    order = await order_service.get_order(session, order_id, with_children=True, refresh=True)
    assert order.status == state.PENDING_PAYMENT
    assert order.child_count == 2
    assert [(c.sequence_number, c.name) for c in order.children] == [(1, "Emma"), (2, "Liam")]


async def test_mark_paid_is_idempotent(session):
    order_id = await make_order(session)

    assert await order_service.mark_paid(session, order_id, "pi_1", 1999) is True
    assert await order_service.mark_paid(session, order_id, "pi_1", 1999) is False

    order = await order_service.get_order(session, order_id, refresh=True)
    assert order.status == state.PAID
    assert order.payment_reference == "pi_1"
    assert order.amount_paid == 1999


async def test_mark_paid_on_draft_is_rejected(session):
    order_id = await make_order(session, state.DRAFT)

    with pytest.raises(InvalidTransition):
        await order_service.mark_paid(session, order_id, "pi_1")


async def test_fail_order_ignores_terminal_orders(session):
    order_id = await make_order(session, state.COMPLETE)

    assert await order_service.fail_order(session, order_id, "late failure") is False

    order = await order_service.get_order(session, order_id, refresh=True)
    assert order.status == state.COMPLETE
    assert order.error_message is None


async def test_reset_for_retry_clears_attempt_artifacts(session):
    order_id = await make_order(session, state.GENERATING_SCENES)
    await order_service.transition(
        session, order_id, state.GENERATING_SCENES, state.FAILED, error_message="scene 1 failed"
    )
    await order_service.record_scene_operations(session, order_id, {1: "op-1"})

    await order_service.reset_for_retry(session, order_id)

    order = await order_service.get_order(session, order_id, refresh=True)
    assert order.status == state.PAID
    assert order.error_message is None
    assert order.keyframe_urls == []
    assert await order_service.load_scene_operations(session, order_id) == []


async def test_update_progress_merges_keys(session):
    order_id = await make_order(session, state.GENERATING_SCENES)

    await order_service.update_progress(session, order_id, total_scenes=3, scenes_complete=0)
    await order_service.update_progress(session, order_id, scenes_complete=2)

    order = await order_service.get_order(session, order_id, refresh=True)
    assert order.generation_progress == {"total_scenes": 3, "scenes_complete": 2}
