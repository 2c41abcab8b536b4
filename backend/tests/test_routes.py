"""HTTP surface: order creation, pipeline triggers and error mapping."""

import uuid

from santavid.config import settings
from santavid.orchestrator import state
from santavid.schemas.operations import VideoJobStatus
from santavid.services import order_service

from conftest import CHILDREN, load_order, make_order

OWNER = {"X-User-Id": "user-1"}


# ============================================================================
# Orders
# ============================================================================

async def test_create_order(api_client, session_factory):
    response = await api_client.post(
        "/api/orders",
        json={"customer_email": "parent@example.com", "children": CHILDREN},
        headers=OWNER,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == state.PENDING_PAYMENT
    assert body["status_url"] == f"/api/orders/{body['order_id']}/status"
    order = await load_order(session_factory, uuid.UUID(body["order_id"]))
    assert order.user_id == "user-1"
    assert [c.name for c in order.children] == ["Emma", "Liam"]


async def test_create_order_requires_identity(api_client):
    response = await api_client.post("/api/orders", json={"children": CHILDREN})
    assert response.status_code == 401


async def test_create_order_rejects_too_many_children(api_client):
    response = await api_client.post("/api/orders", json={"children": CHILDREN * 2}, headers=OWNER)
    assert response.status_code == 422


async def test_order_status(api_client, session):
    order_id = await make_order(session, state.GENERATING_SCENES)
    await order_service.update_progress(session, order_id, scenes_complete=1, total_scenes=2)

    response = await api_client.get(f"/api/orders/{order_id}/status")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == state.GENERATING_SCENES
    assert body["stage_label"] == "Filming scenes"
    assert body["progress_percent"] == 70
    assert body["children_names"] == ["Emma", "Liam"]
    assert body["video_url"] is None


async def test_unknown_order_is_404(api_client):
    response = await api_client.get(f"/api/orders/{uuid.uuid4()}/status")

    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


async def test_advance_runs_one_invocation(api_client, session, session_factory):
    order_id = await make_order(session, state.PAID)

    response = await api_client.post(f"/api/orders/{order_id}/advance")

    assert response.status_code == 202
    assert response.json()["scheduled"] is True
    order = await load_order(session_factory, order_id)
    assert order.status == state.GENERATING_SCENES


# ============================================================================
# Retry
# ============================================================================

async def test_retry_requires_identity(api_client, session):
    order_id = await make_order(session, state.FAILED)

    response = await api_client.post("/api/retry-generation", json={"order_id": str(order_id)})

    assert response.status_code == 401


async def test_retry_by_other_user_is_forbidden(api_client, session, session_factory):
    order_id = await make_order(session, state.FAILED)

    response = await api_client.post(
        "/api/retry-generation", json={"order_id": str(order_id)}, headers={"X-User-Id": "intruder"}
    )

    assert response.status_code == 403
    assert (await load_order(session_factory, order_id)).status == state.FAILED


async def test_retry_of_complete_order_conflicts(api_client, session, session_factory):
    order_id = await make_order(session, state.COMPLETE)

    response = await api_client.post("/api/retry-generation", json={"order_id": str(order_id)}, headers=OWNER)

    assert response.status_code == 409
    assert response.json()["current_status"] == state.COMPLETE
    order = await load_order(session_factory, order_id)
    assert order.status == state.COMPLETE
    assert order.final_video_url == "https://storage.test/final.mp4"


async def test_retry_of_unknown_order_is_404(api_client):
    response = await api_client.post("/api/retry-generation", json={"order_id": str(uuid.uuid4())}, headers=OWNER)
    assert response.status_code == 404


async def test_retry_restarts_generation(api_client, session, session_factory):
    order_id = await make_order(session, state.FAILED)

    response = await api_client.post("/api/retry-generation", json={"order_id": str(order_id)}, headers=OWNER)

    assert response.status_code == 202
    assert response.json()["status"] == state.PAID
    order = await load_order(session_factory, order_id)
    assert order.status == state.GENERATING_SCENES
    assert order.error_message is None


# ============================================================================
# Scene status polling
# ============================================================================

async def test_status_poll_reports_progress(api_client, session, services):
    services.video_generator.statuses["op-1"] = VideoJobStatus(state="running")
    order_id = await make_order(session, state.GENERATING_SCENES)
    await order_service.record_scene_operations(session, order_id, {1: "op-1", 2: "op-2"})

    response = await api_client.post("/api/generate-video/status", json={"order_id": str(order_id)})

    assert response.status_code == 200
    body = response.json()
    assert body["total_count"] == 2
    assert body["completed_count"] == 1
    assert body["all_complete"] is False
    assert body["any_failed"] is False
    assert [op["status"] for op in body["operations"]] == ["running", "complete"]


async def test_status_poll_stitches_when_all_succeeded(api_client, session, session_factory, services):
    order_id = await make_order(session, state.GENERATING_SCENES)
    await order_service.record_scene_operations(session, order_id, {1: "op-1", 2: "op-2"})

    response = await api_client.post("/api/generate-video/status", json={"order_id": str(order_id)})

    assert response.status_code == 200
    assert response.json()["all_complete"] is True
    order = await load_order(session_factory, order_id)
    assert order.status == state.COMPLETE
    assert services.storage.objects[f"{order_id}/final.mp4"] == b"AB"


async def test_status_poll_rejects_foreign_operations(api_client, session):
    order_id = await make_order(session, state.GENERATING_SCENES)
    await order_service.record_scene_operations(session, order_id, {1: "op-1"})

    response = await api_client.post(
        "/api/generate-video/status",
        json={"order_id": str(order_id), "operations": [{"scene_number": 1, "external_handle": "other"}]},
    )

    assert response.status_code == 422


async def test_rapid_status_polls_do_not_time_out_a_running_scene(
    api_client, session, session_factory, services, monkeypatch
):
    monkeypatch.setattr(settings.pipeline, "video_poll_interval", 15)
    monkeypatch.setattr(settings.pipeline, "video_poll_max", 3)
    services.video_generator.statuses["op-1"] = VideoJobStatus(state="running")
    order_id = await make_order(session, state.GENERATING_SCENES)
    await order_service.record_scene_operations(session, order_id, {1: "op-1", 2: "op-2"})

    for _ in range(10):
        response = await api_client.post("/api/generate-video/status", json={"order_id": str(order_id)})
        assert response.status_code == 200
        assert response.json()["any_failed"] is False

    assert services.video_generator.poll_calls == {"op-1": 1, "op-2": 1}
    order = await load_order(session_factory, order_id)
    assert order.status == state.GENERATING_SCENES
    async with session_factory() as fresh:
        stored = await order_service.load_scene_operations(fresh, order_id)
    assert stored[0].status == "running"
    assert stored[0].poll_count == 1
    assert stored[0].last_polled_at is not None


async def test_status_poll_without_operations_is_not_complete(api_client, session, session_factory):
    order_id = await make_order(session, state.GENERATING_SCENES)

    response = await api_client.post("/api/generate-video/status", json={"order_id": str(order_id)})

    assert response.status_code == 200
    body = response.json()
    assert body["total_count"] == 0
    assert body["all_complete"] is False
    order = await load_order(session_factory, order_id)
    assert order.status == state.GENERATING_SCENES


async def test_status_poll_outside_scene_stage_does_not_query(api_client, session, services):
    order_id = await make_order(session, state.PAID)

    response = await api_client.post("/api/generate-video/status", json={"order_id": str(order_id)})

    assert response.status_code == 200
    assert response.json()["total_count"] == 0
    assert services.video_generator.poll_calls == {}


# ============================================================================
# Finalize
# ============================================================================

def _segments(*pairs):
    return [{"url": f"https://cdn.test/{name}.mp4", "type": "veo", "order": order} for name, order in pairs]


async def test_finalize_video(api_client, session, session_factory):
    order_id = await make_order(session, state.GENERATING_SCENES)

    response = await api_client.post(
        "/api/finalize-video",
        json={"order_id": str(order_id), "segments": _segments(("op-2", 2), ("op-1", 1))},
    )

    assert response.status_code == 200
    assert response.json()["video_url"] == f"https://storage.test/{order_id}/final.mp4"
    assert (await load_order(session_factory, order_id)).status == state.COMPLETE


async def test_finalize_before_scenes_conflicts(api_client, session):
    order_id = await make_order(session, state.PAID)

    response = await api_client.post(
        "/api/finalize-video", json={"order_id": str(order_id), "segments": _segments(("op-1", 1))}
    )

    assert response.status_code == 409
    assert response.json()["current_status"] == state.PAID


async def test_finalize_duplicate_orders_is_422(api_client, session, session_factory):
    order_id = await make_order(session, state.GENERATING_SCENES)

    response = await api_client.post(
        "/api/finalize-video",
        json={"order_id": str(order_id), "segments": _segments(("op-1", 1), ("op-2", 1))},
    )

    assert response.status_code == 422
    assert (await load_order(session_factory, order_id)).status == state.GENERATING_SCENES


async def test_finalize_fetch_failure_is_502(api_client, session, session_factory):
    order_id = await make_order(session, state.GENERATING_SCENES)

    response = await api_client.post(
        "/api/finalize-video", json={"order_id": str(order_id), "segments": _segments(("missing", 1))}
    )

    assert response.status_code == 502
    assert response.json()["error"] == "SegmentFetchFailed"
    assert (await load_order(session_factory, order_id)).status == state.FAILED
