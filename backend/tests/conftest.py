"""Shared fixtures: a throwaway SQLite database and in-memory collaborators."""

import uuid
from pathlib import Path
from typing import Optional

import httpx
import pytest

from santavid.config import settings
from santavid.db import init_database
from santavid.db.engine import build_engine, build_session_factory
from santavid.orchestrator import state
from santavid.orchestrator.pipeline import PipelineServices
from santavid.pipeline.stitcher import SegmentStitcher
from santavid.schemas.operations import VideoJobStatus
from santavid.schemas.script import SantaScript, ScriptScene
from santavid.services import order_service
from santavid.services.base import (
    GeneratedImage,
    ImageGenerator,
    Notifier,
    SceneVideoGenerator,
    ScriptGenerator,
    StorageSink,
)
from santavid.services.file_manager import FileManager

CHILDREN = [
    {
        "name": "Emma",
        "age": 6,
        "good_behavior": "shares her toys",
        "thing_to_improve": "going to bed on time",
        "thing_to_learn": "riding a bike",
    },
    {
        "name": "Liam",
        "age": 8,
        "good_behavior": "helps with the dishes",
        "thing_to_improve": "patience with his sister",
        "thing_to_learn": "reading chapter books",
    },
]


def make_script(scene_count: int = 2) -> SantaScript:
    return SantaScript(
        title="A Visit from Santa",
        scenes=[
            ScriptScene(
                scene_number=n,
                title=f"Scene {n}",
                setting="Santa's workshop",
                santa_dialogue=f"Ho ho ho, line {n}!",
                visual_description=f"visual {n}",
                emotional_tone="warm",
            )
            for n in range(1, scene_count + 1)
        ],
    )


class FakeScriptGenerator(ScriptGenerator):
    def __init__(self, scene_count: int = 2):
        self.scene_count = scene_count
        self.calls = 0

    async def generate(self, children, custom_message=None):
        self.calls += 1
        return make_script(self.scene_count)


class FakeImageGenerator(ImageGenerator):
    """Fails for any prompt built from a scene listed in fail_scenes."""

    def __init__(self, fail_scenes: Optional[set[int]] = None):
        self.fail_scenes = fail_scenes or set()
        self.prompts: list[str] = []

    async def generate(self, prompt):
        self.prompts.append(prompt)
        for n in self.fail_scenes:
            if f"visual {n}." in prompt:
                raise RuntimeError(f"image model refused scene {n}")
        return GeneratedImage(data=b"png", mime_type="image/png")


class FakeVideoGenerator(SceneVideoGenerator):
    """Handles are 'op-{scene}'. Unscripted handles complete immediately."""

    def __init__(self):
        self.statuses: dict[str, VideoJobStatus] = {}
        self.errors: dict[str, Exception] = {}
        self.started: list[int] = []
        self.poll_calls: dict[str, int] = {}

    async def start(self, scene, reference_image_url):
        self.started.append(scene.scene_number)
        return f"op-{scene.scene_number}"

    async def poll(self, handle):
        self.poll_calls[handle] = self.poll_calls.get(handle, 0) + 1
        if handle in self.errors:
            raise self.errors[handle]
        return self.statuses.get(
            handle, VideoJobStatus(state="complete", video_url=f"https://cdn.test/{handle}.mp4")
        )


class FakeStorage(StorageSink):
    def __init__(self, fail: bool = False):
        self.objects: dict[str, bytes] = {}
        self.fail = fail

    async def store(self, data, key, content_type):
        if self.fail:
            raise RuntimeError("bucket unavailable")
        self.objects[key] = data
        return f"https://storage.test/{key}"


class FakeNotifier(Notifier):
    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    async def send(self, to, subject, html):
        self.sent.append((to, subject))


async def concat_bytes(clip_paths: list[Path], output_path: Path) -> None:
    output_path.write_bytes(b"".join(p.read_bytes() for p in clip_paths))


def segment_transport(bodies: Optional[dict[str, bytes]] = None) -> httpx.MockTransport:
    """Serve op-{n}.mp4 as the scene letter (op-1 -> A); other paths from bodies or 404."""
    bodies = bodies or {}

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url in bodies:
            return httpx.Response(200, content=bodies[url])
        name = request.url.path.rsplit("/", 1)[-1]
        if name.startswith("op-") and name.endswith(".mp4"):
            n = int(name[3:-4])
            return httpx.Response(200, content=chr(ord("A") + n - 1).encode())
        return httpx.Response(404)

    return httpx.MockTransport(handler)


@pytest.fixture(autouse=True)
def unthrottled_polling(monkeypatch):
    """Let back-to-back cycles query remote status; spacing tests opt back in."""
    monkeypatch.setattr(settings.pipeline, "video_poll_interval", 0)


@pytest.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_database(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def workspace_root(tmp_path) -> Path:
    return tmp_path / "work"


@pytest.fixture
async def http_client():
    async with httpx.AsyncClient(transport=segment_transport()) as client:
        yield client


@pytest.fixture
def services(http_client, workspace_root) -> PipelineServices:
    storage = FakeStorage()
    return PipelineServices(
        script_generator=FakeScriptGenerator(),
        image_generator=FakeImageGenerator(),
        video_generator=FakeVideoGenerator(),
        storage=storage,
        notifier=FakeNotifier(),
        stitcher=SegmentStitcher(
            storage,
            http_client=http_client,
            muxer=concat_bytes,
            file_manager=FileManager(workspace_root),
        ),
    )


async def make_order(
    session,
    status: str = state.PENDING_PAYMENT,
    *,
    user_id: str = "user-1",
    customer_email: Optional[str] = "parent@example.com",
) -> uuid.UUID:
    """Create an order and walk it forward to `status` through legal transitions."""
    order = await order_service.create_order(
        session,
        user_id=user_id,
        customer_email=customer_email,
        children=CHILDREN,
        status=state.DRAFT if status == state.DRAFT else state.PENDING_PAYMENT,
    )
    order_id = order.id
    if status in (state.DRAFT, state.PENDING_PAYMENT):
        return order_id
    if status == state.FAILED:
        await order_service.fail_order(session, order_id, "scene_videos failed for 1 scene: scene 1: boom")
        return order_id

    await order_service.mark_paid(session, order_id, payment_reference="pi_test", amount_paid=1999)
    current = state.PAID
    while current != status:
        nxt = next(s for s in state.ALLOWED_TRANSITIONS[current] if s != state.FAILED)
        if nxt == state.COMPLETE:
            await order_service.complete_order(session, order_id, "https://storage.test/final.mp4")
        else:
            await order_service.transition(session, order_id, current, nxt)
        current = nxt
    return order_id


@pytest.fixture
async def api_client(session_factory, services):
    from santavid.api.app import app
    from santavid.api.routes import get_services, get_session_factory
    from santavid.db import get_session

    async def _get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def load_order(session_factory, order_id: uuid.UUID):
    """Read an order in a fresh session so writes from other sessions are visible."""
    async with session_factory() as session:
        return await order_service.get_order(session, order_id, with_children=True)
