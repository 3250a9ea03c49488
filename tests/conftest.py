"""Shared test fixtures: scripted collaborators and an orchestrator wired to them."""

import asyncio
from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from db.job_store import JobStore
from models.content import Article, PublishReceipt, Script, Topic
from workers.job_worker import Collaborators, VideoOrchestrator


class CollaboratorFailed(Exception):
    pass


class FakeCollaborators:
    """
    Scripted stand-ins for the external stages.

    fail_at   name of the step that raises (scrape, distill, write_script,
              render_video, render_thumbnail, publish)
    hold_at   name of the step that waits on ``release`` before returning
    """

    def __init__(
        self,
        fail_at=None,
        hold_at=None,
        articles=12,
        topics=3,
        title="Why Ethereum Staking Matters",
        video_path="/out/v1.mp4",
        thumbnail_path="/out/t1.png",
        video_id="abc123",
        url="https://platform.example/watch?v=abc123",
    ):
        self.fail_at = fail_at
        self.hold_at = hold_at
        self.release = asyncio.Event()
        self.reached = asyncio.Event()
        self.n_articles = articles
        self.n_topics = topics
        self.title = title
        self.video_path = video_path
        self.thumbnail_path = thumbnail_path
        self.receipt = PublishReceipt(platform_video_id=video_id, public_url=url)
        self.calls: list[str] = []
        self.script_topics = None
        self.published_with = None

    async def _step(self, name):
        self.calls.append(name)
        if self.hold_at == name:
            self.reached.set()
            await self.release.wait()
        if self.fail_at == name:
            raise CollaboratorFailed(f"{name} exploded")

    async def scrape(self):
        await self._step("scrape")
        now = datetime.now(timezone.utc)
        return [
            Article(title=f"Story {i}", url=f"https://news.example/{i}", source="Wire", published=now)
            for i in range(self.n_articles)
        ]

    async def distill(self, articles):
        await self._step("distill")
        return [Topic(title=f"Topic {i}", summary="s", importance=10 - i) for i in range(self.n_topics)]

    async def write_script(self, topics):
        await self._step("write_script")
        self.script_topics = list(topics)
        return Script(title=self.title, description="d", tags=["crypto"], body="gm degens", topics=list(topics))

    async def render_video(self, script):
        await self._step("render_video")
        return self.video_path

    async def render_thumbnail(self, script):
        await self._step("render_thumbnail")
        return self.thumbnail_path

    async def publish(self, video_path, thumbnail_path, script):
        await self._step("publish")
        self.published_with = (video_path, thumbnail_path, script.title)
        return self.receipt

    def bundle(self) -> Collaborators:
        return Collaborators(
            scrape=self.scrape,
            distill=self.distill,
            write_script=self.write_script,
            render_video=self.render_video,
            render_thumbnail=self.render_thumbnail,
            publish=self.publish,
        )


class RecordingStore(JobStore):
    """JobStore that remembers every (status, progress) written per job."""

    def __init__(self):
        super().__init__()
        self.history: dict[str, list] = {}

    def update(self, job_id, status, progress, message, **kw):
        record = super().update(job_id, status, progress, message, **kw)
        self.history.setdefault(job_id, []).append((status, progress))
        return record


@pytest.fixture
def fakes():
    return FakeCollaborators()


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def orchestrator(fakes, store):
    return VideoOrchestrator(fakes.bundle(), store=store, stage_timeout=None)


@pytest.fixture
async def client(orchestrator):
    """Async HTTP test client against the real app, wired to the fake orchestrator."""
    from main import app

    app.state.orchestrator = orchestrator
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.state.orchestrator = None
