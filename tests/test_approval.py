"""Tests for the approval gate: precondition checks, publish, failure recording."""

import asyncio

import pytest

from conftest import FakeCollaborators
from models.content import PublishReceipt, Script
from models.errors import (
    CollaboratorError,
    IncompleteArtifactsError,
    JobNotFoundError,
    JobNotReadyError,
)
from models.job import (
    ErrorResult,
    JobRecord,
    JobStatus,
    PendingApprovalResult,
    PublishedResult,
)
from workers.job_worker import VideoOrchestrator


async def test_approve_publishes_ready_job(orchestrator, fakes):
    await orchestrator.run_pipeline("1700000000000")

    published = await orchestrator.approve_and_upload("1700000000000")

    assert isinstance(published, PublishedResult)
    assert published.video_id == "abc123"
    assert published.video_url == "https://platform.example/watch?v=abc123"
    assert published.video_path == "/out/v1.mp4"
    assert published.thumbnail_path == "/out/t1.png"
    assert fakes.published_with == ("/out/v1.mp4", "/out/t1.png", "Why Ethereum Staking Matters")

    record = orchestrator.get_progress("1700000000000")
    assert record.status is JobStatus.COMPLETED
    assert record.progress == 100
    assert record.message == "Upload successful: https://platform.example/watch?v=abc123"
    assert record.result is published
    body = record.to_dict()
    assert body["status"] == "completed"
    assert body["result"]["videoUrl"] == "https://platform.example/watch?v=abc123"


async def test_record_shows_uploading_while_publish_is_in_flight():
    fakes = FakeCollaborators(hold_at="publish")
    orchestrator = VideoOrchestrator(fakes.bundle())
    await orchestrator.run_pipeline("j1")

    approval = asyncio.create_task(orchestrator.approve_and_upload("j1"))
    await fakes.reached.wait()

    record = orchestrator.get_progress("j1")
    assert record.status is JobStatus.UPLOADING
    assert record.progress == 0

    # A second approval while the first is in flight is refused
    with pytest.raises(JobNotReadyError):
        await orchestrator.approve_and_upload("j1")

    fakes.release.set()
    await approval
    assert orchestrator.get_progress("j1").status is JobStatus.COMPLETED
    assert fakes.calls.count("publish") == 1


async def test_second_approval_is_not_ready(orchestrator, fakes):
    await orchestrator.run_pipeline("j1")
    await orchestrator.approve_and_upload("j1")

    with pytest.raises(JobNotReadyError):
        await orchestrator.approve_and_upload("j1")

    assert fakes.calls.count("publish") == 1
    assert orchestrator.get_progress("j1").status is JobStatus.COMPLETED


async def test_unknown_job_is_not_found(orchestrator):
    with pytest.raises(JobNotFoundError) as exc_info:
        await orchestrator.approve_and_upload("nope")
    assert exc_info.value.code == "not_found"
    assert orchestrator.get_progress("nope") is None


async def test_resultless_record_outside_pipeline_is_not_found(orchestrator):
    orchestrator.store.set("j1", JobRecord(job_id="j1", status=JobStatus.COMPLETED))
    with pytest.raises(JobNotFoundError):
        await orchestrator.approve_and_upload("j1")


async def test_approve_before_ready_is_not_ready_and_changes_nothing():
    fakes = FakeCollaborators(hold_at="render_video")
    orchestrator = VideoOrchestrator(fakes.bundle())
    job_id = orchestrator.start_job()
    await fakes.reached.wait()

    before = orchestrator.get_progress(job_id)
    with pytest.raises(JobNotReadyError):
        await orchestrator.approve_and_upload(job_id)
    assert orchestrator.get_progress(job_id) is before

    fakes.release.set()
    await orchestrator.join(job_id)
    assert orchestrator.get_progress(job_id).status is JobStatus.READY
    assert "publish" not in fakes.calls


async def test_failed_pipeline_cannot_be_approved():
    orchestrator = VideoOrchestrator(FakeCollaborators(fail_at="scrape").bundle())
    await orchestrator.run_pipeline("j1")

    with pytest.raises(JobNotReadyError):
        await orchestrator.approve_and_upload("j1")
    assert orchestrator.get_progress("j1").result == ErrorResult("scrape exploded")


@pytest.mark.parametrize("missing", ["script", "video_path", "thumbnail_path"])
async def test_ready_flag_without_artifacts_is_incomplete(orchestrator, missing):
    artifacts = {
        "script": Script(title="t", description="d", tags=[], body="b"),
        "video_path": "/out/v.mp4",
        "thumbnail_path": "/out/t.png",
    }
    artifacts[missing] = None
    orchestrator.store.set("j1", JobRecord(
        job_id="j1",
        status=JobStatus.READY,
        progress=100,
        result=PendingApprovalResult(**artifacts),
    ))
    before = orchestrator.get_progress("j1")

    with pytest.raises(IncompleteArtifactsError):
        await orchestrator.approve_and_upload("j1")
    assert orchestrator.get_progress("j1") is before


async def test_publish_failure_is_recorded_and_raised():
    fakes = FakeCollaborators(fail_at="publish")
    orchestrator = VideoOrchestrator(fakes.bundle())
    await orchestrator.run_pipeline("j1")

    with pytest.raises(CollaboratorError) as exc_info:
        await orchestrator.approve_and_upload("j1")
    assert str(exc_info.value) == "publish exploded"
    assert exc_info.value.stage == "uploading"
    assert exc_info.value.job_id == "j1"

    record = orchestrator.get_progress("j1")
    assert record.status is JobStatus.ERROR
    assert record.progress == 0
    assert record.message == "Upload failed: publish exploded"
    # Artifacts are kept so an operator can retry the upload
    assert isinstance(record.result, PendingApprovalResult)


async def test_malformed_receipt_is_recorded_and_retry_is_allowed(orchestrator, fakes):
    await orchestrator.run_pipeline("j1")
    fakes.receipt = {"platformVideoId": "abc123", "publicUrl": "u"}

    with pytest.raises(AttributeError):
        await orchestrator.approve_and_upload("j1")

    record = orchestrator.get_progress("j1")
    assert record.status is JobStatus.ERROR
    assert record.progress == 0
    assert record.message.startswith("Upload failed: ")
    assert isinstance(record.result, PendingApprovalResult)

    fakes.receipt = PublishReceipt(platform_video_id="abc123", public_url="https://platform.example/watch?v=abc123")
    published = await orchestrator.approve_and_upload("j1")
    assert published.video_id == "abc123"
    assert orchestrator.get_progress("j1").status is JobStatus.COMPLETED


async def test_cancelled_upload_is_recorded():
    fakes = FakeCollaborators(hold_at="publish")
    orchestrator = VideoOrchestrator(fakes.bundle())
    await orchestrator.run_pipeline("j1")

    approval = asyncio.create_task(orchestrator.approve_and_upload("j1"))
    await fakes.reached.wait()
    approval.cancel()

    with pytest.raises(asyncio.CancelledError):
        await approval

    record = orchestrator.get_progress("j1")
    assert record.status is JobStatus.ERROR
    assert record.message == "Upload cancelled"
    assert isinstance(record.result, PendingApprovalResult)
