"""HTTP route tests: create / status / approve / preview."""

import pytest

import main
from conftest import FakeCollaborators
from workers.job_worker import VideoOrchestrator


async def test_health(client):
    r = await client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


async def test_create_poll_approve_flow(client, orchestrator):
    r = await client.post("/api/video/create")
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    job_id = data["jobId"]

    await orchestrator.join(job_id)

    r = await client.get(f"/api/video/status/{job_id}")
    assert r.status_code == 200
    status = r.json()
    assert status["jobId"] == job_id
    assert status["status"] == "ready"
    assert status["progress"] == 100
    assert status["result"]["readyForApproval"] is True
    assert status["result"]["videoPath"] == "/out/v1.mp4"
    assert status["result"]["videoFile"] == "v1.mp4"
    assert status["result"]["script"]["title"] == "Why Ethereum Staking Matters"

    r = await client.post(f"/api/video/approve/{job_id}")
    assert r.status_code == 200
    published = r.json()
    assert published["videoId"] == "abc123"
    assert published["videoUrl"] == "https://platform.example/watch?v=abc123"

    r = await client.get(f"/api/video/status/{job_id}")
    assert r.json()["status"] == "completed"
    assert r.json()["result"]["videoUrl"] == "https://platform.example/watch?v=abc123"

    r = await client.post(f"/api/video/approve/{job_id}")
    assert r.status_code == 409
    assert r.json() == {
        "success": False,
        "code": "not_ready",
        "error": f"Job {job_id}: video not ready for approval",
    }


async def test_unknown_status_is_404_not_error(client):
    r = await client.get("/api/video/status/123")
    assert r.status_code == 404
    body = r.json()
    assert body["status"] == "not_found"
    assert body["jobId"] == "123"
    assert body["progress"] == 0


async def test_failed_job_reports_error_status(client):
    from main import app

    orchestrator = VideoOrchestrator(FakeCollaborators(fail_at="distill").bundle())
    app.state.orchestrator = orchestrator
    job_id = (await client.post("/api/video/create")).json()["jobId"]
    await orchestrator.join(job_id)

    r = await client.get(f"/api/video/status/{job_id}")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "error"
    assert body["progress"] == 0
    assert body["result"] == {"success": False, "error": "distill exploded"}


async def test_approve_unknown_job_is_404(client):
    r = await client.post("/api/video/approve/missing")
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"


async def test_publish_failure_is_502_and_recorded(client):
    from main import app

    orchestrator = VideoOrchestrator(FakeCollaborators(fail_at="publish").bundle())
    app.state.orchestrator = orchestrator
    await orchestrator.run_pipeline("j1")

    r = await client.post("/api/video/approve/j1")
    assert r.status_code == 502
    assert r.json()["error"] == "publish exploded"

    r = await client.get("/api/video/status/j1")
    assert r.json()["status"] == "error"
    assert r.json()["message"] == "Upload failed: publish exploded"


@pytest.mark.parametrize("kind", ["video", "thumbnail"])
async def test_preview_serves_files_from_output_dir(client, tmp_path, monkeypatch, kind):
    monkeypatch.setattr(main, "OUTPUT_DIR", str(tmp_path))
    (tmp_path / "clip.bin").write_bytes(b"\x00\x01payload")

    r = await client.get(f"/api/video/preview/{kind}/clip.bin")
    assert r.status_code == 200
    assert r.content == b"\x00\x01payload"

    r = await client.get(f"/api/video/preview/{kind}/missing.bin")
    assert r.status_code == 404
