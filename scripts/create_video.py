"""
Create a video from the terminal, without the HTTP server.

Usage:
    python scripts/create_video.py [--auto-approve]

Runs the full pipeline, prints each progress change, and when the video is
ready asks whether to publish it. --auto-approve publishes without asking.
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv()

from agent.collaborators import default_collaborators
from main import setup_logging
from models.errors import JobError
from models.job import JobStatus
from workers.job_worker import VideoOrchestrator

POLL_SECONDS = 1.0


async def watch(orchestrator: VideoOrchestrator, job_id: str) -> JobStatus:
    """Print every change in the job's record until the pipeline stops."""
    last = None
    while True:
        record = orchestrator.get_progress(job_id)
        if record is not None and (record.status, record.progress, record.message) != last:
            last = (record.status, record.progress, record.message)
            print(f"[{record.status.value:>18}] {record.progress:3d}%  {record.message}")
            if record.status in (JobStatus.READY, JobStatus.ERROR):
                return record.status
        await asyncio.sleep(POLL_SECONDS)


async def main(auto_approve: bool) -> int:
    orchestrator = VideoOrchestrator(default_collaborators())
    job_id = orchestrator.start_job()
    print(f"Job {job_id} started")

    status = await watch(orchestrator, job_id)
    await orchestrator.join(job_id)
    if status is JobStatus.ERROR:
        return 1

    result = orchestrator.get_progress(job_id).result
    print(f"\nTitle:     {result.script.title}")
    print(f"Video:     {result.video_path}")
    print(f"Thumbnail: {result.thumbnail_path}")

    if not auto_approve:
        answer = input("\nPublish this video to YouTube? [y/N] ").strip().lower()
        if answer != "y":
            print(f"Not published. Approve later with job id {job_id}.")
            return 0

    try:
        published = await orchestrator.approve_and_upload(job_id)
    except JobError as exc:
        print(f"Upload failed: {exc}")
        return 1

    print(f"Published: {published.video_url} ✅")
    return 0


def configure_logging() -> None:
    # JSON lines like the server, WARNING unless LOG_LEVEL says otherwise
    setup_logging(os.getenv("LOG_LEVEL", "WARNING"))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create (and optionally publish) a crypto news video")
    parser.add_argument("--auto-approve", action="store_true", help="publish without asking")
    args = parser.parse_args()

    configure_logging()
    sys.exit(asyncio.run(main(args.auto_approve)))
