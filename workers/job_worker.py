"""
Video job worker.

- start_job()           reserves a job id and launches run_pipeline() as a
                        background asyncio task (fire-and-forget).
- run_pipeline()        scrape -> distill -> script -> video -> thumbnail,
                        writing progress after every stage; ends in
                        ``ready`` or ``error``.
- approve_and_upload()  human approval gate: re-validates the stored result,
                        publishes, ends in ``completed`` or ``error``.
- get_progress()        read-only view of a job's latest record.

Progress ranges per stage:

    pending(0) scraping(10-20) analyzing(30-40) generating_script(50-60)
    creating_video(70-80) creating_thumbnail(90-95) ready(100)

Pipeline failures are absorbed into the stored record and only visible by
polling. Approval failures are stored AND re-raised to the caller.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from functools import partial
from typing import Awaitable, Callable, Optional, Sequence

from db.job_store import JobExistsError, JobStore
from models.content import Article, PublishReceipt, Script, Topic
from models.errors import (
    CollaboratorError,
    IncompleteArtifactsError,
    JobError,
    JobNotFoundError,
    JobNotReadyError,
)
from models.job import (
    PIPELINE_ORDER,
    ErrorResult,
    JobRecord,
    JobStatus,
    PendingApprovalResult,
    PublishedResult,
)

logger = logging.getLogger(__name__)


def _stage_timeout_from_env() -> Optional[float]:
    raw = os.getenv("STAGE_TIMEOUT_SECONDS", "").strip()
    if not raw:
        return None
    try:
        seconds = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid STAGE_TIMEOUT_SECONDS", extra={"value": raw})
        return None
    return seconds if seconds > 0 else None


STAGE_TIMEOUT: Optional[float] = _stage_timeout_from_env()

TopicFilter = Callable[[list[Topic]], list[Topic]]


@dataclass
class Collaborators:
    """The external operations a job is built from. All are awaited."""

    scrape: Callable[[], Awaitable[Sequence[Article]]]
    distill: Callable[[Sequence[Article]], Awaitable[Sequence[Topic]]]
    write_script: Callable[[Sequence[Topic]], Awaitable[Script]]
    render_video: Callable[[Script], Awaitable[str]]
    render_thumbnail: Callable[[Script], Awaitable[str]]
    publish: Callable[[str, str, Script], Awaitable[PublishReceipt]]


class VideoOrchestrator:
    def __init__(
        self,
        collaborators: Collaborators,
        store: Optional[JobStore] = None,
        topic_filters: Sequence[TopicFilter] = (),
        stage_timeout: Optional[float] = STAGE_TIMEOUT,
    ) -> None:
        self.store = store if store is not None else JobStore()
        self._c = collaborators
        self._topic_filters = list(topic_filters)
        self._stage_timeout = stage_timeout
        # Strong refs so running pipelines are not garbage-collected
        self._tasks: dict[str, asyncio.Task] = {}

    # ── Launch ────────────────────────────────────────────────────────────────

    def start_job(self, job_id: Optional[str] = None) -> str:
        """
        Start a pipeline in the background and return its job id immediately.

        Without ``job_id`` the current epoch-milliseconds is used, bumped
        until it is unused. An explicit ``job_id`` that already exists raises
        JobExistsError. Must be called from a running event loop.
        """
        if job_id is None:
            candidate = int(time.time() * 1000)
            while True:
                try:
                    self.store.create(str(candidate))
                    break
                except JobExistsError:
                    candidate += 1
            job_id = str(candidate)
        else:
            self.store.create(job_id)

        task = asyncio.create_task(self.run_pipeline(job_id), name=f"pipeline-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(partial(self._on_pipeline_done, job_id))
        logger.info("Job started", extra={"job_id": job_id})
        return job_id

    def _on_pipeline_done(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)

        if task.cancelled():
            msg = "Pipeline cancelled"
        elif task.exception() is not None:
            exc = task.exception()
            msg = str(exc) or type(exc).__name__
            logger.error(
                "Pipeline crashed outside stage handling",
                extra={"job_id": job_id, "error": msg},
                exc_info=exc,
            )
        else:
            return

        # run_pipeline never got to record its own failure
        self.store.update(job_id, JobStatus.ERROR, 0, msg, result=ErrorResult(msg))

    async def join(self, job_id: str) -> None:
        """Wait until the background pipeline for ``job_id`` (if any) has finished."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait([task])

    # ── Stage pipeline ────────────────────────────────────────────────────────

    async def run_pipeline(self, job_id: str) -> "PendingApprovalResult | ErrorResult":
        self.store.mutate(job_id, partial(_accept_for_pipeline, job_id))
        self._progress(job_id, JobStatus.PENDING, 0, "Starting video creation...")

        try:
            self._progress(job_id, JobStatus.SCRAPING, 10, "Scraping latest crypto news...")
            articles = list(await self._call(JobStatus.SCRAPING, self._c.scrape))
            self._progress(job_id, JobStatus.SCRAPING, 20, f"Found {len(articles)} articles")

            self._progress(job_id, JobStatus.ANALYZING, 30, "Analyzing and distilling trending topics...")
            topics = list(await self._call(JobStatus.ANALYZING, self._c.distill, articles))
            kept = self._filter_topics(topics)
            msg = f"Identified {len(kept)} trending topics"
            if len(kept) != len(topics):
                msg += f" (filtered {len(topics) - len(kept)})"
            self._progress(job_id, JobStatus.ANALYZING, 40, msg)

            self._progress(job_id, JobStatus.GENERATING_SCRIPT, 50, "Generating video script...")
            script = await self._call(JobStatus.GENERATING_SCRIPT, self._c.write_script, kept)
            self._progress(job_id, JobStatus.GENERATING_SCRIPT, 60, f'Script generated: "{script.title}"')

            self._progress(job_id, JobStatus.CREATING_VIDEO, 70, "Rendering video...")
            video_path = await self._render(JobStatus.CREATING_VIDEO, self._c.render_video, script)
            video_file = os.path.basename(video_path)
            self._progress(job_id, JobStatus.CREATING_VIDEO, 80, f"Video rendered: {video_file}")

            self._progress(job_id, JobStatus.CREATING_THUMBNAIL, 90, "Generating thumbnail...")
            thumbnail_path = await self._render(JobStatus.CREATING_THUMBNAIL, self._c.render_thumbnail, script)
            thumbnail_file = os.path.basename(thumbnail_path)
            self._progress(job_id, JobStatus.CREATING_THUMBNAIL, 95, f"Thumbnail generated: {thumbnail_file}")

        except CollaboratorError as exc:
            logger.error(
                "Job failed",
                extra={"job_id": job_id, "stage": exc.stage, "error": str(exc)},
                exc_info=exc.cause,
            )
            error = ErrorResult(str(exc))
            self._progress(job_id, JobStatus.ERROR, 0, f"Error: {exc}", result=error)
            return error

        result = PendingApprovalResult(
            script=script,
            video_path=video_path,
            thumbnail_path=thumbnail_path,
            video_file=video_file,
            thumbnail_file=thumbnail_file,
        )
        self._progress(job_id, JobStatus.READY, 100, "Video ready for preview and approval", result=result)
        return result

    def _filter_topics(self, topics: list[Topic]) -> list[Topic]:
        for topic_filter in self._topic_filters:
            try:
                topics = list(topic_filter(topics))
            except Exception as exc:
                raise CollaboratorError(JobStatus.ANALYZING.value, exc) from exc
        return topics

    async def _render(self, stage: JobStatus, fn, script: Script) -> str:
        path = await self._call(stage, fn, script)
        if not path:
            raise CollaboratorError(stage.value, ValueError(f"{stage.value} returned no file path"))
        return path

    async def _call(self, stage: JobStatus, fn, *args):
        """Await one collaborator; any failure becomes a CollaboratorError for ``stage``."""
        try:
            if not self._stage_timeout:
                return await fn(*args)
            try:
                return await asyncio.wait_for(fn(*args), self._stage_timeout)
            except asyncio.TimeoutError as exc:
                cause = TimeoutError(f"{stage.value} timed out after {self._stage_timeout:g}s")
                raise CollaboratorError(stage.value, cause) from exc
        except JobError:
            raise
        except Exception as exc:
            raise CollaboratorError(stage.value, exc) from exc

    def _progress(self, job_id: str, status: JobStatus, progress: int, message: str, **kw) -> JobRecord:
        return self.store.update(job_id, status, progress, message, **kw)

    # ── Approval gate ─────────────────────────────────────────────────────────

    async def approve_and_upload(self, job_id: str) -> PublishedResult:
        """
        Publish a ``ready`` job. Raises JobNotFoundError, JobNotReadyError or
        IncompleteArtifactsError without touching the record. Any failure after
        the job is claimed (a CollaboratorError, a malformed receipt) is
        recorded as ``error`` and re-raised.
        """
        record = self.store.mutate(job_id, partial(_claim_for_upload, job_id))
        pending: PendingApprovalResult = record.result
        logger.info(
            record.message,
            extra={"job_id": job_id, "status": record.status.value, "progress": record.progress},
        )

        try:
            receipt = await self._call(
                JobStatus.UPLOADING,
                self._c.publish,
                pending.video_path,
                pending.thumbnail_path,
                pending.script,
            )
            published = PublishedResult(
                video_id=receipt.platform_video_id,
                video_url=receipt.public_url,
                script=pending.script,
                video_path=pending.video_path,
                thumbnail_path=pending.thumbnail_path,
            )
        except asyncio.CancelledError:
            self._progress(job_id, JobStatus.ERROR, 0, "Upload cancelled")
            raise
        except Exception as exc:
            msg = str(exc) or type(exc).__name__
            logger.error(
                "Upload failed",
                extra={"job_id": job_id, "error": msg},
                exc_info=exc.cause if isinstance(exc, CollaboratorError) else exc,
            )
            if isinstance(exc, JobError):
                exc.job_id = job_id
            self._progress(job_id, JobStatus.ERROR, 0, f"Upload failed: {msg}")
            raise

        self._progress(
            job_id,
            JobStatus.COMPLETED,
            100,
            f"Upload successful: {receipt.public_url}",
            result=published,
        )
        return published

    # ── Progress reader ───────────────────────────────────────────────────────

    def get_progress(self, job_id: str) -> Optional[JobRecord]:
        """Latest record for ``job_id``, or None if no such job was ever accepted."""
        return self.store.get(job_id)


def _accept_for_pipeline(job_id: str, current: Optional[JobRecord]) -> JobRecord:
    # Only a never-seen job or one reserved by start_job may enter the pipeline
    if current is None:
        return JobRecord(job_id=job_id, status=JobStatus.PENDING)
    if current.status is JobStatus.PENDING and current.result is None:
        return current
    raise JobExistsError(job_id)


def _claim_for_upload(job_id: str, current: Optional[JobRecord]) -> JobRecord:
    if current is None:
        raise JobNotFoundError(f"Job {job_id} not found", job_id)

    result = current.result
    if result is None:
        if current.status in PIPELINE_ORDER:
            raise JobNotReadyError(
                f"Job {job_id} is still {current.status.value}; video not ready for approval",
                job_id,
            )
        raise JobNotFoundError(f"Job {job_id} has no result", job_id)

    if current.status is JobStatus.UPLOADING:
        raise JobNotReadyError(f"Job {job_id} is already uploading", job_id)

    if not result.ready_for_approval:
        raise JobNotReadyError(f"Job {job_id}: video not ready for approval", job_id)

    if not (
        isinstance(result, PendingApprovalResult)
        and result.script
        and result.video_path
        and result.thumbnail_path
    ):
        raise IncompleteArtifactsError(
            f"Job {job_id}: missing video, thumbnail, or script data", job_id
        )

    return current.evolve(status=JobStatus.UPLOADING, progress=0, message="Uploading to YouTube...")
