"""
Crypto Shorts Bot: main entry point.

Starts:
    • Structured JSON logging
    • Video job orchestrator (in-memory job store)
    • FastAPI HTTP server (create / status / approve / preview)
"""

import json
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

load_dotenv()  # must run before any module-level os.getenv() calls

from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from agent.collaborators import default_collaborators
from models.errors import (
    CollaboratorError,
    IncompleteArtifactsError,
    JobError,
    JobNotFoundError,
    JobNotReadyError,
)
from workers.job_worker import VideoOrchestrator

OUTPUT_DIR: str = os.getenv("OUTPUT_DIR", "output")


# ── Structured JSON logging ────────────────────────────────────────────────────

class _JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    _SKIP = frozenset({
        "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
        "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
        "created", "msecs", "relativeCreated", "thread", "threadName",
        "processName", "process", "message", "taskName",
    })

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        out: dict = {
            "ts":     self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level":  record.levelname,
            "logger": record.name,
            "msg":    record.message,
        }
        if record.exc_info:
            out["exc"] = self.formatException(record.exc_info)
        # extra= fields, e.g. job_id / status / progress
        for k, v in record.__dict__.items():
            if k not in self._SKIP:
                out[k] = v
        return json.dumps(out, default=str)


def setup_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(_JSONFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True


setup_logging(os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)


# ── Lifespan ───────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    Path(OUTPUT_DIR).mkdir(parents=True, exist_ok=True)
    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = VideoOrchestrator(default_collaborators())
    logger.info("Orchestrator ready", extra={"output_dir": OUTPUT_DIR})
    yield
    logger.info("Shutting down")


# ── FastAPI app ────────────────────────────────────────────────────────────────

app = FastAPI(title="Crypto Shorts Bot", version="0.1.0", lifespan=lifespan)
app.state.orchestrator = None

_ERROR_STATUS = {
    JobNotFoundError: 404,
    JobNotReadyError: 409,
    IncompleteArtifactsError: 422,
    CollaboratorError: 502,
}


def _orchestrator(request: Request) -> VideoOrchestrator:
    return request.app.state.orchestrator


@app.exception_handler(JobError)
async def job_error_handler(request: Request, exc: JobError):
    status_code = _ERROR_STATUS.get(type(exc), 500)
    logger.warning("Request failed", extra={"path": request.url.path,
                   "code": exc.code, "error": str(exc)})
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "code": exc.code, "error": str(exc)},
    )


@app.get("/api/health")
async def health():
    return {"status": "ok", "message": "Crypto Shorts Bot API is running"}


class CreateVideoResponse(BaseModel):
    success: bool
    jobId: str
    message: str


@app.post("/api/video/create", response_model=CreateVideoResponse)
async def create_video(request: Request):
    job_id = _orchestrator(request).start_job()
    return CreateVideoResponse(
        success=True,
        jobId=job_id,
        message="Video creation started. Check status endpoint for progress.",
    )


@app.get("/api/video/status/{job_id}")
async def video_status(job_id: str, request: Request):
    record = _orchestrator(request).get_progress(job_id)
    if record is None:
        return JSONResponse(
            status_code=404,
            content={
                "jobId":    job_id,
                "status":   "not_found",
                "progress": 0,
                "message":  "Job not found. It may still be initializing.",
            },
        )
    return record.to_dict()


@app.post("/api/video/approve/{job_id}")
async def approve_video(job_id: str, request: Request):
    published = await _orchestrator(request).approve_and_upload(job_id)
    return published.to_dict()


# ── Preview files ──────────────────────────────────────────────────────────────

def _preview(filename: str, kind: str):
    # basename only: no path traversal out of OUTPUT_DIR
    path = Path(OUTPUT_DIR) / os.path.basename(filename)
    if not path.is_file():
        return JSONResponse(status_code=404, content={"error": f"{kind} not found"})
    return FileResponse(path)


@app.get("/api/video/preview/video/{filename}")
async def preview_video(filename: str):
    return _preview(filename, "Video")


@app.get("/api/video/preview/thumbnail/{filename}")
async def preview_thumbnail(filename: str):
    return _preview(filename, "Thumbnail")


# ── Entry point ────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=False,
        log_config=None,   # let our handler take over
    )
