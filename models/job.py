from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from models.content import Script


class JobStatus(str, Enum):
    PENDING = "pending"
    SCRAPING = "scraping"
    ANALYZING = "analyzing"
    GENERATING_SCRIPT = "generating_script"
    CREATING_VIDEO = "creating_video"
    CREATING_THUMBNAIL = "creating_thumbnail"
    READY = "ready"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ERROR = "error"


# Pipeline stages in the only order they may be entered
PIPELINE_ORDER = (
    JobStatus.PENDING,
    JobStatus.SCRAPING,
    JobStatus.ANALYZING,
    JobStatus.GENERATING_SCRIPT,
    JobStatus.CREATING_VIDEO,
    JobStatus.CREATING_THUMBNAIL,
    JobStatus.READY,
)

TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.ERROR})


@dataclass(frozen=True)
class PendingApprovalResult:
    script: Optional[Script]
    video_path: Optional[str]
    thumbnail_path: Optional[str]
    video_file: Optional[str] = None
    thumbnail_file: Optional[str] = None
    ready_for_approval: bool = True

    def to_dict(self) -> dict:
        return {
            "success":          True,
            "script":           self.script.to_dict() if self.script else None,
            "videoPath":        self.video_path,
            "thumbnailPath":    self.thumbnail_path,
            "videoFile":        self.video_file,
            "thumbnailFile":    self.thumbnail_file,
            "readyForApproval": self.ready_for_approval,
        }


@dataclass(frozen=True)
class PublishedResult:
    video_id: str
    video_url: str
    script: Script
    video_path: str
    thumbnail_path: str
    # Always cleared: a published job can never be approved again
    ready_for_approval: bool = field(default=False, init=False)

    def to_dict(self) -> dict:
        return {
            "success":          True,
            "videoId":          self.video_id,
            "videoUrl":         self.video_url,
            "script":           self.script.to_dict(),
            "videoPath":        self.video_path,
            "thumbnailPath":    self.thumbnail_path,
            "readyForApproval": False,
        }


@dataclass(frozen=True)
class ErrorResult:
    error: str
    ready_for_approval: bool = field(default=False, init=False)

    def to_dict(self) -> dict:
        return {"success": False, "error": self.error}


Result = Union[PendingApprovalResult, PublishedResult, ErrorResult]


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass(frozen=True)
class JobRecord:
    job_id: str
    status: JobStatus       # see PIPELINE_ORDER; uploading | completed after approval
    progress: int = 0       # 0-100, reset to 0 on error
    message: str = ""
    result: Optional[Result] = None
    updated_at: str = field(default_factory=_now)

    def evolve(self, **changes) -> "JobRecord":
        """Copy with ``changes`` applied and a fresh ``updated_at``."""
        changes.setdefault("updated_at", _now())
        return replace(self, **changes)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL

    def to_dict(self) -> dict:
        return {
            "jobId":     self.job_id,
            "status":    self.status.value,
            "progress":  self.progress,
            "message":   self.message,
            "updatedAt": self.updated_at,
            "result":    self.result.to_dict() if self.result else None,
        }
