"""
Error taxonomy for the job core.

Callers branch on the class (or ``code``), never on the message text:

    JobNotFoundError          approval asked for an unknown or resultless job
    JobNotReadyError          approval asked before ``ready`` or after it was consumed
    IncompleteArtifactsError  ready flag set but script/video/thumbnail missing
    CollaboratorError         an external stage (scrape ... publish) failed
"""

from typing import Optional


class JobError(Exception):
    code = "job_error"

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.job_id = job_id


class JobNotFoundError(JobError):
    code = "not_found"


class JobNotReadyError(JobError):
    code = "not_ready"


class IncompleteArtifactsError(JobError):
    code = "incomplete_artifacts"


class CollaboratorError(JobError):
    """Wraps whatever a collaborator raised; the message is the original one."""

    code = "collaborator_failure"

    def __init__(self, stage: str, cause: BaseException, job_id: Optional[str] = None):
        super().__init__(str(cause) or type(cause).__name__, job_id=job_id)
        self.stage = stage
        self.cause = cause
