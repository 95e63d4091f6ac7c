"""Caller-facing view of queue state, plus local artifact retrieval for stateless results."""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from django.conf import settings
from rest_framework import status

from .models import Job
from .queue import JobQueue
from .storage import S3, get_content_type
from .utils import is_within

NOT_FOUND = "not-found"


class ArtifactUnavailable(Exception):
    def __init__(self, message: str, http_status: int = status.HTTP_404_NOT_FOUND) -> None:
        super().__init__(message)
        self.message = message
        self.http_status = http_status


@dataclass(frozen=True)
class ResultArtifact:
    path: Path
    content_type: str
    filename: str


def job_status(job_id, queue: Optional[JobQueue] = None) -> dict:
    """
    {"status": "not-found"} for unknown or evicted ids, otherwise status and
    progress, plus the result once terminal. Errors from attempts that will be
    retried stay internal; only a failed job carries failedReason.
    """
    queue = queue or JobQueue()
    try:
        job = queue.fetch_status(job_id)
    except Job.DoesNotExist:
        return {"status": NOT_FOUND}

    view = {"status": job.state, "progress": job.progress}
    if job.is_terminal:
        view["result"] = job.result
        if job.state == Job.State.FAILED:
            view["failedReason"] = (job.result or {}).get("error") or job.last_error
    return view


def result_artifact(job_id, index: int = 0, queue: Optional[JobQueue] = None) -> ResultArtifact:
    """
    The local file behind a completed stateless job. Object-storage results are
    refused: their artifacts are only reachable through the URL in the result.
    """
    queue = queue or JobQueue()
    try:
        job = queue.fetch_status(job_id)
    except Job.DoesNotExist:
        raise ArtifactUnavailable("Job not found")

    if job.state != Job.State.COMPLETED:
        raise ArtifactUnavailable("Job not completed")

    result = job.result or {}
    if result.get("mode") == S3:
        raise ArtifactUnavailable("Use the URL from job status for S3 mode", status.HTTP_400_BAD_REQUEST)

    paths = [result["outputPath"]] if result.get("outputPath") else list(result.get("outputPaths") or [])
    if not paths:
        raise ArtifactUnavailable("No output file available")
    if not 0 <= index < len(paths):
        raise ArtifactUnavailable(
            f"Output index {index} out of range (job has {len(paths)} output(s))", status.HTTP_400_BAD_REQUEST
        )

    path = Path(paths[index])
    if not is_within(path, settings.MEDIA_ROOT) or not path.is_file():
        raise ArtifactUnavailable("Output file is no longer available")

    return ResultArtifact(path=path, content_type=get_content_type(path), filename=path.name)
