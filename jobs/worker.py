"""
Execution of one claimed job.

A worker slot hands every job it claims to JobRunner.run(), which dispatches
the media operation, routes the produced files through the storage resolver and
then either finishes the job or gives it back to the queue for a backoff retry.
The staged input is deleted once, by whoever moved the job into a terminal state.
"""
import logging
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional

from django.conf import settings

from . import ffmpeg
from .ffmpeg import ExecutorError
from .models import Job
from .queue import JobQueue
from .s3 import StorageUploadError
from .storage import S3, STATELESS, StorageResolver
from .utils import remove_file

logger = logging.getLogger(__name__)

PROGRESS_STARTED = 5
PROGRESS_EXECUTED = 80


def backoff_delay(attempts: int, base_ms: Optional[int] = None) -> int:
    """Milliseconds to wait before retry number `attempts`: base * 2^(attempts-1)."""
    base = settings.JOB_BACKOFF_DELAY_MS if base_ms is None else base_ms
    return base * 2 ** (max(attempts, 1) - 1)


def local_outputs(result: Optional[dict]) -> list[str]:
    """Local artifact paths recorded in a stateless result payload."""
    if not result or result.get("mode") != STATELESS:
        return []
    if result.get("outputPath"):
        return [result["outputPath"]]
    return list(result.get("outputPaths") or [])


def _describe(exc: Exception) -> str:
    return str(exc).strip() or exc.__class__.__name__


@dataclass(frozen=True)
class RunOutcome:
    job_id: str
    state: Optional[str]             # None when the job was taken away mid-run
    retry_in_ms: Optional[int] = None


class JobRunner:
    def __init__(self, queue: Optional[JobQueue] = None, resolver: Optional[StorageResolver] = None,
                 execute: Optional[Callable] = None):
        self.queue = queue or JobQueue()
        self.resolver = resolver or StorageResolver()
        self.execute = execute or ffmpeg.execute

    def run(self, job: Job) -> RunOutcome:
        job_id, token = str(job.id), job.claim_token
        self.queue.report_progress(job_id, PROGRESS_STARTED, token=token)

        try:
            result = self._process(job)
        except Exception as e:
            error = _describe(e)
            if isinstance(e, (ExecutorError, StorageUploadError)):
                logger.warning("Job %s attempt %d/%d failed: %s", job_id, job.attempts, job.max_attempts, error)
            else:
                logger.exception("Job %s attempt %d/%d raised unexpectedly", job_id, job.attempts, job.max_attempts)

            if job.attempts < job.max_attempts:
                delay = backoff_delay(job.attempts)
                if not self.queue.release(job_id, error, token=token, delay_ms=delay):
                    logger.warning("Job %s was reclaimed while running; not scheduling a retry", job_id)
                    return RunOutcome(job_id, None)
                logger.info("Job %s will be retried in %d ms", job_id, delay)
                return RunOutcome(job_id, Job.State.QUEUED, retry_in_ms=delay)

            result = {"success": False, "mode": self.resolver.mode, "error": error}

        return self._finish(job, result)

    def _process(self, job: Job) -> dict:
        # long multi-step runs keep the lease alive between steps
        beat = partial(self.queue.heartbeat, str(job.id), token=job.claim_token)
        output = self.execute(job.operation, job.input_path, job.options, heartbeat=beat)
        self.queue.report_progress(str(job.id), PROGRESS_EXECUTED, token=job.claim_token)

        if job.operation == Job.Operation.PROBE:
            return {"success": True, "mode": self.resolver.mode, "metadata": output}

        if isinstance(output, (list, tuple)):
            stored = self.resolver.resolve_many(output, heartbeat=beat)
            if self.resolver.uploads:
                return {"success": True, "mode": S3, "urls": [a.url for a in stored]}
            return {"success": True, "mode": STATELESS, "outputPaths": [a.local_path for a in stored]}

        stored = self.resolver.resolve_many([output])[0]
        if self.resolver.uploads:
            return {"success": True, "mode": S3, "url": stored.url}
        return {"success": True, "mode": STATELESS, "outputPath": stored.local_path}

    def _finish(self, job: Job, result: dict) -> RunOutcome:
        job_id = str(job.id)
        if not self.queue.report_terminal(job_id, result, token=job.claim_token):
            # Someone else owns the job now; our local artifacts would be orphans.
            logger.warning("Job %s is no longer held by this worker; discarding its result", job_id)
            for path in local_outputs(result):
                remove_file(path)
            return RunOutcome(job_id, None)

        remove_file(job.input_path)
        state = Job.State.COMPLETED if result["success"] else Job.State.FAILED
        if state == Job.State.FAILED:
            logger.error("Job %s failed after %d attempt(s): %s", job_id, job.attempts, result["error"])
        return RunOutcome(job_id, state)
