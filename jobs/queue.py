"""
Durable job queue on top of the Job table.

    queued --claim--> active --report_terminal--> completed | failed
                        |
                        +--release (retry)--> queued

Every transition is a single conditional UPDATE keyed on the current state
(and, for active jobs, the holder's claim token). The database row is the
compare-and-swap cell: two workers racing for one queued job both issue the
UPDATE, exactly one matches a row. Terminal states have no outgoing edge, so
repeated terminal reports match nothing and are no-ops.
"""
import logging
import uuid
from datetime import timedelta
from typing import Any, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db.models import F
from django.utils import timezone

from .models import Job

logger = logging.getLogger(__name__)

# queued candidates fetched per claim_next() call before giving up on this pass
CLAIM_BATCH = 10

WORKER_LOST = "Worker lost while processing job"


def _pk(job_id) -> uuid.UUID:
    """Normalise a caller-supplied id; anything that is not a UUID is simply unknown."""
    if isinstance(job_id, uuid.UUID):
        return job_id
    try:
        return uuid.UUID(str(job_id))
    except (TypeError, ValueError):
        raise Job.DoesNotExist(f"Job {job_id} not found")


def _check_result(result: dict) -> bool:
    if not isinstance(result, dict) or not isinstance(result.get("success"), bool):
        raise ValueError("Terminal result must be a mapping with a boolean 'success'")
    if result["success"]:
        if not any(result.get(k) for k in ("outputPath", "outputPaths", "url", "urls", "metadata")):
            raise ValueError("Successful result carries no artifact or metadata")
    elif not result.get("error"):
        raise ValueError("Failed result needs a non-empty error description")
    return result["success"]


class JobQueue:
    def __init__(self, max_attempts: Optional[int] = None):
        self.max_attempts = max_attempts or settings.JOB_MAX_ATTEMPTS

    # ---------------- Submission & lookup ----------------

    def enqueue(self, operation: str, input_path, options: Optional[dict] = None) -> str:
        """Record a new queued job and return its id. Never waits for a worker."""
        if operation not in Job.Operation.values:
            raise ValidationError(f"Unknown operation kind: {operation!r}", code="invalid_operation")
        if options is not None and not isinstance(options, dict):
            raise ValidationError("Job options must be a mapping", code="invalid_options")
        if not input_path:
            raise ValidationError("A staged input path is required", code="invalid_input")

        job = Job.objects.create(
            operation=operation,
            input_path=str(input_path),
            options=dict(options or {}),
            max_attempts=self.max_attempts,
        )
        logger.info("Enqueued %s job %s", operation, job.id)
        return str(job.id)

    def fetch_status(self, job_id) -> Job:
        """Current record for `job_id`; Job.DoesNotExist for unknown or evicted ids."""
        return Job.objects.get(pk=_pk(job_id))

    # ---------------- Claiming ----------------

    def claim(self, job_id, worker: str = "") -> Optional[Job]:
        """
        Atomically move one eligible queued job to active. Returns the claimed
        job (attempts already incremented, fresh claim_token) or None when the
        job is gone, held by someone else, terminal, or still backing off.
        """
        pk = _pk(job_id)
        now = timezone.now()
        token = uuid.uuid4().hex
        claimed = Job.objects.filter(pk=pk, state=Job.State.QUEUED, available_at__lte=now).update(
            state=Job.State.ACTIVE,
            attempts=F("attempts") + 1,
            claim_token=token,
            claimed_by=worker[:255],
            heartbeat_at=now,
            progress=None,
        )
        if not claimed:
            return None
        job = Job.objects.get(pk=pk)
        logger.info("Claimed job %s for %s (attempt %d/%d)", pk, worker or "worker", job.attempts, job.max_attempts)
        return job

    def claim_next(self, worker: str = "") -> Optional[Job]:
        """Claim the oldest eligible queued job, if any."""
        candidates = list(
            Job.objects.filter(state=Job.State.QUEUED, available_at__lte=timezone.now())
            .order_by("created_at", "id")
            .values_list("pk", flat=True)[:CLAIM_BATCH]
        )
        for pk in candidates:
            job = self.claim(pk, worker)
            if job is not None:
                return job
        return None

    def eligible_count(self) -> int:
        return Job.objects.filter(state=Job.State.QUEUED, available_at__lte=timezone.now()).count()

    # ---------------- Holder-only updates ----------------

    def report_progress(self, job_id, value: Any, *, token: str) -> bool:
        """Store progress for a job this worker holds; stale or foreign reports are ignored."""
        updated = Job.objects.filter(pk=_pk(job_id), state=Job.State.ACTIVE, claim_token=token).update(
            progress=value,
            heartbeat_at=timezone.now(),
        )
        return bool(updated)

    def heartbeat(self, job_id, *, token: str) -> bool:
        """Extend the lease on a held job between long steps. False once the claim is lost."""
        return bool(
            Job.objects.filter(pk=_pk(job_id), state=Job.State.ACTIVE, claim_token=token).update(heartbeat_at=timezone.now())
        )

    def release(self, job_id, error: str, *, token: str, delay_ms: int = 0) -> bool:
        """active -> queued for a retry, eligible again after `delay_ms`."""
        now = timezone.now()
        updated = Job.objects.filter(pk=_pk(job_id), state=Job.State.ACTIVE, claim_token=token).update(
            state=Job.State.QUEUED,
            available_at=now + timedelta(milliseconds=delay_ms),
            last_error=error,
            claimed_by="",
            heartbeat_at=None,
            progress=None,
        )
        return bool(updated)

    def report_terminal(self, job_id, result: dict, *, token: Optional[str] = None) -> bool:
        """
        active -> completed (result["success"]) or failed. Returns False, leaving
        the job untouched, when it is not active (already terminal, or never
        claimed) or, with `token`, held by another claim.
        """
        success = _check_result(result)
        now = timezone.now()
        qs = Job.objects.filter(pk=_pk(job_id), state=Job.State.ACTIVE)
        if token is not None:
            qs = qs.filter(claim_token=token)

        fields = {
            "state": Job.State.COMPLETED if success else Job.State.FAILED,
            "result": result,
            "finished_at": now,
            "heartbeat_at": now,
        }
        if success:
            fields["progress"] = 100
        else:
            fields["last_error"] = result["error"]

        updated = qs.update(**fields)
        if updated:
            logger.info("Job %s %s", job_id, fields["state"])
        else:
            logger.debug("Ignoring terminal report for job %s: not active under this claim", job_id)
        return bool(updated)

    # ---------------- Maintenance ----------------

    def requeue_stale(self, lease_seconds: Optional[int] = None) -> tuple[list[str], list[Job]]:
        """
        Recover jobs whose holder stopped heartbeating (crashed or killed worker).
        Jobs with attempts left go back to queued; the rest fail as worker-lost.
        Returns (requeued ids, failed jobs).
        """
        lease = settings.JOB_LEASE_SECONDS if lease_seconds is None else lease_seconds
        now = timezone.now()
        stale = list(Job.objects.filter(state=Job.State.ACTIVE, heartbeat_at__lt=now - timedelta(seconds=lease)))

        requeued, failed = [], []
        for job in stale:
            if job.attempts < job.max_attempts:
                ok = Job.objects.filter(pk=job.pk, state=Job.State.ACTIVE, claim_token=job.claim_token).update(
                    state=Job.State.QUEUED,
                    available_at=now,
                    last_error=WORKER_LOST,
                    claimed_by="",
                    heartbeat_at=None,
                    progress=None,
                )
                if ok:
                    requeued.append(str(job.pk))
                    logger.warning("Requeued stale job %s (attempt %d/%d)", job.pk, job.attempts, job.max_attempts)
                continue

            result = {
                "success": False,
                "mode": settings.STORAGE_MODE,
                "error": f"{WORKER_LOST} (attempt {job.attempts} of {job.max_attempts})",
            }
            if self.report_terminal(job.pk, result, token=job.claim_token):
                failed.append(job)
                logger.warning("Failed stale job %s after %d attempts", job.pk, job.attempts)
        return requeued, failed

    def purge_expired(self, now=None) -> list[Job]:
        """
        Evict terminal jobs older than their retention window or beyond the
        per-state keep count (newest kept). Returns the evicted rows.
        """
        now = now or timezone.now()
        policies = (
            (Job.State.COMPLETED, settings.COMPLETED_JOB_RETENTION_SECONDS, settings.COMPLETED_JOB_KEEP),
            (Job.State.FAILED, settings.FAILED_JOB_RETENTION_SECONDS, settings.FAILED_JOB_KEEP),
        )
        evicted = []
        for state, max_age, keep in policies:
            finished = Job.objects.filter(state=state).order_by("-finished_at", "-created_at")
            ids = set(finished.filter(finished_at__lt=now - timedelta(seconds=max_age)).values_list("pk", flat=True))
            ids.update(finished.values_list("pk", flat=True)[keep:])
            if not ids:
                continue
            victims = list(Job.objects.filter(pk__in=ids, state=state))
            Job.objects.filter(pk__in=[j.pk for j in victims], state=state).delete()
            evicted.extend(victims)
            logger.info("Evicted %d %s job(s)", len(victims), state)
        return evicted
