"""
Celery side of the pipeline.

Broker messages carry no job: each run_next_job message is a tick that lets one
worker process claim the oldest eligible job from the Job table and run it.
The worker's concurrency is the number of slots; a lost tick is made up by the
periodic sweep, a duplicated one finds nothing to claim.
"""
from celery import shared_task
from celery.utils.log import get_task_logger
from django.db import transaction
from kombu.exceptions import OperationalError

from .queue import JobQueue
from .utils import remove_file
from .worker import JobRunner, local_outputs

logger = get_task_logger(__name__)


def wake_workers(count: int = 1, countdown: float | None = None) -> None:
    """
    Publish `count` ticks. An unreachable broker is logged, not raised: the jobs
    are already committed and the stale sweep issues their ticks later.
    """
    try:
        for _ in range(count):
            run_next_job.apply_async(countdown=countdown)
    except (OperationalError, OSError) as e:
        logger.error("Could not reach the broker to wake %d worker(s): %s", count, e)


def submit_job(operation: str, input_path, options: dict | None = None) -> str:
    """Enqueue a job and, once the row is committed, wake one worker slot."""
    job_id = JobQueue().enqueue(operation, input_path, options)
    transaction.on_commit(wake_workers)
    return job_id


@shared_task(bind=True)
def run_next_job(self):
    queue = JobQueue()
    job = queue.claim_next(worker=self.request.hostname or "")
    if job is None:
        logger.debug("Nothing eligible to claim")
        return None

    outcome = JobRunner(queue=queue).run(job)
    if outcome.retry_in_ms is not None:
        wake_workers(countdown=outcome.retry_in_ms / 1000)
    return outcome.job_id


@shared_task
def requeue_stale_jobs():
    queue = JobQueue()
    requeued, failed = queue.requeue_stale()
    for job in failed:
        remove_file(job.input_path)

    # one tick per eligible job covers both recovered jobs and lost ticks
    pending = queue.eligible_count()
    if pending:
        wake_workers(pending)
    if requeued or failed:
        logger.warning("Stale sweep: %d requeued, %d failed", len(requeued), len(failed))
    return {"requeued": requeued, "failed": [str(j.pk) for j in failed], "woken": pending}


@shared_task
def purge_expired_jobs():
    evicted = JobQueue().purge_expired()
    removed = 0
    for job in evicted:
        for path in local_outputs(job.result):
            removed += remove_file(path)
    if evicted:
        logger.info("Purged %d expired job(s), removed %d local artifact(s)", len(evicted), removed)
    return len(evicted)
