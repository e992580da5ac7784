import logging

from celery import shared_task

from .services.executor import JobExecutor, release_stale_jobs
from .services.queue import JobQueue

logger = logging.getLogger("veriqueue.executor")


@shared_task(bind=True, max_retries=0)
def run_verification_job(self, job_id: str):
    snap = JobExecutor().run(job_id)
    return snap.status if snap else None


@shared_task
def process_verification_queue():
    """Relance la file si aucun job ne tourne (dispatch perdu, redémarrage)."""
    job = JobQueue().kick()
    return str(job.id) if job else None


@shared_task
def release_stale_verification_jobs():
    released = release_stale_jobs()
    if released:
        logger.warning("Released %d stale job(s)", len(released))
    return released
