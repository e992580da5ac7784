"""
Exécution d'un job claimé: appelle le provider, persiste progression et
résultat dans le Job Store, publie chaque transition, puis fait avancer la file.
"""
import logging
from datetime import timedelta
from typing import List, Optional

from django.conf import settings
from django.utils import timezone
from django.utils.module_loading import import_string

from broadcast.services.broadcaster import BaseBroadcaster, get_broadcaster
from core import jobstate
from core.errors import ExternalAutomationError
from jobs.services import store
from .provider import BaseVerificationProvider, VerificationResult
from .queue import JobQueue

logger = logging.getLogger("veriqueue.executor")

TIMED_OUT_MESSAGE = "Verification timed out"


def load_provider() -> BaseVerificationProvider:
    return import_string(settings.VERIFICATION_PROVIDER)()


class JobExecutor:
    def __init__(self, provider: Optional[BaseVerificationProvider] = None,
                 queue: Optional[JobQueue] = None,
                 broadcaster: Optional[BaseBroadcaster] = None) -> None:
        self.broadcaster = broadcaster or get_broadcaster()
        self.provider = provider or load_provider()
        self.queue = queue or JobQueue(broadcaster=self.broadcaster)

    def _publish(self, job_id) -> Optional[jobstate.JobSnapshot]:
        job = store.find_job(job_id)
        if job is None:
            return None
        snap = store.snapshot(job)
        self.broadcaster.publish_snapshot(snap)
        return snap

    def run(self, job_id) -> Optional[jobstate.JobSnapshot]:
        job = store.find_job(job_id)
        if job is None:
            logger.warning("Job %s vanished before execution", job_id)
            return None
        if job.status != jobstate.PROCESSING:
            logger.warning("Job %s is %s, not processing: skipped", job.id, job.status)
            return store.snapshot(job)
        if not store.begin_execution(job.id):
            # tâche redélivrée (acks_late) après un crash: le sweep des jobs bloqués la clôturera
            logger.warning("Job %s already started by another delivery: skipped", job.id)
            return store.snapshot(job)

        def report(progress: int, message: str) -> None:
            if store.record_progress(job.id, progress, message):
                self._publish(job.id)

        logger.info("Running job %s", job.id)
        try:
            result = self.provider.execute(subject=dict(job.subject), report=report)
            if not isinstance(result, VerificationResult):
                raise ExternalAutomationError("Unexpected response from verification provider")
        except Exception as e:
            logger.exception("Job %s failed", job.id)
            store.fail_job(job.id, str(e) or e.__class__.__name__)
        else:
            store.complete_job(
                job.id,
                carriers=result.carriers,
                files=result.files,
                details={"licensedStates": result.licensed_states},
            )

        try:
            return self._publish(job.id)
        finally:
            self.queue.advance()


def release_stale_jobs(timeout_seconds: Optional[int] = None,
                       broadcaster: Optional[BaseBroadcaster] = None,
                       queue: Optional[JobQueue] = None) -> List[str]:
    """
    Passe en failed les jobs processing depuis plus de `timeout_seconds`
    (worker mort, tâche perdue) et libère la file.
    """
    if timeout_seconds is None:
        timeout_seconds = getattr(settings, "VERIFICATION_JOB_TIMEOUT_SECONDS", 600)
    broadcaster = broadcaster or get_broadcaster()
    queue = queue or JobQueue(broadcaster=broadcaster)

    released = []
    for job_id in store.stale_job_ids(timezone.now() - timedelta(seconds=timeout_seconds)):
        if store.fail_job(job_id, TIMED_OUT_MESSAGE):
            logger.warning("Job %s released after %ss without result", job_id, timeout_seconds)
            job = store.find_job(job_id)
            broadcaster.publish_snapshot(store.snapshot(job))
            released.append(job_id)
    queue.advance()
    return released
