"""
File d'attente FIFO des jobs de vérification, un seul job exécuté à la fois.

Le Job Store est la source de vérité: la "file" est la liste des jobs pending
triés par (created_at, id). Le claim est un UPDATE conditionnel protégé par la
contrainte `single_processing_job`: deux appels concurrents ne peuvent pas
démarrer deux jobs.
"""
import logging
from typing import Callable, Dict, Optional

from django.db import IntegrityError, transaction

from broadcast.services.broadcaster import BaseBroadcaster, get_broadcaster
from core import jobstate
from jobs.models import VerificationJob
from jobs.services import store

logger = logging.getLogger("veriqueue.queue")


def dispatch_job(job_id) -> None:
    """Envoie le job claimé au worker Celery une fois la transaction commitée."""
    from verification.tasks import run_verification_job

    def send():
        try:
            run_verification_job.delay(str(job_id))
        except Exception:
            # broker injoignable: le job repasse pending, le kick périodique le relancera
            logger.exception("Dispatch of job %s failed", job_id)
            store.release_claim(job_id)

    transaction.on_commit(send)


class JobQueue:
    def __init__(self, broadcaster: Optional[BaseBroadcaster] = None,
                 dispatch: Optional[Callable[[str], None]] = None) -> None:
        self.broadcaster = broadcaster or get_broadcaster()
        self.dispatch = dispatch or dispatch_job

    # -- positions -------------------------------------------------------------
    def position_of(self, job: VerificationJob) -> Optional[int]:
        """Nombre de jobs actifs devant `job` (0 = prochain à démarrer). None hors pending."""
        if job.status != jobstate.PENDING:
            return None
        ahead = VerificationJob.objects.filter(status=jobstate.PROCESSING).count()
        ahead += (VerificationJob.objects
                  .filter(status=jobstate.PENDING, created_at__lt=job.created_at)
                  .count())
        ahead += (VerificationJob.objects
                  .filter(status=jobstate.PENDING, created_at=job.created_at, id__lt=job.id)
                  .count())
        return ahead

    def refresh_positions(self) -> Dict[str, int]:
        """Recalcule et persiste les positions; notifie les abonnés des jobs qui ont avancé."""
        pending = store.pending_jobs()
        running = 1 if store.processing_job() is not None else 0
        positions = {}
        changed = []
        for i, job in enumerate(pending):
            positions[str(job.id)] = running + i
            if job.queue_position != running + i:
                job.queue_position = running + i
                changed.append(job)
        store.save_positions(positions)
        for job in changed:
            if self.broadcaster.has_subscribers(str(job.id)):
                self.broadcaster.publish_snapshot(store.snapshot(job))
        return positions

    # -- claim / dispatch ------------------------------------------------------
    def claim_next(self) -> Optional[VerificationJob]:
        """pending le plus ancien -> processing, si aucun job ne tourne."""
        if store.processing_job() is not None:
            return None
        pending = store.pending_jobs()
        if not pending:
            return None
        head = pending[0]
        try:
            with transaction.atomic():
                claimed = store.mark_processing(head.id)
        except IntegrityError:
            logger.info("Job %s not claimed: another job is already processing", head.id)
            return None
        if not claimed:
            return None
        head.refresh_from_db()
        logger.info("Job %s claimed for processing", head.id)
        self.broadcaster.publish_snapshot(store.snapshot(head))
        return head

    def kick(self) -> Optional[VerificationJob]:
        """Démarre le prochain job si le worker est libre, puis met à jour les positions."""
        job = self.claim_next()
        if job is not None:
            try:
                self.dispatch(str(job.id))
            except Exception:
                logger.exception("Dispatch of job %s failed", job.id)
                store.release_claim(job.id)
                job = None
        self.refresh_positions()
        return job

    def advance(self) -> Optional[VerificationJob]:
        """Appelé après chaque transition terminale."""
        return self.kick()

    def stats(self) -> dict:
        counts = store.queue_stats()
        running = store.processing_job()
        return {
            "pending": counts.get(jobstate.PENDING, 0),
            "processing": counts.get(jobstate.PROCESSING, 0),
            "completed": counts.get(jobstate.COMPLETED, 0),
            "failed": counts.get(jobstate.FAILED, 0),
            "currentJobId": str(running.id) if running else None,
        }
