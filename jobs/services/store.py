"""
Job Store: seul point d'écriture des champs d'état d'un VerificationJob.
Toutes les transitions sont des UPDATE conditionnels (WHERE status = attendu),
ce qui rend les écritures forward-only même si deux acteurs se croisent
(ex: sweep des jobs bloqués vs résultat tardif de l'executor).
"""
import logging
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from django.conf import settings
from django.db.models import Count, F, PositiveSmallIntegerField, Value
from django.db.models.functions import Greatest
from django.utils import timezone

from core import jobstate
from core.errors import JobNotFound
from jobs.models import VerificationJob

logger = logging.getLogger("veriqueue.jobs")

MSG_WAITING = "Waiting in queue..."
MSG_STARTING = "starting"
MSG_COMPLETED = "Verification complete"


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def find_job(job_id) -> Optional[VerificationJob]:
    try:
        pk = uuid.UUID(str(job_id))
    except (TypeError, ValueError):
        return None
    return VerificationJob.objects.filter(pk=pk).first()


def get_job(job_id) -> VerificationJob:
    job = find_job(job_id)
    if job is None:
        raise JobNotFound(str(job_id))
    return job


def active_job_for(subject_key: str) -> Optional[VerificationJob]:
    return (VerificationJob.objects
            .filter(subject_key=subject_key, status__in=jobstate.ACTIVE_STATUSES)
            .order_by("created_at")
            .first())


def snapshot(job: VerificationJob, position: Optional[int] = None) -> jobstate.JobSnapshot:
    """Vue sérialisable. position: calculée par l'appelant, sinon valeur stockée (pending seulement)."""
    if job.status == jobstate.PENDING:
        pos = job.queue_position if position is None else position
        message = job.progress_message or MSG_WAITING
    else:
        pos = None
        message = job.progress_message
    completed = job.status == jobstate.COMPLETED
    return jobstate.JobSnapshot(
        job_id=str(job.id),
        status=job.status,
        progress=job.progress,
        progress_message=message,
        position=pos,
        result_carriers=list(job.result_carriers or []) if completed else [],
        result_files=list(job.result_files or []) if completed else [],
        error_message=(job.error_message or None) if job.status == jobstate.FAILED else None,
        created_at=_iso(job.created_at),
        completed_at=_iso(job.completed_at),
        next_step=getattr(settings, "VERIFICATION_POST_COMPLETION_ROUTE", "") if completed else "",
    )


def create_job(subject_key: str, subject: dict, position: int = 0) -> VerificationJob:
    job = VerificationJob.objects.create(
        subject_key=subject_key,
        subject=subject,
        status=jobstate.PENDING,
        queue_position=position,
        progress=0,
        progress_message=MSG_WAITING,
    )
    logger.info("Job %s created for %s", job.id, subject_key)
    return job


def mark_processing(job_id) -> bool:
    """pending -> processing. Peut lever IntegrityError si un autre job tourne déjà."""
    now = timezone.now()
    updated = (VerificationJob.objects
               .filter(pk=job_id, status=jobstate.PENDING)
               .update(status=jobstate.PROCESSING, queue_position=0, started_at=now,
                       progress_message=MSG_STARTING, updated_at=now))
    return bool(updated)


def release_claim(job_id) -> bool:
    """processing -> pending, seulement si l'exécution n'a pas commencé (envoi au worker échoué)."""
    updated = (VerificationJob.objects
               .filter(pk=job_id, status=jobstate.PROCESSING, execution_started_at__isnull=True)
               .update(status=jobstate.PENDING, started_at=None, progress=0,
                       progress_message=MSG_WAITING, updated_at=timezone.now()))
    if updated:
        logger.warning("Job %s released back to pending", job_id)
    return bool(updated)


def begin_execution(job_id) -> bool:
    """Marque le début de l'exécution. False si le job n'est plus processing ou a déjà été pris."""
    now = timezone.now()
    updated = (VerificationJob.objects
               .filter(pk=job_id, status=jobstate.PROCESSING, execution_started_at__isnull=True)
               .update(execution_started_at=now, updated_at=now))
    return bool(updated)


def record_progress(job_id, progress: int, message: str) -> bool:
    """processing -> processing ; progression = max(actuelle, nouvelle), message = dernier reçu."""
    value = max(0, min(int(progress), 100))
    updated = (VerificationJob.objects
               .filter(pk=job_id, status=jobstate.PROCESSING)
               .update(progress=Greatest(F("progress"), Value(value), output_field=PositiveSmallIntegerField()),
                       progress_message=(message or "")[:255],
                       updated_at=timezone.now()))
    return bool(updated)


def complete_job(job_id, *, carriers: Iterable[str], files: Iterable[str],
                 details: Optional[dict] = None) -> bool:
    now = timezone.now()
    updated = (VerificationJob.objects
               .filter(pk=job_id, status=jobstate.PROCESSING)
               .update(status=jobstate.COMPLETED, progress=100, progress_message=MSG_COMPLETED,
                       result_carriers=list(carriers), result_files=list(files),
                       result_details=details, completed_at=now, updated_at=now))
    if updated:
        logger.info("Job %s completed", job_id)
    else:
        logger.warning("Job %s is no longer processing, result discarded", job_id)
    return bool(updated)


def fail_job(job_id, error_message: str) -> bool:
    now = timezone.now()
    updated = (VerificationJob.objects
               .filter(pk=job_id, status=jobstate.PROCESSING)
               .update(status=jobstate.FAILED, error_message=error_message or "Verification failed",
                       progress_message="Verification failed", completed_at=now, updated_at=now))
    if updated:
        logger.info("Job %s failed: %s", job_id, error_message)
    return bool(updated)


def pending_jobs() -> List[VerificationJob]:
    return list(VerificationJob.objects
                .filter(status=jobstate.PENDING)
                .order_by("created_at", "id"))


def processing_job() -> Optional[VerificationJob]:
    return VerificationJob.objects.filter(status=jobstate.PROCESSING).first()


def stale_job_ids(started_before: datetime) -> List[str]:
    return [str(pk) for pk in (VerificationJob.objects
                               .filter(status=jobstate.PROCESSING, started_at__lt=started_before)
                               .values_list("id", flat=True))]


def save_positions(positions: Dict[str, int]) -> None:
    for job_id, pos in positions.items():
        (VerificationJob.objects
         .filter(pk=job_id, status=jobstate.PENDING)
         .exclude(queue_position=pos)
         .update(queue_position=pos))


def queue_stats() -> Dict[str, int]:
    counts = {s: 0 for s, _ in VerificationJob.STATUS_CHOICES}
    for row in VerificationJob.objects.values("status").annotate(total=Count("id")):
        counts[row["status"]] = row["total"]
    return counts
