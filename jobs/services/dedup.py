"""
Index de déduplication: au plus un job actif (pending/processing) par sujet.

Le check-then-create est atomique: la contrainte partielle
`uniq_active_job_per_subject` tranche les courses entre deux requêtes
concurrentes; le perdant relit le job gagnant et reçoit un ConflictError.
Le verrou est libéré par la transition terminale elle-même (le job sort de l'index).
"""
import logging

from django.db import IntegrityError, transaction

from core.errors import ConflictError
from jobs.models import VerificationJob

from . import store

logger = logging.getLogger("veriqueue.jobs")


def ensure_no_active_job(subject_key: str) -> None:
    existing = store.active_job_for(subject_key)
    if existing is not None:
        raise ConflictError(str(existing.id), existing.status)


def acquire(subject_key: str, subject: dict, position: int = 0) -> VerificationJob:
    """Crée le job actif du sujet ou lève ConflictError avec le job existant."""
    ensure_no_active_job(subject_key)
    try:
        with transaction.atomic():
            return store.create_job(subject_key, subject, position=position)
    except IntegrityError:
        existing = store.active_job_for(subject_key)
        if existing is None:
            # le job concurrent est déjà terminé: la contrainte ne peut pas venir de là
            raise
        logger.info("Concurrent submission for %s resolved to job %s", subject_key, existing.id)
        raise ConflictError(str(existing.id), existing.status)


def is_locked(subject_key: str) -> bool:
    return store.active_job_for(subject_key) is not None
