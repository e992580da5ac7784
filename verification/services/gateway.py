"""
Point d'entrée des soumissions et lectures de statut.

submit(): validation -> débit par sujet -> dédup -> mise en file -> démarrage
éventuel. Les refus attendus (débit, conflit) sont des variantes de
SubmitResult, seules les erreurs de validation sont levées.
"""
import logging
from typing import Optional

from django.conf import settings
from django.utils.module_loading import import_string

from core import jobstate
from core.errors import ConflictError, RateLimitError, ValidationError
from jobs.services import dedup, store
from limits.throttling import SubjectRateThrottle
from verification.serializers.input import SubjectInputSerializer
from .document_analyzer import BaseDocumentAnalyzer
from .queue import JobQueue

logger = logging.getLogger("veriqueue.gateway")

PDF_CONTENT_TYPES = ("application/pdf", "application/x-pdf")


def _field_errors(detail) -> dict:
    return {name: [str(m) for m in messages] for name, messages in detail.items()}


def load_document_analyzer() -> BaseDocumentAnalyzer:
    return import_string(settings.VERIFICATION_DOCUMENT_ANALYZER)()


class JobGateway:
    def __init__(self, queue: Optional[JobQueue] = None,
                 throttle: Optional[SubjectRateThrottle] = None,
                 analyzer: Optional[BaseDocumentAnalyzer] = None) -> None:
        self.queue = queue or JobQueue()
        self.throttle = throttle or SubjectRateThrottle()
        self._analyzer = analyzer

    @property
    def analyzer(self) -> BaseDocumentAnalyzer:
        if self._analyzer is None:
            self._analyzer = load_document_analyzer()
        return self._analyzer

    def validate(self, data) -> SubjectInputSerializer:
        ser = SubjectInputSerializer(data=data)
        if not ser.is_valid():
            raise ValidationError(_field_errors(ser.errors))
        return ser

    def submit(self, data) -> jobstate.SubmitResult:
        ser = self.validate(data)
        subject_key = ser.subject_key()

        try:
            self.throttle.hit(subject_key)
        except RateLimitError as e:
            return jobstate.RateLimited(e.retry_after_seconds)

        try:
            job = dedup.acquire(subject_key, ser.subject())
        except ConflictError as e:
            logger.info("Submission for %s refused: job %s is %s", subject_key, e.job_id, e.status)
            return jobstate.Conflict(e.job_id, e.status)

        claimed = self.queue.kick()
        if claimed is not None and claimed.id == job.id:
            return jobstate.Processing(str(job.id))

        job.refresh_from_db()
        if job.status != jobstate.PENDING:
            # claimé entre-temps par un autre appel à kick()
            return jobstate.Processing(str(job.id))
        position = self.queue.position_of(job)
        logger.info("Job %s queued at position %s", job.id, position)
        return jobstate.Queued(str(job.id), position)

    def get_status(self, job_id) -> jobstate.JobSnapshot:
        """Lecture pure, aucune transition. Lève JobNotFound."""
        job = store.get_job(job_id)
        return store.snapshot(job, position=self.queue.position_of(job))

    def submit_document(self, upload) -> jobstate.Immediate:
        """Variante synchrone: analyse d'un rapport PDF déjà téléchargé."""
        max_bytes = getattr(settings, "VERIFICATION_UPLOAD_MAX_BYTES", 50 * 1024 * 1024)
        name = getattr(upload, "name", "") or ""
        content_type = getattr(upload, "content_type", "") or ""
        if content_type not in PDF_CONTENT_TYPES and not name.lower().endswith(".pdf"):
            raise ValidationError({"file": ["Only PDF files are accepted"]})
        if upload.size > max_bytes:
            raise ValidationError({"file": [f"File exceeds {max_bytes // (1024 * 1024)}MB"]})
        content = upload.read()
        try:
            analysis = self.analyzer.analyze(content=content, filename=name)
        except ValueError as e:
            raise ValidationError({"file": [str(e)]})
        logger.info("Analyzed document %s (%d bytes)", name, len(content))
        return jobstate.Immediate(analysis.to_payload())

    def queue_stats(self) -> dict:
        return self.queue.stats()
