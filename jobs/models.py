import uuid

from django.db import models
from django.db.models import Q

from core import jobstate


class VerificationJob(models.Model):
    """
    Job de vérification externe (un par sujet actif).
    - subject_key: identité du sujet (dédup / verrou)
    - subject: champs validés transmis au collaborateur externe
    - queue_position: significatif uniquement en pending
    - progress: 0..100, jamais décroissant
    - result_*: uniquement en completed ; error_message: uniquement en failed
    """
    STATUS_PENDING = jobstate.PENDING
    STATUS_PROCESSING = jobstate.PROCESSING
    STATUS_COMPLETED = jobstate.COMPLETED
    STATUS_FAILED = jobstate.FAILED
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_PROCESSING, "Processing"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    subject_key = models.CharField(max_length=128, db_index=True)
    subject = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING)
    queue_position = models.PositiveIntegerField(default=0)
    progress = models.PositiveSmallIntegerField(default=0)
    progress_message = models.CharField(max_length=255, blank=True, default="")
    result_carriers = models.JSONField(default=list, blank=True)
    result_files = models.JSONField(default=list, blank=True)
    result_details = models.JSONField(null=True, blank=True)  # ex: licensed states
    error_message = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(null=True, blank=True)
    # début réel de l'exécution côté worker (None tant que le job n'a pas été pris)
    execution_started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "verification_jobs"
        ordering = ["created_at"]
        indexes = [models.Index(fields=["status", "created_at"], name="verif_job_status_created_idx")]
        constraints = [
            # un seul job actif par sujet
            models.UniqueConstraint(
                fields=["subject_key"],
                condition=Q(status__in=jobstate.ACTIVE_STATUSES),
                name="uniq_active_job_per_subject",
            ),
            # un seul job en cours d'exécution (worker unique)
            models.UniqueConstraint(
                fields=["status"],
                condition=Q(status=jobstate.PROCESSING),
                name="single_processing_job",
            ),
        ]

    def __str__(self):
        return f"VerificationJob#{self.id}({self.status})"

    @property
    def is_active(self) -> bool:
        return self.status in jobstate.ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return jobstate.is_terminal(self.status)
