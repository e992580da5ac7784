import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="VerificationJob",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("subject_key", models.CharField(db_index=True, max_length=128)),
                ("subject", models.JSONField(blank=True, default=dict)),
                ("status", models.CharField(
                    choices=[("pending", "Pending"), ("processing", "Processing"),
                             ("completed", "Completed"), ("failed", "Failed")],
                    default="pending", max_length=16)),
                ("queue_position", models.PositiveIntegerField(default=0)),
                ("progress", models.PositiveSmallIntegerField(default=0)),
                ("progress_message", models.CharField(blank=True, default="", max_length=255)),
                ("result_carriers", models.JSONField(blank=True, default=list)),
                ("result_files", models.JSONField(blank=True, default=list)),
                ("result_details", models.JSONField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "verification_jobs",
                "ordering": ["created_at"],
                "indexes": [models.Index(fields=["status", "created_at"], name="verif_job_status_created_idx")],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status__in", ("pending", "processing"))),
                        fields=("subject_key",),
                        name="uniq_active_job_per_subject",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("status", "processing")),
                        fields=("status",),
                        name="single_processing_job",
                    ),
                ],
            },
        ),
    ]
