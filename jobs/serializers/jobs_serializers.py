from rest_framework import serializers

from jobs.models import VerificationJob


class JobSnapshotSerializer(serializers.Serializer):
    jobId = serializers.CharField()
    status = serializers.ChoiceField(choices=[c for c, _ in VerificationJob.STATUS_CHOICES])
    progress = serializers.IntegerField(min_value=0, max_value=100)
    progressMessage = serializers.CharField(allow_blank=True)
    position = serializers.IntegerField(allow_null=True)
    resultCarriers = serializers.ListField(child=serializers.CharField())
    resultFiles = serializers.ListField(child=serializers.CharField())
    errorMessage = serializers.CharField(allow_null=True)
    createdAt = serializers.DateTimeField(allow_null=True)
    completedAt = serializers.DateTimeField(allow_null=True)
    nextStep = serializers.CharField(allow_blank=True)


class QueueStatsSerializer(serializers.Serializer):
    pending = serializers.IntegerField()
    processing = serializers.IntegerField()
    completed = serializers.IntegerField()
    failed = serializers.IntegerField()
    currentJobId = serializers.CharField(allow_null=True)


class JobOutSerializer(serializers.ModelSerializer):
    class Meta:
        model = VerificationJob
        fields = ("id", "subject_key", "status", "queue_position", "progress", "progress_message",
                  "result_carriers", "result_files", "result_details", "error_message",
                  "created_at", "started_at", "completed_at")
        read_only_fields = fields
