from rest_framework import serializers

STATUS_CHOICES = ["pending", "processing", "completed", "failed"]


class QueuedOutputSerializer(serializers.Serializer):
    queued = serializers.BooleanField(default=True)
    jobId = serializers.CharField()
    position = serializers.IntegerField()


class ProcessingOutputSerializer(serializers.Serializer):
    processing = serializers.BooleanField(default=True)
    jobId = serializers.CharField()


class ConflictOutputSerializer(serializers.Serializer):
    jobId = serializers.CharField()
    status = serializers.ChoiceField(choices=STATUS_CHOICES)


class RateLimitedOutputSerializer(serializers.Serializer):
    retryAfterSeconds = serializers.IntegerField()


class FieldErrorSerializer(serializers.Serializer):
    field = serializers.CharField()
    message = serializers.CharField()


class ValidationErrorOutputSerializer(serializers.Serializer):
    error = serializers.CharField()
    fieldErrors = FieldErrorSerializer(many=True)


class AnalysisOutputSerializer(serializers.Serializer):
    success = serializers.BooleanField(default=True)
    analysis = serializers.DictField()
