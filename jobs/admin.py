from django.contrib import admin

from .models import VerificationJob


@admin.register(VerificationJob)
class VerificationJobAdmin(admin.ModelAdmin):
    list_display = ("id", "subject_key", "status", "queue_position", "progress", "created_at", "completed_at")
    list_filter = ("status",)
    search_fields = ("subject_key",)
    readonly_fields = ("created_at", "started_at", "execution_started_at", "completed_at", "updated_at")
