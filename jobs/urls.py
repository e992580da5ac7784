from django.urls import path

from .views import JobStatusView, QueueStatsView

urlpatterns = [
    path("jobs/queue", QueueStatsView.as_view(), name="job-queue-stats"),
    path("jobs/<str:job_id>", JobStatusView.as_view(), name="job-status"),
]
