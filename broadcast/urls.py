from django.urls import path

from .views import JobEventsView

urlpatterns = [
    path("jobs/<str:job_id>/events", JobEventsView.as_view(), name="job-events"),
]
