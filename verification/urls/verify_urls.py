from django.urls import path

from verification.views.submit import JobSubmitView
from verification.views.upload import DocumentUploadView

urlpatterns = [
    path("jobs", JobSubmitView.as_view(), name="job-submit"),
    path("jobs/upload", DocumentUploadView.as_view(), name="job-upload"),
]
