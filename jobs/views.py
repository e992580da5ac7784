from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import mixins, viewsets
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from verification.services.gateway import JobGateway
from .models import VerificationJob
from .serializers.jobs_serializers import JobOutSerializer, JobSnapshotSerializer, QueueStatsSerializer


@extend_schema(
    tags=["Verification Jobs"],
    responses={200: JobSnapshotSerializer, 404: OpenApiResponse(description="Job inconnu")},
)
class JobStatusView(APIView):
    """
    GET /jobs/{id}
    Lecture pure: aucune transition, position recalculée à la volée.
    """
    def get(self, request, job_id):
        snap = JobGateway().get_status(job_id)
        return Response(snap.to_payload())


@extend_schema(tags=["Verification Jobs"], responses={200: QueueStatsSerializer})
class QueueStatsView(APIView):
    """GET /jobs/queue"""
    def get(self, request):
        return Response(JobGateway().queue_stats())


class JobAdminViewSet(viewsets.GenericViewSet, mixins.ListModelMixin, mixins.RetrieveModelMixin):
    """
    Super-admin: lecture des jobs (filtrable par status / subject_key).
    """
    permission_classes = [IsAdminUser]
    serializer_class = JobOutSerializer
    queryset = VerificationJob.objects.all().order_by("-created_at")
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ["status", "subject_key"]
