from drf_spectacular.utils import OpenApiExample, OpenApiResponse, PolymorphicProxySerializer, extend_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from core import jobstate
from ..serializers.input import SubjectInputSerializer
from ..serializers.output import (
    ConflictOutputSerializer, ProcessingOutputSerializer, QueuedOutputSerializer,
    RateLimitedOutputSerializer, ValidationErrorOutputSerializer,
)
from ..services.gateway import JobGateway


def submit_result_response(result: jobstate.SubmitResult) -> Response:
    if isinstance(result, jobstate.Queued):
        return Response({"queued": True, "jobId": result.job_id, "position": result.position})
    if isinstance(result, jobstate.Processing):
        return Response({"processing": True, "jobId": result.job_id})
    if isinstance(result, jobstate.Conflict):
        return Response({"jobId": result.job_id, "status": result.status}, status=status.HTTP_409_CONFLICT)
    if isinstance(result, jobstate.RateLimited):
        return Response(
            {"retryAfterSeconds": result.retry_after_seconds},
            status=status.HTTP_429_TOO_MANY_REQUESTS,
            headers={"Retry-After": str(result.retry_after_seconds)},
        )
    return Response({"success": True, "analysis": result.analysis})


@extend_schema(
    tags=["Verification Jobs"],
    request=SubjectInputSerializer,
    responses={
        200: OpenApiResponse(PolymorphicProxySerializer(
            component_name="SubmitAccepted",
            serializers=[QueuedOutputSerializer, ProcessingOutputSerializer],
            resource_type_field_name=None,
        ), description="queued | processing"),
        400: OpenApiResponse(ValidationErrorOutputSerializer),
        409: OpenApiResponse(ConflictOutputSerializer, description="Job actif existant"),
        429: OpenApiResponse(RateLimitedOutputSerializer),
    },
    examples=[
        OpenApiExample("Requête", value={
            "lastName": "Smith", "npn": "12345678", "ssn": "1234", "dob": "01/15/1980",
        }, request_only=True),
        OpenApiExample("En file", value={"queued": True, "jobId": "<uuid>", "position": 1}, response_only=True),
        OpenApiExample("Démarré", value={"processing": True, "jobId": "<uuid>"}, response_only=True),
    ],
)
class JobSubmitView(APIView):
    """
    POST /jobs
    Un job actif par sujet; la file démarre le job immédiatement si elle est vide.
    """
    serializer_class = SubjectInputSerializer
    gateway_class = JobGateway

    def post(self, request):
        result = self.gateway_class().submit(request.data)
        return submit_result_response(result)
