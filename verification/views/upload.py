from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.views import APIView

from core.errors import ValidationError
from ..serializers.input import DocumentUploadSerializer
from ..serializers.output import AnalysisOutputSerializer, ValidationErrorOutputSerializer
from ..services.gateway import JobGateway
from .submit import submit_result_response


@extend_schema(
    tags=["Verification Jobs"],
    request={"multipart/form-data": DocumentUploadSerializer},
    responses={
        200: OpenApiResponse(AnalysisOutputSerializer, description="Analyse immédiate, aucun job créé"),
        400: OpenApiResponse(ValidationErrorOutputSerializer, description="PDF manquant, invalide ou trop gros"),
    },
)
class DocumentUploadView(APIView):
    """
    POST /jobs/upload (multipart, champ "file")
    Rapport PDF déjà téléchargé: analyse synchrone.
    """
    parser_classes = [MultiPartParser, FormParser]
    gateway_class = JobGateway

    def post(self, request):
        ser = DocumentUploadSerializer(data=request.data)
        if not ser.is_valid():
            raise ValidationError({k: [str(m) for m in v] for k, v in ser.errors.items()}, "No file provided")
        result = self.gateway_class().submit_document(ser.validated_data["file"])
        return submit_result_response(result)
