import logging

from rest_framework import status
from rest_framework.exceptions import ValidationError as DrfValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler

from .errors import ConflictError, JobNotFound, RateLimitError, ValidationError, VerificationError

logger = logging.getLogger("veriqueue.gateway")


def _flatten(detail, prefix=""):
    """ErrorDetail DRF (dict/list imbriqués) -> [(field, message)]"""
    if isinstance(detail, dict):
        for key, value in detail.items():
            name = f"{prefix}.{key}" if prefix else str(key)
            yield from _flatten(value, name)
    elif isinstance(detail, list):
        for item in detail:
            yield from _flatten(item, prefix)
    else:
        yield (prefix or "non_field_errors", str(detail))


def field_errors_response(error: str, field_errors) -> Response:
    return Response({"error": error, "fieldErrors": field_errors}, status=status.HTTP_400_BAD_REQUEST)


def api_exception_handler(exc, context):
    """
    Formats de réponse:
      400 {error, fieldErrors:[{field,message}]}
      409 {jobId, status}
      429 {retryAfterSeconds} + Retry-After
      404 {error}
    Le reste passe par le handler DRF standard.
    """
    if isinstance(exc, ValidationError):
        return field_errors_response(exc.message, exc.as_list())

    if isinstance(exc, DrfValidationError):
        items = [{"field": f, "message": m} for f, m in _flatten(exc.detail)]
        return field_errors_response("Invalid request", items)

    if isinstance(exc, ConflictError):
        return Response({"jobId": exc.job_id, "status": exc.status}, status=status.HTTP_409_CONFLICT)

    if isinstance(exc, RateLimitError):
        return Response(
            {"retryAfterSeconds": exc.retry_after_seconds},
            status=status.HTTP_429_TOO_MANY_REQUESTS,
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )

    if isinstance(exc, JobNotFound):
        return Response({"error": exc.message}, status=status.HTTP_404_NOT_FOUND)

    if isinstance(exc, VerificationError):
        logger.error("Unhandled verification error: %s", exc.message)
        return Response({"error": exc.code, "message": exc.message}, status=exc.status_code)

    return exception_handler(exc, context)
