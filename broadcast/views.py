import logging

from django.http import StreamingHttpResponse
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework.renderers import JSONRenderer
from rest_framework.views import APIView

from core import jobstate
from .services.stream import open_job_stream
from .sse import EventStreamRenderer, format_sse

logger = logging.getLogger("veriqueue.broadcast")


def _event_stream(subscription):
    for event in subscription:
        yield format_sse(event.name, jobstate.event_payload(event))
    logger.debug("Event stream closed for job %s", subscription.job_id)


@extend_schema(
    tags=["Verification Jobs"],
    responses={
        200: OpenApiResponse(description="text/event-stream: progress | completed | failed | error | timeout"),
        404: OpenApiResponse(description="Un seul event error"),
    },
)
class JobEventsView(APIView):
    """
    GET /jobs/{id}/events
    Premier event = état courant; le flux se ferme après un terminal ou un timeout.
    """
    renderer_classes = [EventStreamRenderer, JSONRenderer]

    def get(self, request, job_id):
        self.job_id = job_id
        subscription = open_job_stream(job_id)
        response = StreamingHttpResponse(_event_stream(subscription), content_type="text/event-stream")
        response["Cache-Control"] = "no-cache"
        response["X-Accel-Buffering"] = "no"
        return response
