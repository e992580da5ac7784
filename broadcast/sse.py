import json

from rest_framework.renderers import BaseRenderer


def format_sse(name: str, payload: dict) -> str:
    return f"event: {name}\ndata: {json.dumps(payload, separators=(',', ':'))}\n\n"


class EventStreamRenderer(BaseRenderer):
    """
    text/event-stream. Le flux normal passe par StreamingHttpResponse;
    ce renderer ne sert qu'aux réponses d'erreur (un seul event "error").
    """
    media_type = "text/event-stream"
    format = "sse"
    charset = "utf-8"

    def render(self, data, accepted_media_type=None, renderer_context=None):
        if data is None:
            return b""
        if isinstance(data, (bytes, str)):
            return data
        payload = dict(data)
        view = (renderer_context or {}).get("view")
        job_id = getattr(view, "job_id", None)
        if job_id and "jobId" not in payload:
            payload["jobId"] = job_id
        return format_sse("error", payload).encode(self.charset)
