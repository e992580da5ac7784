"""
Client HTTP async (httpx) de l'API jobs.
Les erreurs de transport deviennent NetworkError / TransportTimeout; les refus
attendus (conflit, débit) sont des variantes de SubmitResult.
"""
import json
import logging
from typing import AsyncIterator, Dict, List, Optional, Tuple

import httpx

from core import jobstate
from core.errors import NetworkError, TransportTimeout, ValidationError

logger = logging.getLogger("veriqueue.resync")

API_ROOT = "/api/v1"
USER_AGENT = "VeriQueue-Resync/1.0"


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[Tuple[str, dict]]:
    """Lignes text/event-stream -> (event, data JSON). Les commentaires ':' sont ignorés."""
    name, data = "message", []
    async for line in lines:
        if not line:
            if data:
                try:
                    payload = json.loads("\n".join(data))
                except ValueError:
                    logger.warning("Malformed SSE data for event %s", name)
                else:
                    yield name, payload if isinstance(payload, dict) else {}
            name, data = "message", []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            name = value
        elif field == "data":
            data.append(value)


def _json(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _field_errors(items) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {}
    for item in items or []:
        out.setdefault(item.get("field", "non_field_errors"), []).append(item.get("message", ""))
    return out


class JobApiClient:
    def __init__(self, base_url: str = "http://localhost:8000", *, client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0, stream_timeout: Optional[float] = 150.0) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=timeout, headers={"User-Agent": USER_AGENT})
        self.timeout = timeout
        self.stream_timeout = stream_timeout

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, f"{API_ROOT}{path}", **kwargs)
        except httpx.TimeoutException as e:
            raise TransportTimeout(f"{method} {path} timed out") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

    def _unexpected(self, resp: httpx.Response) -> NetworkError:
        return NetworkError(f"HTTP {resp.status_code}: {resp.text[:200]}")

    async def submit(self, subject: dict) -> jobstate.SubmitResult:
        resp = await self._request("POST", "/jobs", json=subject)
        data = _json(resp)
        if resp.status_code == 400:
            raise ValidationError(_field_errors(data.get("fieldErrors")), data.get("error") or "Invalid verification request")
        if resp.status_code == 409:
            return jobstate.Conflict(str(data["jobId"]), data.get("status") or jobstate.PENDING)
        if resp.status_code == 429:
            retry = data.get("retryAfterSeconds") or resp.headers.get("Retry-After") or 60
            return jobstate.RateLimited(int(retry))
        if resp.status_code != 200:
            raise self._unexpected(resp)
        if data.get("queued"):
            return jobstate.Queued(str(data["jobId"]), int(data.get("position") or 0))
        if data.get("processing"):
            return jobstate.Processing(str(data["jobId"]))
        if data.get("success"):
            return jobstate.Immediate(data.get("analysis") or {})
        raise self._unexpected(resp)

    async def upload_document(self, content: bytes, filename: str = "report.pdf") -> jobstate.SubmitResult:
        resp = await self._request("POST", "/jobs/upload",
                                   files={"file": (filename, content, "application/pdf")})
        data = _json(resp)
        if resp.status_code == 400:
            raise ValidationError(_field_errors(data.get("fieldErrors")), data.get("error") or "Invalid document")
        if resp.status_code != 200 or not data.get("success"):
            raise self._unexpected(resp)
        return jobstate.Immediate(data.get("analysis") or {})

    async def get_status(self, job_id: str) -> Optional[jobstate.JobSnapshot]:
        """Snapshot courant, ou None si le job n'existe plus."""
        resp = await self._request("GET", f"/jobs/{job_id}")
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise self._unexpected(resp)
        return jobstate.JobSnapshot.from_payload(_json(resp))

    async def stream_events(self, job_id: str) -> AsyncIterator[jobstate.JobEvent]:
        """
        Flux push d'un job. Se termine après un event terminal (completed, failed,
        error, timeout); une coupure réseau produit un event error ou timeout.
        """
        timeout = httpx.Timeout(self.timeout, read=self.stream_timeout)
        try:
            async with self._client.stream("GET", f"{API_ROOT}/jobs/{job_id}/events",
                                           headers={"Accept": "text/event-stream"},
                                           timeout=timeout) as resp:
                async for name, data in iter_sse(resp.aiter_lines()):
                    yield jobstate.event_from_payload(name, data)
                    if name in jobstate.TERMINAL_EVENT_NAMES:
                        return
        except httpx.TimeoutException:
            logger.info("Event stream for job %s timed out", job_id)
            yield jobstate.Timeout(job_id=job_id)
            return
        except httpx.TransportError as e:
            logger.warning("Event stream for job %s failed: %s", job_id, e)
            yield jobstate.ConnectionError(message=str(e) or "Event stream failed", job_id=job_id)
            return
        yield jobstate.ConnectionError(message="Event stream closed by server", job_id=job_id)
