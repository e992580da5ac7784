"""
Vocabulaire partagé serveur/client pour les jobs de vérification.
- statuts + ordre (forward-only)
- JobSnapshot: vue sérialisable d'un job (payload du statut / des events SSE)
- JobEvent: union fermée des événements poussés aux clients
- SubmitResult: union fermée des réponses de soumission

Aucune dépendance Django ici: le module est importé aussi par le client (resync).

ConnectionError masque le builtin dans ce module: toujours l'utiliser qualifié
(jobstate.ConnectionError) et ne jamais faire `from core.jobstate import *`.
__all__ l'exclut.
"""
from dataclasses import dataclass, field, replace
from typing import List, Optional, Union

__all__ = [
    "PENDING", "PROCESSING", "COMPLETED", "FAILED",
    "ACTIVE_STATUSES", "TERMINAL_STATUSES", "status_rank", "is_terminal",
    "JobSnapshot", "Progress", "Completed", "Failed", "Timeout", "JobEvent",
    "TERMINAL_EVENT_NAMES", "event_for", "event_payload", "event_from_payload",
    "Immediate", "Queued", "Processing", "Conflict", "RateLimited",
    "SubmitResult", "tracked_job_id",
]

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

ACTIVE_STATUSES = (PENDING, PROCESSING)
TERMINAL_STATUSES = (COMPLETED, FAILED)

# rang dans la machine à états; completed/failed sont au même niveau
_RANK = {PENDING: 0, PROCESSING: 1, COMPLETED: 2, FAILED: 2}


def status_rank(status: str) -> int:
    return _RANK.get(status, -1)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


@dataclass(frozen=True)
class JobSnapshot:
    job_id: str
    status: str
    progress: int = 0
    progress_message: str = ""
    position: Optional[int] = None
    result_carriers: List[str] = field(default_factory=list)
    result_files: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    next_step: str = ""

    @property
    def terminal(self) -> bool:
        return is_terminal(self.status)

    def to_payload(self) -> dict:
        return {
            "jobId": self.job_id,
            "status": self.status,
            "progress": self.progress,
            "progressMessage": self.progress_message,
            "position": self.position,
            "resultCarriers": list(self.result_carriers),
            "resultFiles": list(self.result_files),
            "errorMessage": self.error_message,
            "createdAt": self.created_at,
            "completedAt": self.completed_at,
            "nextStep": self.next_step,
        }

    @classmethod
    def from_payload(cls, data: dict) -> "JobSnapshot":
        return cls(
            job_id=str(data.get("jobId") or data.get("id") or ""),
            status=data.get("status") or PENDING,
            progress=int(data.get("progress") or 0),
            progress_message=data.get("progressMessage") or "",
            position=data.get("position"),
            result_carriers=list(data.get("resultCarriers") or []),
            result_files=list(data.get("resultFiles") or []),
            error_message=data.get("errorMessage"),
            created_at=data.get("createdAt"),
            completed_at=data.get("completedAt"),
            next_step=data.get("nextStep") or "",
        )

    def advances_over(self, other: Optional["JobSnapshot"]) -> bool:
        """
        True si self n'est pas une régression par rapport à other
        (statut plus avancé, ou même statut et progression >=).
        """
        if other is None:
            return True
        if status_rank(self.status) != status_rank(other.status):
            return status_rank(self.status) > status_rank(other.status)
        if other.terminal:
            # un terminal ne se "rejoue" pas
            return False
        return self.progress >= other.progress

    def merge(self, other: Optional["JobSnapshot"]) -> "JobSnapshot":
        """
        Fusionne deux observations du même job (push vs poll):
        statut le plus avancé, progression max, message de l'observation la plus avancée.
        """
        if other is None:
            return self
        if status_rank(other.status) > status_rank(self.status):
            newest, oldest = other, self
        elif status_rank(other.status) < status_rank(self.status):
            newest, oldest = self, other
        else:
            newest, oldest = (other, self) if other.progress >= self.progress else (self, other)
        if newest.terminal:
            return newest
        return replace(newest, progress=max(newest.progress, oldest.progress))


# ------------------------------------------------------------------------------
# Events (push channel)
# ------------------------------------------------------------------------------
@dataclass(frozen=True)
class Progress:
    snapshot: JobSnapshot
    name = "progress"


@dataclass(frozen=True)
class Completed:
    snapshot: JobSnapshot
    name = "completed"


@dataclass(frozen=True)
class Failed:
    snapshot: JobSnapshot
    name = "failed"


@dataclass(frozen=True)
class ConnectionError:
    message: str
    job_id: Optional[str] = None
    name = "error"


@dataclass(frozen=True)
class Timeout:
    job_id: Optional[str] = None
    message: str = "No activity on the event stream"
    name = "timeout"


JobEvent = Union[Progress, Completed, Failed, ConnectionError, Timeout]
TERMINAL_EVENT_NAMES = ("completed", "failed", "error", "timeout")


def event_for(snapshot: JobSnapshot) -> JobEvent:
    if snapshot.status == COMPLETED:
        return Completed(snapshot)
    if snapshot.status == FAILED:
        return Failed(snapshot)
    return Progress(snapshot)


def event_payload(event: JobEvent) -> dict:
    if isinstance(event, (Progress, Completed, Failed)):
        return event.snapshot.to_payload()
    return {"jobId": event.job_id, "error": event.message}


def event_from_payload(name: str, data: dict) -> JobEvent:
    if name in ("progress", "completed", "failed"):
        snapshot = JobSnapshot.from_payload(data)
        return {"progress": Progress, "completed": Completed, "failed": Failed}[name](snapshot)
    if name == "timeout":
        return Timeout(job_id=data.get("jobId"), message=data.get("error") or Timeout.message)
    return ConnectionError(message=data.get("error") or "Event stream error", job_id=data.get("jobId"))


# ------------------------------------------------------------------------------
# Submit result (union fermée)
# ------------------------------------------------------------------------------
@dataclass(frozen=True)
class Immediate:
    analysis: dict
    kind = "immediate"


@dataclass(frozen=True)
class Queued:
    job_id: str
    position: int
    kind = "queued"


@dataclass(frozen=True)
class Processing:
    job_id: str
    kind = "processing"


@dataclass(frozen=True)
class Conflict:
    job_id: str
    status: str
    kind = "conflict"


@dataclass(frozen=True)
class RateLimited:
    retry_after_seconds: int
    kind = "rate_limited"


SubmitResult = Union[Immediate, Queued, Processing, Conflict, RateLimited]


def tracked_job_id(result: SubmitResult) -> Optional[str]:
    """Job à suivre côté client (None si rien à suivre)."""
    if isinstance(result, (Queued, Processing, Conflict)):
        return result.job_id
    return None
