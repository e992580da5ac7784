"""
Taxonomie d'erreurs du sous-système de vérification.
Importable sans Django (utilisée aussi par le client resync).
"""
from typing import Dict, List, Optional


class VerificationError(Exception):
    code = "VERIFICATION_ERROR"
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(VerificationError):
    """Champs sujet manquants/mal formés: aucun job créé."""
    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, field_errors: Dict[str, List[str]], message: str = "Invalid verification request") -> None:
        super().__init__(message)
        self.field_errors = field_errors

    def as_list(self) -> List[Dict[str, str]]:
        return [
            {"field": name, "message": msg}
            for name, messages in self.field_errors.items()
            for msg in messages
        ]


class ConflictError(VerificationError):
    """Un job actif existe déjà pour ce sujet; on renvoie son handle."""
    code = "JOB_CONFLICT"
    status_code = 409

    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(f"Active verification job {job_id} already exists ({status})")
        self.job_id = str(job_id)
        self.status = status


class RateLimitError(VerificationError):
    code = "RATE_LIMITED"
    status_code = 429

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__(f"Too many verification requests, retry in {retry_after_seconds}s")
        self.retry_after_seconds = int(retry_after_seconds)


class ExternalAutomationError(VerificationError):
    """Échec du collaborateur externe: devient un job failed, jamais une erreur du gateway."""
    code = "EXTERNAL_AUTOMATION_ERROR"


class JobNotFound(VerificationError):
    code = "JOB_NOT_FOUND"
    status_code = 404

    def __init__(self, job_id: Optional[str] = None) -> None:
        super().__init__(f"Job {job_id} not found" if job_id else "Job not found")
        self.job_id = job_id


# Transport (côté client): récupérées localement (retry / reconnect)
class NetworkError(VerificationError):
    code = "NETWORK_ERROR"


class TransportTimeout(NetworkError):
    code = "TRANSPORT_TIMEOUT"
