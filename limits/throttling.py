import logging
import math
from dataclasses import dataclass

from django.conf import settings
from rest_framework.throttling import SimpleRateThrottle

from core.errors import RateLimitError

logger = logging.getLogger("veriqueue.gateway")


@dataclass
class SubjectRequest:
    """Adaptateur minimal: SimpleRateThrottle ne lit que la clé du sujet."""
    subject_key: str


class SubjectRateThrottle(SimpleRateThrottle):
    """
    Fenêtre glissante par sujet (pas par utilisateur / IP).
    Le débit vient de settings.VERIFICATION_SUBMIT_RATE ("N/period").
    Utilisable hors requête HTTP via hit(subject_key).
    """
    scope = "verification_submit"

    def __init__(self, rate=None):
        if rate:
            self.rate = rate
        super().__init__()

    def get_rate(self):
        return getattr(settings, "VERIFICATION_SUBMIT_RATE", "5/hour")

    def get_cache_key(self, request, view):
        subject_key = getattr(request, "subject_key", None)
        if not subject_key:
            return None
        return self.cache_format % {"scope": self.scope, "ident": subject_key}

    def retry_after(self) -> int:
        wait = self.wait()
        return max(1, int(math.ceil(wait if wait is not None else self.duration)))

    def hit(self, subject_key: str) -> None:
        """Enregistre une soumission ; lève RateLimitError si la fenêtre est pleine."""
        if self.allow_request(SubjectRequest(subject_key), None):
            return
        retry = self.retry_after()
        logger.info("Rate limit hit for %s (retry in %ss)", subject_key, retry)
        raise RateLimitError(retry)
