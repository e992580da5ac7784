import hashlib
import time

from django.conf import settings

from core.errors import ExternalAutomationError
from .provider import BaseVerificationProvider, VerificationResult

CARRIERS = [
    "Aetna", "Americo", "Corebridge Financial", "Foresters Financial",
    "Mutual of Omaha", "Transamerica", "Royal Neighbors", "American Amicable",
]
STATES = ["TX", "FL", "GA", "NC", "AZ", "OH"]
LINES = ["Life", "Health", "Accident & Health", "Variable Life"]

STEPS = [
    (10, "Opening verification session"),
    (35, "Looking up producer record"),
    (60, "Requesting licensing report"),
    (80, "Downloading report"),
    (95, "Analyzing appointments"),
]


class MockVerificationProvider(BaseVerificationProvider):
    """
    Provider fake/maquette déterministe:
    - Rejoue les étapes de l'automatisation réelle (délai par étape configurable).
    - Déduit les compagnies/états d'un hash du NPN.
    - Un NPN composé uniquement de zéros simule un producteur introuvable.
    À remplacer par le connecteur réel.
    """
    def __init__(self, step_delay: float | None = None) -> None:
        if step_delay is None:
            step_delay = getattr(settings, "VERIFICATION_MOCK_STEP_DELAY_SECONDS", 0)
        self.step_delay = float(step_delay)

    def execute(self, *, subject, report) -> VerificationResult:
        npn = subject.get("npn", "")
        h = hashlib.sha256(f"{npn}:{subject.get('last_name', '')}".encode()).hexdigest()

        for percent, message in STEPS:
            report(percent, message)
            if self.step_delay:
                time.sleep(self.step_delay)
            if percent == 35 and set(npn) == {"0"}:
                raise ExternalAutomationError(f"No producer found for NPN {npn}")

        n = 1 + int(h[0], 16) % 4
        start = int(h[1:3], 16) % len(CARRIERS)
        carriers = [CARRIERS[(start + i) % len(CARRIERS)] for i in range(n)]
        states = {
            STATES[(int(h[3 + i], 16)) % len(STATES)]: LINES[: 1 + int(h[8 + i], 16) % len(LINES)]
            for i in range(2)
        }
        return VerificationResult(
            carriers=carriers,
            files=[f"reports/{npn}/pdb-{h[:12]}.pdf"],
            licensed_states=states,
        )
