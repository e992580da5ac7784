from dataclasses import dataclass, field
from typing import Callable, Dict, List

# (progress 0..100, message)
ProgressCallback = Callable[[int, str], None]


@dataclass
class VerificationResult:
    carriers: List[str]                     # ex: ["Aetna", "Mutual of Omaha"]
    files: List[str]                        # références des rapports récupérés
    licensed_states: Dict[str, List[str]] = field(default_factory=dict)  # {"TX": ["Life", "Health"]}


class BaseVerificationProvider:
    """
    Collaborateur externe (automatisation longue, plusieurs minutes).
    Appelle `report` au fil de l'eau; lève une exception en cas d'échec.
    """
    def execute(self, *, subject: Dict[str, str], report: ProgressCallback) -> VerificationResult:
        raise NotImplementedError
