from dataclasses import dataclass, field
from typing import Dict, List


@dataclass
class DocumentAnalysis:
    carriers: List[str]
    licensed_states: Dict[str, List[str]] = field(default_factory=dict)
    pages: int = 0

    def to_payload(self) -> dict:
        return {"carriers": self.carriers, "licensedStates": self.licensed_states, "pages": self.pages}


class BaseDocumentAnalyzer:
    """Analyse synchrone d'un rapport déjà téléchargé (PDF)."""
    def analyze(self, *, content: bytes, filename: str) -> DocumentAnalysis:
        raise NotImplementedError
