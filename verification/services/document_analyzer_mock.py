import hashlib

from .document_analyzer import BaseDocumentAnalyzer, DocumentAnalysis
from .provider_mock import CARRIERS, LINES, STATES


class MockDocumentAnalyzer(BaseDocumentAnalyzer):
    """
    Analyseur maquette: vérifie l'en-tête PDF puis dérive un résultat stable du contenu.
    """
    def analyze(self, *, content: bytes, filename: str) -> DocumentAnalysis:
        if not content.startswith(b"%PDF"):
            raise ValueError("INVALID_PDF")
        h = hashlib.sha256(content[:65536]).hexdigest()
        n = 1 + int(h[0], 16) % 3
        carriers = sorted({CARRIERS[int(h[1 + i], 16) % len(CARRIERS)] for i in range(n)})
        states = {STATES[int(h[5], 16) % len(STATES)]: LINES[:2]}
        return DocumentAnalysis(carriers=carriers, licensed_states=states, pages=max(1, content.count(b"/Type /Page")))
