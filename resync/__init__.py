"""
Client de resynchronisation: reprend le suivi d'un job de vérification après
rechargement, via push (SSE) ou polling, sans jamais faire régresser l'état affiché.
"""
from .api import JobApiClient
from .manager import ResyncManager
from .storage import HANDLE_KEY, JsonFileHandleStore, MemoryHandleStore, ResumableHandle

__all__ = [
    "HANDLE_KEY",
    "JobApiClient",
    "JsonFileHandleStore",
    "MemoryHandleStore",
    "ResumableHandle",
    "ResyncManager",
]
