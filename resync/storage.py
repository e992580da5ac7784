import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger("veriqueue.resync")

HANDLE_KEY = "verification.active_job"


@dataclass(frozen=True)
class ResumableHandle:
    """Identifiant persisté d'un job non terminal."""
    job_id: str
    subject_key: Optional[str] = None

    def to_dict(self) -> dict:
        return {"jobId": self.job_id, "subjectKey": self.subject_key}

    @classmethod
    def from_dict(cls, data) -> Optional["ResumableHandle"]:
        if not isinstance(data, dict) or not data.get("jobId"):
            return None
        return cls(job_id=str(data["jobId"]), subject_key=data.get("subjectKey"))


class HandleStore:
    """Stockage clé/valeur persistant côté client (survit au rechargement)."""
    def get(self, key: str) -> Optional[dict]:
        raise NotImplementedError

    def set(self, key: str, value: dict) -> None:
        raise NotImplementedError

    def clear(self, key: str) -> None:
        raise NotImplementedError


class MemoryHandleStore(HandleStore):
    def __init__(self, initial: Optional[Dict[str, dict]] = None) -> None:
        self._data: Dict[str, dict] = dict(initial or {})

    def get(self, key):
        return self._data.get(key)

    def set(self, key, value):
        self._data[key] = dict(value)

    def clear(self, key):
        self._data.pop(key, None)


class JsonFileHandleStore(HandleStore):
    """Un fichier JSON {clé: valeur}; écriture atomique (fichier temporaire + replace)."""

    def __init__(self, path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, dict]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except ValueError:
            logger.warning("Corrupted handle store %s, starting empty", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp, self.path)

    def get(self, key):
        with self._lock:
            return self._read().get(key)

    def set(self, key, value):
        with self._lock:
            data = self._read()
            data[key] = dict(value)
            self._write(data)

    def clear(self, key):
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)
