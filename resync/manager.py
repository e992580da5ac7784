"""
ResyncManager: suivi côté client d'un job de vérification.

- Le handle (jobId) est persisté tant que le job n'est pas terminal, et
  effacé dès qu'un terminal est observé ou que le job n'existe plus.
- Au démarrage, un seul GetStatus décide: reprise du suivi, ou nettoyage.
- Push (SSE) et polling alimentent la même vue; une observation qui ferait
  régresser le statut ou la progression est ignorée, un terminal n'est
  traité qu'une fois.
- La connexion push est ouverte et fermée explicitement; elle n'est jamais
  reconnectée automatiquement (l'appelant peut basculer sur start_polling()).
"""
import asyncio
import logging
from typing import AsyncIterator, Optional

from core import jobstate
from core.errors import NetworkError
from .api import JobApiClient
from .polling import PollingTask
from .storage import HANDLE_KEY, HandleStore, ResumableHandle

logger = logging.getLogger("veriqueue.resync")

PUSH = "push"
POLL = "poll"

_CLOSED = object()


class ResyncManager:
    def __init__(self, api: JobApiClient, store: HandleStore, *,
                 transport: str = PUSH, poll_interval: float = 5.0) -> None:
        if transport not in (PUSH, POLL):
            raise ValueError(f"Unknown transport {transport!r}")
        self.api = api
        self.store = store
        self.transport = transport
        self.poll_interval = poll_interval
        self.handle: Optional[ResumableHandle] = None
        self.snapshot: Optional[jobstate.JobSnapshot] = None
        self._events: asyncio.Queue = asyncio.Queue()
        self._poller: Optional[PollingTask] = None
        self._push_task: Optional[asyncio.Task] = None

    # -- état ------------------------------------------------------------------
    @property
    def tracking(self) -> bool:
        return self.handle is not None

    def _load_handle(self) -> Optional[ResumableHandle]:
        raw = self.store.get(HANDLE_KEY)
        handle = ResumableHandle.from_dict(raw)
        if handle is None and raw is not None:
            self.store.clear(HANDLE_KEY)
        return handle

    def _track(self, handle: ResumableHandle, snapshot: Optional[jobstate.JobSnapshot] = None) -> None:
        self.handle = handle
        self.snapshot = snapshot
        self.store.set(HANDLE_KEY, handle.to_dict())

    def _forget(self) -> None:
        self.handle = None
        self.store.clear(HANDLE_KEY)

    def observe(self, snapshot: jobstate.JobSnapshot) -> Optional[jobstate.JobEvent]:
        """
        Applique une observation (push ou poll). Renvoie l'event émis, ou None si
        l'observation est ignorée (autre job, régression, terminal déjà traité).
        """
        if self.handle is None or snapshot.job_id != self.handle.job_id:
            return None
        if not snapshot.advances_over(self.snapshot):
            return None
        self.snapshot = snapshot.merge(self.snapshot)
        event = jobstate.event_for(self.snapshot)
        if self.snapshot.terminal:
            logger.info("Job %s finished: %s", snapshot.job_id, self.snapshot.status)
            self._forget()
            self._stop_transports()
        else:
            self.store.set(HANDLE_KEY, self.handle.to_dict())
        self._events.put_nowait(event)
        return event

    # -- cycle de vie ----------------------------------------------------------
    async def initialize(self) -> Optional[jobstate.JobSnapshot]:
        """
        Reprise après rechargement: un GetStatus sur le handle persisté.
        Terminal ou job inconnu: le handle est effacé et rien n'est suivi.
        """
        handle = self._load_handle()
        if handle is None:
            return None
        try:
            snap = await self.api.get_status(handle.job_id)
        except NetworkError as e:
            logger.warning("Could not resume job %s: %s", handle.job_id, e)
            self._track(handle)
            self._start_transport()
            return None
        if snap is None:
            logger.info("Persisted job %s no longer exists, clearing handle", handle.job_id)
            self._forget()
            return None
        self._track(handle)
        self.observe(snap)
        if self.tracking:
            self._start_transport()
        return self.snapshot

    async def submit(self, subject: dict, subject_key: Optional[str] = None) -> jobstate.SubmitResult:
        """Soumet et, si un job est à suivre (queued, processing, conflit), le suit."""
        result = await self.api.submit(subject)
        job_id = jobstate.tracked_job_id(result)
        if job_id is None:
            return result
        await self.close()
        self.stop_polling()
        if isinstance(result, jobstate.Queued):
            initial = jobstate.JobSnapshot(job_id=job_id, status=jobstate.PENDING, position=result.position)
        else:
            status = result.status if isinstance(result, jobstate.Conflict) else jobstate.PROCESSING
            initial = jobstate.JobSnapshot(job_id=job_id, status=status)
        self._track(ResumableHandle(job_id, subject_key), None)
        self.observe(initial)
        self._start_transport()
        return result

    def _start_transport(self) -> None:
        if self.transport == PUSH:
            self.connect()
        else:
            self.start_polling()

    def _stop_transports(self) -> None:
        if self._poller is not None and not self._poller.is_current():
            self._poller.cancel()
        self._poller = None
        if self._push_task is not None and self._push_task is not asyncio.current_task():
            self._push_task.cancel()
        self._push_task = None

    # -- push ------------------------------------------------------------------
    def connect(self) -> asyncio.Task:
        """Ouvre la connexion push sur le job suivi."""
        if self.handle is None:
            raise RuntimeError("No job to follow")
        if self._push_task is not None and not self._push_task.done():
            return self._push_task
        self._push_task = asyncio.get_running_loop().create_task(self._consume_push(self.handle.job_id))
        return self._push_task

    async def _consume_push(self, job_id: str) -> None:
        try:
            async for event in self.api.stream_events(job_id):
                if isinstance(event, (jobstate.ConnectionError, jobstate.Timeout)):
                    self._events.put_nowait(event)
                    return
                self.observe(event.snapshot)
                if not self.tracking:
                    return
        except NetworkError as e:
            self._events.put_nowait(jobstate.ConnectionError(message=str(e), job_id=job_id))

    async def close(self) -> None:
        """Ferme la connexion push."""
        task, self._push_task = self._push_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # -- polling ---------------------------------------------------------------
    def start_polling(self, interval: Optional[float] = None) -> PollingTask:
        if self.handle is None:
            raise RuntimeError("No job to follow")
        if self._poller is not None and not self._poller.done:
            return self._poller
        self._poller = PollingTask(self._poll_once, interval or self.poll_interval,
                                   name=f"poll-{self.handle.job_id}")
        return self._poller

    def stop_polling(self) -> None:
        if self._poller is not None:
            self._poller.cancel()
            self._poller = None

    async def _poll_once(self) -> bool:
        """Un tick de polling; False arrête la boucle."""
        if self.handle is None:
            return False
        job_id = self.handle.job_id
        try:
            snap = await self.api.get_status(job_id)
        except NetworkError as e:
            logger.info("Polling job %s failed, retrying: %s", job_id, e)
            return True
        if snap is None:
            self._forget()
            self._events.put_nowait(jobstate.ConnectionError(message="Job no longer exists", job_id=job_id))
            return False
        self.observe(snap)
        return self.tracking

    # -- consommation ----------------------------------------------------------
    async def events(self) -> AsyncIterator[jobstate.JobEvent]:
        """Events dans l'ordre d'émission; s'arrête après completed/failed ou aclose()."""
        while True:
            event = await self._events.get()
            if event is _CLOSED:
                return
            yield event
            if isinstance(event, (jobstate.Completed, jobstate.Failed)):
                return

    async def aclose(self) -> None:
        await self.close()
        poller = self._poller
        self.stop_polling()
        if poller is not None:
            await poller.wait()
        self._events.put_nowait(_CLOSED)
