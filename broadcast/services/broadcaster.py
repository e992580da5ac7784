"""
Fan-out des événements de job vers les abonnés (SSE).

- Le broadcaster ne possède aucun état de job: chaque événement publié porte
  un snapshot relu dans le Job Store.
- Un abonnement reçoit d'abord le snapshot courant, puis uniquement des
  snapshots qui ne régressent pas (statut et progression monotones).
- Un terminal ferme l'abonnement. Sans activité pendant `timeout` secondes,
  l'abonnement émet un Timeout et se ferme.

Backends:
  LocalBroadcaster  registre en mémoire (un seul process: tests, dev)
  RedisBroadcaster  pub/sub Redis (web + workers Celery séparés)
"""
import json
import logging
import threading
import time
from collections import defaultdict
from queue import Empty, Queue
from typing import Dict, Iterator, List, Optional

import redis
from django.conf import settings

from core import jobstate

logger = logging.getLogger("veriqueue.broadcast")

DEFAULT_TIMEOUT = 120.0


class Subscription:
    """Flux d'événements d'un job pour un abonné. S'itère une seule fois."""

    def __init__(self, job_id: str, timeout: float) -> None:
        self.job_id = str(job_id)
        self.timeout = float(timeout)
        self.closed = False
        self._initial: Optional[jobstate.JobSnapshot] = None
        self._last: Optional[jobstate.JobSnapshot] = None

    def prime(self, snapshot: jobstate.JobSnapshot) -> None:
        """Snapshot courant, émis en premier."""
        self._initial = snapshot

    def _receive(self, timeout: float) -> Optional[jobstate.JobEvent]:
        raise NotImplementedError

    def _release(self) -> None:
        raise NotImplementedError

    def _accept(self, event) -> bool:
        snap = event.snapshot
        if not snap.advances_over(self._last):
            return False
        self._last = snap
        return True

    def __iter__(self) -> Iterator[jobstate.JobEvent]:
        try:
            if self._initial is not None:
                first = jobstate.event_for(self._initial)
                self._accept(first)
                yield first
                if self._initial.terminal:
                    return
            deadline = time.monotonic() + self.timeout
            while not self.closed:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    yield jobstate.Timeout(job_id=self.job_id)
                    return
                event = self._receive(remaining)
                if event is None:
                    continue
                if isinstance(event, (jobstate.ConnectionError, jobstate.Timeout)):
                    yield event
                    return
                if not self._accept(event):
                    logger.debug("Dropped stale event %s for job %s", event.name, self.job_id)
                    continue
                deadline = time.monotonic() + self.timeout
                yield event
                if event.snapshot.terminal:
                    return
        finally:
            self.close()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._release()


class BaseBroadcaster:
    def subscribe(self, job_id: str, timeout: Optional[float] = None) -> Subscription:
        raise NotImplementedError

    def publish(self, event: jobstate.JobEvent) -> None:
        raise NotImplementedError

    def has_subscribers(self, job_id: str) -> bool:
        raise NotImplementedError

    def publish_snapshot(self, snapshot: jobstate.JobSnapshot) -> jobstate.JobEvent:
        event = jobstate.event_for(snapshot)
        self.publish(event)
        return event


# ------------------------------------------------------------------------------
# In-process
# ------------------------------------------------------------------------------
class LocalSubscription(Subscription):
    def __init__(self, broadcaster: "LocalBroadcaster", job_id: str, timeout: float) -> None:
        super().__init__(job_id, timeout)
        self._broadcaster = broadcaster
        self.queue: Queue = Queue()

    def _receive(self, timeout):
        try:
            return self.queue.get(timeout=timeout)
        except Empty:
            return None

    def _release(self):
        self._broadcaster._unregister(self)


class LocalBroadcaster(BaseBroadcaster):
    """Registre thread-safe {job_id: [abonnements]} avec une Queue par abonné."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[LocalSubscription]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, job_id, timeout=None):
        sub = LocalSubscription(self, str(job_id), timeout or DEFAULT_TIMEOUT)
        with self._lock:
            self._subscribers[sub.job_id].append(sub)
        return sub

    def _unregister(self, sub: LocalSubscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.job_id)
            if subs and sub in subs:
                subs.remove(sub)
            if not subs:
                self._subscribers.pop(sub.job_id, None)

    def publish(self, event):
        job_id = event.snapshot.job_id
        with self._lock:
            subs = list(self._subscribers.get(job_id, ()))
            if event.snapshot.terminal:
                # les abonnements encore ouverts vident leur queue puis se ferment
                self._subscribers.pop(job_id, None)
        for sub in subs:
            sub.queue.put_nowait(event)
        logger.debug("Published %s for job %s to %d subscriber(s)", event.name, job_id, len(subs))

    def has_subscribers(self, job_id):
        with self._lock:
            return bool(self._subscribers.get(str(job_id)))


# ------------------------------------------------------------------------------
# Redis pub/sub
# ------------------------------------------------------------------------------
def channel_for(job_id: str) -> str:
    return f"verification:jobs:{job_id}"


class RedisSubscription(Subscription):
    def __init__(self, client: "redis.Redis", job_id: str, timeout: float) -> None:
        super().__init__(job_id, timeout)
        self._pubsub = client.pubsub(ignore_subscribe_messages=True)
        self._pubsub.subscribe(channel_for(self.job_id))

    def _receive(self, timeout):
        try:
            message = self._pubsub.get_message(timeout=timeout)
        except redis.RedisError as e:
            logger.warning("Event stream for job %s lost: %s", self.job_id, e)
            return jobstate.ConnectionError(message="Event stream unavailable", job_id=self.job_id)
        if not message or message.get("type") != "message":
            return None
        try:
            data = json.loads(message["data"])
        except (TypeError, ValueError):
            logger.warning("Malformed event on %s", channel_for(self.job_id))
            return None
        return jobstate.event_from_payload(data.get("event", ""), data.get("data") or {})

    def _release(self):
        try:
            self._pubsub.close()
        except redis.RedisError as e:
            logger.debug("Error closing pubsub for job %s: %s", self.job_id, e)


class RedisBroadcaster(BaseBroadcaster):
    def __init__(self, url: str | None = None, client: "redis.Redis | None" = None) -> None:
        self.client = client or redis.Redis.from_url(url or settings.VERIFICATION_BROADCAST_REDIS_URL)

    def subscribe(self, job_id, timeout=None):
        return RedisSubscription(self.client, str(job_id), timeout or DEFAULT_TIMEOUT)

    def publish(self, event):
        job_id = event.snapshot.job_id
        message = json.dumps({"event": event.name, "data": jobstate.event_payload(event)})
        try:
            receivers = self.client.publish(channel_for(job_id), message)
        except redis.RedisError as e:
            # l'état est déjà dans le store: les clients le retrouvent par polling
            logger.error("Failed to publish %s for job %s: %s", event.name, job_id, e)
            return
        logger.debug("Published %s for job %s to %s subscriber(s)", event.name, job_id, receivers)

    def has_subscribers(self, job_id):
        try:
            counts = self.client.pubsub_numsub(channel_for(str(job_id)))
        except redis.RedisError:
            return True
        return any(n for _, n in counts)


# ------------------------------------------------------------------------------
_broadcaster: Optional[BaseBroadcaster] = None
_broadcaster_lock = threading.Lock()


def get_broadcaster() -> BaseBroadcaster:
    """Singleton du process, backend choisi par settings.VERIFICATION_BROADCASTER."""
    global _broadcaster
    with _broadcaster_lock:
        if _broadcaster is None:
            backend = getattr(settings, "VERIFICATION_BROADCASTER", "local")
            _broadcaster = RedisBroadcaster() if backend == "redis" else LocalBroadcaster()
            logger.info("Using %s broadcaster", backend)
        return _broadcaster


def reset_broadcaster() -> None:
    global _broadcaster
    with _broadcaster_lock:
        _broadcaster = None
