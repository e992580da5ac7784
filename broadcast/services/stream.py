from django.conf import settings

from jobs.services import store
from .broadcaster import BaseBroadcaster, Subscription, get_broadcaster


def open_job_stream(job_id: str, broadcaster: BaseBroadcaster | None = None,
                    timeout: float | None = None) -> Subscription:
    """
    Abonne puis lit le snapshot courant: aucune transition ne peut tomber
    entre la lecture et l'abonnement. Lève JobNotFound.
    """
    job = store.get_job(job_id)
    broadcaster = broadcaster or get_broadcaster()
    if timeout is None:
        timeout = getattr(settings, "VERIFICATION_STREAM_TIMEOUT_SECONDS", 120)
    subscription = broadcaster.subscribe(str(job.id), timeout=timeout)
    job.refresh_from_db()
    subscription.prime(store.snapshot(job))
    return subscription
