from datetime import timedelta
from unittest import mock

from django.core.cache import cache
from django.test import TestCase
from django.utils import timezone

from broadcast.services.broadcaster import LocalBroadcaster
from core import jobstate
from core.errors import ExternalAutomationError
from jobs.models import VerificationJob
from jobs.services import dedup, store
from verification.services.executor import TIMED_OUT_MESSAGE, JobExecutor, release_stale_jobs
from verification.services.gateway import JobGateway
from verification.services.provider import BaseVerificationProvider, VerificationResult
from verification.services.provider_mock import MockVerificationProvider
from verification.services.queue import JobQueue


def subject(npn):
    return {"last_name": "Smith", "npn": npn, "ssn_last4": "1234", "dob": "01/15/1980"}


class ScriptedProvider(BaseVerificationProvider):
    def __init__(self, steps=(), result=None, error=None):
        self.steps = steps
        self.result = result
        self.error = error
        self.calls = []

    def execute(self, *, subject, report):
        self.calls.append(subject["npn"])
        for progress, message in self.steps:
            report(progress, message)
        if self.error:
            raise self.error
        return self.result


class QueueTestMixin:
    def setUp(self):
        self.broadcaster = LocalBroadcaster()
        self.dispatched = []
        self.queue = JobQueue(broadcaster=self.broadcaster, dispatch=self.dispatched.append)

    def enqueue(self, npn):
        return dedup.acquire(f"npn:{npn}", subject(npn))

    def drain(self, subscription):
        return list(subscription)


class JobQueueTest(QueueTestMixin, TestCase):
    def test_first_job_claimed_immediately(self):
        job = self.enqueue("1")
        claimed = self.queue.kick()
        self.assertEqual(claimed.id, job.id)
        self.assertEqual(self.dispatched, [str(job.id)])
        job.refresh_from_db()
        self.assertEqual(job.status, jobstate.PROCESSING)
        self.assertEqual(job.progress_message, store.MSG_STARTING)

    def test_single_worker_fifo_positions(self):
        a, b, c = self.enqueue("1"), self.enqueue("2"), self.enqueue("3")
        self.queue.kick()
        self.assertIsNone(self.queue.kick())
        self.assertEqual(len(self.dispatched), 1)
        b.refresh_from_db()
        c.refresh_from_db()
        self.assertEqual(self.queue.position_of(b), 1)
        self.assertEqual(self.queue.position_of(c), 2)
        self.assertEqual((b.queue_position, c.queue_position), (1, 2))
        self.assertIsNone(self.queue.position_of(VerificationJob.objects.get(pk=a.id)))

    def test_positions_published_to_subscribers(self):
        self.enqueue("1")
        self.queue.kick()
        b, c = self.enqueue("2"), self.enqueue("3")
        self.queue.refresh_positions()
        sub = self.broadcaster.subscribe(str(c.id), timeout=0.05)
        store.fail_job(store.processing_job().id, "boom")
        self.queue.advance()
        events = self.drain(sub)
        self.assertIsInstance(events[0], jobstate.Progress)
        self.assertEqual(events[0].snapshot.position, 1)
        self.assertIsInstance(events[-1], jobstate.Timeout)

    def test_kick_recovers_pending_job_without_worker(self):
        job = store.create_job("npn:7", subject("7"))
        self.assertEqual(self.queue.kick().id, job.id)

    def test_failed_dispatch_puts_job_back_to_pending(self):
        def unreachable(job_id):
            raise OSError("broker unreachable")

        job = self.enqueue("1")
        queue = JobQueue(broadcaster=self.broadcaster, dispatch=unreachable)
        self.assertIsNone(queue.kick())
        job.refresh_from_db()
        self.assertEqual(job.status, jobstate.PENDING)
        self.assertIsNone(job.started_at)
        self.assertEqual(job.progress_message, store.MSG_WAITING)
        self.assertIsNone(store.processing_job())
        # le kick suivant (beat) relance le même job
        self.assertEqual(self.queue.kick().id, job.id)
        self.assertEqual(self.dispatched, [str(job.id)])

    def test_broker_failure_on_commit_releases_claim(self):
        job = self.enqueue("1")
        with mock.patch("verification.tasks.run_verification_job") as task:
            task.delay.side_effect = OSError("broker unreachable")
            with self.captureOnCommitCallbacks(execute=True):
                JobQueue(broadcaster=self.broadcaster).kick()
        task.delay.assert_called_once_with(str(job.id))
        job.refresh_from_db()
        self.assertEqual(job.status, jobstate.PENDING)
        self.assertEqual(self.queue.kick().id, job.id)

    def test_queue_drains_in_submission_order(self):
        jobs = [self.enqueue(str(n)) for n in range(1, 5)]
        self.queue.kick()
        last_seen = {}
        started = []
        while store.processing_job() is not None:
            running = store.processing_job()
            started.append(running.id)
            for job in jobs:
                job.refresh_from_db()
                position = self.queue.position_of(job)
                if position is None:
                    continue
                self.assertEqual(position, job.queue_position)
                if job.id in last_seen:
                    self.assertLess(position, last_seen[job.id])
                last_seen[job.id] = position
            if len(started) % 2:
                store.complete_job(running.id, carriers=[], files=[])
            else:
                store.fail_job(running.id, "boom")
            self.queue.advance()
        self.assertEqual(started, [j.id for j in jobs])
        self.assertEqual(self.dispatched, [str(j.id) for j in jobs])
        self.assertEqual(last_seen[jobs[-1].id], 1)

    def test_stats(self):
        self.enqueue("1")
        self.enqueue("2")
        running = self.queue.kick()
        stats = self.queue.stats()
        self.assertEqual(stats["pending"], 1)
        self.assertEqual(stats["processing"], 1)
        self.assertEqual(stats["currentJobId"], str(running.id))


class JobExecutorTest(QueueTestMixin, TestCase):
    def executor(self, provider):
        return JobExecutor(provider=provider, queue=self.queue, broadcaster=self.broadcaster)

    def test_success_publishes_progress_then_completed(self):
        job = self.enqueue("1")
        self.queue.kick()
        sub = self.broadcaster.subscribe(str(job.id), timeout=1)
        provider = ScriptedProvider(
            steps=[(10, "Opening verification session"), (60, "Requesting licensing report"), (40, "late")],
            result=VerificationResult(carriers=["Aetna"], files=["r.pdf"], licensed_states={"TX": ["Life"]}),
        )
        snap = self.executor(provider).run(job.id)
        self.assertEqual(snap.status, jobstate.COMPLETED)
        events = self.drain(sub)
        self.assertEqual([e.name for e in events], ["progress", "progress", "progress", "completed"])
        self.assertEqual([e.snapshot.progress for e in events], [10, 60, 60, 100])
        self.assertEqual(events[2].snapshot.progress_message, "late")
        self.assertEqual(events[-1].snapshot.result_carriers, ["Aetna"])
        job.refresh_from_db()
        self.assertEqual(job.result_details, {"licensedStates": {"TX": ["Life"]}})
        self.assertFalse(self.broadcaster.has_subscribers(str(job.id)))

    def test_failure_releases_lock_and_advances(self):
        a, b = self.enqueue("1"), self.enqueue("2")
        self.queue.kick()
        provider = ScriptedProvider(steps=[(10, "x")], error=ExternalAutomationError("Portal unavailable"))
        snap = self.executor(provider).run(a.id)
        self.assertEqual(snap.status, jobstate.FAILED)
        self.assertEqual(snap.error_message, "Portal unavailable")
        self.assertFalse(dedup.is_locked("npn:1"))
        b.refresh_from_db()
        self.assertEqual(b.status, jobstate.PROCESSING)
        self.assertEqual(self.dispatched, [str(a.id), str(b.id)])

    def test_unexpected_result_shape_fails_job(self):
        job = self.enqueue("1")
        self.queue.kick()
        snap = self.executor(ScriptedProvider(result={"carriers": []})).run(job.id)
        self.assertEqual(snap.status, jobstate.FAILED)
        self.assertIn("Unexpected response", snap.error_message)

    def test_job_not_processing_is_skipped(self):
        job = self.enqueue("1")
        provider = ScriptedProvider(result=VerificationResult(carriers=[], files=[]))
        snap = self.executor(provider).run(job.id)
        self.assertEqual(snap.status, jobstate.PENDING)
        self.assertEqual(provider.calls, [])

    def test_redelivered_task_does_not_rerun_provider(self):
        job = self.enqueue("1")
        self.queue.kick()
        # première livraison interrompue après le début de l'exécution
        self.assertTrue(store.begin_execution(job.id))
        provider = ScriptedProvider(result=VerificationResult(carriers=["Aetna"], files=[]))
        snap = self.executor(provider).run(job.id)
        self.assertEqual(provider.calls, [])
        self.assertEqual(snap.status, jobstate.PROCESSING)
        self.assertFalse(store.release_claim(job.id))

    def test_mock_provider_end_to_end(self):
        job = self.enqueue("12345678")
        self.queue.kick()
        snap = self.executor(MockVerificationProvider(step_delay=0)).run(job.id)
        self.assertEqual(snap.status, jobstate.COMPLETED)
        self.assertTrue(snap.result_carriers)

    def test_mock_provider_unknown_producer(self):
        job = self.enqueue("0000")
        self.queue.kick()
        snap = self.executor(MockVerificationProvider(step_delay=0)).run(job.id)
        self.assertEqual(snap.status, jobstate.FAILED)
        self.assertIn("No producer found", snap.error_message)


class ReleaseStaleJobsTest(QueueTestMixin, TestCase):
    def test_stale_job_failed_and_queue_advances(self):
        a, b = self.enqueue("1"), self.enqueue("2")
        self.queue.kick()
        VerificationJob.objects.filter(pk=a.id).update(started_at=timezone.now() - timedelta(minutes=11))
        released = release_stale_jobs(600, broadcaster=self.broadcaster, queue=self.queue)
        self.assertEqual(released, [str(a.id)])
        a.refresh_from_db()
        self.assertEqual(a.status, jobstate.FAILED)
        self.assertEqual(a.error_message, TIMED_OUT_MESSAGE)
        b.refresh_from_db()
        self.assertEqual(b.status, jobstate.PROCESSING)
        # résultat tardif du worker: ignoré
        self.assertFalse(store.complete_job(a.id, carriers=["Aetna"], files=[]))

    def test_recent_job_untouched(self):
        a = self.enqueue("1")
        self.queue.kick()
        self.assertEqual(release_stale_jobs(600, broadcaster=self.broadcaster, queue=self.queue), [])
        a.refresh_from_db()
        self.assertEqual(a.status, jobstate.PROCESSING)


class GatewayDispatchFailureTest(QueueTestMixin, TestCase):
    def test_submit_queues_job_when_dispatch_fails(self):
        cache.clear()
        def unreachable(job_id):
            raise OSError("broker unreachable")

        gateway = JobGateway(queue=JobQueue(broadcaster=self.broadcaster, dispatch=unreachable))
        result = gateway.submit({"lastName": "Smith", "npn": "42", "ssn": "1234", "dob": "01/15/1980"})
        self.assertIsInstance(result, jobstate.Queued)
        self.assertEqual(result.position, 0)
        job = VerificationJob.objects.get(pk=result.job_id)
        self.assertEqual(job.status, jobstate.PENDING)
        self.assertEqual(self.queue.kick().id, job.id)
