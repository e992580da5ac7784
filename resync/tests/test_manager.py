import asyncio
import json
import tempfile
import unittest
from pathlib import Path

import httpx

from core import jobstate
from core.errors import ValidationError
from resync.api import JobApiClient, iter_sse
from resync.manager import ResyncManager
from resync.polling import PollingTask
from resync.storage import HANDLE_KEY, JsonFileHandleStore, MemoryHandleStore


def status_payload(status, progress=0, **extra):
    data = {"jobId": "J1", "status": status, "progress": progress, "progressMessage": "",
            "position": None, "resultCarriers": [], "resultFiles": [], "errorMessage": None,
            "createdAt": None, "completedAt": None, "nextStep": ""}
    data.update(extra)
    return data


def sse(*events):
    return "".join(f"event: {name}\ndata: {json.dumps(data)}\n\n" for name, data in events).encode()


class FakeJobApi:
    """Réponses scriptées de l'API jobs (la dernière se répète)."""

    def __init__(self, statuses=(), stream=b"", submit=None):
        self.statuses = list(statuses)
        self.stream = stream
        self.submit_response = submit
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        if request.method == "POST" and path == "/api/v1/jobs":
            status, body = self.submit_response
            return httpx.Response(status, json=body)
        if path.endswith("/events"):
            return httpx.Response(200, content=self.stream, headers={"Content-Type": "text/event-stream"})
        if not self.statuses:
            return httpx.Response(404, json={"error": "Job J1 not found"})
        current = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return httpx.Response(200, json=current)

    @property
    def status_calls(self):
        return [c for c in self.calls if c[0] == "GET" and not c[1].endswith("/events")]


class ResyncManagerTest(unittest.IsolatedAsyncioTestCase):
    def manager(self, fake, handle="J1", transport="poll"):
        client = httpx.AsyncClient(transport=httpx.MockTransport(fake), base_url="http://testserver")
        self.addAsyncCleanup(client.aclose)
        store = MemoryHandleStore({HANDLE_KEY: {"jobId": handle}} if handle else None)
        mgr = ResyncManager(JobApiClient(client=client), store, transport=transport, poll_interval=0.01)
        self.addAsyncCleanup(mgr.aclose)
        return mgr, store

    async def collect(self, mgr, limit=10):
        async def run():
            out = []
            async for event in mgr.events():
                out.append(event)
                if len(out) >= limit:
                    break
            return out
        return await asyncio.wait_for(run(), timeout=2)

    async def test_no_handle_no_request(self):
        fake = FakeJobApi()
        mgr, _ = self.manager(fake, handle=None)
        self.assertIsNone(await mgr.initialize())
        self.assertEqual(fake.calls, [])

    async def test_reload_on_failed_job_clears_without_polling(self):
        fake = FakeJobApi([status_payload("failed", 35, errorMessage="Portal unavailable")])
        mgr, store = self.manager(fake)
        snap = await mgr.initialize()
        self.assertEqual(snap.status, "failed")
        self.assertIsNone(store.get(HANDLE_KEY))
        self.assertFalse(mgr.tracking)
        await asyncio.sleep(0.05)
        self.assertEqual(len(fake.status_calls), 1)
        events = await self.collect(mgr)
        self.assertEqual([e.name for e in events], ["failed"])

    async def test_reload_on_missing_job_clears_handle(self):
        fake = FakeJobApi([])
        mgr, store = self.manager(fake)
        self.assertIsNone(await mgr.initialize())
        self.assertIsNone(store.get(HANDLE_KEY))

    async def test_polling_never_regresses_and_stops_at_terminal(self):
        fake = FakeJobApi([
            status_payload("processing", 40),
            status_payload("processing", 30),
            status_payload("completed", 100, resultCarriers=["Aetna"]),
        ])
        mgr, store = self.manager(fake)
        await mgr.initialize()
        self.assertEqual(store.get(HANDLE_KEY)["jobId"], "J1")
        events = await self.collect(mgr)
        self.assertEqual([(e.name, e.snapshot.progress) for e in events], [("progress", 40), ("completed", 100)])
        self.assertIsNone(store.get(HANDLE_KEY))
        calls = len(fake.status_calls)
        await asyncio.sleep(0.05)
        self.assertEqual(len(fake.status_calls), calls)

    async def test_push_transport(self):
        fake = FakeJobApi(
            [status_payload("processing", 5)],
            stream=sse(
                ("progress", status_payload("processing", 20)),
                ("progress", status_payload("processing", 10)),
                ("completed", status_payload("completed", 100)),
            ),
        )
        mgr, store = self.manager(fake, transport="push")
        await mgr.initialize()
        events = await self.collect(mgr)
        self.assertEqual([(e.name, e.snapshot.progress) for e in events],
                         [("progress", 5), ("progress", 20), ("completed", 100)])
        self.assertIsNone(store.get(HANDLE_KEY))

    async def test_push_timeout_then_caller_falls_back_to_polling(self):
        fake = FakeJobApi(
            [status_payload("processing", 5), status_payload("completed", 100)],
            stream=sse(("timeout", {"jobId": "J1", "error": "No activity on the event stream"})),
        )
        mgr, store = self.manager(fake, transport="push")
        await mgr.initialize()
        names = []

        async def run():
            async for event in mgr.events():
                names.append(event.name)
                if isinstance(event, jobstate.Timeout):
                    self.assertTrue(mgr.tracking)
                    mgr.start_polling()
        await asyncio.wait_for(run(), timeout=2)
        self.assertEqual(names, ["progress", "timeout", "completed"])
        self.assertIsNone(store.get(HANDLE_KEY))

    async def test_push_and_polling_together_never_regress(self):
        polls = [status_payload("processing", p) for p in (5, 50, 10, 70, 30, 45)]

        async def stream():
            for progress in (20, 60, 40, 80):
                yield sse(("progress", status_payload("processing", progress)))
                await asyncio.sleep(0.02)
            yield sse(("completed", status_payload("completed", 100, resultCarriers=["Aetna"])))

        async def handler(request):
            if request.url.path.endswith("/events"):
                return httpx.Response(200, content=stream(), headers={"Content-Type": "text/event-stream"})
            current = polls.pop(0) if len(polls) > 1 else polls[0]
            return httpx.Response(200, json=current)

        mgr, store = self.manager(handler, transport="push")
        await mgr.initialize()
        mgr.start_polling(0.005)
        events = await self.collect(mgr, limit=50)
        progress = [e.snapshot.progress for e in events]
        self.assertEqual(progress, sorted(progress))
        self.assertEqual([e.name for e in events].count("completed"), 1)
        self.assertEqual(events[-1].snapshot.result_carriers, ["Aetna"])
        self.assertIsNone(store.get(HANDLE_KEY))

    async def test_handle_persisted_again_on_progress(self):
        fake = FakeJobApi([status_payload("processing", 10)])
        mgr, store = self.manager(fake)
        await mgr.initialize()
        mgr.stop_polling()
        store.clear(HANDLE_KEY)
        mgr.observe(jobstate.JobSnapshot.from_payload(status_payload("processing", 5)))
        self.assertIsNone(store.get(HANDLE_KEY))
        mgr.observe(jobstate.JobSnapshot.from_payload(status_payload("processing", 20)))
        self.assertEqual(store.get(HANDLE_KEY), {"jobId": "J1", "subjectKey": None})
        mgr.observe(jobstate.JobSnapshot.from_payload(status_payload("completed", 100)))
        self.assertIsNone(store.get(HANDLE_KEY))

    async def test_terminal_processed_once(self):
        fake = FakeJobApi([status_payload("processing", 90)])
        mgr, store = self.manager(fake, transport="poll")
        await mgr.initialize()
        mgr.stop_polling()
        done = jobstate.JobSnapshot.from_payload(status_payload("completed", 100))
        results = [mgr.observe(done) for _ in range(3)]
        self.assertIsInstance(results[0], jobstate.Completed)
        self.assertEqual(results[1:], [None, None])
        self.assertIsNone(store.get(HANDLE_KEY))

    async def test_submit_queued_persists_handle(self):
        fake = FakeJobApi(
            [status_payload("pending", 0, position=2)],
            submit=(200, {"queued": True, "jobId": "J1", "position": 2}),
        )
        mgr, store = self.manager(fake, handle=None)
        result = await mgr.submit({"lastName": "Smith", "npn": "1", "ssn": "1234", "dob": "01/15/1980"},
                                  subject_key="npn:1")
        self.assertEqual(result, jobstate.Queued("J1", 2))
        self.assertEqual(store.get(HANDLE_KEY), {"jobId": "J1", "subjectKey": "npn:1"})
        self.assertEqual(mgr.snapshot.position, 2)

    async def test_submit_conflict_tracks_existing_job(self):
        fake = FakeJobApi([status_payload("processing", 50)],
                          submit=(409, {"jobId": "J1", "status": "processing"}))
        mgr, store = self.manager(fake, handle=None)
        result = await mgr.submit({})
        self.assertEqual(result, jobstate.Conflict("J1", "processing"))
        self.assertEqual(store.get(HANDLE_KEY)["jobId"], "J1")

    async def test_submit_rate_limited(self):
        fake = FakeJobApi(submit=(429, {"retryAfterSeconds": 120}))
        mgr, store = self.manager(fake, handle=None)
        self.assertEqual(await mgr.submit({}), jobstate.RateLimited(120))
        self.assertIsNone(store.get(HANDLE_KEY))
        self.assertFalse(mgr.tracking)

    async def test_submit_validation_error(self):
        fake = FakeJobApi(submit=(400, {"error": "Invalid verification request", "fieldErrors": [
            {"field": "ssn", "message": "SSN must be exactly 4 digits"},
            {"field": "dob", "message": "Date of birth must be MM/DD/YYYY"},
        ]}))
        mgr, _ = self.manager(fake, handle=None)
        with self.assertRaises(ValidationError) as ctx:
            await mgr.submit({})
        self.assertEqual(set(ctx.exception.field_errors), {"ssn", "dob"})


class JobApiClientTest(unittest.IsolatedAsyncioTestCase):
    def api(self, handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver")
        self.addAsyncCleanup(client.aclose)
        return JobApiClient(client=client)

    async def test_upload_document(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"success": True, "analysis": {"carriers": ["Aetna"]}})

        result = await self.api(handler).upload_document(b"%PDF-1.4 report", "report.pdf")
        self.assertEqual(result, jobstate.Immediate({"carriers": ["Aetna"]}))
        self.assertEqual(seen[0].url.path, "/api/v1/jobs/upload")
        self.assertIn(b'filename="report.pdf"', seen[0].content)
        self.assertIn(b"%PDF-1.4 report", seen[0].content)

    async def test_upload_rejected(self):
        def handler(request):
            return httpx.Response(400, json={"error": "Invalid document",
                                             "fieldErrors": [{"field": "file", "message": "INVALID_PDF"}]})

        with self.assertRaises(ValidationError) as ctx:
            await self.api(handler).upload_document(b"not a pdf")
        self.assertEqual(ctx.exception.field_errors, {"file": ["INVALID_PDF"]})


class PollingTaskTest(unittest.IsolatedAsyncioTestCase):
    async def test_stops_when_tick_returns_false(self):
        ticks = []

        async def tick():
            ticks.append(len(ticks))
            return len(ticks) < 3

        poller = PollingTask(tick, 0.001, immediate=True)
        await asyncio.wait_for(poller.wait(), timeout=1)
        self.assertEqual(ticks, [0, 1, 2])
        self.assertTrue(poller.done)

    async def test_wait_after_cancel(self):
        async def tick():
            return True

        poller = PollingTask(tick, 10)
        poller.cancel()
        await asyncio.wait_for(poller.wait(), timeout=1)
        self.assertTrue(poller.done)


class IterSseTest(unittest.IsolatedAsyncioTestCase):
    async def test_parse(self):
        async def lines():
            for line in [": keep-alive", "", "event: progress", 'data: {"progress":', "data: 10}", "",
                         "event: completed", "data: not-json", ""]:
                yield line
        frames = [f async for f in iter_sse(lines())]
        self.assertEqual(frames, [("progress", {"progress": 10})])


class JsonFileHandleStoreTest(unittest.TestCase):
    def test_survives_reload(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "state" / "handles.json"
            JsonFileHandleStore(path).set(HANDLE_KEY, {"jobId": "J1"})
            reloaded = JsonFileHandleStore(path)
            self.assertEqual(reloaded.get(HANDLE_KEY), {"jobId": "J1"})
            reloaded.clear(HANDLE_KEY)
            self.assertIsNone(JsonFileHandleStore(path).get(HANDLE_KEY))
