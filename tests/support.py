"""
Shared test helpers: job factories and a local fake of the download server.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from aiohttp import web
from aiohttp.test_utils import TestServer

from jobsync.config import Settings
from jobsync.jobs import Job, ProgressUpdate

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
T1 = datetime(2024, 5, 1, 12, 5, 0, tzinfo=timezone.utc)
T2 = datetime(2024, 5, 1, 12, 10, 0, tzinfo=timezone.utc)


def job_payload(job_id: str = 'a', **overrides) -> Dict[str, Any]:
    """A full job record in the server's wire format."""
    payload = {
        'id': job_id,
        'originalUrl': f'https://play.nugs.net/release/{job_id}',
        'options': {'forceVideo': False, 'skipVideos': True, 'skipChapters': False},
        'status': 'queued',
        'createdAt': T0.isoformat(),
        'progress': 0,
        'speedBps': 0,
    }
    payload.update(overrides)
    return payload


def make_job(job_id: str = 'a', **overrides) -> Job:
    return Job.model_validate(job_payload(job_id, **overrides))


def delta(job_id: str = 'a', **fields) -> ProgressUpdate:
    """A progress update built from camelCase wire fields."""
    return ProgressUpdate.model_validate({'jobId': job_id, **fields})


def sse_frame(data: Any, event: Optional[str] = None, event_id: Optional[str] = None) -> bytes:
    lines = []
    if event_id is not None:
        lines.append(f'id: {event_id}')
    if event is not None:
        lines.append(f'event: {event}')
    text = data if isinstance(data, str) else json.dumps(data)
    lines.extend(f'data: {line}' for line in text.split('\n'))
    return ('\n'.join(lines) + '\n\n').encode('utf-8')


def envelope(kind: str, data: Any) -> bytes:
    """An unnamed SSE message carrying a `{type, data}` envelope."""
    return sse_frame({'type': kind, 'data': data})


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 3.0, interval: float = 0.01):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


class FakeJobServer:
    """
    Serves `/api/downloads` and `/api/status-stream` on a local port.

    Streams stay open until `drop_streams` or `close`; frames queued in
    `stream_preamble` are written to every new stream right after it opens.
    """

    def __init__(self):
        self.jobs: Optional[List[Dict[str, Any]]] = []
        self.snapshot_status = 200
        self.snapshot_body: Optional[str] = None
        self.snapshot_gates: Dict[int, asyncio.Event] = {}
        self.stream_status = 200
        self.stream_preamble: List[bytes] = []
        self.hold_streams = True

        self.snapshot_requests = 0
        self.stream_connections = 0
        self.stream_request_headers: List[Any] = []
        self.request_log: List[str] = []

        self._open_streams: List[tuple] = []
        self._closing = False
        app = web.Application()
        app.router.add_get('/api/downloads', self._snapshot)
        app.router.add_get('/api/status-stream', self._stream)
        self.server = TestServer(app)

    @property
    def url(self) -> str:
        return str(self.server.make_url('/'))

    @property
    def open_streams(self) -> int:
        return len(self._open_streams)

    def settings(self, **overrides) -> Settings:
        return Settings(server_url=self.url, **overrides)

    async def __aenter__(self) -> 'FakeJobServer':
        await self.server.start_server()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        self._closing = True
        for gate in self.snapshot_gates.values():
            gate.set()
        self.drop_streams()
        await self.server.close()

    def gate_snapshot(self, request_number: int) -> asyncio.Event:
        """Holds the n-th snapshot request until the returned event is set."""
        gate = asyncio.Event()
        self.snapshot_gates[request_number] = gate
        return gate

    async def send(self, frame: bytes):
        """Writes one raw SSE frame to every open stream."""
        for response, _ in list(self._open_streams):
            try:
                await response.write(frame)
            except (ConnectionError, RuntimeError):
                pass

    def drop_streams(self):
        """Ends every open stream from the server side."""
        for _, released in list(self._open_streams):
            released.set()

    async def _snapshot(self, request: web.Request) -> web.Response:
        self.snapshot_requests += 1
        self.request_log.append('snapshot')
        gate = self.snapshot_gates.get(self.snapshot_requests)
        jobs = self.jobs
        if gate is not None:
            await gate.wait()
            jobs = self.jobs
        if self.snapshot_status != 200:
            return web.json_response({'error': 'internal error'}, status=self.snapshot_status)
        body = self.snapshot_body if self.snapshot_body is not None else json.dumps(jobs)
        return web.Response(text=body, content_type='application/json')

    async def _stream(self, request: web.Request) -> web.StreamResponse:
        self.stream_connections += 1
        self.request_log.append('stream')
        self.stream_request_headers.append(request.headers.copy())
        if self.stream_status != 200:
            return web.Response(status=self.stream_status, text='unavailable')

        response = web.StreamResponse(headers={'Content-Type': 'text/event-stream', 'Cache-Control': 'no-cache'})
        await response.prepare(request)
        for frame in self.stream_preamble:
            await response.write(frame)
        if not self.hold_streams or self._closing:
            return response

        released = asyncio.Event()
        entry = (response, released)
        self._open_streams.append(entry)
        try:
            await released.wait()
        finally:
            self._open_streams.remove(entry)
        return response
