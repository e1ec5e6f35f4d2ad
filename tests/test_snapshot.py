"""Tests for the snapshot loader, against a local fake server."""

import asyncio

import aiohttp
import pytest

from jobsync.exceptions import SnapshotError
from jobsync.snapshot import SnapshotLoader
from support import FakeJobServer, job_payload, wait_until


class TestParse:
    """Test turning a decoded snapshot body into the job mapping."""

    def setup_method(self):
        self.loader = SnapshotLoader('http://localhost/api/downloads')

    def test_builds_mapping_keyed_by_id(self):
        jobs = self.loader.parse([job_payload('a'), job_payload('b')])
        assert list(jobs) == ['a', 'b']
        assert jobs['b'].original_url.endswith('/b')

    def test_null_body_is_an_empty_queue(self):
        assert self.loader.parse(None) == {}

    def test_non_array_body_raises(self):
        with pytest.raises(SnapshotError):
            self.loader.parse({'jobs': []})

    def test_invalid_entries_are_skipped(self, caplog):
        jobs = self.loader.parse([job_payload('a'), {'title': 'no id'}, 'junk'])
        assert list(jobs) == ['a']
        assert 'Skipping invalid snapshot entry #1' in caplog.text

    def test_duplicate_ids_keep_the_later_entry(self):
        jobs = self.loader.parse([job_payload('a', title='first'), job_payload('a', title='second')])
        assert jobs['a'].title == 'second'


def test_loads_jobs_from_server():
    async def scenario():
        async with FakeJobServer() as server, aiohttp.ClientSession() as session:
            server.jobs = [job_payload('a'), job_payload('b', status='processing')]
            loader = SnapshotLoader(server.settings().snapshot_url)
            jobs = await loader.load(session)
            assert sorted(jobs) == ['a', 'b']
            assert server.snapshot_requests == 1

    asyncio.run(scenario())


def test_server_error_raises_with_status():
    async def scenario():
        async with FakeJobServer() as server, aiohttp.ClientSession() as session:
            server.snapshot_status = 500
            loader = SnapshotLoader(server.settings().snapshot_url)
            with pytest.raises(SnapshotError, match='500'):
                await loader.load(session)

    asyncio.run(scenario())


@pytest.mark.parametrize('body, expected', [
    ('not json', SnapshotError),
    ('{"jobs": []}', SnapshotError),
])
def test_bad_bodies_raise(body, expected):
    async def scenario():
        async with FakeJobServer() as server, aiohttp.ClientSession() as session:
            server.snapshot_body = body
            loader = SnapshotLoader(server.settings().snapshot_url)
            with pytest.raises(expected):
                await loader.load(session)

    asyncio.run(scenario())


def test_null_body_from_server_is_empty():
    async def scenario():
        async with FakeJobServer() as server, aiohttp.ClientSession() as session:
            server.snapshot_body = 'null'
            loader = SnapshotLoader(server.settings().snapshot_url)
            assert await loader.load(session) == {}

    asyncio.run(scenario())


def test_connection_refused_raises():
    async def scenario():
        async with aiohttp.ClientSession() as session:
            loader = SnapshotLoader('http://127.0.0.1:1/api/downloads', timeout=2)
            with pytest.raises(SnapshotError, match='Failed to fetch initial jobs'):
                await loader.load(session)

    asyncio.run(scenario())


def test_newer_load_supersedes_older_one():
    async def scenario():
        async with FakeJobServer() as server, aiohttp.ClientSession() as session:
            server.jobs = [job_payload('old')]
            gate = server.gate_snapshot(1)
            loader = SnapshotLoader(server.settings().snapshot_url)

            first = asyncio.create_task(loader.load(session))
            await wait_until(lambda: server.snapshot_requests == 1)
            server.jobs = [job_payload('new')]
            second = await loader.load(session)
            gate.set()

            assert list(second) == ['new']
            assert await first is None

    asyncio.run(scenario())


def test_stale_failure_is_swallowed():
    async def scenario():
        async with FakeJobServer() as server, aiohttp.ClientSession() as session:
            gate = server.gate_snapshot(1)
            loader = SnapshotLoader(server.settings().snapshot_url)

            first = asyncio.create_task(loader.load(session))
            await wait_until(lambda: server.snapshot_requests == 1)
            assert await loader.load(session) == {}
            server.snapshot_status = 500
            gate.set()

            assert await first is None

    asyncio.run(scenario())


def test_invalidate_discards_result_in_flight():
    async def scenario():
        async with FakeJobServer() as server, aiohttp.ClientSession() as session:
            server.jobs = [job_payload('a')]
            gate = server.gate_snapshot(1)
            loader = SnapshotLoader(server.settings().snapshot_url)

            pending = asyncio.create_task(loader.load(session))
            await wait_until(lambda: server.snapshot_requests == 1)
            loader.invalidate()
            gate.set()

            assert await pending is None

    asyncio.run(scenario())
