"""
Defines the JobSyncEngine, which owns the job store and keeps it in sync.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Mapping, Optional

import aiohttp

from .config import Settings
from .events import Event
from .exceptions import JobSyncError, SnapshotError
from .jobs import Job
from .merge import TerminalPolicy, apply_event
from .snapshot import SnapshotLoader
from .store import JobStore
from .stream import ConnectionState, EventStreamSubscriber


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobSyncEngine:
    """
    Combines the snapshot and the event stream into one live view of all jobs.

    `activate` loads the snapshot and only then subscribes to the stream, so a
    delta can never arrive before the job it refers to is known. `deactivate`
    abandons any snapshot in flight, closes the stream and cancels pending
    reconnects; nothing writes to the store afterwards.
    """

    def __init__(self, settings: Settings, *,
                 session: Optional[aiohttp.ClientSession] = None,
                 clock: Callable[[], datetime] = _utcnow,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        """
        Initializes the JobSyncEngine.

        Args:
            settings: Server location and timing configuration.
            session: HTTP session to use. If omitted, the engine creates one on
                activation and closes it on deactivation.
            clock: Returns the current time for started/completed stamps.
            sleep: Awaitable used for the stream's reconnect delay.
        """
        self.settings = settings
        self.clock = clock
        self.logger = logging.getLogger(__name__)
        self.terminal_policy = TerminalPolicy(settings.terminal_policy)
        self.error: Optional[str] = None

        self.store = JobStore()
        self.loader = SnapshotLoader(settings.snapshot_url, settings.request_timeout)
        self.subscriber = EventStreamSubscriber(
            settings.stream_url,
            self._on_stream_event,
            reconnect_delay=settings.reconnect_delay,
            sleep=sleep,
            on_state_change=self._on_connection_state,
        )

        self._session = session
        self._owns_session = session is None
        self._active = False
        self._loads_in_flight = 0
        self._buffer: Optional[List[Event]] = None
        self._has_opened = False
        self._resync_task: Optional[asyncio.Task] = None

    # ── Read-only view ────────────────────────────────────────────────

    @property
    def jobs(self) -> Mapping[str, Job]:
        return self.store.jobs

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_loading(self) -> bool:
        return self._loads_in_flight > 0

    @property
    def connection_state(self) -> ConnectionState:
        return self.subscriber.state

    @property
    def buffered_events(self) -> int:
        """Events held back until the snapshot in flight lands."""
        return len(self._buffer) if self._buffer is not None else 0

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def activate(self) -> bool:
        """
        Loads the snapshot, then subscribes to the event stream.

        Returns:
            True if the engine is now live, False if it was deactivated while
            the snapshot was loading.

        Raises:
            SnapshotError: If the snapshot could not be loaded. The store is
                left empty and the stream is not started; call `refresh` to
                retry.
        """
        if self._active:
            return True
        self._active = True
        self.error = None
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        self.logger.info(f"Activating job sync against {self.settings.server_url}")
        return await self.refresh()

    async def refresh(self) -> bool:
        """
        Reloads the full snapshot and replaces the store in one commit.

        A newer call supersedes an older one still in flight. Events that
        arrive while the load is running are held back and replayed on top of
        the new snapshot.

        Returns:
            True if the engine is still live. A load superseded by a newer one
            (another refresh or a reconnect resync) defers to that load and
            still returns True; False means the engine was deactivated meanwhile.

        Raises:
            JobSyncError: If the engine is not active.
            SnapshotError: If the snapshot fails; the store is cleared and the
                stream is stopped.
        """
        if not self._active:
            raise JobSyncError("Cannot refresh an inactive engine.")
        if not await self._load_snapshot(fatal=True):
            return self._active
        if not self.subscriber.active:
            self._has_opened = False
            self.subscriber.start(self._session)
        return True

    async def deactivate(self):
        """Tears down the stream, abandons pending loads and releases the session."""
        if not self._active:
            return
        self.logger.info("Deactivating job sync.")
        self._active = False
        self.loader.invalidate()

        if self._resync_task is not None and not self._resync_task.done():
            self._resync_task.cancel()
            await asyncio.gather(self._resync_task, return_exceptions=True)
        self._resync_task = None

        await self.subscriber.stop()
        self._buffer = None

        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> 'JobSyncEngine':
        await self.activate()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.deactivate()

    def on_visibility_change(self, visible: bool):
        """Forwards host visibility changes to the stream subscriber."""
        if self._active:
            self.subscriber.on_visibility_change(visible)

    def remove_job(self, job_id: str) -> bool:
        """Drops a job after the server has confirmed its deletion."""
        removed = self.store.discard(job_id)
        if removed:
            self.logger.info(f"Job {job_id} removed from the view.")
        return removed

    # ── Internals ─────────────────────────────────────────────────────

    async def _load_snapshot(self, *, fatal: bool) -> bool:
        self._loads_in_flight += 1
        if self.subscriber.active and self._buffer is None:
            self._buffer = []
        try:
            jobs = await self.loader.load(self._session)
        except SnapshotError as e:
            if not fatal:
                self.logger.warning(f"Resync failed: {e}. Keeping the current view.")
                self._flush_buffer()
                return False
            self.error = str(e)
            self.logger.error(f"Error fetching initial jobs: {e}")
            self._buffer = None
            self.store.clear()
            if self.subscriber.active:
                await self.subscriber.stop()
            raise
        finally:
            self._loads_in_flight -= 1

        if jobs is None or not self._active:
            return False
        self.error = None
        self.store.commit(jobs, 'snapshot')
        self._flush_buffer()
        return True

    def _flush_buffer(self):
        events, self._buffer = self._buffer, None
        if not events:
            return
        self.logger.debug(f"Replaying {len(events)} event(s) received during snapshot load.")
        jobs = self.store.jobs
        for event in events:
            jobs = apply_event(jobs, event, self.clock(), self.terminal_policy)
        self.store.commit(jobs, 'replay')

    def _on_stream_event(self, event: Event):
        if not self._active:
            return
        if self._buffer is not None:
            self._buffer.append(event)
            return
        jobs = apply_event(self.store.jobs, event, self.clock(), self.terminal_policy)
        self.store.commit(jobs, event[0])

    def _on_connection_state(self, state: ConnectionState):
        if state != ConnectionState.OPEN or not self._active:
            return
        reopened, self._has_opened = self._has_opened, True
        if not reopened or not self.settings.resync_on_reconnect:
            return
        if self._resync_task is not None and not self._resync_task.done():
            return
        self.logger.info("Event stream reconnected; resyncing snapshot.")
        if self._buffer is None:
            self._buffer = []
        self._resync_task = asyncio.create_task(self._load_snapshot(fatal=False), name="Snapshot-Resync")
        self._resync_task.add_done_callback(self._handle_task_exception)

    def _handle_task_exception(self, task: asyncio.Task) -> None:
        """Callback to log exceptions from fire-and-forget tasks."""
        try:
            task.result()
        except asyncio.CancelledError:
            pass  # Expected
        except Exception:
            self.logger.exception(f"Exception in background task {task.get_name()}:")
