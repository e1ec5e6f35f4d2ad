"""Maintains the long-lived server-sent event connection and its reconnect policy."""
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

import aiohttp

from .constants import EVENT_JOB_ADDED, EVENT_PROGRESS_UPDATE, RECONNECT_DELAY, STREAM_HEADERS
from .events import Event, decode_event
from .exceptions import EventDecodeError
from .sse import SSEDecoder, SSEMessage


class ConnectionState(str, Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    OPEN = 'open'


class EventStreamSubscriber:
    """
    Subscribes to the job event stream and keeps it alive.

    The connection moves DISCONNECTED -> CONNECTING -> OPEN and falls back to
    DISCONNECTED on any transport error or when the server ends the stream.
    While the subscriber is active, a drop schedules a new attempt after
    `reconnect_delay` seconds, indefinitely. Decoded `jobAdded` and
    `progressUpdate` events are handed to `on_event` in delivery order.
    """

    HANDLED_EVENTS = frozenset({EVENT_JOB_ADDED, EVENT_PROGRESS_UPDATE})

    def __init__(self, url: str, on_event: Callable[[Event], None], *,
                 reconnect_delay: float = RECONNECT_DELAY,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 on_state_change: Optional[Callable[['ConnectionState'], None]] = None):
        """
        Initializes the EventStreamSubscriber.

        Args:
            url: Absolute URL of the event stream endpoint.
            on_event: Receives every decoded, recognized event.
            reconnect_delay: Seconds to wait between a drop and the next attempt.
            sleep: Awaitable used for the reconnect delay; tests inject their own.
            on_state_change: Optional observer for connection state changes.
        """
        self.url = url
        self.on_event = on_event
        self.reconnect_delay = reconnect_delay
        self.on_state_change = on_state_change
        self.logger = logging.getLogger(__name__)
        self.state: ConnectionState = ConnectionState.DISCONNECTED
        self.last_event_id: str = ''
        self.connection_attempts: int = 0
        self.server_retry_ms: Optional[int] = None
        self._sleep = sleep
        self._session: Optional[aiohttp.ClientSession] = None
        self._active = False
        self._visible = True
        self._connection_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def start(self, session: aiohttp.ClientSession):
        """Activates the subscriber and opens the first connection."""
        if self._active:
            return
        self._session = session
        self._active = True
        self._connect_now()

    async def stop(self):
        """Closes the connection and cancels any pending reconnect."""
        self._active = False
        current = asyncio.current_task()
        tasks = [task for task in (self._reconnect_task, self._connection_task)
                 if task is not None and not task.done() and task is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._reconnect_task = None
        self._connection_task = None
        self._session = None
        self._set_state(ConnectionState.DISCONNECTED)
        self.logger.info("Event stream subscriber stopped.")

    def on_visibility_change(self, visible: bool):
        """
        Reacts to the host becoming hidden or visible.

        Coming back into view with the connection down reconnects at once
        instead of waiting out the reconnect delay.
        """
        was_hidden = not self._visible
        self._visible = visible
        if visible and was_hidden and self._active and self.state == ConnectionState.DISCONNECTED:
            self.logger.info("Visible again with the event stream down; reconnecting now.")
            self._connect_now()

    def _connect_now(self):
        if not self._active or self.state != ConnectionState.DISCONNECTED:
            return
        if self._connection_task is not None and not self._connection_task.done():
            return
        self._cancel_reconnect()
        self._set_state(ConnectionState.CONNECTING)
        self._connection_task = asyncio.create_task(self._run_connection(), name="Event-Stream")
        self._connection_task.add_done_callback(self._handle_task_exception)

    async def _run_connection(self):
        self.connection_attempts += 1
        self.logger.info(f"Connecting to event stream {self.url} (attempt {self.connection_attempts})...")
        headers = dict(STREAM_HEADERS)
        if self.last_event_id:
            headers['Last-Event-ID'] = self.last_event_id

        cancelled = False
        try:
            timeout = aiohttp.ClientTimeout(total=None, sock_connect=10, sock_read=None)
            async with self._session.get(self.url, headers=headers, timeout=timeout) as r:
                r.raise_for_status()
                self._set_state(ConnectionState.OPEN)
                self.logger.info("Event stream open.")
                decoder = SSEDecoder()
                decoder.last_event_id = self.last_event_id
                async for line in r.content:
                    message = decoder.feed(line)
                    if decoder.retry_ms is not None and decoder.retry_ms != self.server_retry_ms:
                        self.server_retry_ms = decoder.retry_ms
                        self.logger.info(
                            f"Server suggests a {self.server_retry_ms} ms reconnect delay; "
                            f"keeping the configured {self.reconnect_delay:.1f}s."
                        )
                    if message is not None:
                        self.last_event_id = decoder.last_event_id
                        self._handle_message(message)
            self.logger.warning("Event stream ended by the server.")
        except asyncio.CancelledError:
            cancelled = True
            raise
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"Event stream rejected: {e.status} {e.message}")
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            # ValueError: aiohttp's line reader rejects oversized lines.
            self.logger.error(f"Lost connection to status updates: {e!r}")
        finally:
            self._set_state(ConnectionState.DISCONNECTED)
            if self._active and not cancelled:
                self._schedule_reconnect()

    def _handle_message(self, message: SSEMessage):
        try:
            event = decode_event(message)
        except EventDecodeError as e:
            self.logger.warning(f"Failed to parse SSE event data: {e}. Data: {message.data[:200]!r}")
            return

        kind, payload = event
        if kind not in self.HANDLED_EVENTS:
            self.logger.info(f"Dropping '{kind}' event: {str(payload)[:200]}")
            return
        try:
            self.on_event(event)
        except Exception:
            self.logger.exception(f"Handler failed for '{kind}' event:")

    def _schedule_reconnect(self):
        self._cancel_reconnect()
        self.logger.info(f"Reconnecting to event stream in {self.reconnect_delay:.1f}s...")
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay(), name="Event-Stream-Reconnect")
        self._reconnect_task.add_done_callback(self._handle_task_exception)

    async def _reconnect_after_delay(self):
        await self._sleep(self.reconnect_delay)
        self._connect_now()

    def _cancel_reconnect(self):
        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._reconnect_task = None

    def _set_state(self, state: ConnectionState):
        if state == self.state:
            return
        self.logger.debug(f"Event stream state: {self.state.value} -> {state.value}")
        self.state = state
        if self.on_state_change is not None:
            try:
                self.on_state_change(state)
            except Exception:
                self.logger.exception("Connection state observer failed:")

    def _handle_task_exception(self, task: asyncio.Task) -> None:
        """Callback to log exceptions from background tasks."""
        try:
            task.result()
        except asyncio.CancelledError:
            pass  # Expected on stop
        except Exception:
            self.logger.exception(f"Exception in background task {task.get_name()}:")
