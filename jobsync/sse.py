"""
Incremental decoder for the `text/event-stream` wire format.

Lines are fed one at a time as they arrive from the transport; a complete
message is returned when the blank line that terminates it is seen.
"""

from dataclasses import dataclass
from typing import List, Optional

from .constants import DEFAULT_SSE_EVENT


@dataclass(frozen=True)
class SSEMessage:
    """One dispatched server-sent event."""
    event: str
    data: str
    last_event_id: str = ''


class SSEDecoder:
    """
    Decodes server-sent events line by line.

    Follows the EventSource parsing rules: `:` starts a comment, `data` lines
    accumulate with newline separators, `event` names the next message, `id`
    persists across messages, and a blank line dispatches. Messages without any
    data are not dispatched.
    """

    def __init__(self):
        self.last_event_id: str = ''
        self.retry_ms: Optional[int] = None
        self._event_type: str = ''
        self._data: List[str] = []
        self._seen_first_line = False

    def feed(self, raw_line) -> Optional[SSEMessage]:
        """
        Processes one line of the stream.

        Args:
            raw_line: A line as bytes or str, with or without its terminator.

        Returns:
            The completed message if this line dispatched one, else None.
        """
        if isinstance(raw_line, bytes):
            raw_line = raw_line.decode('utf-8', 'replace')
        line = raw_line.rstrip('\r\n')
        if not self._seen_first_line:
            self._seen_first_line = True
            line = line.lstrip('\ufeff')

        if not line:
            return self._dispatch()
        if line.startswith(':'):
            return None

        field, sep, value = line.partition(':')
        if sep and value.startswith(' '):
            value = value[1:]

        if field == 'event':
            self._event_type = value
        elif field == 'data':
            self._data.append(value)
        elif field == 'id':
            if '\0' not in value:
                self.last_event_id = value
        elif field == 'retry':
            if value.isdigit():
                self.retry_ms = int(value)
        return None

    def _dispatch(self) -> Optional[SSEMessage]:
        event_type, data = self._event_type, self._data
        self._event_type, self._data = '', []
        if not data:
            return None
        return SSEMessage(
            event=event_type or DEFAULT_SSE_EVENT,
            data='\n'.join(data),
            last_event_id=self.last_event_id,
        )
