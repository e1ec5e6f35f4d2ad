"""
Turns raw server-sent messages into typed `(kind, payload)` events.

The server may either name the event in the SSE `event:` field, in which case
the data is the record itself, or send an unnamed message whose data is a JSON
envelope `{"type": ..., "data": ...}`.
"""

import json
from typing import Any, Tuple

from pydantic import ValidationError

from .constants import DEFAULT_SSE_EVENT, EVENT_JOB_ADDED, EVENT_PROGRESS_UPDATE
from .exceptions import EventDecodeError
from .jobs import Job, ProgressUpdate
from .sse import SSEMessage

Event = Tuple[str, Any]

_PAYLOAD_MODELS = {
    EVENT_JOB_ADDED: Job,
    EVENT_PROGRESS_UPDATE: ProgressUpdate,
}


def _loads(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise EventDecodeError(f"Event data is not valid JSON: {e}") from e


def decode_event(message: SSEMessage) -> Event:
    """
    Decodes one SSE message.

    Args:
        message: The dispatched message.

    Returns:
        A `(kind, payload)` tuple. For `jobAdded` the payload is a `Job`, for
        `progressUpdate` a `ProgressUpdate`; any other kind carries the raw
        decoded JSON (or the raw text for named events that are not JSON).

    Raises:
        EventDecodeError: If the data is not valid JSON, the envelope has no
            type, or a known payload fails validation.
    """
    if message.event == DEFAULT_SSE_EVENT:
        envelope = _loads(message.data)
        if not isinstance(envelope, dict) or not isinstance(envelope.get('type'), str):
            raise EventDecodeError("Event envelope must be an object with a string 'type'")
        kind, data = envelope['type'], envelope.get('data')
    elif message.event in _PAYLOAD_MODELS:
        kind, data = message.event, _loads(message.data)
    else:
        try:
            return message.event, json.loads(message.data)
        except json.JSONDecodeError:
            return message.event, message.data

    model = _PAYLOAD_MODELS.get(kind)
    if model is None:
        return kind, data
    try:
        return kind, model.model_validate(data)
    except ValidationError as e:
        raise EventDecodeError(f"Malformed '{kind}' payload: {e.error_count()} validation error(s)") from e
