"""
Defines application-wide constants, paths, and wire names.

This module centralizes the user data locations, the server's endpoint paths,
and the event and timing constants shared by the stream and merge layers.
"""

from pathlib import Path

from ._version import __version__

# --- User Data Locations ---
USER_DATA_DIR: Path = Path.home() / '.jobsync'
CONFIG_FILE: Path = USER_DATA_DIR / 'config.json'
LOG_DIR: Path = USER_DATA_DIR / 'logs'

# --- Server Endpoints ---
DEFAULT_SERVER_URL = 'http://localhost:8080'
SNAPSHOT_PATH = '/api/downloads'
STREAM_PATH = '/api/status-stream'

REQUEST_HEADERS = {
    'User-Agent': f'jobsync/{__version__}',
    'Accept': 'application/json',
}
STREAM_HEADERS = {
    'User-Agent': f'jobsync/{__version__}',
    'Accept': 'text/event-stream',
    'Cache-Control': 'no-cache',
}
REQUEST_TIMEOUT = 10.0  # seconds, snapshot request

# --- Event Stream ---
RECONNECT_DELAY = 2.0  # seconds between a drop and the next attempt
DEFAULT_SSE_EVENT = 'message'
EVENT_JOB_ADDED = 'jobAdded'
EVENT_PROGRESS_UPDATE = 'progressUpdate'

# --- Progress ---
COMPLETE_PROGRESS = 100.0
