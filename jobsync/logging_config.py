"""
Configures logging for the sync engine and its console viewer.

Records go to `latest.log` in the log directory and to stderr. The log from
the previous run is kept under a timestamped name.
"""

import sys
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from .constants import LOG_DIR

LOG_FORMAT = '%(asctime)s - %(levelname)-8s - %(name)-18s - %(message)s'
LATEST_LOG_NAME = 'latest.log'


def _archive_previous_log(latest: Path):
    """Renames last run's log after its modification time."""
    if not latest.exists():
        return
    try:
        stamp = datetime.fromtimestamp(latest.stat().st_mtime).strftime('%Y-%m-%d_%H-%M-%S')
        latest.rename(latest.with_name(f"{stamp}.log"))
    except OSError as e:
        print(f"Could not archive previous log {latest}: {e}", file=sys.stderr)


def _handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_level_str: str = 'INFO', log_dir: Optional[Path] = None):
    """
    Installs the file and stderr handlers on the root logger.

    Args:
        log_level_str: Minimum level for both handlers (e.g., 'INFO').
        log_dir: Where log files live; defaults to the user data log directory.
    """
    log_dir = log_dir or LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    latest = log_dir / LATEST_LOG_NAME
    _archive_previous_log(latest)

    level = getattr(logging, log_level_str.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)  # handlers do the filtering
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(_handler(logging.FileHandler(str(latest), encoding='utf-8'), level, formatter))
    root.addHandler(_handler(logging.StreamHandler(sys.stderr), level, formatter))

    logging.getLogger(__name__).info(f"Logging to {latest} at {logging.getLevelName(level)}.")
