import logging
import sys
from pathlib import Path

import pytest

# Ensure repo root is on sys.path so `import jobsync...` works without installing
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from support import T1, make_job  # noqa: E402


@pytest.fixture
def clock():
    """A frozen clock returning T1."""
    return lambda: T1


@pytest.fixture
def queued_job():
    return make_job('a', title='Live at Red Rocks')


@pytest.fixture(autouse=True)
def _debug_logging(caplog):
    caplog.set_level(logging.DEBUG, logger='jobsync')
