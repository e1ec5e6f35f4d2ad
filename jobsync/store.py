"""Observable store holding the client's current view of all jobs."""
import logging
from types import MappingProxyType
from typing import Callable, List, Mapping, Optional

from .jobs import Job

Listener = Callable[[Mapping[str, Job]], None]


class JobStore:
    """
    Maps job id to the latest fully merged `Job`.

    Readers get a read-only mapping. Every change goes through `commit`, which
    swaps in a new mapping object and then notifies listeners, so a listener
    never sees a half-applied change.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._jobs: Mapping[str, Job] = MappingProxyType({})
        self._listeners: List[Listener] = []
        self.version: int = 0

    @property
    def jobs(self) -> Mapping[str, Job]:
        return self._jobs

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id) -> bool:
        return job_id in self._jobs

    def __iter__(self):
        return iter(self._jobs)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Registers a change listener.

        Args:
            listener: Called with the new mapping after every commit.

        Returns:
            A function that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def commit(self, jobs: Mapping[str, Job], reason: str = 'update') -> bool:
        """
        Replaces the current mapping.

        Args:
            jobs: The complete next mapping. Passing the current mapping
                object back is a no-op.
            reason: Short label for the debug log.

        Returns:
            True if the store changed.
        """
        if jobs is self._jobs:
            return False
        if not isinstance(jobs, MappingProxyType):
            jobs = MappingProxyType(dict(jobs))
        self._jobs = jobs
        self.version += 1
        self.logger.debug(f"Store commit #{self.version} ({reason}): {len(jobs)} job(s).")
        self._notify()
        return True

    def discard(self, job_id: str) -> bool:
        """Drops a job whose removal was confirmed by the server."""
        if job_id not in self._jobs:
            return False
        remaining = {key: job for key, job in self._jobs.items() if key != job_id}
        return self.commit(remaining, f'remove {job_id}')

    def clear(self) -> bool:
        if not self._jobs:
            return False
        return self.commit({}, 'clear')

    def _notify(self):
        current = self._jobs
        for listener in list(self._listeners):
            try:
                listener(current)
            except Exception:
                self.logger.exception(f"Store listener {listener!r} failed:")
