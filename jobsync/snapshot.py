"""Fetches the server's full job listing in one request."""
import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp
from pydantic import ValidationError

from .constants import REQUEST_HEADERS, REQUEST_TIMEOUT
from .exceptions import SnapshotError
from .jobs import Job


class SnapshotLoader:
    """
    Loads the complete job collection from the snapshot endpoint.

    Each call to `load` opens a new epoch. Only the newest epoch's result is
    ever returned; an older request that finishes late yields None, whether it
    succeeded or failed.
    """

    def __init__(self, url: str, timeout: float = REQUEST_TIMEOUT):
        """
        Initializes the SnapshotLoader.

        Args:
            url: Absolute URL of the snapshot endpoint.
            timeout: Total timeout for the request, in seconds.
        """
        self.url = url
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)
        self._epoch = 0

    @property
    def epoch(self) -> int:
        return self._epoch

    def invalidate(self):
        """Makes any request still in flight stale."""
        self._epoch += 1

    async def load(self, session: aiohttp.ClientSession) -> Optional[Dict[str, Job]]:
        """
        Fetches and parses the snapshot.

        Args:
            session: The HTTP session to issue the request with.

        Returns:
            A fresh mapping of job id to Job, or None if a newer load or an
            invalidation superseded this one while it was in flight.

        Raises:
            SnapshotError: On transport errors, non-success responses, or a
                body that is not a JSON array.
        """
        self._epoch += 1
        epoch = self._epoch
        self.logger.info(f"Fetching job snapshot (epoch {epoch})...")
        try:
            payload = await self._fetch(session)
        except SnapshotError:
            if epoch != self._epoch:
                self.logger.debug(f"Ignoring failure of stale snapshot epoch {epoch}.")
                return None
            raise

        if epoch != self._epoch:
            self.logger.debug(f"Discarding stale snapshot from epoch {epoch} (current {self._epoch}).")
            return None

        jobs = self.parse(payload)
        self.logger.info(f"Snapshot loaded: {len(jobs)} job(s).")
        return jobs

    async def _fetch(self, session: aiohttp.ClientSession) -> Any:
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with session.get(self.url, headers=REQUEST_HEADERS, timeout=timeout) as r:
                r.raise_for_status()
                body = await r.text()
        except aiohttp.ClientResponseError as e:
            raise SnapshotError(f"Failed to fetch initial jobs: {e.status} {e.message}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SnapshotError(f"Failed to fetch initial jobs: {e!r}") from e

        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise SnapshotError(f"Snapshot response is not valid JSON: {e}") from e

    def parse(self, payload: Any) -> Dict[str, Job]:
        """
        Builds the job mapping from a decoded snapshot body.

        A null body is an empty queue. Entries that fail validation are
        skipped; for duplicate ids the last entry wins.
        """
        if payload is None:
            return {}
        if not isinstance(payload, list):
            raise SnapshotError(f"Snapshot must be a JSON array, got {type(payload).__name__}.")

        jobs: Dict[str, Job] = {}
        for index, entry in enumerate(payload):
            try:
                job = Job.model_validate(entry)
            except ValidationError as e:
                self.logger.warning(f"Skipping invalid snapshot entry #{index}: {e.error_count()} validation error(s).")
                continue
            if job.id in jobs:
                self.logger.warning(f"Duplicate job ID in snapshot: {job.id}. Keeping the later entry.")
            jobs[job.id] = job
        return jobs
