"""
Pure functions that fold stream events into a job mapping.

Nothing here mutates its inputs: every change produces a new `Job` and a new
mapping, and an event that changes nothing returns the very same mapping
object so callers can detect no-ops by identity.
"""

import logging
import math
from datetime import datetime
from enum import Enum
from typing import Dict, Mapping, Optional

from .constants import COMPLETE_PROGRESS, EVENT_JOB_ADDED, EVENT_PROGRESS_UPDATE
from .events import Event
from .jobs import Job, JobStatus, ProgressUpdate

logger = logging.getLogger(__name__)

JobMap = Mapping[str, Job]

# Fields copied verbatim from a delta whenever the server sent them.
_SPARSE_FIELDS = ('current_file', 'current_track', 'total_tracks', 'speed_bps')
# Fields that only ever appear; an empty value never clears them.
_MONOTONIC_FIELDS = ('title', 'artwork_url')


class TerminalPolicy(str, Enum):
    """What to do with a delta that moves a finished job to another status."""
    IGNORE = 'ignore'
    ACCEPT = 'accept'


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def track_progress(current_track: int, total_tracks: int) -> float:
    """
    Percentage of completed tracks; the track in flight does not count.

    Out-of-range counters are clamped to [0, 100] so a track-based value is
    never mistaken for the indeterminate marker.
    """
    percent = round_half_up((current_track - 1) / total_tracks * 100)
    return float(min(max(percent, 0), COMPLETE_PROGRESS))


def progress_from_update(update: ProgressUpdate) -> Optional[float]:
    """
    Derives the job's new progress from a delta.

    Track counters win over the raw percentage. A negative percentage is the
    indeterminate marker and passes through untouched.

    Returns:
        The new progress, or None if the delta says nothing about progress.
    """
    if update.has('current_track') and update.has('total_tracks') and update.total_tracks > 0:
        return track_progress(update.current_track, update.total_tracks)
    if update.has('percentage'):
        if update.percentage < 0:
            return update.percentage
        return min(update.percentage, COMPLETE_PROGRESS)
    return None


def merge_progress(job: Job, update: ProgressUpdate, now: datetime,
                   policy: TerminalPolicy = TerminalPolicy.ACCEPT) -> Optional[Job]:
    """
    Applies a sparse delta to one job.

    Args:
        job: The current record.
        update: The delta; only fields it actually carries are applied.
        now: Timestamp used for started_at / completed_at stamping.
        policy: Handling of status changes on an already finished job.

    Returns:
        The merged record, or None if the policy rejected the delta.
    """
    status = update.status if update.has('status') else None

    if status is not None and job.status.is_terminal and status != job.status:
        if policy == TerminalPolicy.IGNORE:
            logger.warning(f"Ignoring status '{status.value}' for job {job.id}: already {job.status.value}.")
            return None
        logger.info(f"Job {job.id} re-opened from {job.status.value} to {status.value}.")

    if update.has('message'):
        logger.debug(f"[Progress Job {job.id}] {update.message}")

    changes: Dict[str, object] = {}
    if status is not None:
        changes['status'] = status
    for name in _SPARSE_FIELDS:
        if update.has(name):
            changes[name] = getattr(update, name)
    for name in _MONOTONIC_FIELDS:
        value = getattr(update, name)
        if value:
            changes[name] = value

    progress = progress_from_update(update)
    if progress is not None:
        changes['progress'] = progress

    if status == JobStatus.FAILED:
        if update.has('message'):
            changes['error_message'] = update.message
    elif status is not None:
        changes['error_message'] = None

    if status == JobStatus.PROCESSING and job.started_at is None:
        changes['started_at'] = now
    if status is not None and status.is_terminal:
        if job.completed_at is None:
            changes['completed_at'] = now
        if status == JobStatus.COMPLETE:
            changes['progress'] = COMPLETE_PROGRESS

    return job.model_copy(update=changes)


def apply_job_added(jobs: JobMap, job: Job) -> JobMap:
    """Inserts a full record, replacing any existing one with the same id."""
    merged = dict(jobs)
    merged[job.id] = job
    return merged


def apply_progress_update(jobs: JobMap, update: ProgressUpdate, now: datetime,
                          policy: TerminalPolicy = TerminalPolicy.ACCEPT) -> JobMap:
    """
    Folds a delta into the mapping.

    A delta for an unknown job never creates one: it is dropped with a warning
    and the input mapping is returned unchanged.
    """
    existing = jobs.get(update.job_id)
    if existing is None:
        logger.warning(f"Received progress for unknown job ID: {update.job_id}")
        return jobs

    merged_job = merge_progress(existing, update, now, policy)
    if merged_job is None:
        return jobs

    merged = dict(jobs)
    merged[update.job_id] = merged_job
    return merged


def apply_event(jobs: JobMap, event: Event, now: datetime,
                policy: TerminalPolicy = TerminalPolicy.ACCEPT) -> JobMap:
    """Dispatches a decoded `(kind, payload)` event to the matching merge."""
    kind, payload = event
    if kind == EVENT_JOB_ADDED:
        return apply_job_added(jobs, payload)
    if kind == EVENT_PROGRESS_UPDATE:
        return apply_progress_update(jobs, payload, now, policy)
    logger.warning(f"Unhandled event type: {kind}")
    return jobs
