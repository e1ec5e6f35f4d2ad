"""
Display helpers derived from job records.

Nothing here touches the store; these functions turn `Job` values into the
strings and counts a queue view shows.
"""

import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List
from urllib.parse import urlparse

from .jobs import Job, JobStatus

_TRACK_PREFIX = re.compile(r'^\d+\.\s*')
_EXTENSION = re.compile(r'\.[^.]*$')
_URL_KINDS = {'release': 'Release', 'artist': 'Artist', 'playlist': 'Playlist'}
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def format_speed(speed_bps: float) -> str:
    if speed_bps < 1024:
        return f"{speed_bps:g} B/s"
    if speed_bps < 1024 * 1024:
        return f"{speed_bps / 1024:.1f} KB/s"
    return f"{speed_bps / (1024 * 1024):.1f} MB/s"


def format_bytes(num_bytes: int, decimals: int = 2) -> str:
    """Formats a byte count with binary units, e.g. `1.5 KB`."""
    if num_bytes <= 0:
        return '0 Bytes'
    units = ['Bytes', 'KB', 'MB', 'GB', 'TB', 'PB']
    value, index = float(num_bytes), 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, max(decimals, 0)):g} {units[index]}"


def title_from_url(url: str) -> str:
    """
    Derives a readable label from a job URL.

    Known path kinds (`/release/<id>`, `/artist/<id>`, `/playlist/<id>`) give
    `Release <id>` and so on; otherwise the last path segment is used.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return 'Invalid URL'
    if not parsed.scheme or not parsed.netloc:
        return 'Invalid URL'

    # Hash-routed web player links keep the path in the fragment.
    route = f"{parsed.path}/{parsed.fragment}"
    parts = [part for part in route.split('/') if part]
    for index, part in enumerate(parts[:-1]):
        if part in _URL_KINDS:
            return f"{_URL_KINDS[part]} {parts[index + 1]}"

    if not parts:
        return 'Unknown Download'
    last = parts[-1]
    if last.isdigit():
        return f"Download {last}"
    return last.replace('-', ' ').title()


def display_title(job: Job) -> str:
    """Picks the best available label: title, current file, then URL."""
    if job.title:
        return job.title
    if job.current_file:
        clean = _EXTENSION.sub('', _TRACK_PREFIX.sub('', job.current_file))
        if clean and clean != 'Unknown' and len(clean) > 3:
            return clean
    return title_from_url(job.original_url)


def queue_stats(jobs: Iterable[Job]) -> Dict[str, int]:
    """Counts jobs per status, plus a `total`."""
    stats = {status.value: 0 for status in JobStatus}
    total = 0
    for job in jobs:
        stats[job.status.value] += 1
        total += 1
    stats['total'] = total
    return stats


def _created_key(job: Job) -> datetime:
    created = job.created_at
    if created is None:
        return _EPOCH
    if created.tzinfo is None:
        return created.replace(tzinfo=timezone.utc)
    return created


def jobs_in_order(jobs: Iterable[Job]) -> List[Job]:
    """Oldest first; jobs without a creation time sort to the front."""
    return sorted(jobs, key=_created_key)


def describe_job(job: Job) -> str:
    """One-line summary used by the console view."""
    progress = '?' if job.is_indeterminate else f"{job.progress:.0f}%"
    line = f"[{job.status.value:<10}] {progress:>4}  {display_title(job)}"
    if job.current_track and job.total_tracks:
        line += f"  (track {job.current_track}/{job.total_tracks})"
    if job.status == JobStatus.PROCESSING and job.speed_bps > 0:
        line += f"  {format_speed(job.speed_bps)}"
    if job.error_message:
        line += f"  error: {job.error_message}"
    return line
