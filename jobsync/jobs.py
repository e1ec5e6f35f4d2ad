"""
Defines the data models for download jobs and their progress deltas.

The server speaks camelCase JSON; the models expose snake_case attributes and
accept either spelling when validating.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JobStatus(str, Enum):
    """Lifecycle status of a job: queued -> processing -> complete | failed."""
    QUEUED = 'queued'
    PROCESSING = 'processing'
    COMPLETE = 'complete'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.FAILED)


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra='ignore',
    )


class DownloadOptions(_WireModel):
    """Processing flags captured when the job was submitted."""
    force_video: bool = False
    skip_videos: bool = False
    skip_chapters: bool = False


class Job(_WireModel):
    """
    Represents a single download job as known to the client.

    Instances are immutable; the merge engine derives new records with
    `model_copy(update=...)`.

    Attributes:
        id: Server-assigned unique identifier.
        original_url: The URL submitted by the user.
        title: Human-readable label, once the server has resolved it.
        options: Submission-time processing flags.
        status: Current lifecycle status.
        error_message: Failure reason, only while status is failed.
        progress: Percentage in [0, 100], or negative when indeterminate.
        current_file: File currently being processed.
        current_track: 1-based index of the track being downloaded.
        total_tracks: Number of tracks in the release.
        speed_bps: Throughput estimate in bytes per second.
        created_at: When the server created the job.
        started_at: First time the job was seen processing.
        completed_at: First time the job was seen complete or failed.
        artwork_url: Cover art, once metadata has resolved.
    """
    id: str = Field(min_length=1)
    original_url: str
    title: Optional[str] = None
    options: DownloadOptions = Field(default_factory=DownloadOptions)
    status: JobStatus = JobStatus.QUEUED
    error_message: Optional[str] = None
    progress: float = 0
    current_file: Optional[str] = None
    current_track: Optional[int] = None
    total_tracks: Optional[int] = None
    speed_bps: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    artwork_url: Optional[str] = None

    @property
    def is_indeterminate(self) -> bool:
        return self.progress < 0


class ProgressUpdate(_WireModel):
    """
    A sparse delta for one existing job.

    Only `job_id` is required. `present_fields` tells which optional fields
    the server actually sent; a null value counts as absent.
    """
    job_id: str = Field(min_length=1)
    status: Optional[JobStatus] = None
    message: Optional[str] = None
    title: Optional[str] = None
    current_file: Optional[str] = None
    current_track: Optional[int] = None
    total_tracks: Optional[int] = None
    percentage: Optional[float] = None
    speed_bps: Optional[int] = Field(default=None, ge=0)
    bytes_downloaded: Optional[int] = None
    total_bytes: Optional[int] = None
    artwork_url: Optional[str] = None

    @property
    def present_fields(self) -> frozenset:
        return frozenset(
            name for name in self.model_fields_set
            if getattr(self, name) is not None
        )

    def has(self, name: str) -> bool:
        """Returns True if the payload carried a non-null value for `name`."""
        return name in self.present_fields
