"""
Defines custom exceptions used throughout the synchronization engine.

`SnapshotError` reaches the consumer; `EventDecodeError` is caught, logged,
and the offending event is dropped.
"""

class JobSyncError(Exception):
    """Base class for engine errors."""
    pass

class SnapshotError(JobSyncError):
    """Raised when the full job listing cannot be fetched or parsed."""
    pass

class EventDecodeError(JobSyncError):
    """Raised when a stream event payload is malformed."""
    pass
