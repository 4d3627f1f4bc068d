"""Activity log for user-visible actions."""

from credit_rating.activity.sink import (
    ActivityLog,
    ActivityLogError,
    InMemoryActivityLog,
    JsonlFileActivityLog,
    PostgresActivityLog,
    get_activity_log,
    record_activity,
)

__all__ = [
    "ActivityLog",
    "ActivityLogError",
    "InMemoryActivityLog",
    "JsonlFileActivityLog",
    "PostgresActivityLog",
    "get_activity_log",
    "record_activity",
]
