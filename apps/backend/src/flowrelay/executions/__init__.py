"""Execution history and dashboard statistics."""

from .logger import ExecutionLogger, humanize_timestamp
from .schema import (
    Activity,
    ActivityType,
    ActivityView,
    Execution,
    ExecutionStatus,
    ExecutionSummary,
    UserStats,
)

__all__ = [
    "Activity",
    "ActivityType",
    "ActivityView",
    "Execution",
    "ExecutionLogger",
    "ExecutionStatus",
    "ExecutionSummary",
    "UserStats",
    "humanize_timestamp",
]
