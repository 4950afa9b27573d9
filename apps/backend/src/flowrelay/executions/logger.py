"""Execution logger and stats aggregator, backed by SQLite.

Writes (start / complete / log) propagate errors: dropping one would corrupt
accounting. Reads (stats, activity feeds) degrade to empty defaults so the
dashboard stays up through transient store errors.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Callable, Optional

from ..errors import ExecutionConflict, ExecutionNotFound
from .database import from_db_time, init_db, to_db_time
from .schema import (
    Activity,
    ActivityType,
    ActivityView,
    Execution,
    ExecutionStatus,
    ExecutionSummary,
    UserStats,
)

logger = logging.getLogger(__name__)

_ACTIVITIES_PER_EXECUTION = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def humanize_timestamp(timestamp: datetime, now: datetime) -> str:
    """Relative label for a past timestamp, e.g. "5 min ago"."""
    seconds = (now - timestamp).total_seconds()
    minutes = int(seconds // 60)
    hours = int(seconds // 3600)
    days = int(seconds // 86400)

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes} min ago"
    if hours < 24:
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    if days < 7:
        return f"{days} day{'s' if days > 1 else ''} ago"
    return timestamp.astimezone().strftime("%Y-%m-%d")


def local_day_bounds(now: datetime) -> tuple[datetime, datetime]:
    """[00:00:00, 23:59:59.999999] of the local calendar day containing ``now``."""
    local = now.astimezone()
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    end = local.replace(hour=23, minute=59, second=59, microsecond=999999)
    return start, end


class ExecutionLogger:
    """Records executions and their activities, and reduces them into stats."""

    def __init__(
        self,
        db_path: Path,
        clock: Callable[[], datetime] = _utcnow,
        workflow_names: Optional[Callable[[str], Optional[str]]] = None,
    ):
        self._conn = init_db(db_path)
        self._lock = threading.Lock()
        self._clock = clock
        # workflow id -> stored workflow name, for activities logged without one
        self._workflow_names = workflow_names

    def _now(self) -> datetime:
        now = self._clock()
        return now if now.tzinfo is not None else now.astimezone()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def start_execution(
        self, workflow_id: str, user_id: str, metadata: Optional[dict[str, Any]] = None
    ) -> str:
        """Create a RUNNING execution and return its id."""
        execution_id = uuid.uuid4().hex
        with self._lock:
            self._conn.execute(
                """INSERT INTO executions (id, workflow_id, user_id, status, started_at, metadata)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    execution_id,
                    workflow_id,
                    user_id,
                    ExecutionStatus.RUNNING.value,
                    to_db_time(self._now()),
                    json.dumps(metadata or {}),
                ),
            )
            self._conn.commit()
        logger.info(
            "Started execution",
            extra={"execution_id": execution_id, "workflow_id": workflow_id, "user_id": user_id},
        )
        return execution_id

    def complete_execution(
        self,
        execution_id: str,
        status: ExecutionStatus | str,
        error: Optional[str] = None,
    ) -> Execution:
        """Move a RUNNING execution to a terminal status, exactly once.

        Raises ExecutionNotFound for unknown ids and ExecutionConflict when the
        execution is already terminal; the original duration is never recomputed.
        """
        status = ExecutionStatus(status)
        if not status.is_terminal:
            raise ValueError(f"Cannot complete an execution with status {status.value}")

        completed_at = self._now()
        with self._lock:
            row = self._conn.execute(
                "SELECT status, started_at FROM executions WHERE id = ?",
                (execution_id,),
            ).fetchone()
            if row is None:
                raise ExecutionNotFound(execution_id)
            if row["status"] != ExecutionStatus.RUNNING.value:
                raise ExecutionConflict(execution_id, row["status"])

            started_at = from_db_time(row["started_at"])
            duration_ms = int((completed_at - started_at).total_seconds() * 1000)
            cursor = self._conn.execute(
                """UPDATE executions
                   SET status = ?, completed_at = ?, duration_ms = ?, error = ?
                   WHERE id = ? AND status = ?""",
                (
                    status.value,
                    to_db_time(completed_at),
                    duration_ms,
                    error,
                    execution_id,
                    ExecutionStatus.RUNNING.value,
                ),
            )
            if cursor.rowcount != 1:
                self._conn.rollback()
                raise ExecutionConflict(execution_id, "unknown")
            self._conn.commit()
            updated = self._conn.execute(
                "SELECT * FROM executions WHERE id = ?", (execution_id,)
            ).fetchone()

        logger.info(
            "Completed execution",
            extra={"execution_id": execution_id, "status": status.value, "duration_ms": duration_ms},
        )
        return _row_to_execution(updated)

    def log_activity(
        self,
        execution_id: str,
        user_id: str,
        type: ActivityType | str,  # noqa: A002
        message: str,
        service: Optional[str] = None,
        workflow_name: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        """Append an activity to an execution and return its id."""
        activity_type = ActivityType(type)
        activity_id = uuid.uuid4().hex
        with self._lock:
            exists = self._conn.execute(
                "SELECT 1 FROM executions WHERE id = ?", (execution_id,)
            ).fetchone()
            if exists is None:
                raise ExecutionNotFound(execution_id)
            self._conn.execute(
                """INSERT INTO activities
                   (id, execution_id, user_id, type, message, service, workflow_name, metadata, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    activity_id,
                    execution_id,
                    user_id,
                    activity_type.value,
                    message,
                    service,
                    workflow_name,
                    json.dumps(metadata or {}),
                    to_db_time(self._now()),
                ),
            )
            self._conn.commit()
        logger.info(
            "Logged activity",
            extra={"execution_id": execution_id, "activity_type": activity_type.value, "detail": message},
        )
        return activity_id

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_execution(self, execution_id: str) -> Optional[Execution]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM executions WHERE id = ?", (execution_id,)
            ).fetchone()
        return _row_to_execution(row) if row is not None else None

    def get_user_stats(self, user_id: str, now: Optional[datetime] = None) -> UserStats:
        """Executions today, success rate (0-100, 2dp) and totals. Zeros on store errors."""
        now = now or self._now()
        start, end = local_day_bounds(now)
        try:
            with self._lock:
                executions_today = self._conn.execute(
                    """SELECT COUNT(*) FROM executions
                       WHERE user_id = ? AND started_at >= ? AND started_at <= ?""",
                    (user_id, to_db_time(start), to_db_time(end)),
                ).fetchone()[0]
                total, successful = self._conn.execute(
                    """SELECT COUNT(*), COALESCE(SUM(CASE WHEN status = ? THEN 1 ELSE 0 END), 0)
                       FROM executions WHERE user_id = ?""",
                    (ExecutionStatus.SUCCESS.value, user_id),
                ).fetchone()
        except sqlite3.Error:
            logger.warning("Error getting user stats", extra={"user_id": user_id}, exc_info=True)
            return UserStats()

        success_rate = _percent(successful, total)
        return UserStats(
            executions_today=executions_today,
            success_rate=success_rate,
            total_executions=total,
            successful_executions=successful,
        )

    def get_recent_activities(
        self, user_id: str, limit: int = 10, now: Optional[datetime] = None
    ) -> list[ActivityView]:
        """The user's latest activities across all executions, newest first."""
        now = now or self._now()
        try:
            with self._lock:
                rows = self._conn.execute(
                    """SELECT a.*, e.workflow_id AS execution_workflow_id, e.metadata AS execution_metadata
                       FROM activities a JOIN executions e ON e.id = a.execution_id
                       WHERE a.user_id = ?
                       ORDER BY a.timestamp DESC
                       LIMIT ?""",
                    (user_id, limit),
                ).fetchall()
        except sqlite3.Error:
            logger.warning("Error getting recent activities", extra={"user_id": user_id}, exc_info=True)
            return []

        views: list[ActivityView] = []
        for row in rows:
            workflow_name = (
                row["workflow_name"]
                or self._resolve_workflow_name(row["execution_workflow_id"])
                or json.loads(row["execution_metadata"] or "{}").get("workflow_name")
            )
            views.append(
                ActivityView(
                    id=row["id"],
                    type=row["type"].lower(),
                    message=row["message"],
                    timestamp=humanize_timestamp(from_db_time(row["timestamp"]), now),
                    workflow_name=workflow_name,
                    service=row["service"],
                )
            )
        return views

    def _resolve_workflow_name(self, workflow_id: str) -> Optional[str]:
        if self._workflow_names is None:
            return None
        try:
            return self._workflow_names(workflow_id)
        except (OSError, ValueError):
            logger.warning(
                "Error resolving workflow name", extra={"workflow_id": workflow_id}, exc_info=True
            )
            return None

    def get_execution_activities(self, execution_id: str) -> list[Activity]:
        """All activities of one execution, newest first."""
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT * FROM activities WHERE execution_id = ? ORDER BY timestamp DESC",
                    (execution_id,),
                ).fetchall()
        except sqlite3.Error:
            logger.warning(
                "Error getting execution activities", extra={"execution_id": execution_id}, exc_info=True
            )
            return []
        return [_row_to_activity(row) for row in rows]

    def get_workflow_executions(self, workflow_id: str, limit: int = 20) -> list[ExecutionSummary]:
        """Execution history of a workflow, newest first, each with its last few activities."""
        try:
            with self._lock:
                rows = self._conn.execute(
                    """SELECT * FROM executions WHERE workflow_id = ?
                       ORDER BY started_at DESC LIMIT ?""",
                    (workflow_id, limit),
                ).fetchall()
                summaries: list[ExecutionSummary] = []
                for row in rows:
                    activity_rows = self._conn.execute(
                        """SELECT * FROM activities WHERE execution_id = ?
                           ORDER BY timestamp DESC LIMIT ?""",
                        (row["id"], _ACTIVITIES_PER_EXECUTION),
                    ).fetchall()
                    execution = _row_to_execution(row)
                    summaries.append(
                        ExecutionSummary(
                            id=execution.id,
                            status=execution.status,
                            started_at=execution.started_at,
                            completed_at=execution.completed_at,
                            duration_ms=execution.duration_ms,
                            error=execution.error,
                            activities=[_row_to_activity(a) for a in activity_rows],
                        )
                    )
        except sqlite3.Error:
            logger.warning(
                "Error getting workflow executions", extra={"workflow_id": workflow_id}, exc_info=True
            )
            return []
        return summaries

    def list_stuck_executions(
        self, older_than: timedelta, now: Optional[datetime] = None
    ) -> list[Execution]:
        """RUNNING executions started before ``now - older_than``, oldest first."""
        cutoff = (now or self._now()) - older_than
        try:
            with self._lock:
                rows = self._conn.execute(
                    """SELECT * FROM executions WHERE status = ? AND started_at < ?
                       ORDER BY started_at ASC""",
                    (ExecutionStatus.RUNNING.value, to_db_time(cutoff)),
                ).fetchall()
        except sqlite3.Error:
            logger.warning("Error listing stuck executions", exc_info=True)
            return []
        return [_row_to_execution(row) for row in rows]


def _percent(part: int, total: int) -> float:
    """part/total as a percentage rounded half up to 2 decimals; 0 when total is 0."""
    if total <= 0:
        return 0.0
    value = Decimal(str(part * 100 / total))
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _row_to_execution(row: sqlite3.Row) -> Execution:
    return Execution(
        id=row["id"],
        workflow_id=row["workflow_id"],
        user_id=row["user_id"],
        status=ExecutionStatus(row["status"]),
        started_at=from_db_time(row["started_at"]),
        completed_at=from_db_time(row["completed_at"]),
        duration_ms=row["duration_ms"],
        error=row["error"],
        metadata=json.loads(row["metadata"] or "{}"),
    )


def _row_to_activity(row: sqlite3.Row) -> Activity:
    return Activity(
        id=row["id"],
        execution_id=row["execution_id"],
        user_id=row["user_id"],
        type=ActivityType(row["type"]),
        message=row["message"],
        service=row["service"],
        workflow_name=row["workflow_name"],
        metadata=json.loads(row["metadata"] or "{}"),
        timestamp=from_db_time(row["timestamp"]),
    )
