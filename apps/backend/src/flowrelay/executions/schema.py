"""Execution history models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ExecutionStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class ActivityType(str, Enum):
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"


class Execution(BaseModel):
    id: str
    workflow_id: str
    user_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None
    metadata: dict[str, Any] = {}


class Activity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    execution_id: str
    user_id: str
    type: ActivityType
    message: str
    service: Optional[str] = None
    workflow_name: Optional[str] = None
    metadata: dict[str, Any] = {}
    timestamp: datetime


class UserStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    executions_today: int = Field(0, alias="executionsToday")
    success_rate: float = Field(0.0, alias="successRate")
    total_executions: int = Field(0, alias="totalExecutions")
    successful_executions: int = Field(0, alias="successfulExecutions")


class ActivityView(BaseModel):
    """An activity as shown on the dashboard, with a humanized timestamp."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: str  # lowercased ActivityType
    message: str
    timestamp: str
    workflow_name: Optional[str] = Field(None, alias="workflowName")
    service: Optional[str] = None


class ExecutionSummary(BaseModel):
    """An execution with its most recent activities."""

    id: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None
    activities: list[Activity] = []
