"""
Pydantic schemas for the status API.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class APIResponse(BaseModel):
    """Base API response model."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class HealthCheckResponse(BaseModel):
    status: str = "healthy"
    timestamp: datetime = Field(default_factory=_utcnow)
    version: str = "0.1.0"
    scheduler: str = "stopped"


class RunOutcomeSchema(BaseModel):
    status: str
    send_status: Optional[str] = None
    failure_kind: Optional[str] = None
    error: Optional[str] = None
    finished_at: datetime
    basic_handles: int = 0
    upgraded_handles: int = 0


class SchedulerStatusResponse(BaseModel):
    """Scheduler state as reported by /status."""
    project: str
    status: str
    is_running: bool
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    total_runs: int = 0
    successful_runs: int = 0
    retry_failures: int = 0
    errors: int = 0
    last_outcome: Optional[RunOutcomeSchema] = None
    providers: List[Dict[str, Any]] = Field(default_factory=list)


class TriggerResponse(APIResponse):
    accepted: bool = True
