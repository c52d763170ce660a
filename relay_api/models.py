"""
PURPOSE: Pydantic models for the relay gateway's request/response schemas and the webhook envelope
SRP and DRY check: Pass - data validation and serialisation only, JSON field names are camelCase aliases
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Status of a task completion record"""
    completed = "completed"


class TaskResult(BaseModel):
    """Completion record for one task, handed from the relay session to the waiting caller"""
    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(..., alias="taskId", description="Task identifier")
    status: TaskStatus = Field(TaskStatus.completed, description="Completion status")
    result: Any = Field(None, description="Opaque result payload reported by the backend")
    timestamp: datetime = Field(default_factory=utc_now, description="When the completion signal was observed")


class PerformRequest(BaseModel):
    """Request body for POST /api/perform"""
    message: Optional[str] = Field(None, description="Task description forwarded to the backend")


class HealthResponse(BaseModel):
    """Health check response"""
    model_config = ConfigDict(populate_by_name=True)

    status: str = Field("ok", description="Gateway status")
    connections: int = Field(..., description="Number of live relay sessions")
    pending_tasks: int = Field(..., alias="pendingTasks", description="Number of unconsumed completion records")


class APIError(BaseModel):
    """Standard error response"""
    error: str = Field(..., description="Error message")
    timestamp: datetime = Field(default_factory=utc_now)


class WebhookEnvelope(BaseModel):
    """Body POSTed to the webhook for every relayed event"""
    model_config = ConfigDict(populate_by_name=True)

    event: Any = Field(..., description="Parsed event, or the raw payload text when it is not valid JSON")
    connection_id: str = Field(..., alias="connectionId")
    task_id: str = Field(..., alias="taskId")
    timestamp: datetime = Field(default_factory=utc_now)
