"""Schedule models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class PRFilters(BaseModel):
    """Which pull requests a schedule reports on."""

    labels: list[str] = Field(default_factory=list)
    title_keywords: list[str] = Field(default_factory=list)
    exclude_authors: list[str] = Field(default_factory=list)
    min_age: Optional[int] = None
    max_age: Optional[int] = None

    def is_empty(self) -> bool:
        return not (
            self.labels
            or self.title_keywords
            or self.exclude_authors
            or self.min_age is not None
            or self.max_age is not None
        )


class EscalationConfig(BaseModel):
    """Second notification for pull requests waiting too long."""

    provider_type: str
    provider_id: str
    channel_id: str
    days: int = Field(..., ge=1)
    mentions: list[str] = Field(default_factory=list)


class Schedule(BaseModel):
    """A user's recurring PR notification. The cron expression is in UTC."""

    id: str
    user_id: str
    name: str
    cron_expression: str
    timezone: str = "UTC+0"
    git_provider_type: str
    git_provider_id: str
    repositories: list[str] = Field(default_factory=list)
    messaging_provider_type: str
    messaging_provider_id: str
    messaging_channel_id: str
    escalation: Optional[EscalationConfig] = None
    pr_filters: Optional[PRFilters] = None
    send_when_empty: bool = False
    is_active: bool = True
    last_executed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ScheduleInput(BaseModel):
    """Schedule form input. The cron expression is in the given timezone."""

    name: str = ""
    cron_expression: str = ""
    timezone: str = "UTC+0"
    git_provider_type: str = ""
    git_provider_id: str = ""
    repositories: list[str] = Field(default_factory=list)
    messaging_provider_type: str = ""
    messaging_provider_id: str = ""
    messaging_channel_id: str = ""
    escalation_provider_type: Optional[str] = None
    escalation_provider_id: Optional[str] = None
    escalation_channel_id: Optional[str] = None
    escalation_days: Optional[int] = None
    escalation_mentions: list[str] = Field(default_factory=list)
    pr_filters: Optional[PRFilters] = None
    send_when_empty: bool = False
    is_active: bool = True


class ScheduleValidationError(ValueError):
    """Raised when schedule input fails validation."""

    def __init__(self, errors: dict[str, str]):
        super().__init__("; ".join(f"{field}: {message}" for field, message in errors.items()))
        self.errors = errors


class ExecutionLog(BaseModel):
    """Outcome of one schedule run."""

    schedule_id: str
    status: str  # success, failed
    pull_requests_found: int = 0
    messages_sent: int = 0
    escalations_triggered: int = 0
    error_message: Optional[str] = None
    execution_time_ms: int = 0
    executed_at: datetime
