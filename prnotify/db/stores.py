"""Persistence interfaces used by the dispatch pipeline and the API."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from prnotify.models.pull_request import NormalizedPullRequest
from prnotify.models.schedule import ExecutionLog, Schedule
from prnotify.models.token import TokenRecord


class ScheduleStore(ABC):
    """Schedules, always scoped to their owning user except for dispatch reads."""

    @abstractmethod
    async def list_active_schedules(self) -> list[Schedule]:
        pass

    @abstractmethod
    async def list_schedules(self, user_id: str) -> list[Schedule]:
        pass

    @abstractmethod
    async def get_schedule(self, user_id: str, schedule_id: str) -> Optional[Schedule]:
        pass

    @abstractmethod
    async def create_schedule(self, user_id: str, fields: dict) -> Schedule:
        pass

    @abstractmethod
    async def update_schedule(
        self, user_id: str, schedule_id: str, fields: dict
    ) -> Optional[Schedule]:
        pass

    @abstractmethod
    async def delete_schedule(self, user_id: str, schedule_id: str) -> bool:
        pass

    @abstractmethod
    async def toggle_schedule(self, user_id: str, schedule_id: str) -> Optional[Schedule]:
        """Flip is_active and return the updated schedule."""
        pass

    @abstractmethod
    async def mark_executed(self, schedule_id: str, executed_at: datetime) -> None:
        pass


class TokenStore(ABC):
    """OAuth tokens keyed by (user id, provider type, provider id)."""

    @abstractmethod
    async def get_token(
        self, user_id: str, provider_type: str, provider_id: str
    ) -> Optional[TokenRecord]:
        pass

    @abstractmethod
    async def save_token(self, record: TokenRecord) -> None:
        """Insert or replace a token."""
        pass

    @abstractmethod
    async def delete_token(self, user_id: str, provider_type: str, provider_id: str) -> None:
        pass

    @abstractmethod
    async def list_expiring_tokens(self, before: datetime) -> list[TokenRecord]:
        """Refreshable tokens whose expiry falls before ``before``."""
        pass


class ExecutionLogStore(ABC):
    @abstractmethod
    async def record_execution(self, log: ExecutionLog) -> None:
        pass

    @abstractmethod
    async def list_executions(self, schedule_id: str, limit: int = 20) -> list[ExecutionLog]:
        pass


class EscalationTracker(ABC):
    """Remembers which pull requests a schedule has already escalated."""

    @abstractmethod
    async def last_escalated(
        self, schedule_id: str, pr_ids: list[str]
    ) -> dict[str, datetime]:
        """Last escalation time per pull request id, for those escalated before."""
        pass

    @abstractmethod
    async def record_escalations(
        self, schedule_id: str, prs: list[NormalizedPullRequest], escalated_at: datetime
    ) -> None:
        pass

    @abstractmethod
    async def cleanup(self, schedule_id: str, open_pr_ids: list[str]) -> int:
        """Forget pull requests that are no longer open. Returns rows removed."""
        pass
