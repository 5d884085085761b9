"""Builders and in-memory store fakes shared by the tests."""

import asyncio
import json
import uuid
from datetime import UTC, datetime, timedelta
from typing import Callable, Optional

import httpx

from prnotify.db.stores import EscalationTracker, ExecutionLogStore, ScheduleStore, TokenStore
from prnotify.models.pull_request import NormalizedPullRequest, Repository
from prnotify.models.schedule import ExecutionLog, Schedule
from prnotify.models.token import TokenRecord
from prnotify.providers.base import BaseGitProvider
from prnotify.providers.errors import TokenExpiredError

# Monday
NOW = datetime(2024, 1, 15, 9, 0, tzinfo=UTC)


def make_pr(
    pr_id: str = "1",
    age_days: int = 1,
    *,
    title: Optional[str] = None,
    author: str = "alice",
    repository: str = "acme/api",
    labels: Optional[list[str]] = None,
    reviewers: Optional[list[str]] = None,
    has_approvals: bool = False,
    has_changes_requested: bool = False,
    additions: Optional[int] = None,
    deletions: Optional[int] = None,
    now: datetime = NOW,
) -> NormalizedPullRequest:
    return NormalizedPullRequest(
        id=pr_id,
        title=title or f"Pull request {pr_id}",
        author=author,
        url=f"https://example.com/{repository}/pull/{pr_id}",
        created_at=now - timedelta(days=age_days),
        repository=repository,
        labels=labels or [],
        reviewers=reviewers or [],
        has_approvals=has_approvals,
        has_changes_requested=has_changes_requested,
        additions=additions,
        deletions=deletions,
    )


def make_schedule(**overrides) -> Schedule:
    data = {
        "id": str(uuid.uuid4()),
        "user_id": "user-1",
        "name": "Team reminder",
        "cron_expression": "0 9 * * 1-5",
        "timezone": "UTC+0",
        "git_provider_type": "github",
        "git_provider_id": "gh-1",
        "repositories": ["acme/api"],
        "messaging_provider_type": "slack",
        "messaging_provider_id": "slack-1",
        "messaging_channel_id": "C123",
    }
    data.update(overrides)
    return Schedule(**data)


def make_token(
    provider_type: str = "github",
    provider_id: str = "gh-1",
    *,
    user_id: str = "user-1",
    access_token: str = "access-1",
    refresh_token: Optional[str] = "refresh-1",
    expires_at: Optional[datetime] = None,
) -> TokenRecord:
    return TokenRecord(
        user_id=user_id,
        provider_type=provider_type,
        provider_id=provider_id,
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=expires_at,
    )


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def request_json(request: httpx.Request) -> dict:
    return json.loads(request.content.decode())


class StubGitProvider(BaseGitProvider):
    """Git provider serving canned pull requests per repository."""

    provider_type = "github"
    token_url = "https://git.example.com/oauth/token"

    def __init__(self, pull_requests: dict[str, list[NormalizedPullRequest]], **kwargs):
        kwargs.setdefault("client", mock_client(lambda request: httpx.Response(404)))
        super().__init__(**kwargs)
        self.pull_requests = pull_requests
        self.tokens_seen: list[str] = []
        self.reject_tokens: set[str] = set()

    async def get_repositories(self, token: str) -> list[Repository]:
        return [
            Repository(id=name, name=name.split("/")[-1], full_name=name)
            for name in self.pull_requests
        ]

    async def _fetch_repository_pull_requests(
        self, token: str, repository: str, limit: asyncio.Semaphore
    ) -> list[NormalizedPullRequest]:
        self.tokens_seen.append(token)
        if token in self.reject_tokens:
            raise TokenExpiredError("token rejected", provider=self.provider_type)
        return list(self.pull_requests.get(repository, []))


class InMemoryScheduleStore(ScheduleStore):
    def __init__(self, schedules: Optional[list[Schedule]] = None):
        self.schedules: dict[str, Schedule] = {s.id: s for s in schedules or []}
        self.fail_listing = False

    async def list_active_schedules(self) -> list[Schedule]:
        if self.fail_listing:
            raise ConnectionError("database unavailable")
        return [s for s in self.schedules.values() if s.is_active]

    async def list_schedules(self, user_id: str) -> list[Schedule]:
        return [s for s in self.schedules.values() if s.user_id == user_id]

    async def get_schedule(self, user_id: str, schedule_id: str) -> Optional[Schedule]:
        schedule = self.schedules.get(schedule_id)
        if schedule is None or schedule.user_id != user_id:
            return None
        return schedule

    async def create_schedule(self, user_id: str, fields: dict) -> Schedule:
        schedule = Schedule(id=str(uuid.uuid4()), user_id=user_id, **fields)
        self.schedules[schedule.id] = schedule
        return schedule

    async def update_schedule(
        self, user_id: str, schedule_id: str, fields: dict
    ) -> Optional[Schedule]:
        schedule = await self.get_schedule(user_id, schedule_id)
        if schedule is None:
            return None
        updated = schedule.model_copy(update=fields)
        self.schedules[schedule_id] = updated
        return updated

    async def delete_schedule(self, user_id: str, schedule_id: str) -> bool:
        if await self.get_schedule(user_id, schedule_id) is None:
            return False
        del self.schedules[schedule_id]
        return True

    async def toggle_schedule(self, user_id: str, schedule_id: str) -> Optional[Schedule]:
        schedule = await self.get_schedule(user_id, schedule_id)
        if schedule is None:
            return None
        return await self.update_schedule(
            user_id, schedule_id, {"is_active": not schedule.is_active}
        )

    async def mark_executed(self, schedule_id: str, executed_at: datetime) -> None:
        schedule = self.schedules[schedule_id]
        self.schedules[schedule_id] = schedule.model_copy(
            update={"last_executed_at": executed_at}
        )


class InMemoryTokenStore(TokenStore):
    def __init__(self, records: Optional[list[TokenRecord]] = None):
        self.records: dict[tuple[str, str, str], TokenRecord] = {}
        for record in records or []:
            self.records[self._key(record)] = record
        self.saves = 0

    @staticmethod
    def _key(record: TokenRecord) -> tuple[str, str, str]:
        return record.user_id, record.provider_type, record.provider_id

    async def get_token(
        self, user_id: str, provider_type: str, provider_id: str
    ) -> Optional[TokenRecord]:
        return self.records.get((user_id, provider_type, provider_id))

    async def save_token(self, record: TokenRecord) -> None:
        self.saves += 1
        self.records[self._key(record)] = record

    async def delete_token(self, user_id: str, provider_type: str, provider_id: str) -> None:
        self.records.pop((user_id, provider_type, provider_id), None)

    async def list_expiring_tokens(self, before: datetime) -> list[TokenRecord]:
        return [
            record
            for record in self.records.values()
            if record.refresh_token and record.expires_at and record.expires_at <= before
        ]


class InMemoryExecutionLogStore(ExecutionLogStore):
    def __init__(self):
        self.logs: list[ExecutionLog] = []

    async def record_execution(self, log: ExecutionLog) -> None:
        self.logs.append(log)

    async def list_executions(self, schedule_id: str, limit: int = 20) -> list[ExecutionLog]:
        matching = [log for log in self.logs if log.schedule_id == schedule_id]
        return list(reversed(matching))[:limit]


class InMemoryEscalationTracker(EscalationTracker):
    def __init__(self):
        self.escalated: dict[tuple[str, str], datetime] = {}

    async def last_escalated(self, schedule_id: str, pr_ids: list[str]) -> dict[str, datetime]:
        return {
            pr_id: self.escalated[(schedule_id, pr_id)]
            for pr_id in pr_ids
            if (schedule_id, pr_id) in self.escalated
        }

    async def record_escalations(
        self, schedule_id: str, prs: list[NormalizedPullRequest], escalated_at: datetime
    ) -> None:
        for pr in prs:
            self.escalated[(schedule_id, pr.id)] = escalated_at

    async def cleanup(self, schedule_id: str, open_pr_ids: list[str]) -> int:
        stale = [
            key for key in self.escalated if key[0] == schedule_id and key[1] not in open_pr_ids
        ]
        for key in stale:
            del self.escalated[key]
        return len(stale)
