"""PostgreSQL implementations of the store interfaces (asyncpg)."""

import uuid
from datetime import datetime
from typing import Any, Optional

from asyncpg import Pool, Record

from prnotify.core.logging import get_logger
from prnotify.db.stores import EscalationTracker, ExecutionLogStore, ScheduleStore, TokenStore
from prnotify.models.pull_request import NormalizedPullRequest
from prnotify.models.schedule import ExecutionLog, Schedule
from prnotify.models.token import TokenRecord

logger = get_logger(__name__)

SCHEDULE_COLUMNS = (
    "name",
    "cron_expression",
    "timezone",
    "git_provider_type",
    "git_provider_id",
    "repositories",
    "messaging_provider_type",
    "messaging_provider_id",
    "messaging_channel_id",
    "escalation",
    "pr_filters",
    "send_when_empty",
    "is_active",
)


def _as_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(value)
    except (ValueError, TypeError):
        return None


def _schedule_from_row(row: Record) -> Schedule:
    data = dict(row)
    data["id"] = str(data["id"])
    return Schedule.model_validate(data)


def _column_value(value: Any) -> Any:
    """Pydantic models (escalation, filters) are stored as JSONB."""
    if hasattr(value, "model_dump"):
        return value.model_dump()
    return value


class PostgresScheduleStore(ScheduleStore):
    def __init__(self, pool: Pool):
        self.pool = pool

    async def list_active_schedules(self) -> list[Schedule]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM schedules WHERE is_active ORDER BY created_at"
            )
        return [_schedule_from_row(row) for row in rows]

    async def list_schedules(self, user_id: str) -> list[Schedule]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM schedules WHERE user_id = $1 ORDER BY created_at DESC", user_id
            )
        return [_schedule_from_row(row) for row in rows]

    async def get_schedule(self, user_id: str, schedule_id: str) -> Optional[Schedule]:
        schedule_uuid = _as_uuid(schedule_id)
        if schedule_uuid is None:
            return None
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM schedules WHERE id = $1 AND user_id = $2", schedule_uuid, user_id
            )
        return _schedule_from_row(row) if row else None

    async def create_schedule(self, user_id: str, fields: dict) -> Schedule:
        columns = [column for column in SCHEDULE_COLUMNS if column in fields]
        values = [_column_value(fields[column]) for column in columns]
        placeholders = ", ".join(f"${i}" for i in range(2, len(columns) + 2))
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"INSERT INTO schedules (user_id, {', '.join(columns)}) "
                f"VALUES ($1, {placeholders}) RETURNING *",
                user_id,
                *values,
            )
        logger.info("Schedule created", schedule_id=str(row["id"]), user_id=user_id)
        return _schedule_from_row(row)

    async def update_schedule(
        self, user_id: str, schedule_id: str, fields: dict
    ) -> Optional[Schedule]:
        schedule_uuid = _as_uuid(schedule_id)
        if schedule_uuid is None:
            return None
        columns = [column for column in SCHEDULE_COLUMNS if column in fields]
        if not columns:
            return await self.get_schedule(user_id, schedule_id)
        assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(columns, start=3))
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"UPDATE schedules SET {assignments}, updated_at = NOW() "
                "WHERE id = $1 AND user_id = $2 RETURNING *",
                schedule_uuid,
                user_id,
                *[_column_value(fields[column]) for column in columns],
            )
        return _schedule_from_row(row) if row else None

    async def delete_schedule(self, user_id: str, schedule_id: str) -> bool:
        schedule_uuid = _as_uuid(schedule_id)
        if schedule_uuid is None:
            return False
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM schedules WHERE id = $1 AND user_id = $2", schedule_uuid, user_id
            )
        return result.endswith(" 1")

    async def toggle_schedule(self, user_id: str, schedule_id: str) -> Optional[Schedule]:
        schedule_uuid = _as_uuid(schedule_id)
        if schedule_uuid is None:
            return None
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "UPDATE schedules SET is_active = NOT is_active, updated_at = NOW() "
                "WHERE id = $1 AND user_id = $2 RETURNING *",
                schedule_uuid,
                user_id,
            )
        return _schedule_from_row(row) if row else None

    async def mark_executed(self, schedule_id: str, executed_at: datetime) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE schedules SET last_executed_at = $2 WHERE id = $1",
                uuid.UUID(schedule_id),
                executed_at,
            )


class PostgresTokenStore(TokenStore):
    def __init__(self, pool: Pool):
        self.pool = pool

    async def get_token(
        self, user_id: str, provider_type: str, provider_id: str
    ) -> Optional[TokenRecord]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM provider_tokens
                WHERE user_id = $1 AND provider_type = $2 AND provider_id = $3
                """,
                user_id,
                provider_type,
                provider_id,
            )
        return TokenRecord.model_validate(dict(row)) if row else None

    async def save_token(self, record: TokenRecord) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO provider_tokens (
                    user_id, provider_type, provider_id, access_token,
                    refresh_token, expires_at, scope, token_type
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                ON CONFLICT (user_id, provider_type, provider_id) DO UPDATE SET
                    access_token = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    expires_at = EXCLUDED.expires_at,
                    scope = EXCLUDED.scope,
                    token_type = EXCLUDED.token_type,
                    updated_at = NOW()
                """,
                record.user_id,
                record.provider_type,
                record.provider_id,
                record.access_token,
                record.refresh_token,
                record.expires_at,
                record.scope,
                record.token_type,
            )

    async def delete_token(self, user_id: str, provider_type: str, provider_id: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                DELETE FROM provider_tokens
                WHERE user_id = $1 AND provider_type = $2 AND provider_id = $3
                """,
                user_id,
                provider_type,
                provider_id,
            )

    async def list_expiring_tokens(self, before: datetime) -> list[TokenRecord]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM provider_tokens
                WHERE refresh_token IS NOT NULL
                  AND expires_at IS NOT NULL
                  AND expires_at <= $1
                ORDER BY expires_at
                """,
                before,
            )
        return [TokenRecord.model_validate(dict(row)) for row in rows]


class PostgresExecutionLogStore(ExecutionLogStore):
    def __init__(self, pool: Pool):
        self.pool = pool

    async def record_execution(self, log: ExecutionLog) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO execution_logs (
                    schedule_id, status, pull_requests_found, messages_sent,
                    escalations_triggered, error_message, execution_time_ms, executed_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                uuid.UUID(log.schedule_id),
                log.status,
                log.pull_requests_found,
                log.messages_sent,
                log.escalations_triggered,
                log.error_message,
                log.execution_time_ms,
                log.executed_at,
            )

    async def list_executions(self, schedule_id: str, limit: int = 20) -> list[ExecutionLog]:
        schedule_uuid = _as_uuid(schedule_id)
        if schedule_uuid is None:
            return []
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM execution_logs
                WHERE schedule_id = $1
                ORDER BY executed_at DESC
                LIMIT $2
                """,
                schedule_uuid,
                limit,
            )
        return [
            ExecutionLog.model_validate({**dict(row), "schedule_id": str(row["schedule_id"])})
            for row in rows
        ]


class PostgresEscalationTracker(EscalationTracker):
    def __init__(self, pool: Pool):
        self.pool = pool

    async def last_escalated(
        self, schedule_id: str, pr_ids: list[str]
    ) -> dict[str, datetime]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT pull_request_id, last_escalated_at FROM escalation_tracking
                WHERE schedule_id = $1 AND pull_request_id = ANY($2::text[])
                """,
                uuid.UUID(schedule_id),
                pr_ids,
            )
        return {row["pull_request_id"]: row["last_escalated_at"] for row in rows}

    async def record_escalations(
        self, schedule_id: str, prs: list[NormalizedPullRequest], escalated_at: datetime
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.executemany(
                """
                INSERT INTO escalation_tracking (
                    schedule_id, pull_request_id, pull_request_url,
                    first_escalated_at, last_escalated_at, escalation_count
                )
                VALUES ($1, $2, $3, $4, $4, 1)
                ON CONFLICT (schedule_id, pull_request_id) DO UPDATE SET
                    last_escalated_at = EXCLUDED.last_escalated_at,
                    pull_request_url = EXCLUDED.pull_request_url,
                    escalation_count = escalation_tracking.escalation_count + 1
                """,
                [(uuid.UUID(schedule_id), pr.id, pr.url, escalated_at) for pr in prs],
            )

    async def cleanup(self, schedule_id: str, open_pr_ids: list[str]) -> int:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                """
                DELETE FROM escalation_tracking
                WHERE schedule_id = $1 AND NOT (pull_request_id = ANY($2::text[]))
                """,
                uuid.UUID(schedule_id),
                open_pr_ids,
            )
        return int(result.split()[-1])
