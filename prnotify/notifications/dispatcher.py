"""Dispatch orchestrator: runs every due schedule once.

One invocation processes all active schedules. Each schedule moves through
the stages in DispatchStage; a failure in one schedule is logged with the
stage it reached and never stops the others.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Optional

from prnotify.auth.token_manager import TokenManager
from prnotify.core.config import settings
from prnotify.core.logging import bind_context, clear_context, get_logger
from prnotify.db.stores import ExecutionLogStore, ScheduleStore
from prnotify.models.pull_request import NormalizedPullRequest
from prnotify.models.schedule import ExecutionLog, Schedule
from prnotify.notifications.escalation import EscalationEngine
from prnotify.notifications.filters import apply_filters
from prnotify.providers.factory import ProviderRegistry
from prnotify.scheduling.cron import is_due

logger = get_logger(__name__)


class DispatchStage(str, Enum):
    PENDING = "pending"
    DUE_CHECK = "due_check"
    SKIPPED = "skipped"
    FETCHING = "fetching"
    FILTERING = "filtering"
    FORMATTING = "formatting"
    SENDING = "sending"
    DELIVERED = "delivered"
    ESCALATING = "escalating"
    ESCALATED = "escalated"
    FAILED = "failed"


@dataclass
class ScheduleRun:
    """What happened to one schedule in a batch."""

    schedule_id: str
    stage: DispatchStage = DispatchStage.PENDING
    failed_stage: Optional[DispatchStage] = None
    pull_requests_found: int = 0
    messages_sent: int = 0
    escalations_triggered: int = 0
    error: Optional[str] = None
    escalation_error: Optional[str] = None
    duration_ms: int = 0

    @property
    def executed(self) -> bool:
        return self.stage != DispatchStage.SKIPPED


@dataclass
class BatchResult:
    started_at: datetime
    runs: list[ScheduleRun] = field(default_factory=list)

    @property
    def executed(self) -> int:
        return sum(1 for run in self.runs if run.executed)

    @property
    def failed(self) -> int:
        return sum(1 for run in self.runs if run.stage == DispatchStage.FAILED)

    @property
    def messages_sent(self) -> int:
        return sum(run.messages_sent for run in self.runs)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "schedules": len(self.runs),
            "executed": self.executed,
            "failed": self.failed,
            "messages_sent": self.messages_sent,
            "runs": [
                {
                    "schedule_id": run.schedule_id,
                    "stage": run.stage.value,
                    "failed_stage": run.failed_stage.value if run.failed_stage else None,
                    "pull_requests_found": run.pull_requests_found,
                    "messages_sent": run.messages_sent,
                    "escalations_triggered": run.escalations_triggered,
                    "error": run.error,
                    "escalation_error": run.escalation_error,
                }
                for run in self.runs
                if run.executed
            ],
        }


class DispatchOrchestrator:
    """Runs due schedules: fetch, filter, format, send, escalate."""

    def __init__(
        self,
        schedule_store: ScheduleStore,
        registry: ProviderRegistry,
        token_manager: TokenManager,
        escalation_engine: Optional[EscalationEngine] = None,
        execution_log: Optional[ExecutionLogStore] = None,
        concurrency: Optional[int] = None,
        deadline_seconds: Optional[float] = None,
    ):
        self.schedule_store = schedule_store
        self.registry = registry
        self.token_manager = token_manager
        self.escalation_engine = escalation_engine or EscalationEngine(registry, token_manager)
        self.execution_log = execution_log
        self.concurrency = concurrency or settings.dispatch_concurrency
        self.deadline_seconds = deadline_seconds or settings.schedule_deadline_seconds

    async def run(self, now: Optional[datetime] = None) -> BatchResult:
        """
        Process every active schedule once.

        Raises:
            Whatever loading schedules raises; nothing else escapes
        """
        now = now or datetime.now(UTC)
        schedules = await self.schedule_store.list_active_schedules()
        logger.info("Dispatch batch started", schedules=len(schedules), now=now.isoformat())

        limit = asyncio.Semaphore(self.concurrency)

        async def guarded(schedule: Schedule) -> ScheduleRun:
            async with limit:
                return await self.run_schedule(schedule, now)

        runs = await asyncio.gather(*(guarded(schedule) for schedule in schedules))
        result = BatchResult(started_at=now, runs=list(runs))
        logger.info(
            "Dispatch batch finished",
            schedules=len(result.runs),
            executed=result.executed,
            failed=result.failed,
            messages_sent=result.messages_sent,
        )
        return result

    async def run_schedule(self, schedule: Schedule, now: datetime) -> ScheduleRun:
        """Run one schedule. Never raises."""
        run = ScheduleRun(schedule_id=schedule.id)
        bind_context(schedule_id=schedule.id, user_id=schedule.user_id)
        try:
            run.stage = DispatchStage.DUE_CHECK
            if not is_due(schedule.cron_expression, schedule.last_executed_at, now):
                run.stage = DispatchStage.SKIPPED
                return run

            started = time.perf_counter()
            try:
                async with asyncio.timeout(self.deadline_seconds):
                    await self._execute(schedule, run, now)
            except TimeoutError:
                self._fail(run, f"Schedule exceeded {self.deadline_seconds}s deadline")
            except Exception as e:
                self._fail(run, str(e), exc_info=True)
            run.duration_ms = int((time.perf_counter() - started) * 1000)

            await self._record(schedule, run, now)
            return run
        finally:
            clear_context()

    def _fail(self, run: ScheduleRun, error: str, exc_info: bool = False) -> None:
        run.failed_stage = run.stage
        run.stage = DispatchStage.FAILED
        run.error = error
        logger.error(
            "Schedule failed",
            schedule_id=run.schedule_id,
            stage=run.failed_stage.value,
            error=error,
            exc_info=exc_info,
        )

    async def _fetch(self, schedule: Schedule) -> list[NormalizedPullRequest]:
        git = self.registry.git(schedule.git_provider_type)

        async def fetch(token: str) -> list[NormalizedPullRequest]:
            return await git.get_pull_requests(token, schedule.repositories)

        return await self.token_manager.execute_with_token(
            schedule.user_id, schedule.git_provider_type, schedule.git_provider_id, fetch
        )

    async def _execute(self, schedule: Schedule, run: ScheduleRun, now: datetime) -> None:
        run.stage = DispatchStage.FETCHING
        prs = await self._fetch(schedule)

        run.stage = DispatchStage.FILTERING
        prs = apply_filters(prs, schedule.pr_filters, now)
        run.pull_requests_found = len(prs)

        primary_error: Optional[Exception] = None
        if prs or schedule.send_when_empty:
            try:
                await self._send_primary(schedule, prs, run, now)
            except Exception as e:
                # Escalation still runs when the primary channel fails
                primary_error = e
                self._fail(run, str(e), exc_info=True)
        else:
            logger.info("No pull requests and send_when_empty is off", schedule_id=schedule.id)
            run.stage = DispatchStage.DELIVERED

        if schedule.escalation is not None:
            if primary_error is None:
                run.stage = DispatchStage.ESCALATING
            try:
                run.escalations_triggered = await self.escalation_engine.run(schedule, prs, now)
                if primary_error is None:
                    run.stage = DispatchStage.ESCALATED
                if run.escalations_triggered:
                    run.messages_sent += 1
            except Exception as e:
                run.escalation_error = str(e)
                logger.error(
                    "Escalation failed",
                    schedule_id=schedule.id,
                    stage=DispatchStage.ESCALATING.value,
                    error=str(e),
                    exc_info=True,
                )
                if primary_error is None:
                    run.stage = DispatchStage.DELIVERED

    async def _send_primary(
        self,
        schedule: Schedule,
        prs: list[NormalizedPullRequest],
        run: ScheduleRun,
        now: datetime,
    ) -> None:
        run.stage = DispatchStage.FORMATTING
        messaging = self.registry.messaging(schedule.messaging_provider_type)
        repository_name = schedule.repositories[0] if len(schedule.repositories) == 1 else None
        message = messaging.format_pull_requests(prs, schedule.name, repository_name, now)

        run.stage = DispatchStage.SENDING

        async def send(token: str):
            return await messaging.send_message(token, schedule.messaging_channel_id, message)

        await self.token_manager.execute_with_token(
            schedule.user_id,
            schedule.messaging_provider_type,
            schedule.messaging_provider_id,
            send,
        )
        run.messages_sent += 1
        run.stage = DispatchStage.DELIVERED

    async def _record(self, schedule: Schedule, run: ScheduleRun, now: datetime) -> None:
        """Write the execution log and advance last_executed_at. Failures are logged only."""
        try:
            await self.schedule_store.mark_executed(schedule.id, now)
            if self.execution_log is not None:
                await self.execution_log.record_execution(
                    ExecutionLog(
                        schedule_id=schedule.id,
                        status="failed" if run.stage == DispatchStage.FAILED else "success",
                        pull_requests_found=run.pull_requests_found,
                        messages_sent=run.messages_sent,
                        escalations_triggered=run.escalations_triggered,
                        error_message=run.error or run.escalation_error,
                        execution_time_ms=run.duration_ms,
                        executed_at=now,
                    )
                )
        except Exception as e:
            logger.error(
                "Failed to record execution", schedule_id=schedule.id, error=str(e), exc_info=True
            )
