"""Escalation of pull requests that have waited too long."""

from datetime import UTC, datetime, timedelta
from typing import Optional

from prnotify.auth.token_manager import TokenManager
from prnotify.core.config import settings
from prnotify.core.logging import get_logger
from prnotify.db.stores import EscalationTracker
from prnotify.models.pull_request import NormalizedPullRequest
from prnotify.models.schedule import Schedule
from prnotify.notifications.filters import age_in_days
from prnotify.notifications.formatter import READY_TO_MERGE, category_for
from prnotify.providers.factory import ProviderRegistry

logger = get_logger(__name__)


def select_candidates(
    prs: list[NormalizedPullRequest], days: int, now: Optional[datetime] = None
) -> list[NormalizedPullRequest]:
    """Pull requests at least ``days`` old that are not ready to merge."""
    now = now or datetime.now(UTC)
    return [
        pr
        for pr in prs
        if age_in_days(pr, now) >= days and category_for(pr, now) != READY_TO_MERGE
    ]


class EscalationEngine:
    """
    Sends a second message to the escalation channel for long-waiting PRs.

    With a tracker, a pull request is escalated again only after the
    re-escalation interval has passed since its last escalation.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        token_manager: TokenManager,
        tracker: Optional[EscalationTracker] = None,
        reinterval: Optional[timedelta] = None,
    ):
        self.registry = registry
        self.token_manager = token_manager
        self.tracker = tracker
        self.reinterval = reinterval or timedelta(days=settings.escalation_reinterval_days)

    async def _not_recently_escalated(
        self, schedule_id: str, candidates: list[NormalizedPullRequest], now: datetime
    ) -> list[NormalizedPullRequest]:
        if self.tracker is None or not candidates:
            return candidates
        last = await self.tracker.last_escalated(schedule_id, [pr.id for pr in candidates])
        return [
            pr for pr in candidates if pr.id not in last or now - last[pr.id] >= self.reinterval
        ]

    async def run(
        self,
        schedule: Schedule,
        prs: list[NormalizedPullRequest],
        now: Optional[datetime] = None,
    ) -> int:
        """
        Escalate qualifying pull requests for a schedule.

        Args:
            schedule: Schedule with an escalation config
            prs: The schedule's already fetched and filtered pull requests
            now: Reference time

        Returns:
            Number of pull requests escalated
        """
        config = schedule.escalation
        if config is None:
            return 0
        now = now or datetime.now(UTC)

        if self.tracker is not None:
            removed = await self.tracker.cleanup(schedule.id, [pr.id for pr in prs])
            if removed:
                logger.info("Cleared escalation tracking", schedule_id=schedule.id, removed=removed)

        candidates = select_candidates(prs, config.days, now)
        due = await self._not_recently_escalated(schedule.id, candidates, now)
        if not due:
            logger.info(
                "No pull requests to escalate",
                schedule_id=schedule.id,
                candidates=len(candidates),
            )
            return 0

        provider = self.registry.messaging(config.provider_type)
        message = provider.format_escalation(due, config.days, config.mentions, schedule.name, now)

        async def send(token: str):
            return await provider.send_message(token, config.channel_id, message)

        await self.token_manager.execute_with_token(
            schedule.user_id, config.provider_type, config.provider_id, send
        )

        if self.tracker is not None:
            await self.tracker.record_escalations(schedule.id, due, now)

        logger.info("Escalation sent", schedule_id=schedule.id, count=len(due))
        return len(due)
