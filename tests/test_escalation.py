"""Tests for escalation candidate selection and re-escalation tracking."""

from datetime import timedelta

import httpx
import pytest

from prnotify.auth.token_manager import TokenManager
from prnotify.models.schedule import EscalationConfig
from prnotify.notifications.escalation import EscalationEngine, select_candidates
from prnotify.providers.factory import ProviderRegistry
from prnotify.providers.messaging.slack import SlackProvider
from tests.helpers import (
    NOW,
    InMemoryEscalationTracker,
    InMemoryTokenStore,
    make_pr,
    make_schedule,
    make_token,
    mock_client,
    request_json,
)


class SlackAPI:
    def __init__(self):
        self.posts: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = request_json(request)
        self.posts.append(body)
        return httpx.Response(200, json={"ok": True, "channel": body["channel"], "ts": "1.0"})


def escalating_schedule(days: int = 3, mentions: list[str] | None = None):
    return make_schedule(
        escalation=EscalationConfig(
            provider_type="slack",
            provider_id="slack-1",
            channel_id="C999",
            days=days,
            mentions=mentions or [],
        )
    )


@pytest.fixture
def slack():
    return SlackAPI()


@pytest.fixture
def tracker():
    return InMemoryEscalationTracker()


@pytest.fixture
def engine(slack, tracker):
    registry = ProviderRegistry()
    registry.register(SlackProvider(client=mock_client(slack)))
    tokens = InMemoryTokenStore([make_token("slack", "slack-1", access_token="xoxb-1")])
    manager = TokenManager(tokens, registry, clock=lambda: NOW)
    return EscalationEngine(registry, manager, tracker, reinterval=timedelta(days=1))


class TestSelectCandidates:
    def test_age_threshold_is_inclusive(self):
        prs = [make_pr("1", age_days=3), make_pr("2", age_days=2)]
        assert [pr.id for pr in select_candidates(prs, 3, NOW)] == ["1"]

    def test_ready_to_merge_is_never_escalated(self):
        prs = [
            make_pr("1", age_days=10, has_approvals=True),
            make_pr("2", age_days=10, has_approvals=True, has_changes_requested=True),
        ]
        assert [pr.id for pr in select_candidates(prs, 3, NOW)] == ["2"]


class TestEscalationEngine:
    @pytest.mark.asyncio
    async def test_sends_to_escalation_channel(self, engine, slack):
        schedule = escalating_schedule(mentions=["@here", "U0LEAD"])
        prs = [make_pr("1", age_days=5), make_pr("2", age_days=5, has_approvals=True)]

        count = await engine.run(schedule, prs, NOW)

        assert count == 1
        post = slack.posts[0]
        assert post["channel"] == "C999"
        assert "ESCALATION: 1 PULL REQUEST WAITING 3+ DAYS (TEAM REMINDER)" in post["text"]
        assert "<!here> <@U0LEAD>" in post["text"]
        assert "in acme/api" in post["text"]

    @pytest.mark.asyncio
    async def test_nothing_to_escalate(self, engine, slack):
        assert await engine.run(escalating_schedule(), [make_pr("1", age_days=1)], NOW) == 0
        assert slack.posts == []

    @pytest.mark.asyncio
    async def test_no_config(self, engine, slack):
        assert await engine.run(make_schedule(), [make_pr("1", age_days=30)], NOW) == 0
        assert slack.posts == []

    @pytest.mark.asyncio
    async def test_waits_for_reinterval(self, engine, slack, tracker):
        schedule = escalating_schedule()
        prs = [make_pr("1", age_days=5)]

        assert await engine.run(schedule, prs, NOW) == 1
        assert await engine.run(schedule, prs, NOW + timedelta(hours=1)) == 0
        assert await engine.run(schedule, prs, NOW + timedelta(days=1)) == 1

        assert len(slack.posts) == 2
        assert tracker.escalated[(schedule.id, "1")] == NOW + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_closed_pull_requests_are_forgotten(self, engine, tracker):
        schedule = escalating_schedule()
        await engine.run(schedule, [make_pr("1", age_days=5), make_pr("2", age_days=5)], NOW)

        await engine.run(schedule, [make_pr("2", age_days=5)], NOW + timedelta(hours=1))

        assert (schedule.id, "1") not in tracker.escalated
        assert (schedule.id, "2") in tracker.escalated
