"""Pytest configuration and fixtures."""

import os

# Test environment, set before prnotify.core.config is imported
os.environ.setdefault("STATE_STORE", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("RETRY_BASE_DELAY", "0")
os.environ.setdefault("DEFAULT_RETRY_AFTER", "0")
os.environ.setdefault("RATE_LIMIT_POLL_INTERVAL", "0.01")
for _provider in ("github", "gitlab", "bitbucket", "slack", "discord", "teams"):
    os.environ.setdefault(f"{_provider.upper()}_CLIENT_ID", f"{_provider}-client")
    os.environ.setdefault(f"{_provider.upper()}_CLIENT_SECRET", f"{_provider}-secret")

import pytest

from tests.helpers import (
    InMemoryEscalationTracker,
    InMemoryExecutionLogStore,
    InMemoryScheduleStore,
    InMemoryTokenStore,
)


@pytest.fixture
def schedule_store():
    return InMemoryScheduleStore()


@pytest.fixture
def token_store():
    return InMemoryTokenStore()


@pytest.fixture
def execution_log():
    return InMemoryExecutionLogStore()


@pytest.fixture
def escalation_tracker():
    return InMemoryEscalationTracker()
