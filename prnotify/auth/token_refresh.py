"""Proactive refresh of tokens that are about to expire."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Optional

import httpx

from prnotify.auth.token_manager import TokenManager
from prnotify.core.logging import get_logger
from prnotify.db.stores import TokenStore
from prnotify.providers.errors import ProviderError

logger = get_logger(__name__)


@dataclass
class RefreshSummary:
    checked: int = 0
    refreshed: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


async def refresh_expiring_tokens(
    token_store: TokenStore,
    token_manager: TokenManager,
    within: timedelta = timedelta(hours=1),
    now: Optional[datetime] = None,
) -> RefreshSummary:
    """
    Refresh every token with a refresh token that expires within ``within``.

    Failures are collected rather than raised so one bad token does not stop
    the rest. A failed refresh removes the token (see TokenManager.refresh).
    """
    now = now or datetime.now(UTC)
    records = await token_store.list_expiring_tokens(now + within)
    summary = RefreshSummary(checked=len(records))

    for record in records:
        if not record.refresh_token:
            continue
        try:
            await token_manager.refresh(record)
            summary.refreshed += 1
        except (ProviderError, httpx.TransportError, ValueError) as e:
            summary.failed += 1
            summary.errors.append(f"{record.provider_type}/{record.provider_id}: {e}")

    logger.info(
        "Token refresh run complete",
        checked=summary.checked,
        refreshed=summary.refreshed,
        failed=summary.failed,
    )
    return summary
