"""Pull request filter predicates."""

from datetime import UTC, datetime
from typing import Optional

from prnotify.models.pull_request import NormalizedPullRequest
from prnotify.models.schedule import PRFilters

SECONDS_PER_DAY = 86400


def age_in_days(pr: NormalizedPullRequest, now: Optional[datetime] = None) -> int:
    """Whole days since the pull request was opened, rounded down."""
    now = now or datetime.now(UTC)
    return int((now - pr.created_at).total_seconds() // SECONDS_PER_DAY)


def _matches_any(text: str, needles: list[str]) -> bool:
    lowered = text.lower()
    return any(needle.lower() in lowered for needle in needles)


def matches_filters(
    pr: NormalizedPullRequest, filters: PRFilters, now: Optional[datetime] = None
) -> bool:
    """
    Whether a pull request passes every configured filter dimension.

    Labels and title keywords match when any entry is a case-insensitive
    substring. Excluded authors match exactly.
    """
    if filters.labels and not any(_matches_any(label, filters.labels) for label in pr.labels):
        return False

    if filters.title_keywords and not _matches_any(pr.title, filters.title_keywords):
        return False

    if pr.author in filters.exclude_authors:
        return False

    if filters.min_age is not None or filters.max_age is not None:
        age = age_in_days(pr, now)
        if filters.min_age is not None and age < filters.min_age:
            return False
        if filters.max_age is not None and age > filters.max_age:
            return False

    return True


def apply_filters(
    prs: list[NormalizedPullRequest],
    filters: Optional[PRFilters],
    now: Optional[datetime] = None,
) -> list[NormalizedPullRequest]:
    """Keep the pull requests that pass the filters, preserving order."""
    if filters is None:
        return prs
    now = now or datetime.now(UTC)
    return [pr for pr in prs if matches_filters(pr, filters, now)]


def validate_filters(filters: PRFilters) -> dict[str, str]:
    """Field errors for a filter configuration, empty when valid."""
    errors: dict[str, str] = {}
    if filters.min_age is not None and filters.min_age < 0:
        errors["pr_filters.min_age"] = "min_age must be non-negative"
    if filters.max_age is not None and filters.max_age < 0:
        errors["pr_filters.max_age"] = "max_age must be non-negative"
    if (
        not errors
        and filters.min_age is not None
        and filters.max_age is not None
        and filters.min_age > filters.max_age
    ):
        errors["pr_filters.min_age"] = "min_age cannot be greater than max_age"
    return errors


def describe_filters(filters: Optional[PRFilters]) -> str:
    """One-line human readable summary, e.g. for the schedules table."""
    if filters is None or filters.is_empty():
        return "No filters"

    parts = []
    if filters.labels:
        parts.append(f"Labels: {', '.join(filters.labels)}")
    if filters.title_keywords:
        parts.append(f"Keywords: {', '.join(filters.title_keywords)}")
    if filters.exclude_authors:
        parts.append(f"Excluding: {', '.join(filters.exclude_authors)}")
    if filters.min_age is not None and filters.max_age is not None:
        parts.append(f"Age: {filters.min_age}-{filters.max_age} days")
    elif filters.min_age is not None:
        parts.append(f"Age: {filters.min_age}+ days")
    elif filters.max_age is not None:
        parts.append(f"Age: up to {filters.max_age} days")
    return " | ".join(parts)
