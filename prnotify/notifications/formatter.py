"""Pull request categorization and chat message rendering.

One rendering routine serves every messaging provider. Providers differ only
in their MessageStyle: markdown dialect for bold text, links and mentions,
plus how long a message may get.
"""

from datetime import UTC, datetime
from typing import Optional

from prnotify.models.pull_request import Message, NormalizedPullRequest, PRCategory
from prnotify.notifications.filters import age_in_days

DEFAULT_TITLE = "DAILY REMINDER FOR OPEN PULL REQUESTS"
STALE_AFTER_DAYS = 7
MAX_LINES_PER_CATEGORY = 15
MAX_TITLE_LENGTH = 60
MAX_LABELS = 3

READY_TO_MERGE = "Ready to Merge"
NEEDS_CHANGES = "Needs Changes"
UNDER_REVIEW = "Under Review"
STALE = "Stale"
AWAITING_REVIEW = "Awaiting Review"

# Display order: (name, emoji, short label)
CATEGORIES = [
    (READY_TO_MERGE, "✅", "ready"),
    (NEEDS_CHANGES, "🔧", "changes"),
    (UNDER_REVIEW, "👀", "review"),
    (STALE, "⏰", "stale"),
    (AWAITING_REVIEW, "⏳", "waiting"),
]


class MessageStyle:
    """Markdown dialect and size limits of a chat platform."""

    soft_cap = 3000
    max_length = 4000

    def bold(self, text: str) -> str:
        return f"**{text}**"

    def link(self, text: str, url: str) -> str:
        return f"[{text}]({url})"

    def mention(self, handle: str) -> str:
        return handle if handle.startswith("@") else f"@{handle}"


def category_for(pr: NormalizedPullRequest, now: datetime) -> str:
    """Category name for a pull request. Checks run in priority order."""
    if pr.has_approvals and not pr.has_changes_requested:
        return READY_TO_MERGE
    if pr.has_changes_requested:
        return NEEDS_CHANGES
    if age_in_days(pr, now) >= STALE_AFTER_DAYS:
        return STALE
    if pr.reviewers:
        return UNDER_REVIEW
    return AWAITING_REVIEW


def categorize_prs(
    prs: list[NormalizedPullRequest], now: Optional[datetime] = None
) -> list[PRCategory]:
    """Partition pull requests into the five categories, in display order."""
    now = now or datetime.now(UTC)
    buckets: dict[str, list[NormalizedPullRequest]] = {name: [] for name, _, _ in CATEGORIES}
    for pr in prs:
        buckets[category_for(pr, now)].append(pr)
    return [
        PRCategory(name=name, emoji=emoji, short_label=short, prs=buckets[name])
        for name, emoji, short in CATEGORIES
    ]


def build_summary_line(categories: list[PRCategory]) -> str:
    """E.g. ``✅1 ready 🔧1 changes ⏰1 stale``, non-empty categories only."""
    return " ".join(
        f"{category.emoji}{len(category.prs)} {category.short_label}"
        for category in categories
        if category.prs
    )


def format_age(pr: NormalizedPullRequest, now: datetime) -> str:
    days = age_in_days(pr, now)
    if days <= 0:
        return "today"
    return f"{days}d"


def truncate_title(title: str, max_length: int = MAX_TITLE_LENGTH) -> str:
    if len(title) <= max_length:
        return title
    return title[: max_length - 3] + "..."


def format_line_count(additions: Optional[int], deletions: Optional[int]) -> str:
    if additions is None or deletions is None:
        return ""
    return f" (+{additions}/-{deletions})"


def format_labels(labels: list[str]) -> str:
    if not labels:
        return ""
    return " " + " ".join(f"[{label}]" for label in labels[:MAX_LABELS])


def format_pr_line(pr: NormalizedPullRequest, style: MessageStyle, now: datetime) -> str:
    return (
        f"• {style.link(truncate_title(pr.title), pr.url)}"
        f"{format_labels(pr.labels)}"
        f"{format_line_count(pr.additions, pr.deletions)}"
        f" - {pr.author} ({format_age(pr, now)})"
    )


def _header(title: str, style: MessageStyle) -> str:
    return f"📋 {style.bold(title.upper())}"


def build_empty_state(
    title: str, style: MessageStyle, repository_name: Optional[str] = None
) -> str:
    suffix = f" in {repository_name}" if repository_name else ""
    return f"{_header(title, style)}\n\n✅ All clear! No open pull requests{suffix}"


def _not_shown_notice(count: int) -> str:
    noun = "pull request" if count == 1 else "pull requests"
    return f"⚠️ {count} more {noun} not shown"


def build_message(
    prs: list[NormalizedPullRequest],
    style: MessageStyle,
    title: Optional[str] = None,
    repository_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Message:
    """
    Render the notification for a set of pull requests.

    Categories are added in display order, each capped at 15 lines. Once the
    body grows past the style's soft cap no further categories are added and
    a single notice reports how many pull requests were left out.
    """
    now = now or datetime.now(UTC)
    title = title or DEFAULT_TITLE

    if not prs:
        return Message(title=title, text=build_empty_state(title, style, repository_name))

    categories = categorize_prs(prs, now)
    lines = [_header(title, style), build_summary_line(categories)]
    length = sum(len(line) + 1 for line in lines)
    # Room kept for the truncation notice
    limit = style.max_length - 64
    not_shown = 0
    truncated = False

    for category in categories:
        if not category.prs:
            continue
        if truncated or length > style.soft_cap:
            truncated = True
            not_shown += len(category.prs)
            continue

        block = ["", f"{category.emoji} {style.bold(category.name)} ({len(category.prs)})"]
        visible = category.prs[:MAX_LINES_PER_CATEGORY]
        rendered = 0
        for pr in visible:
            line = format_pr_line(pr, style, now)
            block_length = sum(len(entry) + 1 for entry in block)
            if length + block_length + len(line) + 1 > limit:
                truncated = True
                break
            block.append(line)
            rendered += 1

        if rendered == 0:
            not_shown += len(category.prs)
            continue
        if truncated:
            not_shown += len(category.prs) - rendered
        elif len(category.prs) > MAX_LINES_PER_CATEGORY:
            block.append(
                f"... and {len(category.prs) - MAX_LINES_PER_CATEGORY} more in {category.name}"
            )

        lines.extend(block)
        length += sum(len(entry) + 1 for entry in block)

    if not_shown:
        lines.extend(["", _not_shown_notice(not_shown)])

    return Message(title=title, text="\n".join(lines))


def build_escalation_message(
    prs: list[NormalizedPullRequest],
    style: MessageStyle,
    days: int,
    mentions: Optional[list[str]] = None,
    title: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Message:
    """Render the escalation notice for pull requests waiting ``days`` or longer."""
    now = now or datetime.now(UTC)
    noun = "PULL REQUEST" if len(prs) == 1 else "PULL REQUESTS"
    heading = f"ESCALATION: {len(prs)} {noun} WAITING {days}+ DAYS"
    if title:
        heading = f"{heading} ({title})"

    lines = [f"🚨 {style.bold(heading.upper())}"]
    if mentions:
        lines.append(" ".join(style.mention(handle) for handle in mentions))
    lines.append("")

    oldest_first = sorted(prs, key=lambda pr: pr.created_at)
    limit = style.max_length - 64
    length = sum(len(line) + 1 for line in lines)
    shown = 0
    for pr in oldest_first[:MAX_LINES_PER_CATEGORY]:
        line = f"{format_pr_line(pr, style, now)} in {pr.repository}"
        if length + len(line) + 1 > limit:
            break
        lines.append(line)
        length += len(line) + 1
        shown += 1

    if len(prs) > shown:
        lines.append(f"... and {len(prs) - shown} more")

    return Message(title=heading, text="\n".join(lines))
