"""GitLab git provider (gitlab.com or self-hosted)."""

import asyncio
from typing import Any, Optional
from urllib.parse import quote

from prnotify.core.config import settings
from prnotify.models.pull_request import (
    APPROVED,
    CHANGES_REQUESTED,
    NormalizedPullRequest,
    Repository,
    summarize_review_states,
)
from prnotify.providers.base import BaseGitProvider

# GitLab has no "request changes" review state; these phrases in a
# discussion note stand in for it.
CHANGE_REQUEST_PHRASES = ("needs changes", "request changes", "please fix", "changes needed")


def count_diff_stats(diffs: list[dict]) -> tuple[int, int]:
    """Count added and removed lines across GitLab diff entries."""
    additions = 0
    deletions = 0
    for entry in diffs:
        for line in (entry.get("diff") or "").split("\n"):
            if line.startswith("+++") or line.startswith("---"):
                continue
            if line.startswith("+"):
                additions += 1
            elif line.startswith("-"):
                deletions += 1
    return additions, deletions


def review_states_from(approvals: dict, notes: list[dict]) -> dict[str, str]:
    """Approvers count as APPROVED; authors of change-request notes as CHANGES_REQUESTED."""
    states: dict[str, str] = {}
    for approval in approvals.get("approved_by") or []:
        states[approval["user"]["username"]] = APPROVED
    for note in notes:
        if note.get("system") or not note.get("body"):
            continue
        body = note["body"].lower()
        if any(phrase in body for phrase in CHANGE_REQUEST_PHRASES):
            states[note["author"]["username"]] = CHANGES_REQUESTED
    return states


class GitLabProvider(BaseGitProvider):
    """Merge requests and projects from the GitLab REST API."""

    provider_type = "gitlab"
    scopes = ["read_api", "read_user", "read_repository"]

    def __init__(self, *args: Any, base_url: Optional[str] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.base_url = (base_url or settings.gitlab_base_url).rstrip("/")
        self.api_base = f"{self.base_url}/api/v4"
        self.authorize_url = f"{self.base_url}/oauth/authorize"
        self.token_url = f"{self.base_url}/oauth/token"

    async def get_repositories(self, token: str) -> list[Repository]:
        projects = await self._get_all_pages(
            "/projects",
            token,
            params={"membership": "true", "archived": "false", "per_page": 100},
        )
        return [
            Repository(
                id=str(project["id"]),
                name=project["name"],
                full_name=project["path_with_namespace"],
                private=project.get("visibility") != "public",
                url=project.get("web_url"),
            )
            for project in projects
        ]

    async def _normalize(
        self, token: str, project: str, mr: dict, limit: asyncio.Semaphore
    ) -> NormalizedPullRequest:
        base = f"/projects/{mr['project_id']}/merge_requests/{mr['iid']}"
        async with limit:
            approvals, notes, diffs = await asyncio.gather(
                self._get_optional_json(f"{base}/approvals", token, {}),
                self._get_optional_json(f"{base}/notes?per_page=100", token, []),
                self._get_optional_json(f"{base}/diffs?per_page=100", token, None),
            )

        states = review_states_from(approvals, notes)
        has_approvals, has_changes_requested = summarize_review_states(list(states.values()))

        additions: Optional[int] = None
        deletions: Optional[int] = None
        if diffs is not None:
            additions, deletions = count_diff_stats(diffs)

        return NormalizedPullRequest(
            id=str(mr["id"]),
            title=mr["title"],
            author=(mr.get("author") or {}).get("username", "unknown"),
            url=mr["web_url"],
            created_at=mr["created_at"],
            repository=project,
            labels=list(mr.get("labels") or []),
            reviewers=[reviewer["username"] for reviewer in mr.get("reviewers") or []],
            has_approvals=has_approvals,
            has_changes_requested=has_changes_requested,
            additions=additions,
            deletions=deletions,
        )

    async def _fetch_repository_pull_requests(
        self, token: str, repository: str, limit: asyncio.Semaphore
    ) -> list[NormalizedPullRequest]:
        project_id = quote(repository, safe="")
        mrs = await self._get_json(
            f"/projects/{project_id}/merge_requests",
            token,
            params={
                "state": "opened",
                "per_page": 100,
                "order_by": "updated_at",
                "sort": "desc",
            },
        )
        return list(
            await asyncio.gather(*(self._normalize(token, repository, mr, limit) for mr in mrs))
        )
