"""GitHub git provider."""

import asyncio
from typing import Optional

from prnotify.models.pull_request import (
    NormalizedPullRequest,
    Repository,
    summarize_review_states,
)
from prnotify.providers.base import BaseGitProvider

GITHUB_API_BASE = "https://api.github.com"
COMMENTED = "COMMENTED"


def latest_review_states(reviews: list[dict]) -> dict[str, str]:
    """
    Latest non-comment review state per reviewer.

    Reviews arrive in submission order, so later entries overwrite earlier ones.
    """
    states: dict[str, str] = {}
    for review in reviews:
        user = review.get("user")
        state = review.get("state")
        if not user or not state or state == COMMENTED:
            continue
        states[user["login"]] = state
    return states


class GitHubProvider(BaseGitProvider):
    """Pull requests and repositories from the GitHub REST API."""

    provider_type = "github"
    api_base = GITHUB_API_BASE
    authorize_url = "https://github.com/login/oauth/authorize"
    token_url = "https://github.com/login/oauth/access_token"
    scopes = ["repo", "read:user"]

    def _auth_headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "prnotify/1.0",
        }

    async def get_repositories(self, token: str) -> list[Repository]:
        repos = await self._get_all_pages(
            "/user/repos",
            token,
            params={"type": "all", "sort": "updated", "per_page": 100},
        )
        return [
            Repository(
                id=str(repo["id"]),
                name=repo["name"],
                full_name=repo["full_name"],
                private=repo.get("private", False),
                url=repo.get("html_url"),
            )
            for repo in repos
            if not repo.get("archived") and not repo.get("disabled")
        ]

    async def _normalize(
        self, token: str, repository: str, pr: dict, limit: asyncio.Semaphore
    ) -> NormalizedPullRequest:
        number = pr["number"]
        async with limit:
            reviews, detail = await asyncio.gather(
                self._get_optional_json(
                    f"/repos/{repository}/pulls/{number}/reviews",
                    token,
                    [],
                    params={"per_page": 100},
                ),
                self._get_optional_json(f"/repos/{repository}/pulls/{number}", token, {}),
            )

        states = latest_review_states(reviews)
        has_approvals, has_changes_requested = summarize_review_states(list(states.values()))

        reviewers: list[str] = []
        for login in [user["login"] for user in pr.get("requested_reviewers") or []] + list(
            states
        ):
            if login not in reviewers:
                reviewers.append(login)
        for team in pr.get("requested_teams") or []:
            reviewers.append(f"team:{team['name']}")

        additions: Optional[int] = detail.get("additions")
        deletions: Optional[int] = detail.get("deletions")

        return NormalizedPullRequest(
            id=str(pr["id"]),
            title=pr["title"],
            author=(pr.get("user") or {}).get("login", "unknown"),
            url=pr["html_url"],
            created_at=pr["created_at"],
            repository=repository,
            labels=[label["name"] for label in pr.get("labels") or []],
            reviewers=reviewers,
            has_approvals=has_approvals,
            has_changes_requested=has_changes_requested,
            additions=additions,
            deletions=deletions,
        )

    async def _fetch_repository_pull_requests(
        self, token: str, repository: str, limit: asyncio.Semaphore
    ) -> list[NormalizedPullRequest]:
        pulls = await self._get_json(
            f"/repos/{repository}/pulls",
            token,
            params={"state": "open", "per_page": 100},
        )
        return list(
            await asyncio.gather(*(self._normalize(token, repository, pr, limit) for pr in pulls))
        )
