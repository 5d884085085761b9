"""Bitbucket Cloud git provider."""

import asyncio
from typing import Any, Optional

from prnotify.core.retry import with_retry
from prnotify.models.pull_request import (
    APPROVED,
    CHANGES_REQUESTED,
    NormalizedPullRequest,
    Repository,
    summarize_review_states,
)
from prnotify.models.token import TokenResponse
from prnotify.providers.base import BaseGitProvider

BITBUCKET_API_BASE = "https://api.bitbucket.org/2.0"


def participant_states(participants: list[dict]) -> dict[str, str]:
    """Review state per participant who approved or requested changes."""
    states: dict[str, str] = {}
    for participant in participants:
        user = participant.get("user") or {}
        name = user.get("nickname") or user.get("display_name")
        if not name:
            continue
        if participant.get("state") == "changes_requested":
            states[name] = CHANGES_REQUESTED
        elif participant.get("approved") or participant.get("state") == "approved":
            states[name] = APPROVED
    return states


def _user_name(user: Optional[dict]) -> str:
    user = user or {}
    return user.get("nickname") or user.get("display_name") or "unknown"


class BitbucketProvider(BaseGitProvider):
    """Pull requests and repositories from the Bitbucket Cloud 2.0 API."""

    provider_type = "bitbucket"
    api_base = BITBUCKET_API_BASE
    authorize_url = "https://bitbucket.org/site/oauth2/authorize"
    token_url = "https://bitbucket.org/site/oauth2/access_token"
    scopes = ["repository", "pullrequest", "account"]

    async def _get_values(
        self, url: str, token: str, params: Optional[dict] = None, max_pages: int = 10
    ) -> list[Any]:
        """Collect ``values`` across pages, following the ``next`` link in the body."""
        values: list[Any] = []
        next_url: Optional[str] = url
        pages = 0
        while next_url and pages < max_pages:
            page = await self._get_json(next_url, token, params=params)
            values.extend(page.get("values", []))
            next_url = page.get("next")
            params = None
            pages += 1
        return values

    async def _token_request(self, data: dict[str, str]) -> TokenResponse:
        # Bitbucket authenticates the client with HTTP basic auth
        client_id, client_secret = self._credentials()

        async def call() -> TokenResponse:
            response = await self._request(
                "POST", self.token_url, data=data, auth=(client_id, client_secret)
            )
            return self._parse_token_response(response.json())

        return await with_retry(call, description="bitbucket token request")

    async def get_repositories(self, token: str) -> list[Repository]:
        repos = await self._get_values(
            "/repositories", token, params={"role": "member", "pagelen": 100}
        )
        return [
            Repository(
                id=repo.get("uuid", repo["full_name"]),
                name=repo["name"],
                full_name=repo["full_name"],
                private=repo.get("is_private", False),
                url=(repo.get("links", {}).get("html") or {}).get("href"),
            )
            for repo in repos
        ]

    async def _normalize(
        self, token: str, repository: str, pr: dict, limit: asyncio.Semaphore
    ) -> NormalizedPullRequest:
        base = f"/repositories/{repository}/pullrequests/{pr['id']}"
        async with limit:
            detail, diffstat = await asyncio.gather(
                self._get_optional_json(base, token, {}),
                self._get_optional_json(f"{base}/diffstat", token, None),
            )

        states = participant_states(detail.get("participants") or [])
        has_approvals, has_changes_requested = summarize_review_states(list(states.values()))

        reviewers = [_user_name(reviewer) for reviewer in detail.get("reviewers") or []]
        for name in states:
            if name not in reviewers:
                reviewers.append(name)

        additions: Optional[int] = None
        deletions: Optional[int] = None
        if diffstat is not None:
            entries = diffstat.get("values", [])
            additions = sum(entry.get("lines_added", 0) for entry in entries)
            deletions = sum(entry.get("lines_removed", 0) for entry in entries)

        return NormalizedPullRequest(
            # Bitbucket numbers pull requests per repository
            id=f"{repository}#{pr['id']}",
            title=pr["title"],
            author=_user_name(pr.get("author")),
            url=pr["links"]["html"]["href"],
            created_at=pr["created_on"],
            repository=repository,
            labels=[],
            reviewers=reviewers,
            has_approvals=has_approvals,
            has_changes_requested=has_changes_requested,
            additions=additions,
            deletions=deletions,
        )

    async def _fetch_repository_pull_requests(
        self, token: str, repository: str, limit: asyncio.Semaphore
    ) -> list[NormalizedPullRequest]:
        pulls = await self._get_values(
            f"/repositories/{repository}/pullrequests",
            token,
            params={"state": "OPEN", "pagelen": 50},
        )
        return list(
            await asyncio.gather(*(self._normalize(token, repository, pr, limit) for pr in pulls))
        )
