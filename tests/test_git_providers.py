"""Tests for the GitHub, GitLab and Bitbucket adapters against mocked APIs."""

import httpx
import pytest

from prnotify.core.rate_limit import SlidingWindowRateLimiter
from prnotify.db.state import MemoryStateStore
from prnotify.models.schedule import PRFilters
from prnotify.providers.errors import TokenExpiredError
from prnotify.providers.git.bitbucket import BitbucketProvider, participant_states
from prnotify.providers.git.github import GitHubProvider, latest_review_states
from prnotify.providers.git.gitlab import GitLabProvider, count_diff_stats, review_states_from
from tests.helpers import NOW, mock_client


def github_pr(number: int, **extra) -> dict:
    pr = {
        "id": 100 + number,
        "number": number,
        "title": f"Change {number}",
        "user": {"login": "alice"},
        "html_url": f"https://github.com/acme/api/pull/{number}",
        "created_at": "2024-01-10T09:00:00Z",
        "labels": [],
        "requested_reviewers": [],
        "requested_teams": [],
    }
    pr.update(extra)
    return pr


class GitHubAPI:
    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes = {
            "/user/repos": [
                {"id": 1, "name": "api", "full_name": "acme/api", "private": True},
                {"id": 2, "name": "old", "full_name": "acme/old", "archived": True},
            ],
            "/repos/acme/api/pulls": [
                github_pr(
                    1,
                    labels=[{"name": "bug"}],
                    requested_reviewers=[{"login": "bob"}],
                    requested_teams=[{"name": "core"}],
                ),
                github_pr(2, user={"login": "dependabot"}),
            ],
            "/repos/acme/api/pulls/1/reviews": [
                {"user": {"login": "carol"}, "state": "CHANGES_REQUESTED"},
                {"user": {"login": "carol"}, "state": "APPROVED"},
                {"user": {"login": "dave"}, "state": "COMMENTED"},
            ],
            "/repos/acme/api/pulls/1": {"additions": 12, "deletions": 3},
            "/repos/acme/api/pulls/2": {"additions": 1, "deletions": 1},
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("Authorization") == "token expired":
            return httpx.Response(401)
        if request.url.path == "/repos/acme/api/pulls/2/reviews":
            return httpx.Response(500)
        if request.url.path in self.routes:
            return httpx.Response(200, json=self.routes[request.url.path])
        return httpx.Response(404)


class TestGitHub:
    @pytest.mark.asyncio
    async def test_normalizes_pull_requests(self):
        api = GitHubAPI()
        provider = GitHubProvider(client=mock_client(api))

        prs = await provider.get_pull_requests("abc", ["acme/api"])

        assert [pr.id for pr in prs] == ["101", "102"]
        first = prs[0]
        assert first.reviewers == ["bob", "carol", "team:core"]
        assert first.has_approvals is True
        assert first.has_changes_requested is False
        assert first.labels == ["bug"]
        assert (first.additions, first.deletions) == (12, 3)
        assert first.repository == "acme/api"
        assert api.requests[0].headers["Authorization"] == "token abc"

    @pytest.mark.asyncio
    async def test_reviews_are_fetched_in_full_pages(self):
        api = GitHubAPI()
        await GitHubProvider(client=mock_client(api)).get_pull_requests("abc", ["acme/api"])

        reviews = [r for r in api.requests if r.url.path == "/repos/acme/api/pulls/1/reviews"]
        assert reviews[0].url.params["per_page"] == "100"

    @pytest.mark.asyncio
    async def test_failed_detail_call_falls_back(self):
        prs = await GitHubProvider(client=mock_client(GitHubAPI())).get_pull_requests(
            "abc", ["acme/api"]
        )
        second = prs[1]
        assert second.has_approvals is False
        assert second.reviewers == []
        assert (second.additions, second.deletions) == (1, 1)

    @pytest.mark.asyncio
    async def test_failing_repository_is_skipped(self):
        provider = GitHubProvider(client=mock_client(GitHubAPI()))
        prs = await provider.get_pull_requests("abc", ["acme/missing", "acme/api"])
        assert len(prs) == 2

    @pytest.mark.asyncio
    async def test_rejected_token_fails_the_fetch(self):
        provider = GitHubProvider(client=mock_client(GitHubAPI()))
        with pytest.raises(TokenExpiredError):
            await provider.get_pull_requests("expired", ["acme/api"])

    @pytest.mark.asyncio
    async def test_all_repositories_and_filters(self):
        provider = GitHubProvider(client=mock_client(GitHubAPI()))
        prs = await provider.get_pull_requests(
            "abc", None, PRFilters(exclude_authors=["dependabot"]), NOW
        )
        assert [pr.id for pr in prs] == ["101"]

    @pytest.mark.asyncio
    async def test_repositories_exclude_archived(self):
        repos = await GitHubProvider(client=mock_client(GitHubAPI())).get_repositories("abc")
        assert [repo.full_name for repo in repos] == ["acme/api"]
        assert repos[0].private is True

    @pytest.mark.asyncio
    async def test_requests_pass_through_rate_limiter(self):
        store = MemoryStateStore()
        limiter = SlidingWindowRateLimiter(store, window=60)
        api = GitHubAPI()
        provider = GitHubProvider(client=mock_client(api), rate_limiter=limiter)

        await provider.get_repositories("abc")

        assert not await store.hit_window("ratelimit:github", 1, 60)

    def test_latest_review_state_per_reviewer(self):
        reviews = [
            {"user": {"login": "a"}, "state": "APPROVED"},
            {"user": {"login": "a"}, "state": "COMMENTED"},
            {"user": {"login": "b"}, "state": "APPROVED"},
            {"user": {"login": "b"}, "state": "CHANGES_REQUESTED"},
        ]
        assert latest_review_states(reviews) == {"a": "APPROVED", "b": "CHANGES_REQUESTED"}


class GitLabAPI:
    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/v4/projects" :
            return httpx.Response(
                200,
                json=[
                    {
                        "id": 42,
                        "name": "api",
                        "path_with_namespace": "acme/api",
                        "visibility": "private",
                        "web_url": "https://gitlab.com/acme/api",
                    }
                ],
            )
        if path.endswith("/api/merge_requests"):
            assert b"acme%2Fapi" in request.url.raw_path
            assert request.url.params["state"] == "opened"
            return httpx.Response(
                200,
                json=[
                    {
                        "id": 201,
                        "iid": 5,
                        "project_id": 42,
                        "title": "Add search",
                        "author": {"username": "alice"},
                        "web_url": "https://gitlab.com/acme/api/-/merge_requests/5",
                        "created_at": "2024-01-10T09:00:00.000Z",
                        "labels": ["backend"],
                        "reviewers": [{"username": "bob"}],
                    }
                ],
            )
        if path == "/api/v4/projects/42/merge_requests/5/approvals":
            return httpx.Response(200, json={"approved_by": [{"user": {"username": "carol"}}]})
        if path == "/api/v4/projects/42/merge_requests/5/notes":
            return httpx.Response(
                200,
                json=[
                    {"body": "Please fix the tests", "author": {"username": "dave"}},
                    {"body": "approved this merge request", "system": True,
                     "author": {"username": "carol"}},
                ],
            )
        if path == "/api/v4/projects/42/merge_requests/5/diffs":
            return httpx.Response(
                200, json=[{"diff": "@@ -1,2 +1,3 @@\n-old\n+new\n+added\n context"}]
            )
        return httpx.Response(404)


class TestGitLab:
    @pytest.mark.asyncio
    async def test_normalizes_merge_requests(self):
        provider = GitLabProvider(client=mock_client(GitLabAPI()))
        prs = await provider.get_pull_requests("abc", ["acme/api"])

        assert len(prs) == 1
        mr = prs[0]
        assert mr.id == "201"
        assert mr.author == "alice"
        assert mr.reviewers == ["bob"]
        assert mr.has_approvals is True
        assert mr.has_changes_requested is True
        assert (mr.additions, mr.deletions) == (2, 1)

    @pytest.mark.asyncio
    async def test_projects(self):
        repos = await GitLabProvider(client=mock_client(GitLabAPI())).get_repositories("abc")
        assert repos[0].full_name == "acme/api"
        assert repos[0].private is True

    def test_self_hosted_api_base(self):
        provider = GitLabProvider(base_url="https://git.example.com")
        assert provider.api_base == "https://git.example.com/api/v4"

    def test_count_diff_stats_skips_file_headers(self):
        diffs = [{"diff": "--- a/x.py\n+++ b/x.py\n+one\n-two\n+three"}, {"diff": None}]
        assert count_diff_stats(diffs) == (2, 1)

    def test_review_states(self):
        states = review_states_from(
            {"approved_by": [{"user": {"username": "a"}}]},
            [{"body": "Changes needed here", "author": {"username": "b"}}],
        )
        assert states == {"a": "APPROVED", "b": "CHANGES_REQUESTED"}


class BitbucketAPI:
    BASE = "/2.0/repositories/acme/api/pullrequests"

    @staticmethod
    def pr(pr_id: int) -> dict:
        return {
            "id": pr_id,
            "title": f"Bitbucket change {pr_id}",
            "author": {"nickname": "alice", "display_name": "Alice"},
            "links": {"html": {"href": f"https://bitbucket.org/acme/api/pull-requests/{pr_id}"}},
            "created_on": "2024-01-10T09:00:00.000000+00:00",
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == self.BASE:
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json={"values": [self.pr(8)]})
            return httpx.Response(
                200,
                json={
                    "values": [self.pr(7)],
                    "next": f"https://api.bitbucket.org{self.BASE}?page=2",
                },
            )
        if path == f"{self.BASE}/7":
            return httpx.Response(
                200,
                json={
                    "participants": [
                        {"user": {"nickname": "carol"}, "approved": True, "state": "approved"}
                    ],
                    "reviewers": [{"nickname": "bob"}],
                },
            )
        if path == f"{self.BASE}/7/diffstat":
            return httpx.Response(
                200,
                json={"values": [{"lines_added": 5, "lines_removed": 2}, {"lines_added": 1}]},
            )
        return httpx.Response(404)


class TestBitbucket:
    @pytest.mark.asyncio
    async def test_follows_pagination_and_normalizes(self):
        provider = BitbucketProvider(client=mock_client(BitbucketAPI()))
        prs = await provider.get_pull_requests("abc", ["acme/api"])

        assert [pr.id for pr in prs] == ["acme/api#7", "acme/api#8"]
        first, second = prs
        assert first.reviewers == ["bob", "carol"]
        assert first.has_approvals is True
        assert (first.additions, first.deletions) == (6, 2)
        assert second.reviewers == []
        assert second.additions is None

    def test_participant_states(self):
        states = participant_states(
            [
                {"user": {"nickname": "a"}, "state": "changes_requested"},
                {"user": {"display_name": "B"}, "approved": True},
                {"user": {"nickname": "c"}, "approved": False},
            ]
        )
        assert states == {"a": "CHANGES_REQUESTED", "B": "APPROVED"}

    @pytest.mark.asyncio
    async def test_same_number_in_two_repositories(self):
        def handler(request: httpx.Request) -> httpx.Response:
            for repository in ("acme/api", "acme/web"):
                if request.url.path == f"/2.0/repositories/{repository}/pullrequests":
                    return httpx.Response(200, json={"values": [BitbucketAPI.pr(1)]})
            return httpx.Response(404)

        provider = BitbucketProvider(client=mock_client(handler))
        prs = await provider.get_pull_requests("abc", ["acme/api", "acme/web"])

        assert sorted(pr.id for pr in prs) == ["acme/api#1", "acme/web#1"]
