"""
Tests for the GitHub client and its DTO helpers.
"""

import json

import httpx
import pytest

from be.config import GitHubSettings
from clients.dtos import ReleaseDTO, extract_major_minor
from clients.github import GitHubClient, GitHubClientError
from tests.factories import issue, statistics


def github_client(handler, **overrides) -> GitHubClient:
    config = GitHubSettings(
        url="https://example.test/graphql",
        secret=overrides.pop("secret", "s3cret"),
        owner="frankframework",
        repository="frankframework",
        page_size=50,
    )
    return GitHubClient(config, transport=httpx.MockTransport(handler), retry_attempts=1, retry_backoff=0)


class TestGitHubClient:
    """Tests for request shaping and error wrapping."""

    async def test_sends_bearer_token_and_repository_variables(self):
        seen = []

        def handler(request):
            seen.append((request.headers.get("Authorization"), json.loads(request.content)))
            return httpx.Response(200, json={
                "data": {"repository": {"labels": {
                    "edges": [{"node": {"id": "l1", "name": "bug", "color": "d73a4a"}}],
                    "pageInfo": {"hasNextPage": False, "endCursor": None},
                }}}
            })

        client = github_client(handler)
        labels = await client.get_labels()
        await client.aclose()

        assert labels[0].color == "d73a4a"
        authorization, payload = seen[0]
        assert authorization == "Bearer s3cret"
        assert payload["variables"]["owner"] == "frankframework"
        assert payload["variables"]["name"] == "frankframework"
        assert payload["variables"]["first"] == 50

    async def test_no_authorization_without_secret(self):
        seen = []

        def handler(request):
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200, json={"data": {"repository": {
                "labels": {"totalCount": 3}, "issueTypes": {"totalCount": 1}, "refs": {"nodes": []},
            }}})

        client = github_client(handler, secret=None)
        stats = await client.get_repository_statistics()
        await client.aclose()

        assert seen == [None]
        assert stats.github_label_count == 3

    async def test_branch_pull_requests_pass_branch_name(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content)["variables"])
            return httpx.Response(200, json={"data": {"repository": {"pullRequests": {
                "edges": [], "pageInfo": {"hasNextPage": False},
            }}}})

        client = github_client(handler)
        assert await client.get_branch_pull_requests("release/9.1") == []
        await client.aclose()
        assert seen[0]["branchName"] == "release/9.1"

    async def test_project_fields_skip_non_single_select(self):
        def handler(request):
            return httpx.Response(200, json={"data": {"node": {"fields": {
                "nodes": [{}, {"id": "f1", "name": "Status", "options": [{"id": "o1", "name": "Done"}]}],
                "pageInfo": {"hasNextPage": False},
            }}}})

        client = github_client(handler)
        fields = await client.get_issue_project_items("PVT_1")
        await client.aclose()
        assert [f.id for f in fields] == ["f1"]

    async def test_failure_wrapped(self):
        client = github_client(lambda request: httpx.Response(500))
        with pytest.raises(GitHubClientError, match="Failed to fetch milestones from GitHub."):
            await client.get_milestones()
        await client.aclose()


class TestDTOs:
    """Tests for DTO helpers."""

    def test_issue_project_fields(self):
        dto = issue("i1", 1, priority="p-high", status="s-done", points=5)
        assert dto.find_priority_option_id() == "p-high"
        assert dto.find_status_option_id() == "s-done"
        assert dto.find_points() == 5

    def test_issue_without_project_items(self):
        dto = issue("i1", 1)
        dto.project_items = None
        assert dto.find_priority_option_id() is None
        assert dto.find_points() is None

    def test_issue_relations(self):
        dto = issue("i1", 1, labels=("l1",), sub_issues=("i2",), milestone_id="m1")
        assert dto.has_labels() and dto.has_sub_issues() and dto.has_milestone()
        assert not dto.has_issue_type()

    @pytest.mark.parametrize("name,valid", [
        ("v9.1.0", True),
        ("v9.1.0-RC1", False),
        ("v9.1.0-rc2", False),
        ("v9.1.0-B3", False),
        (None, False),
    ])
    def test_release_validity(self, name, valid):
        assert ReleaseDTO(id="r", tag_name="v9.1.0", name=name).is_valid() is valid

    def test_base_tag_name(self):
        assert ReleaseDTO(id="r", tag_name="v9.1.0-RC1").base_tag_name() == "v9.1.0"
        assert ReleaseDTO(id="r", tag_name="v9.1.0").base_tag_name() == "v9.1.0"

    def test_extract_major_minor(self):
        assert extract_major_minor("v9.1.0") == "9.1"
        assert extract_major_minor("Release v10.12") == "10.12"
        assert extract_major_minor("nightly") is None
        assert extract_major_minor(None) is None

    def test_protected_branch_count(self):
        stats = statistics(branches=("master", "release/9.1", "feature/x", "9.0-release"))
        assert stats.github_branch_count([r"^master$", r"^release/\d+\.\d+$", r"^\d+\.\d+-release$"]) == 3
