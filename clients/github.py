"""GitHub client: typed accessors over the repository GraphQL queries."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from be.config import GitHubSettings, settings
from clients.dtos import (
    BranchDTO,
    IssueDTO,
    IssueTypeDTO,
    LabelDTO,
    MilestoneDTO,
    PullRequestDTO,
    ReleaseDTO,
    RepositoryStatisticsDTO,
    SingleSelectFieldDTO,
)
from clients.graphql import GraphQLClient, GraphQLClientError, plain_nodes
from config import graphql_queries as queries

logger = logging.getLogger(__name__)


class GitHubClientError(Exception):
    """Raised when data cannot be fetched from GitHub."""
    pass


def single_select_nodes(connection) -> list[Any]:
    """Project field nodes that are single-select fields; other kinds come back empty."""
    return [node for node in plain_nodes(connection) if node.get("id")]


class GitHubClient(GraphQLClient):
    """Reads labels, milestones, issues, pull requests and releases of one repository."""

    def __init__(
        self,
        config: GitHubSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs,
    ):
        self.config = config or settings.github
        headers = {}
        if self.config.secret:
            headers["Authorization"] = f"Bearer {self.config.secret}"
        super().__init__(self.config.url, headers=headers, transport=transport, **kwargs)

    def _repository_variables(self, **extra: Any) -> dict[str, Any]:
        return {
            "owner": self.config.owner,
            "name": self.config.repository,
            "first": self.config.page_size,
            **extra,
        }

    async def get_repository_statistics(self) -> RepositoryStatisticsDTO:
        try:
            statistics = await self.fetch_single_entity(
                queries.REPOSITORY_STATISTICS,
                {"owner": self.config.owner, "name": self.config.repository},
                RepositoryStatisticsDTO,
            )
        except GraphQLClientError as e:
            raise GitHubClientError("Failed to fetch repository statistics from GitHub.") from e
        logger.info("Successfully fetched repository statistics from GitHub")
        return statistics

    async def get_labels(self) -> list[LabelDTO]:
        try:
            labels = await self.fetch_paginated_collection(queries.LABELS, self._repository_variables(), LabelDTO)
        except GraphQLClientError as e:
            raise GitHubClientError("Failed to fetch labels from GitHub.") from e
        logger.info(f"Successfully fetched {len(labels)} labels from GitHub")
        return labels

    async def get_milestones(self) -> list[MilestoneDTO]:
        try:
            milestones = await self.fetch_paginated_collection(
                queries.MILESTONES, self._repository_variables(), MilestoneDTO
            )
        except GraphQLClientError as e:
            raise GitHubClientError("Failed to fetch milestones from GitHub.") from e
        logger.info(f"Successfully fetched {len(milestones)} milestones from GitHub")
        return milestones

    async def get_issue_types(self) -> list[IssueTypeDTO]:
        try:
            issue_types = await self.fetch_paginated_collection(
                queries.ISSUE_TYPES, self._repository_variables(), IssueTypeDTO
            )
        except GraphQLClientError as e:
            raise GitHubClientError("Failed to fetch issue types from GitHub.") from e
        logger.info(f"Successfully fetched {len(issue_types)} issue types from GitHub")
        return issue_types

    async def get_issue_project_items(self, project_id: str) -> list[SingleSelectFieldDTO]:
        try:
            fields = await self.fetch_paginated_collection(
                queries.ISSUE_PROJECT_ITEMS,
                {"projectId": project_id, "first": self.config.page_size},
                SingleSelectFieldDTO,
                collection_extractor=single_select_nodes,
            )
        except GraphQLClientError as e:
            raise GitHubClientError("Failed to fetch issue project items from GitHub.") from e
        logger.info(f"Successfully fetched {len(fields)} single-select project fields from GitHub")
        return fields

    async def get_branches(self) -> list[BranchDTO]:
        try:
            branches = await self.fetch_paginated_collection(queries.BRANCHES, self._repository_variables(), BranchDTO)
        except GraphQLClientError as e:
            raise GitHubClientError("Failed to fetch branches from GitHub.") from e
        logger.info(f"Successfully fetched {len(branches)} branches from GitHub")
        return branches

    async def get_issues(self) -> list[IssueDTO]:
        try:
            issues = await self.fetch_paginated_collection(queries.ISSUES, self._repository_variables(), IssueDTO)
        except GraphQLClientError as e:
            raise GitHubClientError("Failed to fetch issues from GitHub.") from e
        logger.info(f"Successfully fetched {len(issues)} issues from GitHub")
        return issues

    async def get_branch_pull_requests(self, branch_name: str) -> list[PullRequestDTO]:
        try:
            pull_requests = await self.fetch_paginated_collection(
                queries.BRANCH_PULL_REQUESTS,
                self._repository_variables(branchName=branch_name),
                PullRequestDTO,
            )
        except GraphQLClientError as e:
            raise GitHubClientError(f"Failed to fetch pull requests of branch '{branch_name}' from GitHub.") from e
        logger.info(f"Successfully fetched {len(pull_requests)} pull requests of branch '{branch_name}' from GitHub")
        return pull_requests

    async def get_releases(self) -> list[ReleaseDTO]:
        try:
            releases = await self.fetch_paginated_collection(queries.RELEASES, self._repository_variables(), ReleaseDTO)
        except GraphQLClientError as e:
            raise GitHubClientError("Failed to fetch releases from GitHub.") from e
        logger.info(f"Successfully fetched {len(releases)} releases from GitHub")
        return releases
