"""Builders for GitHub DTOs and a fake GitHub client used across tests."""
from __future__ import annotations

from datetime import datetime, timezone

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
from clients.github import GitHubClientError


def at(day: int, month: int = 1, year: int = 2025, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def edges(*ids: str) -> dict:
    return {"edges": [{"node": {"id": node_id}} for node_id in ids]}


def label(label_id: str, name: str | None = None, color: str = "A2EEEF") -> LabelDTO:
    return LabelDTO(id=label_id, name=name or label_id, color=color)


def milestone(milestone_id: str, number: int = 1, state: str = "OPEN") -> MilestoneDTO:
    return MilestoneDTO.model_validate({
        "id": milestone_id,
        "number": number,
        "title": f"Milestone {number}",
        "state": state,
        "openIssueCount": {"totalCount": 2},
        "closedIssueCount": {"totalCount": 5},
    })


def issue(
    issue_id: str,
    number: int,
    *,
    labels: tuple[str, ...] = (),
    sub_issues: tuple[str, ...] = (),
    milestone_id: str | None = None,
    issue_type_id: str | None = None,
    priority: str | None = None,
    status: str | None = None,
    points: float | None = None,
) -> IssueDTO:
    field_values = []
    if priority:
        field_values.append({"node": {"optionId": priority, "field": {"name": "Priority"}}})
    if status:
        field_values.append({"node": {"optionId": status, "field": {"name": "Status"}}})
    if points is not None:
        field_values.append({"node": {"number": points, "field": {"name": "Points"}}})
    return IssueDTO.model_validate({
        "id": issue_id,
        "number": number,
        "title": f"Issue {number}",
        "state": "CLOSED",
        "url": f"https://github.com/org/repo/issues/{number}",
        "labels": edges(*labels),
        "milestone": {"id": milestone_id} if milestone_id else None,
        "issueType": {"id": issue_type_id} if issue_type_id else None,
        "subIssues": edges(*sub_issues),
        "projectItems": {"edges": [{"node": {"fieldValues": {"edges": field_values}}}]},
    })


def pull_request(
    pr_id: str,
    number: int,
    merged_at: datetime | None,
    *,
    labels: tuple[str, ...] = (),
    closes: tuple[str, ...] = (),
    milestone_id: str | None = None,
) -> PullRequestDTO:
    return PullRequestDTO.model_validate({
        "id": pr_id,
        "number": number,
        "title": f"PR {number}",
        "mergedAt": merged_at.isoformat() if merged_at else None,
        "labels": edges(*labels),
        "milestone": {"id": milestone_id} if milestone_id else None,
        "closingIssuesReferences": edges(*closes),
    })


def release(
    release_id: str,
    tag_name: str,
    published_at: datetime | None,
    name: str | None = None,
    *,
    nameless: bool = False,
) -> ReleaseDTO:
    return ReleaseDTO(
        id=release_id,
        tag_name=tag_name,
        name=None if nameless else (name or tag_name),
        published_at=published_at,
    )


def statistics(labels: int = 0, issue_types: int = 0, branches: tuple[str, ...] = ()) -> RepositoryStatisticsDTO:
    return RepositoryStatisticsDTO.model_validate({
        "labels": {"totalCount": labels},
        "issueTypes": {"totalCount": issue_types},
        "refs": {"nodes": [{"name": name} for name in branches]},
    })


class FakeGitHubClient:
    """In-memory stand-in for ``GitHubClient``; set ``fail`` to make a method raise."""

    def __init__(self):
        self.statistics = statistics()
        self.labels: list[LabelDTO] = []
        self.milestones: list[MilestoneDTO] = []
        self.issue_types: list[IssueTypeDTO] = []
        self.project_fields: list[SingleSelectFieldDTO] = []
        self.branches: list[BranchDTO] = []
        self.issues: list[IssueDTO] = []
        self.pull_requests: dict[str, list[PullRequestDTO]] = {}
        self.releases: list[ReleaseDTO] = []
        self.fail: set[str] = set()
        self.calls: list[str] = []

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail:
            raise GitHubClientError(f"Failed to fetch {name} from GitHub.")

    async def get_repository_statistics(self):
        self._record("statistics")
        return self.statistics

    async def get_labels(self):
        self._record("labels")
        return self.labels

    async def get_milestones(self):
        self._record("milestones")
        return self.milestones

    async def get_issue_types(self):
        self._record("issue_types")
        return self.issue_types

    async def get_issue_project_items(self, project_id):
        self._record("issue_project_items")
        return self.project_fields

    async def get_branches(self):
        self._record("branches")
        return self.branches

    async def get_issues(self):
        self._record("issues")
        return self.issues

    async def get_branch_pull_requests(self, branch_name):
        self._record(f"pull_requests:{branch_name}")
        return self.pull_requests.get(branch_name, [])

    async def get_releases(self):
        self._record("releases")
        return self.releases
