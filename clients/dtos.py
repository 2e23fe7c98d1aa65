"""Response shapes of the GitHub GraphQL API.

Field names follow Python conventions; the camelCase GraphQL names are
accepted through aliases.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PRIORITY_FIELD = "Priority"
STATUS_FIELD = "Status"
POINTS_FIELD = "Points"

_BETA_OR_RC = re.compile(r"-(RC|B)\d+", re.IGNORECASE)
_MAJOR_MINOR = re.compile(r"v(\d+)\.(\d+)")

NodeT = TypeVar("NodeT")


class GitHubModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class TotalCount(GitHubModel):
    total_count: int = 0


class PageInfo(GitHubModel):
    has_next_page: bool = False
    end_cursor: str | None = None


class Edge(GitHubModel, Generic[NodeT]):
    node: NodeT


class EdgeConnection(GitHubModel, Generic[NodeT]):
    edges: list[Edge[NodeT]] = Field(default_factory=list)

    def nodes(self) -> list[NodeT]:
        return [edge.node for edge in self.edges]


class NodeRef(GitHubModel):
    """Edge node that only carries the id of the referenced object."""
    id: str


class RefName(GitHubModel):
    name: str


class RefNameConnection(GitHubModel):
    nodes: list[RefName] = Field(default_factory=list)


class RepositoryStatisticsDTO(GitHubModel):
    """Counters used to decide whether a resource needs to be re-fetched."""
    labels: TotalCount = Field(default_factory=TotalCount)
    issue_types: TotalCount = Field(default_factory=TotalCount)
    refs: RefNameConnection = Field(default_factory=RefNameConnection)

    @property
    def github_label_count(self) -> int:
        return self.labels.total_count

    @property
    def github_issue_type_count(self) -> int:
        return self.issue_types.total_count

    def github_branch_count(self, protection_regexes: list[str]) -> int:
        patterns = [re.compile(regex) for regex in protection_regexes]
        return sum(
            1 for ref in self.refs.nodes
            if any(pattern.search(ref.name) for pattern in patterns)
        )


class LabelDTO(GitHubModel):
    id: str
    name: str
    description: str | None = None
    color: str | None = None


class MilestoneDTO(GitHubModel):
    id: str
    number: int
    title: str
    url: str | None = None
    state: str = "OPEN"
    due_on: datetime | None = None
    open_issue_count: TotalCount = Field(default_factory=TotalCount)
    closed_issue_count: TotalCount = Field(default_factory=TotalCount)


class IssueTypeDTO(GitHubModel):
    id: str
    name: str
    description: str | None = None
    color: str | None = None


class SingleSelectOption(GitHubModel):
    id: str
    name: str
    color: str | None = None
    description: str | None = None


class SingleSelectFieldDTO(GitHubModel):
    """ProjectV2 single-select field. Other field kinds arrive without an id."""
    id: str | None = None
    name: str | None = None
    options: list[SingleSelectOption] = Field(default_factory=list)


class BranchDTO(GitHubModel):
    id: str
    name: str


class ProjectFieldName(GitHubModel):
    name: str | None = None


class ProjectFieldValue(GitHubModel):
    field: ProjectFieldName | None = None
    option_id: str | None = None
    number: float | None = None


class ProjectItem(GitHubModel):
    field_values: EdgeConnection[ProjectFieldValue] = Field(default_factory=EdgeConnection)


class IssueDTO(GitHubModel):
    id: str
    number: int
    title: str
    state: str
    closed_at: datetime | None = None
    url: str | None = None
    labels: EdgeConnection[NodeRef] | None = None
    milestone: NodeRef | None = None
    issue_type: NodeRef | None = None
    sub_issues: EdgeConnection[NodeRef] | None = None
    project_items: EdgeConnection[ProjectItem] | None = None

    def has_labels(self) -> bool:
        return bool(self.labels and self.labels.edges)

    def has_milestone(self) -> bool:
        return self.milestone is not None

    def has_issue_type(self) -> bool:
        return self.issue_type is not None

    def has_sub_issues(self) -> bool:
        return bool(self.sub_issues and self.sub_issues.edges)

    def find_project_field(self, field_name: str) -> ProjectFieldValue | None:
        """Return the first project field value whose field name matches, ignoring case."""
        if self.project_items is None:
            return None
        wanted = field_name.lower()
        for item in self.project_items.nodes():
            for value in item.field_values.nodes():
                if value.field and value.field.name and value.field.name.lower() == wanted:
                    return value
        return None

    def find_priority_option_id(self) -> str | None:
        value = self.find_project_field(PRIORITY_FIELD)
        return value.option_id if value else None

    def find_status_option_id(self) -> str | None:
        value = self.find_project_field(STATUS_FIELD)
        return value.option_id if value else None

    def find_points(self) -> float | None:
        value = self.find_project_field(POINTS_FIELD)
        return value.number if value else None


class PullRequestDTO(GitHubModel):
    id: str
    number: int
    title: str
    url: str | None = None
    merged_at: datetime | None = None
    labels: EdgeConnection[NodeRef] | None = None
    milestone: NodeRef | None = None
    closing_issues_references: EdgeConnection[NodeRef] | None = None

    def has_labels(self) -> bool:
        return bool(self.labels and self.labels.edges)

    def has_milestone(self) -> bool:
        return self.milestone is not None

    def has_closing_issues(self) -> bool:
        return bool(self.closing_issues_references and self.closing_issues_references.edges)


class ReleaseDTO(GitHubModel):
    id: str
    tag_name: str
    name: str | None = None
    published_at: datetime | None = None

    def is_valid(self) -> bool:
        """Final releases only: beta (-B1) and release candidate (-RC1) names are rejected."""
        return self.name is not None and not _BETA_OR_RC.search(self.name)

    def base_tag_name(self) -> str:
        """Tag name without a beta or release candidate suffix."""
        return _BETA_OR_RC.split(self.tag_name, maxsplit=1)[0]


def extract_major_minor(name: str | None) -> str | None:
    """Return ``"X.Y"`` for names such as ``v9.1.0``, or None."""
    if not name:
        return None
    match = _MAJOR_MINOR.search(name)
    if match is None:
        return None
    return f"{match.group(1)}.{match.group(2)}"
