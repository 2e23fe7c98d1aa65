"""Read-side queries backing the REST API."""
from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .config import settings

logger = logging.getLogger(__name__)

DEFAULT_POINTS = 3.0
MAX_HIGHLIGHTED_LABELS = 15
EPIC_ISSUE_TYPE = "epic"


class NotFoundError(Exception):
    """Raised when a requested resource does not exist."""
    pass


class ReleaseNotFoundError(NotFoundError):
    pass


class MilestoneNotFoundError(NotFoundError):
    pass


@dataclass
class IssueNode:
    """An issue with its included labels and nested sub-issues."""
    issue: models.Issue
    labels: list[models.Label] = field(default_factory=list)
    sub_issues: list[IssueNode] = field(default_factory=list)
    points: float = DEFAULT_POINTS

    def has_included_labels(self) -> bool:
        return bool(self.labels) or any(sub.has_included_labels() for sub in self.sub_issues)


@dataclass
class LabelHighlight:
    label: models.Label
    count: int


def is_label_included(label: models.Label, included_labels: list[str] | None = None) -> bool:
    """Whether a label's colour is configured for display; no configuration includes all labels."""
    included = settings.github.included_labels if included_labels is None else included_labels
    if not included:
        return True
    return (label.color or "").upper() in included


# Releases and milestones

async def get_all_releases(session: AsyncSession) -> list[models.Release]:
    result = await session.execute(select(models.Release).order_by(models.Release.published_at))
    return list(result.scalars().all())


async def get_release(session: AsyncSession, release_id: str) -> models.Release:
    release = await session.get(models.Release, release_id)
    if release is None:
        raise ReleaseNotFoundError(f"Release with ID [{release_id}] not found.")
    return release


async def get_open_milestones(session: AsyncSession) -> list[models.Milestone]:
    result = await session.execute(
        select(models.Milestone)
        .where(models.Milestone.state == models.GitHubPropertyState.OPEN.value)
        .order_by(models.Milestone.due_on, models.Milestone.number)
    )
    return list(result.scalars().all())


async def get_milestone(session: AsyncSession, milestone_id: str) -> models.Milestone:
    milestone = await session.get(models.Milestone, milestone_id)
    if milestone is None:
        raise MilestoneNotFoundError(f"Milestone with ID [{milestone_id}] not found.")
    return milestone


# Labels

async def get_release_highlights(
    session: AsyncSession,
    release_id: str,
    included_labels: list[str] | None = None,
) -> list[LabelHighlight]:
    """Most used included labels of the pull requests in a release.

    Raises:
        ReleaseNotFoundError: If the release does not exist
    """
    await get_release(session, release_id)
    result = await session.execute(
        select(models.Label)
        .join(models.PullRequestLabel, models.PullRequestLabel.label_id == models.Label.id)
        .join(
            models.ReleasePullRequest,
            models.ReleasePullRequest.pull_request_id == models.PullRequestLabel.pull_request_id,
        )
        .where(models.ReleasePullRequest.release_id == release_id)
    )
    labels = [label for label in result.scalars().all() if is_label_included(label, included_labels)]

    counts = Counter(label.id for label in labels)
    by_id = {label.id: label for label in labels}
    ranked = sorted(counts.items(), key=lambda item: (-item[1], by_id[item[0]].name))
    return [LabelHighlight(label=by_id[label_id], count=count) for label_id, count in ranked[:MAX_HIGHLIGHTED_LABELS]]


# Issues

async def _load_labels_by_issue(session: AsyncSession, issue_ids: set[str]) -> dict[str, list[models.Label]]:
    labels: dict[str, list[models.Label]] = defaultdict(list)
    if not issue_ids:
        return labels
    result = await session.execute(
        select(models.IssueLabel.issue_id, models.Label)
        .join(models.Label, models.Label.id == models.IssueLabel.label_id)
        .where(models.IssueLabel.issue_id.in_(issue_ids))
        .order_by(models.Label.name)
    )
    for issue_id, label in result:
        labels[issue_id].append(label)
    return labels


async def _load_descendants(session: AsyncSession, roots: list[models.Issue]) -> dict[str, list[models.Issue]]:
    """Children of every issue reachable from the roots, level by level."""
    children: dict[str, list[models.Issue]] = defaultdict(list)
    seen = {issue.id for issue in roots}
    frontier = set(seen)
    while frontier:
        result = await session.execute(
            select(models.Issue)
            .where(models.Issue.parent_issue_id.in_(frontier))
            .order_by(models.Issue.number)
        )
        frontier = set()
        for child in result.scalars().all():
            children[child.parent_issue_id].append(child)
            if child.id not in seen:
                seen.add(child.id)
                frontier.add(child.id)
    return children


async def build_issue_trees(
    session: AsyncSession,
    issues: list[models.Issue],
    *,
    prune_unlabelled: bool,
    included_labels: list[str] | None = None,
) -> list[IssueNode]:
    """Nest sub-issues under their parents and compute total points.

    Issues whose parent is part of ``issues`` are only shown nested. Sub-issues
    without an included label anywhere in their subtree are always hidden.
    Points of an issue are its own estimate (``DEFAULT_POINTS`` when missing)
    plus the totals of its visible sub-issues.

    Args:
        session: Database session
        issues: Issues to show
        prune_unlabelled: Also drop root issues without any included label
        included_labels: Label colours to show, defaults to the configured ones

    Returns:
        Root issue nodes ordered by issue number
    """
    ids = {issue.id for issue in issues}
    roots = sorted(
        (issue for issue in issues if issue.parent_issue_id not in ids),
        key=lambda issue: issue.number,
    )
    children = await _load_descendants(session, roots)
    all_ids = ids | {child.id for kids in children.values() for child in kids}
    labels = await _load_labels_by_issue(session, all_ids)

    def build(issue: models.Issue, path: frozenset[str]) -> IssueNode:
        sub_issues = [
            sub for sub in (
                build(child, path | {child.id})
                for child in children.get(issue.id, [])
                if child.id not in path
            )
            if sub.has_included_labels()
        ]
        own_points = issue.points if issue.points is not None else DEFAULT_POINTS
        return IssueNode(
            issue=issue,
            labels=[label for label in labels.get(issue.id, []) if is_label_included(label, included_labels)],
            sub_issues=sub_issues,
            points=own_points + sum(sub.points for sub in sub_issues),
        )

    trees = [build(issue, frozenset({issue.id})) for issue in roots]
    if prune_unlabelled:
        trees = [tree for tree in trees if tree.has_included_labels()]
    return trees


async def get_issues_by_release(session: AsyncSession, release_id: str) -> list[IssueNode]:
    """Issues closed by the pull requests of a release.

    Raises:
        ReleaseNotFoundError: If the release does not exist
    """
    await get_release(session, release_id)
    result = await session.execute(
        select(models.Issue)
        .join(models.PullRequestIssue, models.PullRequestIssue.issue_id == models.Issue.id)
        .join(
            models.ReleasePullRequest,
            models.ReleasePullRequest.pull_request_id == models.PullRequestIssue.pull_request_id,
        )
        .where(models.ReleasePullRequest.release_id == release_id)
        .distinct()
    )
    issues = list(result.scalars().all())
    logger.debug(f"Found {len(issues)} issues for release {release_id}")
    return await build_issue_trees(session, issues, prune_unlabelled=True)


async def get_issues_by_milestone(session: AsyncSession, milestone_id: str) -> list[IssueNode]:
    """Issues planned for a milestone.

    Raises:
        MilestoneNotFoundError: If the milestone does not exist
    """
    await get_milestone(session, milestone_id)
    result = await session.execute(select(models.Issue).where(models.Issue.milestone_id == milestone_id))
    return await build_issue_trees(session, list(result.scalars().all()), prune_unlabelled=True)


async def get_future_epic_issues(session: AsyncSession) -> list[IssueNode]:
    """Epics that are not planned in any milestone yet."""
    result = await session.execute(
        select(models.Issue)
        .join(models.IssueType, models.IssueType.id == models.Issue.issue_type_id)
        .where(func.lower(models.IssueType.name) == EPIC_ISSUE_TYPE, models.Issue.milestone_id.is_(None))
    )
    return await build_issue_trees(session, list(result.scalars().all()), prune_unlabelled=False)


# Vulnerabilities

async def get_release_vulnerabilities(session: AsyncSession, release_id: str) -> list[models.Vulnerability]:
    """Vulnerabilities of a release, highest CVSS score first.

    Raises:
        ReleaseNotFoundError: If the release does not exist
    """
    await get_release(session, release_id)
    result = await session.execute(
        select(models.Vulnerability)
        .join(models.ReleaseVulnerability, models.ReleaseVulnerability.vulnerability_id == models.Vulnerability.id)
        .where(models.ReleaseVulnerability.release_id == release_id)
    )
    vulnerabilities = list(result.scalars().all())
    return sorted(vulnerabilities, key=lambda v: (v.cvss_score is None, -(v.cvss_score or 0.0), v.id))
