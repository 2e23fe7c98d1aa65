"""Issue injection: issues, their labels and their sub-issue hierarchy."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from be import models
from clients.dtos import IssueDTO
from clients.github import GitHubClient

from .reconcile import InjectionError, InjectionResult, fetch_ids, sync_links, upsert_entities

logger = logging.getLogger(__name__)


class IssueInjectionError(InjectionError):
    """Raised when issues cannot be injected."""
    pass


@dataclass
class IssueLookups:
    """Ids already stored locally; references to anything else are dropped."""
    milestone_ids: set[str]
    issue_type_ids: set[str]
    priority_ids: set[str]
    state_ids: set[str]
    label_ids: set[str]

    @classmethod
    async def load(cls, session: AsyncSession) -> IssueLookups:
        return cls(
            milestone_ids=await fetch_ids(session, models.Milestone),
            issue_type_ids=await fetch_ids(session, models.IssueType),
            priority_ids=await fetch_ids(session, models.IssuePriority),
            state_ids=await fetch_ids(session, models.IssueState),
            label_ids=await fetch_ids(session, models.Label),
        )


def _known(value: str | None, known_ids: set[str]) -> str | None:
    return value if value in known_ids else None


def map_issue(dto: IssueDTO, lookups: IssueLookups) -> models.Issue:
    """Map an issue without its parent; parents are linked once every issue exists."""
    return models.Issue(
        id=dto.id,
        number=dto.number,
        title=dto.title,
        state=dto.state.upper(),
        closed_at=dto.closed_at,
        url=dto.url,
        points=dto.find_points(),
        milestone_id=_known(dto.milestone.id if dto.has_milestone() else None, lookups.milestone_ids),
        issue_type_id=_known(dto.issue_type.id if dto.has_issue_type() else None, lookups.issue_type_ids),
        issue_priority_id=_known(dto.find_priority_option_id(), lookups.priority_ids),
        issue_state_id=_known(dto.find_status_option_id(), lookups.state_ids),
        parent_issue_id=None,
    )


def build_parent_map(dtos: list[IssueDTO]) -> dict[str, str]:
    """Sub-issue id to parent issue id, restricted to fetched issues."""
    fetched_ids = {dto.id for dto in dtos}
    parents: dict[str, str] = {}
    for dto in dtos:
        if not dto.has_sub_issues():
            continue
        for sub_issue in dto.sub_issues.nodes():
            if sub_issue.id in fetched_ids and sub_issue.id != dto.id:
                parents[sub_issue.id] = dto.id
    return parents


async def inject_issues(session: AsyncSession, client: GitHubClient) -> InjectionResult:
    """Fetch every issue and store it with labels, project fields and parent.

    Steps:
    1. Upsert issues with milestone, type, priority, status and points
    2. Reconcile issue labels
    3. Link sub-issues to their parent

    Raises:
        IssueInjectionError: If fetching or persisting fails
    """
    try:
        dtos = await client.get_issues()
        lookups = await IssueLookups.load(session)

        issues = await upsert_entities(session, [map_issue(dto, lookups) for dto in dtos])

        inserted, deleted = await sync_links(
            session,
            models.IssueLabel,
            "issue_id",
            "label_id",
            {
                dto.id: {label.id for label in dto.labels.nodes() if label.id in lookups.label_ids}
                if dto.has_labels() else set()
                for dto in dtos
            },
        )
        logger.debug(f"Issue labels: {inserted} added, {deleted} removed")

        parents = build_parent_map(dtos)
        for issue in issues:
            issue.parent_issue_id = parents.get(issue.id)
        await session.flush()

        await session.commit()

        logger.info(f"Saved {len(issues)} issues, {len(parents)} of them sub-issues")
        return InjectionResult(resource="issues", fetched=len(dtos), saved=len(issues))

    except Exception as e:
        logger.error(f"Issue injection failed: {e}", exc_info=True)
        await session.rollback()
        raise IssueInjectionError(f"Failed to inject issues: {e}") from e
