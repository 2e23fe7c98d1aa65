"""Injection of project field options: issue priorities and issue states."""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from be import models
from clients.dtos import PRIORITY_FIELD, STATUS_FIELD, SingleSelectFieldDTO, SingleSelectOption
from clients.github import GitHubClient

from .reconcile import InjectionError, InjectionResult, count_rows, upsert_entities

logger = logging.getLogger(__name__)


class IssueProjectItemInjectionError(InjectionError):
    """Raised when project field options cannot be injected."""
    pass


def find_field_options(fields: list[SingleSelectFieldDTO], field_name: str) -> list[SingleSelectOption]:
    """Options of the first single-select field with the given name, ignoring case."""
    wanted = field_name.lower()
    for project_field in fields:
        if project_field.name and project_field.name.lower() == wanted and project_field.options:
            return project_field.options
    return []


async def inject_issue_project_items(
    session: AsyncSession,
    client: GitHubClient,
    project_id: str | None,
) -> InjectionResult:
    """Store the "Priority" and "Status" options of the project board.

    Args:
        session: Database session
        client: GitHub client
        project_id: ProjectV2 node id; injection is skipped without one

    Returns:
        InjectionResult counting saved priorities and states

    Raises:
        IssueProjectItemInjectionError: If fetching or persisting fails
    """
    if not project_id:
        logger.info("No GitHub project configured, skipping issue project items")
        return InjectionResult.skip("issue_project_items")

    try:
        has_priorities = await count_rows(session, models.IssuePriority) > 0
        has_states = await count_rows(session, models.IssueState) > 0
        if has_priorities and has_states:
            logger.info("Issue priorities and states already present, skipping issue project items")
            return InjectionResult.skip("issue_project_items")

        fields = await client.get_issue_project_items(project_id)
        entities: list[models.Base] = []

        if not has_priorities:
            priorities = find_field_options(fields, PRIORITY_FIELD)
            entities.extend(
                models.IssuePriority(id=o.id, name=o.name, color=o.color, description=o.description)
                for o in priorities
            )
            logger.info(f"Found {len(priorities)} issue priorities")

        if not has_states:
            states = find_field_options(fields, STATUS_FIELD)
            entities.extend(
                models.IssueState(id=o.id, name=o.name, color=o.color, description=o.description)
                for o in states
            )
            logger.info(f"Found {len(states)} issue states")

        await upsert_entities(session, entities)
        await session.commit()

        return InjectionResult(resource="issue_project_items", fetched=len(fields), saved=len(entities))

    except Exception as e:
        logger.error(f"Issue project item injection failed: {e}", exc_info=True)
        await session.rollback()
        raise IssueProjectItemInjectionError(f"Failed to inject issue project items: {e}") from e
