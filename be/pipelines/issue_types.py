"""Issue type injection."""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from be import models
from clients.dtos import IssueTypeDTO, RepositoryStatisticsDTO
from clients.github import GitHubClient

from .reconcile import InjectionError, InjectionResult, count_rows, upsert_entities

logger = logging.getLogger(__name__)


class IssueTypeInjectionError(InjectionError):
    """Raised when issue types cannot be injected."""
    pass


def map_issue_type(dto: IssueTypeDTO) -> models.IssueType:
    return models.IssueType(id=dto.id, name=dto.name, description=dto.description, color=dto.color)


async def inject_issue_types(
    session: AsyncSession,
    client: GitHubClient,
    statistics: RepositoryStatisticsDTO | None = None,
) -> InjectionResult:
    """Fetch and upsert issue types unless the stored count already matches GitHub.

    Raises:
        IssueTypeInjectionError: If fetching or persisting fails
    """
    try:
        if statistics is not None:
            stored = await count_rows(session, models.IssueType)
            if statistics.github_issue_type_count == stored:
                logger.info(f"Issue type count unchanged ({stored}), skipping issue type injection")
                return InjectionResult.skip("issue_types")

        dtos = await client.get_issue_types()
        await upsert_entities(session, [map_issue_type(dto) for dto in dtos])
        await session.commit()

        logger.info(f"Saved {len(dtos)} issue types")
        return InjectionResult(resource="issue_types", fetched=len(dtos), saved=len(dtos))

    except Exception as e:
        logger.error(f"Issue type injection failed: {e}", exc_info=True)
        await session.rollback()
        raise IssueTypeInjectionError(f"Failed to inject issue types: {e}") from e
