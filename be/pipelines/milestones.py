"""Milestone injection."""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from be import models
from clients.dtos import MilestoneDTO
from clients.github import GitHubClient

from .reconcile import InjectionError, InjectionResult, upsert_entities

logger = logging.getLogger(__name__)


class MilestoneInjectionError(InjectionError):
    """Raised when milestones cannot be injected."""
    pass


def map_milestone(dto: MilestoneDTO) -> models.Milestone:
    return models.Milestone(
        id=dto.id,
        number=dto.number,
        title=dto.title,
        url=dto.url,
        state=dto.state.upper(),
        due_on=dto.due_on,
        open_issue_count=dto.open_issue_count.total_count,
        closed_issue_count=dto.closed_issue_count.total_count,
    )


async def inject_milestones(session: AsyncSession, client: GitHubClient) -> InjectionResult:
    """Fetch and upsert every milestone; issue counters change too often to skip.

    Raises:
        MilestoneInjectionError: If fetching or persisting fails
    """
    try:
        dtos = await client.get_milestones()
        await upsert_entities(session, [map_milestone(dto) for dto in dtos])
        await session.commit()

        logger.info(f"Saved {len(dtos)} milestones")
        return InjectionResult(resource="milestones", fetched=len(dtos), saved=len(dtos))

    except Exception as e:
        logger.error(f"Milestone injection failed: {e}", exc_info=True)
        await session.rollback()
        raise MilestoneInjectionError(f"Failed to inject milestones: {e}") from e
