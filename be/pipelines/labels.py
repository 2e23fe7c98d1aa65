"""Label injection."""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from be import models
from clients.dtos import LabelDTO, RepositoryStatisticsDTO
from clients.github import GitHubClient

from .reconcile import InjectionError, InjectionResult, count_rows, upsert_entities

logger = logging.getLogger(__name__)


class LabelInjectionError(InjectionError):
    """Raised when labels cannot be injected."""
    pass


def map_label(dto: LabelDTO) -> models.Label:
    return models.Label(id=dto.id, name=dto.name, description=dto.description, color=dto.color)


async def inject_labels(
    session: AsyncSession,
    client: GitHubClient,
    statistics: RepositoryStatisticsDTO | None = None,
) -> InjectionResult:
    """Fetch and upsert repository labels.

    Skipped when the label count reported by GitHub equals the stored count.

    Raises:
        LabelInjectionError: If fetching or persisting fails
    """
    try:
        if statistics is not None:
            stored = await count_rows(session, models.Label)
            if statistics.github_label_count == stored:
                logger.info(f"Label count unchanged ({stored}), skipping label injection")
                return InjectionResult.skip("labels")

        dtos = await client.get_labels()
        await upsert_entities(session, [map_label(dto) for dto in dtos])
        await session.commit()

        logger.info(f"Saved {len(dtos)} labels")
        return InjectionResult(resource="labels", fetched=len(dtos), saved=len(dtos))

    except Exception as e:
        logger.error(f"Label injection failed: {e}", exc_info=True)
        await session.rollback()
        raise LabelInjectionError(f"Failed to inject labels: {e}") from e
