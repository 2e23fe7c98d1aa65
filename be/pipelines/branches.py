"""Protected branch injection."""
from __future__ import annotations

import logging
import re

from sqlalchemy.ext.asyncio import AsyncSession

from be import models
from clients.dtos import BranchDTO, RepositoryStatisticsDTO
from clients.github import GitHubClient

from .reconcile import InjectionError, InjectionResult, count_rows, upsert_entities

logger = logging.getLogger(__name__)


class BranchInjectionError(InjectionError):
    """Raised when branches cannot be injected."""
    pass


def is_protected(branch_name: str, protection_regexes: list[str]) -> bool:
    return any(re.search(regex, branch_name) for regex in protection_regexes)


async def inject_branches(
    session: AsyncSession,
    client: GitHubClient,
    protection_regexes: list[str],
    statistics: RepositoryStatisticsDTO | None = None,
) -> InjectionResult:
    """Fetch branches and store the protected ones.

    Skipped when the number of protected branches on GitHub equals the stored count.

    Raises:
        BranchInjectionError: If fetching or persisting fails
    """
    try:
        if statistics is not None:
            stored = await count_rows(session, models.Branch)
            if statistics.github_branch_count(protection_regexes) == stored:
                logger.info(f"Protected branch count unchanged ({stored}), skipping branch injection")
                return InjectionResult.skip("branches")

        dtos: list[BranchDTO] = await client.get_branches()
        protected = [dto for dto in dtos if is_protected(dto.name, protection_regexes)]
        await upsert_entities(session, [models.Branch(id=dto.id, name=dto.name) for dto in protected])
        await session.commit()

        logger.info(f"Saved {len(protected)} of {len(dtos)} branches")
        return InjectionResult(resource="branches", fetched=len(dtos), saved=len(protected))

    except Exception as e:
        logger.error(f"Branch injection failed: {e}", exc_info=True)
        await session.rollback()
        raise BranchInjectionError(f"Failed to inject branches: {e}") from e
