"""Repository statistics used to skip unchanged resources."""
from __future__ import annotations

import logging

from clients.dtos import RepositoryStatisticsDTO
from clients.github import GitHubClient

from .reconcile import InjectionError

logger = logging.getLogger(__name__)


class RepositoryStatisticsError(InjectionError):
    """Raised when repository statistics cannot be fetched."""
    pass


class RepositoryStatisticsService:
    """Holds the most recently fetched repository statistics."""

    def __init__(self, client: GitHubClient):
        self.client = client
        self.statistics: RepositoryStatisticsDTO | None = None

    async def fetch_repository_statistics(self) -> RepositoryStatisticsDTO:
        try:
            self.statistics = await self.client.get_repository_statistics()
        except Exception as e:
            logger.error(f"Fetching repository statistics failed: {e}", exc_info=True)
            raise RepositoryStatisticsError(f"Failed to fetch repository statistics: {e}") from e
        logger.info("Repository statistics refreshed")
        return self.statistics
