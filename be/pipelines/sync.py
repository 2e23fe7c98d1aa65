"""Scheduled synchronization of GitHub and Snyk data.

Every entry point is guarded twice: an in-process lock so one instance never
runs two synchronizations at once, and a scheduler lock row so only one
instance runs a given job.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from be.config import Settings, settings
from be.locking import SchedulerLock
from clients.github import GitHubClient
from clients.snyk import SnykClient

from .branches import inject_branches
from .issue_project_items import inject_issue_project_items
from .issue_types import inject_issue_types
from .issues import inject_issues
from .labels import inject_labels
from .milestones import inject_milestones
from .pull_requests import inject_branch_pull_requests
from .reconcile import InjectionError, InjectionResult, utcnow
from .releases import inject_releases
from .statistics import RepositoryStatisticsService
from .vulnerabilities import inject_vulnerabilities

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockSpec:
    name: str
    at_most_for: timedelta
    at_least_for: timedelta = timedelta(0)


STARTUP_GITHUB_LOCK = LockSpec("startUpGitHubUpdate", timedelta(hours=2), timedelta(minutes=30))
DAILY_GITHUB_LOCK = LockSpec("dailyGitHubUpdate", timedelta(hours=2), timedelta(minutes=30))
MANUAL_GITHUB_LOCK = LockSpec("manualGitHubUpdate", timedelta(hours=2))
STATISTICS_LOCK = LockSpec("fetchGitHubStatistics", timedelta(minutes=10))
SYSTEM_DATA_LOCK = LockSpec("initializeSystemData", timedelta(hours=2))
SNYK_DATA_LOCK = LockSpec("initializeSnykData", timedelta(hours=2))


@dataclass
class SyncReport:
    """Outcome of the last synchronization run."""
    trigger: str
    started_at: datetime
    finished_at: datetime | None = None
    status: str = "running"
    error: str | None = None
    results: list[InjectionResult] = field(default_factory=list)

    def finish(self, status: str, error: str | None = None) -> None:
        self.status = status
        self.error = error
        self.finished_at = utcnow()


class SystemDataSynchronizer:
    """Runs the injection pipelines in dependency order."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        github: GitHubClient,
        snyk: SnykClient | None,
        lock: SchedulerLock,
        config: Settings | None = None,
    ):
        self.session_maker = session_maker
        self.github = github
        self.snyk = snyk
        self.lock = lock
        self.config = config or settings
        self.statistics = RepositoryStatisticsService(github)
        self.last_report: SyncReport | None = None
        self._running = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    async def run_startup(self) -> SyncReport | None:
        return await self._run("startup", STARTUP_GITHUB_LOCK)

    async def run_daily(self) -> SyncReport | None:
        return await self._run("daily", DAILY_GITHUB_LOCK)

    async def run_manual(self) -> SyncReport | None:
        return await self._run("manual", MANUAL_GITHUB_LOCK)

    async def _run(self, trigger: str, job_lock: LockSpec) -> SyncReport | None:
        if self._running.locked():
            logger.warning(f"A synchronization is already running, skipping {trigger} run")
            return None

        async with self._running:
            report = SyncReport(trigger=trigger, started_at=utcnow())
            self.last_report = report

            if not self.config.scheduler.fetch_enabled:
                logger.info("Skipping data fetch: fetching is disabled by configuration")
                report.finish("skipped")
                return report

            try:
                async with self.lock.hold(
                    job_lock.name,
                    lock_at_most_for=job_lock.at_most_for,
                    lock_at_least_for=job_lock.at_least_for,
                ) as acquired:
                    if not acquired:
                        report.finish("skipped")
                        return report

                    logger.info(f"Starting {trigger} synchronization")
                    error: str | None = None
                    try:
                        await self.fetch_github_statistics()
                        report.results.extend(await self.initialize_system_data())
                    except InjectionError as e:
                        logger.error(f"GitHub synchronization aborted: {e}")
                        error = str(e)

                    try:
                        vulnerabilities = await self.initialize_vulnerability_data()
                        if vulnerabilities is not None:
                            report.results.append(vulnerabilities)
                    except InjectionError as e:
                        logger.error(f"Vulnerability scan aborted: {e}")
                        error = error or str(e)
            except Exception as e:
                logger.error(f"{trigger.capitalize()} synchronization failed: {e}", exc_info=True)
                report.finish("failed", str(e))
                raise

            report.finish("failed" if error else "succeeded", error)
            logger.info(f"Finished {trigger} synchronization: {report.status}")
            return report

    async def fetch_github_statistics(self) -> None:
        """Refresh repository statistics; without fresh counts no work is skipped."""
        async with self.lock.hold(
            STATISTICS_LOCK.name, lock_at_most_for=STATISTICS_LOCK.at_most_for
        ) as acquired:
            if not acquired:
                self.statistics.statistics = None
                return
            try:
                await self.statistics.fetch_repository_statistics()
            except InjectionError as e:
                logger.warning(f"Continuing without repository statistics: {e}")
                self.statistics.statistics = None

    async def initialize_system_data(self) -> list[InjectionResult]:
        """Inject all GitHub resources; the first failing step aborts the rest.

        Raises:
            InjectionError: From the failing step
        """
        github = self.config.github
        statistics = self.statistics.statistics
        results: list[InjectionResult] = []

        async with self.lock.hold(
            SYSTEM_DATA_LOCK.name, lock_at_most_for=SYSTEM_DATA_LOCK.at_most_for
        ) as acquired:
            if not acquired:
                return results

            steps = [
                lambda s: inject_labels(s, self.github, statistics),
                lambda s: inject_milestones(s, self.github),
                lambda s: inject_issue_types(s, self.github, statistics),
                lambda s: inject_issue_project_items(s, self.github, github.project_id),
                lambda s: inject_branches(s, self.github, github.branch_protection_regexes, statistics),
                lambda s: inject_issues(s, self.github),
                lambda s: inject_branch_pull_requests(s, self.github, github.master_branch),
                lambda s: inject_releases(s, self.github, github.master_branch),
            ]
            for step in steps:
                async with self.session_maker() as session:
                    results.append(await step(session))

        logger.info("System data initialized")
        return results

    async def initialize_vulnerability_data(self) -> InjectionResult | None:
        async with self.lock.hold(
            SNYK_DATA_LOCK.name, lock_at_most_for=SNYK_DATA_LOCK.at_most_for
        ) as acquired:
            if not acquired:
                return None
            async with self.session_maker() as session:
                return await inject_vulnerabilities(session, self.snyk)
