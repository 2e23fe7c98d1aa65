"""Vulnerability scan of every release through Snyk."""
from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from be import models
from clients.snyk import SnykClient, SnykIssueDTO

from .reconcile import InjectionError, InjectionResult, sync_links, upsert_entities, utcnow

logger = logging.getLogger(__name__)


class VulnerabilityInjectionError(InjectionError):
    """Raised when the releases to scan cannot be loaded."""
    pass


def map_vulnerability(issue: SnykIssueDTO) -> models.Vulnerability:
    cve_ids = issue.problem_ids("CVE")
    cwe_ids = issue.problem_ids("CWE")
    return models.Vulnerability(
        id=issue.key,
        title=issue.attributes.title,
        severity=issue.attributes.effective_severity_level,
        cvss_score=issue.cvss_score,
        cve_ids=",".join(cve_ids) or None,
        cwe_ids=",".join(cwe_ids) or None,
        description=issue.attributes.description,
        url=issue.url,
    )


async def scan_release(session: AsyncSession, client: SnykClient, release_id: str, tag_name: str) -> int:
    """Store the vulnerabilities of one release and mark it scanned.

    Returns:
        Number of vulnerabilities found
    """
    issues = await client.get_package_issues(client.build_purl(tag_name))
    vulnerabilities = await upsert_entities(session, [map_vulnerability(issue) for issue in issues])
    await sync_links(
        session,
        models.ReleaseVulnerability,
        "release_id",
        "vulnerability_id",
        {release_id: {vulnerability.id for vulnerability in vulnerabilities}},
    )
    await session.execute(
        update(models.Release).where(models.Release.id == release_id).values(last_scanned=utcnow())
    )
    return len(vulnerabilities)


async def inject_vulnerabilities(session: AsyncSession, client: SnykClient | None) -> InjectionResult:
    """Scan every stored release; a release that fails is logged and skipped.

    Raises:
        VulnerabilityInjectionError: If the releases cannot be loaded
    """
    if client is None or not client.config.configured:
        logger.info("Snyk is not configured, skipping vulnerability scan")
        return InjectionResult.skip("vulnerabilities")

    try:
        result = await session.execute(
            select(models.Release.id, models.Release.tag_name).order_by(models.Release.published_at)
        )
        releases = [(row.id, row.tag_name) for row in result]
    except Exception as e:
        logger.error(f"Loading releases for vulnerability scan failed: {e}", exc_info=True)
        await session.rollback()
        raise VulnerabilityInjectionError(f"Failed to load releases: {e}") from e

    outcome = InjectionResult(resource="vulnerabilities", fetched=len(releases))
    for release_id, tag_name in releases:
        try:
            outcome.saved += await scan_release(session, client, release_id, tag_name)
            await session.commit()
        except Exception as e:
            logger.error(f"Vulnerability scan of release {tag_name} failed: {e}", exc_info=True)
            await session.rollback()
            outcome.failures.append(tag_name)

    logger.info(
        f"Scanned {len(releases)} releases, {outcome.saved} vulnerabilities linked "
        f"({len(outcome.failures)} failed)"
    )
    return outcome
