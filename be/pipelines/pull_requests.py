"""Pull request injection per protected branch.

Release branches are cut from master, so the pull requests of a release branch
are the master pull requests merged before the branch's first own pull request
followed by the branch's own pull requests.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from be import models
from clients.dtos import PullRequestDTO
from clients.github import GitHubClient

from .reconcile import (
    InjectionError,
    InjectionResult,
    as_utc,
    count_rows,
    fetch_ids,
    sync_links,
    upsert_entities,
)

logger = logging.getLogger(__name__)

RELEASE_BRANCH = re.compile(r"^release/([\d.]+)$")
LEGACY_RELEASE_BRANCH = "{version}-release"

_MAX_DATETIME = datetime.max.replace(tzinfo=timezone.utc)


class PullRequestInjectionError(InjectionError):
    """Raised when pull requests cannot be injected."""
    pass


def sort_by_merged_at(pull_requests: list[PullRequestDTO]) -> list[PullRequestDTO]:
    """Oldest merge first; unmerged pull requests last."""
    return sorted(pull_requests, key=lambda pr: as_utc(pr.merged_at) or _MAX_DATETIME)


def merge_pull_requests(
    master_pull_requests: list[PullRequestDTO],
    branch_pull_requests: list[PullRequestDTO],
) -> list[PullRequestDTO]:
    """Combine master and branch pull requests for a branch.

    Args:
        master_pull_requests: Master pull requests sorted by merge date
        branch_pull_requests: Pull requests targeting the branch

    Returns:
        Pull requests belonging to the branch, de-duplicated by number
    """
    if not branch_pull_requests:
        return []

    branch_sorted = sort_by_merged_at(branch_pull_requests)
    if not master_pull_requests or {pr.id for pr in master_pull_requests} == {pr.id for pr in branch_sorted}:
        return list(master_pull_requests)

    cutoff = as_utc(branch_sorted[0].merged_at)
    relevant_master = [
        pr for pr in master_pull_requests
        if cutoff is not None and pr.merged_at is not None and as_utc(pr.merged_at) <= cutoff
    ]

    combined: dict[int, PullRequestDTO] = {}
    for pr in [*relevant_master, *branch_sorted]:
        combined.setdefault(pr.number, pr)
    return list(combined.values())


def legacy_branch_name(branch_name: str) -> str | None:
    """``release/9.1`` was called ``9.1-release`` before the branch naming changed."""
    match = RELEASE_BRANCH.match(branch_name)
    if match is None:
        return None
    return LEGACY_RELEASE_BRANCH.format(version=match.group(1))


async def fetch_branch_pull_requests(client: GitHubClient, branch_name: str) -> list[PullRequestDTO]:
    pull_requests = await client.get_branch_pull_requests(branch_name)
    legacy_name = legacy_branch_name(branch_name)
    if legacy_name is None:
        return pull_requests

    legacy = await client.get_branch_pull_requests(legacy_name)
    logger.debug(f"Fetched {len(legacy)} pull requests of legacy branch '{legacy_name}'")
    combined = {pr.id: pr for pr in pull_requests}
    for pr in legacy:
        combined.setdefault(pr.id, pr)
    return list(combined.values())


def map_pull_request(dto: PullRequestDTO, milestone_ids: set[str]) -> models.PullRequest:
    milestone_id = dto.milestone.id if dto.has_milestone() else None
    return models.PullRequest(
        id=dto.id,
        number=dto.number,
        title=dto.title,
        url=dto.url,
        merged_at=dto.merged_at,
        milestone_id=milestone_id if milestone_id in milestone_ids else None,
    )


async def _inject_branch(
    session: AsyncSession,
    client: GitHubClient,
    branch_id: str,
    branch_name: str,
    master_pull_requests: list[PullRequestDTO],
    master_branch: str,
) -> int:
    if branch_name == master_branch:
        branch_pull_requests = master_pull_requests
    else:
        branch_pull_requests = await fetch_branch_pull_requests(client, branch_name)

    stored = await count_rows(session, models.BranchPullRequest, models.BranchPullRequest.branch_id == branch_id)
    if stored == len(branch_pull_requests):
        logger.info(f"Pull request count of branch '{branch_name}' unchanged ({stored}), skipping")
        return 0

    merged = merge_pull_requests(master_pull_requests, branch_pull_requests)
    if not merged:
        logger.warning(f"No pull requests found for branch '{branch_name}'")
        return 0

    milestone_ids = await fetch_ids(session, models.Milestone)
    label_ids = await fetch_ids(session, models.Label)
    issue_ids = await fetch_ids(session, models.Issue)

    await upsert_entities(session, [map_pull_request(dto, milestone_ids) for dto in merged])
    await sync_links(
        session,
        models.PullRequestLabel,
        "pull_request_id",
        "label_id",
        {
            dto.id: {label.id for label in dto.labels.nodes() if label.id in label_ids}
            if dto.has_labels() else set()
            for dto in merged
        },
    )
    await sync_links(
        session,
        models.PullRequestIssue,
        "pull_request_id",
        "issue_id",
        {
            dto.id: {issue.id for issue in dto.closing_issues_references.nodes() if issue.id in issue_ids}
            if dto.has_closing_issues() else set()
            for dto in merged
        },
    )
    await sync_links(
        session,
        models.BranchPullRequest,
        "branch_id",
        "pull_request_id",
        {branch_id: {dto.id for dto in merged}},
    )
    return len(merged)


async def inject_branch_pull_requests(
    session: AsyncSession,
    client: GitHubClient,
    master_branch: str,
) -> InjectionResult:
    """Fetch and store merged pull requests for every stored branch.

    A branch that fails is logged and skipped; the others are still injected.

    Args:
        session: Database session
        client: GitHub client
        master_branch: Name of the default branch

    Returns:
        InjectionResult with the names of failed branches in ``failures``

    Raises:
        PullRequestInjectionError: If the branches or master pull requests cannot be loaded
    """
    try:
        result = await session.execute(select(models.Branch.id, models.Branch.name).order_by(models.Branch.name))
        branches = [(row.id, row.name) for row in result]
        master_pull_requests = sort_by_merged_at(await client.get_branch_pull_requests(master_branch))
    except Exception as e:
        logger.error(f"Pull request injection failed: {e}", exc_info=True)
        await session.rollback()
        raise PullRequestInjectionError(f"Failed to inject pull requests: {e}") from e

    outcome = InjectionResult(resource="pull_requests", fetched=len(master_pull_requests))
    for branch_id, branch_name in branches:
        try:
            outcome.saved += await _inject_branch(
                session, client, branch_id, branch_name, master_pull_requests, master_branch
            )
            await session.commit()
        except Exception as e:
            logger.error(f"Failed to inject pull requests for branch '{branch_name}': {e}", exc_info=True)
            await session.rollback()
            outcome.failures.append(branch_name)

    logger.info(
        f"Saved {outcome.saved} branch pull requests for {len(branches)} branches "
        f"({len(outcome.failures)} failed)"
    )
    return outcome
