"""Release injection and assignment of pull requests to releases.

A pull request belongs to the first release published after it was merged on
the release's branch. When a release had beta or release candidate builds,
its window closes at the earliest of those builds instead.
"""
from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from be import models
from clients.dtos import ReleaseDTO, extract_major_minor
from clients.github import GitHubClient

from .reconcile import InjectionError, InjectionResult, as_utc, sync_links, upsert_entities

logger = logging.getLogger(__name__)

NIGHTLY_RELEASE_NAME = "nightly"

_MIN_DATETIME = datetime.min.replace(tzinfo=timezone.utc)


class ReleaseInjectionError(InjectionError):
    """Raised when releases cannot be injected."""
    pass


@dataclass(frozen=True)
class BranchRef:
    id: str
    name: str


@dataclass(frozen=True)
class MergedPullRequest:
    id: str
    merged_at: datetime | None


@dataclass
class ReleaseRef:
    """Plain view of a stored release used while assigning pull requests."""
    id: str
    tag_name: str
    name: str | None
    published_at: datetime | None
    branch_id: str | None


def release_sort_key(release: ReleaseRef) -> tuple[bool, datetime]:
    """Nightly releases last, the others by publication date."""
    is_nightly = release.name is not None and NIGHTLY_RELEASE_NAME in release.name.lower()
    return is_nightly, as_utc(release.published_at) or _MIN_DATETIME


def by_published_at(release: ReleaseRef) -> datetime:
    return as_utc(release.published_at) or _MIN_DATETIME


def find_branch_for_release(
    dto: ReleaseDTO,
    branches: list[BranchRef],
    master_branch: str,
) -> BranchRef | None:
    """First branch, by name, containing the release's major.minor version, else master.

    The version must not run on into another digit: 9.1 matches ``release/9.1``
    and ``9.1-release`` but not ``release/9.10``.
    """
    version = extract_major_minor(dto.name)
    if version is not None:
        pattern = re.compile(rf"(?<![\d.]){re.escape(version)}(?!\d)")
        for branch in sorted(branches, key=lambda b: b.name):
            if pattern.search(branch.name):
                return branch
    return next((b for b in branches if b.name.lower() == master_branch.lower()), None)


def build_earliest_beta_rc_dates(
    valid: list[ReleaseDTO],
    invalid: list[ReleaseDTO],
) -> dict[str, datetime]:
    """Earliest publish date of the beta / RC builds of every final release, by tag name."""
    earliest: dict[str, datetime] = {}
    for release in valid:
        base = release.tag_name.lower()
        dates = [
            as_utc(candidate.published_at)
            for candidate in invalid
            if candidate.published_at is not None and candidate.base_tag_name().lower() == base
        ]
        if dates:
            earliest[release.tag_name] = min(dates)
    return earliest


def assign_to_releases(
    releases: list[ReleaseRef],
    pull_requests: list[MergedPullRequest],
    earliest_beta_rc: dict[str, datetime],
    assignments: dict[str, set[str]],
) -> list[ReleaseRef]:
    """Assign pull requests to each release after the first by merge window.

    The window of release ``i`` is ``[published_at(i - 1), end)`` where ``end``
    is the earliest beta / RC date of release ``i`` or its own publish date.

    Returns:
        The releases in assignment order
    """
    ordered = sorted(releases, key=release_sort_key)
    for previous, current in zip(ordered, ordered[1:]):
        start = as_utc(previous.published_at)
        end = earliest_beta_rc.get(current.tag_name) or as_utc(current.published_at)
        if start is None or end is None:
            continue
        for pull_request in pull_requests:
            merged_at = as_utc(pull_request.merged_at)
            if merged_at is not None and start <= merged_at < end:
                assignments.setdefault(current.id, set()).add(pull_request.id)
    return ordered


def assign_pull_requests(
    releases_by_branch: dict[str, list[ReleaseRef]],
    pull_requests_by_branch: dict[str, list[MergedPullRequest]],
    master_branch_id: str | None,
    earliest_beta_rc: dict[str, datetime],
    assignments: dict[str, set[str]],
) -> None:
    """Assign branch pull requests per release branch, then master pull requests.

    The first release of every release branch is published from master, so it
    joins the master releases and gets its pull requests from master.
    """
    master_releases: list[ReleaseRef] = []
    for branch_id, releases in releases_by_branch.items():
        if branch_id == master_branch_id:
            continue
        if len(releases) == 1:
            master_releases.append(releases[0])
            continue
        ordered = assign_to_releases(
            releases, pull_requests_by_branch.get(branch_id, []), earliest_beta_rc, assignments
        )
        master_releases.append(sorted(ordered, key=by_published_at)[0])

    if master_branch_id is None:
        return

    combined = sorted(
        [*master_releases, *releases_by_branch.get(master_branch_id, [])],
        key=by_published_at,
    )
    assign_to_releases(combined, pull_requests_by_branch.get(master_branch_id, []), earliest_beta_rc, assignments)


async def _load_pull_requests_by_branch(session: AsyncSession) -> dict[str, list[MergedPullRequest]]:
    result = await session.execute(
        select(models.BranchPullRequest.branch_id, models.PullRequest.id, models.PullRequest.merged_at)
        .join(models.PullRequest, models.PullRequest.id == models.BranchPullRequest.pull_request_id)
    )
    pull_requests: dict[str, list[MergedPullRequest]] = defaultdict(list)
    for branch_id, pull_request_id, merged_at in result:
        pull_requests[branch_id].append(MergedPullRequest(id=pull_request_id, merged_at=merged_at))
    return pull_requests


async def inject_releases(session: AsyncSession, client: GitHubClient, master_branch: str) -> InjectionResult:
    """Fetch releases, store the final ones and link them to their pull requests.

    Steps:
    1. Split releases into final releases and beta / RC builds
    2. Attach each final release to its branch and upsert it
    3. Assign merged pull requests to releases by publication windows
    4. Reconcile release pull request links

    Raises:
        ReleaseInjectionError: If fetching or persisting fails
    """
    try:
        dtos = await client.get_releases()
        valid = [dto for dto in dtos if dto.is_valid()]
        invalid = [dto for dto in dtos if not dto.is_valid()]
        if not valid:
            logger.info("No valid releases found")
            return InjectionResult(resource="releases", fetched=len(dtos))

        result = await session.execute(select(models.Branch.id, models.Branch.name).order_by(models.Branch.name))
        branches = [BranchRef(id=row.id, name=row.name) for row in result]
        master = next((b for b in branches if b.name.lower() == master_branch.lower()), None)

        refs: list[ReleaseRef] = []
        entities: list[models.Release] = []
        for dto in valid:
            branch = find_branch_for_release(dto, branches, master_branch)
            entities.append(
                models.Release(
                    id=dto.id,
                    tag_name=dto.tag_name,
                    name=dto.name,
                    published_at=dto.published_at,
                    branch_id=branch.id if branch else None,
                )
            )
            refs.append(
                ReleaseRef(
                    id=dto.id,
                    tag_name=dto.tag_name,
                    name=dto.name,
                    published_at=dto.published_at,
                    branch_id=branch.id if branch else None,
                )
            )
        await upsert_entities(session, entities)

        releases_by_branch: dict[str, list[ReleaseRef]] = defaultdict(list)
        for ref in refs:
            if ref.branch_id is not None:
                releases_by_branch[ref.branch_id].append(ref)
        for releases in releases_by_branch.values():
            releases.sort(key=by_published_at)

        assignments: dict[str, set[str]] = {ref.id: set() for ref in refs}
        assign_pull_requests(
            releases_by_branch,
            await _load_pull_requests_by_branch(session),
            master.id if master else None,
            build_earliest_beta_rc_dates(valid, invalid),
            assignments,
        )

        inserted, deleted = await sync_links(
            session, models.ReleasePullRequest, "release_id", "pull_request_id", assignments
        )
        await session.commit()

        logger.info(
            f"Saved {len(entities)} releases ({len(invalid)} beta/RC skipped), "
            f"release pull requests: {inserted} added, {deleted} removed"
        )
        return InjectionResult(resource="releases", fetched=len(dtos), saved=len(entities))

    except Exception as e:
        logger.error(f"Release injection failed: {e}", exc_info=True)
        await session.rollback()
        raise ReleaseInjectionError(f"Failed to inject releases: {e}") from e
