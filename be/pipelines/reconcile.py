"""Persistence helpers shared by the injection pipelines.

Entities are upserted by primary key (last write wins). Join entities are
reconciled per owner: links that are no longer reported are deleted and new
ones inserted.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Mapping, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models

ModelT = TypeVar("ModelT", bound=models.Base)

IN_CLAUSE_CHUNK = 500


class InjectionError(Exception):
    """Base class for failures of an injection pipeline."""
    pass


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite returns them without offset)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _chunks(values: list[str], size: int = IN_CLAUSE_CHUNK) -> Iterable[list[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


async def upsert_entities(session: AsyncSession, entities: Iterable[ModelT]) -> list[ModelT]:
    """Merge entities into the session by primary key and flush.

    Returns:
        The persistent instances
    """
    merged = [await session.merge(entity) for entity in entities]
    await session.flush()
    return merged


async def count_rows(session: AsyncSession, model: type[models.Base], *where) -> int:
    query = select(func.count()).select_from(model)
    if where:
        query = query.where(*where)
    return (await session.execute(query)).scalar_one()


async def fetch_ids(session: AsyncSession, model: type[models.Base]) -> set[str]:
    """All primary keys of a GitHub-backed table."""
    result = await session.execute(select(model.id))
    return set(result.scalars().all())


async def sync_links(
    session: AsyncSession,
    link_model: type[models.Base],
    owner_column: str,
    target_column: str,
    desired: Mapping[str, set[str]],
) -> tuple[int, int]:
    """Make the links of every owner in ``desired`` match exactly.

    Owners missing from ``desired`` keep their links.

    Args:
        session: Database session
        link_model: Join entity, e.g. ``models.IssueLabel``
        owner_column: Column identifying the owner, e.g. ``"issue_id"``
        target_column: Column identifying the linked row, e.g. ``"label_id"``
        desired: Owner id to the complete set of target ids

    Returns:
        Tuple of (inserted, deleted) link counts
    """
    if not desired:
        return 0, 0

    owner_attr = getattr(link_model, owner_column)
    target_attr = getattr(link_model, target_column)

    existing: dict[str, set[str]] = defaultdict(set)
    for chunk in _chunks(list(desired)):
        rows = await session.execute(select(owner_attr, target_attr).where(owner_attr.in_(chunk)))
        for owner_id, target_id in rows:
            existing[owner_id].add(target_id)

    inserted = deleted = 0
    for owner_id, targets in desired.items():
        current = existing.get(owner_id, set())
        stale = current - targets
        if stale:
            await session.execute(
                delete(link_model).where(owner_attr == owner_id, target_attr.in_(stale))
            )
            deleted += len(stale)
        for target_id in targets - current:
            session.add(link_model(**{owner_column: owner_id, target_column: target_id}))
            inserted += 1

    await session.flush()
    return inserted, deleted


@dataclass
class InjectionResult:
    """Outcome of one injection pipeline run."""
    resource: str
    fetched: int = 0
    saved: int = 0
    skipped: bool = False
    failures: list[str] = field(default_factory=list)

    @classmethod
    def skip(cls, resource: str) -> InjectionResult:
        return cls(resource=resource, skipped=True)
