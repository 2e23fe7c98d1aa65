"""Database-row scheduler lock shared by every service instance.

One ``shedlock`` row per job name. A lock is free once ``lock_until`` has
passed: ``lock_at_most_for`` bounds how long a crashed holder can block the
job, ``lock_at_least_for`` keeps a quickly finished job from running again on
another instance in the same schedule slot.
"""
from __future__ import annotations

import logging
import socket
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import models
from .pipelines.reconcile import utcnow

logger = logging.getLogger(__name__)


class SchedulerLock:
    """Acquire and release named locks stored in the ``shedlock`` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], instance_name: str | None = None):
        self.session_maker = session_maker
        self.instance_name = instance_name or socket.gethostname()
        self._locked_at: dict[str, datetime] = {}

    async def try_acquire(self, name: str, lock_at_most_for: timedelta) -> bool:
        """Take the lock if nobody holds it.

        Returns:
            True when this instance now holds the lock
        """
        now = utcnow()
        values = {"lock_until": now + lock_at_most_for, "locked_at": now, "locked_by": self.instance_name}

        async with self.session_maker() as session:
            try:
                session.add(models.ShedLock(name=name, **values))
                await session.commit()
                acquired = True
            except IntegrityError:
                await session.rollback()
                result = await session.execute(
                    update(models.ShedLock)
                    .where(models.ShedLock.name == name, models.ShedLock.lock_until <= now)
                    .values(**values)
                )
                await session.commit()
                acquired = result.rowcount > 0

        if acquired:
            self._locked_at[name] = now
            logger.debug(f"Lock '{name}' acquired by {self.instance_name}")
        return acquired

    async def release(self, name: str, lock_at_least_for: timedelta = timedelta(0)) -> None:
        """Release a held lock, keeping it until ``locked_at + lock_at_least_for``."""
        locked_at = self._locked_at.pop(name, None)
        if locked_at is None:
            logger.warning(f"Lock '{name}' is not held by {self.instance_name}")
            return

        lock_until = max(utcnow(), locked_at + lock_at_least_for)
        async with self.session_maker() as session:
            await session.execute(
                update(models.ShedLock)
                .where(models.ShedLock.name == name, models.ShedLock.locked_by == self.instance_name)
                .values(lock_until=lock_until)
            )
            await session.commit()
        logger.debug(f"Lock '{name}' released until {lock_until.isoformat()}")

    @asynccontextmanager
    async def hold(
        self,
        name: str,
        *,
        lock_at_most_for: timedelta,
        lock_at_least_for: timedelta = timedelta(0),
    ) -> AsyncIterator[bool]:
        """Run a block under the lock; yields False when another instance holds it.

        Usage:
            async with lock.hold("dailyUpdate", lock_at_most_for=timedelta(hours=2)) as acquired:
                if acquired:
                    ...
        """
        acquired = await self.try_acquire(name, lock_at_most_for)
        if not acquired:
            logger.info(f"Lock '{name}' is held by another instance, skipping")
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(name, lock_at_least_for)
