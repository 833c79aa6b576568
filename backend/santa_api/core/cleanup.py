"""Periodic housekeeping tasks started with the app."""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from santa_api.core.config import settings
from santa_api.core.rate_limit import RateLimiter
from santa_api.db.repository import SantaRepository
from santa_api.models.models import utcnow

logger = logging.getLogger("santa.cleanup")


async def cleanup_expired_verifications(session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as session:
        deleted = await SantaRepository(session).cleanup_expired_verifications()
    if deleted:
        logger.info("Deleted %d expired email verifications", deleted)
    return deleted


async def cleanup_old_games(
    session_factory: async_sessionmaker[AsyncSession],
    retention_days: int | None = None,
) -> int:
    days = retention_days if retention_days is not None else settings.game_retention_days
    cutoff = utcnow() - timedelta(days=days)
    async with session_factory() as session:
        deleted = await SantaRepository(session).cleanup_old_games(cutoff)
    if deleted:
        logger.info("Deleted %d games created before %s", deleted, cutoff.isoformat())
    return deleted


class CleanupScheduler:
    """Runs each job once at start, then every ``interval`` seconds.

    Jobs are started ``stagger`` seconds apart so they do not all hit the
    database at the same moment.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rate_limiter: RateLimiter | None = None,
        interval: float | None = None,
        stagger: float | None = None,
    ) -> None:
        self.interval = interval if interval is not None else settings.cleanup_interval_seconds
        self.stagger = stagger if stagger is not None else settings.cleanup_stagger_seconds
        self._jobs: list[tuple[str, Callable[[], Awaitable[object]]]] = [
            ("verifications", lambda: cleanup_expired_verifications(session_factory)),
            ("games", lambda: cleanup_old_games(session_factory)),
        ]
        if rate_limiter is not None:
            self._jobs.append(("rate_limiter", _as_coroutine(rate_limiter.prune)))
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        for index, (name, job) in enumerate(self._jobs):
            task = asyncio.create_task(self._loop(name, job, index * self.stagger), name=f"cleanup-{name}")
            self._tasks.append(task)
        logger.info("Cleanup tasks started interval=%ss", self.interval)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Cleanup tasks stopped")

    async def _loop(self, name: str, job: Callable[[], Awaitable[object]], delay: float) -> None:
        if delay:
            await asyncio.sleep(delay)
        while True:
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Cleanup job %s failed", name)
            await asyncio.sleep(self.interval)


def _as_coroutine(func: Callable[[], object]) -> Callable[[], Awaitable[object]]:
    async def runner() -> object:
        return func()
    return runner
