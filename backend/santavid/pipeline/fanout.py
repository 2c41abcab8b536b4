"""Bounded, fail-fast concurrent dispatch of per-scene work."""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from santavid.errors import ExternalGenerationFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def gather_fail_fast(
    stage: str,
    jobs: dict[int, Callable[[], Awaitable[T]]],
    concurrency: int,
) -> dict[int, T]:
    """Run one job per scene with at most `concurrency` in flight.

    The first failure cancels every job that has not finished yet and raises
    an ExternalGenerationFailure listing each scene that failed. Results are
    keyed by scene number.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _bounded(job: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await job()

    tasks = {asyncio.create_task(_bounded(job)): scene for scene, job in jobs.items()}
    if not tasks:
        return {}

    done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)

    failures: dict[int, str] = {}
    for task in done:
        exc = task.exception()
        if exc is not None:
            failures[tasks[task]] = f"{type(exc).__name__}: {exc}"

    if failures:
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        logger.error(f"{stage}: {len(failures)} scene(s) failed, cancelled {len(pending)} in flight")
        raise ExternalGenerationFailure.aggregate(stage, failures)

    return {tasks[task]: task.result() for task in done}
