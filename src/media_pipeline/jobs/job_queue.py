"""In-process job queue feeding the worker pool."""

from __future__ import annotations

import asyncio

from .jobs_models import JobPayload


class JobQueue:
    """FIFO of accepted jobs.

    Jobs live only in memory; a process restart loses queued work while the
    affected sessions keep ``job_status='running'``.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[JobPayload] = asyncio.Queue()

    async def put(self, payload: JobPayload) -> None:
        await self._queue.put(payload)

    async def get(self) -> JobPayload:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    def qsize(self) -> int:
        return self._queue.qsize()
