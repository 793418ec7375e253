"""
Per-session background persistence.

Shell hooks call into the pipeline synchronously; the storage work they cause
is queued here and runs on the event loop. Each session gets its own queue and
worker, so work from one session runs strictly in submission order (a close
can never land before its open) while sessions never wait on each other.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


class PersistenceDispatcher:
    """FIFO job queue per session id with one retry per failed job."""

    def __init__(self, retry_delay: float = 0.5) -> None:
        self.retry_delay = retry_delay
        self._queues: dict[str, asyncio.Queue[tuple[Job, str]]] = {}
        self._workers: dict[str, asyncio.Task[None]] = {}
        self.dropped_jobs = 0

    def submit(self, session_id: str, job: Job, description: str = "persistence job") -> None:
        """Queue ``job`` behind earlier work for the same session.

        Must be called while an event loop is running.
        """
        queue = self._queues.get(session_id)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[session_id] = queue
            self._workers[session_id] = asyncio.get_running_loop().create_task(
                self._worker(session_id, queue), name=f"termbrain-persist-{session_id}"
            )
        queue.put_nowait((job, description))

    async def _worker(self, session_id: str, queue: asyncio.Queue[tuple[Job, str]]) -> None:
        while True:
            job, description = await queue.get()
            try:
                await self._run_with_retry(session_id, job, description)
            finally:
                queue.task_done()

    async def _run_with_retry(self, session_id: str, job: Job, description: str) -> None:
        try:
            await job()
            return
        except Exception as e:
            logger.warning(f"{description} failed for {session_id}, retrying once: {e}")

        await asyncio.sleep(self.retry_delay)
        try:
            await job()
        except Exception as e:
            self.dropped_jobs += 1
            logger.error(f"{description} dropped for {session_id} after retry: {e}")

    async def drain(self, session_id: str | None = None) -> None:
        """Wait until queued work (for one session or all) has finished."""
        if session_id is not None:
            queue = self._queues.get(session_id)
            if queue is not None:
                await queue.join()
            return
        for queue in list(self._queues.values()):
            await queue.join()

    async def close(self) -> None:
        """Finish outstanding work, then stop every worker."""
        await self.drain()
        workers = list(self._workers.values())
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()
        self._queues.clear()

    @property
    def session_ids(self) -> list[str]:
        return list(self._queues)
