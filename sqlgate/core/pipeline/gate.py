import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncConnection

from sqlgate.core.exceptions import GateError, GateTimeoutError

# -----------------------------------------------------------------------------
# GATE MODULE - Exclusive access to the connection
# Purpose: Own the one connection and run jobs against it strictly one at a time,
# in the order they were submitted
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConnectionGate:
    """
    Single owner of the database connection.

    Callers submit jobs through with_connection(); one worker task takes them
    off a FIFO queue and awaits each to completion before starting the next,
    so no two jobs ever touch the connection at the same time. A job raising an
    exception fails only its own caller.
    """

    def __init__(self, connection: AsyncConnection):
        self._connection = connection
        self._jobs: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def is_running(self) -> bool:
        return (
            self._worker is not None and not self._worker.done() and not self._closing
        )

    def start(self):
        if self._worker is not None:
            raise GateError("connection gate already started")
        self._worker = asyncio.create_task(self._run(), name="sqlgate-connection-gate")

    async def with_connection(
        self, fn: Callable[[AsyncConnection], Awaitable[T]], timeout: Optional[float] = None
    ) -> T:
        """
        Run `fn(connection)` once every earlier job has finished.

        Raises GateError if the gate is not running and GateTimeoutError if the
        job has not finished within `timeout` seconds. A timed-out job that has
        not started yet is skipped.
        """
        if not self.is_running:
            raise GateError("connection gate is not accepting jobs")

        future = asyncio.get_running_loop().create_future()
        self._jobs.put_nowait((fn, future))

        if timeout is None:
            return await future

        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            logger.error(f"Job did not finish within {timeout}s")
            raise GateTimeoutError(f"job did not finish within {timeout}s")

    async def _run(self):
        try:
            while True:
                job = await self._jobs.get()
                if job is None:
                    break

                fn, future = job
                # Caller gave up (deadline or disconnect) before its turn
                if future.done():
                    continue

                try:
                    result = await fn(self._connection)
                except Exception as error:
                    if not future.done():
                        future.set_exception(error)
                except BaseException:
                    # The worker dies with this job; the gate is poisoned from here on
                    if not future.done():
                        future.set_exception(GateError("connection gate stopped"))
                    raise
                else:
                    if not future.done():
                        future.set_result(result)
        finally:
            self._fail_pending()

    def _fail_pending(self):
        while not self._jobs.empty():
            job = self._jobs.get_nowait()
            if job is None:
                continue
            _, future = job
            if not future.done():
                future.set_exception(GateError("connection gate stopped"))

    async def close(self):
        """Let queued jobs finish, stop the worker and close the connection."""
        if self._worker is not None and not self._worker.done():
            self._closing = True
            self._jobs.put_nowait(None)
            await self._worker
        self._closing = True
        await self._connection.close()
