"""
Request Throttle Queue
Serializes outbound forum writes so the forum's anti-flood protection never trips

Tasks are zero-argument coroutine functions. One task runs at a time, in FIFO
order, with a minimum spacing between tasks. A failed task goes back to the
tail after an exponential backoff delay (other tasks keep draining while it
waits) and is dead-lettered after max_attempts tries.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from .errors import DeadLetterError

logger = logging.getLogger(__name__)


@dataclass
class QueuedRequest:
    task: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    name: str = 'request'
    attempts: int = 0
    errors: list = field(default_factory=list)


class RequestQueue:
    """FIFO queue with a single request in flight"""

    def __init__(self, max_attempts=5, base_delay=2.0, max_delay=300.0, interval=1.0):
        """
        Args:
            max_attempts: Tries before a request is dead-lettered (0 = retry forever)
            base_delay: Backoff after the first failure, doubled per failure
            max_delay: Backoff ceiling
            interval: Minimum seconds between two requests
        """
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.interval = interval

        self.dead_letters = []
        self._pending = deque()
        self._waiting = 0
        self._busy = False
        self._worker: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings):
        return cls(
            max_attempts=settings.queue_max_attempts,
            base_delay=settings.queue_base_delay,
            max_delay=settings.queue_max_delay,
            interval=settings.request_interval,
        )

    def __len__(self):
        """Requests not yet finished (queued, running or backing off)"""
        return len(self._pending) + self._waiting + (1 if self._busy else 0)

    async def add(self, task, name='request'):
        """
        Queue a request and wait for its result

        Args:
            task: Zero-argument coroutine function
            name: Label used in log messages

        Returns:
            The task's return value

        Raises:
            DeadLetterError: The request failed max_attempts times
        """
        loop = asyncio.get_running_loop()
        request = QueuedRequest(task=task, future=loop.create_future(), name=name)
        self._pending.append(request)
        self._dequeue()
        return await request.future

    def backoff_delay(self, attempts):
        return min(self.base_delay * (2 ** (attempts - 1)), self.max_delay)

    def _dequeue(self):
        if self._busy or not self._pending:
            return
        request = self._pending.popleft()
        self._busy = True
        self._worker = asyncio.ensure_future(self._run(request))

    def _requeue(self, request):
        self._waiting -= 1
        self._pending.append(request)
        self._dequeue()

    async def _run(self, request):
        try:
            result = await request.task()
        except Exception as e:
            request.attempts += 1
            request.errors.append(e)

            if self.max_attempts and request.attempts >= self.max_attempts:
                logger.error(f"❌ {request.name} dead-lettered after {request.attempts} attempts: {e}")
                self.dead_letters.append(request)
                if not request.future.done():
                    request.future.set_exception(DeadLetterError(
                        message=f"{request.name} failed {request.attempts} times",
                        details=request.errors,
                    ))
            else:
                delay = self.backoff_delay(request.attempts)
                logger.warning(f"⚠️ {request.name} failed (attempt {request.attempts}), retrying in {delay:.1f}s: {e}")
                self._waiting += 1
                asyncio.get_running_loop().call_later(delay, self._requeue, request)
        else:
            if not request.future.done():
                request.future.set_result(result)
        finally:
            if self.interval:
                await asyncio.sleep(self.interval)
            self._busy = False
            self._dequeue()

    async def join(self):
        """Wait until every queued request has finished or been dead-lettered"""
        while len(self):
            await asyncio.sleep(0.01)
