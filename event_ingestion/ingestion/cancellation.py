"""
Cooperative cancellation.

A CancellationToken is handed to every source run. The orchestrator checks it
at the start of each record and races suspension points (adapter fetches,
remote classification) against it. The registry maps running RunLog ids to
their tokens so the control API can signal runs started by other requests.
"""

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from event_ingestion.ingestion.errors import RunCancelledError
from event_ingestion.schemas import RunLog

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """A one-shot cancellation flag that can also be awaited."""

    def __init__(self):
        self._flag = threading.Event()
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Event]] = []
        self._lock = threading.Lock()

    @property
    def is_cancelled(self) -> bool:
        return self._flag.is_set()

    def cancel(self) -> None:
        """Signal cancellation. Safe to call from any thread, more than once."""
        with self._lock:
            if self._flag.is_set():
                return
            self._flag.set()
            waiters = list(self._waiters)
        for loop, event in waiters:
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(event.set)

    def raise_if_cancelled(self) -> None:
        if self._flag.is_set():
            raise RunCancelledError()

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        event = asyncio.Event()
        entry = (asyncio.get_running_loop(), event)
        with self._lock:
            if self._flag.is_set():
                return
            self._waiters.append(entry)
        try:
            await event.wait()
        finally:
            with self._lock:
                self._waiters.remove(entry)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.

        Raises:
            RunCancelledError: if cancellation is observed before or during the wait
        """
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except BaseException:
            work.cancel()
            waiter.cancel()
            await asyncio.gather(work, waiter, return_exceptions=True)
            raise
        if work in done:
            waiter.cancel()
            return work.result()
        work.cancel()
        # let the interrupted work unwind before the caller moves on
        await asyncio.gather(work, return_exceptions=True)
        raise RunCancelledError()


class CancellationRegistry:
    """Tokens of the runs owned by this process, keyed by RunLog id."""

    def __init__(self):
        self._tokens: dict[int, CancellationToken] = {}
        self._lock = threading.Lock()
        # held from RunLog creation until its token is registered
        self._claims = threading.RLock()

    def register(self, log_id: int, token: CancellationToken) -> None:
        with self._lock:
            self._tokens[log_id] = token

    def claim(self, create: Callable[[], RunLog], token: CancellationToken) -> RunLog:
        """
        Create a RunLog with `create` and register `token` under its id.

        Callers inside `exclusive()` never see the row without its token.
        """
        with self._claims:
            created = create()
            self.register(created.id, token)
        return created

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Block new claims, e.g. while deciding which running rows have no owner here."""
        with self._claims:
            yield

    def unregister(self, log_id: int) -> None:
        with self._lock:
            self._tokens.pop(log_id, None)

    def is_owned(self, log_id: int) -> bool:
        with self._lock:
            return log_id in self._tokens

    def running_ids(self) -> list[int]:
        with self._lock:
            return sorted(self._tokens)

    def cancel(self, log_id: int) -> bool:
        """Signal one run. Returns False when the run is not owned here."""
        with self._lock:
            token = self._tokens.get(log_id)
        if token is None:
            return False
        token.cancel()
        logger.info(f"Cancellation requested for run {log_id}")
        return True

    def cancel_all(self) -> list[int]:
        with self._lock:
            items = list(self._tokens.items())
        for _, token in items:
            token.cancel()
        if items:
            logger.info(f"Cancellation requested for {len(items)} running process(es)")
        return [log_id for log_id, _ in items]
