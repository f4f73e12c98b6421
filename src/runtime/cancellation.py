"""
Cooperative cancellation shared by every async operation of a live session.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from models.errors import OperationCancelled

T = TypeVar("T")


class CancellationToken:
    """
    A one-shot cancellation flag.

    Operations call check() at every resumption point; wait_or_cancel() lets a
    suspended await end early when the token fires.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def check(self) -> None:
        """Raise OperationCancelled if the token has fired."""
        if self._event.is_set():
            raise OperationCancelled(self.reason)

    async def sleep(self, seconds: float) -> None:
        """Sleep, returning early (and raising) if cancelled."""
        self.check()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return
        self.check()

    async def wait_or_cancel(
        self,
        aw: Awaitable[T],
        timeout: Optional[float] = None,
        on_abandon: Optional[Callable[["asyncio.Future[T]"], None]] = None,
    ) -> T:
        """
        Await `aw` unless the token fires or `timeout` elapses first.

        Work already running in a thread cannot be interrupted. When the
        result is abandoned, `on_abandon` is attached as a done-callback so
        the caller can dispose of a late result.

        Raises:
            OperationCancelled: The token fired first.
            asyncio.TimeoutError: `timeout` elapsed first.
        """
        if self.cancelled and asyncio.iscoroutine(aw):
            aw.close()
        self.check()
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done() and on_abandon is not None:
                task.add_done_callback(on_abandon)
        if task.done():
            return task.result()
        if self.cancelled:
            raise OperationCancelled(self.reason)
        raise asyncio.TimeoutError()
