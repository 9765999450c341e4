"""
Deferred Results
================

An ``asyncio.Future`` populated by a settlement routine, the way promises
are built in callback-centric ecosystems:

    >>> def executor(resolve, reject):
    ...     loop.call_later(1, resolve, 42)
    >>> await Deferred(executor)
    42

Settlement is once-only: the first ``resolve``/``reject`` decides the
outcome and later calls are ignored. ``asyncio.Future`` itself raises
``InvalidStateError`` on a second settlement, hence the explicit guard.

Multiple resolution values are packed into a tuple; no value resolves to
``None``.

A rejection nobody awaits is still an unretrieved future exception, so
callback-only callers see asyncio report it even though their callback
already received the error.

An exception raised by the scheduled work after settlement cannot change
the outcome; it goes to the loop's exception handler instead.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

from ..errors import RejectedError

logger = logging.getLogger(__name__)

Executor = Callable[[Callable[..., None], Callable[[Any], None]], Optional[Awaitable]]


def pack_values(values: tuple) -> Any:
    """Collapse resolution values into the single result of a future."""
    if not values:
        return None
    if len(values) == 1:
        return values[0]
    return tuple(values)


def as_exception(reason: Any) -> BaseException:
    """Exception to reject with, wrapping plain values in ``RejectedError``."""
    if isinstance(reason, BaseException) and not isinstance(reason, StopIteration):
        return reason
    return RejectedError(reason)


class Deferred(asyncio.Future):
    """
    Future settled through an executor's ``resolve`` and ``reject`` callables.

    The executor runs synchronously inside the constructor. When it returns
    an awaitable (typically the coroutine doing the actual work), that
    awaitable is scheduled on the loop and kept alive by the deferred:

    - an exception escaping it rejects the deferred, unless already settled
    - cancelling the deferred cancels it, and vice versa

    A running event loop is required unless ``loop`` is given.
    """

    def __init__(self, executor: Executor, *, loop: Optional[asyncio.AbstractEventLoop] = None):
        super().__init__(loop=loop or asyncio.get_running_loop())
        self._task: Optional[asyncio.Future] = None

        try:
            work = executor(self.resolve, self.reject)
        except Exception as e:
            self.reject(e)
            return

        if inspect.isawaitable(work):
            self._task = asyncio.ensure_future(work, loop=self.get_loop())
            self._task.add_done_callback(self._on_work_done)
            self.add_done_callback(self._on_settled)

    @property
    def work(self) -> Optional[asyncio.Future]:
        """Task running the awaitable returned by the executor, if any."""
        return self._task

    def resolve(self, *values: Any):
        if self.done():
            logger.debug(f"Ignoring resolve on settled deferred: {values!r}")
            return
        self.set_result(pack_values(values))

    def reject(self, reason: Any):
        if self.done():
            logger.debug(f"Ignoring reject on settled deferred: {reason!r}")
            return
        self.set_exception(as_exception(reason))

    def _on_work_done(self, task: asyncio.Future):
        if task.cancelled():
            if not self.done():
                self.cancel()
            return
        error = task.exception()
        if error is None:
            return
        if self.done():
            self.get_loop().call_exception_handler({
                'message': 'Exception raised after the deferred was settled',
                'exception': error,
                'future': self,
            })
            return
        self.reject(error)

    def _on_settled(self, _future: asyncio.Future):
        if self.cancelled() and self._task is not None and not self._task.done():
            self._task.cancel()
