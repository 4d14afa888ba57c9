"""
OpenAgency - Cooperative waiting.

The run poll loop and the memory file watch are the only places that wait.
Both go through a :class:`Scheduler`, so waits can be interrupted with a
:class:`CancellationToken` and tests can substitute a clock that never
really sleeps.
"""

import asyncio
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

from .exceptions import RunCancelledError


class CancellationToken:
    """Lets a caller abort a wait that is in progress.

    Usage:
        ```python
        token = CancellationToken()
        task = asyncio.create_task(agent.send_message("...", cancel=token))
        ...
        token.cancel("user pressed stop")
        ```
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelledError(f"Operation cancelled: {self._reason}")

    async def wait(self) -> None:
        await self._event.wait()


class Scheduler:
    """Clock and cancellable sleep used by polling loops."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float, cancel: Optional[CancellationToken] = None) -> None:
        """Sleep for ``seconds`` or until ``cancel`` fires.

        Raises:
            RunCancelledError: If the token is, or becomes, cancelled.
        """
        if cancel is None:
            await asyncio.sleep(seconds)
            return

        cancel.raise_if_cancelled()
        try:
            await asyncio.wait_for(cancel.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        cancel.raise_if_cancelled()


_current_token: ContextVar[Optional[CancellationToken]] = ContextVar(
    "openagency_cancellation", default=None
)


def current_token() -> Optional[CancellationToken]:
    """The token of the turn currently dispatching capabilities, if any."""
    return _current_token.get()


@contextmanager
def cancellation_scope(token: Optional[CancellationToken]) -> Iterator[None]:
    """Make ``token`` visible to capabilities invoked inside the block.

    Delegates read it so that cancelling a turn also stops the turns it
    delegated to.
    """
    reset = _current_token.set(token)
    try:
        yield
    finally:
        _current_token.reset(reset)
