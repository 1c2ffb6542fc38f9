"""Single-slot rendezvous for handing one value to a waiting coroutine.

Unlike a queue, the mailbox holds at most one pending value: a second
``put`` before the waiter has taken the first replaces it and hands the
displaced value back to the caller. Closing the mailbox fails the current
and every later ``get`` with the given exception.

Usage::

    box: Mailbox[str] = Mailbox()
    box.put("111111")
    box.put("222222")         # returns "111111"
    await box.get()           # -> "222222"
    box.close(AuthCancelled())
    await box.get()           # raises AuthCancelled
"""

from __future__ import annotations

import asyncio
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class Mailbox(Generic[T]):
    """At-most-one-pending-value mailbox with overwrite on conflict."""

    def __init__(self) -> None:
        self._value: Optional[T] = None
        self._full = False
        self._error: Optional[BaseException] = None
        self._changed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._error is not None

    @property
    def full(self) -> bool:
        return self._full

    def put(self, value: T) -> Optional[T]:
        """Fill the slot, returning the value it displaced (if any)."""
        if self._error is not None:
            raise RuntimeError("mailbox is closed")
        displaced = self._value if self._full else None
        self._value = value
        self._full = True
        self._changed.set()
        return displaced

    async def get(self) -> T:
        """Wait for and take the pending value."""
        while True:
            if self._error is not None:
                raise self._error
            if self._full:
                value = self._value
                self._value = None
                self._full = False
                self._changed.clear()
                return value  # type: ignore[return-value]
            self._changed.clear()
            await self._changed.wait()

    def close(self, error: BaseException) -> Optional[T]:
        """Fail waiters with ``error`` and return any value left undelivered."""
        if self._error is not None:
            return None
        undelivered = self._value if self._full else None
        self._value = None
        self._full = False
        self._error = error
        self._changed.set()
        return undelivered
