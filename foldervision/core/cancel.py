# foldervision/core/cancel.py
"""
Cooperative cancellation shared by every lane of a scan.

The token may be cancelled from any thread. Async code either polls
is_cancelled() between directory visits or awaits wait(), which is woken
through the owning event loop.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Callable, List, Optional


class CancelToken:
    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> bool:
        """Request cancellation. Returns False if it was already requested."""
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            cb()
        return True

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def add_callback(self, cb: Callable[[], None]) -> Callable[[], None]:
        """
        Run cb once on cancellation (immediately if already cancelled).

        Returns a function that unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(cb)

                def remove() -> None:
                    with self._lock:
                        if cb in self._callbacks:
                            self._callbacks.remove(cb)

                return remove
        cb()
        return lambda: None

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        if self.is_cancelled():
            return
        loop = asyncio.get_running_loop()
        fut = loop.create_future()

        def wake() -> None:
            loop.call_soon_threadsafe(_resolve, fut)

        remove = self.add_callback(wake)
        try:
            await fut
        finally:
            remove()

    def __repr__(self) -> str:
        state = f"cancelled ({self._reason})" if self.is_cancelled() else "active"
        return f"<CancelToken {state}>"


def _resolve(fut: "asyncio.Future[None]") -> None:
    if not fut.done():
        fut.set_result(None)
