"""
Execution Serializer — at most one run per procedure id at any instant.

Each id gets its own threading.Lock, so acquisition is atomic on the event
loop and release is safe from the worker thread that ran the procedure.
Callers waiting for a busy id (queue policy) wait on the event loop, never
in a pool thread: release wakes them with call_soon_threadsafe. Callers pair
every successful acquire with a release in a finally block.
"""

from __future__ import annotations

import asyncio
import logging
import threading

log = logging.getLogger(__name__)


class ExecutionSerializer:
    """Per-procedure busy flags."""

    def __init__(self):
        self._guard = threading.Lock()
        self._slots: dict[str, threading.Lock] = {}
        # id → (loop, event) of coroutines waiting in wait_acquire
        self._waiters: dict[str, list[tuple[asyncio.AbstractEventLoop, asyncio.Event]]] = {}

    def _slot(self, identifier: str) -> threading.Lock:
        with self._guard:
            slot = self._slots.get(identifier)
            if slot is None:
                slot = self._slots[identifier] = threading.Lock()
            return slot

    def try_acquire(self, identifier: str) -> bool:
        """Mark the procedure busy. False if a run is already in progress."""
        granted = self._slot(identifier).acquire(blocking=False)
        if not granted:
            log.info("Procedure %s is busy", identifier)
        return granted

    async def wait_acquire(self, identifier: str, timeout: float) -> bool:
        """Wait up to timeout seconds for the procedure to become free.

        Suspends only the calling task. Returns False if the procedure is
        still busy when the time is up; a cancelled waiter holds nothing.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(timeout, 0)
        slot = self._slot(identifier)
        while True:
            released = asyncio.Event()
            waiter = (loop, released)
            with self._guard:
                self._waiters.setdefault(identifier, []).append(waiter)
            try:
                # Registered before trying, so a release in between still wakes us
                if slot.acquire(blocking=False):
                    return True
                remaining = deadline - loop.time()
                if remaining <= 0:
                    log.info("Gave up waiting %.1fs for procedure %s", timeout, identifier)
                    return False
                try:
                    await asyncio.wait_for(released.wait(), remaining)
                except asyncio.TimeoutError:
                    pass
            finally:
                self._forget(identifier, waiter)

    def release(self, identifier: str) -> None:
        slot = self._slot(identifier)
        if not slot.locked():
            raise RuntimeError(f"release of procedure {identifier!r} that is not busy")
        slot.release()
        with self._guard:
            waiters = list(self._waiters.get(identifier, ()))
        for loop, released in waiters:
            loop.call_soon_threadsafe(released.set)

    def _forget(self, identifier: str, waiter: tuple) -> None:
        with self._guard:
            waiters = self._waiters.get(identifier, [])
            if waiter in waiters:
                waiters.remove(waiter)
            if not waiters:
                self._waiters.pop(identifier, None)

    def is_busy(self, identifier: str) -> bool:
        with self._guard:
            slot = self._slots.get(identifier)
        return slot is not None and slot.locked()

    def waiting(self, identifier: str) -> int:
        """Number of callers queued for the procedure."""
        with self._guard:
            return len(self._waiters.get(identifier, ()))

    def busy(self) -> list[str]:
        """Ids with a run currently in progress."""
        with self._guard:
            return sorted(i for i, slot in self._slots.items() if slot.locked())
