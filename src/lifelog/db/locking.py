"""Readers/writer lock guarding the store."""

from __future__ import annotations

import threading


class ReadWriteLock:
    """Many concurrent readers or a single writer.

    Writers waiting for the lock block new readers, so a steady stream of
    reads cannot starve ingestion. Not reentrant; the Store handles nesting.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self, timeout: float | None = None) -> bool:
        """Acquire shared access. Returns False on timeout."""
        with self._cond:
            ok = self._cond.wait_for(
                lambda: not self._writer and self._writers_waiting == 0,
                timeout,
            )
            if not ok:
                return False
            self._readers += 1
            return True

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self, timeout: float | None = None) -> bool:
        """Acquire exclusive access. Returns False on timeout."""
        with self._cond:
            self._writers_waiting += 1
            try:
                ok = self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0,
                    timeout,
                )
            finally:
                self._writers_waiting -= 1
            if not ok:
                # Readers held back by this writer may go ahead now.
                self._cond.notify_all()
                return False
            self._writer = True
            return True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def write_locked(self) -> bool:
        return self._writer
