"""
StockLockManager -- in-process exclusive locks keyed by stock key.

Responsibility:
    Serializes FIFO selection through commit for movements that touch the
    same stock key, so two Issues can never both read the same layers as
    available.  Movements on different keys never contend.

Architecture position:
    Kernel > Services -- concurrency infrastructure.  Used by the
    Transaction Processor around the whole unit of work.  Database row locks
    on balance rows (``SELECT ... FOR UPDATE``) back this up across
    processes on PostgreSQL.

Invariants enforced:
    - Keys are acquired in canonical order, so multi-key movements
      (Transfers) cannot deadlock each other.
    - Lock entries are reference-counted and dropped when unused, so the
      map does not grow with the number of stock keys ever seen.

Failure modes:
    - StockLockTimeoutError (retryable) when a key is not acquired within
      the timeout.  Keys already taken by the same call are released first.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Iterable, Iterator

from coldstore_kernel.domain.stock_key import StockKey
from coldstore_kernel.exceptions import StockLockTimeoutError
from coldstore_kernel.logging_config import get_logger

logger = get_logger("services.stock_lock")


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.refs = 0


class StockLockManager:
    """
    Keyed lock map.

    Contract:
        ``hold(keys)`` is a context manager that holds every key for the
        duration of the block.  Re-entrant per thread.
    """

    def __init__(self, timeout_seconds: float = 10.0):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._timeout = timeout_seconds
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def _checkout(self, name: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(name)
            if entry is None:
                entry = self._entries[name] = _Entry()
            entry.refs += 1
            return entry

    def _checkin(self, name: str) -> None:
        with self._guard:
            entry = self._entries[name]
            entry.refs -= 1
            if entry.refs == 0:
                del self._entries[name]

    def active_keys(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(
        self,
        keys: Iterable[StockKey],
        timeout_seconds: float | None = None,
    ) -> Iterator[None]:
        """Acquire every key in canonical order; release all on exit."""
        timeout = self._timeout if timeout_seconds is None else timeout_seconds
        names = sorted({k.canonical for k in keys})
        acquired: list[tuple[str, _Entry]] = []
        deadline = time.monotonic() + timeout
        try:
            for name in names:
                entry = self._checkout(name)
                remaining = max(deadline - time.monotonic(), 0.0)
                t0 = time.monotonic()
                if not entry.lock.acquire(timeout=remaining):
                    self._checkin(name)
                    logger.warning(
                        "stock_lock_timeout",
                        extra={"stock_key": name, "timeout_seconds": timeout},
                    )
                    raise StockLockTimeoutError(name, timeout)
                acquired.append((name, entry))
                logger.debug(
                    "stock_lock_acquired",
                    extra={
                        "stock_key": name,
                        "wait_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
            yield
        finally:
            for name, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(name)
                logger.debug("stock_lock_released", extra={"stock_key": name})
