# Overview: Lock ordering, row locking and bounded retry for mutating core operations.

"""
Concurrency model

- One writer per aggregate: mutations of an order hold ("order", id); stock
  mutations hold ("product", id). add_item holds both.
- Global lock order: every product key (ascending id) before any order key.
  LockRegistry sorts the keys it is asked for and refuses nested
  acquisitions that would break the order, whatever the call path.
- Lock waits are bounded (LOCK_TIMEOUT_SECONDS). A timeout, a database lock
  error or an optimistic version conflict rolls the unit back and retries it
  up to RETRY_ATTEMPTS times; after that ConcurrentModification surfaces.
- The stock counter itself is guarded by a conditional UPDATE, so separate
  processes that do not share this registry still cannot oversell.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrentModification, NotFound
from .storage import StorageHandle

T = TypeVar("T")

PRODUCT = "product"
ORDER = "order"
_RANK = {PRODUCT: 0, ORDER: 1}


class LockConflict(Exception):
    """Internal: the unit of work must be rolled back and retried."""


class LockTimeout(LockConflict):
    """Internal: a keyed lock was not acquired within the bounded wait."""


class LockOrderError(RuntimeError):
    """A nested acquisition would violate the global lock order."""


def _identifier(kind: str, value) -> int:
    # Ids are integers; digit strings from a boundary layer are accepted
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise NotFound(
        f"{kind.capitalize()} {value!r} not found",
        details={f"{kind}_id": value},
    )


def product_key(product_id: int) -> tuple[str, int]:
    return (PRODUCT, _identifier(PRODUCT, product_id))


def order_key(order_id: int) -> tuple[str, int]:
    return (ORDER, _identifier(ORDER, order_id))


def _sort_key(key: tuple[str, int]) -> tuple[int, int]:
    return (_RANK[key[0]], key[1])


def lock_for_update(query):
    """
    Apply row-level locking for critical reads.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


class LockRegistry:
    """
    In-process keyed locks.

    Locks are re-entrant so a thread already holding a key may ask for it
    again. Each entry counts the threads holding or waiting for it and is
    dropped when the last one leaves, so the registry only ever contains
    keys that are in use.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        # key -> [lock, number of threads holding or waiting]
        self._locks: dict[tuple[str, int], list] = {}
        self._guard = threading.Lock()
        self._local = threading.local()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: tuple[str, int]) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: tuple[str, int]) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    def _held(self) -> list[tuple[str, int]]:
        held = getattr(self._local, "held", None)
        if held is None:
            held = []
            self._local.held = held
        return held

    @contextmanager
    def hold(self, *keys: tuple[str, int]):
        held = self._held()
        wanted = sorted({k for k in keys if k not in held}, key=_sort_key)
        if wanted and held:
            highest = max(held, key=_sort_key)
            if _sort_key(wanted[0]) < _sort_key(highest):
                raise LockOrderError(
                    f"cannot acquire {wanted[0]} while holding {highest}"
                )

        acquired: list[tuple[tuple[str, int], threading.RLock]] = []
        try:
            for key in wanted:
                lock = self._checkout(key)
                if not lock.acquire(timeout=self.timeout):
                    self._checkin(key)
                    raise LockTimeout(f"timed out waiting for {key[0]} {key[1]}")
                acquired.append((key, lock))
                held.append(key)
            yield
        finally:
            for key, lock in reversed(acquired):
                held.remove(key)
                lock.release()
                self._checkin(key)


class ConcurrencyControl:
    """Runs a unit of work under keyed locks with bounded retry."""

    def __init__(
        self,
        storage: StorageHandle,
        locks: LockRegistry,
        *,
        attempts: int = 3,
        backoff_base: float = 0.05,
    ):
        self.storage = storage
        self.locks = locks
        self.attempts = max(1, attempts)
        self.backoff_base = backoff_base

    def run(self, func: Callable[[], T], *, label: str) -> T:
        """
        Execute func with retry on concurrency-related failures.

        Retries on LockConflict (keyed lock timeouts, changed aggregates),
        OperationalError (database locks, deadlocks) and StaleDataError
        (optimistic version conflicts). Domain errors propagate unchanged.
        """
        for attempt in range(self.attempts):
            try:
                return func()
            except (LockConflict, OperationalError, StaleDataError) as exc:
                self.storage.reset()
                if attempt >= self.attempts - 1:
                    current_app.logger.warning(
                        "%s gave up after %d attempts: %s", label, self.attempts, exc
                    )
                    raise ConcurrentModification(
                        f"{label} conflicted with a concurrent update",
                        details={"attempts": self.attempts, "cause": str(exc)},
                    ) from exc
                current_app.logger.info("%s conflicted (attempt %d), retrying", label, attempt + 1)
                time.sleep(self.backoff_base * (2 ** attempt))
        raise AssertionError("unreachable")  # pragma: no cover
