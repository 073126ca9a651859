from __future__ import annotations

import os
import threading
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from typing import Protocol

import structlog

from phone_assets.domain.errors import ConflictError
from phone_assets.infra.redis_state import get_redis

LOCK_BACKEND = os.getenv("LOCK_BACKEND", "memory")
LOCK_TIMEOUT_SECONDS = float(os.getenv("LOCK_TIMEOUT_SECONDS", "5"))
LOCK_KEY_PREFIX = "phone-assets:lock:"

logger = structlog.get_logger(__name__)


def phone_key(phone_number: str) -> str:
    return f"phone:{phone_number}"


def task_key(task_id: str) -> str:
    return f"task:{task_id}"


def task_item_key(item_id: str) -> str:
    return f"task-item:{item_id}"


class KeyLocker(Protocol):
    def hold(self, key: str, timeout: float) -> Iterator[None]: ...


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class MemoryKeyLocker:
    """Per-key mutexes for a single process; entries are dropped once unused."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    @contextmanager
    def hold(self, key: str, timeout: float) -> Iterator[None]:
        with self._guard:
            entry = self._entries.setdefault(key, _Entry())
            entry.users += 1
        acquired = entry.lock.acquire(timeout=timeout)
        try:
            if not acquired:
                raise ConflictError(f"resource busy: {key}")
            yield
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    self._entries.pop(key, None)

    def active_keys(self) -> set[str]:
        with self._guard:
            return set(self._entries)


class RedisKeyLocker:
    @contextmanager
    def hold(self, key: str, timeout: float) -> Iterator[None]:
        lock = get_redis().lock(
            f"{LOCK_KEY_PREFIX}{key}",
            timeout=max(timeout * 2, 1.0),
            blocking_timeout=timeout,
        )
        if not lock.acquire():
            raise ConflictError(f"resource busy: {key}")
        try:
            yield
        finally:
            lock.release()


def _build_locker() -> KeyLocker:
    if LOCK_BACKEND == "redis":
        return RedisKeyLocker()
    return MemoryKeyLocker()


locker: KeyLocker = _build_locker()


@contextmanager
def hold_keys(*keys: str, timeout: float | None = None) -> Iterator[None]:
    """Hold every key for the duration of the block, acquired in sorted order."""
    wait = LOCK_TIMEOUT_SECONDS if timeout is None else timeout
    with ExitStack() as stack:
        for key in sorted(set(keys)):
            try:
                stack.enter_context(locker.hold(key, wait))
            except ConflictError:
                logger.warning("lock.timeout", key=key, timeout=wait)
                raise
        yield
