"""Per-thread locks and fire-and-forget background tasks.

Requests hold a thread's lock for the whole resolve -> mutate -> diff
sequence; the expiry sweep holds it only while deleting an idle thread.
Background tasks (expiry sweeps) are tracked here so they are
not garbage-collected mid-flight and their failures get logged.
"""

import asyncio
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import logging

logger = logging.getLogger(__name__)


@dataclass
class ThreadLock:
    """A thread's lock plus the number of requests holding or awaiting it."""
    lock: asyncio.Lock
    users: int = 0


# Registry of locks keyed by thread_id, dropped when unused
_thread_locks: dict[str, ThreadLock] = {}

# Unawaited background tasks
_background_tasks: set[asyncio.Task] = set()


@asynccontextmanager
async def thread_lock(thread_id: str) -> AsyncIterator[None]:
    """Hold the lock for thread_id for the duration of the block.

    Released on every exit path, including exceptions and cancellation.
    """
    entry = _thread_locks.get(thread_id)
    if entry is None:
        entry = ThreadLock(lock=asyncio.Lock())
        _thread_locks[thread_id] = entry
    entry.users += 1
    try:
        if entry.lock.locked():
            logger.debug(f"Waiting for lock on thread {thread_id}")
        async with entry.lock:
            yield
    finally:
        entry.users -= 1
        if entry.users == 0 and _thread_locks.get(thread_id) is entry:
            del _thread_locks[thread_id]


@asynccontextmanager
async def idle_thread_lock(thread_id: str) -> AsyncIterator[bool]:
    """Take the lock for thread_id only if no request holds or awaits it.

    Yields False without locking when the thread is busy. Otherwise yields
    True with the lock held; requests arriving meanwhile wait for it.
    """
    if _thread_locks.get(thread_id) is not None:
        yield False
        return
    entry = ThreadLock(lock=asyncio.Lock(), users=1)
    _thread_locks[thread_id] = entry
    try:
        # Uncontended, so this acquires without suspending
        async with entry.lock:
            yield True
    finally:
        entry.users -= 1
        if entry.users == 0 and _thread_locks.get(thread_id) is entry:
            del _thread_locks[thread_id]


def busy_thread_ids() -> set[str]:
    """IDs of threads a request is currently working on or waiting for."""
    return {thread_id for thread_id, entry in _thread_locks.items() if entry.users > 0}


def _on_background_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc!r}")


def spawn_background(coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
    """Schedule coro without awaiting it.

    Exceptions are logged and never propagated to the spawner.
    """
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_background_done)
    return task


def background_task_count() -> int:
    return sum(1 for task in _background_tasks if not task.done())


async def clear_all_tasks() -> None:
    """Cancel background tasks and forget all locks (for hot reload/shutdown)."""
    tasks = [task for task in _background_tasks if not task.done()]
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    _background_tasks.clear()
    _thread_locks.clear()
    logger.info(f"Cleared all background tasks ({len(tasks)} cancelled)")
