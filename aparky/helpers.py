import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Set

logger = logging.getLogger(__name__)

# Strong references to fire-and-forget tasks until they finish
_background_tasks: Set[asyncio.Task] = set()


def now_ms() -> int:
    """Current wall clock as epoch milliseconds (the engine's time unit)."""
    return int(time.time() * 1000)


def _on_task_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc!r}")


def run_async(coro_fn: Callable[..., Awaitable[Any]], *args: Any) -> asyncio.Task:
    """Headless stand-in for page.run_task: schedule coro_fn(*args) on the running loop.

    Takes the coroutine function, not a coroutine object, so both schedulers
    are interchangeable. The task is kept alive until done and its failure is
    logged.
    """
    task = asyncio.get_running_loop().create_task(coro_fn(*args))
    _background_tasks.add(task)
    task.add_done_callback(_on_task_done)
    return task
