"""Event loop helpers for synchronous callers."""

import asyncio
import threading
from collections.abc import Coroutine
from typing import Any, TypeVar

T = TypeVar("T")

_local = threading.local()


def thread_loop() -> asyncio.AbstractEventLoop:
    """Return this thread's long-lived event loop, creating it on first use."""
    loop: asyncio.AbstractEventLoop | None = getattr(_local, "loop", None)
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        _local.loop = loop
    return loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine to completion from a Celery task or a sync route.

    Each thread keeps one loop across calls so provider clients bound to it
    stay usable between renders.

    Raises:
        RuntimeError: Called from inside a running event loop.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return thread_loop().run_until_complete(coro)
    coro.close()
    raise RuntimeError("run_async() cannot be called from a running event loop")
