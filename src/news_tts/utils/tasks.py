"""
All-or-Nothing Task Joins.

``gather_or_cancel`` runs awaitables concurrently and returns their results
in argument order. The first failure cancels every sibling still running,
waits for them to unwind, then re-raises that failure. Cancelling the
caller cancels all children the same way. Nothing is left running in the
background either way.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, List


async def gather_or_cancel(*aws: Awaitable[Any]) -> List[Any]:
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return []
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        await cancel_and_wait(tasks)
        raise

    if pending:
        await cancel_and_wait(pending)

    # Re-raise the earliest-listed failure among completed tasks
    for task in tasks:
        if task in done and not task.cancelled() and task.exception() is not None:
            raise task.exception()  # type: ignore[misc]
    return [task.result() for task in tasks]


async def cancel_and_wait(tasks) -> None:
    """Cancel tasks and wait until each has finished, ignoring their outcomes."""
    tasks = list(tasks)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
