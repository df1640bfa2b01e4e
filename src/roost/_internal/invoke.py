"""Calling user code that may be ``def`` or ``async def``.

Fetchers, mutation operations and rule predicates come in both flavours.
Async callers go through ``invoke()``; the synchronous validator uses
``needs_loop()`` to notice an awaitable it cannot drive.
"""

import inspect
from typing import Any


async def invoke(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Call *func*, awaiting the result when it is awaitable."""
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result


def needs_loop(result: Any) -> bool:
    """True if *result* is awaitable, i.e. the call cannot finish synchronously.

    An unawaited coroutine is closed first so it does not warn when
    garbage-collected.
    """
    if not inspect.isawaitable(result):
        return False
    if inspect.iscoroutine(result):
        result.close()
    return True
