"""Timeout and cancellation for external calls.

Submission and status polling are the only suspension points of the
dispatch engine. Each goes through await_cancellable, which bounds the
call by a timeout and aborts it as soon as the caller's cancel event is
set.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


class DispatchCancelled(asyncio.CancelledError):
    """The caller cancelled the run.

    Subclasses CancelledError so ``except Exception`` item handlers never
    record it as a dispatch outcome.
    """


def raise_if_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise DispatchCancelled("Dispatch run cancelled")


async def await_cancellable(
    awaitable: Awaitable[T],
    cancel_event: asyncio.Event | None,
    timeout: float | None,
) -> T:
    """Await ``awaitable`` bounded by ``timeout`` and ``cancel_event``.

    A coroutine passed in after the event is already set is closed
    without being started.

    Raises:
        DispatchCancelled: The cancel event was set before or during the call.
        TimeoutError: The call did not finish within ``timeout`` seconds.
    """
    if cancel_event is not None and cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise DispatchCancelled("Dispatch run cancelled")
    call = asyncio.ensure_future(awaitable)
    if cancel_event is None:
        return await asyncio.wait_for(call, timeout)

    watcher = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait(
            {call, watcher}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except BaseException:
        call.cancel()
        raise
    finally:
        watcher.cancel()

    if call in done:
        return call.result()

    call.cancel()
    await asyncio.wait({call})
    if watcher in done:
        raise DispatchCancelled("Dispatch run cancelled during external call")
    raise TimeoutError(f"External call exceeded {timeout}s timeout")
