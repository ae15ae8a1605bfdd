"""Cancellation token shared between a caller and in-flight dispatches.

``AgentDispatcher.execute`` races the agent against ``token.wait()``;
whichever finishes first decides the outcome.  A token cancelled before
dispatch means the agent is never called, but the record is still
created and closed as FAILED.

Example::

    token = CancellationToken()
    task = asyncio.create_task(dispatcher.execute_many(requests, cancel=token))
    token.request_cancel("operator abort")
    outcomes = await task
"""

from __future__ import annotations

import asyncio


class CancellationToken:
    """Caller-side cancel signal for in-flight dispatches.

    One token may be shared by every member of an ``execute_many`` batch;
    cancelling it stops all members that have not finished yet.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def request_cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
