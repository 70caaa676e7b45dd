"""In-flight transfer deduplication."""

import asyncio
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class Transfer:
    """One running operation, shared by everyone starting the same key."""

    key: str
    task: asyncio.Task


class TransferDeduplicator:
    """Registry of in-flight transfers keyed by remote key.

    ``start`` runs ``work`` only when no transfer for the key is running;
    otherwise the caller shares the running transfer's outcome, result or
    exception alike. Callers that give up (cancellation, timeouts) do not
    cancel the shared work.

    With ``keep_completed`` set, successful results are remembered and handed
    to later callers without running ``work`` again. At most ``max_completed``
    results are kept; the oldest is forgotten first, and a forgotten key simply
    runs its work again.
    """

    def __init__(self, name: str, keep_completed: bool = False, max_completed: int = 65536):
        self.name = name
        self.keep_completed = keep_completed
        self.max_completed = max_completed
        self._transfers: dict[str, Transfer] = {}
        self._completed: OrderedDict[str, Any] = OrderedDict()

    async def start(self, key: str, work: Callable[[], Awaitable[Any]]) -> Any:
        if key in self._completed:
            return self._completed[key]

        transfer = self._transfers.get(key)
        if transfer is None:
            task = asyncio.ensure_future(work())
            transfer = Transfer(key=key, task=task)
            self._transfers[key] = transfer
            task.add_done_callback(lambda t, key=key: self._finished(key, t))
        return await asyncio.shield(transfer.task)

    def in_flight(self) -> list[str]:
        return list(self._transfers)

    async def cancel_all(self) -> None:
        tasks = [transfer.task for transfer in self._transfers.values()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _finished(self, key: str, task: asyncio.Task) -> None:
        if self._transfers.get(key) is not None and self._transfers[key].task is task:
            del self._transfers[key]
        if task.cancelled():
            return
        # exception() also marks the error retrieved
        if task.exception() is None and self.keep_completed:
            self._completed[key] = task.result()
            while len(self._completed) > self.max_completed:
                self._completed.popitem(last=False)
