import asyncio
from typing import Any, NamedTuple

LOADING, DEVICE_LINK, CONFIRMED, FAILED = "loading", "device_link", "confirmed", "failed"

class Event(NamedTuple):
    type: str
    data: dict

class EventBus:
    """Progress of one station's reconciliation, drained by the agent loop."""
    def __init__(self):
        self.queue: asyncio.Queue[Event] = asyncio.Queue()
    def emit(self, type: str, **data: Any):
        self.queue.put_nowait(Event(type, data))
    def loading(self, is_loading: bool): self.emit(LOADING, is_loading=is_loading)
    def device_link(self, link_id): self.emit(DEVICE_LINK, id=link_id)
    def settled(self, waiter: asyncio.Task):
        """Done-callback for a ``wait_confirmed()`` task."""
        if waiter.cancelled(): return
        exc = waiter.exception()
        if exc is not None: self.emit(FAILED, error=repr(exc))
        else: self.emit(CONFIRMED, link=waiter.result())
    async def next(self) -> Event:
        return await self.queue.get()
