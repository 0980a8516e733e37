"""
Watch a value and re-run an async workflow whenever it changes.

``Watched`` is the observable, ``Effect`` schedules one asyncio task per
change and hands each run a ``PassToken`` so a run can tell whether a newer
one has superseded it.
"""
import asyncio, logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

log = logging.getLogger(__name__)

_UNSET = object()


class Watched:
    def __init__(self, value: Any = None):
        self._value = value
        self._subscribers: list[Callable[[Any], Any]] = []

    @property
    def value(self) -> Any:
        return self._value

    def set(self, value: Any) -> None:
        if value == self._value:
            return
        self._value = value
        for fn in list(self._subscribers):
            fn(value)

    def subscribe(self, fn: Callable[[Any], Any]) -> Callable[[], None]:
        self._subscribers.append(fn)
        def unsubscribe():
            if fn in self._subscribers: self._subscribers.remove(fn)
        return unsubscribe


@dataclass(frozen=True)
class PassToken:
    effect: "Effect"
    generation: int

    @property
    def stale(self) -> bool:
        return self.effect.closed or self.effect.generation != self.generation


class Effect:
    """
    Runs ``run(value, token)`` as a task each time ``trigger`` sees a new value.

    Superseded runs are not cancelled, they are expected to check
    ``token.stale`` before publishing anything. ``close`` cancels whatever is
    still in flight.
    """

    def __init__(
        self,
        run: Callable[[Any, PassToken], Awaitable[Any]],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._run = run
        self._loop = loop
        self._last = _UNSET
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.generation = 0
        self.closed = False

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def trigger(self, value: Any) -> Optional[asyncio.Task]:
        if self.closed:
            raise RuntimeError("effect is closed")
        if self._last is not _UNSET and value == self._last:
            return None
        loop = self._loop or asyncio.get_running_loop()
        self._last = value
        self.generation += 1
        task = loop.create_task(self._run(value, PassToken(self, self.generation)),
                                name=f"watch-run-{self.generation}")
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("[watch] %s failed: %r", task.get_name(), exc, exc_info=exc)

    def bind(self, watched: Watched) -> Optional[asyncio.Task]:
        if self._unsubscribe: self._unsubscribe()
        self._unsubscribe = watched.subscribe(self.trigger)
        return self.trigger(watched.value)

    async def close(self) -> None:
        self.closed = True
        if self._unsubscribe:
            self._unsubscribe(); self._unsubscribe = None
        tasks = list(self._tasks)
        for t in tasks: t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
