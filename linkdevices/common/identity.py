"""
Make sure the device link this agent holds exists in the link store.

On every change of ``device_link_id`` a pass runs: look the link up, and if it
is missing register a new Device link under the container and hand the new id
to the caller's setter. The setter changing the id starts another pass, which
is expected to confirm without writing anything.
"""
import asyncio, inspect, logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from .errors import LookupFailure, TelemetryFailure
from .links import LinkStore, insert_device
from .telemetry import collect_device_info
from .watch import Effect, PassToken, Watched

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolutionOutcome:
    device_link_id: Optional[int]
    link: Optional[dict] = None

    @property
    def confirmed(self) -> bool:
        return self.link is not None


async def resolve_device_link(store: LinkStore, device_link_id: Optional[int]) -> ResolutionOutcome:
    if device_link_id is None:
        return ResolutionOutcome(None)
    try:
        links = await store.select(device_link_id)
    except LookupFailure:
        raise
    except Exception as e:
        raise LookupFailure(f"select {device_link_id} failed: {e}") from e
    if not links:
        return ResolutionOutcome(device_link_id)
    if len(links) > 1:
        log.warning("[identity] %d links matched id %s, using the first", len(links), device_link_id)
    return ResolutionOutcome(device_link_id, links[0])


class DeviceLinkReconciler:
    """
    Reconciliation unit for one device.

    Inputs arrive through ``update(device_link_id)`` or a bound ``Watched``;
    the only output is ``is_loading`` (also pushed to ``on_loading_change``)
    plus whatever the setter does with a newly registered id.

    Args:
        store: link store with ``select`` / ``insert_device``
        container_link_id: parent link new devices are contained by
        set_device_link_id: called with the id of a newly registered device
        collect_info: telemetry collaborator, sync or async
        insert: registration collaborator ``(store, container_link_id, info)``
        on_loading_change: called with the new value whenever ``is_loading`` flips
    """

    def __init__(
        self,
        store: LinkStore,
        container_link_id: int,
        set_device_link_id: Callable[[Optional[int]], Any],
        collect_info: Callable[[], Any] = collect_device_info,
        insert: Callable[[LinkStore, int, dict], Awaitable[dict]] = insert_device,
        on_loading_change: Optional[Callable[[bool], Any]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.store = store
        self.container_link_id = int(container_link_id)
        self.set_device_link_id = set_device_link_id
        self.collect_info = collect_info
        self.insert = insert
        self.on_loading_change = on_loading_change
        self._effect = Effect(self.reconcile, loop=loop)
        self._registering = 0
        self._confirmed: tuple[int, dict] | None = None
        self._failed: tuple[int, BaseException] | None = None
        self._waiters: list[asyncio.Future] = []

    @property
    def is_loading(self) -> bool:
        return self._registering > 0

    @property
    def generation(self) -> int:
        return self._effect.generation

    @property
    def device_link(self) -> Optional[dict]:
        """Link confirmed by the current pass, if it has confirmed yet."""
        if self._confirmed and self._confirmed[0] == self._effect.generation:
            return self._confirmed[1]
        return None

    def update(self, device_link_id: Optional[int]) -> Optional[asyncio.Task]:
        return self._effect.trigger(device_link_id)

    def bind(self, watched: Watched) -> Optional[asyncio.Task]:
        return self._effect.bind(watched)

    async def wait_confirmed(self) -> dict:
        link = self.device_link
        if link is not None:
            return link
        if self._failed and self._failed[0] == self._effect.generation:
            raise self._failed[1]
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            return await fut
        finally:
            if fut in self._waiters: self._waiters.remove(fut)

    async def close(self) -> None:
        await self._effect.close()
        for fut in self._waiters:
            if not fut.done(): fut.cancel()
        self._waiters.clear()

    async def reconcile(self, device_link_id: Optional[int], token: PassToken) -> ResolutionOutcome:
        try:
            outcome = await resolve_device_link(self.store, device_link_id)
            if outcome.confirmed:
                if not token.stale:
                    log.debug("[identity] device link %s confirmed", device_link_id)
                    self._confirm(token, outcome.link)
            elif token.stale:
                log.debug("[identity] pass %d superseded before registering", token.generation)
            else:
                log.info("[identity] device link %s not found, registering under %s", device_link_id, self.container_link_id)
                await self._register(token)
            return outcome
        except Exception as e:
            if not token.stale: self._fail(token, e)
            raise

    async def _register(self, token: PassToken) -> Optional[dict]:
        self._set_registering(1)
        try:
            info = await self._collect()
            result = await self.insert(self.store, self.container_link_id, info)
            link = result["device_link"]
            if token.stale:
                log.warning("[identity] pass %d superseded, discarding new device link %s", token.generation, link["id"])
                return None
            log.info("[identity] registered device link %s", link["id"])
            self.set_device_link_id(link["id"])
            # setter did not start a new pass (unbound host, or the id did not change)
            if not token.stale: self._confirm(token, link)
            return link
        finally:
            self._set_registering(-1)

    async def _collect(self) -> dict:
        try:
            info = self.collect_info()
            if inspect.isawaitable(info): info = await info
        except TelemetryFailure:
            raise
        except Exception as e:
            raise TelemetryFailure(f"device info collection failed: {e}") from e
        return info

    def _set_registering(self, delta: int):
        was = self.is_loading
        self._registering += delta
        if self.is_loading == was or not self.on_loading_change:
            return
        try:
            self.on_loading_change(self.is_loading)
        except Exception:
            # must not mask the exception of the pass that is unwinding
            log.exception("[identity] on_loading_change(%s) failed", self.is_loading)

    def _confirm(self, token: PassToken, link: dict):
        self._confirmed = (token.generation, link)
        for fut in self._waiters:
            if not fut.done(): fut.set_result(link)

    def _fail(self, token: PassToken, exc: BaseException):
        self._failed = (token.generation, exc)
        for fut in self._waiters:
            if not fut.done(): fut.set_exception(exc)
