"""
Clients for the remote link store.

A store answers two calls:
    await store.select(link_id)                       -> list of link dicts
    await store.insert_device(container_link_id, info) -> {"device_link": {...}}

``MemoryLinkStore`` keeps links in process, ``MqttLinkStore`` talks to the
linkcore service over request/response topics.
"""
import asyncio, json, logging, uuid
from typing import Any, Protocol
from .errors import LinkError, LookupFailure, RegistrationFailure
from .mqtt_helper import MqttClient

log = logging.getLogger(__name__)

CONTAINER = "Container"
DEVICE = "Device"
CONTAIN = "Contain"


class LinkStore(Protocol):
    async def select(self, link_id: int) -> list[dict]: ...
    async def insert_device(self, container_link_id: int, info: dict) -> dict: ...


class MemoryLinkStore:
    def __init__(self, containers=()):
        self.links: dict[int, dict] = {}
        self._next_id = 1
        for cid in containers:
            self.links[int(cid)] = {"id": int(cid), "type": CONTAINER, "from_id": None, "to_id": None, "value": None}
            self._next_id = max(self._next_id, int(cid) + 1)

    def add(self, type_: str, value: Any = None, from_id: int | None = None, to_id: int | None = None) -> dict:
        link = {"id": self._next_id, "type": type_, "from_id": from_id, "to_id": to_id, "value": value}
        self.links[link["id"]] = link; self._next_id += 1
        return link

    def devices_in(self, container_link_id: int) -> list[dict]:
        return [self.links[l["to_id"]] for l in self.links.values()
                if l["type"] == CONTAIN and l["from_id"] == container_link_id]

    async def select(self, link_id: int) -> list[dict]:
        link = self.links.get(link_id)
        return [dict(link)] if link else []

    async def insert_device(self, container_link_id: int, info: dict) -> dict:
        container = self.links.get(container_link_id)
        if not container or container["type"] != CONTAINER:
            raise RegistrationFailure(f"container link {container_link_id} not found")
        device = self.add(DEVICE, info)
        self.add(CONTAIN, None, container_link_id, device["id"])
        return {"device_link": dict(device)}


class MqttLinkStore:
    """
    Request/response over MQTT. Each request carries a fresh ``req_id``; the
    core answers on ``<ns>/dev/<client_id>/res`` and the reply resolves the
    matching future on the event loop.
    """

    def __init__(self, mq: MqttClient, loop: asyncio.AbstractEventLoop, timeout: float = 5.0):
        self.mq = mq
        self.loop = loop
        self.timeout = timeout
        self._pending: dict[str, asyncio.Future] = {}
        mq.handlers(on_connect=self._on_connect, on_message=self._on_message)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        log.info("[links] connected rc=%s, listening on %s", reason_code, self.mq.response_topic())
        client.subscribe(self.mq.response_topic(), qos=1)

    def _on_message(self, client, userdata, msg):
        # paho network thread
        try:
            payload = json.loads(msg.payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            log.warning("[links] dropping unparseable reply on %s", msg.topic); return
        if not isinstance(payload, dict) or "req_id" not in payload:
            log.warning("[links] dropping reply without req_id on %s", msg.topic); return
        self.loop.call_soon_threadsafe(self._resolve, payload["req_id"], payload)

    def _resolve(self, req_id: str, payload: dict):
        fut = self._pending.get(req_id)
        if fut is None or fut.done():
            log.debug("[links] late or unknown reply %s", req_id); return
        fut.set_result(payload)

    async def _request(self, op: str, body: dict) -> dict:
        req_id = f"{self.mq.client_id}-{uuid.uuid4().hex}"
        fut = self.loop.create_future()
        self._pending[req_id] = fut
        try:
            self.mq.publish_json(self.mq.request_topic(op), {"req_id": req_id, "client_id": self.mq.client_id, **body})
            reply = await asyncio.wait_for(fut, self.timeout)
        finally:
            self._pending.pop(req_id, None)
        if reply.get("status") != "ok":
            raise LinkError(f"{op} rejected: {reply.get('error', reply.get('status'))}")
        return reply

    async def select(self, link_id: int) -> list[dict]:
        try:
            reply = await self._request("select", {"link_id": link_id})
        except asyncio.TimeoutError as e:
            raise LookupFailure(f"select {link_id} timed out after {self.timeout}s") from e
        except LinkError as e:
            raise LookupFailure(str(e)) from e
        links = reply.get("links")
        if not isinstance(links, list):
            raise LookupFailure(f"select {link_id} returned malformed reply: {reply!r}")
        return links

    async def insert_device(self, container_link_id: int, info: dict) -> dict:
        try:
            reply = await self._request("insert_device", {"container_link_id": container_link_id, "info": info})
        except asyncio.TimeoutError as e:
            raise RegistrationFailure(f"insert_device timed out after {self.timeout}s") from e
        except LinkError as e:
            raise RegistrationFailure(str(e)) from e
        return {"device_link": reply.get("device_link")}


async def insert_device(store: LinkStore, container_link_id: int, info: dict) -> dict:
    """Create a Device link contained by ``container_link_id`` and return it as ``{"device_link": {...}}``."""
    try:
        result = await store.insert_device(container_link_id, info)
    except RegistrationFailure:
        raise
    except Exception as e:
        raise RegistrationFailure(f"insert_device under {container_link_id} failed: {e}") from e
    link = (result or {}).get("device_link") or {}
    if link.get("id") is None:
        raise RegistrationFailure(f"store returned no device link id: {result!r}")
    return result
