"""
Pytest configuration and shared fixtures.
"""

import asyncio
import pytest
from typing import Any, Dict, List

from linkdevices.common.links import MemoryLinkStore


class RecordingStore(MemoryLinkStore):
    """Memory store that records every call and can be told to fail or stall."""

    def __init__(self, containers=(42,)):
        super().__init__(containers=containers)
        self.selects: List[int] = []
        self.inserts: List[tuple] = []
        self.select_error: Exception | None = None
        self.select_gate: asyncio.Event | None = None
        self.insert_error: Exception | None = None
        self.insert_gate: asyncio.Event | None = None
        self.duplicates: Dict[int, int] = {}

    async def select(self, link_id):
        self.selects.append(link_id)
        if self.select_gate is not None:
            await self.select_gate.wait()
        if self.select_error:
            raise self.select_error
        links = await super().select(link_id)
        return links * self.duplicates.get(link_id, 1)

    async def insert_device(self, container_link_id, info):
        self.inserts.append((container_link_id, info))
        if self.insert_gate is not None:
            await self.insert_gate.wait()
        if self.insert_error:
            raise self.insert_error
        return await super().insert_device(container_link_id, info)


class SetterSpy:
    def __init__(self):
        self.calls: List[Any] = []

    def __call__(self, link_id):
        self.calls.append(link_id)


@pytest.fixture
def store() -> RecordingStore:
    """Store with container 42 and nothing else."""
    return RecordingStore()


@pytest.fixture
def setter() -> SetterSpy:
    return SetterSpy()


@pytest.fixture
def loading_log() -> List[bool]:
    return []


@pytest.fixture
def telemetry() -> Dict[str, Any]:
    """Fixed device info so tests do not depend on the host."""
    return {"device_name": "station-test", "os_type": "linux", "os_version": "6.1"}
