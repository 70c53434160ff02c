"""
Transport collaborator for the PMD core.

A transport exposes GATT write/read/subscribe primitives and delivers
notifications through two kinds of queues: one dedicated queue per
characteristic listed in ``dedicated`` (the PMD control point), and a
shared event queue for everything else (PMD data, heart rate, battery).
A ``None`` item on a queue means the transport closed.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from polar_pmd.protocol.constants import PMD_CONTROL_UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    characteristic: str
    data: bytes


class Transport:
    def __init__(self, dedicated: Iterable[str] = (PMD_CONTROL_UUID,)):
        self._dedicated: dict[str, asyncio.Queue] = {
            uuid.lower(): asyncio.Queue() for uuid in dedicated
        }
        self._events: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, characteristic: str, data: bytes, response: bool = True):
        raise NotImplementedError

    async def read(self, characteristic: str) -> bytes:
        raise NotImplementedError

    async def subscribe(self, characteristic: str):
        raise NotImplementedError

    async def unsubscribe(self, characteristic: str):
        raise NotImplementedError

    async def receive(self, characteristic: str) -> Optional[bytes]:
        """Next notification of a dedicated characteristic, None once closed."""
        queue = self._dedicated[characteristic.lower()]
        if self._closed and queue.empty():
            return None
        return await queue.get()

    async def next_event(self) -> Optional[Notification]:
        """Next notification of any other characteristic, None once closed."""
        if self._closed and self._events.empty():
            return None
        return await self._events.get()

    def drain(self, characteristic: str) -> int:
        """Discard notifications queued for a dedicated characteristic.

        The closed sentinel is kept so waiting consumers still see closure.
        """
        queue = self._dedicated[characteristic.lower()]
        dropped = 0
        while True:
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is None:
                queue.put_nowait(None)
                break
            dropped += 1
        return dropped

    def _route(self, characteristic: str, data: bytes):
        uuid = str(characteristic).lower()
        queue = self._dedicated.get(uuid)
        if queue is not None:
            queue.put_nowait(bytes(data))
        else:
            self._events.put_nowait(Notification(uuid, bytes(data)))

    def _reset(self):
        self._dedicated = {uuid: asyncio.Queue() for uuid in self._dedicated}
        self._events = asyncio.Queue()
        self._closed = False

    def _close(self):
        if self._closed:
            return
        self._closed = True
        for queue in self._dedicated.values():
            queue.put_nowait(None)
        self._events.put_nowait(None)
        logger.debug("Transport closed, notification queues released")
