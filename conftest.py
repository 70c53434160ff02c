from __future__ import annotations

import pytest

from polar_pmd.acquisition.transport import Transport
from polar_pmd.protocol.constants import PMD_CONTROL_UUID
from polar_pmd.protocol.errors import NotConnected


def ok_response(opcode: int, measurement_type: int, parameters: bytes = b"", more: int = 0) -> bytes:
    return bytes([0xF0, opcode, measurement_type, 0x00, more]) + parameters


def error_response(opcode: int, measurement_type: int, status: int) -> bytes:
    return bytes([0xF0, opcode, measurement_type, status, 0x00])


class FakeTransport(Transport):
    """In-memory transport answering control point writes from a script.

    ``script`` maps a written payload to the list of indications the device
    sends back. Unscripted commands get a plain SUCCESS response.
    """

    def __init__(self, script: dict | None = None, auto_ok: bool = True):
        super().__init__()
        self.script = dict(script or {})
        self.auto_ok = auto_ok
        self.writes: list[tuple[str, bytes]] = []
        self.subscriptions: list[str] = []
        self.reads: dict[str, bytes] = {}

    async def write(self, characteristic: str, data: bytes, response: bool = True):
        if self.closed:
            raise NotConnected("Not connected to device")
        data = bytes(data)
        self.writes.append((characteristic, data))
        if characteristic != PMD_CONTROL_UUID:
            return
        if data in self.script:
            for packet in self.script[data]:
                self._route(characteristic, packet)
        elif self.auto_ok:
            self._route(characteristic, ok_response(data[0], data[1]))

    async def read(self, characteristic: str) -> bytes:
        return self.reads[characteristic]

    async def subscribe(self, characteristic: str):
        self.subscriptions.append(characteristic)

    async def unsubscribe(self, characteristic: str):
        self.subscriptions.remove(characteristic)

    def push(self, characteristic: str, data: bytes):
        self._route(characteristic, data)

    def close(self):
        self._close()

    def control_writes(self) -> list[bytes]:
        return [data for characteristic, data in self.writes if characteristic == PMD_CONTROL_UUID]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
