"""
Polar sensor BLE client.

Handles the connection to one Polar device (H10, OH1, Verity Sense) via
bleak and acts as the Transport for the PMD core: GATT writes, reads and
notification subscriptions, with incoming notifications routed to the
control point queue or the shared event queue.

The device is addressed directly (MAC address, or UUID on macOS); scanning
for it is the caller's business. connect() makes a single attempt.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from bleak import BleakClient
from bleak.exc import BleakDeviceNotFoundError, BleakError

from polar_pmd.acquisition.transport import Transport
from polar_pmd.config.settings import BLEConfig
from polar_pmd.protocol.constants import BATTERY_LEVEL_UUID
from polar_pmd.protocol.errors import (
    BleError,
    CharacteristicNotFound,
    InvalidData,
    NoDevice,
    NotConnected,
)

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class DeviceInfo:
    address: str = ""
    battery_level: int = -1
    connection_state: ConnectionState = ConnectionState.DISCONNECTED


class PolarClient(Transport):
    def __init__(self, config: BLEConfig):
        super().__init__()
        self._config = config
        self._client: Optional[BleakClient] = None
        self._info = DeviceInfo(address=config.address)
        self._on_state_change: Optional[Callable[[DeviceInfo], None]] = None
        self._on_unexpected_disconnect: Optional[Callable[[], None]] = None
        self._subscriptions: set[str] = set()
        self._closing = False

    @property
    def info(self) -> DeviceInfo:
        return self._info

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    def on_state_change(self, callback: Callable[[DeviceInfo], None]):
        self._on_state_change = callback

    def on_unexpected_disconnect(self, callback: Callable[[], None]):
        self._on_unexpected_disconnect = callback

    def _set_state(self, state: ConnectionState):
        self._info.connection_state = state
        if self._on_state_change:
            self._on_state_change(self._info)

    async def connect(self):
        if not self._config.address:
            raise NoDevice("No device address configured")

        self._closing = False
        if self.closed:
            self._reset()
        self._set_state(ConnectionState.CONNECTING)
        self._client = BleakClient(
            self._config.address,
            disconnected_callback=self._on_disconnect,
            timeout=self._config.connect_timeout,
        )
        try:
            await self._client.connect()
        except BleakDeviceNotFoundError as e:
            self._set_state(ConnectionState.ERROR)
            raise NoDevice("Device %s not found" % self._config.address) from e
        except BleakError as e:
            self._set_state(ConnectionState.ERROR)
            raise BleError(str(e)) from e
        except asyncio.TimeoutError as e:
            self._set_state(ConnectionState.ERROR)
            raise NotConnected("Timed out connecting to %s" % self._config.address) from e

        logger.info("Connected to %s", self._config.address)
        self._set_state(ConnectionState.CONNECTED)

    async def disconnect(self):
        self._closing = True
        if self._client and self._client.is_connected:
            try:
                await self._client.disconnect()
            except BleakError as e:
                logger.warning("Disconnect error: %s", e)
        self._client = None
        self._subscriptions.clear()
        self._close()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Disconnected")

    def _require_client(self) -> BleakClient:
        if not self.is_connected:
            raise NotConnected("Not connected to device")
        return self._client

    def _require_characteristic(self, client: BleakClient, characteristic: str):
        if client.services.get_characteristic(characteristic) is None:
            raise CharacteristicNotFound(
                "Device has no characteristic %s" % characteristic
            )

    async def write(self, characteristic: str, data: bytes, response: bool = True):
        client = self._require_client()
        self._require_characteristic(client, characteristic)
        try:
            await client.write_gatt_char(characteristic, bytearray(data), response=response)
        except BleakError as e:
            raise BleError(str(e)) from e

    async def read(self, characteristic: str) -> bytes:
        client = self._require_client()
        self._require_characteristic(client, characteristic)
        try:
            return bytes(await client.read_gatt_char(characteristic))
        except BleakError as e:
            raise BleError(str(e)) from e

    async def subscribe(self, characteristic: str):
        client = self._require_client()
        self._require_characteristic(client, characteristic)
        if characteristic.lower() in self._subscriptions:
            return
        try:
            await client.start_notify(characteristic, self._handle_notification)
        except BleakError as e:
            raise BleError(str(e)) from e
        self._subscriptions.add(characteristic.lower())
        logger.info("Notifications started on %s", characteristic)

    async def unsubscribe(self, characteristic: str):
        client = self._require_client()
        if characteristic.lower() not in self._subscriptions:
            return
        try:
            await client.stop_notify(characteristic)
        except BleakError as e:
            raise BleError(str(e)) from e
        self._subscriptions.discard(characteristic.lower())
        logger.info("Notifications stopped on %s", characteristic)

    async def read_battery(self) -> int:
        data = await self.read(BATTERY_LEVEL_UUID)
        if not data:
            raise InvalidData("Empty battery level read")
        self._info.battery_level = data[0]
        logger.info("Battery level: %d%%", self._info.battery_level)
        return self._info.battery_level

    def _handle_notification(self, sender, data: bytearray):
        uuid = getattr(sender, "uuid", sender)
        self._route(uuid, data)

    def _on_disconnect(self, _client):
        expected = self._closing
        self._subscriptions.clear()
        self._close()
        self._set_state(ConnectionState.DISCONNECTED)
        if not expected:
            logger.warning("Device disconnected unexpectedly")
            if self._on_unexpected_disconnect:
                self._on_unexpected_disconnect()
