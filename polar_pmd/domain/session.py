"""
Measurement session orchestrator.

Owns the requested measurement types and their negotiated parameters,
drives the control point through start/stop/settings transactions, and
runs the event loop that decodes notifications and hands them to an
EventHandler.

Typical flow:
    session = PmdSession(client, handler)
    session.push_type(MeasurementType.ACC)
    session.range(4)
    await session.subscribe(NotifyStream.HEART_RATE)
    await session.run(lambda: not stop_requested)
"""

import logging
from typing import Callable, Optional

from polar_pmd.config.settings import PmdConfig
from polar_pmd.domain.events import EventHandler
from polar_pmd.protocol.constants import (
    ACC_RANGES,
    ACC_RESOLUTION,
    ACC_SAMPLE_RATES,
    BATTERY_LEVEL_UUID,
    ECG_RESOLUTION,
    ECG_SAMPLE_RATE,
    HR_MEASUREMENT_UUID,
    MAX_MEASUREMENT_TYPES,
    PMD_DATA_UUID,
    PPG_RESOLUTION,
    PPG_SAMPLE_RATE,
    ControlCommand,
    MeasurementType,
    NotifyStream,
    SettingType,
)
from polar_pmd.protocol.control import ControlPoint, ControlResponse
from polar_pmd.protocol.errors import (
    CommandFailed,
    InvalidData,
    InvalidLength,
    NoDataType,
    PolarError,
    WrongType,
)
from polar_pmd.protocol.frames import HeartRate, decode_frame
from polar_pmd.protocol.stream_settings import StreamSettings

logger = logging.getLogger(__name__)


def _setting(setting: SettingType, value: int) -> bytes:
    # [type][count=1][value uint16 LE]
    return bytes([setting, 0x01]) + value.to_bytes(2, "little")


def start_parameters(
    measurement_type: MeasurementType, acc_range: int = 8, acc_sample_rate: int = 25
) -> bytes:
    """Settings appended to a REQUEST_MEASUREMENT_START command."""
    if measurement_type is MeasurementType.ACC:
        return (
            _setting(SettingType.RANGE, acc_range)
            + _setting(SettingType.SAMPLE_RATE, acc_sample_rate)
            + _setting(SettingType.RESOLUTION, ACC_RESOLUTION)
        )
    if measurement_type is MeasurementType.ECG:
        return _setting(SettingType.SAMPLE_RATE, ECG_SAMPLE_RATE) + _setting(
            SettingType.RESOLUTION, ECG_RESOLUTION
        )
    if measurement_type is MeasurementType.PPG:
        return _setting(SettingType.SAMPLE_RATE, PPG_SAMPLE_RATE) + _setting(
            SettingType.RESOLUTION, PPG_RESOLUTION
        )
    return b""


class PmdSession:
    def __init__(
        self,
        transport,
        handler: Optional[EventHandler] = None,
        config: Optional[PmdConfig] = None,
    ):
        config = config or PmdConfig()
        if config.acc_range not in ACC_RANGES:
            raise InvalidData("ACC range must be one of %s, got %d" % (ACC_RANGES, config.acc_range))
        if config.acc_sample_rate not in ACC_SAMPLE_RATES:
            raise InvalidData(
                "ACC sample rate must be one of %s, got %d"
                % (ACC_SAMPLE_RATES, config.acc_sample_rate)
            )

        self._transport = transport
        self._handler = handler or EventHandler()
        self._control = ControlPoint(
            transport,
            framing=config.response_framing,
            timeout=config.transaction_timeout,
        )
        # None means no type requested; never an empty tuple
        self._types: Optional[tuple] = None
        self._range = config.acc_range
        self._sample_rate = config.acc_sample_rate
        self._running = False

    @property
    def measurement_types(self) -> Optional[tuple]:
        return self._types

    @property
    def acc_range(self) -> int:
        return self._range

    @property
    def acc_sample_rate(self) -> int:
        return self._sample_rate

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def control_point(self) -> ControlPoint:
        return self._control

    def event_handler(self, handler: EventHandler):
        self._handler = handler

    def _check_idle(self):
        if self._running:
            raise RuntimeError("Cannot change session settings while streaming")

    # ─── Requested types and parameters ───

    def push_type(self, measurement_type: MeasurementType):
        self._check_idle()
        if self._types is None:
            self._types = (measurement_type,)
        elif measurement_type in self._types:
            logger.debug("%s already requested", measurement_type.name)
        elif len(self._types) >= MAX_MEASUREMENT_TYPES:
            logger.debug(
                "Ignoring %s: already streaming %d types",
                measurement_type.name, MAX_MEASUREMENT_TYPES,
            )
        else:
            self._types = self._types + (measurement_type,)

    def pop_type(self, measurement_type: MeasurementType):
        self._check_idle()
        if self._types is None or measurement_type not in self._types:
            return
        remaining = tuple(t for t in self._types if t is not measurement_type)
        self._types = remaining or None

    def _require_acc(self):
        if self._types is None:
            raise NoDataType("No measurement type requested")
        if MeasurementType.ACC not in self._types:
            raise WrongType("Range and sample rate only apply to ACC")

    def range(self, value: int):
        self._check_idle()
        self._require_acc()
        if value not in ACC_RANGES:
            raise InvalidData("ACC range must be one of %s, got %d" % (ACC_RANGES, value))
        self._range = value

    def sample_rate(self, value: int):
        self._check_idle()
        self._require_acc()
        if value not in ACC_SAMPLE_RATES:
            raise InvalidData(
                "ACC sample rate must be one of %s, got %d" % (ACC_SAMPLE_RATES, value)
            )
        self._sample_rate = value

    def _require_types(self) -> tuple:
        if self._types is None:
            raise NoDataType("No measurement type requested")
        return self._types

    # ─── Control point operations ───

    async def subscribe(self, stream: NotifyStream):
        await self._transport.subscribe(stream.value)

    async def unsubscribe(self, stream: NotifyStream):
        await self._transport.unsubscribe(stream.value)

    async def features(self) -> tuple:
        return await self._control.read_features()

    async def _request(
        self, command: ControlCommand, measurement_type: MeasurementType
    ) -> ControlResponse:
        parameters = b""
        if command is ControlCommand.REQUEST_MEASUREMENT_START:
            parameters = start_parameters(measurement_type, self._range, self._sample_rate)
        response = await self._control.send(command, measurement_type, parameters)
        if not response.ok:
            logger.error(
                "PMD %s %s failed with status %s",
                command.name, measurement_type.name, response.status.name,
            )
            raise CommandFailed(response)
        return response

    async def settings(self) -> list[StreamSettings]:
        result = []
        for measurement_type in self._require_types():
            response = await self._request(ControlCommand.GET_MEASUREMENT_SETTINGS, measurement_type)
            result.append(StreamSettings.from_response(response))
        return result

    async def start(self) -> list[ControlResponse]:
        return [
            await self._request(ControlCommand.REQUEST_MEASUREMENT_START, t)
            for t in self._require_types()
        ]

    async def stop(self) -> list[ControlResponse]:
        return [
            await self._request(ControlCommand.STOP_MEASUREMENT, t)
            for t in self._require_types()
        ]

    async def _stop_quietly(self, measurement_type: MeasurementType):
        try:
            await self._request(ControlCommand.STOP_MEASUREMENT, measurement_type)
        except PolarError as e:
            logger.warning("Error stopping %s stream: %s", measurement_type.name, e)

    # ─── Event loop ───

    async def run(self, keep_running: Optional[Callable[[], bool]] = None):
        """Start every requested stream and dispatch notifications.

        ``keep_running`` is polled after each notification; the loop also
        ends when the transport closes. Every requested stream is stopped
        on the way out.
        """
        if self._running:
            raise RuntimeError("Session is already running")

        types = self._types or ()
        self._running = True
        try:
            if types:
                await self.subscribe(NotifyStream.MEASUREMENT_DATA)
            for measurement_type in types:
                await self._stop_quietly(measurement_type)
            for measurement_type in types:
                await self._request(ControlCommand.REQUEST_MEASUREMENT_START, measurement_type)
                logger.info("%s streaming started", measurement_type.name)

            await self._event_loop(keep_running)
        finally:
            for measurement_type in types:
                await self._stop_quietly(measurement_type)
            self._running = False
            logger.info("Event loop finished")

    async def _event_loop(self, keep_running: Optional[Callable[[], bool]]):
        while True:
            notification = await self._transport.next_event()
            if notification is None:
                logger.info("Notification stream closed")
                return

            self._dispatch(notification.characteristic, notification.data)

            if keep_running is not None and not keep_running():
                return

    def _dispatch(self, characteristic: str, data: bytes):
        if characteristic == PMD_DATA_UUID:
            try:
                frame = decode_frame(data)
            except (InvalidData, InvalidLength) as e:
                logger.warning("Dropping PMD frame: %s", e)
                self._handler.measurement_error(self, e, data)
                return
            self._handler.measurement_update(self, frame)

        elif characteristic == HR_MEASUREMENT_UUID:
            try:
                heart_rate = HeartRate.decode(data)
            except InvalidLength as e:
                logger.warning("Dropping heart rate notification: %s", e)
                self._handler.measurement_error(self, e, data)
                return
            self._handler.heart_rate_update(self, heart_rate)

        elif characteristic == BATTERY_LEVEL_UUID:
            if data:
                self._handler.battery_update(self, data[0])

        else:
            logger.debug("Unhandled notification from %s: %s", characteristic, data.hex())
