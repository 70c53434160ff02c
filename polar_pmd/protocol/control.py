"""
PMD control point transactions.

A transaction is one command written to the control point (fb005c81) and
the indication(s) the device sends back:

  Command:  [op code][measurement type][parameters...]
  Response: [0xF0][op code][measurement type][status][more][parameters...]

Some firmware revisions omit the 0xF0 marker; see ResponseFraming.

When the "more" byte is set, the parameters continue in further
indications, each prefixed with a continuation byte. A non-zero
continuation byte appends the rest of the packet; a zero byte ends the
response and its payload is discarded.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from polar_pmd.protocol.constants import (
    FEATURE_BITS,
    PMD_CONTROL_UUID,
    PMD_FEATURES_MARKER,
    PMD_RESPONSE_MARKER,
    ControlCommand,
    ControlStatus,
    MeasurementType,
    ResponseFraming,
)
from polar_pmd.protocol.errors import (
    CharacteristicNotFound,
    InvalidData,
    NoControlPoint,
    NotConnected,
    NullCommand,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ControlResponse:
    opcode: ControlCommand
    measurement_type: MeasurementType
    status: ControlStatus
    parameters: bytes = b""
    # set on a first packet announcing continuation, cleared once reassembled
    more: bool = False

    @property
    def ok(self) -> bool:
        return self.status is ControlStatus.SUCCESS


class TransactionState(str, Enum):
    IDLE = "idle"
    AWAITING_FIRST = "awaiting_first"
    AWAITING_MORE = "awaiting_more"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATES = (TransactionState.COMPLETE, TransactionState.FAILED)


def encode_command(
    command: ControlCommand,
    measurement_type: MeasurementType,
    parameters: bytes = b"",
) -> bytes:
    if command is ControlCommand.NULL:
        raise NullCommand("Refusing to write the NULL op code to the control point")
    return bytes([command, measurement_type]) + bytes(parameters)


def decode_response_header(
    data: bytes, framing: ResponseFraming = ResponseFraming.MARKED
) -> ControlResponse:
    """Decode the first indication of a response.

    Parameters are only kept when the status is SUCCESS.
    """
    marked = framing is ResponseFraming.MARKED or (
        framing is ResponseFraming.AUTO and len(data) > 0 and data[0] == PMD_RESPONSE_MARKER
    )
    offset = 1 if marked else 0

    if len(data) < offset + 3:
        raise InvalidData("Control point response too short: %s" % bytes(data).hex())
    if marked and data[0] != PMD_RESPONSE_MARKER:
        raise InvalidData("Not a control point response: %s" % bytes(data).hex())

    try:
        opcode = ControlCommand(data[offset])
        measurement_type = MeasurementType(data[offset + 1])
        status = ControlStatus(data[offset + 2])
    except ValueError as e:
        raise InvalidData("Malformed control point response %s: %s" % (bytes(data).hex(), e)) from e

    if status is not ControlStatus.SUCCESS:
        return ControlResponse(opcode, measurement_type, status)

    more = len(data) > offset + 3 and data[offset + 3] != 0
    return ControlResponse(
        opcode=opcode,
        measurement_type=measurement_type,
        status=status,
        parameters=bytes(data[offset + 4:]),
        more=more,
    )


def decode_features(data: bytes) -> tuple:
    """Decode the feature bitmap read from the control point."""
    if len(data) < 2 or data[0] != PMD_FEATURES_MARKER:
        raise InvalidData("Not a PMD feature read: %s" % bytes(data).hex())
    bitmap = data[1]
    return tuple(t for bit, t in FEATURE_BITS.items() if bitmap & bit)


class ControlTransaction:
    """State machine correlating one command with its response."""

    def __init__(
        self,
        command: ControlCommand,
        measurement_type: MeasurementType,
        parameters: bytes = b"",
        framing: ResponseFraming = ResponseFraming.MARKED,
    ):
        self.command = command
        self.measurement_type = measurement_type
        self.parameters = bytes(parameters)
        self._framing = framing
        self._state = TransactionState.IDLE
        self._first: Optional[ControlResponse] = None
        self._buffer = bytearray()
        self._response: Optional[ControlResponse] = None

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def done(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def response(self) -> Optional[ControlResponse]:
        return self._response

    def begin(self) -> bytes:
        """Return the payload to write and start waiting for the response."""
        if self._state is not TransactionState.IDLE:
            raise RuntimeError("Transaction already started (%s)" % self._state.value)
        payload = encode_command(self.command, self.measurement_type, self.parameters)
        self._state = TransactionState.AWAITING_FIRST
        return payload

    def feed(self, data: bytes) -> bool:
        """Consume one control point indication. Returns True once finished."""
        if self._state is TransactionState.AWAITING_FIRST:
            self._on_first(data)
        elif self._state is TransactionState.AWAITING_MORE:
            self._on_more(data)
        else:
            raise RuntimeError("Cannot feed a transaction in state %s" % self._state.value)
        return self.done

    def _on_first(self, data: bytes):
        response = decode_response_header(data, self._framing)

        if (
            response.opcode is not self.command
            or response.measurement_type is not self.measurement_type
        ):
            logger.debug(
                "Ignoring %s %s response while waiting for %s %s",
                response.opcode.name, response.measurement_type.name,
                self.command.name, self.measurement_type.name,
            )
            return

        if response.status is not ControlStatus.SUCCESS:
            self._response = response
            self._state = TransactionState.FAILED
            return

        self._first = response
        self._buffer.extend(response.parameters)
        if response.more:
            self._state = TransactionState.AWAITING_MORE
        else:
            self._finish()

    def _on_more(self, data: bytes):
        if not data:
            raise InvalidData("Empty continuation packet")
        if data[0] == 0:
            self._finish()
            return
        self._buffer.extend(data[1:])

    def _finish(self):
        first = self._first
        self._response = ControlResponse(
            opcode=first.opcode,
            measurement_type=first.measurement_type,
            status=first.status,
            parameters=bytes(self._buffer),
        )
        self._state = TransactionState.COMPLETE


class ControlPoint:
    """Runs control point transactions over a Transport.

    Responses are read only from the control point's own notification
    queue, so measurement data flowing at the same time never reaches the
    state machine. One transaction is outstanding at a time.
    """

    def __init__(
        self,
        transport,
        framing: ResponseFraming = ResponseFraming.MARKED,
        timeout: Optional[float] = None,
        characteristic: str = PMD_CONTROL_UUID,
    ):
        self._transport = transport
        self._framing = framing
        self._timeout = timeout
        self._characteristic = characteristic
        self._lock = asyncio.Lock()
        self._subscribed = False

    @property
    def subscribed(self) -> bool:
        return self._subscribed

    async def ensure_subscribed(self):
        if not self._subscribed:
            try:
                await self._transport.subscribe(self._characteristic)
            except CharacteristicNotFound as e:
                raise NoControlPoint("Device exposes no PMD control point") from e
            self._subscribed = True
            logger.info("Subscribed to PMD control point")

    async def send(
        self,
        command: ControlCommand,
        measurement_type: MeasurementType,
        parameters: bytes = b"",
    ) -> ControlResponse:
        """Write a command and wait for the complete response.

        The response is returned whatever its status; callers decide what a
        failure status means for them.
        """
        transaction = ControlTransaction(command, measurement_type, parameters, self._framing)

        async with self._lock:
            payload = transaction.begin()
            await self.ensure_subscribed()
            stale = self._transport.drain(self._characteristic)
            if stale:
                logger.warning("Discarded %d stale control point indication(s)", stale)
            logger.debug("PMD command: %s", payload.hex())
            await self._transport.write(self._characteristic, payload, response=True)

            try:
                if self._timeout is None:
                    await self._collect(transaction)
                else:
                    await asyncio.wait_for(self._collect(transaction), self._timeout)
            except asyncio.TimeoutError:
                raise NotConnected(
                    "No complete %s %s response within %.1fs"
                    % (command.name, measurement_type.name, self._timeout)
                ) from None

        response = transaction.response
        logger.info(
            "PMD response: %s %s -> %s",
            response.opcode.name, response.measurement_type.name, response.status.name,
        )
        return response

    async def _collect(self, transaction: ControlTransaction):
        while not transaction.done:
            data = await self._transport.receive(self._characteristic)
            if data is None:
                raise NotConnected("Transport closed during %s" % transaction.command.name)
            transaction.feed(data)

    async def read_features(self) -> tuple:
        data = await self._transport.read(self._characteristic)
        features = decode_features(data)
        logger.info("PMD features: %s", ", ".join(t.name for t in features))
        return features
