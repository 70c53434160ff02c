"""Exceptions raised by the PMD codec, control point and session."""


class PolarError(Exception):
    """Base class for every error raised by polar_pmd."""


class InvalidData(PolarError):
    """Malformed or unrecognized data received from the device."""


class InvalidLength(PolarError):
    """Payload shorter than the layout requires."""


class WrongResponse(PolarError):
    """A response was interpreted as something it is not."""


class WrongType(PolarError):
    """Setting applied to a measurement type that does not support it."""


class NoDataType(PolarError):
    """Operation requires a configured measurement type but none is set."""


class NullCommand(PolarError):
    """Attempt to send the no-op control point command."""


class NotConnected(PolarError):
    """Device is not connected, or the connection closed mid-operation."""


class NoDevice(PolarError):
    """No device to talk to."""


class CharacteristicNotFound(PolarError):
    """Device does not expose a characteristic that was used."""


class NoControlPoint(PolarError):
    """PMD control point link could not be created."""


class BleError(PolarError):
    """An error raised by the underlying BLE library."""


class CommandFailed(PolarError):
    """The device answered a control point command with a failure status."""

    def __init__(self, response):
        self.response = response
        super().__init__(
            "%s %s -> %s"
            % (
                response.opcode.name,
                response.measurement_type.name,
                response.status.name,
            )
        )

    @property
    def status(self):
        return self.response.status
