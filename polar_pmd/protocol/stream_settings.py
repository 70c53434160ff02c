"""
Parser for the body of a GET_MEASUREMENT_SETTINGS response.

The body is a run of self-describing entries:

    [setting type][count N][value, reserved] x N

Setting type 0x00 is the sample rate, 0x01 the resolution and anything
else a range (ACC only). Values keep the order the device reports them in.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from polar_pmd.protocol.constants import ControlCommand, MeasurementType, SettingType
from polar_pmd.protocol.control import ControlResponse
from polar_pmd.protocol.errors import InvalidData, WrongResponse

logger = logging.getLogger(__name__)


class _ParseState(Enum):
    SETTING = "setting"
    ARRAY_LENGTH = "array_length"
    DATA = "data"


@dataclass(frozen=True)
class StreamSettings:
    measurement_type: MeasurementType
    resolution: int
    range: Optional[tuple]
    sample_rate: tuple

    @classmethod
    def from_response(cls, response: ControlResponse) -> "StreamSettings":
        if response.opcode is not ControlCommand.GET_MEASUREMENT_SETTINGS:
            raise WrongResponse(
                "Expected a GET_MEASUREMENT_SETTINGS response, got %s" % response.opcode.name
            )

        resolution = 0
        ranges: list[int] = []
        sample_rates: list[int] = []

        data = response.parameters
        state = _ParseState.SETTING
        setting = SettingType.SAMPLE_RATE
        remaining = 0
        index = 0

        while index < len(data):
            if state is _ParseState.SETTING:
                setting = SettingType.from_tag(data[index])
                state = _ParseState.ARRAY_LENGTH
                index += 1
            elif state is _ParseState.ARRAY_LENGTH:
                remaining = data[index]
                state = _ParseState.DATA if remaining else _ParseState.SETTING
                index += 1
            else:
                if index + 1 >= len(data):
                    raise InvalidData(
                        "Truncated %s entry in %s settings"
                        % (setting.name, response.measurement_type.name)
                    )
                value = data[index]
                # data[index + 1] is the reserved byte of the pair
                index += 2

                if setting is SettingType.SAMPLE_RATE:
                    sample_rates.append(value)
                elif setting is SettingType.RESOLUTION:
                    resolution = value
                else:
                    ranges.append(value)

                remaining -= 1
                if remaining == 0:
                    state = _ParseState.SETTING

        if state is _ParseState.DATA or state is _ParseState.ARRAY_LENGTH:
            raise InvalidData(
                "%s settings end in the middle of a %s entry"
                % (response.measurement_type.name, setting.name)
            )
        if not sample_rates:
            raise InvalidData(
                "%s settings carry no sample rate" % response.measurement_type.name
            )

        settings = cls(
            measurement_type=response.measurement_type,
            resolution=resolution,
            range=tuple(ranges) if ranges else None,
            sample_rate=tuple(sample_rates),
        )
        logger.debug("Parsed stream settings: %s", settings)
        return settings
