"""
PMD protocol constants.

GATT characteristics used by Polar sensors, and the enumerations that
appear on the PMD control point and data channel.

  - Control point (fb005c81): write commands, receive indications
  - Data channel  (fb005c82): receive measurement notification frames
"""

from enum import Enum, IntEnum

# GATT characteristics
PMD_CONTROL_UUID = "fb005c81-02e7-f387-1cad-8acd2d8df0c8"
PMD_DATA_UUID = "fb005c82-02e7-f387-1cad-8acd2d8df0c8"
HR_MEASUREMENT_UUID = "00002a37-0000-1000-8000-00805f9b34fb"
BATTERY_LEVEL_UUID = "00002a19-0000-1000-8000-00805f9b34fb"

# Control point framing
PMD_RESPONSE_MARKER = 0xF0
PMD_FEATURES_MARKER = 0x0F

# Measurement notification header: type(1) + timestamp(8) + frame type(1)
PMD_HEADER_SIZE = 10


class MeasurementType(IntEnum):
    ECG = 0x00
    PPG = 0x01
    ACC = 0x02
    PPI = 0x03


class ControlCommand(IntEnum):
    NULL = 0x00
    GET_MEASUREMENT_SETTINGS = 0x01
    REQUEST_MEASUREMENT_START = 0x02
    STOP_MEASUREMENT = 0x03


class ControlStatus(IntEnum):
    SUCCESS = 0
    INVALID_OP_CODE = 1
    INVALID_MEASUREMENT_TYPE = 2
    NOT_SUPPORTED = 3
    INVALID_LENGTH = 4
    INVALID_PARAMETER = 5
    ALREADY_IN_STATE = 6
    INVALID_RESOLUTION = 7
    INVALID_SAMPLE_RATE = 8
    INVALID_RANGE = 9
    INVALID_MTU = 10
    INVALID_NUMBER_OF_CHANNELS = 11
    INVALID_STATE = 12
    DEVICE_IN_CHARGER = 13


class SettingType(IntEnum):
    SAMPLE_RATE = 0x00
    RESOLUTION = 0x01
    RANGE = 0x02

    @classmethod
    def from_tag(cls, tag: int) -> "SettingType":
        # Every tag above resolution is reported as a range by the H10
        if tag == cls.SAMPLE_RATE:
            return cls.SAMPLE_RATE
        if tag == cls.RESOLUTION:
            return cls.RESOLUTION
        return cls.RANGE


class ResponseFraming(str, Enum):
    MARKED = "marked"
    UNMARKED = "unmarked"
    AUTO = "auto"


class NotifyStream(str, Enum):
    BATTERY = BATTERY_LEVEL_UUID
    HEART_RATE = HR_MEASUREMENT_UUID
    MEASUREMENT_DATA = PMD_DATA_UUID


# Fixed sample frame widths in bytes. ACC is overridden by the frame type.
FRAME_WIDTHS = {
    MeasurementType.ECG: 3,
    MeasurementType.PPG: 12,
    MeasurementType.ACC: 6,
    MeasurementType.PPI: 6,
}

# ACC frame type -> bytes per axis
ACC_FIELD_WIDTHS = {
    0x00: 1,
    0x01: 2,
    0x02: 3,
}

# Feature bitmap read from the control point
FEATURE_BITS = {
    0x01: MeasurementType.ECG,
    0x02: MeasurementType.PPG,
    0x04: MeasurementType.ACC,
    0x08: MeasurementType.PPI,
}

ACC_RANGES = (2, 4, 8)
ACC_SAMPLE_RATES = (25, 50, 100, 200)
ACC_RESOLUTION = 16
ECG_SAMPLE_RATE = 130
ECG_RESOLUTION = 14
PPG_SAMPLE_RATE = 135
PPG_RESOLUTION = 22

MAX_MEASUREMENT_TYPES = 2
