"""
PMD data channel and heart rate notification decoding.

Measurement frame format (H10 / OH1 / Verity Sense, frame type byte present):
  Header: 10 bytes
    - byte 0:    measurement type (0x00 ECG, 0x01 PPG, 0x02 ACC, 0x03 PPI)
    - bytes 1-8: timestamp (uint64 LE, device clock units)
    - byte 9:    frame type
  Samples: N x frame width bytes
    - ECG (3 bytes):  value (int24 LE, uV)
    - PPG (12 bytes): ppg0, ppg1, ppg2, ambient (int24 LE each)
    - ACC (3/6/9 bytes): x, y, z (int8/int16/int24 LE by frame type 0/1/2, mG)
    - PPI (6 bytes):
        - byte 0:    HR (uint8)
        - bytes 1-2: PP interval (uint16 LE, milliseconds)
        - bytes 3-4: error estimate (uint16 LE, milliseconds)
        - byte 5:    flags (bit0=blocker, bit1=skin_contact, bit2=contact_supported)

Heart Rate Measurement (0x2A37):
    - byte 0:    flags (bit4 = RR intervals present)
    - byte 1:    HR (uint8)
    - bytes 2+:  RR intervals (uint16 LE, 1/1024 s)
"""

import logging
import struct
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from polar_pmd.protocol.codec import decode_signed, decode_unsigned
from polar_pmd.protocol.constants import (
    ACC_FIELD_WIDTHS,
    FRAME_WIDTHS,
    PMD_HEADER_SIZE,
    MeasurementType,
)
from polar_pmd.protocol.errors import InvalidData, InvalidLength

logger = logging.getLogger(__name__)

PPI_FLAG_BLOCKER = 0x01
PPI_FLAG_SKIN_CONTACT = 0x02
PPI_FLAG_CONTACT_SUPPORTED = 0x04

HR_FLAG_RR_PRESENT = 0x10


@dataclass(frozen=True)
class EcgSample:
    val: int  # uV


@dataclass(frozen=True)
class AccSample:
    x: int  # mG
    y: int
    z: int

    def data(self) -> tuple[int, int, int]:
        return (self.x, self.y, self.z)


@dataclass(frozen=True)
class PpgSample:
    ppg0: int
    ppg1: int
    ppg2: int
    ambient: int


@dataclass(frozen=True)
class PpiSample:
    bpm: int
    ppi_ms: int
    error_ms: int
    flags: int

    @property
    def skin_contact(self) -> bool:
        return bool(self.flags & PPI_FLAG_SKIN_CONTACT)

    @property
    def contact_supported(self) -> bool:
        return bool(self.flags & PPI_FLAG_CONTACT_SUPPORTED)


PmdSample = Union[EcgSample, AccSample, PpgSample, PpiSample]


@dataclass(frozen=True)
class PmdFrame:
    measurement_type: MeasurementType
    timestamp: int
    frame_type: int
    samples: tuple

    def to_array(self) -> np.ndarray:
        """Samples as an (n, channels) int64 array, in arrival order."""
        rows = [_sample_row(s) for s in self.samples]
        channels = _CHANNELS[self.measurement_type]
        if not rows:
            return np.empty((0, channels), dtype=np.int64)
        return np.array(rows, dtype=np.int64)


_CHANNELS = {
    MeasurementType.ECG: 1,
    MeasurementType.PPG: 4,
    MeasurementType.ACC: 3,
    MeasurementType.PPI: 4,
}


def _sample_row(sample: PmdSample) -> tuple:
    if isinstance(sample, EcgSample):
        return (sample.val,)
    if isinstance(sample, AccSample):
        return sample.data()
    if isinstance(sample, PpgSample):
        return (sample.ppg0, sample.ppg1, sample.ppg2, sample.ambient)
    return (sample.bpm, sample.ppi_ms, sample.error_ms, sample.flags)


def frame_width(measurement_type: MeasurementType, frame_type: int) -> int:
    if measurement_type is MeasurementType.ACC:
        field_width = ACC_FIELD_WIDTHS.get(frame_type)
        if field_width is None:
            raise InvalidData("Unsupported ACC frame type 0x%02x" % frame_type)
        return field_width * 3
    return FRAME_WIDTHS[measurement_type]


def decode_frame(payload: bytes) -> PmdFrame:
    """Decode one PMD data channel notification into a PmdFrame."""
    if not payload:
        raise InvalidLength("Empty PMD data notification")

    try:
        measurement_type = MeasurementType(payload[0])
    except ValueError:
        raise InvalidData("Unknown measurement type 0x%02x" % payload[0]) from None

    # Need the frame type byte before the width is known
    if len(payload) < PMD_HEADER_SIZE:
        raise InvalidLength(
            "%s frame expects at least %d header bytes, got %d"
            % (measurement_type.name, PMD_HEADER_SIZE, len(payload))
        )

    timestamp = struct.unpack_from("<Q", payload, 1)[0]
    frame_type = payload[9]
    width = frame_width(measurement_type, frame_type)

    raw = bytes(payload[PMD_HEADER_SIZE:])
    if len(raw) < width:
        raise InvalidLength(
            "%s frame expects at least %d sample bytes, got %d"
            % (measurement_type.name, width, len(raw))
        )
    if len(raw) % width:
        raise InvalidLength(
            "%s sample data of %d bytes is not a multiple of %d"
            % (measurement_type.name, len(raw), width)
        )

    samples = []
    for index in range(0, len(raw), width):
        chunk = raw[index:index + width]
        samples.append(_decode_sample(measurement_type, chunk))

    logger.debug(
        "%s frame: ts=%d frame_type=%d, %d samples",
        measurement_type.name, timestamp, frame_type, len(samples),
    )

    return PmdFrame(
        measurement_type=measurement_type,
        timestamp=timestamp,
        frame_type=frame_type,
        samples=tuple(samples),
    )


def _decode_sample(measurement_type: MeasurementType, chunk: bytes) -> PmdSample:
    if measurement_type is MeasurementType.ECG:
        return EcgSample(val=decode_signed(chunk, 3))

    if measurement_type is MeasurementType.ACC:
        step = len(chunk) // 3
        return AccSample(
            x=decode_signed(chunk[0:step], step),
            y=decode_signed(chunk[step:step * 2], step),
            z=decode_signed(chunk[step * 2:step * 3], step),
        )

    if measurement_type is MeasurementType.PPG:
        return PpgSample(
            ppg0=decode_signed(chunk[0:3], 3),
            ppg1=decode_signed(chunk[3:6], 3),
            ppg2=decode_signed(chunk[6:9], 3),
            ambient=decode_signed(chunk[9:12], 3),
        )

    flags = chunk[5]
    if flags & PPI_FLAG_BLOCKER:
        raise InvalidData("PPI sample flagged as invalid (flags=0x%02x)" % flags)
    return PpiSample(
        bpm=chunk[0],
        ppi_ms=decode_unsigned(chunk[1:3], 2),
        error_ms=decode_unsigned(chunk[3:5], 2),
        flags=flags,
    )


@dataclass(frozen=True)
class HeartRate:
    bpm: int
    rr: Optional[tuple] = None

    @classmethod
    def decode(cls, payload: bytes) -> "HeartRate":
        """Parse a standard Heart Rate Measurement notification.

        RR intervals are only read when the flag bit says they are present;
        surplus bytes are ignored otherwise.
        """
        if len(payload) < 2:
            raise InvalidLength(
                "Heart rate expects at least 2 bytes of data, got %d" % len(payload)
            )

        flags = payload[0]
        bpm = payload[1]

        count = (len(payload) - 2) // 2 if flags & HR_FLAG_RR_PRESENT else 0

        # raw * 128 / 125, truncated, gives ms
        rr = [
            decode_unsigned(payload[2 + i * 2:4 + i * 2], 2) * 128 // 125
            for i in range(count)
        ]
        return cls(bpm=bpm, rr=tuple(rr) if rr else None)
