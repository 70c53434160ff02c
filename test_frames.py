import numpy as np
import pytest

from polar_pmd.protocol.constants import MeasurementType
from polar_pmd.protocol.errors import InvalidData, InvalidLength
from polar_pmd.protocol.frames import (
    AccSample,
    EcgSample,
    HeartRate,
    PpgSample,
    PpiSample,
    decode_frame,
)

TIMESTAMP = bytes([0xEA, 0x54, 0xA2, 0x42, 0x8B, 0x45, 0x52, 0x08])
TIMESTAMP_VALUE = 599618164814402794

ACC_PAYLOAD = bytes(
    [0x02] + list(TIMESTAMP) + [0x01,
     0x45, 0xFF, 0xE4, 0xFF, 0xB5, 0x03,
     0x45, 0xFF, 0xE4, 0xFF, 0xB8, 0x03]
)


def build_frame(measurement_type: int, samples: bytes, frame_type: int = 0x00) -> bytes:
    return bytes([measurement_type]) + TIMESTAMP + bytes([frame_type]) + samples


def int24(value: int) -> bytes:
    return value.to_bytes(3, "little", signed=True)


def test_acc_frame():
    frame = decode_frame(ACC_PAYLOAD)
    assert frame.measurement_type is MeasurementType.ACC
    assert frame.timestamp == TIMESTAMP_VALUE
    assert frame.frame_type == 0x01
    assert frame.samples == (AccSample(-187, -28, 949), AccSample(-187, -28, 952))
    assert frame.samples[0].data() == (-187, -28, 949)


def test_acc_frame_types_select_field_width():
    frame = decode_frame(build_frame(0x02, bytes([0xFF, 0x01, 0x10]), frame_type=0x00))
    assert frame.samples == (AccSample(-1, 1, 16),)

    frame = decode_frame(build_frame(0x02, int24(-1000) + int24(0) + int24(1000), frame_type=0x02))
    assert frame.samples == (AccSample(-1000, 0, 1000),)


def test_acc_unknown_frame_type():
    with pytest.raises(InvalidData):
        decode_frame(build_frame(0x02, bytes(6), frame_type=0x80))


def test_ecg_frame():
    frame = decode_frame(build_frame(0x00, bytes([0xFF, 0xFF, 0xFF, 0x00, 0x00, 0x10])))
    assert frame.measurement_type is MeasurementType.ECG
    assert frame.timestamp == TIMESTAMP_VALUE
    assert frame.samples == (EcgSample(-1), EcgSample(1_048_576))


def test_ppg_frame():
    frame = decode_frame(build_frame(0x01, int24(-5) + int24(10) + int24(-20) + int24(300)))
    assert frame.samples == (PpgSample(ppg0=-5, ppg1=10, ppg2=-20, ambient=300),)


def test_ppi_frame():
    sample = bytes([60, 0xE8, 0x03, 0x0A, 0x00, 0x06])
    frame = decode_frame(build_frame(0x03, sample + sample))
    assert frame.samples == (PpiSample(60, 1000, 10, 0x06),) * 2
    assert frame.samples[0].skin_contact
    assert frame.samples[0].contact_supported


def test_ppi_blocker_flag_is_invalid():
    sample = bytes([60, 0xE8, 0x03, 0x0A, 0x00, 0x07])
    with pytest.raises(InvalidData):
        decode_frame(build_frame(0x03, sample))


def test_unknown_measurement_type():
    with pytest.raises(InvalidData):
        decode_frame(build_frame(0x09, bytes(3)))


@pytest.mark.parametrize(
    "payload",
    [
        b"",
        bytes([0x00]) + TIMESTAMP,
        build_frame(0x00, b""),
        build_frame(0x00, bytes([0xFF, 0xFF])),
        build_frame(0x01, bytes(11)),
    ],
)
def test_truncated_frame(payload):
    with pytest.raises(InvalidLength):
        decode_frame(payload)


def test_sample_data_not_multiple_of_width():
    with pytest.raises(InvalidLength):
        decode_frame(build_frame(0x00, bytes(4)))
    with pytest.raises(InvalidLength):
        decode_frame(ACC_PAYLOAD[:-1])


def test_frame_to_array():
    array = decode_frame(ACC_PAYLOAD).to_array()
    assert array.shape == (2, 3)
    np.testing.assert_array_equal(array, [[-187, -28, 949], [-187, -28, 952]])

    ppi = decode_frame(build_frame(0x03, bytes([60, 0xE8, 0x03, 0x0A, 0x00, 0x06]))).to_array()
    np.testing.assert_array_equal(ppi, [[60, 1000, 10, 6]])


def test_heart_rate_with_rr():
    hr = HeartRate.decode(bytes([16, 60, 55, 4, 7, 3]))
    assert hr.bpm == 60
    assert hr.rr == (1104, 793)


def test_heart_rate_without_rr_flag_ignores_surplus():
    hr = HeartRate.decode(bytes([0, 72, 55, 4, 7, 3]))
    assert hr.bpm == 72
    assert hr.rr is None


def test_heart_rate_rr_flag_without_data():
    assert HeartRate.decode(bytes([16, 60])).rr is None
    assert HeartRate.decode(bytes([16, 60, 55, 4, 7])).rr == (1104,)


def test_heart_rate_too_short():
    with pytest.raises(InvalidLength):
        HeartRate.decode(bytes([16]))
