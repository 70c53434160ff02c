import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Optional

from polar_pmd.protocol.constants import ResponseFraming


@dataclass
class BLEConfig:
    address: str = ""
    connect_timeout: float = 10.0


@dataclass
class PmdConfig:
    response_framing: ResponseFraming = ResponseFraming.MARKED
    # None waits forever for the device to finish a control point transaction
    transaction_timeout: Optional[float] = None
    acc_range: int = 8
    acc_sample_rate: int = 25


@dataclass
class AppConfig:
    ble: BLEConfig = field(default_factory=BLEConfig)
    pmd: PmdConfig = field(default_factory=PmdConfig)
    debug: bool = False


def load_config() -> AppConfig:
    config = AppConfig()
    config.ble.address = os.getenv("POLAR_ADDRESS", config.ble.address)
    config.ble.connect_timeout = float(
        os.getenv("POLAR_CONNECT_TIMEOUT", config.ble.connect_timeout)
    )
    config.pmd.response_framing = ResponseFraming(
        os.getenv("PMD_RESPONSE_FRAMING", config.pmd.response_framing.value).lower()
    )
    timeout = os.getenv("PMD_TRANSACTION_TIMEOUT")
    if timeout:
        config.pmd.transaction_timeout = float(timeout)
    config.pmd.acc_range = int(os.getenv("PMD_ACC_RANGE", config.pmd.acc_range))
    config.pmd.acc_sample_rate = int(
        os.getenv("PMD_ACC_SAMPLE_RATE", config.pmd.acc_sample_rate)
    )
    config.debug = os.getenv("DEBUG", "false").lower() == "true"
    return config


def setup_logging(debug: bool = False):
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
    )
    # Silence noisy libraries
    logging.getLogger("bleak").setLevel(logging.WARNING)
