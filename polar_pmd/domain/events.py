"""Observer for data dispatched by PmdSession.run()."""

from polar_pmd.protocol.errors import PolarError
from polar_pmd.protocol.frames import HeartRate, PmdFrame


class EventHandler:
    """Override the handlers you care about; the rest do nothing."""

    def battery_update(self, session, battery_level: int):
        pass

    def heart_rate_update(self, session, heart_rate: HeartRate):
        pass

    def measurement_update(self, session, frame: PmdFrame):
        pass

    def measurement_error(self, session, error: PolarError, payload: bytes):
        """A PMD frame or heart rate notification that failed to decode."""
        pass
