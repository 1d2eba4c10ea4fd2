"""
Telemetry validation at ingest
"""

import logging
import re
from typing import Dict, List, Optional

from .clock import Clock, SystemClock
from .errors import InvalidArgumentError, UnauthenticatedError
from .models import FuelType, TelemetrySnapshotV1

logger = logging.getLogger(__name__)

MAX_STRING_LENGTH = 64
MIN_YEAR = 1900
MAX_ODO = 1_000_000
MAX_SPEED = 300
MAX_RPM = 10_000

# Car ids become a broker subject token and a KV key
CAR_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

FUEL_TYPES = frozenset(fuel_type.value for fuel_type in FuelType)


def require_car_id(car_id: Optional[str]) -> str:
    """Return the identity supplied by the transport or raise UnauthenticatedError"""
    if car_id is None or not car_id.strip():
        raise UnauthenticatedError("car_id required in request context")
    car_id = car_id.strip()
    if not CAR_ID_PATTERN.match(car_id):
        raise InvalidArgumentError(
            "invalid car_id",
            {"car_id": [f"must match {CAR_ID_PATTERN.pattern}"]},
        )
    return car_id


class TelemetryValidator:
    """Validates telemetry snapshots against the accepted value ranges"""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()

    def collect_errors(self, snapshot: TelemetrySnapshotV1) -> Dict[str, List[str]]:
        """Return field name -> messages for every violated constraint"""
        errors: Dict[str, List[str]] = {}

        def fail(name: str, message: str) -> None:
            errors.setdefault(name, []).append(message)

        for name in ("brand", "model"):
            value = getattr(snapshot, name)
            if not value:
                fail(name, "must not be empty")
            elif len(value) > MAX_STRING_LENGTH:
                fail(name, f"must be at most {MAX_STRING_LENGTH} characters")

        max_year = self.clock.utc_now().year + 1
        if not MIN_YEAR <= snapshot.year_of_manufacture <= max_year:
            fail("year_of_manufacture", f"must be between {MIN_YEAR} and {max_year}")

        if not 0 <= snapshot.odo <= MAX_ODO:
            fail("odo", f"must be between 0 and {MAX_ODO}")
        if not -90.0 <= snapshot.lat <= 90.0:
            fail("lat", "must be between -90 and 90")
        if not -180.0 <= snapshot.lon <= 180.0:
            fail("lon", "must be between -180 and 180")
        if not 0.0 <= snapshot.fuel <= 100.0:
            fail("fuel", "must be between 0 and 100")
        if snapshot.fuel_type not in FUEL_TYPES:
            fail("fuel_type", f"must be one of {sorted(FUEL_TYPES)}")
        if not 0 <= snapshot.speed <= MAX_SPEED:
            fail("speed", f"must be between 0 and {MAX_SPEED}")
        if not 0 <= snapshot.rpm <= MAX_RPM:
            fail("rpm", f"must be between 0 and {MAX_RPM}")

        return errors

    def validate(self, snapshot: TelemetrySnapshotV1) -> TelemetrySnapshotV1:
        """Return the snapshot unchanged or raise InvalidArgumentError"""
        errors = self.collect_errors(snapshot)
        if errors:
            logger.info(f"Rejected telemetry for car {snapshot.car_id}: {sorted(errors)}")
            raise InvalidArgumentError("invalid telemetry data", errors)
        return snapshot
