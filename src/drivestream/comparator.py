"""
Change detection between consecutive snapshots of the same car
"""

import math
from typing import Optional

from .models import TelemetrySnapshotV1

FLOAT_TOLERANCE = 1e-6

EXACT_FIELDS = (
    "car_id",
    "brand",
    "model",
    "year_of_manufacture",
    "odo",
    "fuel_type",
    "speed",
    "engine_on",
    "rpm",
    "locked",
    "activated",
    "handbrake",
)

# GPS and fuel sensors jitter in the last decimal places
TOLERANT_FIELDS = ("lat", "lon", "fuel")


def floats_equal(a: float, b: float) -> bool:
    return math.fabs(a - b) < FLOAT_TOLERANCE


def changed(previous: Optional[TelemetrySnapshotV1], current: TelemetrySnapshotV1) -> bool:
    """Return True when current differs from previous in any content field.

    A missing previous snapshot is always a change. observed_at is not
    compared: two readings of an unchanged car differ only in time.
    """
    if previous is None:
        return True

    for name in EXACT_FIELDS:
        if getattr(previous, name) != getattr(current, name):
            return True

    for name in TOLERANT_FIELDS:
        if not floats_equal(getattr(previous, name), getattr(current, name)):
            return True

    return False
