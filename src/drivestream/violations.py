"""
Rule-based violation engine

Each rule looks at a single snapshot; rules are independent, so one
snapshot can produce several records.
"""

import logging
from typing import List, Optional

from .clock import Clock, SystemClock
from .config import ViolationThresholds
from .models import (
    DriftDetails,
    LowFuelDetails,
    SpeedingDetails,
    TelemetrySnapshotV1,
    UnauthorizedMovementDetails,
    ViolationKind,
    ViolationRecordV1,
)

logger = logging.getLogger(__name__)


def speeding_tier(speed: int, thresholds: ViolationThresholds) -> Optional[ViolationKind]:
    """Classify speed into a tier by its margin over the limit, or None when within it.

    Tiers partition margins (0, inf) without gaps or overlap:
    below speed_medium_margin is low, up to and including speed_high_margin
    is medium, anything larger is high.
    """
    margin = speed - thresholds.speed_limit
    if margin <= 0:
        return None
    if margin < thresholds.speed_medium_margin:
        return ViolationKind.SPEEDING_LOW
    if margin <= thresholds.speed_high_margin:
        return ViolationKind.SPEEDING_MEDIUM
    return ViolationKind.SPEEDING_HIGH


def evaluate(
    car_id: str,
    snapshot: TelemetrySnapshotV1,
    thresholds: ViolationThresholds,
    clock: Optional[Clock] = None,
) -> List[ViolationRecordV1]:
    """Evaluate every rule against the snapshot"""
    detected_at = (clock or SystemClock()).utc_now()
    violations: List[ViolationRecordV1] = []

    def record(kind: ViolationKind, details) -> None:
        violations.append(
            ViolationRecordV1(
                kind=kind,
                car_id=car_id,
                snapshot=snapshot,
                details=details,
                detected_at=detected_at,
            )
        )

    tier = speeding_tier(snapshot.speed, thresholds)
    if tier is not None:
        record(tier, SpeedingDetails(
            speed=snapshot.speed,
            limit=thresholds.speed_limit,
            margin=snapshot.speed - thresholds.speed_limit,
        ))

    if snapshot.rpm > thresholds.drift_rpm_limit and snapshot.handbrake:
        record(ViolationKind.DRIFT, DriftDetails(
            rpm=snapshot.rpm,
            rpm_limit=thresholds.drift_rpm_limit,
            handbrake=snapshot.handbrake,
        ))

    if snapshot.fuel < thresholds.low_fuel_limit:
        record(ViolationKind.LOW_FUEL, LowFuelDetails(
            fuel=snapshot.fuel,
            fuel_limit=thresholds.low_fuel_limit,
        ))

    if not snapshot.activated and not snapshot.locked and snapshot.engine_on and snapshot.speed != 0:
        record(ViolationKind.UNAUTHORIZED_MOVEMENT, UnauthorizedMovementDetails(
            speed=snapshot.speed,
            engine_on=snapshot.engine_on,
            locked=snapshot.locked,
            activated=snapshot.activated,
        ))

    return violations


class ViolationEngine:
    """Binds configured thresholds and a clock to evaluate()"""

    def __init__(self, thresholds: ViolationThresholds, clock: Optional[Clock] = None):
        self.thresholds = thresholds
        self.clock = clock or SystemClock()

    def check(self, car_id: str, snapshot: TelemetrySnapshotV1) -> List[ViolationRecordV1]:
        logger.info(f"Checking violations for car {car_id}")
        violations = evaluate(car_id, snapshot, self.thresholds, self.clock)
        if violations:
            logger.info(f"Detected {len(violations)} violations for car {car_id}: {[v.kind.value for v in violations]}")
        return violations
