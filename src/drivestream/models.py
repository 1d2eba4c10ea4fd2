"""
DriveStream v1 Pydantic Models

Canonical contract models for the telemetry pipeline. These are the payloads
carried on the broker subjects and stored in the caches and history stream,
so field names are stable snake_case and must not be renamed.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class FuelType(str, Enum):
    """Fuel grades accepted at ingest"""
    DIESEL = "diesel"
    AI92 = "92"
    AI95 = "95"
    AI98 = "98"


class ViolationKind(str, Enum):
    """Violation kinds emitted by the rule engine"""
    SPEEDING_LOW = "speeding_low"
    SPEEDING_MEDIUM = "speeding_medium"
    SPEEDING_HIGH = "speeding_high"
    DRIFT = "drift"
    LOW_FUEL = "low_fuel"
    UNAUTHORIZED_MOVEMENT = "unauthorized_movement"


class TelemetrySnapshotV1(BaseModel):
    """One vehicle's instantaneous state. Immutable once built."""

    model_config = ConfigDict(extra="forbid", frozen=True, str_strip_whitespace=True)

    car_id: str = Field(description="Car identifier, taken from the authenticated transport context")
    brand: str = Field(examples=["Toyota"], description="Vehicle brand")
    model: str = Field(examples=["Camry"], description="Vehicle model")
    year_of_manufacture: int = Field(examples=[2021], description="Manufacture year")
    odo: int = Field(description="Odometer reading, km")
    lat: float = Field(description="Latitude, degrees")
    lon: float = Field(description="Longitude, degrees")
    fuel: float = Field(description="Fuel level, percent")
    fuel_type: str = Field(examples=["95"], description="Fuel grade")
    speed: int = Field(description="Speed, km/h")
    engine_on: bool = Field(description="Engine running")
    rpm: int = Field(description="Engine revolutions per minute")
    locked: bool = Field(description="Doors locked")
    activated: bool = Field(description="Rental session active")
    handbrake: bool = Field(description="Handbrake engaged")
    observed_at: datetime = Field(description="When the vehicle took the reading")

    @field_serializer('observed_at')
    def serialize_observed_at(self, value: datetime) -> str:
        return value.isoformat()


class SpeedingDetails(BaseModel):
    """Measured speed against the configured limit"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["speeding"] = "speeding"
    speed: int
    limit: int
    margin: int


class DriftDetails(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["drift"] = "drift"
    rpm: int
    rpm_limit: int
    handbrake: bool


class LowFuelDetails(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["low_fuel"] = "low_fuel"
    fuel: float
    fuel_limit: float


class UnauthorizedMovementDetails(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["unauthorized_movement"] = "unauthorized_movement"
    speed: int
    engine_on: bool
    locked: bool
    activated: bool


ViolationDetails = Annotated[
    Union[SpeedingDetails, DriftDetails, LowFuelDetails, UnauthorizedMovementDetails],
    Field(discriminator="type"),
]


class ViolationRecordV1(BaseModel):
    """A policy breach derived from a single snapshot"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    schema_version: str = Field(default="1.0.0", description="Schema version")
    kind: ViolationKind = Field(description="Violation kind")
    car_id: str = Field(description="Car identifier")
    snapshot: TelemetrySnapshotV1 = Field(description="Full triggering snapshot, kept for audit")
    details: ViolationDetails = Field(description="Kind-specific measurements")
    detected_at: datetime = Field(description="When the rule engine produced the record")

    @field_serializer('detected_at')
    def serialize_detected_at(self, value: datetime) -> str:
        return value.isoformat()


class HistoryRecordV1(BaseModel):
    """Append-only copy of a consumed snapshot plus its receipt time"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    schema_version: str = Field(default="1.0.0", description="Schema version")
    car_id: str
    brand: str
    model: str
    year_of_manufacture: int
    odo: int
    lat: float
    lon: float
    fuel: float
    fuel_type: str
    speed: int
    engine_on: bool
    rpm: int
    locked: bool
    activated: bool
    handbrake: bool
    observed_at: datetime
    received_at: datetime

    @field_serializer('observed_at', 'received_at')
    def serialize_datetime(self, value: datetime) -> str:
        return value.isoformat()

    @classmethod
    def from_snapshot(cls, snapshot: TelemetrySnapshotV1, car_id: str, received_at: datetime) -> "HistoryRecordV1":
        fields = snapshot.model_dump(exclude={"car_id"})
        return cls(car_id=car_id, received_at=received_at, **fields)

    def to_snapshot(self) -> TelemetrySnapshotV1:
        return TelemetrySnapshotV1(**self.model_dump(exclude={"schema_version", "received_at"}))
