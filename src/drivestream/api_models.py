"""
API Request/Response Models for the ingestion service

Contract-first models for FastAPI endpoints using Pydantic v2. The snapshot
itself lives in drivestream.models; these wrap it for the HTTP surface.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from .models import TelemetrySnapshotV1


class TelemetryReportV1(BaseModel):
    """Request model for POST /v1/telemetry

    The car identity is not part of the payload; it arrives in the
    X-Car-ID header set by the authenticating gateway.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    brand: str = Field(examples=["Toyota"], description="Vehicle brand")
    model: str = Field(examples=["Camry"], description="Vehicle model")
    year_of_manufacture: int = Field(examples=[2021], description="Manufacture year")
    odo: int = Field(description="Odometer reading, km")
    lat: float = Field(description="Latitude, degrees")
    lon: float = Field(description="Longitude, degrees")
    fuel: float = Field(description="Fuel level, percent")
    fuel_type: str = Field(examples=["95"], description="Fuel grade: diesel, 92, 95 or 98")
    speed: int = Field(description="Speed, km/h")
    engine_on: bool = Field(default=False, description="Engine running")
    rpm: int = Field(description="Engine revolutions per minute")
    locked: bool = Field(default=False, description="Doors locked")
    activated: bool = Field(default=False, description="Rental session active")
    handbrake: bool = Field(default=False, description="Handbrake engaged")
    observed_at: Optional[datetime] = Field(
        default=None,
        description="When the vehicle took the reading; receipt time is used when omitted",
    )

    def to_snapshot(self, car_id: str, received_at: datetime) -> TelemetrySnapshotV1:
        """Bind the report to an identity, producing a new snapshot value"""
        fields = self.model_dump(exclude={"observed_at"})
        return TelemetrySnapshotV1(
            car_id=car_id,
            observed_at=self.observed_at or received_at,
            **fields,
        )


class TelemetryAckV1(BaseModel):
    """Response model for POST /v1/telemetry"""

    model_config = ConfigDict(extra="forbid")

    message: str = Field(description="Human readable acknowledgement")
    car_id: str = Field(description="Car identifier from the transport context")
    trace_id: Optional[str] = Field(default=None, description="Trace identifier from request")
    changed: bool = Field(description="Whether the snapshot differed from the cached state")
    violations_published: int = Field(default=0, description="Violation events published")
    violations_failed: int = Field(default=0, description="Violation events that could not be published")
    processed_at: datetime = Field(description="When the request was processed")

    @field_serializer('processed_at')
    def serialize_datetime(self, value: datetime) -> str:
        return value.isoformat()


class ErrorResponseV1(BaseModel):
    """Typed error body returned for every failed call"""

    model_config = ConfigDict(extra="forbid")

    code: str = Field(description="Stable error classification")
    message: str = Field(description="Error message")
    details: Optional[Dict[str, List[str]]] = Field(default=None, description="Per-field validation errors")
    trace_id: Optional[str] = Field(default=None, description="Trace identifier from request")


class HealthResponseV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: str
    service: str
    checks: Dict[str, Any] = Field(default_factory=dict)
