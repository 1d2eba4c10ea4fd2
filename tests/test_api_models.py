"""
Tests for API request/response models
"""

import pytest
from pydantic import ValidationError

from drivestream.api_models import ErrorResponseV1, TelemetryReportV1

from tests.factories import OBSERVED_AT, make_report_payload


def test_report_binds_identity():
    report = TelemetryReportV1(**make_report_payload())
    snapshot = report.to_snapshot("car-5", received_at=OBSERVED_AT.replace(hour=19))
    assert snapshot.car_id == "car-5"
    assert snapshot.observed_at == OBSERVED_AT


def test_report_without_observed_at_uses_receipt_time():
    payload = make_report_payload()
    del payload["observed_at"]
    received_at = OBSERVED_AT.replace(hour=19)
    snapshot = TelemetryReportV1(**payload).to_snapshot("car-5", received_at)
    assert snapshot.observed_at == received_at


def test_report_flags_default_to_false():
    payload = make_report_payload()
    for flag in ("engine_on", "locked", "activated", "handbrake"):
        del payload[flag]
    report = TelemetryReportV1(**payload)
    assert not (report.engine_on or report.locked or report.activated or report.handbrake)


def test_report_rejects_car_id_in_body():
    with pytest.raises(ValidationError):
        TelemetryReportV1(**make_report_payload(car_id="car-5"))


def test_error_response_shape():
    error = ErrorResponseV1(code="INVALID_ARGUMENT", message="invalid telemetry data",
                            details={"speed": ["must be between 0 and 300"]})
    assert error.model_dump(exclude_none=True) == {
        "code": "INVALID_ARGUMENT",
        "message": "invalid telemetry data",
        "details": {"speed": ["must be between 0 and 300"]},
    }
