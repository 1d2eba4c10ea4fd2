"""
Tests for the raw telemetry and violation publisher
"""

import json

import pytest

from drivestream.config import PARTITION_BY_CAR, TopicConfig
from drivestream.errors import TransportError
from drivestream.publisher import EventPublisher
from drivestream.violations import evaluate

from tests.factories import make_snapshot
from tests.fakes import FakeNATSClient


@pytest.mark.asyncio
async def test_start_requires_both_streams(topics):
    publisher = EventPublisher(FakeNATSClient(streams=("DRIVESTREAM_TELEMETRY_V1",)), topics)
    with pytest.raises(TransportError):
        await publisher.start()
    assert publisher.started is False


@pytest.mark.asyncio
async def test_start_returns_ready_publisher(publisher):
    assert await publisher.start() is publisher
    assert publisher.started is True


@pytest.mark.asyncio
async def test_telemetry_keyed_by_car(publisher, fake_nats):
    snapshot = make_snapshot("car-9")
    await publisher.publish_telemetry("car-9", snapshot)

    subject, payload, headers = fake_nats.published[0]
    assert subject == "drivestream.telemetry.raw.car-9"
    assert headers == {"DriveStream-Key": "car-9"}
    assert json.loads(payload) == json.loads(snapshot.model_dump_json())


@pytest.mark.asyncio
async def test_violations_keyed_by_kind_by_default(publisher, fake_nats, thresholds):
    snapshot = make_snapshot(speed=120, engine_on=True, locked=False)
    [record] = evaluate("car-9", snapshot, thresholds)

    assert publisher.violation_key(record) == "speeding_low"
    await publisher.publish_violation(record, trace_id="t-1")

    subject, _, headers = fake_nats.published[0]
    assert subject == "drivestream.telemetry.violations.speeding_low"
    assert headers == {"DriveStream-Key": "speeding_low", "DriveStream-Trace-Id": "t-1"}


@pytest.mark.asyncio
async def test_violations_keyed_by_car_when_configured(fake_nats, thresholds):
    publisher = EventPublisher(fake_nats, TopicConfig(violation_partition_key=PARTITION_BY_CAR))
    [record] = evaluate("car-9", make_snapshot(fuel=0.5), thresholds)

    await publisher.publish_violation(record)
    assert fake_nats.subjects() == ["drivestream.telemetry.violations.car-9"]


@pytest.mark.asyncio
async def test_publish_failure_propagates(publisher, fake_nats):
    fake_nats.fail_subjects("drivestream.telemetry.raw")
    with pytest.raises(TransportError) as exc_info:
        await publisher.publish_telemetry("car-1", make_snapshot("car-1"))
    assert exc_info.value.subject == "drivestream.telemetry.raw.car-1"
