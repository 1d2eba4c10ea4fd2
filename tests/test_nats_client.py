"""
Tests for the JetStream adapter with a mocked JetStream context
"""

import asyncio
from datetime import timezone
from unittest.mock import AsyncMock, Mock

import nats.errors
import nats.js.errors
import pytest

from drivestream.config import NATSConfig, Settings
from drivestream.errors import TransportError
from drivestream.nats_client import (
    KEY_HEADER,
    DriveStreamNATSClient,
    JetStreamPullSource,
    StreamSpec,
    message_key,
    stream_specs,
)
from drivestream.reliability import TimeoutConfig, TimeoutManager, set_timeout_manager

from tests.factories import OBSERVED_AT

pytestmark = pytest.mark.broker


def connected_client():
    client = DriveStreamNATSClient(NATSConfig())
    client.js = AsyncMock()
    client.connected = True
    return client


def test_stream_specs_cover_all_subjects():
    specs = {spec.name: spec for spec in stream_specs(Settings())}
    assert set(specs) == {"DRIVESTREAM_TELEMETRY_V1", "DRIVESTREAM_VIOLATIONS_V1", "DRIVESTREAM_HISTORY_V1"}
    assert specs["DRIVESTREAM_TELEMETRY_V1"].wildcard == "drivestream.telemetry.raw.>"
    assert specs["DRIVESTREAM_HISTORY_V1"].max_age == 365 * 24 * 3600


def test_message_key_prefers_header():
    assert message_key("drivestream.telemetry.raw.car-1", None) == "car-1"
    assert message_key("drivestream.telemetry.raw.car-1", {KEY_HEADER: "car-2"}) == "car-2"


@pytest.mark.asyncio
async def test_publish_requires_connection():
    client = DriveStreamNATSClient(NATSConfig())
    with pytest.raises(TransportError):
        await client.publish("drivestream.telemetry.raw.car-1", b"{}")


@pytest.mark.asyncio
async def test_publish_passes_headers():
    client = connected_client()
    client.js.publish.return_value = Mock(stream="DRIVESTREAM_TELEMETRY_V1", seq=7)

    ack = await client.publish("drivestream.telemetry.raw.car-1", b"{}", headers={KEY_HEADER: "car-1"})

    assert ack.seq == 7
    client.js.publish.assert_awaited_once_with(
        "drivestream.telemetry.raw.car-1", b"{}", headers={KEY_HEADER: "car-1"}
    )


@pytest.mark.asyncio
async def test_publish_failure_is_transport_error():
    client = connected_client()
    client.js.publish.side_effect = nats.errors.NoRespondersError()
    with pytest.raises(TransportError) as exc_info:
        await client.publish("drivestream.telemetry.raw.car-1", b"{}")
    assert exc_info.value.subject == "drivestream.telemetry.raw.car-1"


@pytest.mark.asyncio
async def test_publish_timeout_is_transport_error():
    set_timeout_manager(TimeoutManager(TimeoutConfig(nats_publish=0.01)))
    client = connected_client()

    async def hang(*args, **kwargs):
        await asyncio.sleep(1)

    client.js.publish.side_effect = hang
    with pytest.raises(TransportError):
        await client.publish("drivestream.telemetry.raw.car-1", b"{}")


@pytest.mark.asyncio
async def test_ensure_streams_creates_missing_stream():
    client = connected_client()
    client.js.stream_info.side_effect = nats.js.errors.NotFoundError()

    await client.ensure_streams([StreamSpec("DRIVESTREAM_TELEMETRY_V1", "drivestream.telemetry.raw", 3600, 1024)])

    config = client.js.add_stream.await_args.args[0]
    assert config.name == "DRIVESTREAM_TELEMETRY_V1"
    assert config.subjects == ["drivestream.telemetry.raw.>"]


@pytest.mark.asyncio
async def test_ensure_streams_adds_subject_to_existing_stream():
    client = connected_client()
    client.js.stream_info.return_value = Mock(config=Mock(subjects=["legacy.>"]))

    await client.ensure_streams([StreamSpec("DRIVESTREAM_TELEMETRY_V1", "drivestream.telemetry.raw", 3600, 1024)])

    client.js.add_stream.assert_not_awaited()
    config = client.js.update_stream.await_args.args[0]
    assert config.subjects == ["drivestream.telemetry.raw.>", "legacy.>"]


@pytest.mark.asyncio
async def test_stream_exists():
    client = connected_client()
    assert await client.stream_exists("DRIVESTREAM_TELEMETRY_V1") is True
    client.js.stream_info.side_effect = nats.js.errors.NotFoundError()
    assert await client.stream_exists("DRIVESTREAM_TELEMETRY_V1") is False


@pytest.mark.asyncio
async def test_key_value_binds_existing_bucket():
    client = connected_client()
    bucket = Mock()
    client.js.create_key_value.side_effect = nats.js.errors.BadRequestError()
    client.js.key_value.return_value = bucket

    assert await client.key_value("DRIVESTREAM_STATE_INGEST") is bucket
    client.js.key_value.assert_awaited_once_with("DRIVESTREAM_STATE_INGEST")


@pytest.mark.asyncio
async def test_key_value_unavailable():
    client = connected_client()
    client.js.create_key_value.side_effect = nats.js.errors.BadRequestError()
    client.js.key_value.side_effect = nats.js.errors.BucketNotFoundError()
    with pytest.raises(TransportError):
        await client.key_value("DRIVESTREAM_STATE_INGEST")


def raw_message(car_id, data=b"{}"):
    msg = Mock()
    msg.subject = f"drivestream.telemetry.raw.{car_id}"
    msg.headers = {KEY_HEADER: car_id}
    msg.data = data
    msg.metadata = Mock(timestamp=OBSERVED_AT)
    msg.ack = AsyncMock()
    return msg


@pytest.mark.asyncio
async def test_pull_source_expired_wait_is_empty():
    subscription = Mock()
    subscription.fetch = AsyncMock(side_effect=nats.errors.TimeoutError())
    assert await JetStreamPullSource(subscription).fetch(1, 0.1) == []


@pytest.mark.asyncio
async def test_pull_source_fetch_failure():
    subscription = Mock()
    subscription.fetch = AsyncMock(side_effect=nats.errors.ConnectionClosedError())
    with pytest.raises(TransportError):
        await JetStreamPullSource(subscription).fetch(1, 0.1)


@pytest.mark.asyncio
async def test_pull_source_fetch_and_commit():
    first, second = raw_message("car-1"), raw_message("car-2")
    subscription = Mock()
    subscription.fetch = AsyncMock(return_value=[first, second])
    source = JetStreamPullSource(subscription)

    messages = await source.fetch(2, 0.1)

    subscription.fetch.assert_awaited_once_with(batch=2, timeout=0.1)
    assert [m.key for m in messages] == ["car-1", "car-2"]
    assert messages[0].received_at == OBSERVED_AT
    assert messages[0].received_at.tzinfo == timezone.utc

    await source.commit(messages)
    first.ack.assert_awaited_once()
    second.ack.assert_awaited_once()


@pytest.mark.asyncio
async def test_pull_source_ack_failure():
    message = raw_message("car-1")
    message.ack.side_effect = nats.errors.ConnectionClosedError()
    subscription = Mock()
    subscription.fetch = AsyncMock(return_value=[message])
    source = JetStreamPullSource(subscription)

    messages = await source.fetch(1, 0.1)
    with pytest.raises(TransportError):
        await source.commit(messages)
