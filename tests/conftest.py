"""
Pytest fixtures for DriveStream: fake broker, caches and wired services
"""

import pytest

from drivestream import main as ingestion_app
from drivestream import processing as processing_app
from drivestream.clock import FixedClock
from drivestream.config import TopicConfig, ViolationThresholds
from drivestream.history import InMemoryHistoryStore
from drivestream.ingestion import TelemetryIngestionService
from drivestream.publisher import EventPublisher
from drivestream.reliability import set_timeout_manager
from drivestream.state_cache import InMemoryStateCache
from drivestream.validation import TelemetryValidator
from drivestream.violations import ViolationEngine

from tests.fakes import FakeNATSClient


@pytest.fixture(autouse=True)
def reset_globals():
    """Isolate module-level state between tests"""
    set_timeout_manager(None)
    ingestion_app.reset_components()
    processing_app.reset_components()
    yield
    set_timeout_manager(None)
    ingestion_app.reset_components()
    processing_app.reset_components()


@pytest.fixture
def fixed_clock():
    """Fixed clock for deterministic testing"""
    return FixedClock()


@pytest.fixture
def thresholds():
    return ViolationThresholds(
        speed_limit=110,
        speed_medium_margin=20,
        speed_high_margin=40,
        drift_rpm_limit=5000,
        low_fuel_limit=2.0,
    )


@pytest.fixture
def topics():
    return TopicConfig()


@pytest.fixture
def fake_nats():
    return FakeNATSClient()


@pytest.fixture
def publisher(fake_nats, topics):
    return EventPublisher(fake_nats, topics)


@pytest.fixture
def ingestion_cache(fixed_clock):
    """Ingestion-side cache: entries never expire"""
    return InMemoryStateCache(clock=fixed_clock)


@pytest.fixture
def processing_cache(fixed_clock):
    """Processing-side cache: entries expire after a day"""
    return InMemoryStateCache(ttl_seconds=24 * 3600, clock=fixed_clock)


@pytest.fixture
def history_store():
    return InMemoryHistoryStore()


@pytest.fixture
def ingestion_service(publisher, ingestion_cache, thresholds, fixed_clock):
    return TelemetryIngestionService(
        publisher=publisher,
        cache=ingestion_cache,
        engine=ViolationEngine(thresholds, clock=fixed_clock),
        validator=TelemetryValidator(clock=fixed_clock),
    )
