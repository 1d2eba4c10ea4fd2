"""
Event publisher for the raw telemetry and violations subjects
"""

import logging
from typing import Dict, Optional

from .config import PARTITION_BY_CAR, TopicConfig
from .errors import TransportError
from .models import TelemetrySnapshotV1, ViolationRecordV1
from .nats_client import KEY_HEADER, TRACE_HEADER

logger = logging.getLogger(__name__)


class EventPublisher:
    """Publishes snapshots and violation records onto two independent streams.

    The message key is the last subject token: the car id for telemetry and,
    by default, the violation kind for violations. JetStream keeps per-subject
    order, so each key is its own ordering domain.
    """

    def __init__(self, nats_client, topics: TopicConfig):
        self.nats_client = nats_client
        self.topics = topics
        self.started = False

    async def start(self) -> "EventPublisher":
        """Fail fast unless both target streams are reachable"""
        for stream in (self.topics.telemetry_stream, self.topics.violations_stream):
            if not await self.nats_client.stream_exists(stream):
                raise TransportError(f"stream {stream} not available")
        self.started = True
        logger.info(
            f"EventPublisher ready (telemetry={self.topics.telemetry_subject}, "
            f"violations={self.topics.violations_subject}, key={self.topics.violation_partition_key})"
        )
        return self

    def _headers(self, key: str, trace_id: Optional[str]) -> Dict[str, str]:
        headers = {KEY_HEADER: key}
        if trace_id:
            headers[TRACE_HEADER] = trace_id
        return headers

    def violation_key(self, record: ViolationRecordV1) -> str:
        if self.topics.violation_partition_key == PARTITION_BY_CAR:
            return record.car_id
        return record.kind.value

    async def publish_telemetry(self, car_id: str, snapshot: TelemetrySnapshotV1,
                                trace_id: Optional[str] = None) -> None:
        subject = f"{self.topics.telemetry_subject}.{car_id}"
        await self.nats_client.publish(
            subject,
            snapshot.model_dump_json().encode(),
            headers=self._headers(car_id, trace_id),
        )
        logger.info(f"Telemetry sent for car {car_id}")

    async def publish_violation(self, record: ViolationRecordV1, trace_id: Optional[str] = None) -> None:
        key = self.violation_key(record)
        subject = f"{self.topics.violations_subject}.{key}"
        await self.nats_client.publish(
            subject,
            record.model_dump_json().encode(),
            headers=self._headers(key, trace_id),
        )
        logger.info(f"Violation {record.kind.value} sent for car {record.car_id}")
