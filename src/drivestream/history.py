"""
Append-only telemetry history

One record per consumed message. Records are never updated or deleted here
and carry no dedup key, so a redelivered message yields a second record.
"""

import logging
from datetime import datetime
from typing import Dict, List

from .errors import HistoryStoreError, TransportError
from .models import HistoryRecordV1, TelemetrySnapshotV1
from .nats_client import KEY_HEADER

logger = logging.getLogger(__name__)


class HistoryStore:
    """Interface for history sinks"""

    async def append(self, snapshot: TelemetrySnapshotV1, car_id: str, received_at: datetime) -> HistoryRecordV1:
        raise NotImplementedError


class InMemoryHistoryStore(HistoryStore):
    """Ordered in-process history, used by tests and local runs"""

    def __init__(self):
        self.records: List[HistoryRecordV1] = []
        self._by_car: Dict[str, List[HistoryRecordV1]] = {}

    async def append(self, snapshot: TelemetrySnapshotV1, car_id: str, received_at: datetime) -> HistoryRecordV1:
        record = HistoryRecordV1.from_snapshot(snapshot, car_id, received_at)
        self.records.append(record)
        self._by_car.setdefault(car_id, []).append(record)
        return record

    def records_for(self, car_id: str) -> List[HistoryRecordV1]:
        return list(self._by_car.get(car_id, []))

    def __len__(self) -> int:
        return len(self.records)


class JetStreamHistoryStore(HistoryStore):
    """History rows published to a limits-retention JetStream stream"""

    def __init__(self, nats_client, subject_prefix: str):
        self.nats_client = nats_client
        self.subject_prefix = subject_prefix

    async def append(self, snapshot: TelemetrySnapshotV1, car_id: str, received_at: datetime) -> HistoryRecordV1:
        record = HistoryRecordV1.from_snapshot(snapshot, car_id, received_at)
        subject = f"{self.subject_prefix}.{car_id}"
        try:
            # No Nats-Msg-Id header: duplicates must be kept
            await self.nats_client.publish(
                subject,
                record.model_dump_json().encode(),
                headers={KEY_HEADER: car_id},
            )
        except TransportError as e:
            logger.error(f"Error saving telemetry history for car {car_id}: {e}")
            raise HistoryStoreError(f"failed to append history for {car_id}: {e.message}") from e
        logger.info(f"Telemetry history saved for car {car_id}")
        return record
