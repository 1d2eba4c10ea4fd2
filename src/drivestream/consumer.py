"""
Stream consumer for the raw telemetry stream

Each cycle runs Idle -> Polling -> Processing -> Committing -> Idle. The
whole batch is acked after processing whatever the per-message outcome, so
delivery is at-least-once: a crash before the ack redelivers the batch and
the history gets duplicate rows. Cache writes are idempotent, so the cached
state converges regardless.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol

from pydantic import ValidationError

from .comparator import changed
from .config import ProcessorConfig
from .errors import ConsumerFatalError, DriveStreamError, TransportError
from .history import HistoryStore
from .models import TelemetrySnapshotV1
from .nats_client import BrokerMessage
from .state_cache import StateCache

logger = logging.getLogger(__name__)


class ConsumerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    PROCESSING = "processing"
    COMMITTING = "committing"
    STOPPED = "stopped"


class MessageSource(Protocol):
    async def fetch(self, batch: int, timeout: float) -> List[BrokerMessage]:
        ...

    async def commit(self, messages: List[BrokerMessage]) -> None:
        ...


class MessageStatus(str, Enum):
    STORED = "stored"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class BatchResult:
    """Per-batch counters"""
    received: int = 0
    stored: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass
class ConsumerStats:
    cycles: int = 0
    idle_cycles: int = 0
    batches: int = 0
    cache_updates: int = 0
    totals: BatchResult = field(default_factory=BatchResult)


class StreamConsumer:
    """Polls raw telemetry, refreshes the processing cache and appends history"""

    def __init__(
        self,
        source: MessageSource,
        cache: StateCache,
        history: HistoryStore,
        config: Optional[ProcessorConfig] = None,
    ):
        self.source = source
        self.cache = cache
        self.history = history
        self.config = config or ProcessorConfig()
        self.state = ConsumerState.IDLE
        self.stats = ConsumerStats()
        self._workers = asyncio.Semaphore(self.config.worker_pool_size)
        logger.info(
            f"StreamConsumer initialized (batch_size={self.config.batch_size}, "
            f"workers={self.config.worker_pool_size}, poll_timeout={self.config.poll_timeout}s)"
        )

    def _decode(self, message: BrokerMessage) -> Optional[TelemetrySnapshotV1]:
        try:
            snapshot = TelemetrySnapshotV1.model_validate_json(message.data)
        except ValidationError as e:
            logger.error(f"Error unmarshaling message for key {message.key}: {e.error_count()} errors, skipping")
            return None
        if snapshot.car_id != message.key:
            logger.warning(f"Payload car_id {snapshot.car_id} differs from message key {message.key}, using key")
            snapshot = snapshot.model_copy(update={"car_id": message.key})
        return snapshot

    async def process_message(self, message: BrokerMessage) -> MessageStatus:
        """Process one message; failures are logged and reported, never raised"""
        snapshot = self._decode(message)
        if snapshot is None:
            return MessageStatus.SKIPPED
        car_id = snapshot.car_id

        try:
            previous = await self.cache.get(car_id)
            if changed(previous, snapshot):
                await self.cache.set(car_id, snapshot)
                self.stats.cache_updates += 1
        except DriveStreamError as e:
            logger.error(f"Error updating cached state for car {car_id}: {e}")
            return MessageStatus.FAILED

        try:
            await self.history.append(snapshot, car_id, message.received_at)
        except DriveStreamError as e:
            logger.error(f"Error saving telemetry to history for car {car_id}: {e}")
            return MessageStatus.FAILED

        return MessageStatus.STORED

    async def _process_car(self, messages: List[BrokerMessage]) -> List[MessageStatus]:
        async with self._workers:
            return [await self.process_message(message) for message in messages]

    async def process_batch(self, messages: List[BrokerMessage]) -> BatchResult:
        """Process a batch; messages for the same car keep their arrival order"""
        by_car: Dict[str, List[BrokerMessage]] = OrderedDict()
        for message in messages:
            by_car.setdefault(message.key, []).append(message)

        if self.config.worker_pool_size == 1 or len(by_car) == 1:
            groups = [await self._process_car(group) for group in by_car.values()]
        else:
            groups = await asyncio.gather(*(self._process_car(group) for group in by_car.values()))

        result = BatchResult(received=len(messages))
        for statuses in groups:
            for status in statuses:
                if status is MessageStatus.STORED:
                    result.stored += 1
                elif status is MessageStatus.SKIPPED:
                    result.skipped += 1
                else:
                    result.failed += 1
        return result

    async def run_once(self) -> Optional[BatchResult]:
        """One poll cycle. Returns None when the poll came back empty."""
        self.stats.cycles += 1
        self.state = ConsumerState.POLLING
        try:
            messages = await self.source.fetch(self.config.batch_size, self.config.poll_timeout)
        except TransportError as e:
            self.state = ConsumerState.STOPPED
            logger.error(f"Error getting messages from broker: {e}")
            raise ConsumerFatalError(f"poll failed: {e.message}") from e

        if not messages:
            self.state = ConsumerState.IDLE
            self.stats.idle_cycles += 1
            return None

        logger.info(f"Fetched {len(messages)} messages")
        self.state = ConsumerState.PROCESSING
        result = await self.process_batch(messages)

        self.state = ConsumerState.COMMITTING
        try:
            await self.source.commit(messages)
        except TransportError as e:
            self.state = ConsumerState.STOPPED
            logger.error(f"Error committing {len(messages)} messages: {e}")
            raise ConsumerFatalError(f"commit failed: {e.message}") from e

        self.state = ConsumerState.IDLE
        self.stats.batches += 1
        totals = self.stats.totals
        totals.received += result.received
        totals.stored += result.stored
        totals.skipped += result.skipped
        totals.failed += result.failed
        logger.info(
            f"Committed batch: received={result.received} stored={result.stored} "
            f"skipped={result.skipped} failed={result.failed}"
        )
        return result

    async def run(self, stop: asyncio.Event) -> None:
        """Loop until stop is set; the current batch always completes first"""
        logger.info("Starting telemetry processing")
        try:
            while not stop.is_set():
                result = await self.run_once()
                if result is None:
                    logger.debug(f"No new messages, sleeping {self.config.idle_interval}s")
                    try:
                        await asyncio.wait_for(stop.wait(), timeout=self.config.idle_interval)
                    except asyncio.TimeoutError:
                        pass
        finally:
            self.state = ConsumerState.STOPPED
            logger.info("Shutting down telemetry processing")
