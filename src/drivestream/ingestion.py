"""
Telemetry ingestion: validate, forward, dedup, detect violations
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .comparator import changed
from .errors import DriveStreamError, StateCacheError, TransportError
from .models import TelemetrySnapshotV1
from .publisher import EventPublisher
from .state_cache import StateCache
from .validation import TelemetryValidator, require_car_id
from .violations import ViolationEngine

logger = logging.getLogger(__name__)


@dataclass
class IngestOutcome:
    """What one ingest call did"""
    car_id: str
    changed: bool
    violations_published: int = 0
    violations_failed: int = 0


class TelemetryIngestionService:
    """Runs one ingest call end to end.

    Order of effects: validate, publish the raw snapshot, read the cached
    state, and only when the snapshot changed: write the cache, evaluate
    the rules and publish each violation. Validation failures happen before
    any effect.
    """

    def __init__(
        self,
        publisher: EventPublisher,
        cache: StateCache,
        engine: ViolationEngine,
        validator: Optional[TelemetryValidator] = None,
    ):
        self.publisher = publisher
        self.cache = cache
        self.engine = engine
        self.validator = validator or TelemetryValidator()

    async def process(
        self,
        car_id: Optional[str],
        snapshot: TelemetrySnapshotV1,
        trace_id: Optional[str] = None,
    ) -> IngestOutcome:
        """
        Ingest one snapshot

        Raises:
            UnauthenticatedError: identity missing
            InvalidArgumentError: snapshot out of range
            TransportError: raw publish failed
            StateCacheError: cache unreachable
        """
        car_id = require_car_id(car_id)
        if snapshot.car_id != car_id:
            snapshot = snapshot.model_copy(update={"car_id": car_id})
        self.validator.validate(snapshot)

        log_ctx = f"car={car_id} trace={trace_id}"
        logger.info(f"Start processing telemetry ({log_ctx})")

        try:
            await self.publisher.publish_telemetry(car_id, snapshot, trace_id=trace_id)
        except TransportError as e:
            logger.error(f"Error sending telemetry ({log_ctx}): {e}")
            raise

        try:
            previous = await self.cache.get(car_id)
        except StateCacheError as e:
            logger.error(f"Error getting car state ({log_ctx}): {e}")
            raise

        outcome = IngestOutcome(car_id=car_id, changed=changed(previous, snapshot))
        if not outcome.changed:
            logger.info(f"Telemetry unchanged, skipping cache write and violation check ({log_ctx})")
            return outcome

        try:
            await self.cache.set(car_id, snapshot)
        except StateCacheError as e:
            logger.error(f"Error setting car state ({log_ctx}): {e}")
            raise

        violations = self.engine.check(car_id, snapshot)
        for violation in violations:
            try:
                await self.publisher.publish_violation(violation, trace_id=trace_id)
                outcome.violations_published += 1
            except DriveStreamError as e:
                # Nothing persists the record locally, so a failed publish loses it
                outcome.violations_failed += 1
                logger.error(
                    f"[{e.code}] Violation {violation.kind.value} lost, publish failed ({log_ctx}): {e}"
                )

        logger.info(
            f"Processed telemetry ({log_ctx}): violations published={outcome.violations_published} "
            f"failed={outcome.violations_failed}"
        )
        return outcome
