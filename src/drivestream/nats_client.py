"""
NATS JetStream client for DriveStream
Streams, KV buckets and pull subscriptions with timeout enforcement
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import nats
import nats.errors
import nats.js.errors
from nats.js.api import AckPolicy, ConsumerConfig, DeliverPolicy, StreamConfig

from .clock import utc_now
from .config import NATSConfig, Settings
from .errors import TransportError
from .reliability import OperationTimeoutError, TimeoutCategory, get_timeout_manager

logger = logging.getLogger(__name__)

KEY_HEADER = "DriveStream-Key"
TRACE_HEADER = "DriveStream-Trace-Id"


@dataclass
class StreamSpec:
    """Desired shape of a JetStream stream"""
    name: str
    subject: str
    max_age: float
    max_bytes: int

    @property
    def wildcard(self) -> str:
        return f"{self.subject}.>"


def stream_specs(settings: Settings) -> List[StreamSpec]:
    """Streams required by the pipeline, derived from settings"""
    topics = settings.topics
    return [
        StreamSpec(
            name=topics.telemetry_stream,
            subject=topics.telemetry_subject,
            max_age=24 * 3600,  # 24 hours
            max_bytes=2 * 1024 * 1024 * 1024,  # 2GB
        ),
        StreamSpec(
            name=topics.violations_stream,
            subject=topics.violations_subject,
            max_age=30 * 24 * 3600,  # 30 days
            max_bytes=2 * 1024 * 1024 * 1024,  # 2GB
        ),
        StreamSpec(
            name=topics.history_stream,
            subject=topics.history_subject,
            max_age=settings.history.max_age_days * 24 * 3600,
            max_bytes=10 * 1024 * 1024 * 1024,  # 10GB
        ),
    ]


class DriveStreamNATSClient:
    """NATS JetStream client with timeout enforcement"""

    def __init__(self, config: NATSConfig):
        self.config = config
        self.nc: Optional[nats.NATS] = None
        self.js: Optional[nats.js.JetStreamContext] = None
        self.connected = False
        logger.info("DriveStreamNATSClient initialized")

    async def connect(self) -> bool:
        """Connect to NATS server with timeout enforcement"""
        timeout_mgr = get_timeout_manager()

        try:
            await timeout_mgr.execute_with_timeout(
                category=TimeoutCategory.NATS_CONNECT,
                operation="NATS connection establishment",
                coro=self._do_connect(),
            )
            logger.info(f"Connected to NATS at {self.config.url}")
            return True

        except OperationTimeoutError as e:
            logger.error(f"NATS connection timed out: {e}")
            return False
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            return False

    async def _do_connect(self) -> None:
        """Internal connection logic without timeout"""
        self.nc = await nats.connect(
            self.config.url,
            max_reconnect_attempts=self.config.max_reconnect_attempts,
            reconnect_time_wait=self.config.reconnect_wait,
            connect_timeout=self.config.connection_timeout,
            error_cb=self._error_handler,
            closed_cb=self._closed_handler,
        )
        self.js = self.nc.jetstream()
        self.connected = True

    async def disconnect(self) -> None:
        """Disconnect from NATS server"""
        if self.nc:
            try:
                await asyncio.wait_for(self.nc.drain(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("NATS drain timed out, forcing close")
                await self.nc.close()
            self.connected = False
            logger.info("Disconnected from NATS")

    def _require_js(self) -> nats.js.JetStreamContext:
        if not self.js or not self.connected:
            raise TransportError("Not connected to NATS")
        return self.js

    async def ensure_streams(self, specs: List[StreamSpec]) -> None:
        """Create missing streams and add missing subjects to existing ones"""
        timeout_mgr = get_timeout_manager()
        for spec in specs:
            try:
                await timeout_mgr.execute_with_timeout(
                    category=TimeoutCategory.NATS_STREAM_CREATE,
                    operation=f"Ensure stream {spec.name}",
                    coro=self._do_ensure_stream(spec),
                )
            except OperationTimeoutError as e:
                raise TransportError(f"Stream creation timed out: {e}") from e
            except TransportError:
                raise
            except Exception as e:
                logger.error(f"Failed to ensure stream {spec.name}: {e}")
                raise TransportError(f"Failed to ensure stream {spec.name}: {e}") from e

    async def _do_ensure_stream(self, spec: StreamSpec) -> None:
        """Internal stream creation logic without timeout"""
        js = self._require_js()
        config = StreamConfig(
            name=spec.name,
            subjects=[spec.wildcard],
            retention="limits",
            max_age=spec.max_age,
            max_bytes=spec.max_bytes,
            storage="file",
            num_replicas=1,
        )
        try:
            existing_stream = await js.stream_info(spec.name)
        except nats.js.errors.NotFoundError:
            logger.info(f"Creating new stream {spec.name}")
            await js.add_stream(config)
            logger.info(f"Created stream {spec.name}")
            return

        current_subjects = set(existing_stream.config.subjects or [])
        if spec.wildcard not in current_subjects:
            logger.info(f"Adding subject {spec.wildcard} to existing stream {spec.name}")
            current_subjects.add(spec.wildcard)
            config.subjects = sorted(current_subjects)
            await js.update_stream(config)
        else:
            logger.info(f"Stream {spec.name} already includes subject {spec.wildcard}")

    async def stream_exists(self, name: str) -> bool:
        """Check that a stream is reachable"""
        js = self._require_js()
        try:
            await get_timeout_manager().execute_with_timeout(
                category=TimeoutCategory.NATS_STREAM_INFO,
                operation=f"Stream info {name}",
                coro=js.stream_info(name),
            )
            return True
        except nats.js.errors.NotFoundError:
            return False
        except OperationTimeoutError as e:
            raise TransportError(f"Stream lookup timed out: {e}") from e
        except Exception as e:
            raise TransportError(f"Stream lookup for {name} failed: {e}") from e

    async def publish(self, subject: str, payload: bytes, headers: Optional[Dict[str, str]] = None) -> Any:
        """Publish to a JetStream subject and wait for the stream ack"""
        js = self._require_js()
        try:
            ack = await get_timeout_manager().execute_with_timeout(
                category=TimeoutCategory.NATS_PUBLISH,
                operation=f"Publish to {subject}",
                coro=js.publish(subject, payload, headers=headers),
            )
        except OperationTimeoutError as e:
            logger.error(f"Publish timed out: {e}")
            raise TransportError(str(e), subject=subject) from e
        except Exception as e:
            logger.error(f"Failed to publish to {subject}: {e}")
            raise TransportError(f"Failed to publish to {subject}: {e}", subject=subject) from e

        logger.debug(f"Published to {subject} (stream={ack.stream} seq={ack.seq})")
        return ack

    async def key_value(self, bucket: str, ttl: float = 0):
        """Create the KV bucket, or bind to it when it already exists"""
        js = self._require_js()
        timeout_mgr = get_timeout_manager()
        try:
            kv = await timeout_mgr.execute_with_timeout(
                category=TimeoutCategory.KV_CREATE,
                operation=f"Create KV bucket {bucket}",
                coro=js.create_key_value(bucket=bucket, history=1, ttl=ttl or None),
            )
            logger.info(f"Created KV bucket {bucket} (ttl={ttl or 'none'})")
            return kv
        except Exception as e:
            logger.info(f"KV bucket {bucket} not created ({e}), binding to existing bucket")

        try:
            kv = await timeout_mgr.execute_with_timeout(
                category=TimeoutCategory.KV_CREATE,
                operation=f"Bind KV bucket {bucket}",
                coro=js.key_value(bucket),
            )
        except Exception as e:
            logger.error(f"Failed to create/get KV bucket {bucket}: {e}")
            raise TransportError(f"KV bucket {bucket} unavailable: {e}") from e
        logger.info(f"Connected to existing KV bucket {bucket}")
        return kv

    async def pull_subscribe(self, subject: str, durable: str, stream: str, ack_wait: float = 60.0):
        """Durable pull subscription with explicit acks"""
        js = self._require_js()
        try:
            return await js.pull_subscribe(
                subject,
                durable=durable,
                stream=stream,
                config=ConsumerConfig(
                    ack_policy=AckPolicy.EXPLICIT,
                    deliver_policy=DeliverPolicy.ALL,
                    ack_wait=ack_wait,
                ),
            )
        except Exception as e:
            logger.error(f"Failed to subscribe to {subject}: {e}")
            raise TransportError(f"Failed to subscribe to {subject}: {e}", subject=subject) from e

    async def _error_handler(self, e):
        """Handle NATS errors"""
        logger.error(f"NATS error: {e}")

    async def _closed_handler(self):
        """Handle NATS connection closed"""
        logger.warning("NATS connection closed")
        self.connected = False


@dataclass
class BrokerMessage:
    """A message pulled from the raw telemetry stream"""
    key: str
    data: bytes
    received_at: datetime
    raw: Any = None


def message_key(subject: str, headers: Optional[Dict[str, str]]) -> str:
    """Message key: explicit header first, else the last subject token"""
    if headers and headers.get(KEY_HEADER):
        return headers[KEY_HEADER]
    return subject.rsplit(".", 1)[-1]


class JetStreamPullSource:
    """Adapts a JetStream pull subscription to the consumer's poll/commit cycle"""

    def __init__(self, subscription):
        self.subscription = subscription

    async def fetch(self, batch: int, timeout: float) -> List[BrokerMessage]:
        """Pull up to batch messages; an expired wait returns an empty list"""
        try:
            msgs = await self.subscription.fetch(batch=batch, timeout=timeout)
        except nats.errors.TimeoutError:
            return []
        except Exception as e:
            raise TransportError(f"Fetch failed: {e}") from e

        messages = []
        for msg in msgs:
            try:
                received_at = msg.metadata.timestamp
            except Exception as e:
                logger.debug(f"No JetStream metadata on {msg.subject}: {e}")
                received_at = None
            messages.append(BrokerMessage(
                key=message_key(msg.subject, msg.headers),
                data=msg.data,
                received_at=received_at or utc_now(),
                raw=msg,
            ))
        return messages

    async def commit(self, messages: List[BrokerMessage]) -> None:
        """Ack every message of the batch"""
        timeout_mgr = get_timeout_manager()
        for message in messages:
            try:
                await timeout_mgr.execute_with_timeout(
                    category=TimeoutCategory.NATS_ACK,
                    operation=f"Ack message for {message.key}",
                    coro=message.raw.ack(),
                )
            except Exception as e:
                raise TransportError(f"Ack failed for {message.key}: {e}") from e

    async def close(self) -> None:
        try:
            await self.subscription.unsubscribe()
        except Exception as e:
            logger.warning(f"Failed to unsubscribe pull consumer: {e}")
