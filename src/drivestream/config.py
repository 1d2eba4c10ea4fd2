"""
Runtime configuration for the ingestion and processing services

Settings are read from environment variables once at startup and validated
before any connection is opened.
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

PARTITION_BY_KIND = "kind"
PARTITION_BY_CAR = "car_id"


@dataclass
class NATSConfig:
    """NATS configuration"""
    url: str = "nats://localhost:4222"
    max_reconnect_attempts: int = 5
    reconnect_wait: float = 2.0
    connection_timeout: float = 10.0


@dataclass
class TopicConfig:
    """Subject prefixes and stream names; the message key is appended as the last token"""
    telemetry_subject: str = "drivestream.telemetry.raw"
    telemetry_stream: str = "DRIVESTREAM_TELEMETRY_V1"
    violations_subject: str = "drivestream.telemetry.violations"
    violations_stream: str = "DRIVESTREAM_VIOLATIONS_V1"
    history_subject: str = "drivestream.telemetry.history"
    history_stream: str = "DRIVESTREAM_HISTORY_V1"
    violation_partition_key: str = PARTITION_BY_KIND


@dataclass
class ViolationThresholds:
    """Rule engine thresholds; speed tiers are margins over speed_limit, km/h"""
    speed_limit: int = 110
    speed_medium_margin: int = 20
    speed_high_margin: int = 40
    drift_rpm_limit: int = 5000
    low_fuel_limit: float = 2.0


@dataclass
class CacheConfig:
    """Current-state cache buckets. ttl of 0 means entries never expire."""
    ingestion_bucket: str = "DRIVESTREAM_STATE_INGEST"
    ingestion_ttl_seconds: float = 0
    processing_bucket: str = "DRIVESTREAM_STATE_PROCESSING"
    processing_ttl_seconds: float = 24 * 3600
    key_prefix: str = "car.state."


@dataclass
class ProcessorConfig:
    """Stream consumer loop configuration"""
    batch_size: int = 1
    worker_pool_size: int = 1
    poll_timeout: float = 15.0
    idle_interval: float = 0.1
    consumer_name: str = "telemetry-processor"
    health_port: int = 8081  # 0 disables the health endpoints


@dataclass
class HistoryConfig:
    max_age_days: int = 365


@dataclass
class AppConfig:
    log_level: str = "INFO"
    http_host: str = "0.0.0.0"
    http_port: int = 8000


@dataclass
class Settings:
    """Complete service settings"""
    nats: NATSConfig = field(default_factory=NATSConfig)
    topics: TopicConfig = field(default_factory=TopicConfig)
    thresholds: ViolationThresholds = field(default_factory=ViolationThresholds)
    cache: CacheConfig = field(default_factory=CacheConfig)
    processor: ProcessorConfig = field(default_factory=ProcessorConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    app: AppConfig = field(default_factory=AppConfig)

    def validate(self) -> "Settings":
        """Raise ConfigurationError for inconsistent values"""
        t = self.thresholds
        if t.speed_limit <= 0:
            raise ConfigurationError("VIOLATION_SPEED_LIMIT must be positive")
        if not (0 < t.speed_medium_margin <= t.speed_high_margin):
            raise ConfigurationError(
                "speed tiers must satisfy 0 < VIOLATION_SPEED_MEDIUM_MARGIN <= VIOLATION_SPEED_HIGH_MARGIN "
                f"(got {t.speed_medium_margin}, {t.speed_high_margin})"
            )
        if t.drift_rpm_limit <= 0:
            raise ConfigurationError("VIOLATION_DRIFT_RPM_LIMIT must be positive")
        if t.low_fuel_limit < 0 or t.low_fuel_limit > 100:
            raise ConfigurationError("VIOLATION_LOW_FUEL_LIMIT must be between 0 and 100")

        p = self.processor
        if p.batch_size < 1:
            raise ConfigurationError("PROCESSOR_BATCH_SIZE must be at least 1")
        if p.worker_pool_size < 1:
            raise ConfigurationError("PROCESSOR_WORKER_POOL_SIZE must be at least 1")
        if p.poll_timeout <= 0:
            raise ConfigurationError("PROCESSOR_POLL_TIMEOUT must be positive")
        if p.idle_interval < 0:
            raise ConfigurationError("PROCESSOR_IDLE_INTERVAL must not be negative")
        if not 0 <= p.health_port <= 65535:
            raise ConfigurationError("PROCESSOR_HEALTH_PORT must be between 0 and 65535")

        if self.topics.violation_partition_key not in (PARTITION_BY_KIND, PARTITION_BY_CAR):
            raise ConfigurationError(
                f"VIOLATION_PARTITION_KEY must be '{PARTITION_BY_KIND}' or '{PARTITION_BY_CAR}'"
            )
        if self.cache.ingestion_ttl_seconds < 0 or self.cache.processing_ttl_seconds < 0:
            raise ConfigurationError("cache TTLs must not be negative")
        if self.history.max_age_days < 1:
            raise ConfigurationError("HISTORY_MAX_AGE_DAYS must be at least 1")
        return self

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _get(env: Mapping[str, str], key: str, default: str) -> str:
    value = env.get(key)
    if value is None or value == "":
        return default
    return value


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"error parsing int from env {key}: {raw!r}")


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"error parsing float from env {key}: {raw!r}")


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build validated Settings from the environment"""
    env = os.environ if env is None else env

    settings = Settings(
        nats=NATSConfig(
            url=_get(env, "NATS_URL", "nats://localhost:4222"),
            max_reconnect_attempts=_get_int(env, "NATS_MAX_RECONNECT_ATTEMPTS", 5),
            reconnect_wait=_get_float(env, "NATS_RECONNECT_WAIT", 2.0),
            connection_timeout=_get_float(env, "NATS_CONNECT_TIMEOUT", 10.0),
        ),
        topics=TopicConfig(
            telemetry_subject=_get(env, "DRIVESTREAM_TELEMETRY_SUBJECT", "drivestream.telemetry.raw"),
            violations_subject=_get(env, "DRIVESTREAM_VIOLATIONS_SUBJECT", "drivestream.telemetry.violations"),
            history_subject=_get(env, "DRIVESTREAM_HISTORY_SUBJECT", "drivestream.telemetry.history"),
            violation_partition_key=_get(env, "VIOLATION_PARTITION_KEY", PARTITION_BY_KIND),
        ),
        thresholds=ViolationThresholds(
            speed_limit=_get_int(env, "VIOLATION_SPEED_LIMIT", 110),
            speed_medium_margin=_get_int(env, "VIOLATION_SPEED_MEDIUM_MARGIN", 20),
            speed_high_margin=_get_int(env, "VIOLATION_SPEED_HIGH_MARGIN", 40),
            drift_rpm_limit=_get_int(env, "VIOLATION_DRIFT_RPM_LIMIT", 5000),
            low_fuel_limit=_get_float(env, "VIOLATION_LOW_FUEL_LIMIT", 2.0),
        ),
        cache=CacheConfig(
            processing_ttl_seconds=_get_float(env, "PROCESSOR_CACHE_TTL", 24 * 3600),
        ),
        processor=ProcessorConfig(
            batch_size=_get_int(env, "PROCESSOR_BATCH_SIZE", 1),
            worker_pool_size=_get_int(env, "PROCESSOR_WORKER_POOL_SIZE", 1),
            poll_timeout=_get_float(env, "PROCESSOR_POLL_TIMEOUT", 15.0),
            idle_interval=_get_float(env, "PROCESSOR_IDLE_INTERVAL", 0.1),
            consumer_name=_get(env, "PROCESSOR_CONSUMER_NAME", "telemetry-processor"),
            health_port=_get_int(env, "PROCESSOR_HEALTH_PORT", 8081),
        ),
        history=HistoryConfig(
            max_age_days=_get_int(env, "HISTORY_MAX_AGE_DAYS", 365),
        ),
        app=AppConfig(
            log_level=_get(env, "LOG_LEVEL", "INFO").upper(),
            http_host=_get(env, "HTTP_HOST", "0.0.0.0"),
            http_port=_get_int(env, "HTTP_PORT", 8000),
        ),
    )
    settings.validate()
    logger.info(
        f"Settings loaded: nats={settings.nats.url} batch_size={settings.processor.batch_size} "
        f"workers={settings.processor.worker_pool_size} partition_key={settings.topics.violation_partition_key}"
    )
    return settings
