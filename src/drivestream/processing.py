"""
Processing service runner: wires the stream consumer to NATS and runs it
until a shutdown signal arrives or the broker fails.

GET /health/liveness and /health/readiness are served next to the consumer
loop while it runs.
"""

import asyncio
import logging
import signal
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .api_models import HealthResponseV1
from .config import Settings
from .consumer import ConsumerState, StreamConsumer
from .errors import ConfigurationError
from .history import JetStreamHistoryStore
from .nats_client import DriveStreamNATSClient, JetStreamPullSource, stream_specs
from .state_cache import JetStreamStateCache

logger = logging.getLogger(__name__)

SERVICE = "DriveStream processing"

health_app = FastAPI(
    title="DriveStream Processing Health",
    description="Liveness and readiness of the raw telemetry consumer",
    version="1.0.0",
)

# Global components (set while run_processing is active, or injected by tests)
consumer: Optional[StreamConsumer] = None
nats_client: Optional[DriveStreamNATSClient] = None


def initialize_components(stream_consumer: StreamConsumer,
                          client: Optional[DriveStreamNATSClient] = None) -> None:
    """Install the consumer and broker client reported by the health endpoints"""
    global consumer, nats_client
    consumer = stream_consumer
    nats_client = client


def reset_components() -> None:
    global consumer, nats_client
    consumer = None
    nats_client = None


@health_app.get("/health/liveness", response_model=HealthResponseV1)
async def liveness():
    return HealthResponseV1(status="alive", service=SERVICE)


@health_app.get("/health/readiness", response_model=HealthResponseV1)
async def readiness():
    state = consumer.state if consumer is not None else None
    connected = bool(nats_client and nats_client.connected)
    checks = {
        "consumer_state": state.value if state is not None else None,
        "nats_connected": connected,
    }
    if state is None or state == ConsumerState.STOPPED or not connected:
        return JSONResponse(
            status_code=503,
            content=HealthResponseV1(status="not_ready", service=SERVICE, checks=checks).model_dump(),
        )
    return HealthResponseV1(status="ready", service=SERVICE, checks=checks)


def build_health_server(cfg: Settings) -> uvicorn.Server:
    config = uvicorn.Config(
        health_app,
        host=cfg.app.http_host,
        port=cfg.processor.health_port,
        log_config=None,
        lifespan="off",
    )
    return uvicorn.Server(config)


def install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            logger.warning(f"Signal handler for {sig.name} not supported on this platform")


async def run_processing(cfg: Settings, stop: Optional[asyncio.Event] = None) -> StreamConsumer:
    """Run the consumer loop; ConsumerFatalError propagates to the caller"""
    stop = stop or asyncio.Event()

    client = DriveStreamNATSClient(cfg.nats)
    if not await client.connect():
        raise ConfigurationError(f"cannot reach NATS at {cfg.nats.url}")

    source = None
    health_server = None
    health_task = None
    try:
        await client.ensure_streams(stream_specs(cfg))
        cache = await JetStreamStateCache.open(
            client,
            cfg.cache.processing_bucket,
            ttl_seconds=cfg.cache.processing_ttl_seconds,
            key_prefix=cfg.cache.key_prefix,
        )
        history = JetStreamHistoryStore(client, cfg.topics.history_subject)
        subscription = await client.pull_subscribe(
            f"{cfg.topics.telemetry_subject}.>",
            durable=cfg.processor.consumer_name,
            stream=cfg.topics.telemetry_stream,
        )
        source = JetStreamPullSource(subscription)

        stream_consumer = StreamConsumer(source, cache, history, cfg.processor)
        initialize_components(stream_consumer, client)
        install_signal_handlers(stop)

        if cfg.processor.health_port:
            health_server = build_health_server(cfg)
            health_task = asyncio.create_task(health_server.serve())
            # uvicorn may take over SIGINT/SIGTERM; its exit stops the consumer too
            health_task.add_done_callback(lambda _: stop.set())
            logger.info(f"Health endpoints on {cfg.app.http_host}:{cfg.processor.health_port}")

        await stream_consumer.run(stop)
        return stream_consumer
    finally:
        if health_task is not None:
            health_server.should_exit = True
            await health_task
        if source is not None:
            await source.close()
        await client.disconnect()
        reset_components()
