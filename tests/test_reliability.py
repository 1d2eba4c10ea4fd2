"""
Timeout enforcement tests
"""

import asyncio

import pytest

from drivestream.reliability import (
    OperationTimeoutError,
    TimeoutCategory,
    TimeoutConfig,
    TimeoutManager,
    get_timeout_manager,
    set_timeout_manager,
)


def test_timeout_config_defaults():
    config = TimeoutConfig()
    assert config.nats_connect == 10.0, "NATS connect timeout should be 10s"
    assert config.kv_get == 3.0
    assert config.default_timeout == 30.0


def test_timeout_lookup_by_category():
    manager = TimeoutManager(TimeoutConfig(nats_publish=1.5))
    assert manager.get_timeout(TimeoutCategory.NATS_PUBLISH) == 1.5
    assert manager.get_timeout("TIMEOUT_KV_PUT") == 3.0
    assert manager.get_timeout("TIMEOUT_SOMETHING_ELSE") == 30.0


@pytest.mark.asyncio
async def test_execute_returns_result():
    async def quick():
        return "ok"

    manager = TimeoutManager()
    assert await manager.execute_with_timeout(TimeoutCategory.KV_GET, "quick", quick()) == "ok"


@pytest.mark.asyncio
async def test_execute_raises_typed_timeout():
    manager = TimeoutManager(TimeoutConfig(kv_get=0.01))

    with pytest.raises(OperationTimeoutError) as exc_info:
        await manager.execute_with_timeout(TimeoutCategory.KV_GET, "slow get", asyncio.sleep(1))

    assert exc_info.value.category == TimeoutCategory.KV_GET
    assert exc_info.value.timeout_seconds == 0.01
    assert "TIMEOUT_KV_GET" in str(exc_info.value)


def test_global_manager_can_be_replaced():
    custom = TimeoutManager(TimeoutConfig(default_timeout=1.0))
    set_timeout_manager(custom)
    assert get_timeout_manager() is custom
    set_timeout_manager(None)
    assert get_timeout_manager() is not custom
