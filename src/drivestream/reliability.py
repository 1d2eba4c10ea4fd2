"""
Timeout Enforcement
Central timeout policy with deterministic reason codes for all broker and KV
operations.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

logger = logging.getLogger(__name__)


class TimeoutCategory(str, Enum):
    """Timeout operation categories for deterministic reason codes"""
    NATS_CONNECT = "TIMEOUT_NATS_CONNECT"
    NATS_PUBLISH = "TIMEOUT_NATS_PUBLISH"
    NATS_STREAM_INFO = "TIMEOUT_NATS_STREAM_INFO"
    NATS_STREAM_CREATE = "TIMEOUT_NATS_STREAM_CREATE"
    NATS_ACK = "TIMEOUT_NATS_ACK"

    KV_CREATE = "TIMEOUT_KV_CREATE"
    KV_GET = "TIMEOUT_KV_GET"
    KV_PUT = "TIMEOUT_KV_PUT"


@dataclass
class TimeoutConfig:
    """Timeout configuration for different operation categories (seconds)"""
    nats_connect: float = 10.0
    nats_publish: float = 5.0
    nats_stream_info: float = 5.0
    nats_stream_create: float = 15.0
    nats_ack: float = 5.0

    kv_create: float = 10.0
    kv_get: float = 3.0
    kv_put: float = 3.0

    default_timeout: float = 30.0


class OperationTimeoutError(Exception):
    """Raised when an operation exceeds its timeout"""

    def __init__(self, category: TimeoutCategory, timeout_seconds: float, operation: str):
        self.category = category
        self.timeout_seconds = timeout_seconds
        self.operation = operation
        super().__init__(f"Operation '{operation}' timed out after {timeout_seconds}s ({category.value})")


class TimeoutManager:
    """
    Central timeout enforcement manager

    Every IO operation against NATS, the KV buckets or the history stream
    goes through execute_with_timeout so a hung broker surfaces as a typed
    error instead of a stuck request.
    """

    def __init__(self, config: Optional[TimeoutConfig] = None):
        self.config = config or TimeoutConfig()

    def get_timeout(self, category: Union[TimeoutCategory, str]) -> float:
        """Get timeout for operation category"""
        if isinstance(category, str) and not isinstance(category, TimeoutCategory):
            try:
                category = TimeoutCategory(category)
            except ValueError:
                logger.warning(f"Unknown timeout category: {category}, using default")
                return self.config.default_timeout

        timeout_map = {
            TimeoutCategory.NATS_CONNECT: self.config.nats_connect,
            TimeoutCategory.NATS_PUBLISH: self.config.nats_publish,
            TimeoutCategory.NATS_STREAM_INFO: self.config.nats_stream_info,
            TimeoutCategory.NATS_STREAM_CREATE: self.config.nats_stream_create,
            TimeoutCategory.NATS_ACK: self.config.nats_ack,
            TimeoutCategory.KV_CREATE: self.config.kv_create,
            TimeoutCategory.KV_GET: self.config.kv_get,
            TimeoutCategory.KV_PUT: self.config.kv_put,
        }
        return timeout_map.get(category, self.config.default_timeout)

    async def execute_with_timeout(
        self,
        category: TimeoutCategory,
        operation: str,
        coro,
        timeout: Optional[float] = None,
    ):
        """
        Execute coroutine with timeout enforcement

        Args:
            category: Timeout category for deterministic classification
            operation: Description of operation being executed
            coro: Coroutine to execute
            timeout: Optional override timeout

        Returns:
            Result of coroutine execution

        Raises:
            OperationTimeoutError: If operation times out
        """
        effective_timeout = timeout or self.get_timeout(category)
        logger.debug(f"Executing {operation} with {effective_timeout}s timeout ({category.value})")

        try:
            return await asyncio.wait_for(coro, timeout=effective_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Operation {operation} timed out after {effective_timeout}s ({category.value})")
            raise OperationTimeoutError(category, effective_timeout, operation)


_timeout_manager: Optional[TimeoutManager] = None


def get_timeout_manager() -> TimeoutManager:
    """Get the global timeout manager instance"""
    global _timeout_manager
    if _timeout_manager is None:
        _timeout_manager = TimeoutManager()
    return _timeout_manager


def set_timeout_manager(manager: Optional[TimeoutManager]) -> None:
    """Replace the global timeout manager (None restores the default on next use)"""
    global _timeout_manager
    _timeout_manager = manager
