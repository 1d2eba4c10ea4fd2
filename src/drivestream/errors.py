"""
Error taxonomy for the telemetry pipeline

Each error carries a stable code so the HTTP layer and the logs classify
failures the same way.
"""

from typing import Dict, List, Optional


class DriveStreamError(Exception):
    """Base class for all pipeline errors"""

    code = "INTERNAL"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(DriveStreamError):
    """Raised when settings are missing or inconsistent"""

    code = "CONFIGURATION"


class InvalidArgumentError(DriveStreamError):
    """Raised when an ingested snapshot fails field validation"""

    code = "INVALID_ARGUMENT"

    def __init__(self, message: str, field_errors: Optional[Dict[str, List[str]]] = None):
        self.field_errors = field_errors or {}
        super().__init__(message)


class UnauthenticatedError(DriveStreamError):
    """Raised when the transport did not supply a car identity"""

    code = "UNAUTHENTICATED"


class TransportError(DriveStreamError):
    """Raised when the broker is unreachable or a publish fails"""

    def __init__(self, message: str, subject: Optional[str] = None):
        self.subject = subject
        super().__init__(message)


class StateCacheError(DriveStreamError):
    """Raised when the current-state cache cannot be read or written"""


class HistoryStoreError(DriveStreamError):
    """Raised when a history record cannot be appended"""


class ConsumerFatalError(DriveStreamError):
    """Raised by the stream consumer for broker-level failures that end the loop"""
