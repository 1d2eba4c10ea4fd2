"""
Pytest configuration for DriveStream
"""

import os
import faulthandler


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers", "broker: tests that drive the NATS adapters through fakes"
    )
    config.addinivalue_line(
        "markers", "e2e: tests that run the ingestion and processing paths together"
    )


def pytest_sessionstart(session):
    """Add watchdog for hanging tests when env flag is set"""
    if os.environ.get("DRIVESTREAM_PYTEST_WATCHDOG") == "1":
        faulthandler.enable()
        faulthandler.dump_traceback_later(30, repeat=True)
