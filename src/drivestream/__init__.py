"""
DriveStream - vehicle telemetry ingestion and stream processing
"""

__version__ = "1.0.0"
