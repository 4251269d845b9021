"""
Core utilities and configuration for the IMDb import pipeline.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Async engine (connection pool) construction
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import create_engine
    from core.exceptions import TransferError, DecodeError, LoadError
    from core.logging import setup_logging

Example:
    setup_logging()
    engine = create_engine()
    try:
        ...
    finally:
        await engine.dispose()
"""

__all__ = [
    "settings",
    "create_engine",
    "setup_logging",
    # Exceptions
    "ETLException",
    "TransferError",
    "DecodeError",
    "CorruptArchiveError",
    "MalformedRecordError",
    "RowTransformError",
    "LoadError",
    "SchemaProvisioningError",
    "BulkCopyError",
]
