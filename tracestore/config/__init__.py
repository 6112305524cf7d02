"""
Trace Store Configuration
=========================

Usage:
    from tracestore.config import TraceStoreConfig

    config = TraceStoreConfig.from_env(".env")
    print(config.safe_url)
"""

from .settings import (
    DEFAULT_BATCH_SIZE,
    TraceStoreConfig,
    get_database_url,
    normalize_database_url,
)

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "TraceStoreConfig",
    "get_database_url",
    "normalize_database_url",
]
