"""
Observability for PowerWatch.

Provides structured logging for refresh cycles and served requests.
"""

from powerwatch.observability.logging import (
    HumanReadableFormatter,
    PowerWatchLogger,
    StructuredFormatter,
    configure_logging,
    get_logger,
)

__all__ = [
    "HumanReadableFormatter",
    "PowerWatchLogger",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
]
