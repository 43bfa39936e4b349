"""
Scheduling for PowerWatch.

Provides the rate expression parser and the background refresh timer.
"""

from powerwatch.scheduling.scheduler import (
    RateExpression,
    RefreshScheduler,
)

__all__ = [
    "RateExpression",
    "RefreshScheduler",
]
