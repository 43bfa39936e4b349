"""
Snapshot cache for PowerWatch.

Provides the assessment engine boundary and the cache manager that holds
the current snapshot.
"""

from powerwatch.cache.engine import (
    AssessmentEngine,
    AssessmentEngineError,
    AssessmentTimeoutError,
    CallableAssessmentEngine,
    CommandAssessmentEngine,
    FileAssessmentEngine,
    create_engine,
    extract_json_object,
)
from powerwatch.cache.manager import (
    CacheManager,
    CacheMetadata,
    RefreshResult,
    RefreshStatus,
)

__all__ = [
    # Engine
    "AssessmentEngine",
    "AssessmentEngineError",
    "AssessmentTimeoutError",
    "CallableAssessmentEngine",
    "CommandAssessmentEngine",
    "FileAssessmentEngine",
    "create_engine",
    "extract_json_object",
    # Manager
    "CacheManager",
    "CacheMetadata",
    "RefreshResult",
    "RefreshStatus",
]
