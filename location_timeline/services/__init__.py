"""Service layer package.

Exports the pipeline service consumed by the command line tool.
"""

from .timeline_service import (
    TimelineResult,
    TimelineService,
    TimelineServiceConfig,
    TimelineSettings,
)

__all__ = [
    "TimelineResult",
    "TimelineService",
    "TimelineServiceConfig",
    "TimelineSettings",
]
