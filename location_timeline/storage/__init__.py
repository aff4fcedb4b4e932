"""Persistence for stops, segments and the geocode cache."""

from .base import TimelineStore
from .memory import InMemoryTimelineStore
from .sql import SqlTimelineStore

__all__ = ["InMemoryTimelineStore", "SqlTimelineStore", "TimelineStore"]
