"""Location history timeline reconstruction package."""

from .errors import ExportFormatError, LocationTimelineError, TimelineOrderError
from .main import main
from .models import Place, RawPoint, Segment, Stop, TimeContainer

__all__ = [
    "main",
    "ExportFormatError",
    "LocationTimelineError",
    "Place",
    "RawPoint",
    "Segment",
    "Stop",
    "TimeContainer",
    "TimelineOrderError",
]
