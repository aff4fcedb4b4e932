"""Timeline association: container index, point ownership and export reading."""

from .association import (
    PathGroup,
    associate_path_groups,
    associate_point,
    associate_points,
    suppress_points_in_visits,
)
from .export_reader import ExportData, parse_coordinates, read_export
from .index import ContainerIndex, build_index, find_owning_parent, overlap_ms

__all__ = [
    "ContainerIndex",
    "ExportData",
    "PathGroup",
    "associate_path_groups",
    "associate_point",
    "associate_points",
    "build_index",
    "find_owning_parent",
    "overlap_ms",
    "parse_coordinates",
    "read_export",
    "suppress_points_in_visits",
]
