"""Sampling of control polygons into polylines with tangents and cumulative lengths."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

import numpy as np
from numpy.typing import NDArray

from bezpath.bezier import BezierCurve
from bezpath.common import InvalidArgumentError, PathError
from bezpath.consts import (
    DEFAULT_ACCURACY,
    DEFAULT_MAX_ANGLE_ERROR,
    DEFAULT_MIN_VERTEX_DST,
    EPSILON,
    MIN_VERTEX_SPACING,
)
from bezpath.geom import GeomMath, MinMax3D

if TYPE_CHECKING:
    from bezpath.control_polygon import ControlPolygon  # pylint: disable=unused-import

logger = logging.getLogger(__name__)


###############################################################################
# SamplingSettings
###############################################################################


@dataclass(frozen=True)
class SamplingSettings:
    """
    Parameters for turning a control polygon into a vertex path.

    If ``spacing`` is set, the path is resampled at that fixed arc length
    interval. Otherwise vertices are placed where the direction of the path
    changes by more than ``max_angle_error`` degrees.
    """

    max_angle_error: float = DEFAULT_MAX_ANGLE_ERROR
    min_vertex_dst: float = DEFAULT_MIN_VERTEX_DST
    accuracy: float = DEFAULT_ACCURACY
    spacing: Optional[float] = None

    def __post_init__(self):
        if self.accuracy <= 0:
            raise InvalidArgumentError(f"accuracy must be positive, got {self.accuracy}")
        if self.max_angle_error < 0:
            raise InvalidArgumentError(f"max_angle_error must not be negative, got {self.max_angle_error}")
        if self.min_vertex_dst < 0:
            raise InvalidArgumentError(f"min_vertex_dst must not be negative, got {self.min_vertex_dst}")

    @property
    def evenly_spaced(self) -> bool:
        return self.spacing is not None

    def to_dict(self) -> dict:
        return {
            "max_angle_error": self.max_angle_error,
            "min_vertex_dst": self.min_vertex_dst,
            "accuracy": self.accuracy,
            "spacing": self.spacing,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SamplingSettings:
        spacing = data.get("spacing")
        return cls(
            max_angle_error=float(data.get("max_angle_error", DEFAULT_MAX_ANGLE_ERROR)),
            min_vertex_dst=float(data.get("min_vertex_dst", DEFAULT_MIN_VERTEX_DST)),
            accuracy=float(data.get("accuracy", DEFAULT_ACCURACY)),
            spacing=None if spacing is None else float(spacing),
        )


###############################################################################
# PathSplitData
###############################################################################


@dataclass
class PathSplitData:
    """
    Raw result of sampling a control polygon.

    Attributes:
        vertices: Sampled world positions.
        tangents: Unit tangent at every vertex.
        cumulative_length: Polyline length from the first vertex up to every vertex.
        anchor_vertex_map: Index of the last vertex emitted for every anchor
            (the start anchor plus the end of every segment).
        anchor_tangents: Unit curve tangent at every anchor of anchor_vertex_map.
        min_max: Running bounds of all vertices.
    """

    vertices: List[NDArray[np.float64]] = field(default_factory=list)
    tangents: List[NDArray[np.float64]] = field(default_factory=list)
    cumulative_length: List[float] = field(default_factory=list)
    anchor_vertex_map: List[int] = field(default_factory=list)
    anchor_tangents: List[NDArray[np.float64]] = field(default_factory=list)
    min_max: MinMax3D = field(default_factory=MinMax3D)

    def add_vertex(self, point: NDArray[np.float64], tangent: NDArray[np.float64], length: float) -> None:
        self.vertices.append(point)
        self.tangents.append(tangent)
        self.cumulative_length.append(length)
        self.min_max.add_value(point)

    def add_anchor(self, tangent: NDArray[np.float64]) -> None:
        self.anchor_vertex_map.append(len(self.vertices) - 1)
        self.anchor_tangents.append(tangent)

    @property
    def num_vertices(self) -> int:
        return len(self.vertices)


###############################################################################
# PathSampler
###############################################################################


class PathSampler:
    """Strategies to split a control polygon into vertices along the path."""

    @staticmethod
    def unit_tangent(segment: NDArray[np.float64], t: float) -> NDArray[np.float64]:
        """
        Unit tangent of a segment at time t.

        Where the derivative vanishes (a control on top of its anchor), the
        direction is taken from nearby curve points, or the chord as last resort.
        """
        tangent = GeomMath.normalize(BezierCurve.evaluate_derivative(segment, t))
        if tangent.any():
            return tangent
        delta = 1.0e-3
        tangent = GeomMath.normalize(
            BezierCurve.evaluate(segment, min(1.0, t + delta)) - BezierCurve.evaluate(segment, max(0.0, t - delta))
        )
        if tangent.any():
            return tangent
        return GeomMath.normalize(segment[3] - segment[0])

    @staticmethod
    def _divisions(segment: NDArray[np.float64], accuracy: float) -> int:
        """Number of fine steps used to walk a segment."""
        return max(1, math.ceil(BezierCurve.estimate_length(segment) * accuracy))

    @staticmethod
    def _fine_length(polygon: ControlPolygon, accuracy: float) -> float:
        """Length of the polyline through all fine steps of the path."""
        length = 0.0
        for segment_index in range(polygon.num_segments):
            segment = polygon.get_points_in_segment(segment_index)
            fine_points = BezierCurve.polygonize(segment, PathSampler._divisions(segment, accuracy))
            length += float(np.sum(np.linalg.norm(np.diff(fine_points, axis=0), axis=1)))
        return length

    @staticmethod
    def _start(polygon: ControlPolygon) -> PathSplitData:
        if polygon.is_empty:
            raise PathError("Cannot sample an empty path")
        first_segment = polygon.get_points_in_segment(0)
        start_tangent = PathSampler.unit_tangent(first_segment, 0.0)
        split_data = PathSplitData()
        split_data.add_vertex(first_segment[0].copy(), start_tangent, 0.0)
        split_data.add_anchor(start_tangent)
        return split_data

    @staticmethod
    def split_by_angle_error(
        polygon: ControlPolygon,
        max_angle_error: float = DEFAULT_MAX_ANGLE_ERROR,
        min_vertex_dst: float = DEFAULT_MIN_VERTEX_DST,
        accuracy: float = DEFAULT_ACCURACY,
    ) -> PathSplitData:
        """
        Split the path into vertices so that straighter sections get fewer vertices.

        Every segment is walked in ceil(estimated_length * accuracy) fine steps.
        A step becomes a vertex when the angle error at that point exceeds
        max_angle_error and the distance walked since the last vertex is at
        least min_vertex_dst. The angle error is the larger deviation from a
        straight line, measured once towards the previous fine step and once
        towards the last added vertex. The end of the path is always a vertex,
        and so is the anchor before the closing segment of a closed path.

        Args:
            polygon: Path to sample (world coordinates are used).
            max_angle_error: Angle (degrees) the path may bend before a vertex is added.
            min_vertex_dst: Vertices are never placed closer together than this (path distance).
            accuracy: Fine steps per unit of estimated segment length.
        """
        if accuracy <= 0:
            raise InvalidArgumentError(f"accuracy must be positive, got {accuracy}")
        split_data = PathSampler._start(polygon)
        prev_point_on_path = split_data.vertices[0]
        last_added_point = split_data.vertices[0]
        current_path_length = 0.0
        dst_since_last_vertex = 0.0
        num_segments = polygon.num_segments

        for segment_index in range(num_segments):
            segment = polygon.get_points_in_segment(segment_index)
            divisions = PathSampler._divisions(segment, accuracy)
            increment = 1.0 / divisions
            for step in range(1, divisions + 1):
                t = step / divisions
                is_last_point_on_path = step == divisions and segment_index == num_segments - 1
                # a closed loop keeps the anchor before its closing segment
                is_loop_anchor = polygon.is_closed and step == divisions and segment_index == num_segments - 2
                point_on_path = BezierCurve.evaluate(segment, t)
                next_point_on_path = BezierCurve.evaluate(segment, t + increment)

                # deviation from a straight line at the current point
                local_angle = 180.0 - GeomMath.angle(prev_point_on_path - point_on_path, next_point_on_path - point_on_path)
                angle_from_prev_vertex = 180.0 - GeomMath.angle(
                    last_added_point - point_on_path, next_point_on_path - point_on_path
                )
                angle_error = max(local_angle, angle_from_prev_vertex)

                if (
                    (angle_error > max_angle_error and dst_since_last_vertex >= min_vertex_dst)
                    or is_last_point_on_path
                    or is_loop_anchor
                ):
                    current_path_length += float(np.linalg.norm(last_added_point - point_on_path))
                    split_data.add_vertex(point_on_path, PathSampler.unit_tangent(segment, t), current_path_length)
                    dst_since_last_vertex = 0.0
                    last_added_point = point_on_path
                else:
                    dst_since_last_vertex += float(np.linalg.norm(point_on_path - prev_point_on_path))
                prev_point_on_path = point_on_path
            split_data.add_anchor(PathSampler.unit_tangent(segment, 1.0))

        logger.debug("Split %d segment(s) by angle error into %d vertices", num_segments, split_data.num_vertices)
        return split_data

    @staticmethod
    def split_evenly(
        polygon: ControlPolygon, spacing: float, accuracy: float = DEFAULT_ACCURACY
    ) -> PathSplitData:
        """
        Split the path into vertices spaced at (roughly) equal path distance.

        Every segment is walked in fine steps. Whenever the distance walked
        since the last vertex exceeds the spacing, the point is pulled back
        along the step by the overshoot and becomes a vertex; the same step is
        then walked again from there. The end of the path is always a vertex,
        so the last spacing is usually shorter. On a closed path the spacing is
        at most half the loop length.

        Args:
            polygon: Path to sample (world coordinates are used).
            spacing: Distance between vertices, clamped to at least 0.01.
            accuracy: Fine steps per unit of estimated segment length.
        """
        if accuracy <= 0:
            raise InvalidArgumentError(f"accuracy must be positive, got {accuracy}")
        spacing = max(float(spacing), MIN_VERTEX_SPACING)
        split_data = PathSampler._start(polygon)
        if polygon.is_closed:
            # at least one vertex between start and end, which coincide on a loop
            spacing = min(spacing, PathSampler._fine_length(polygon, accuracy) * 0.5)
        prev_point_on_path = split_data.vertices[0]
        last_added_point = split_data.vertices[0]
        current_path_length = 0.0
        dst_since_last_vertex = 0.0
        num_segments = polygon.num_segments

        for segment_index in range(num_segments):
            segment = polygon.get_points_in_segment(segment_index)
            divisions = PathSampler._divisions(segment, accuracy)
            step = 1
            while step <= divisions:
                t = step / divisions
                is_last_point_on_path = step == divisions and segment_index == num_segments - 1
                point_on_path = BezierCurve.evaluate(segment, t)
                dst_since_last_vertex += float(np.linalg.norm(point_on_path - prev_point_on_path))

                # vertices too far apart: go back by the overshoot and walk this step again
                overshot = dst_since_last_vertex > spacing + EPSILON
                if overshot:
                    overshoot_dst = dst_since_last_vertex - spacing
                    point_on_path = point_on_path + GeomMath.normalize(prev_point_on_path - point_on_path) * overshoot_dst

                if dst_since_last_vertex >= spacing - EPSILON or is_last_point_on_path:
                    current_path_length += float(np.linalg.norm(last_added_point - point_on_path))
                    split_data.add_vertex(point_on_path, PathSampler.unit_tangent(segment, t), current_path_length)
                    dst_since_last_vertex = 0.0
                    last_added_point = point_on_path
                prev_point_on_path = point_on_path
                if not overshot:
                    step += 1
            split_data.add_anchor(PathSampler.unit_tangent(segment, 1.0))

        logger.debug("Split %d segment(s) evenly into %d vertices", num_segments, split_data.num_vertices)
        return split_data
