"""Immutable polyline approximation of a control polygon with arc length, tangent and normal queries."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Optional, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.spatial import KDTree

from bezpath.common import EndOfPathInstruction, InvalidArgumentError, PathError, PathSpace, Vec3Like
from bezpath.consts import (
    DEFAULT_ACCURACY,
    DEFAULT_MAX_ANGLE_ERROR,
    DEFAULT_MIN_VERTEX_DST,
    EPSILON,
    MIN_VERTEX_SPACING,
    NORMAL_CORRECTION_THRESHOLD,
)
from bezpath.geom import AXIS_Y, AXIS_Z, Bounds3D, GeomMath
from bezpath.path_sampler import PathSampler, PathSplitData, SamplingSettings

if TYPE_CHECKING:
    from bezpath.control_polygon import ControlPolygon  # pylint: disable=unused-import

logger = logging.getLogger(__name__)


def _read_only(array: NDArray) -> NDArray:
    view = array.view()
    view.flags.writeable = False
    return view


class VertexPath:
    """
    A collection of vertices lying along a bezier path.

    Allows moving along the path at constant speed, which is not possible on
    the bezier curves directly. Positions, directions, normals and rotations
    can be queried by time (0 is the start, 1 the end of the path) or by
    distance travelled.

    A VertexPath is a snapshot: later changes of the control polygon are not
    reflected. Build a new VertexPath to pick them up.
    """

    def __init__(self, polygon: ControlPolygon, split_data: PathSplitData):
        """
        Build the vertex path from sampled data.

        Use the factories by_angle_error, evenly_spaced or from_settings
        instead of calling this directly.

        Raises:
            PathError: If the sampled path has fewer than 2 vertices or zero length.
        """
        num_vertices = split_data.num_vertices
        if num_vertices < 2:
            raise PathError(f"A vertex path requires at least 2 vertices, got {num_vertices}")

        self._space: PathSpace = polygon.space
        self._closed: bool = polygon.is_closed
        self._vertices = np.array(split_data.vertices, dtype=np.float64)
        self._tangents = np.array(split_data.tangents, dtype=np.float64)
        self._cumulative_length = np.array(split_data.cumulative_length, dtype=np.float64)
        self._anchor_vertex_map = np.array(split_data.anchor_vertex_map, dtype=np.int64)
        self._anchor_tangents = np.array(split_data.anchor_tangents, dtype=np.float64).reshape(-1, 3)
        self._length = float(self._cumulative_length[-1])
        if self._length <= EPSILON:
            raise PathError("Cannot build a vertex path of zero length")

        self._times = self._cumulative_length / self._length
        self._times[0] = 0.0
        self._times[-1] = 1.0
        self._bounds = split_data.min_max.to_bounds()

        # figure out up direction for path
        size = self._bounds.size
        self._up = AXIS_Y.copy() if size[2] > size[1] else -AXIS_Z

        if self._space == PathSpace.XYZ:
            normals = self._transport_normals()
            if self._closed:
                self._correct_closed_loop_normals(normals)
            self._apply_anchor_normal_angles(normals, polygon)
        else:
            sign = 1.0 if polygon.flip_normals else -1.0
            normals = np.cross(self._tangents, self._up) * sign
        self._normals = normals

        for array in (
            self._vertices,
            self._tangents,
            self._normals,
            self._cumulative_length,
            self._times,
            self._anchor_vertex_map,
            self._anchor_tangents,
        ):
            array.flags.writeable = False
        self._kd_tree = KDTree(self._vertices)
        logger.debug("Built vertex path with %d vertices, length %.6g", num_vertices, self._length)

    ###########################################################################
    # Factories
    ###########################################################################

    @classmethod
    def by_angle_error(
        cls,
        polygon: ControlPolygon,
        max_angle_error: float = DEFAULT_MAX_ANGLE_ERROR,
        min_vertex_dst: float = DEFAULT_MIN_VERTEX_DST,
        accuracy: float = DEFAULT_ACCURACY,
    ) -> VertexPath:
        """
        Split the path into vertices, adding fewer of them in straighter sections.

        Args:
            polygon: The control polygon to sample.
            max_angle_error: How much (degrees) the path may bend before a vertex is added.
            min_vertex_dst: Vertices are not added closer together than this, regardless of angle error.
            accuracy: Higher values check the angle more frequently.
        """
        return cls(polygon, PathSampler.split_by_angle_error(polygon, max_angle_error, min_vertex_dst, accuracy))

    @classmethod
    def evenly_spaced(
        cls, polygon: ControlPolygon, spacing: float, accuracy: float = DEFAULT_ACCURACY
    ) -> VertexPath:
        """Split the path into vertices at a fixed spacing (at least 0.01)."""
        return cls(polygon, PathSampler.split_evenly(polygon, max(float(spacing), MIN_VERTEX_SPACING), accuracy))

    @classmethod
    def from_settings(cls, polygon: ControlPolygon, settings: Optional[SamplingSettings] = None) -> VertexPath:
        """Build a vertex path with the strategy selected by the settings."""
        if settings is None:
            settings = SamplingSettings()
        if settings.spacing is not None:
            return cls.evenly_spaced(polygon, settings.spacing, settings.accuracy)
        return cls.by_angle_error(polygon, settings.max_angle_error, settings.min_vertex_dst, settings.accuracy)

    ###########################################################################
    # Normals
    ###########################################################################

    def _transport_normals(self) -> NDArray[np.float64]:
        """
        Transport a rotation axis along the vertices by double reflection.

        Each step reflects the axis (and the previous tangent) in the plane
        bisecting the two vertices, then reflects again so the previous tangent
        maps onto the current one. The normal is perpendicular to axis and
        tangent. This is a discrete rotation minimizing frame.
        """
        vertices = self._vertices
        tangents = self._tangents
        normals = np.empty_like(vertices)

        last_rotation_axis = self._up.copy()
        normals[0] = GeomMath.normalize(np.cross(last_rotation_axis, tangents[0]))
        if not normals[0].any():
            normals[0] = GeomMath.any_perpendicular(tangents[0])
            last_rotation_axis = np.cross(tangents[0], normals[0])

        for i in range(1, vertices.shape[0]):
            # first reflection
            offset = vertices[i] - vertices[i - 1]
            sqr_dst = float(np.dot(offset, offset))
            if sqr_dst > EPSILON * EPSILON:
                r = last_rotation_axis - offset * (2.0 / sqr_dst) * float(np.dot(offset, last_rotation_axis))
                t = tangents[i - 1] - offset * (2.0 / sqr_dst) * float(np.dot(offset, tangents[i - 1]))
            else:
                r = last_rotation_axis
                t = tangents[i - 1]

            # second reflection
            v2 = tangents[i] - t
            c2 = float(np.dot(v2, v2))
            if c2 > EPSILON * EPSILON:
                final_rotation_axis = r - v2 * (2.0 / c2) * float(np.dot(v2, r))
            else:
                final_rotation_axis = r

            normal = GeomMath.normalize(np.cross(final_rotation_axis, tangents[i]))
            if not normal.any():
                normal = normals[i - 1]
            normals[i] = normal
            last_rotation_axis = final_rotation_axis
        return normals

    def _correct_closed_loop_normals(self, normals: NDArray[np.float64]) -> None:
        """Spread the angle between the last and the first normal of a closed loop over all vertices."""
        angle_error_across_join = GeomMath.signed_angle(normals[-1], normals[0], self._tangents[0])
        if abs(angle_error_across_join) <= NORMAL_CORRECTION_THRESHOLD:
            return
        last = normals.shape[0] - 1
        for i in range(1, normals.shape[0]):
            angle = angle_error_across_join * (i / last)
            normals[i] = GeomMath.rotate_around_axis(normals[i], self._tangents[i], angle)

    def _apply_anchor_normal_angles(self, normals: NDArray[np.float64], polygon: ControlPolygon) -> None:
        """Rotate the normals about the tangents by the anchor angles, interpolated along every segment."""
        anchor_vertex_map = self._anchor_vertex_map
        num_anchors = polygon.num_anchor_points
        sign = -1.0 if polygon.flip_normals else 1.0
        last_entry = anchor_vertex_map.shape[0] - 2

        for anchor_index in range(anchor_vertex_map.shape[0] - 1):
            next_anchor_index = (anchor_index + 1) % num_anchors if self._closed else anchor_index + 1
            start_angle = polygon.get_anchor_normal_angle(anchor_index % num_anchors) + polygon.global_normal_angle
            end_angle = polygon.get_anchor_normal_angle(next_anchor_index) + polygon.global_normal_angle
            delta_angle = GeomMath.delta_angle(start_angle, end_angle)

            start_vertex_index = int(anchor_vertex_map[anchor_index])
            end_vertex_index = int(anchor_vertex_map[anchor_index + 1])
            num = end_vertex_index - start_vertex_index
            if anchor_index == last_entry:
                num += 1
            for i in range(num):
                vertex_index = start_vertex_index + i
                t = i / (num - 1) if num > 1 else 0.0
                angle = start_angle + delta_angle * t
                normals[vertex_index] = (
                    GeomMath.rotate_around_axis(normals[vertex_index], self._tangents[vertex_index], angle) * sign
                )

    ###########################################################################
    # Accessors
    ###########################################################################

    @property
    def vertices(self) -> NDArray[np.float64]:
        return self._vertices

    @property
    def tangents(self) -> NDArray[np.float64]:
        return self._tangents

    @property
    def normals(self) -> NDArray[np.float64]:
        return self._normals

    @property
    def anchor_tangents(self) -> NDArray[np.float64]:
        return self._anchor_tangents

    @property
    def anchor_vertex_map(self) -> NDArray[np.int64]:
        return self._anchor_vertex_map

    @property
    def times(self) -> NDArray[np.float64]:
        """Fraction of the path length at every vertex (0 at the first, 1 at the last vertex)."""
        return self._times

    @property
    def cumulative_length(self) -> NDArray[np.float64]:
        """Polyline distance from the first vertex up to every vertex."""
        return self._cumulative_length

    @property
    def length(self) -> float:
        """Total distance between the vertices of the polyline."""
        return self._length

    @property
    def num_vertices(self) -> int:
        return self._vertices.shape[0]

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def space(self) -> PathSpace:
        return self._space

    @property
    def bounds(self) -> Bounds3D:
        return self._bounds

    @property
    def up(self) -> NDArray[np.float64]:
        """Reference axis used for the normals of plane paths."""
        return _read_only(self._up)

    ###########################################################################
    # Queries by time
    ###########################################################################

    def get_point(self, t: float, end: EndOfPathInstruction = EndOfPathInstruction.LOOP) -> NDArray[np.float64]:
        """Point on the path at time t (0 is the start, 1 the end of the path)."""
        prev_index, next_index, percent = self._time_on_path(t, end)
        return self._lerp(self._vertices, prev_index, next_index, percent)

    def get_direction(self, t: float, end: EndOfPathInstruction = EndOfPathInstruction.LOOP) -> NDArray[np.float64]:
        """Forward direction at time t (interpolated tangent, not renormalised)."""
        prev_index, next_index, percent = self._time_on_path(t, end)
        return self._lerp(self._tangents, prev_index, next_index, percent)

    def get_normal(self, t: float, end: EndOfPathInstruction = EndOfPathInstruction.LOOP) -> NDArray[np.float64]:
        """Normal vector at time t (interpolated, not renormalised)."""
        prev_index, next_index, percent = self._time_on_path(t, end)
        return self._lerp(self._normals, prev_index, next_index, percent)

    def get_rotation(self, t: float, end: EndOfPathInstruction = EndOfPathInstruction.LOOP) -> NDArray[np.float64]:
        """Quaternion (x, y, z, w) orienting forward along the path with local up along the normal."""
        prev_index, next_index, percent = self._time_on_path(t, end)
        direction = self._lerp(self._tangents, prev_index, next_index, percent)
        normal = self._lerp(self._normals, prev_index, next_index, percent)
        return GeomMath.look_rotation(direction, normal)

    ###########################################################################
    # Queries by distance
    ###########################################################################

    def get_point_at_distance(
        self, dst: float, end: EndOfPathInstruction = EndOfPathInstruction.LOOP
    ) -> NDArray[np.float64]:
        return self.get_point(dst / self._length, end)

    def get_direction_at_distance(
        self, dst: float, end: EndOfPathInstruction = EndOfPathInstruction.LOOP
    ) -> NDArray[np.float64]:
        return self.get_direction(dst / self._length, end)

    def get_normal_at_distance(
        self, dst: float, end: EndOfPathInstruction = EndOfPathInstruction.LOOP
    ) -> NDArray[np.float64]:
        return self.get_normal(dst / self._length, end)

    def get_rotation_at_distance(
        self, dst: float, end: EndOfPathInstruction = EndOfPathInstruction.LOOP
    ) -> NDArray[np.float64]:
        return self.get_rotation(dst / self._length, end)

    ###########################################################################
    # Vertex queries
    ###########################################################################

    def get_direction_at_index(self, index: int) -> NDArray[np.float64]:
        """Tangent at the vertex with the given index."""
        if not 0 <= index < self.num_vertices:
            raise InvalidArgumentError(f"Vertex index {index} out of range [0, {self.num_vertices})")
        return self._tangents[index].copy()

    def get_nearest_vertex(self, position: Vec3Like) -> int:
        """
        Index of the vertex closest to a position.

        This is an approximation of the closest point on the path: the true
        closest point may lie between two vertices.
        """
        _, index = self._kd_tree.query(GeomMath.as_vector3(position), k=1)
        return int(index)

    def get_nearest_vertex_position(self, position: Vec3Like) -> NDArray[np.float64]:
        return self._vertices[self.get_nearest_vertex(position)].copy()

    def calculate_percent_by_position(self, position: Vec3Like) -> float:
        """Time of the vertex closest to a position."""
        return float(self._times[self.get_nearest_vertex(position)])

    ###########################################################################
    # Internals
    ###########################################################################

    @staticmethod
    def resolve_time(t: float, end: EndOfPathInstruction) -> float:
        """Map an arbitrary time into [0, 1] according to the end of path instruction."""
        t = float(t)
        if end == EndOfPathInstruction.LOOP:
            # negative t becomes the equivalent value between 0 and 1
            if t < 0.0:
                t += math.ceil(abs(t))
            return t % 1.0
        if end == EndOfPathInstruction.REVERSE:
            return GeomMath.ping_pong(t, 1.0)
        if end == EndOfPathInstruction.STOP:
            return min(1.0, max(0.0, t))
        raise InvalidArgumentError(f"Unknown end of path instruction {end!r}")

    def _time_on_path(self, t: float, end: EndOfPathInstruction) -> Tuple[int, int, float]:
        """Indices of the vertices before and after t, and how far t lies between them."""
        t = self.resolve_time(t, end)
        index = int(np.searchsorted(self._times, t, side="left"))
        next_index = min(max(index, 1), self.num_vertices - 1)
        prev_index = next_index - 1
        percent = GeomMath.inverse_lerp(float(self._times[prev_index]), float(self._times[next_index]), t)
        return prev_index, next_index, percent

    @staticmethod
    def _lerp(array: NDArray[np.float64], prev_index: int, next_index: int, percent: float) -> NDArray[np.float64]:
        return array[prev_index] + (array[next_index] - array[prev_index]) * percent
