"""Editable cubic bezier control polygon: anchors, control points, smoothing and transforms."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from bezpath.bezier import BezierCurve
from bezpath.common import ControlMode, InvalidArgumentError, PathError, PathSpace, Vec3Like
from bezpath.connections import Connection
from bezpath.consts import AUTO_CONTROL_LENGTH, JOIN_CONTROL_FACTOR, MIN_AUTO_CONTROL_LENGTH, MIN_SCALE
from bezpath.geom import AXIS_X, AXIS_Y, AXIS_Z, IDENTITY_QUATERNION, Bounds3D, GeomMath

if TYPE_CHECKING:
    from bezpath.connections import PathRegistry  # pylint: disable=unused-import

logger = logging.getLogger(__name__)


###############################################################################
# PathModified
###############################################################################


@dataclass(frozen=True)
class PathModified:
    """Event describing a change of a control polygon.

    Attributes:
        kind: Name of the operation that caused the change (e.g. "move_point").
        indices: Point, anchor or segment indices involved, depending on kind.
    """

    kind: str
    indices: Tuple[int, ...] = ()


PathListener = Callable[[PathModified], None]


###############################################################################
# ControlPolygon
###############################################################################


class ControlPolygon:
    """A path made by stitching together any number of cubic bezier curves.

    A single curve is defined by 4 points: anchor1, control1, control2, anchor2.
    Consecutive curves share their anchor, so an open path with n segments
    stores 3n + 1 points. A closed path stores two extra controls joining the
    last anchor back to the first one (3n points). Every point with an index
    divisible by 3 is an anchor.

    Points are stored in local coordinates; world positions are local
    positions offset by ``position``.

    Every mutating method invalidates the cached bounds, propagates the change
    to connected paths, informs all listeners and returns the PathModified
    event (or None if nothing changed).
    """

    def __init__(
        self,
        centre: Optional[Vec3Like] = None,
        closed: bool = False,
        space: PathSpace = PathSpace.XYZ,
    ):
        """
        Create a two-anchor path centred around the given point.

        Args:
            centre: Centre of the path, defaults to the origin.
            closed: Whether the end point connects back to the start point.
            space: 3D space, or clamped to the xy/xz plane.
        """
        self._init_state()
        centre_vec = np.zeros(3, dtype=np.float64) if centre is None else GeomMath.as_vector3(centre)
        direction = AXIS_Z if space == PathSpace.XZ else AXIS_Y
        width = 2.0
        control_height = 0.5
        control_width = 1.0
        self._points = np.array(
            [
                centre_vec - AXIS_X * width,
                centre_vec - AXIS_X * control_width + direction * control_height,
                centre_vec + AXIS_X * control_width - direction * control_height,
                centre_vec + AXIS_X * width,
            ],
            dtype=np.float64,
        )
        self._normal_angles = [0.0, 0.0]
        self.set_space(space)
        self.set_closed(closed)

    def _init_state(self) -> None:
        self._points: NDArray[np.float64] = np.empty((0, 3), dtype=np.float64)
        self._closed: bool = False
        self._space: PathSpace = PathSpace.XYZ
        self._control_mode: ControlMode = ControlMode.ALIGNED
        self._auto_control_length: float = AUTO_CONTROL_LENGTH
        self._position: NDArray[np.float64] = np.zeros(3, dtype=np.float64)
        self._pivot: NDArray[np.float64] = np.zeros(3, dtype=np.float64)
        self._rotation: NDArray[np.float64] = IDENTITY_QUATERNION.copy()
        self._scale: NDArray[np.float64] = np.ones(3, dtype=np.float64)
        self._normal_angles: List[float] = []
        self._global_normal_angle: float = 0.0
        self._flip_normals: bool = False
        self._bounds: Optional[Bounds3D] = None
        self._bounds_up_to_date: bool = False
        self._connections: List[Connection] = []
        self._listeners: List[PathListener] = []
        self._registry: Optional[PathRegistry] = None
        self._path_id: Optional[int] = None

    @classmethod
    def from_points(
        # pylint: disable=too-many-arguments,too-many-positional-arguments
        cls,
        points,
        closed: bool = False,
        space: PathSpace = PathSpace.XYZ,
        control_mode: ControlMode = ControlMode.AUTOMATIC,
        normal_angles: Optional[Iterable[float]] = None,
    ) -> ControlPolygon:
        """
        Create a path through the supplied anchor points.

        The controls are placed automatically first; the path then switches to
        the requested control mode, keeping those controls.

        Fewer than 2 points is logged as an error and gives an empty path.

        Args:
            points: Sequence of (x, y, z) or (x, y) anchor points.
            closed: Whether the end point connects back to the start point.
            space: 3D space, or clamped to the xy/xz plane.
            control_mode: Control mode of the new path.
            normal_angles: Optional normal angle (degrees) per anchor.

        Raises:
            InvalidArgumentError: If the angle count does not match the anchor count.
        """
        if not isinstance(control_mode, ControlMode):
            raise InvalidArgumentError(f"Unknown control mode {control_mode!r}")
        polygon = cls.__new__(cls)
        polygon._init_state()
        pts = GeomMath.as_points3(points)
        if pts.shape[0] < 2:
            logger.error("Path requires at least 2 anchor points, got %d", pts.shape[0])
            polygon._space = space
            polygon._control_mode = control_mode
            return polygon

        polygon._control_mode = ControlMode.AUTOMATIC
        zero = np.zeros(3, dtype=np.float64)
        polygon._points = np.array([pts[0], zero, zero, pts[1]], dtype=np.float64)
        polygon._normal_angles = [0.0, 0.0]
        for anchor in pts[2:]:
            polygon.add_segment_to_end(anchor)
        polygon._auto_set_all_control_points()
        polygon._finish_construction(closed, space, normal_angles)
        polygon._control_mode = control_mode
        return polygon

    @classmethod
    def from_raw_points(
        # pylint: disable=too-many-arguments,too-many-positional-arguments
        cls,
        points,
        closed: bool = False,
        space: PathSpace = PathSpace.XYZ,
        control_mode: ControlMode = ControlMode.ALIGNED,
        normal_angles: Optional[Iterable[float]] = None,
    ) -> ControlPolygon:
        """
        Create a path from its complete point list (anchors and controls).

        The points describe an open path of 3n + 1 points; with closed=True
        the two closing controls are added. In AUTOMATIC mode the given
        controls are replaced by computed ones.

        Raises:
            InvalidArgumentError: If the point count is not 3n + 1 (n >= 1),
                or the angle count does not match the anchor count.
        """
        if not isinstance(control_mode, ControlMode):
            raise InvalidArgumentError(f"Unknown control mode {control_mode!r}")
        pts = GeomMath.as_points3(points)
        if pts.shape[0] < 4 or (pts.shape[0] - 1) % 3 != 0:
            raise InvalidArgumentError(f"A raw point list requires 3n + 1 points (n >= 1), got {pts.shape[0]}")
        polygon = cls.__new__(cls)
        polygon._init_state()
        polygon._control_mode = control_mode
        polygon._points = pts
        polygon._normal_angles = [0.0] * polygon.num_anchor_points
        if control_mode == ControlMode.AUTOMATIC:
            polygon._auto_set_all_control_points()
        polygon._finish_construction(closed, space, normal_angles)
        return polygon

    def _finish_construction(
        self, closed: bool, space: PathSpace, normal_angles: Optional[Iterable[float]]
    ) -> None:
        if normal_angles is not None:
            angles = [float(angle) for angle in normal_angles]
            if len(angles) != self.num_anchor_points:
                raise InvalidArgumentError(
                    f"Expected {self.num_anchor_points} normal angles (one per anchor), got {len(angles)}"
                )
            self._normal_angles = angles
        self.set_space(space)
        self.set_closed(closed)

    ###########################################################################
    # Accessors
    ###########################################################################

    @property
    def points(self) -> NDArray[np.float64]:
        """All points (anchors and controls) in local coordinates as a read-only array of shape (n, 3)."""
        view = self._points.view()
        view.flags.writeable = False
        return view

    @property
    def world_points(self) -> NDArray[np.float64]:
        """All points in world coordinates (a new array)."""
        return self._points + self._position

    def get_point(self, index: int) -> NDArray[np.float64]:
        """World space position of the point at index."""
        self._check_point_index(index)
        return self._points[index] + self._position

    def __getitem__(self, index: int) -> NDArray[np.float64]:
        return self.get_point(index)

    def __len__(self) -> int:
        return self._points.shape[0]

    @property
    def is_empty(self) -> bool:
        """True for a path that failed construction and holds no points."""
        return self._points.shape[0] == 0

    @property
    def num_points(self) -> int:
        """Total number of points in the path (anchors and controls)."""
        return self._points.shape[0]

    @property
    def num_anchor_points(self) -> int:
        """Number of anchor points making up the path."""
        n = self._points.shape[0]
        return n // 3 if self._closed else (n + 2) // 3

    @property
    def num_segments(self) -> int:
        """Number of bezier curves making up the path."""
        return self._points.shape[0] // 3

    @staticmethod
    def is_anchor(index: int) -> bool:
        """Return True if the point index belongs to an anchor."""
        return index % 3 == 0

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def space(self) -> PathSpace:
        return self._space

    @property
    def control_mode(self) -> ControlMode:
        return self._control_mode

    @property
    def auto_control_length(self) -> float:
        return self._auto_control_length

    @property
    def position(self) -> NDArray[np.float64]:
        return self._position.copy()

    @property
    def pivot(self) -> NDArray[np.float64]:
        return self._pivot.copy()

    @property
    def rotation(self) -> NDArray[np.float64]:
        """Accumulated rotation as quaternion (x, y, z, w)."""
        return self._rotation.copy()

    @property
    def scale(self) -> NDArray[np.float64]:
        return self._scale.copy()

    @property
    def flip_normals(self) -> bool:
        return self._flip_normals

    @property
    def global_normal_angle(self) -> float:
        return self._global_normal_angle

    @property
    def normal_angles(self) -> Tuple[float, ...]:
        """Normal angle (degrees) of every anchor, as stored."""
        return tuple(self._normal_angles)

    @property
    def connections(self) -> Tuple[Connection, ...]:
        return tuple(self._connections)

    @property
    def registry(self) -> Optional[PathRegistry]:
        return self._registry

    @property
    def path_id(self) -> Optional[int]:
        """Id of this path in its registry, None if unregistered."""
        return self._path_id

    def get_points_in_segment(self, segment_index: int) -> NDArray[np.float64]:
        """World positions of the 4 points of a segment (anchor1, control1, control2, anchor2)."""
        return self._segment_local(segment_index) + self._position

    def _segment_local(self, segment_index: int) -> NDArray[np.float64]:
        self._check_segment_index(segment_index)
        start = segment_index * 3
        indices = [start, start + 1, start + 2, self._loop_index(start + 3)]
        return self._points[indices]

    @property
    def bounds(self) -> Bounds3D:
        """Exact world space bounding box of the path, recomputed only after changes."""
        if not self._bounds_up_to_date or self._bounds is None:
            self._require_points()
            bounds: Optional[Bounds3D] = None
            for segment_index in range(self.num_segments):
                segment_bounds = BezierCurve.calculate_bounds(self.get_points_in_segment(segment_index))
                bounds = segment_bounds if bounds is None else bounds.union(segment_bounds)
            self._bounds = bounds
            self._bounds_up_to_date = True
        return self._bounds  # type: ignore[return-value]

    ###########################################################################
    # Listeners
    ###########################################################################

    def add_listener(self, listener: PathListener) -> None:
        """Register a callback invoked synchronously after every modification."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: PathListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    ###########################################################################
    # Editing
    ###########################################################################

    def add_segment_to_end(self, anchor_pos: Vec3Like) -> Optional[PathModified]:
        """Add a new anchor point to the end of the path (no-op for closed paths)."""
        self._require_points()
        if self._closed:
            return None
        anchor = self._to_local(anchor_pos)
        pts = self._points

        last_anchor = pts[-1]
        # new control mirrors its counterpart
        offset = last_anchor - pts[-2]
        if self._control_mode not in (ControlMode.MIRRORED, ControlMode.AUTOMATIC):
            # aligned with its counterpart, half the distance to the new anchor
            dst_prev_to_new = float(np.linalg.norm(last_anchor - anchor))
            offset = GeomMath.normalize(offset) * dst_prev_to_new * 0.5
        second_control = last_anchor + offset
        control_for_new_anchor = (anchor + second_control) * 0.5

        self._points = np.vstack([pts, second_control, control_for_new_anchor, anchor])
        self._normal_angles.append(self._normal_angles[-1])

        if self._control_mode == ControlMode.AUTOMATIC:
            self._auto_set_all_affected_control_points(self.num_points - 1)

        new_anchor_index = self.num_anchor_points - 1
        self.handle_anchor_added(new_anchor_index)
        return self._notify("add_segment_to_end", (new_anchor_index,))

    def add_segment_to_start(self, anchor_pos: Vec3Like) -> Optional[PathModified]:
        """Add a new anchor point to the start of the path (no-op for closed paths)."""
        self._require_points()
        if self._closed:
            return None
        anchor = self._to_local(anchor_pos)
        pts = self._points

        first_anchor = pts[0]
        offset = first_anchor - pts[1]
        if self._control_mode not in (ControlMode.MIRRORED, ControlMode.AUTOMATIC):
            dst_prev_to_new = float(np.linalg.norm(first_anchor - anchor))
            offset = GeomMath.normalize(offset) * dst_prev_to_new * 0.5
        second_control = first_anchor + offset
        control_for_new_anchor = (anchor + second_control) * 0.5

        self._points = np.vstack([anchor, control_for_new_anchor, second_control, pts])
        self._normal_angles.insert(0, self._normal_angles[0])

        if self._control_mode == ControlMode.AUTOMATIC:
            self._auto_set_all_affected_control_points(0)

        self.handle_anchor_added(0)
        return self._notify("add_segment_to_start", (0,))

    def split_segment(self, anchor_pos: Vec3Like, segment_index: int, split_time: float) -> PathModified:
        """
        Insert a new anchor inside a segment.

        Outside AUTOMATIC mode the controls around the new anchor are placed so
        that the shape of the curve changes as little as possible.

        Args:
            anchor_pos: World position of the new anchor.
            segment_index: Segment to split.
            split_time: Curve time of the new anchor within the segment, clamped to [0, 1].
        """
        self._require_points()
        self._check_segment_index(segment_index)
        split_time = min(1.0, max(0.0, float(split_time)))
        anchor = self._to_local(anchor_pos)
        new_anchor_index = segment_index * 3 + 3
        insert_at = segment_index * 3 + 2

        if self._control_mode == ControlMode.AUTOMATIC:
            zero = np.zeros(3, dtype=np.float64)
            self._points = np.insert(self._points, insert_at, [zero, anchor, zero], axis=0)
            self._auto_set_all_affected_control_points(new_anchor_index)
        else:
            first, second = BezierCurve.split(self._segment_local(segment_index), split_time)
            self._points = np.insert(self._points, insert_at, [first[2], second[0], second[1]], axis=0)
            offset = self._position
            self.move_point(new_anchor_index - 2, first[1] + offset, suppress_notify=True)
            self.move_point(new_anchor_index + 2, second[2] + offset, suppress_notify=True)
            self.move_point(new_anchor_index, anchor + offset, suppress_notify=True)

            if self._control_mode == ControlMode.MIRRORED:
                avg_dst = (
                    float(np.linalg.norm(first[2] - anchor)) + float(np.linalg.norm(second[1] - anchor))
                ) / 2.0
                direction = GeomMath.normalize(second[1] - anchor)
                self.move_point(new_anchor_index + 1, anchor + direction * avg_dst + offset, suppress_notify=True)

        # angle of the new anchor lies between the angles of its neighbours
        num_angles = len(self._normal_angles)
        angle_prev = self._normal_angles[segment_index]
        angle_next = self._normal_angles[(segment_index + 1) % num_angles]
        self._normal_angles.insert(segment_index + 1, GeomMath.lerp_angle(angle_prev, angle_next, split_time))

        self.handle_anchor_added(segment_index + 1)
        return self._notify("split_segment", (segment_index + 1,))

    def delete_segment(self, anchor_point_index: int) -> Optional[PathModified]:
        """
        Delete the anchor at the given point index together with its associated control points.

        The last remaining segment of an open path (or the last two of a closed
        path) cannot be deleted; such requests are ignored.
        """
        self._require_points()
        self._check_point_index(anchor_point_index)
        if not self.is_anchor(anchor_point_index):
            raise InvalidArgumentError(f"Point {anchor_point_index} is not an anchor point")

        if not (self.num_segments > 2 or (not self._closed and self.num_segments > 1)):
            logger.debug(
                "Ignoring deletion of anchor point %d: path has only %d segment(s)",
                anchor_point_index,
                self.num_segments,
            )
            return None

        pts = self._points
        if anchor_point_index == 0:
            if self._closed:
                pts[-1] = pts[2]
            remove = [0, 1, 2]
        elif anchor_point_index == pts.shape[0] - 1 and not self._closed:
            remove = [anchor_point_index - 2, anchor_point_index - 1, anchor_point_index]
        else:
            remove = [anchor_point_index - 1, anchor_point_index, anchor_point_index + 1]
        self._points = np.delete(pts, remove, axis=0)

        removed_anchor = anchor_point_index // 3
        del self._normal_angles[removed_anchor]

        if self._control_mode == ControlMode.AUTOMATIC:
            self._auto_set_all_control_points()

        self.handle_anchor_removed(removed_anchor)
        return self._notify("delete_segment", (removed_anchor,))

    def move_point(self, index: int, point_pos: Vec3Like, suppress_notify: bool = False) -> Optional[PathModified]:
        """
        Move an existing point to a new world position.

        The position is clamped to the path space. Moving an anchor drags its
        controls along. Moving a control realigns the opposite control in
        ALIGNED and MIRRORED mode. In AUTOMATIC mode controls cannot be moved
        directly; moving an anchor recomputes the surrounding controls.

        Args:
            index: Point index.
            point_pos: New world position.
            suppress_notify: If True, listeners and connections are not informed.
        """
        self._require_points()
        self._check_point_index(index)
        pos = self._to_local(point_pos)
        pts = self._points
        n = pts.shape[0]
        delta = pos - pts[index]
        is_anchor = self.is_anchor(index)

        if not is_anchor and self._control_mode == ControlMode.AUTOMATIC:
            return None

        pts[index] = pos

        if self._control_mode == ControlMode.AUTOMATIC:
            self._auto_set_all_affected_control_points(index)
        elif is_anchor:
            if index + 1 < n or self._closed:
                pts[self._loop_index(index + 1)] += delta
            if index - 1 >= 0 or self._closed:
                pts[self._loop_index(index - 1)] += delta
        elif self._control_mode != ControlMode.FREE:
            next_is_anchor = (index + 1) % 3 == 0
            attached_index = index + 2 if next_is_anchor else index - 2
            anchor_index = index + 1 if next_is_anchor else index - 1

            if 0 <= attached_index < n or self._closed:
                anchor = pts[self._loop_index(anchor_index)]
                if self._control_mode == ControlMode.ALIGNED:
                    # attached control keeps its current distance from the anchor
                    distance = float(np.linalg.norm(anchor - pts[self._loop_index(attached_index)]))
                else:
                    distance = float(np.linalg.norm(anchor - pos))
                direction = GeomMath.normalize(anchor - pos)
                pts[self._loop_index(attached_index)] = anchor + direction * distance

        if suppress_notify:
            self._bounds_up_to_date = False
            return None
        return self._notify("move_point", (index,))

    def recompute_automatic_controls(self) -> PathModified:
        """Place every control point automatically for a smooth path (regardless of control mode)."""
        self._require_points()
        self._auto_set_all_control_points()
        return self._notify("recompute_automatic_controls")

    def clear(self) -> PathModified:
        """Reduce the path to a single open segment of 4 points along one axis, resetting anchor angles."""
        self._require_points()
        if self._closed:
            self.set_closed(False)
        while self.num_segments > 1:
            self.delete_segment(0)
        direction = AXIS_Y if self._space == PathSpace.XY else AXIS_Z
        self._points = np.array([direction * i for i in range(4)], dtype=np.float64)
        self._normal_angles = [0.0] * self.num_anchor_points
        return self._notify("clear")

    def append_path(self, other: ControlPolygon) -> PathModified:
        """
        Join another path onto the end of this one.

        All points of the other path are appended (at their world positions).
        The two new controls bridging the gap follow the end and start
        tangents of the joined paths. Normal angles of the other path are
        carried over relative to the global normal angles.

        Raises:
            PathError: If either path is empty or closed.
        """
        self._require_points()
        other._require_points()
        if self._closed or other.is_closed:
            raise PathError("Only open paths can be joined")

        pts = self._points
        other_local = other.world_points - self._position
        gap = float(np.linalg.norm(other_local[0] - pts[-1]))
        end_control = pts[-1] + GeomMath.normalize(pts[-1] - pts[-2]) * gap * JOIN_CONTROL_FACTOR
        start_control = other_local[0] + GeomMath.normalize(other_local[0] - other_local[1]) * gap * JOIN_CONTROL_FACTOR

        first_new_anchor = self.num_anchor_points
        self._points = self._constrain_many(np.vstack([pts, end_control, start_control, other_local]))
        angle_offset = other.global_normal_angle - self._global_normal_angle
        self._normal_angles.extend(angle + angle_offset for angle in other.normal_angles)
        return self._notify("append_path", tuple(range(first_new_anchor, self.num_anchor_points)))

    ###########################################################################
    # Commands with implicit recompute
    ###########################################################################

    def set_closed(self, closed: bool) -> Optional[PathModified]:
        """Close the path (adding two controls joining end and start) or open it (removing them)."""
        closed = bool(closed)
        if closed == self._closed:
            return None
        self._require_points()
        self._closed = closed
        pts = self._points

        if closed:
            # new controls mirror their counterparts
            last_second_control = pts[-1] * 2.0 - pts[-2]
            first_second_control = pts[0] * 2.0 - pts[1]
            if self._control_mode not in (ControlMode.MIRRORED, ControlMode.AUTOMATIC):
                # aligned with their counterparts, half the distance between start and end anchor
                dst = float(np.linalg.norm(pts[-1] - pts[0]))
                last_second_control = pts[-1] + GeomMath.normalize(pts[-1] - pts[-2]) * dst * 0.5
                first_second_control = pts[0] + GeomMath.normalize(pts[0] - pts[1]) * dst * 0.5
            self._points = np.vstack([pts, last_second_control, first_second_control])
        else:
            self._points = pts[:-2].copy()

        if self._control_mode == ControlMode.AUTOMATIC:
            self._auto_set_start_and_end_controls()

        return self._notify("closed")

    def set_space(self, space: PathSpace) -> Optional[PathModified]:
        """
        Move the path into another space.

        Going from 3D to a plane discards the axis along which the path has the
        smallest extent. Going from one plane to the other swaps the in-plane
        axes so the path keeps its shape. Going to 3D changes no points.
        """
        if not isinstance(space, PathSpace):
            raise InvalidArgumentError(f"Unknown path space {space!r}")
        if space == self._space:
            return None
        self._require_points()
        previous_space = self._space
        pts = self._points
        px, py, pz = self._position
        zeros = np.zeros(pts.shape[0], dtype=np.float64)

        if previous_space == PathSpace.XYZ:
            size = self.bounds.size
            min_size = float(size.min())
            if space == PathSpace.XY:
                self._position = np.array([px, py, 0.0], dtype=np.float64)
                x = pts[:, 2] if size[0] == min_size else pts[:, 0]
                y = pts[:, 2] if size[1] == min_size else pts[:, 1]
                self._points = np.column_stack([x, y, zeros])
            elif space == PathSpace.XZ:
                self._position = np.array([px, 0.0, pz], dtype=np.float64)
                x = pts[:, 1] if size[0] == min_size else pts[:, 0]
                z = pts[:, 1] if size[2] == min_size else pts[:, 2]
                self._points = np.column_stack([x, zeros, z])
        elif space == PathSpace.XY:
            self._position = np.array([px, pz, 0.0], dtype=np.float64)
            self._points = np.column_stack([pts[:, 0], pts[:, 2], zeros])
        elif space == PathSpace.XZ:
            self._position = np.array([px, 0.0, py], dtype=np.float64)
            self._points = np.column_stack([pts[:, 0], zeros, pts[:, 1]])

        self._space = space
        if space != PathSpace.XYZ:
            self._rotation = GeomMath.quat_twist(self._rotation, self._plane_axis())

        return self._notify("space")

    def set_control_mode(self, control_mode: ControlMode) -> Optional[PathModified]:
        """Change the control mode; switching to AUTOMATIC recomputes all controls."""
        if not isinstance(control_mode, ControlMode):
            raise InvalidArgumentError(f"Unknown control mode {control_mode!r}")
        if control_mode == self._control_mode:
            return None
        self._control_mode = control_mode
        if self.is_empty:
            return None
        if control_mode == ControlMode.AUTOMATIC:
            self._auto_set_all_control_points()
        return self._notify("control_mode")

    def set_auto_control_length(self, value: float) -> Optional[PathModified]:
        """Set the scale of automatic control distances (at least 0.01); recomputes controls in AUTOMATIC mode."""
        value = max(float(value), MIN_AUTO_CONTROL_LENGTH)
        if value == self._auto_control_length:
            return None
        self._auto_control_length = value
        if self.is_empty:
            return None
        if self._control_mode == ControlMode.AUTOMATIC:
            self._auto_set_all_control_points()
        return self._notify("auto_control_length")

    ###########################################################################
    # Transforms
    ###########################################################################

    def set_position(self, value: Vec3Like) -> Optional[PathModified]:
        """Set the world position of the path (the locked axis of a plane path stays zero)."""
        pos = self._constrain(GeomMath.as_vector3(value))
        if np.array_equal(pos, self._position):
            return None
        self._position = pos
        return self._notify("position")

    def set_pivot(self, value: Vec3Like) -> None:
        """Set the world point around which rotation and scale are applied."""
        self._pivot = GeomMath.as_vector3(value)

    def set_rotation(self, rotation) -> Optional[PathModified]:
        """
        Rotate the path around the pivot so that its accumulated rotation becomes the given one.

        The points are rotated by the difference between the new and the current
        rotation. Plane paths only keep the rotation around the plane normal.

        Args:
            rotation: Quaternion (x, y, z, w).
        """
        self._require_points()
        quat = GeomMath.quat_normalize(rotation)
        if self._space != PathSpace.XYZ:
            quat = GeomMath.quat_twist(quat, self._plane_axis())
        if GeomMath.quat_equal(quat, self._rotation):
            return None

        rot_from_origin = GeomMath.quat_multiply(quat, GeomMath.quat_inverse(self._rotation))
        local_pivot = self._pivot - self._position
        self._points = self._constrain_many(GeomMath.quat_rotate(rot_from_origin, self._points - local_pivot) + local_pivot)
        self._rotation = quat
        return self._notify("rotation")

    def set_scale(self, scale: Vec3Like) -> Optional[PathModified]:
        """
        Scale the path around the pivot so that its accumulated scale becomes the given one.

        Zero components are replaced by a small positive value. The locked axis
        of a plane path is never scaled.
        """
        self._require_points()
        value = GeomMath.as_vector3(scale)
        value[value == 0.0] = MIN_SCALE
        locked_axis = self._locked_axis()
        if locked_axis is not None:
            value[locked_axis] = self._scale[locked_axis]
        if np.array_equal(value, self._scale):
            return None

        delta_scale = value / self._scale
        local_pivot = self._pivot - self._position
        self._points = self._constrain_many((self._points - local_pivot) * delta_scale + local_pivot)
        self._scale = value
        return self._notify("scale")

    ###########################################################################
    # Normals
    ###########################################################################

    def set_flip_normals(self, flip: bool) -> Optional[PathModified]:
        """Flip the normal vectors by 180 degrees."""
        flip = bool(flip)
        if flip == self._flip_normals:
            return None
        self._flip_normals = flip
        return self._notify("flip_normals")

    def set_global_normal_angle(self, angle: float) -> Optional[PathModified]:
        """Angle (degrees) by which all normals of a 3D path are rotated."""
        angle = float(angle)
        if angle == self._global_normal_angle:
            return None
        self._global_normal_angle = angle
        return self._notify("global_normal_angle")

    def get_anchor_normal_angle(self, anchor_index: int) -> float:
        """Desired normal angle (degrees, in [0, 360)) at an anchor."""
        self._check_anchor_index(anchor_index)
        return self._normal_angles[anchor_index] % 360.0

    def set_anchor_normal_angle(self, anchor_index: int, angle: float) -> Optional[PathModified]:
        """Set the desired normal angle (degrees) at an anchor; stored in [0, 360)."""
        self._check_anchor_index(anchor_index)
        angle = float(angle) % 360.0
        if self._normal_angles[anchor_index] == angle:
            return None
        self._normal_angles[anchor_index] = angle
        return self._notify("anchor_normal_angle", (anchor_index,))

    def reset_normal_angles(self) -> PathModified:
        """Reset the global and every anchor normal angle to 0."""
        self._normal_angles = [0.0] * len(self._normal_angles)
        self._global_normal_angle = 0.0
        return self._notify("reset_normal_angles")

    ###########################################################################
    # Connections
    ###########################################################################

    def create_connection(self, anchor_index: int, target_path_id: int, target_anchor_index: int) -> None:
        """Pin an anchor of this path to an anchor of another path of the same registry (two-way)."""
        self._require_registry().create_connection(self._path_id, anchor_index, target_path_id, target_anchor_index)

    def remove_connection(self, anchor_index: int, target_path_id: int, target_anchor_index: int) -> None:
        """Remove a connection in both directions."""
        self._require_registry().remove_connection(self._path_id, anchor_index, target_path_id, target_anchor_index)

    def connections_at(self, anchor_index: int) -> List[Connection]:
        """All connections attached to the given anchor."""
        self._check_anchor_index(anchor_index)
        return [connection for connection in self._connections if connection.anchor_index == anchor_index]

    def distinct_connected_paths(self) -> List[int]:
        """Ids of all paths connected to this one, in connection order."""
        result: List[int] = []
        for connection in self._connections:
            if connection.target_path_id not in result:
                result.append(connection.target_path_id)
        return result

    def apply_changes_to_connections(self) -> None:
        """Push the anchors (and adjacent controls) of all connections to the connected paths."""
        if self._registry is None or not self._connections:
            return
        self._registry.propagate_from(self._path_id)

    def handle_anchor_added(self, anchor_index: int) -> None:
        """Shift connections at or after a newly inserted anchor by one."""
        if not self._connections:
            return
        registry = self._require_registry()
        snapshot = sorted(self._connections, key=lambda c: c.anchor_index, reverse=True)
        for connection in snapshot:
            if connection.anchor_index >= anchor_index:
                registry.remove_connection_object(connection)
                registry.create_connection(
                    connection.path_id,
                    connection.anchor_index + 1,
                    connection.target_path_id,
                    connection.target_anchor_index,
                )
                logger.debug(
                    "Connection %d:%d => %d:%d changed to %d:%d",
                    connection.path_id,
                    connection.anchor_index,
                    connection.target_path_id,
                    connection.target_anchor_index,
                    connection.path_id,
                    connection.anchor_index + 1,
                )

    def handle_anchor_removed(self, anchor_index: int) -> None:
        """Drop connections at a removed anchor and shift those after it down by one."""
        if not self._connections:
            return
        registry = self._require_registry()
        snapshot = sorted(self._connections, key=lambda c: c.anchor_index)
        for connection in snapshot:
            if connection.anchor_index > anchor_index:
                registry.remove_connection_object(connection)
                registry.create_connection(
                    connection.path_id,
                    connection.anchor_index - 1,
                    connection.target_path_id,
                    connection.target_anchor_index,
                )
                logger.debug(
                    "Connection %d:%d => %d:%d changed to %d:%d",
                    connection.path_id,
                    connection.anchor_index,
                    connection.target_path_id,
                    connection.target_anchor_index,
                    connection.path_id,
                    connection.anchor_index - 1,
                )
            elif connection.anchor_index == anchor_index:
                registry.remove_connection_object(connection)
                logger.debug(
                    "Connection %d:%d => %d:%d removed",
                    connection.path_id,
                    connection.anchor_index,
                    connection.target_path_id,
                    connection.target_anchor_index,
                )

    def _push_connection(self, connection: Connection, target: ControlPolygon) -> None:
        """Copy the anchor of a connection and its adjacent controls onto the target path."""
        point_index = connection.anchor_index * 3
        target_point_index = connection.target_anchor_index * 3
        if point_index >= self.num_points or target_point_index >= target.num_points:
            return

        changed = False
        anchor = self.get_point(point_index)
        if not np.allclose(anchor, target.get_point(target_point_index), rtol=0.0, atol=1e-9):
            target.move_point(target_point_index, anchor, suppress_notify=True)
            changed = True

        # next control point
        control_index = point_index + 1
        target_control_index = target_point_index + 1
        if control_index < self.num_points and target_control_index < target.num_points:
            control = self.get_point(control_index)
            if not np.allclose(control, target.get_point(target_control_index), rtol=0.0, atol=1e-9):
                target.move_point(target_control_index, control, suppress_notify=True)
                changed = True

        # previous control point
        control_index = point_index - 1
        target_control_index = target_point_index - 1
        if control_index >= 0 and target_control_index >= 0:
            control = self.get_point(control_index)
            if not np.allclose(control, target.get_point(target_control_index), rtol=0.0, atol=1e-9):
                target.move_point(target_control_index, control, suppress_notify=True)
                changed = True

        if changed:
            target._notify("connection", (connection.target_anchor_index,))  # pylint: disable=protected-access

    def _add_connection(self, connection: Connection) -> bool:
        if connection in self._connections:
            return False
        self._connections.append(connection)
        return True

    def _remove_connection(self, connection: Connection) -> None:
        self._connections = [c for c in self._connections if c != connection]

    def _attach(self, registry: PathRegistry, path_id: int) -> None:
        self._registry = registry
        self._path_id = path_id

    def _detach(self) -> None:
        self._connections = []
        self._registry = None
        self._path_id = None

    ###########################################################################
    # Serialization
    ###########################################################################

    def to_dict(self) -> dict:
        """Convert the ControlPolygon instance to a dictionary."""
        return {
            "points": self._points.tolist(),
            "closed": self._closed,
            "space": self._space.value,
            "control_mode": self._control_mode.value,
            "auto_control_length": self._auto_control_length,
            "normal_angles": list(self._normal_angles),
            "global_normal_angle": self._global_normal_angle,
            "flip_normals": self._flip_normals,
            "position": self._position.tolist(),
            "pivot": self._pivot.tolist(),
            "rotation": self._rotation.tolist(),
            "scale": self._scale.tolist(),
            "connections": [connection.to_dict() for connection in self._connections],
        }

    @classmethod
    def from_dict(cls, data: dict) -> ControlPolygon:
        """
        Create a ControlPolygon instance from a dictionary.

        The returned path is not registered; connections are restored by
        PathRegistry.from_dict.

        Raises:
            InvalidArgumentError: If the point or angle count is inconsistent.
        """
        polygon = cls.__new__(cls)
        polygon._init_state()
        polygon._points = GeomMath.as_points3(data.get("points", []))
        polygon._closed = bool(data.get("closed", False))
        polygon._space = PathSpace(data.get("space", PathSpace.XYZ.value))
        polygon._control_mode = ControlMode(data.get("control_mode", ControlMode.ALIGNED.value))
        polygon._auto_control_length = float(data.get("auto_control_length", AUTO_CONTROL_LENGTH))
        polygon._global_normal_angle = float(data.get("global_normal_angle", 0.0))
        polygon._flip_normals = bool(data.get("flip_normals", False))
        polygon._position = GeomMath.as_vector3(data.get("position", (0.0, 0.0, 0.0)))
        polygon._pivot = GeomMath.as_vector3(data.get("pivot", (0.0, 0.0, 0.0)))
        rotation = np.asarray(data.get("rotation", IDENTITY_QUATERNION), dtype=np.float64).reshape(-1)
        if rotation.shape[0] != 4:
            raise InvalidArgumentError(f"Quaternion must have 4 components (x, y, z, w), got {rotation.shape[0]}")
        polygon._rotation = rotation.copy()
        polygon._scale = GeomMath.as_vector3(data.get("scale", (1.0, 1.0, 1.0)))

        n = polygon.num_points
        if n > 0:
            valid = n % 3 == 0 and n >= 6 if polygon._closed else n % 3 == 1 and n >= 4
            if not valid:
                state = "closed" if polygon._closed else "open"
                raise InvalidArgumentError(f"{n} points do not form an {state} cubic bezier path")
        angles = data.get("normal_angles")
        polygon._normal_angles = (
            [0.0] * polygon.num_anchor_points if angles is None else [float(angle) for angle in angles]
        )
        if len(polygon._normal_angles) != polygon.num_anchor_points:
            raise InvalidArgumentError(
                f"Expected {polygon.num_anchor_points} normal angles, got {len(polygon._normal_angles)}"
            )
        return polygon

    def copy(self) -> ControlPolygon:
        """Deep copy of this path, without connections, listeners and registry."""
        return ControlPolygon.from_dict(self.to_dict())

    ###########################################################################
    # Automatic control placement
    ###########################################################################

    def _auto_set_all_affected_control_points(self, updated_anchor_index: int) -> None:
        """Recompute the controls around a moved or inserted anchor and its neighbours."""
        n = self.num_points
        for i in range(updated_anchor_index - 3, updated_anchor_index + 4, 3):
            if 0 <= i < n or self._closed:
                self._auto_set_anchor_control_points(self._loop_index(i))
        self._auto_set_start_and_end_controls()

    def _auto_set_all_control_points(self) -> None:
        if self.num_anchor_points > 2:
            for i in range(0, self.num_points, 3):
                self._auto_set_anchor_control_points(i)
        self._auto_set_start_and_end_controls()

    def _auto_set_anchor_control_points(self, anchor_index: int) -> None:
        """
        Place both controls of an anchor for a smooth path.

        The controls lie on the line perpendicular to the bisector of the angle
        formed with the two neighbouring anchors, at a distance proportional to
        the distance to the respective neighbour.
        """
        pts = self._points
        n = pts.shape[0]
        anchor = pts[anchor_index].copy()
        direction = np.zeros(3, dtype=np.float64)
        neighbour_distances = [0.0, 0.0]

        if anchor_index - 3 >= 0 or self._closed:
            offset = pts[self._loop_index(anchor_index - 3)] - anchor
            direction += GeomMath.normalize(offset)
            neighbour_distances[0] = float(np.linalg.norm(offset))
        if anchor_index + 3 < n or self._closed:
            offset = pts[self._loop_index(anchor_index + 3)] - anchor
            direction -= GeomMath.normalize(offset)
            neighbour_distances[1] = -float(np.linalg.norm(offset))

        direction = GeomMath.normalize(direction)
        for i in range(2):
            control_index = anchor_index + i * 2 - 1
            if 0 <= control_index < n or self._closed:
                pts[self._loop_index(control_index)] = (
                    anchor + direction * neighbour_distances[i] * self._auto_control_length
                )

    def _auto_set_start_and_end_controls(self) -> None:
        pts = self._points
        if self._closed:
            # two anchors would otherwise give a straight line
            if self.num_anchor_points == 2:
                dir_a_to_b = GeomMath.normalize(pts[3] - pts[0])
                dst_between_anchors = float(np.linalg.norm(pts[0] - pts[3]))
                perp = np.cross(dir_a_to_b, AXIS_Z if self._space == PathSpace.XY else AXIS_Y)
                pts[1] = pts[0] + perp * dst_between_anchors / 2.0
                pts[5] = pts[0] - perp * dst_between_anchors / 2.0
                pts[2] = pts[3] + perp * dst_between_anchors / 2.0
                pts[4] = pts[3] - perp * dst_between_anchors / 2.0
            else:
                self._auto_set_anchor_control_points(0)
                self._auto_set_anchor_control_points(pts.shape[0] - 3)
        elif self.num_anchor_points == 2:
            # two anchors would otherwise make the path flip on minor adjustments
            pts[1] = pts[0] + (pts[3] - pts[0]) * 0.25
            pts[2] = pts[3] + (pts[0] - pts[3]) * 0.25
        else:
            pts[1] = (pts[0] + pts[2]) * 0.5
            pts[-2] = (pts[-1] + pts[-3]) * 0.5

    ###########################################################################
    # Internals
    ###########################################################################

    def _notify(self, kind: str, indices: Tuple[int, ...] = ()) -> PathModified:
        self._bounds_up_to_date = False
        event = PathModified(kind, tuple(indices))
        self.apply_changes_to_connections()
        for listener in list(self._listeners):
            listener(event)
        return event

    def _loop_index(self, index: int) -> int:
        """Wrap an index around the point list (for closed paths)."""
        n = self._points.shape[0]
        return (index + n) % n

    def _plane_axis(self) -> NDArray[np.float64]:
        return AXIS_Z if self._space == PathSpace.XY else AXIS_Y

    def _locked_axis(self) -> Optional[int]:
        if self._space == PathSpace.XY:
            return 2
        if self._space == PathSpace.XZ:
            return 1
        return None

    def _constrain(self, point: NDArray[np.float64]) -> NDArray[np.float64]:
        locked_axis = self._locked_axis()
        if locked_axis is not None:
            point = point.copy()
            point[locked_axis] = 0.0
        return point

    def _constrain_many(self, points: NDArray[np.float64]) -> NDArray[np.float64]:
        locked_axis = self._locked_axis()
        if locked_axis is not None:
            points = points.copy()
            points[:, locked_axis] = 0.0
        return points

    def _to_local(self, world_pos: Vec3Like) -> NDArray[np.float64]:
        return self._constrain(GeomMath.as_vector3(world_pos) - self._position)

    def _require_points(self) -> None:
        if self.is_empty:
            raise PathError("Path is empty (it was created from fewer than 2 anchor points)")

    def _require_registry(self) -> PathRegistry:
        if self._registry is None or self._path_id is None:
            raise PathError("Path is not part of a PathRegistry")
        return self._registry

    def _check_point_index(self, index: int) -> None:
        if not 0 <= index < self.num_points:
            raise InvalidArgumentError(f"Point index {index} out of range [0, {self.num_points})")

    def _check_anchor_index(self, anchor_index: int) -> None:
        if not 0 <= anchor_index < self.num_anchor_points:
            raise InvalidArgumentError(f"Anchor index {anchor_index} out of range [0, {self.num_anchor_points})")

    def _check_segment_index(self, segment_index: int) -> None:
        if not 0 <= segment_index < self.num_segments:
            raise InvalidArgumentError(f"Segment index {segment_index} out of range [0, {self.num_segments})")
