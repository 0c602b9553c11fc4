"""Handling geometries: vectors, angles, quaternions and axis-aligned bounds"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from bezpath.common import InvalidArgumentError, Vec3Like
from bezpath.consts import EPSILON

IDENTITY_QUATERNION: NDArray[np.float64] = np.array([0.0, 0.0, 0.0, 1.0], dtype=np.float64)
AXIS_X: NDArray[np.float64] = np.array([1.0, 0.0, 0.0], dtype=np.float64)
AXIS_Y: NDArray[np.float64] = np.array([0.0, 1.0, 0.0], dtype=np.float64)
AXIS_Z: NDArray[np.float64] = np.array([0.0, 0.0, 1.0], dtype=np.float64)


###############################################################################
# GeomMath
###############################################################################
class GeomMath:
    """Class to provide various static methods related to vector and rotation handling.

    Quaternions are numpy arrays ordered (x, y, z, w). Angles are in degrees.
    """

    @staticmethod
    def as_vector3(value: Vec3Like) -> NDArray[np.float64]:
        """
        Convert the given value into a float64 vector of shape (3,).

        A 2D input (x, y) is extended with z = 0.

        Raises:
            InvalidArgumentError: If the value has neither 2 nor 3 components.
        """
        arr = np.asarray(value, dtype=np.float64).reshape(-1)
        if arr.shape[0] == 2:
            return np.array([arr[0], arr[1], 0.0], dtype=np.float64)
        if arr.shape[0] != 3:
            raise InvalidArgumentError(f"Expected a 2D or 3D vector, got {arr.shape[0]} components")
        return arr.copy()

    @staticmethod
    def as_points3(values) -> NDArray[np.float64]:
        """Convert a sequence of 2D or 3D points into an array of shape (n, 3)."""
        arr = np.asarray(values, dtype=np.float64)
        if arr.size == 0:
            return np.empty((0, 3), dtype=np.float64)
        if arr.ndim != 2 or arr.shape[1] not in (2, 3):
            raise InvalidArgumentError(f"points must have shape (n, 2) or (n, 3), got {arr.shape}")
        if arr.shape[1] == 2:
            return np.column_stack([arr, np.zeros(arr.shape[0], dtype=np.float64)])
        return arr.copy()

    @staticmethod
    def normalize(vector: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return the unit vector, or the zero vector if the input has (near) zero length."""
        norm = float(np.linalg.norm(vector))
        if norm < EPSILON:
            return np.zeros(3, dtype=np.float64)
        return vector / norm

    @staticmethod
    def angle(from_vec: NDArray[np.float64], to_vec: NDArray[np.float64]) -> float:
        """Unsigned angle in degrees between two vectors (0 if either is zero)."""
        denom = float(np.linalg.norm(from_vec) * np.linalg.norm(to_vec))
        if denom < EPSILON:
            return 0.0
        cos_angle = float(np.dot(from_vec, to_vec)) / denom
        return math.degrees(math.acos(min(1.0, max(-1.0, cos_angle))))

    @staticmethod
    def signed_angle(
        from_vec: NDArray[np.float64], to_vec: NDArray[np.float64], axis: NDArray[np.float64]
    ) -> float:
        """Angle in degrees from one vector to another, signed by the rotation sense around axis."""
        unsigned = GeomMath.angle(from_vec, to_vec)
        sign = 1.0 if float(np.dot(axis, np.cross(from_vec, to_vec))) >= 0.0 else -1.0
        return unsigned * sign

    @staticmethod
    def delta_angle(current: float, target: float) -> float:
        """Shortest difference between two angles in degrees, in (-180, 180]."""
        delta = (target - current) % 360.0
        if delta > 180.0:
            delta -= 360.0
        return delta

    @staticmethod
    def lerp_angle(a: float, b: float, t: float) -> float:
        """Interpolate between two angles along the shortest path, t clamped to [0, 1]."""
        t = min(1.0, max(0.0, t))
        return a + GeomMath.delta_angle(a, b) * t

    @staticmethod
    def ping_pong(t: float, length: float) -> float:
        """Bounce t back and forth between 0 and length."""
        period = length * 2.0
        repeated = t - math.floor(t / period) * period
        return length - abs(repeated - length)

    @staticmethod
    def inverse_lerp(a: float, b: float, value: float) -> float:
        """Fraction of value between a and b, clamped to [0, 1] (0 if a == b)."""
        if a == b:
            return 0.0
        return min(1.0, max(0.0, (value - a) / (b - a)))

    @staticmethod
    def any_perpendicular(vector: NDArray[np.float64]) -> NDArray[np.float64]:
        """Return some unit vector perpendicular to the given one."""
        hint = AXIS_Y if abs(float(vector[1])) < 0.9 else AXIS_Z
        return GeomMath.normalize(np.cross(vector, hint))

    # Quaternions -------------------------------------------------------------

    @staticmethod
    def quat_angle_axis(angle: float, axis: Vec3Like) -> NDArray[np.float64]:
        """Quaternion rotating by angle (degrees) around axis."""
        unit = GeomMath.normalize(GeomMath.as_vector3(axis))
        if not unit.any():
            return IDENTITY_QUATERNION.copy()
        half = math.radians(angle) * 0.5
        return np.append(unit * math.sin(half), math.cos(half))

    @staticmethod
    def quat_normalize(quat) -> NDArray[np.float64]:
        """Return the unit quaternion (identity for a zero input)."""
        q = np.asarray(quat, dtype=np.float64).reshape(-1)
        if q.shape[0] != 4:
            raise InvalidArgumentError(f"Quaternion must have 4 components (x, y, z, w), got {q.shape[0]}")
        norm = float(np.linalg.norm(q))
        if norm < EPSILON:
            return IDENTITY_QUATERNION.copy()
        return q / norm

    @staticmethod
    def quat_multiply(q1: NDArray[np.float64], q2: NDArray[np.float64]) -> NDArray[np.float64]:
        """Hamilton product q1 * q2 (apply q2 first, then q1)."""
        x1, y1, z1, w1 = q1
        x2, y2, z2, w2 = q2
        return np.array(
            [
                w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
                w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
                w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
                w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
            ],
            dtype=np.float64,
        )

    @staticmethod
    def quat_inverse(quat: NDArray[np.float64]) -> NDArray[np.float64]:
        """Inverse rotation of a quaternion."""
        conj = np.array([-quat[0], -quat[1], -quat[2], quat[3]], dtype=np.float64)
        return conj / float(np.dot(quat, quat))

    @staticmethod
    def quat_to_matrix(quat: NDArray[np.float64]) -> NDArray[np.float64]:
        """3x3 rotation matrix of a unit quaternion."""
        x, y, z, w = quat
        return np.array(
            [
                [1.0 - 2.0 * (y * y + z * z), 2.0 * (x * y - z * w), 2.0 * (x * z + y * w)],
                [2.0 * (x * y + z * w), 1.0 - 2.0 * (x * x + z * z), 2.0 * (y * z - x * w)],
                [2.0 * (x * z - y * w), 2.0 * (y * z + x * w), 1.0 - 2.0 * (x * x + y * y)],
            ],
            dtype=np.float64,
        )

    @staticmethod
    def quat_from_matrix(matrix: NDArray[np.float64]) -> NDArray[np.float64]:
        """Unit quaternion of a 3x3 rotation matrix."""
        m = matrix
        trace = m[0, 0] + m[1, 1] + m[2, 2]
        if trace > 0.0:
            s = math.sqrt(trace + 1.0) * 2.0
            quat = [(m[2, 1] - m[1, 2]) / s, (m[0, 2] - m[2, 0]) / s, (m[1, 0] - m[0, 1]) / s, 0.25 * s]
        elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
            s = math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2]) * 2.0
            quat = [0.25 * s, (m[0, 1] + m[1, 0]) / s, (m[0, 2] + m[2, 0]) / s, (m[2, 1] - m[1, 2]) / s]
        elif m[1, 1] > m[2, 2]:
            s = math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2]) * 2.0
            quat = [(m[0, 1] + m[1, 0]) / s, 0.25 * s, (m[1, 2] + m[2, 1]) / s, (m[0, 2] - m[2, 0]) / s]
        else:
            s = math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1]) * 2.0
            quat = [(m[0, 2] + m[2, 0]) / s, (m[1, 2] + m[2, 1]) / s, 0.25 * s, (m[1, 0] - m[0, 1]) / s]
        return GeomMath.quat_normalize(quat)

    @staticmethod
    def quat_rotate(quat: NDArray[np.float64], vectors: NDArray[np.float64]) -> NDArray[np.float64]:
        """Rotate a single vector (3,) or an array of vectors (n, 3) by a quaternion."""
        matrix = GeomMath.quat_to_matrix(quat)
        return vectors @ matrix.T

    @staticmethod
    def quat_twist(quat: NDArray[np.float64], axis: NDArray[np.float64]) -> NDArray[np.float64]:
        """Twist component of a rotation around the given unit axis (swing-twist decomposition)."""
        projection = float(np.dot(quat[:3], axis)) * axis
        twist = np.append(projection, quat[3])
        if float(np.linalg.norm(twist)) < EPSILON:
            return IDENTITY_QUATERNION.copy()
        return GeomMath.quat_normalize(twist)

    @staticmethod
    def quat_equal(q1: NDArray[np.float64], q2: NDArray[np.float64], tol: float = 1e-9) -> bool:
        """Return True if both quaternions describe the same rotation."""
        return abs(float(np.dot(q1, q2))) > 1.0 - tol

    @staticmethod
    def rotate_around_axis(
        vector: NDArray[np.float64], axis: NDArray[np.float64], angle: float
    ) -> NDArray[np.float64]:
        """Rotate vector by angle (degrees) around axis."""
        return GeomMath.quat_rotate(GeomMath.quat_angle_axis(angle, axis), vector)

    @staticmethod
    def look_rotation(forward: NDArray[np.float64], up: NDArray[np.float64]) -> NDArray[np.float64]:
        """
        Quaternion whose local z axis points along forward and local y axis towards up.

        A zero forward vector gives the identity rotation. If up is parallel to
        forward, an arbitrary perpendicular up is used.
        """
        f = GeomMath.normalize(forward)
        if not f.any():
            return IDENTITY_QUATERNION.copy()
        right = GeomMath.normalize(np.cross(up, f))
        if not right.any():
            right = GeomMath.any_perpendicular(f)
        new_up = np.cross(f, right)
        return GeomMath.quat_from_matrix(np.column_stack([right, new_up, f]))


###############################################################################
# Bounds3D
###############################################################################
@dataclass
class Bounds3D:
    """
    Represents an axis-aligned bounding box in 3D.

    Attributes:
        xmin, ymin, zmin (float): The minimum coordinates.
        xmax, ymax, zmax (float): The maximum coordinates.
    """

    _xmin: float
    _ymin: float
    _zmin: float
    _xmax: float
    _ymax: float
    _zmax: float

    def __init__(
        # pylint: disable=too-many-arguments,too-many-positional-arguments
        self,
        xmin: float,
        ymin: float,
        zmin: float,
        xmax: float,
        ymax: float,
        zmax: float,
    ):
        self._xmin, self._xmax = min(xmin, xmax), max(xmin, xmax)
        self._ymin, self._ymax = min(ymin, ymax), max(ymin, ymax)
        self._zmin, self._zmax = min(zmin, zmax), max(zmin, zmax)

    @classmethod
    def from_min_max(cls, min_corner: Vec3Like, max_corner: Vec3Like) -> Bounds3D:
        """Create bounds from two corners."""
        lo = GeomMath.as_vector3(min_corner)
        hi = GeomMath.as_vector3(max_corner)
        return cls(float(lo[0]), float(lo[1]), float(lo[2]), float(hi[0]), float(hi[1]), float(hi[2]))

    @classmethod
    def from_points(cls, points) -> Bounds3D:
        """Create the tightest bounds enclosing the given points."""
        pts = GeomMath.as_points3(points)
        if pts.shape[0] == 0:
            raise InvalidArgumentError("Cannot compute bounds of zero points")
        return cls.from_min_max(pts.min(axis=0), pts.max(axis=0))

    @property
    def min(self) -> NDArray[np.float64]:
        """The minimum corner (x, y, z)."""
        return np.array([self._xmin, self._ymin, self._zmin], dtype=np.float64)

    @property
    def max(self) -> NDArray[np.float64]:
        """The maximum corner (x, y, z)."""
        return np.array([self._xmax, self._ymax, self._zmax], dtype=np.float64)

    @property
    def size(self) -> NDArray[np.float64]:
        """Extent along each axis."""
        return self.max - self.min

    @property
    def center(self) -> NDArray[np.float64]:
        """Centre point of the box."""
        return (self.min + self.max) * 0.5

    @property
    def extent(self) -> Tuple[float, float, float, float, float, float]:
        """The extent of the box as Tuple (xmin, ymin, zmin, xmax, ymax, zmax)."""
        return self._xmin, self._ymin, self._zmin, self._xmax, self._ymax, self._zmax

    def union(self, other: Bounds3D) -> Bounds3D:
        """Return the smallest bounds containing both boxes."""
        return Bounds3D.from_min_max(np.minimum(self.min, other.min), np.maximum(self.max, other.max))

    def contains(self, point: Vec3Like, tol: float = 1e-9) -> bool:
        """Return True if the point lies inside (or on) the box."""
        p = GeomMath.as_vector3(point)
        return bool(np.all(p >= self.min - tol) and np.all(p <= self.max + tol))

    @classmethod
    def from_dict(cls, data: dict) -> Bounds3D:
        """Create a Bounds3D instance from a dictionary."""
        return cls(
            xmin=data.get("xmin", 0.0),
            ymin=data.get("ymin", 0.0),
            zmin=data.get("zmin", 0.0),
            xmax=data.get("xmax", 0.0),
            ymax=data.get("ymax", 0.0),
            zmax=data.get("zmax", 0.0),
        )

    def to_dict(self) -> dict:
        """Convert the Bounds3D instance to a dictionary."""
        return {
            "xmin": self._xmin,
            "ymin": self._ymin,
            "zmin": self._zmin,
            "xmax": self._xmax,
            "ymax": self._ymax,
            "zmax": self._zmax,
        }

    def __str__(self):
        size = self.size
        return (
            f"Bounds3D(min=({self._xmin}, {self._ymin}, {self._zmin}), "
            f"max=({self._xmax}, {self._ymax}, {self._zmax}), "
            f"size=({size[0]}, {size[1]}, {size[2]}))"
        )


###############################################################################
# MinMax3D
###############################################################################
class MinMax3D:
    """Running minimum and maximum of a stream of 3D points."""

    def __init__(self):
        self._min: Optional[NDArray[np.float64]] = None
        self._max: Optional[NDArray[np.float64]] = None

    def add_value(self, point: Vec3Like) -> None:
        p = np.asarray(point, dtype=np.float64)
        if self._min is None or self._max is None:
            self._min = p.copy()
            self._max = p.copy()
        else:
            np.minimum(self._min, p, out=self._min)
            np.maximum(self._max, p, out=self._max)

    @property
    def is_empty(self) -> bool:
        return self._min is None

    def to_bounds(self) -> Bounds3D:
        if self._min is None or self._max is None:
            raise InvalidArgumentError("No values were added")
        return Bounds3D.from_min_max(self._min, self._max)
