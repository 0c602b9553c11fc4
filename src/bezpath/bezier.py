"""Cubic Bezier curve math: evaluation, derivatives, subdivision and bounds."""

from __future__ import annotations

import math
from typing import List, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from bezpath.common import InvalidArgumentError
from bezpath.consts import EPSILON
from bezpath.geom import Bounds3D, MinMax3D

SegmentLike = Union[Sequence[Sequence[float]], NDArray[np.float64]]


class BezierCurve:
    """Class to handle cubic Bezier curve operations.

    A segment is given by 4 points (anchor1, control1, control2, anchor2) as a
    sequence of (x, y, z) or (x, y) tuples, or as an array of shape (4, 2|3).
    The curve passes through both anchors; the controls shape it in between.
    Curve times t are clamped to [0, 1].
    """

    @staticmethod
    def as_segment(points: SegmentLike) -> NDArray[np.float64]:
        """
        Convert the given control points into an array of shape (4, 3).

        Raises:
            InvalidArgumentError: If not exactly 4 points of 2 or 3 coordinates are given.
        """
        if isinstance(points, np.ndarray) and points.dtype == np.float64 and points.shape == (4, 3):
            return points
        arr = np.asarray(points, dtype=np.float64)
        if arr.ndim != 2 or arr.shape[0] != 4 or arr.shape[1] not in (2, 3):
            raise InvalidArgumentError(
                f"Cubic bezier segment requires 4 points of shape (2,) or (3,), got array of shape {arr.shape}"
            )
        if arr.shape[1] == 2:
            arr = np.column_stack([arr, np.zeros(4, dtype=np.float64)])
        return arr

    @staticmethod
    def _clamp01(t: float) -> float:
        return 0.0 if t < 0.0 else 1.0 if t > 1.0 else float(t)

    @classmethod
    def evaluate(cls, points: SegmentLike, t: float) -> NDArray[np.float64]:
        """
        Point at time t along the curve.

        B(t) = (1-t)^3*P0 + 3*(1-t)^2*t*P1 + 3*(1-t)*t^2*P2 + t^3*P3
        """
        p = cls.as_segment(points)
        t = cls._clamp01(t)
        if t == 0.0:
            return p[0].copy()
        if t == 1.0:
            return p[3].copy()
        omt = 1.0 - t
        return omt * omt * omt * p[0] + 3.0 * omt * omt * t * p[1] + 3.0 * omt * t * t * p[2] + t * t * t * p[3]

    @classmethod
    def evaluate_many(cls, points: SegmentLike, ts) -> NDArray[np.float64]:
        """
        Points at all given times along the curve (vectorised).

        Returns:
            NDArray[np.float64] of shape (len(ts), 3)
        """
        p = cls.as_segment(points)
        t = np.clip(np.asarray(ts, dtype=np.float64).reshape(-1), 0.0, 1.0)[:, np.newaxis]
        omt = 1.0 - t
        omt2 = omt * omt
        t2 = t * t
        return omt2 * omt * p[0] + 3.0 * omt2 * t * p[1] + 3.0 * omt * t2 * p[2] + t2 * t * p[3]

    @classmethod
    def evaluate_derivative(cls, points: SegmentLike, t: float) -> NDArray[np.float64]:
        """First derivative (tangent vector, not normalised) at time t."""
        p = cls.as_segment(points)
        t = cls._clamp01(t)
        omt = 1.0 - t
        return 3.0 * omt * omt * (p[1] - p[0]) + 6.0 * omt * t * (p[2] - p[1]) + 3.0 * t * t * (p[3] - p[2])

    @classmethod
    def evaluate_second_derivative(cls, points: SegmentLike, t: float) -> NDArray[np.float64]:
        """Second derivative at time t."""
        p = cls.as_segment(points)
        t = cls._clamp01(t)
        return 6.0 * (1.0 - t) * (p[2] - 2.0 * p[1] + p[0]) + 6.0 * t * (p[3] - 2.0 * p[2] + p[1])

    @classmethod
    def normal(cls, points: SegmentLike, t: float) -> NDArray[np.float64]:
        """
        Normal of the curve at time t, lying in the plane of curvature.

        Computed as cross(cross(B'', B'), B'), normalised. On straight segments or
        cusps (B' zero or parallel to B'') the plane of curvature is undefined and
        the zero vector is returned. Use the normals of a VertexPath when a
        well-defined frame is required everywhere.
        """
        tangent = cls.evaluate_derivative(points, t)
        next_tangent = cls.evaluate_second_derivative(points, t)
        binormal = np.cross(next_tangent, tangent)
        normal = np.cross(binormal, tangent)
        norm = float(np.linalg.norm(normal))
        if norm < EPSILON or not math.isfinite(norm):
            return np.zeros(3, dtype=np.float64)
        return normal / norm

    @classmethod
    def split(cls, points: SegmentLike, t: float) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        """
        Split the curve at time t using De Casteljau subdivision.

        Returns:
            Two arrays of shape (4, 3). The first reproduces the curve on [0, t],
            the second on [t, 1]; they share the point on the curve at t.
        """
        p = cls.as_segment(points)
        a1 = p[0] + (p[1] - p[0]) * t
        a2 = p[1] + (p[2] - p[1]) * t
        a3 = p[2] + (p[3] - p[2]) * t
        b1 = a1 + (a2 - a1) * t
        b2 = a2 + (a3 - a2) * t
        point_on_curve = b1 + (b2 - b1) * t
        return (
            np.array([p[0], a1, b1, point_on_curve], dtype=np.float64),
            np.array([point_on_curve, b2, a3, p[3]], dtype=np.float64),
        )

    @classmethod
    def estimate_length(cls, points: SegmentLike) -> float:
        """Crude but fast length estimate: chord length plus half the control net length."""
        p = cls.as_segment(points)
        control_net_length = float(np.sum(np.linalg.norm(np.diff(p, axis=0), axis=1)))
        return float(np.linalg.norm(p[3] - p[0])) + control_net_length * 0.5

    @classmethod
    def extreme_point_times(cls, points: SegmentLike) -> List[float]:
        """Times in [0, 1] of the stationary points of each axis (derivative zero on that axis)."""
        p = cls.as_segment(points)
        # coefficients of the derivative a*t^2 + b*t + c
        a = 3.0 * (-p[0] + 3.0 * p[1] - 3.0 * p[2] + p[3])
        b = 6.0 * (p[0] - 2.0 * p[1] + p[2])
        c = 3.0 * (p[1] - p[0])

        times: List[float] = []
        for axis in range(3):
            times.extend(cls._stationary_point_times(float(a[axis]), float(b[axis]), float(c[axis])))
        return times

    @staticmethod
    def _stationary_point_times(a: float, b: float, c: float) -> List[float]:
        """Roots of a*t^2 + b*t + c within [0, 1]."""
        times: List[float] = []
        if a != 0.0:
            discriminant = b * b - 4.0 * a * c
            if discriminant >= 0.0:
                s = math.sqrt(discriminant)
                t1 = (-b + s) / (2.0 * a)
                if 0.0 <= t1 <= 1.0:
                    times.append(t1)
                if discriminant != 0.0:
                    t2 = (-b - s) / (2.0 * a)
                    if 0.0 <= t2 <= 1.0:
                        times.append(t2)
        elif b != 0.0:
            # derivative degenerates to a line
            t1 = -c / b
            if 0.0 <= t1 <= 1.0:
                times.append(t1)
        return times

    @classmethod
    def calculate_bounds(cls, points: SegmentLike) -> Bounds3D:
        """Exact axis-aligned bounds of the curve: both anchors plus all extreme points."""
        p = cls.as_segment(points)
        min_max = MinMax3D()
        min_max.add_value(p[0])
        min_max.add_value(p[3])
        for t in cls.extreme_point_times(p):
            min_max.add_value(cls.evaluate(p, t))
        return min_max.to_bounds()

    @classmethod
    def polygonize(cls, points: SegmentLike, steps: int) -> NDArray[np.float64]:
        """
        Polygonize the curve into steps line segments of equal parameter width.

        Returns:
            NDArray[np.float64] of shape (steps+1, 3)
        """
        if steps < 1:
            raise InvalidArgumentError(f"steps must be at least 1, got {steps}")
        return cls.evaluate_many(points, np.linspace(0.0, 1.0, steps + 1, dtype=np.float64))
