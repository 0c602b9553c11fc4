"""Test module for the geometry helpers in bezpath.geom

The tests are run using pytest.
These tests cover vector and angle math, quaternions and axis-aligned bounds.
"""

import math

import numpy as np
import pytest

from bezpath.common import InvalidArgumentError
from bezpath.geom import AXIS_X, AXIS_Y, AXIS_Z, IDENTITY_QUATERNION, Bounds3D, GeomMath, MinMax3D

###############################################################################
# Vectors and angles
###############################################################################


class TestVectors:
    """Test vector conversion and normalisation."""

    def test_as_vector3_pads_2d(self):
        assert np.array_equal(GeomMath.as_vector3((1.0, 2.0)), [1.0, 2.0, 0.0])

    def test_as_vector3_rejects_wrong_size(self):
        with pytest.raises(InvalidArgumentError):
            GeomMath.as_vector3((1.0, 2.0, 3.0, 4.0))

    def test_as_points3(self):
        """2D point lists are padded, empty lists give shape (0, 3)."""
        assert GeomMath.as_points3([(0, 0), (1, 1)]).shape == (2, 3)
        assert GeomMath.as_points3([]).shape == (0, 3)

    def test_normalize(self):
        assert np.allclose(GeomMath.normalize(np.array([3.0, 0.0, 4.0])), [0.6, 0.0, 0.8])

    def test_normalize_zero_vector(self):
        """Zero vectors stay zero instead of becoming NaN."""
        assert np.array_equal(GeomMath.normalize(np.zeros(3)), np.zeros(3))

    def test_any_perpendicular(self):
        for vector in (AXIS_X, AXIS_Y, AXIS_Z, np.array([1.0, 1.0, 1.0])):
            perp = GeomMath.any_perpendicular(vector)
            assert np.isclose(np.linalg.norm(perp), 1.0)
            assert abs(np.dot(perp, vector)) < 1e-12


class TestAngles:
    """Test angle helpers (degrees)."""

    def test_angle(self):
        assert GeomMath.angle(AXIS_X, AXIS_Y) == pytest.approx(90.0)
        assert GeomMath.angle(AXIS_X, -AXIS_X) == pytest.approx(180.0)
        assert GeomMath.angle(AXIS_X, np.zeros(3)) == 0.0

    def test_signed_angle(self):
        """Rotating x onto y is positive around +z and negative around -z."""
        assert GeomMath.signed_angle(AXIS_X, AXIS_Y, AXIS_Z) == pytest.approx(90.0)
        assert GeomMath.signed_angle(AXIS_X, AXIS_Y, -AXIS_Z) == pytest.approx(-90.0)

    @pytest.mark.parametrize(
        "current, target, expected",
        [(0.0, 90.0, 90.0), (10.0, 350.0, -20.0), (350.0, 10.0, 20.0), (0.0, 180.0, 180.0), (720.0, 30.0, 30.0)],
    )
    def test_delta_angle(self, current, target, expected):
        assert GeomMath.delta_angle(current, target) == pytest.approx(expected)

    def test_lerp_angle_takes_shortest_path(self):
        assert GeomMath.lerp_angle(350.0, 10.0, 0.5) == pytest.approx(360.0)
        assert GeomMath.lerp_angle(0.0, 90.0, 0.25) == pytest.approx(22.5)

    @pytest.mark.parametrize("t, expected", [(0.25, 0.25), (1.25, 0.75), (2.5, 0.5), (-0.25, 0.25)])
    def test_ping_pong(self, t, expected):
        assert GeomMath.ping_pong(t, 1.0) == pytest.approx(expected)

    def test_inverse_lerp(self):
        assert GeomMath.inverse_lerp(2.0, 4.0, 3.0) == pytest.approx(0.5)
        assert GeomMath.inverse_lerp(2.0, 4.0, 9.0) == 1.0
        assert GeomMath.inverse_lerp(2.0, 2.0, 2.0) == 0.0


###############################################################################
# Quaternions
###############################################################################


class TestQuaternions:
    """Test quaternion helpers; quaternions are ordered (x, y, z, w)."""

    def test_angle_axis_rotation(self):
        q = GeomMath.quat_angle_axis(90.0, AXIS_Z)
        assert np.allclose(GeomMath.quat_rotate(q, AXIS_X), AXIS_Y)

    def test_rotate_many(self):
        q = GeomMath.quat_angle_axis(180.0, AXIS_Y)
        rotated = GeomMath.quat_rotate(q, np.array([[1.0, 0.0, 0.0], [0.0, 0.0, 1.0]]))
        assert np.allclose(rotated, [[-1.0, 0.0, 0.0], [0.0, 0.0, -1.0]])

    def test_multiply_applies_right_operand_first(self):
        qx = GeomMath.quat_angle_axis(90.0, AXIS_X)
        qz = GeomMath.quat_angle_axis(90.0, AXIS_Z)
        combined = GeomMath.quat_multiply(qz, qx)
        expected = GeomMath.quat_rotate(qz, GeomMath.quat_rotate(qx, AXIS_Y))
        assert np.allclose(GeomMath.quat_rotate(combined, AXIS_Y), expected)

    def test_inverse(self):
        q = GeomMath.quat_angle_axis(33.0, np.array([1.0, 2.0, 3.0]))
        assert GeomMath.quat_equal(GeomMath.quat_multiply(q, GeomMath.quat_inverse(q)), IDENTITY_QUATERNION)

    def test_matrix_round_trip(self):
        q = GeomMath.quat_angle_axis(-125.0, np.array([0.3, -1.0, 0.2]))
        assert GeomMath.quat_equal(GeomMath.quat_from_matrix(GeomMath.quat_to_matrix(q)), q)

    def test_normalize_rejects_wrong_size(self):
        with pytest.raises(InvalidArgumentError):
            GeomMath.quat_normalize([0.0, 0.0, 1.0])

    def test_twist_keeps_rotation_around_axis(self):
        """The twist of a combined rotation around z is the z rotation part."""
        qz = GeomMath.quat_angle_axis(40.0, AXIS_Z)
        qx = GeomMath.quat_angle_axis(25.0, AXIS_X)
        twist = GeomMath.quat_twist(GeomMath.quat_multiply(qx, qz), AXIS_Z)
        assert GeomMath.quat_equal(twist, qz)

    def test_twist_of_perpendicular_rotation_is_identity(self):
        twist = GeomMath.quat_twist(GeomMath.quat_angle_axis(60.0, AXIS_X), AXIS_Z)
        assert GeomMath.quat_equal(twist, IDENTITY_QUATERNION)

    def test_rotate_around_axis(self):
        assert np.allclose(GeomMath.rotate_around_axis(AXIS_Y, AXIS_X, 90.0), AXIS_Z)

    def test_look_rotation(self):
        """Local z maps onto forward and local y onto up."""
        forward = GeomMath.normalize(np.array([1.0, 0.0, 1.0]))
        q = GeomMath.look_rotation(forward, AXIS_Y)
        assert np.allclose(GeomMath.quat_rotate(q, AXIS_Z), forward)
        assert np.allclose(GeomMath.quat_rotate(q, AXIS_Y), AXIS_Y)

    def test_look_rotation_with_parallel_up(self):
        q = GeomMath.look_rotation(AXIS_Y, AXIS_Y)
        assert np.isclose(np.linalg.norm(q), 1.0)
        assert np.allclose(GeomMath.quat_rotate(q, AXIS_Z), AXIS_Y)

    def test_look_rotation_of_zero_forward_is_identity(self):
        assert np.array_equal(GeomMath.look_rotation(np.zeros(3), AXIS_Y), IDENTITY_QUATERNION)

    def test_quat_equal_ignores_sign(self):
        q = GeomMath.quat_angle_axis(30.0, AXIS_Y)
        assert GeomMath.quat_equal(q, -q)
        assert not GeomMath.quat_equal(q, IDENTITY_QUATERNION)


###############################################################################
# Bounds
###############################################################################


class TestBounds3D:
    """Test axis-aligned bounds."""

    def test_constructor_orders_corners(self):
        bounds = Bounds3D(4.0, 0.0, 1.0, -2.0, 3.0, -1.0)
        assert np.array_equal(bounds.min, [-2.0, 0.0, -1.0])
        assert np.array_equal(bounds.max, [4.0, 3.0, 1.0])

    def test_size_and_center(self):
        bounds = Bounds3D.from_min_max((0.0, 0.0, 0.0), (2.0, 4.0, 6.0))
        assert np.array_equal(bounds.size, [2.0, 4.0, 6.0])
        assert np.array_equal(bounds.center, [1.0, 2.0, 3.0])
        assert bounds.extent == (0.0, 0.0, 0.0, 2.0, 4.0, 6.0)

    def test_from_points_and_contains(self):
        bounds = Bounds3D.from_points([(0, 0, 0), (1, 5, -2), (3, 1, 1)])
        assert bounds.contains((1.0, 1.0, 0.0))
        assert not bounds.contains((1.0, 6.0, 0.0))
        with pytest.raises(InvalidArgumentError):
            Bounds3D.from_points([])

    def test_union(self):
        a = Bounds3D(0.0, 0.0, 0.0, 1.0, 1.0, 1.0)
        b = Bounds3D(-1.0, 0.5, 0.5, 0.5, 2.0, 0.7)
        union = a.union(b)
        assert np.array_equal(union.min, [-1.0, 0.0, 0.0])
        assert np.array_equal(union.max, [1.0, 2.0, 1.0])

    def test_dict_round_trip(self):
        bounds = Bounds3D(1.0, 2.0, 3.0, 4.0, 5.0, 6.0)
        assert Bounds3D.from_dict(bounds.to_dict()) == bounds

    def test_str(self):
        assert str(Bounds3D(0.0, 0.0, 0.0, 1.0, 1.0, 1.0)).startswith("Bounds3D(min=")


class TestMinMax3D:
    """Test the running min/max accumulator."""

    def test_accumulates(self):
        min_max = MinMax3D()
        assert min_max.is_empty
        for point in ([1.0, 2.0, 3.0], [-1.0, 5.0, 0.0], [0.0, 0.0, 4.0]):
            min_max.add_value(np.array(point))
        bounds = min_max.to_bounds()
        assert np.array_equal(bounds.min, [-1.0, 0.0, 0.0])
        assert np.array_equal(bounds.max, [1.0, 5.0, 4.0])

    def test_added_points_are_not_aliased(self):
        point = np.array([1.0, 1.0, 1.0])
        min_max = MinMax3D()
        min_max.add_value(point)
        point[0] = 100.0
        assert min_max.to_bounds().max[0] == 1.0

    def test_empty_raises(self):
        with pytest.raises(InvalidArgumentError):
            MinMax3D().to_bounds()


def test_identity_quaternion_is_unit():
    assert math.isclose(float(np.linalg.norm(IDENTITY_QUATERNION)), 1.0)
