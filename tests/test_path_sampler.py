"""Test module for splitting control polygons into vertices in bezpath.path_sampler

The tests are run using pytest.
These tests cover the sampling settings and both split strategies.
"""

import numpy as np
import pytest

from bezpath.common import InvalidArgumentError, PathError
from bezpath.control_polygon import ControlPolygon
from bezpath.path_sampler import PathSampler, SamplingSettings


@pytest.fixture(name="straight_line")
def fixture_straight_line() -> ControlPolygon:
    return ControlPolygon.from_points([(0.0, 0.0, 0.0), (10.0, 0.0, 0.0)])


@pytest.fixture(name="bent_line")
def fixture_bent_line() -> ControlPolygon:
    return ControlPolygon.from_points([(0.0, 0.0, 0.0), (10.0, 0.0, 0.0), (10.0, 10.0, 0.0)])


class TestSamplingSettings:
    """Test validation and serialization of the sampling settings."""

    def test_defaults(self):
        settings = SamplingSettings()
        assert settings.spacing is None
        assert not settings.evenly_spaced
        assert settings.accuracy > 0

    def test_evenly_spaced(self):
        assert SamplingSettings(spacing=0.5).evenly_spaced

    @pytest.mark.parametrize(
        "kwargs", [{"accuracy": 0.0}, {"accuracy": -1.0}, {"max_angle_error": -0.1}, {"min_vertex_dst": -1.0}]
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(InvalidArgumentError):
            SamplingSettings(**kwargs)

    def test_dict_round_trip(self):
        settings = SamplingSettings(max_angle_error=1.5, min_vertex_dst=0.2, accuracy=4.0, spacing=0.25)
        assert SamplingSettings.from_dict(settings.to_dict()) == settings
        assert SamplingSettings.from_dict({}) == SamplingSettings()


class TestSplitByAngleError:
    """Test splitting where the path bends."""

    def test_straight_segment_needs_only_its_ends(self, straight_line):
        split_data = PathSampler.split_by_angle_error(straight_line)
        assert split_data.num_vertices == 2
        assert np.allclose(split_data.vertices, [[0.0, 0.0, 0.0], [10.0, 0.0, 0.0]])
        assert split_data.cumulative_length == pytest.approx([0.0, 10.0])
        assert split_data.anchor_vertex_map == [0, 1]
        assert np.allclose(split_data.tangents, [[1.0, 0.0, 0.0], [1.0, 0.0, 0.0]])

    def test_every_anchor_gets_a_vertex(self):
        polygon = ControlPolygon.from_points([(0.0, 0.0, 0.0), (10.0, 0.0, 0.0), (20.0, 0.0, 0.0)])
        split_data = PathSampler.split_by_angle_error(polygon)
        assert np.allclose(split_data.vertices, [[0.0, 0.0, 0.0], [10.0, 0.0, 0.0], [20.0, 0.0, 0.0]])
        assert split_data.anchor_vertex_map == [0, 1, 2]

    def test_curved_path_gets_more_vertices(self, bent_line):
        coarse = PathSampler.split_by_angle_error(bent_line, max_angle_error=10.0)
        fine = PathSampler.split_by_angle_error(bent_line, max_angle_error=0.5)
        assert 2 < coarse.num_vertices < fine.num_vertices

    def test_ends_and_anchors(self, bent_line):
        split_data = PathSampler.split_by_angle_error(bent_line)
        assert np.allclose(split_data.vertices[0], [0.0, 0.0, 0.0])
        assert np.allclose(split_data.vertices[-1], [10.0, 10.0, 0.0])
        assert len(split_data.anchor_vertex_map) == 3
        assert split_data.anchor_vertex_map[0] == 0
        assert split_data.anchor_vertex_map[-1] == split_data.num_vertices - 1
        assert np.allclose(split_data.vertices[split_data.anchor_vertex_map[1]], [10.0, 0.0, 0.0])

    def test_cumulative_length_is_monotonic(self, bent_line):
        split_data = PathSampler.split_by_angle_error(bent_line)
        assert np.all(np.diff(split_data.cumulative_length) > 0.0)

    def test_min_vertex_dst_limits_vertices(self, bent_line):
        dense = PathSampler.split_by_angle_error(bent_line, max_angle_error=0.1)
        sparse = PathSampler.split_by_angle_error(bent_line, max_angle_error=0.1, min_vertex_dst=2.0)
        assert sparse.num_vertices < dense.num_vertices

    def test_tangents_are_unit_vectors(self, bent_line):
        split_data = PathSampler.split_by_angle_error(bent_line)
        assert np.allclose(np.linalg.norm(split_data.tangents, axis=1), 1.0)

    def test_bounds(self, bent_line):
        """The smoothed corner bulges out below y=0 and beyond x=10."""
        bounds = PathSampler.split_by_angle_error(bent_line).min_max.to_bounds()
        assert bounds.min[0] == pytest.approx(0.0)
        assert bounds.min[1] < 0.0
        assert bounds.max[0] > 10.0
        assert bounds.max[1] == pytest.approx(10.0)

    def test_empty_path_raises(self):
        polygon = ControlPolygon.from_points([(0.0, 0.0, 0.0)])
        with pytest.raises(PathError):
            PathSampler.split_by_angle_error(polygon)

    def test_invalid_accuracy(self, straight_line):
        with pytest.raises(InvalidArgumentError):
            PathSampler.split_by_angle_error(straight_line, accuracy=0.0)


class TestSplitEvenly:
    """Test splitting at a fixed spacing."""

    def test_straight_line(self, straight_line):
        split_data = PathSampler.split_evenly(straight_line, 1.0)
        assert split_data.num_vertices == 11
        assert np.allclose(np.array(split_data.vertices)[:, 0], np.arange(11.0), atol=1e-6)
        assert split_data.cumulative_length == pytest.approx(list(np.arange(11.0)), abs=1e-6)

    def test_last_spacing_may_be_shorter(self, straight_line):
        split_data = PathSampler.split_evenly(straight_line, 3.0)
        assert np.allclose(np.array(split_data.vertices)[:, 0], [0.0, 3.0, 6.0, 9.0, 10.0], atol=1e-6)

    def test_curved_spacing(self, bent_line):
        split_data = PathSampler.split_evenly(bent_line, 0.5)
        steps = np.diff(split_data.cumulative_length)
        assert np.all(np.abs(steps[:-1] - 0.5) < 0.01)
        assert np.allclose(split_data.vertices[-1], [10.0, 10.0, 0.0])

    def test_spacing_is_clamped(self, straight_line):
        split_data = PathSampler.split_evenly(straight_line, 0.0, accuracy=200.0)
        assert split_data.num_vertices == pytest.approx(1001, abs=1)

    def test_anchor_map_covers_all_anchors(self, bent_line):
        split_data = PathSampler.split_evenly(bent_line, 1.0)
        assert len(split_data.anchor_vertex_map) == bent_line.num_anchor_points
        assert split_data.anchor_vertex_map[-1] == split_data.num_vertices - 1

    def test_closed_path_ends_at_start(self):
        polygon = ControlPolygon.from_points(
            [(5.0, 0.0, 0.0), (0.0, 5.0, 0.0), (-5.0, 0.0, 0.0), (0.0, -5.0, 0.0)], closed=True
        )
        split_data = PathSampler.split_evenly(polygon, 1.0)
        assert np.allclose(split_data.vertices[0], split_data.vertices[-1])
        assert len(split_data.anchor_vertex_map) == 5
