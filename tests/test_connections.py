"""Test module for connections between paths in bezpath.connections

The tests are run using pytest.
These tests cover the path registry, symmetric connections, propagation of
connected anchors and index shifting after structural edits.
"""

from __future__ import annotations

import logging

import numpy as np
import pytest

from bezpath.common import ControlMode, InvalidArgumentError, PathError
from bezpath.connections import Connection, PathRegistry
from bezpath.control_polygon import ControlPolygon


def line(y: float, num_anchors: int = 4) -> ControlPolygon:
    """Automatic path with anchors along x at the given height."""
    return ControlPolygon.from_points([(float(i) * 5.0, y, 0.0) for i in range(num_anchors)])


def raw_line(y: float) -> ControlPolygon:
    return ControlPolygon.from_raw_points(
        [(0.0, y, 0.0), (1.0, y, 0.0), (2.0, y, 0.0), (3.0, y, 0.0)], control_mode=ControlMode.ALIGNED
    )


@pytest.fixture(name="registry")
def fixture_registry() -> PathRegistry:
    return PathRegistry()


###############################################################################
# Registry
###############################################################################


class TestRegistry:
    """Test the arena of paths."""

    def test_add_and_get(self, registry):
        path = line(0.0)
        path_id = registry.add(path)
        assert registry.get(path_id) is path
        assert path.path_id == path_id
        assert path.registry is registry
        assert path_id in registry
        assert len(registry) == 1
        assert registry.ids() == [path_id]

    def test_ids_are_unique(self, registry):
        ids = [registry.add(line(float(i))) for i in range(3)]
        registry.remove(ids[1])
        new_id = registry.add(line(9.0))
        assert len(set(ids + [new_id])) == 4

    def test_unknown_id(self, registry):
        with pytest.raises(InvalidArgumentError):
            registry.get(42)

    def test_path_belongs_to_one_registry(self, registry):
        path = line(0.0)
        registry.add(path)
        with pytest.raises(PathError):
            PathRegistry().add(path)

    def test_remove_drops_connections(self, registry):
        a, b = registry.add(line(0.0)), registry.add(line(5.0))
        registry.create_connection(a, 0, b, 1)
        removed = registry.remove(b)
        assert removed.registry is None
        assert removed.connections == ()
        assert registry.get(a).connections == ()

    def test_unregistered_path_cannot_connect(self):
        with pytest.raises(PathError):
            line(0.0).create_connection(0, 1, 0)


###############################################################################
# Connection tables
###############################################################################


class TestConnectionTables:
    """Test creating and removing connections."""

    def test_connection_is_symmetric(self, registry):
        a, b = registry.add(line(0.0)), registry.add(line(5.0))
        connection = registry.create_connection(a, 0, b, 3)
        assert connection == Connection(a, 0, b, 3)
        assert registry.get(a).connections == (Connection(a, 0, b, 3),)
        assert registry.get(b).connections == (Connection(b, 3, a, 0),)

    def test_duplicates_are_ignored(self, registry):
        a, b = registry.add(line(0.0)), registry.add(line(5.0))
        registry.create_connection(a, 0, b, 3)
        registry.create_connection(a, 0, b, 3)
        registry.create_connection(b, 3, a, 0)
        assert len(registry.get(a).connections) == 1
        assert len(registry.get(b).connections) == 1

    def test_self_connection_rejected(self, registry):
        a = registry.add(line(0.0))
        with pytest.raises(InvalidArgumentError):
            registry.create_connection(a, 0, a, 2)

    def test_anchor_index_checked(self, registry):
        a, b = registry.add(line(0.0, 2)), registry.add(line(5.0))
        with pytest.raises(InvalidArgumentError):
            registry.create_connection(a, 2, b, 0)
        with pytest.raises(InvalidArgumentError):
            registry.create_connection(a, 0, b, 4)

    def test_remove_connection(self, registry):
        a, b = registry.add(line(0.0)), registry.add(line(5.0))
        registry.get(a).create_connection(1, b, 2)
        registry.get(b).remove_connection(2, a, 1)
        assert registry.get(a).connections == ()
        assert registry.get(b).connections == ()

    def test_queries(self, registry):
        a, b, c = registry.add(line(0.0)), registry.add(line(5.0)), registry.add(line(10.0))
        registry.create_connection(a, 0, b, 0)
        registry.create_connection(a, 0, c, 1)
        registry.create_connection(a, 3, b, 3)
        assert registry.connections_at(a, 0) == [Connection(a, 0, b, 0), Connection(a, 0, c, 1)]
        assert registry.distinct_connected_paths(a) == [b, c]
        registry.clear_connections(a)
        assert registry.get(a).connections == ()
        assert registry.get(b).connections == ()
        assert registry.get(c).connections == ()

    def test_connection_dict_round_trip(self):
        connection = Connection(1, 2, 3, 4)
        assert Connection.from_dict(connection.to_dict()) == connection
        assert connection.reversed() == Connection(3, 4, 1, 2)
        assert str(connection) == "1:2 => 3:4"


###############################################################################
# Propagation
###############################################################################


class TestPropagation:
    """Test that connected anchors follow each other."""

    def test_moving_anchor_moves_connected_anchor(self, registry):
        a, b = registry.add(line(0.0, 2)), registry.add(line(5.0))
        registry.create_connection(a, 0, b, 3)
        registry.get(a).move_point(0, (1.0, 1.0, 1.0))
        assert np.allclose(registry.get(b).get_point(9), [1.0, 1.0, 1.0])

    def test_controls_follow(self, registry):
        a, b = registry.add(raw_line(0.0)), registry.add(raw_line(5.0))
        registry.create_connection(a, 0, b, 0)
        registry.get(a).move_point(0, (0.0, 1.0, 0.0))
        assert np.allclose(registry.get(b).get_point(0), [0.0, 1.0, 0.0])
        assert np.allclose(registry.get(b).get_point(1), registry.get(a).get_point(1))

    def test_propagation_both_ways(self, registry):
        a, b = registry.add(raw_line(0.0)), registry.add(raw_line(5.0))
        registry.create_connection(a, 1, b, 0)
        registry.get(b).move_point(0, (7.0, 7.0, 0.0))
        assert np.allclose(registry.get(a).get_point(3), [7.0, 7.0, 0.0])

    def test_translation_propagates(self, registry):
        a, b = registry.add(raw_line(0.0)), registry.add(raw_line(5.0))
        registry.create_connection(a, 0, b, 0)
        registry.get(a).set_position((0.0, 2.0, 0.0))
        assert np.allclose(registry.get(b).get_point(0), [0.0, 2.0, 0.0])

    def test_cyclic_connections_terminate(self, registry):
        a, b, c = registry.add(raw_line(0.0)), registry.add(raw_line(1.0)), registry.add(raw_line(2.0))
        registry.create_connection(a, 0, b, 0)
        registry.create_connection(b, 0, c, 0)
        registry.create_connection(c, 0, a, 0)
        registry.get(a).move_point(0, (-1.0, -1.0, 0.0))
        for path_id in (a, b, c):
            assert np.allclose(registry.get(path_id).get_point(0), [-1.0, -1.0, 0.0])

    def test_listener_of_connected_path_is_informed(self, registry):
        a, b = registry.add(raw_line(0.0)), registry.add(raw_line(5.0))
        registry.create_connection(a, 0, b, 0)
        events = []
        registry.get(b).add_listener(events.append)
        registry.get(a).move_point(0, (0.0, 3.0, 0.0))
        assert [event.kind for event in events] == ["connection"]


###############################################################################
# Index shifting
###############################################################################


class TestIndexShifting:
    """Test that connections keep pointing at the same anchors after edits."""

    def test_insert_at_start_shifts_connection(self, registry):
        a, b = registry.add(line(0.0, 3)), registry.add(line(5.0))
        registry.create_connection(a, 2, b, 1)
        registry.get(a).add_segment_to_start((-5.0, 0.0, 0.0))
        assert registry.get(a).connections == (Connection(a, 3, b, 1),)
        assert registry.get(b).connections == (Connection(b, 1, a, 3),)

    def test_insert_after_connection_keeps_index(self, registry):
        a, b = registry.add(line(0.0, 3)), registry.add(line(5.0))
        registry.create_connection(a, 1, b, 1)
        registry.get(a).add_segment_to_end((20.0, 0.0, 0.0))
        assert registry.get(a).connections == (Connection(a, 1, b, 1),)

    def test_split_shifts_later_connections(self, registry):
        a, b = registry.add(line(0.0, 3)), registry.add(line(5.0))
        registry.create_connection(a, 0, b, 0)
        registry.create_connection(a, 1, b, 1)
        registry.create_connection(a, 2, b, 2)
        registry.get(a).split_segment((2.5, 1.0, 0.0), 0, 0.5)
        assert sorted(c.anchor_index for c in registry.get(a).connections) == [0, 2, 3]
        assert sorted(c.target_anchor_index for c in registry.get(b).connections) == [0, 2, 3]

    def test_consecutive_connections_shift_without_collision(self, registry):
        a, b = registry.add(line(0.0, 3)), registry.add(line(5.0))
        registry.create_connection(a, 1, b, 2)
        registry.create_connection(a, 2, b, 2)
        registry.get(a).add_segment_to_start((-5.0, 0.0, 0.0))
        assert sorted(c.anchor_index for c in registry.get(a).connections) == [2, 3]

    def test_delete_drops_and_shifts(self, registry, caplog):
        a, b = registry.add(line(0.0, 4)), registry.add(line(5.0))
        registry.create_connection(a, 1, b, 0)
        registry.create_connection(a, 3, b, 3)
        with caplog.at_level(logging.DEBUG, logger="bezpath.control_polygon"):
            registry.get(a).delete_segment(3)
        assert registry.get(a).connections == (Connection(a, 2, b, 3),)
        assert registry.get(b).connections == (Connection(b, 3, a, 2),)
        assert "removed" in caplog.text
        assert "changed to" in caplog.text


###############################################################################
# Serialization
###############################################################################


class TestRegistrySerialization:
    """Test saving and restoring a registry with its connections."""

    def test_round_trip(self, registry):
        a, b = registry.add(line(0.0)), registry.add(line(5.0, 2))
        registry.remove(registry.add(line(9.0)))
        registry.create_connection(a, 2, b, 1)
        restored = PathRegistry.from_dict(registry.to_dict())
        assert restored.ids() == [a, b]
        assert restored.get(a).connections == (Connection(a, 2, b, 1),)
        assert restored.get(b).connections == (Connection(b, 1, a, 2),)
        assert np.array_equal(restored.get(a).points, registry.get(a).points)
        assert restored.to_dict() == registry.to_dict()
        assert restored.add(line(1.0)) == 3
