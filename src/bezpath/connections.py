"""Anchor connections between paths and the registry owning the connected paths."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Set

from bezpath.common import InvalidArgumentError, PathError

if TYPE_CHECKING:
    from bezpath.control_polygon import ControlPolygon  # pylint: disable=unused-import

logger = logging.getLogger(__name__)


###############################################################################
# Connection
###############################################################################


@dataclass(frozen=True)
class Connection:
    """
    Pins an anchor of one path to an anchor of another path.

    Every connection is stored twice: once on each of the two paths, with
    source and target swapped.

    Attributes:
        path_id: Id of the path owning this entry.
        anchor_index: Anchor index on the owning path.
        target_path_id: Id of the connected path.
        target_anchor_index: Anchor index on the connected path.
    """

    path_id: int
    anchor_index: int
    target_path_id: int
    target_anchor_index: int

    def reversed(self) -> Connection:
        """The same connection as seen from the target path."""
        return Connection(self.target_path_id, self.target_anchor_index, self.path_id, self.anchor_index)

    def to_dict(self) -> dict:
        return {
            "path_id": self.path_id,
            "anchor_index": self.anchor_index,
            "target_path_id": self.target_path_id,
            "target_anchor_index": self.target_anchor_index,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Connection:
        return cls(
            int(data["path_id"]),
            int(data["anchor_index"]),
            int(data["target_path_id"]),
            int(data["target_anchor_index"]),
        )

    def __str__(self):
        return f"{self.path_id}:{self.anchor_index} => {self.target_path_id}:{self.target_anchor_index}"


###############################################################################
# PathRegistry
###############################################################################


class PathRegistry:
    """
    Arena of control polygons addressed by integer ids.

    Connections refer to paths by id, never by object reference. Changes of a
    path are propagated along its connections as a wave: within one wave every
    path pushes its anchors at most once, and never back to a path that was
    already visited before it.
    """

    def __init__(self):
        self._paths: Dict[int, ControlPolygon] = {}
        self._next_id: int = 0
        self._wave_visited: Optional[Set[int]] = None

    def add(self, polygon: ControlPolygon) -> int:
        """
        Register a path and return its new id.

        Raises:
            PathError: If the path already belongs to a registry.
        """
        if polygon.registry is not None:
            raise PathError(f"Path is already registered with id {polygon.path_id}")
        path_id = self._next_id
        self._next_id += 1
        self._paths[path_id] = polygon
        polygon._attach(self, path_id)  # pylint: disable=protected-access
        logger.debug("Registered path %d", path_id)
        return path_id

    def get(self, path_id: int) -> ControlPolygon:
        """
        Path with the given id.

        Raises:
            InvalidArgumentError: If no path with this id is registered.
        """
        try:
            return self._paths[path_id]
        except KeyError as err:
            raise InvalidArgumentError(f"Unknown path id {path_id}") from err

    def remove(self, path_id: int) -> ControlPolygon:
        """Unregister a path, dropping every connection from or to it."""
        polygon = self.get(path_id)
        self.clear_connections(path_id)
        del self._paths[path_id]
        polygon._detach()  # pylint: disable=protected-access
        logger.debug("Removed path %d", path_id)
        return polygon

    def ids(self) -> List[int]:
        return list(self._paths)

    def __len__(self) -> int:
        return len(self._paths)

    def __contains__(self, path_id: object) -> bool:
        return path_id in self._paths

    def __iter__(self) -> Iterator[ControlPolygon]:
        return iter(list(self._paths.values()))

    ###########################################################################
    # Connections
    ###########################################################################

    def create_connection(
        self, path_id: int, anchor_index: int, target_path_id: int, target_anchor_index: int
    ) -> Connection:
        """
        Connect an anchor of one path with an anchor of another path, in both directions.

        Creating an existing connection again has no effect.

        Raises:
            InvalidArgumentError: For unknown ids, anchor indices out of range
                or a connection of a path with itself.
        """
        if path_id == target_path_id:
            raise InvalidArgumentError(f"Path {path_id} cannot be connected to itself")
        source = self.get(path_id)
        target = self.get(target_path_id)
        # pylint: disable=protected-access
        source._check_anchor_index(anchor_index)
        target._check_anchor_index(target_anchor_index)
        connection = Connection(path_id, anchor_index, target_path_id, target_anchor_index)
        source._add_connection(connection)
        target._add_connection(connection.reversed())
        return connection

    def remove_connection(
        self, path_id: int, anchor_index: int, target_path_id: int, target_anchor_index: int
    ) -> None:
        """Remove a connection in both directions (missing entries are ignored)."""
        self.remove_connection_object(Connection(path_id, anchor_index, target_path_id, target_anchor_index))

    def remove_connection_object(self, connection: Connection) -> None:
        # pylint: disable=protected-access
        if connection.path_id in self._paths:
            self._paths[connection.path_id]._remove_connection(connection)
        if connection.target_path_id in self._paths:
            self._paths[connection.target_path_id]._remove_connection(connection.reversed())

    def clear_connections(self, path_id: int) -> None:
        """Remove every connection of a path (on both sides)."""
        for connection in self.get(path_id).connections:
            self.remove_connection_object(connection)

    def connections_at(self, path_id: int, anchor_index: int) -> List[Connection]:
        return self.get(path_id).connections_at(anchor_index)

    def distinct_connected_paths(self, path_id: int) -> List[int]:
        return self.get(path_id).distinct_connected_paths()

    def propagate_from(self, path_id: int) -> None:
        """
        Push the connected anchors of a path to all paths connected to it.

        Called after every change of a path. A change caused by the push
        propagates further, but a path is updated by each wave at most once,
        so cyclic connection graphs terminate.
        """
        starts_wave = self._wave_visited is None
        if starts_wave:
            self._wave_visited = set()
        visited = self._wave_visited
        assert visited is not None
        try:
            if path_id in visited:
                return
            visited.add(path_id)
            # paths visited before this one started pushing are not updated again
            blocked = set(visited)
            source = self.get(path_id)
            for connection in source.connections:
                if connection.target_path_id in blocked or connection.target_path_id not in self._paths:
                    continue
                target = self._paths[connection.target_path_id]
                source._push_connection(connection, target)  # pylint: disable=protected-access
        finally:
            if starts_wave:
                self._wave_visited = None

    ###########################################################################
    # Serialization
    ###########################################################################

    def to_dict(self) -> dict:
        """Convert all registered paths with their ids and connections to a dictionary."""
        return {
            "next_id": self._next_id,
            "paths": [{"id": path_id, "path": polygon.to_dict()} for path_id, polygon in self._paths.items()],
        }

    @classmethod
    def from_dict(cls, data: dict) -> PathRegistry:
        """Recreate a registry, keeping the path ids and restoring all connections."""
        # pylint: disable=import-outside-toplevel,protected-access
        from bezpath.control_polygon import ControlPolygon

        registry = cls()
        entries = data.get("paths", [])
        for entry in entries:
            path_id = int(entry["id"])
            if path_id in registry._paths:
                raise InvalidArgumentError(f"Duplicate path id {path_id}")
            polygon = ControlPolygon.from_dict(entry["path"])
            registry._paths[path_id] = polygon
            polygon._attach(registry, path_id)
        for entry in entries:
            for connection_data in entry["path"].get("connections", []):
                connection = Connection.from_dict(connection_data)
                if connection.path_id != int(entry["id"]):
                    raise InvalidArgumentError(f"Connection {connection} stored on path {entry['id']}")
                registry.create_connection(
                    connection.path_id,
                    connection.anchor_index,
                    connection.target_path_id,
                    connection.target_anchor_index,
                )
        default_next_id = max(registry._paths, default=-1) + 1
        registry._next_id = max(int(data.get("next_id", default_next_id)), default_next_id)
        return registry
