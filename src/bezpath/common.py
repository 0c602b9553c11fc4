"""Central module containing enums, type definitions and exceptions for bezier path editing."""

from __future__ import annotations

from enum import Enum
from typing import Sequence, Union

import numpy as np
from numpy.typing import NDArray

###############################################################################
# Types
###############################################################################


Vec3Like = Union[Sequence[float], NDArray[np.float64]]  # (x, y, z) or (x, y) with z=0


###############################################################################
# Enums
###############################################################################


class PathSpace(Enum):
    """Space a path lives in.

    In XY or XZ space one axis of every point is pinned to zero
    (z for XY, y for XZ).
    """

    XYZ = "xyz"
    XY = "xy"
    XZ = "xz"


class ControlMode(Enum):
    """Coupling policy between the two control points around an anchor.

    ALIGNED: controls stay on a straight line through their anchor.
    MIRRORED: controls stay on a straight line, equidistant from their anchor.
    FREE: no constraints (sharp corners).
    AUTOMATIC: controls are computed from the neighbouring anchors.
    """

    ALIGNED = "aligned"
    MIRRORED = "mirrored"
    FREE = "free"
    AUTOMATIC = "automatic"


class EndOfPathInstruction(Enum):
    """How a time or distance outside the path range is resolved."""

    LOOP = "loop"
    REVERSE = "reverse"
    STOP = "stop"


###############################################################################
# Exceptions
###############################################################################


class PathError(Exception):
    """Base exception for bezier path errors."""


class InvalidArgumentError(PathError, ValueError):
    """Raised for out-of-range indices and malformed arguments."""
