"""Central module containing default values and tuning constants"""

from __future__ import annotations

# Control points
AUTO_CONTROL_LENGTH: float = 0.3  # default scale of automatic control distance
MIN_AUTO_CONTROL_LENGTH: float = 0.01
MIN_SCALE: float = 0.01  # zero scale components are replaced by this value
JOIN_CONTROL_FACTOR: float = 0.4  # control length (fraction of the gap) when appending a path

# Sampling
DEFAULT_ACCURACY: int = 10  # fine divisions per unit of estimated segment length
DEFAULT_MAX_ANGLE_ERROR: float = 0.3  # degrees
DEFAULT_MIN_VERTEX_DST: float = 0.0
MIN_VERTEX_SPACING: float = 0.01

# Normals
NORMAL_CORRECTION_THRESHOLD: float = 0.1  # degrees

# Numerics
EPSILON: float = 1.0e-9
