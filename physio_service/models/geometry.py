"""
FORMA Physio Service - Geometry

Angle and distance primitives over normalized landmark coordinates. All
measurements use the (x, y) image-plane projection; z is ignored.
"""

import math

import numpy as np

from .landmarks import BILATERAL_PAIRS, Frame, Landmark


_EPSILON = 1e-12


def _xy(point: Landmark) -> np.ndarray:
    return np.array([point.x, point.y], dtype=float)


def angle_at_vertex(a: Landmark, b: Landmark, c: Landmark) -> float:
    """
    Calculate angle at point b formed by points a-b-c.

    Args:
        a, b, c: landmarks; b is the vertex

    Returns:
        Angle in degrees (0-180). Coincident points yield 0.0.
    """
    points = np.array([_xy(a), _xy(b), _xy(c)])

    # Rescale large coordinates so squaring in the norm cannot overflow
    scale = np.abs(points).max()
    if scale > 1.0:
        points = points / scale

    ba = points[0] - points[1]
    bc = points[2] - points[1]

    norm_ba = np.linalg.norm(ba)
    norm_bc = np.linalg.norm(bc)
    if norm_ba * norm_bc < _EPSILON:
        return 0.0

    cosine_angle = np.clip(np.dot(ba / norm_ba, bc / norm_bc), -1.0, 1.0)
    angle = np.degrees(np.arccos(cosine_angle))
    if not np.isfinite(angle):
        return 0.0
    return float(angle)


def distance(a: Landmark, b: Landmark) -> float:
    """Euclidean distance between two landmarks on the image plane."""
    return float(np.linalg.norm(_xy(a) - _xy(b)))


def horizontal_offset(a: Landmark, b: Landmark) -> float:
    """Horizontal gap between two landmarks on the x100 scale."""
    return abs(a.x - b.x) * 100


def signed_line_deviation(start: Landmark, point: Landmark, end: Landmark, fraction: float = 0.6) -> float:
    """
    Vertical offset of ``point`` from where it should sit on the start->end line.

    The expected y is taken ``fraction`` of the way from start to end. Result
    is on the x100 scale; positive means the point is lower in the image
    (larger y) than the line.
    """
    expected_y = start.y + (end.y - start.y) * fraction
    return (point.y - expected_y) * 100


def line_deviation(start: Landmark, point: Landmark, end: Landmark, fraction: float = 0.6) -> float:
    return abs(signed_line_deviation(start, point, end, fraction))


def segment_inclination(upper: Landmark, lower: Landmark) -> float:
    """Absolute angle in degrees of the lower->upper segment measured from the x axis."""
    return abs(math.degrees(math.atan2(upper.y - lower.y, upper.x - lower.x)))


def segment_lean(upper: Landmark, lower: Landmark) -> float:
    """Absolute angle in degrees of the lower->upper segment measured from the y axis."""
    return abs(math.degrees(math.atan2(upper.x - lower.x, upper.y - lower.y)))


def bilateral_symmetry(frame: Frame) -> float:
    """
    Compare the height of paired left/right landmarks.

    Each pair scores max(0, 1 - |dy| * 10); the result is the mean over the
    shoulder, elbow, wrist, hip, knee and ankle pairs, in [0, 1].
    """
    scores = [
        max(0.0, 1.0 - abs(frame[left].y - frame[right].y) * 10)
        for left, right in BILATERAL_PAIRS
    ]
    return sum(scores) / len(scores)
