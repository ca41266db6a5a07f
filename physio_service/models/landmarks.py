"""
FORMA Physio Service - Pose Landmarks

Landmark value type and the fixed 33-point body layout produced by the
browser-side pose estimator. Frames are validated once at the public
boundary; everything downstream indexes them positionally.
"""

import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple


LANDMARK_COUNT = 33
VISIBILITY_THRESHOLD = 0.5


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS AND DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

class JointType(IntEnum):
    """Positional index of each body landmark in a frame."""
    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


# Left/right pairs compared for bilateral symmetry
BILATERAL_PAIRS: Tuple[Tuple[JointType, JointType], ...] = (
    (JointType.LEFT_SHOULDER, JointType.RIGHT_SHOULDER),
    (JointType.LEFT_ELBOW, JointType.RIGHT_ELBOW),
    (JointType.LEFT_WRIST, JointType.RIGHT_WRIST),
    (JointType.LEFT_HIP, JointType.RIGHT_HIP),
    (JointType.LEFT_KNEE, JointType.RIGHT_KNEE),
    (JointType.LEFT_ANKLE, JointType.RIGHT_ANKLE),
)


class LandmarkValidationError(ValueError):
    """Raised when a frame does not satisfy the 33-landmark contract."""


@dataclass(frozen=True)
class Landmark:
    """A single pose landmark with normalized coordinates and visibility."""
    x: float
    y: float
    z: float = 0.0
    visibility: float = 1.0

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z, "visibility": self.visibility}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Landmark":
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            z=float(data.get("z", 0.0)),
            visibility=float(data.get("visibility", 1.0)),
        )


Frame = Sequence[Landmark]


# ═══════════════════════════════════════════════════════════════════════════════
# FRAME HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _coerce(point: Any, index: int) -> Landmark:
    if isinstance(point, Landmark):
        return point
    if isinstance(point, Mapping):
        try:
            return Landmark.from_dict(point)
        except (KeyError, TypeError, ValueError) as e:
            raise LandmarkValidationError(f"Landmark {index} is malformed: {e}") from e
    if hasattr(point, "x") and hasattr(point, "y"):
        try:
            return Landmark(
                x=float(point.x),
                y=float(point.y),
                z=float(getattr(point, "z", 0.0)),
                visibility=float(getattr(point, "visibility", 1.0)),
            )
        except (TypeError, ValueError) as e:
            raise LandmarkValidationError(f"Landmark {index} is malformed: {e}") from e
    raise LandmarkValidationError(
        f"Landmark {index} has unsupported type {type(point).__name__}"
    )


def validate_frame(landmarks: Iterable[Any]) -> Tuple[Landmark, ...]:
    """
    Check a frame against the fixed layout and return it as a tuple of Landmarks.

    Accepts Landmark instances, mappings with x/y[/z/visibility] keys, or
    objects exposing those attributes (e.g. raw pose-estimator output).

    Raises:
        LandmarkValidationError: fewer than 33 points or a non-finite coordinate
        among the first 33
    """
    if landmarks is None:
        raise LandmarkValidationError("Frame is missing")

    frame = tuple(_coerce(point, i) for i, point in enumerate(landmarks))

    if len(frame) < LANDMARK_COUNT:
        raise LandmarkValidationError(
            f"Expected {LANDMARK_COUNT} landmarks, got {len(frame)}"
        )

    # Extra points beyond the body layout (e.g. hand models) are dropped
    frame = frame[:LANDMARK_COUNT]

    for i, lm in enumerate(frame):
        if not all(math.isfinite(v) for v in (lm.x, lm.y, lm.z, lm.visibility)):
            raise LandmarkValidationError(f"Landmark {i} has a non-finite coordinate")

    return frame


def frame_from_dicts(points: Iterable[Mapping[str, Any]]) -> List[Landmark]:
    """Convert a JSON landmark list into Landmark objects (no layout check)."""
    return [Landmark.from_dict(p) for p in points]


def visible_ratio(landmarks: Sequence[Landmark], threshold: float = VISIBILITY_THRESHOLD) -> float:
    """Share of landmarks whose visibility exceeds the threshold."""
    if not landmarks:
        return 0.0
    visible = sum(1 for lm in landmarks if lm.visibility > threshold)
    return visible / len(landmarks)
