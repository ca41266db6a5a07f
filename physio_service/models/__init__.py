"""
FORMA Physio Service Models

Rule-based per-frame form assessment over 33-point pose landmarks, plus
session tracking, safety alerts and coaching feedback.
"""

from .landmarks import (
    LANDMARK_COUNT,
    BILATERAL_PAIRS,
    JointType,
    Landmark,
    LandmarkValidationError,
    validate_frame,
    frame_from_dicts,
    visible_ratio,
)

from .geometry import (
    angle_at_vertex,
    distance,
    bilateral_symmetry,
)

from .exercise_analyzer import (
    ExerciseAnalyzer,
    ExerciseType,
    Phase,
    FormQuality,
    Biomechanics,
    AssessmentResult,
    FrameHistory,
    calculate_form_score,
    default_assessment,
)

from .safety import (
    AlertLevel,
    SafetyAlert,
    SafetyMonitor,
)

from .coaching import (
    CoachingFeedback,
    CoachingRequest,
    CoachingService,
    CoachingServiceError,
    LocalCoach,
    RemoteCoachClient,
    issue_codes_for,
    parse_text_feedback,
)

from .exercise_session import (
    ExerciseSession,
    ExerciseSessionHandler,
    SessionNotFoundError,
    SessionState,
    SessionStateError,
)

__all__ = [
    # Landmarks
    "LANDMARK_COUNT",
    "BILATERAL_PAIRS",
    "JointType",
    "Landmark",
    "LandmarkValidationError",
    "validate_frame",
    "frame_from_dicts",
    "visible_ratio",
    # Geometry
    "angle_at_vertex",
    "distance",
    "bilateral_symmetry",
    # Exercise Analyzer
    "ExerciseAnalyzer",
    "ExerciseType",
    "Phase",
    "FormQuality",
    "Biomechanics",
    "AssessmentResult",
    "FrameHistory",
    "calculate_form_score",
    "default_assessment",
    # Safety
    "AlertLevel",
    "SafetyAlert",
    "SafetyMonitor",
    # Coaching
    "CoachingFeedback",
    "CoachingRequest",
    "CoachingService",
    "CoachingServiceError",
    "LocalCoach",
    "RemoteCoachClient",
    "issue_codes_for",
    "parse_text_feedback",
    # Exercise Session
    "ExerciseSession",
    "ExerciseSessionHandler",
    "SessionNotFoundError",
    "SessionState",
    "SessionStateError",
]
