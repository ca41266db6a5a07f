"""
FORMA Physio Service - Exercise Form Analyzer

Rule-based, per-frame form assessment for squat, push-up, plank and lunge.
Each call folds the frame into a short rolling history, measures the joints
relevant to the exercise, grades every measure as a critical error, a minor
issue or a strength, and turns the findings into a 0-100 score.

One analyzer instance belongs to one exercise session; the frame history is
its only state and is never shared.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np

from .geometry import (
    angle_at_vertex,
    bilateral_symmetry,
    horizontal_offset,
    segment_inclination,
    segment_lean,
    signed_line_deviation,
)
from .landmarks import Frame, JointType, Landmark, validate_frame

logger = logging.getLogger(__name__)


DEFAULT_HISTORY_SIZE = 30  # ~1 second at 30 fps
DEFAULT_TREND_THRESHOLD = 0.01
PHASE_WINDOW = 3
STABILITY_WINDOW = 5
ROM_MIN_FRAMES = 10

CRITICAL_PENALTY = 25
MINOR_PENALTY = 10
STRENGTH_BONUS = 5


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS AND DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

class ExerciseType(str, Enum):
    """Exercises with a dedicated form analyzer."""
    SQUAT = "squat"
    PUSHUP = "pushup"
    PLANK = "plank"
    LUNGE = "lunge"

    @classmethod
    def parse(cls, value: Union[str, "ExerciseType", None]) -> Optional["ExerciseType"]:
        """Return the matching member, or None for an unsupported identifier."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class Phase(str, Enum):
    """Coarse movement phase labels."""
    STARTING = "starting"
    DESCENDING = "descending"
    ASCENDING = "ascending"
    BOTTOM = "bottom"
    HOLD = "hold"
    UNKNOWN = "unknown"


class FormQuality(Enum):
    """Form quality bands derived from the score."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"

    @classmethod
    def from_score(cls, score: float) -> "FormQuality":
        if score >= 90:
            return cls.EXCELLENT
        elif score >= 75:
            return cls.GOOD
        elif score >= 50:
            return cls.FAIR
        return cls.POOR


@dataclass(frozen=True)
class Biomechanics:
    """Derived joint-angle, symmetry, stability and range bundle for one frame."""
    joint_angles: Dict[str, float]
    symmetry: float
    stability: float
    range: float
    timing: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jointAngles": {name: round(value, 2) for name, value in self.joint_angles.items()},
            "symmetry": round(self.symmetry, 4),
            "stability": round(self.stability, 4),
            "range": round(self.range, 4),
            "timing": self.timing,
        }


@dataclass(frozen=True)
class AssessmentResult:
    """Form assessment for one frame of one exercise."""
    score: int
    critical_errors: List[str]
    minor_issues: List[str]
    strengths: List[str]
    phase: str
    biomechanics: Biomechanics
    exercise: Optional[str] = None

    @property
    def quality(self) -> FormQuality:
        return FormQuality.from_score(self.score)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON shape consumed by the overlay and coaching panel."""
        return {
            "score": self.score,
            "criticalErrors": list(self.critical_errors),
            "minorIssues": list(self.minor_issues),
            "strengths": list(self.strengths),
            "phase": self.phase,
            "quality": self.quality.value,
            "biomechanics": self.biomechanics.to_dict(),
        }


@dataclass
class Findings:
    """The three finding lists built up while grading one frame."""
    critical_errors: List[str] = field(default_factory=list)
    minor_issues: List[str] = field(default_factory=list)
    strengths: List[str] = field(default_factory=list)

    def grade(
        self,
        value: float,
        critical: Optional[float],
        minor: Optional[float],
        critical_label: Optional[str],
        minor_label: Optional[str],
        strength_label: str,
    ) -> None:
        """Record a higher-is-worse measure against its critical/minor cutoffs."""
        if critical is not None and value > critical:
            self.critical_errors.append(critical_label)
        elif minor is not None and value > minor:
            self.minor_issues.append(minor_label)
        else:
            self.strengths.append(strength_label)

    def grade_floor(self, value: float, floor: float, minor_label: str, strength_label: str) -> None:
        """Record a lower-is-worse measure with a single minor cutoff."""
        if value < floor:
            self.minor_issues.append(minor_label)
        else:
            self.strengths.append(strength_label)


# ═══════════════════════════════════════════════════════════════════════════════
# FRAME HISTORY
# ═══════════════════════════════════════════════════════════════════════════════

class FrameHistory:
    """Bounded FIFO of the most recent frames."""

    def __init__(self, capacity: int = DEFAULT_HISTORY_SIZE):
        if capacity < 1:
            raise ValueError("History capacity must be at least 1")
        self.capacity = capacity
        self._frames: Deque[Frame] = deque(maxlen=capacity)

    def append(self, frame: Frame) -> None:
        self._frames.append(frame)

    def recent(self, count: int) -> List[Frame]:
        """The last ``count`` frames, oldest first."""
        if count <= 0:
            return []
        return list(self._frames)[-count:]

    def clear(self) -> None:
        self._frames.clear()

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self):
        return iter(self._frames)


# ═══════════════════════════════════════════════════════════════════════════════
# TEMPORAL MEASURES
# ═══════════════════════════════════════════════════════════════════════════════

def detect_phase(
    frames: Sequence[Frame],
    tracked: JointType,
    threshold: float = DEFAULT_TREND_THRESHOLD,
) -> str:
    """
    Classify movement direction from the tracked landmark's recent height.

    Uses the last three frames: trend = latest y - earliest y. Image y grows
    downward, so a positive trend means the body is descending. No hysteresis
    is applied.
    """
    if len(frames) < PHASE_WINDOW:
        return Phase.STARTING.value

    window = frames[-PHASE_WINDOW:]
    trend = window[-1][tracked].y - window[0][tracked].y

    if trend > threshold:
        return Phase.DESCENDING.value
    if trend < -threshold:
        return Phase.ASCENDING.value
    return Phase.BOTTOM.value


def calculate_stability(frames: Sequence[Frame], window: int = STABILITY_WINDOW) -> float:
    """
    Stability score in [0, 1] from positional variance over the last frames.

    Every landmark contributes its x and y variance across the window; the
    summed variance maps to max(0, 1 - total * 100). Returns 0.5 until the
    window is full.
    """
    if len(frames) < window:
        return 0.5

    recent = frames[-window:]
    positions = np.array([[(lm.x, lm.y) for lm in frame] for frame in recent], dtype=float)
    total_variance = float(np.var(positions, axis=0).sum())

    return max(0.0, 1.0 - total_variance * 100)


def calculate_form_score(
    critical_errors: Sequence[str],
    minor_issues: Sequence[str],
    strengths: Sequence[str],
) -> int:
    """100 - 25 per critical error - 10 per minor issue + 5 per strength, clamped to 0-100."""
    score = 100
    score -= len(critical_errors) * CRITICAL_PENALTY
    score -= len(minor_issues) * MINOR_PENALTY
    score += len(strengths) * STRENGTH_BONUS
    return max(0, min(100, score))


def default_assessment() -> AssessmentResult:
    """Neutral result returned for exercises without a dedicated analyzer."""
    return AssessmentResult(
        score=75,
        critical_errors=[],
        minor_issues=[],
        strengths=["Exercise detected"],
        phase=Phase.UNKNOWN.value,
        biomechanics=Biomechanics(
            joint_angles={},
            symmetry=0.8,
            stability=0.7,
            range=0.8,
            timing=1.0,
        ),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# EXERCISE ANALYZER
# ═══════════════════════════════════════════════════════════════════════════════

class ExerciseAnalyzer:
    """
    Per-frame form analyzer for one exercise session.

    Usage:
        analyzer = ExerciseAnalyzer()
        for frame in frames:
            result = analyzer.analyze(frame, "squat")
            overlay.render(result.to_dict())
    """

    # (critical, minor) cutoffs per measure; None means the tier does not apply
    EXERCISE_THRESHOLDS: Dict[ExerciseType, Dict[str, tuple]] = {
        ExerciseType.SQUAT: {
            "knee_valgus": (15, 8),
            "back_angle": (45, 30),
            "depth_min": (None, 70),
            "symmetry_min": (None, 0.85),
        },
        ExerciseType.PUSHUP: {
            "hip_sag": (20, 10),
            "elbow_angle": (None, 90),
            "rom_min": (None, 60),
        },
        ExerciseType.PLANK: {
            "spinal_deviation": (20, 15),
            "hip_height": (0.3, 0.7),  # (too low below, too high above) in image y
            "stability_min": (None, 0.7),
        },
        ExerciseType.LUNGE: {
            "knee_over_ankle": (20, 10),
            "torso_lean": (None, 20),
            "stability_min": (None, 0.6),
        },
    }

    # Landmark whose vertical trend drives phase detection
    PHASE_LANDMARKS: Dict[ExerciseType, JointType] = {
        ExerciseType.SQUAT: JointType.LEFT_HIP,
        ExerciseType.LUNGE: JointType.LEFT_HIP,
        ExerciseType.PUSHUP: JointType.LEFT_SHOULDER,
    }

    def __init__(
        self,
        history_size: int = DEFAULT_HISTORY_SIZE,
        trend_threshold: float = DEFAULT_TREND_THRESHOLD,
        phase_debounce_frames: int = 1,
    ):
        """
        Args:
            history_size: frames kept for temporal measures
            trend_threshold: normalized y change that counts as movement
            phase_debounce_frames: consecutive frames a new phase must be seen
                before it is reported; 1 reports the raw classification
        """
        if phase_debounce_frames < 1:
            raise ValueError("phase_debounce_frames must be at least 1")

        self.history = FrameHistory(history_size)
        self.trend_threshold = trend_threshold
        self.phase_debounce_frames = phase_debounce_frames

        self._stable_phase: Optional[str] = None
        self._candidate_phase: Optional[str] = None
        self._candidate_count = 0

        self._analyzers: Dict[ExerciseType, Callable[[Frame], AssessmentResult]] = {
            ExerciseType.SQUAT: self._analyze_squat,
            ExerciseType.PUSHUP: self._analyze_pushup,
            ExerciseType.PLANK: self._analyze_plank,
            ExerciseType.LUNGE: self._analyze_lunge,
        }

    # ═══════════════════════════════════════════════════════════════════════════
    # PUBLIC API
    # ═══════════════════════════════════════════════════════════════════════════

    def analyze(self, landmarks: Iterable[Landmark], exercise: Union[str, ExerciseType]) -> AssessmentResult:
        """
        Assess the form of one frame.

        Args:
            landmarks: 33 landmarks in pose-estimator order
            exercise: exercise identifier; unsupported ids get a neutral result

        Returns:
            AssessmentResult for this frame

        Raises:
            LandmarkValidationError: the frame breaks the 33-landmark contract
        """
        frame = validate_frame(landmarks)
        self.history.append(frame)

        exercise_type = ExerciseType.parse(exercise)
        if exercise_type is None:
            logger.debug(f"No analyzer for exercise {exercise!r}; returning neutral assessment")
            return default_assessment()

        result = self._analyzers[exercise_type](frame)
        logger.debug(
            f"{exercise_type.value}: score={result.score} phase={result.phase} "
            f"critical={len(result.critical_errors)} minor={len(result.minor_issues)}"
        )
        return result

    def _detect_phase(self, exercise: Union[str, ExerciseType]) -> str:
        """Current movement phase for the exercise, debounced if configured."""
        exercise_type = ExerciseType.parse(exercise)
        if exercise_type is None:
            return Phase.UNKNOWN.value
        if exercise_type == ExerciseType.PLANK:
            return Phase.HOLD.value

        raw = detect_phase(
            self.history.recent(PHASE_WINDOW),
            self.PHASE_LANDMARKS[exercise_type],
            self.trend_threshold,
        )
        return self._debounce(raw)

    def calculate_stability(self) -> float:
        return calculate_stability(self.history.recent(STABILITY_WINDOW))

    def reset(self) -> None:
        """Forget all history, e.g. between sets."""
        self.history.clear()
        self._stable_phase = None
        self._candidate_phase = None
        self._candidate_count = 0

    # ═══════════════════════════════════════════════════════════════════════════
    # PER-EXERCISE ANALYSIS
    # ═══════════════════════════════════════════════════════════════════════════

    def _analyze_squat(self, lm: Frame) -> AssessmentResult:
        limits = self.EXERCISE_THRESHOLDS[ExerciseType.SQUAT]
        findings = Findings()

        symmetry = bilateral_symmetry(lm)
        depth = self.squat_depth(lm)

        critical, minor = limits["knee_valgus"]
        findings.grade(
            self.knee_valgus(lm), critical, minor,
            "Knees caving inward - risk of injury",
            "Slight knee valgus - focus on external rotation",
            "Good knee alignment",
        )

        critical, minor = limits["back_angle"]
        findings.grade(
            self.back_angle(lm), critical, minor,
            "Excessive forward lean - maintain upright torso",
            "Slight forward lean - engage core more",
            "Good torso position",
        )

        findings.grade_floor(
            depth, limits["depth_min"][1],
            "Increase squat depth for full range of motion",
            "Good squat depth",
        )

        findings.grade_floor(
            symmetry, limits["symmetry_min"][1],
            "Slight asymmetry detected - check balance",
            "Good bilateral symmetry",
        )

        biomechanics = Biomechanics(
            joint_angles={
                "hip": self.hip_angle(lm),
                "knee": self.knee_angle(lm),
                "ankle": self.ankle_angle(lm),
            },
            symmetry=symmetry,
            stability=self.calculate_stability(),
            range=depth / 100,
            timing=self.movement_timing(),
        )
        return self._build(ExerciseType.SQUAT, findings, biomechanics)

    def _analyze_pushup(self, lm: Frame) -> AssessmentResult:
        limits = self.EXERCISE_THRESHOLDS[ExerciseType.PUSHUP]
        findings = Findings()

        elbow = self.elbow_angle(lm)
        rom = self.pushup_rom()

        critical, minor = limits["hip_sag"]
        findings.grade(
            abs(signed_line_deviation(
                lm[JointType.LEFT_SHOULDER], lm[JointType.LEFT_HIP], lm[JointType.LEFT_ANKLE]
            )),
            critical, minor,
            "Hips sagging - engage core muscles",
            "Slight hip sag - tighten core",
            "Good plank position",
        )

        findings.grade(
            elbow, None, limits["elbow_angle"][1],
            None,
            "Elbows flaring too wide - aim for 45 degrees",
            "Good elbow position",
        )

        findings.grade_floor(
            rom, limits["rom_min"][1],
            "Increase range of motion - lower chest closer to ground",
            "Good range of motion",
        )

        biomechanics = Biomechanics(
            joint_angles={
                "shoulder": self.shoulder_angle(lm),
                "elbow": elbow,
                "wrist": self.wrist_angle(lm),
            },
            symmetry=bilateral_symmetry(lm),
            stability=self.calculate_stability(),
            range=rom / 100,
            timing=self.movement_timing(),
        )
        return self._build(ExerciseType.PUSHUP, findings, biomechanics)

    def _analyze_plank(self, lm: Frame) -> AssessmentResult:
        limits = self.EXERCISE_THRESHOLDS[ExerciseType.PLANK]
        findings = Findings()

        stability = self.calculate_stability()

        # Positive deviation: hip below the shoulder-ankle line
        deviation = signed_line_deviation(
            lm[JointType.LEFT_SHOULDER], lm[JointType.LEFT_HIP], lm[JointType.LEFT_ANKLE]
        )
        critical, minor = limits["spinal_deviation"]
        findings.grade(
            abs(deviation), critical, minor,
            "Hips sagging - significant spinal misalignment" if deviation > 0
            else "Hips piked - significant spinal misalignment",
            "Minor spinal deviation - adjust position",
            "Excellent spinal alignment",
        )

        low_limit, high_limit = limits["hip_height"]
        hip_height = lm[JointType.LEFT_HIP].y
        if hip_height < low_limit:
            findings.critical_errors.append("Hips too low - lift to neutral")
        elif hip_height > high_limit:
            findings.critical_errors.append("Hips too high - lower to neutral")
        else:
            findings.strengths.append("Good hip position")

        findings.grade_floor(
            stability, limits["stability_min"][1],
            "Work on stability - reduce trembling",
            "Good stability",
        )

        biomechanics = Biomechanics(
            joint_angles={
                "shoulder": self.shoulder_angle(lm),
                "hip": self.hip_angle(lm),
                "spine": self.hip_angle(lm),
            },
            symmetry=bilateral_symmetry(lm),
            stability=stability,
            range=1.0,  # isometric
            timing=self.hold_timing(),
        )
        return self._build(ExerciseType.PLANK, findings, biomechanics)

    def _analyze_lunge(self, lm: Frame) -> AssessmentResult:
        limits = self.EXERCISE_THRESHOLDS[ExerciseType.LUNGE]
        findings = Findings()

        stability = self.calculate_stability()

        critical, minor = limits["knee_over_ankle"]
        findings.grade(
            horizontal_offset(lm[JointType.LEFT_KNEE], lm[JointType.LEFT_ANKLE]),
            critical, minor,
            "Front knee too far forward - shift weight back",
            "Front knee slightly forward - adjust stance",
            "Good front knee position",
        )

        findings.grade(
            segment_lean(lm[JointType.LEFT_SHOULDER], lm[JointType.LEFT_HIP]),
            None, limits["torso_lean"][1],
            None,
            "Excessive forward lean - keep torso upright",
            "Good torso position",
        )

        findings.grade_floor(
            stability, limits["stability_min"][1],
            "Work on balance - engage core",
            "Good balance",
        )

        biomechanics = Biomechanics(
            joint_angles={
                "frontHip": self.hip_angle(lm),
                "frontKnee": self.knee_angle(lm),
                "backHip": self.hip_angle(lm),
            },
            symmetry=bilateral_symmetry(lm),
            stability=stability,
            range=self.squat_depth(lm) / 100,
            timing=self.movement_timing(),
        )
        return self._build(ExerciseType.LUNGE, findings, biomechanics)

    def _build(self, exercise: ExerciseType, findings: Findings, biomechanics: Biomechanics) -> AssessmentResult:
        return AssessmentResult(
            score=calculate_form_score(
                findings.critical_errors, findings.minor_issues, findings.strengths
            ),
            critical_errors=findings.critical_errors,
            minor_issues=findings.minor_issues,
            strengths=findings.strengths,
            phase=self._detect_phase(exercise),
            biomechanics=biomechanics,
            exercise=exercise.value,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # JOINT ANGLES AND MEASURES
    # ═══════════════════════════════════════════════════════════════════════════

    @staticmethod
    def hip_angle(lm: Frame) -> float:
        """Shoulder-hip-knee angle; doubles as the plank spine angle."""
        return angle_at_vertex(lm[JointType.LEFT_SHOULDER], lm[JointType.LEFT_HIP], lm[JointType.LEFT_KNEE])

    @staticmethod
    def knee_angle(lm: Frame) -> float:
        return angle_at_vertex(lm[JointType.LEFT_HIP], lm[JointType.LEFT_KNEE], lm[JointType.LEFT_ANKLE])

    @staticmethod
    def ankle_angle(lm: Frame) -> float:
        return angle_at_vertex(lm[JointType.LEFT_KNEE], lm[JointType.LEFT_ANKLE], lm[JointType.LEFT_FOOT_INDEX])

    @staticmethod
    def shoulder_angle(lm: Frame) -> float:
        return angle_at_vertex(lm[JointType.LEFT_ELBOW], lm[JointType.LEFT_SHOULDER], lm[JointType.LEFT_HIP])

    @staticmethod
    def elbow_angle(lm: Frame) -> float:
        return angle_at_vertex(lm[JointType.LEFT_SHOULDER], lm[JointType.LEFT_ELBOW], lm[JointType.LEFT_WRIST])

    @staticmethod
    def wrist_angle(lm: Frame) -> float:
        return angle_at_vertex(lm[JointType.LEFT_ELBOW], lm[JointType.LEFT_WRIST], lm[JointType.LEFT_INDEX])

    @staticmethod
    def knee_valgus(lm: Frame) -> float:
        """Worse of the two knee-over-ankle horizontal offsets (x100)."""
        return max(
            horizontal_offset(lm[JointType.LEFT_KNEE], lm[JointType.LEFT_ANKLE]),
            horizontal_offset(lm[JointType.RIGHT_KNEE], lm[JointType.RIGHT_ANKLE]),
        )

    @staticmethod
    def back_angle(lm: Frame) -> float:
        return segment_inclination(lm[JointType.LEFT_SHOULDER], lm[JointType.LEFT_HIP])

    @staticmethod
    def squat_depth(lm: Frame) -> float:
        """Vertical hip-knee gap as a percentage, capped at 100."""
        return min(100.0, abs(lm[JointType.LEFT_HIP].y - lm[JointType.LEFT_KNEE].y) * 100)

    def pushup_rom(self) -> float:
        """Shoulder travel over the whole history (x100); 50 until 10 frames are seen."""
        if len(self.history) < ROM_MIN_FRAMES:
            return 50.0
        heights = [frame[JointType.LEFT_SHOULDER].y for frame in self.history]
        return (max(heights) - min(heights)) * 100

    # TODO: derive rep tempo from phase transitions once sessions report timestamps per frame
    def movement_timing(self) -> float:
        return 1.0

    def hold_timing(self) -> float:
        return 1.0

    # ═══════════════════════════════════════════════════════════════════════════
    # PHASE SMOOTHING
    # ═══════════════════════════════════════════════════════════════════════════

    def _debounce(self, raw: str) -> str:
        if self.phase_debounce_frames == 1 or raw == Phase.STARTING.value:
            self._stable_phase = raw
            self._candidate_phase = raw
            self._candidate_count = 1
            return raw

        if raw == self._candidate_phase:
            self._candidate_count += 1
        else:
            self._candidate_phase = raw
            self._candidate_count = 1

        if (
            self._stable_phase in (None, Phase.STARTING.value)
            or self._candidate_count >= self.phase_debounce_frames
        ):
            self._stable_phase = raw

        return self._stable_phase
