"""
FORMA Physio Service - Coaching Feedback

Turns form issues into coaching suggestions. A remote coaching service is
used when one is configured; the rule-based local coach answers otherwise
and whenever the remote call fails.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from .exercise_analyzer import AssessmentResult
from .landmarks import Landmark, visible_ratio

logger = logging.getLogger(__name__)


MAX_SUGGESTIONS = 3
MAX_WARNINGS = 2
MIN_VISIBLE_RATIO = 0.7


class CoachingServiceError(Exception):
    """Raised when the remote coaching service cannot produce feedback."""


# ═══════════════════════════════════════════════════════════════════════════════
# DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class CoachingRequest:
    """Form context sent to a coach."""
    exercise: str
    landmarks: List[Landmark] = field(default_factory=list)
    form_issues: List[str] = field(default_factory=list)
    current_phase: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exercise": self.exercise,
            "landmarks": [lm.to_dict() for lm in self.landmarks],
            "formIssues": list(self.form_issues),
            "currentPhase": self.current_phase,
        }


@dataclass
class CoachingFeedback:
    """Coaching response shown in the suggestions panel."""
    suggestions: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    encouragement: Optional[str] = None
    technical_explanation: Optional[str] = None
    source: str = "local"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suggestions": self.suggestions,
            "warnings": self.warnings,
            "encouragement": self.encouragement,
            "technicalExplanation": self.technical_explanation,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "remote") -> "CoachingFeedback":
        return cls(
            suggestions=list(data.get("suggestions") or [])[:MAX_SUGGESTIONS],
            warnings=list(data.get("warnings") or [])[:MAX_WARNINGS],
            encouragement=data.get("encouragement"),
            technical_explanation=data.get("technicalExplanation"),
            source=source,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# ISSUE CODES
# ═══════════════════════════════════════════════════════════════════════════════

# Assessment finding label -> coaching issue code
FINDING_ISSUE_CODES: Dict[str, str] = {
    "Knees caving inward - risk of injury": "knee_valgus",
    "Slight knee valgus - focus on external rotation": "knee_valgus",
    "Excessive forward lean - maintain upright torso": "forward_lean",
    "Slight forward lean - engage core more": "forward_lean",
    "Increase squat depth for full range of motion": "shallow_depth",
    "Hips sagging - engage core muscles": "sagging_hips",
    "Slight hip sag - tighten core": "sagging_hips",
    "Elbows flaring too wide - aim for 45 degrees": "flared_elbows",
    "Increase range of motion - lower chest closer to ground": "partial_range",
    "Hips sagging - significant spinal misalignment": "sagging_hips",
    "Hips piked - significant spinal misalignment": "raised_hips",
    "Hips too low - lift to neutral": "sagging_hips",
    "Hips too high - lower to neutral": "raised_hips",
    "Front knee too far forward - shift weight back": "knee_over_toe",
    "Front knee slightly forward - adjust stance": "knee_over_toe",
    "Excessive forward lean - keep torso upright": "leaning_forward",
}


def issue_codes_for(assessment: AssessmentResult) -> List[str]:
    """Issue codes for an assessment's findings, critical first, without repeats."""
    codes: List[str] = []
    for label in list(assessment.critical_errors) + list(assessment.minor_issues):
        code = FINDING_ISSUE_CODES.get(label)
        if code and code not in codes:
            codes.append(code)
    return codes


# ═══════════════════════════════════════════════════════════════════════════════
# LOCAL COACH
# ═══════════════════════════════════════════════════════════════════════════════

class LocalCoach:
    """Rule-based coach used when no remote service is available."""

    # exercise -> issue code -> (kind, message)
    EXERCISE_ADVICE: Dict[str, Dict[str, List[tuple]]] = {
        "squat": {
            "knee_valgus": [("suggestion", "Focus on pushing your knees out in line with your toes")],
            "forward_lean": [("suggestion", "Keep your chest up and sit back into your hips more")],
            "shallow_depth": [("suggestion", "Try to get your hip crease below your knee cap")],
            "heel_lift": [("warning", "Keep your heels planted - consider ankle mobility work")],
        },
        "pushup": {
            "sagging_hips": [
                ("warning", "Engage your core to prevent lower back strain"),
                ("suggestion", "Think about holding a plank position throughout"),
            ],
            "flared_elbows": [("suggestion", "Keep your elbows at about 45 degrees from your body")],
            "partial_range": [("suggestion", "Lower your chest closer to the ground")],
        },
        "plank": {
            "sagging_hips": [("warning", "Lift your hips to protect your lower back")],
            "raised_hips": [("suggestion", "Lower your hips to create a straight line")],
            "head_position": [("suggestion", "Keep your head in neutral - look at the floor")],
        },
        "lunge": {
            "knee_over_toe": [("warning", "Keep your front knee over your ankle, not past your toes")],
            "leaning_forward": [("suggestion", "Keep your torso upright and core engaged")],
            "shallow_lunge": [("suggestion", "Drop your back knee closer to the ground")],
        },
    }

    TECHNICAL_EXPLANATIONS: Dict[str, str] = {
        "knee_valgus": "Knee valgus (inward collapse) increases ACL injury risk and reduces force production",
        "forward_lean": "Excessive forward lean shifts load to your back instead of your legs",
        "sagging_hips": "Hip sagging puts excessive stress on your lower back and reduces core activation",
        "heel_lift": "Rising onto toes indicates ankle mobility limitations and reduces stability",
    }
    DEFAULT_EXPLANATION = "Proper form ensures safety and maximizes exercise effectiveness"

    ENCOURAGEMENTS = [
        "Excellent form! Keep up the great work!",
        "Perfect technique - you're really getting the hang of this!",
        "Outstanding control and alignment!",
        "Your form is looking fantastic - keep it up!",
        "Great job maintaining proper technique!",
    ]

    def analyze(self, request: CoachingRequest) -> CoachingFeedback:
        suggestions: List[str] = []
        warnings: List[str] = []

        advice = self.EXERCISE_ADVICE.get(request.exercise, {})
        for issue in request.form_issues:
            for kind, message in advice.get(issue, []):
                (warnings if kind == "warning" else suggestions).append(message)

        if request.landmarks and visible_ratio(request.landmarks) < MIN_VISIBLE_RATIO:
            suggestions.append("Try to stay fully visible in the camera frame for better analysis")

        technical_explanation = None
        if request.form_issues:
            technical_explanation = self.TECHNICAL_EXPLANATIONS.get(
                request.form_issues[0], self.DEFAULT_EXPLANATION
            )

        encouragement = None
        if not request.form_issues and not suggestions:
            encouragement = random.choice(self.ENCOURAGEMENTS)

        return CoachingFeedback(
            suggestions=suggestions[:MAX_SUGGESTIONS],
            warnings=warnings[:MAX_WARNINGS],
            encouragement=encouragement,
            technical_explanation=technical_explanation,
            source="local",
        )


def parse_text_feedback(text: str) -> CoachingFeedback:
    """Best-effort split of a free-text coach reply into feedback fields."""
    lines = [line.strip().lstrip("-•* ").strip() for line in text.splitlines()]
    lines = [line for line in lines if line]
    suggestions: List[str] = []
    warnings: List[str] = []

    for line in lines:
        lowered = line.lower()
        if "warning" in lowered or "danger" in lowered:
            warnings.append(line)
        elif len(line) > 10:
            suggestions.append(line)

    encouragement = next(
        (line for line in lines if any(word in line.lower() for word in ("good", "great", "keep"))),
        None,
    )

    return CoachingFeedback(
        suggestions=suggestions[:MAX_SUGGESTIONS],
        warnings=warnings[:MAX_WARNINGS],
        encouragement=encouragement,
        source="remote",
    )


# ═══════════════════════════════════════════════════════════════════════════════
# REMOTE COACH
# ═══════════════════════════════════════════════════════════════════════════════

class RemoteCoachClient:
    """HTTP client for an external pose-coaching service."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def analyze(self, request: CoachingRequest) -> CoachingFeedback:
        url = f"{self.base_url}/analyze/pose"
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=request.to_dict(), headers=self._headers()) as response:
                    if response.status != 200:
                        raise CoachingServiceError(f"Coach API error: {response.status}")

                    content_type = response.headers.get("Content-Type", "")
                    if "application/json" in content_type:
                        return CoachingFeedback.from_dict(await response.json())
                    return parse_text_feedback(await response.text())

        except aiohttp.ClientError as e:
            raise CoachingServiceError(f"Network error: {e}") from e
        except asyncio.TimeoutError as e:
            raise CoachingServiceError(f"Coach API timed out after {self.timeout}s") from e


class CoachingService:
    """
    Coaching entry point used by the router.

    Args:
        remote: remote coach client; None disables remote calls
        local: rule-based fallback coach
    """

    def __init__(self, remote: Optional[RemoteCoachClient] = None, local: Optional[LocalCoach] = None):
        self.remote = remote
        self.local = local or LocalCoach()

    async def get_feedback(self, request: CoachingRequest) -> CoachingFeedback:
        if self.remote is not None:
            try:
                return await self.remote.analyze(request)
            except CoachingServiceError as e:
                logger.warning(f"Remote coaching failed, falling back to local coach: {e}")

        return self.local.analyze(request)

    async def feedback_for_assessment(
        self,
        exercise: str,
        assessment: AssessmentResult,
        landmarks: Sequence[Landmark] = (),
    ) -> CoachingFeedback:
        request = CoachingRequest(
            exercise=exercise,
            landmarks=list(landmarks),
            form_issues=issue_codes_for(assessment),
            current_phase=assessment.phase,
        )
        return await self.get_feedback(request)
