"""
FORMA Physio Service - Exercise Session Handler

Tracks exercise sessions: per-frame form assessment, rep counting from
movement phases, score history, safety alerts and the end-of-session summary.
Every session owns its own analyzer and safety monitor.
"""

import logging
import time
import uuid
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, Iterable, List, Optional

from .exercise_analyzer import (
    DEFAULT_HISTORY_SIZE,
    DEFAULT_TREND_THRESHOLD,
    AssessmentResult,
    ExerciseAnalyzer,
    ExerciseType,
    Phase,
)
from .landmarks import Landmark
from .safety import SafetyMonitor

logger = logging.getLogger(__name__)


class SessionNotFoundError(KeyError):
    """Raised when a session id is not known to the handler."""

    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session not found: {self.session_id}"


class SessionStateError(Exception):
    """Raised when an operation is not allowed in the session's current state."""


class SessionState(Enum):
    """Exercise session states."""
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass
class ExerciseSession:
    """Live state of one exercise session."""
    session_id: str
    user_id: str
    exercise: str
    analyzer: ExerciseAnalyzer
    safety: SafetyMonitor
    state: SessionState = SessionState.IDLE
    metadata: Dict[str, Any] = field(default_factory=dict)

    # Timing
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    paused_at: Optional[float] = None
    paused_seconds: float = 0.0

    # Progress
    frame_count: int = 0
    rep_count: int = 0
    scores: Deque[int] = field(default_factory=lambda: deque(maxlen=1000))
    critical_counts: Counter = field(default_factory=Counter)
    minor_counts: Counter = field(default_factory=Counter)
    last_assessment: Optional[AssessmentResult] = None
    descended: bool = False

    @property
    def duration_seconds(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time or time.time()
        paused = self.paused_seconds
        if self.paused_at is not None:
            paused += end - self.paused_at
        return max(0.0, end - self.start_time - paused)

    @property
    def average_score(self) -> float:
        return sum(self.scores) / len(self.scores) if self.scores else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "exercise": self.exercise,
            "state": self.state.value,
            "metadata": self.metadata,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_seconds": round(self.duration_seconds, 1),
            "frames_analyzed": self.frame_count,
            "reps": self.rep_count,
            "average_score": round(self.average_score, 1),
            "last_assessment": self.last_assessment.to_dict() if self.last_assessment else None,
            "alerts": [alert.to_dict() for alert in self.safety.alerts],
        }


class ExerciseSessionHandler:
    """
    Manages exercise sessions with per-frame form assessment.

    Features:
    - One ExerciseAnalyzer and SafetyMonitor per session
    - Rep counting from descending -> ascending phase changes
    - Bounded per-frame score history
    - Session summary with recurring errors and recommendations
    - Only the newest completed sessions per user are kept in memory
    """

    def __init__(
        self,
        history_size: int = DEFAULT_HISTORY_SIZE,
        trend_threshold: float = DEFAULT_TREND_THRESHOLD,
        phase_debounce_frames: int = 1,
        score_history_size: int = 1000,
        max_alerts: int = 10,
        max_duration_seconds: float = 1800,
        max_completed_per_user: int = 20,
    ):
        self.history_size = history_size
        self.trend_threshold = trend_threshold
        self.phase_debounce_frames = phase_debounce_frames
        self.score_history_size = score_history_size
        self.max_alerts = max_alerts
        self.max_duration_seconds = max_duration_seconds
        self.max_completed_per_user = max_completed_per_user
        self.sessions: Dict[str, ExerciseSession] = {}

    @classmethod
    def from_settings(cls, settings) -> "ExerciseSessionHandler":
        return cls(
            history_size=settings.FRAME_HISTORY_SIZE,
            trend_threshold=settings.PHASE_TREND_THRESHOLD,
            phase_debounce_frames=settings.PHASE_DEBOUNCE_FRAMES,
            score_history_size=settings.SESSION_SCORE_HISTORY,
            max_alerts=settings.SAFETY_MAX_ALERTS,
            max_duration_seconds=settings.SAFETY_MAX_DURATION_SECONDS,
            max_completed_per_user=settings.SESSION_MAX_COMPLETED_PER_USER,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════════

    def create_session(
        self,
        user_id: str,
        exercise: str,
        metadata: Optional[Dict[str, Any]] = None,
        patient_mode: bool = True,
    ) -> ExerciseSession:
        """
        Create and start a new exercise session.

        Args:
            user_id: User ID
            exercise: exercise identifier (squat, pushup, plank, lunge)
            metadata: free-form client data stored with the session
            patient_mode: enables the long-session break reminder

        Raises:
            ValueError: unsupported exercise
        """
        exercise_type = ExerciseType.parse(exercise)
        if exercise_type is None:
            raise ValueError(f"Unsupported exercise: {exercise}")

        session = ExerciseSession(
            session_id=str(uuid.uuid4())[:8],
            user_id=user_id,
            exercise=exercise_type.value,
            analyzer=ExerciseAnalyzer(
                history_size=self.history_size,
                trend_threshold=self.trend_threshold,
                phase_debounce_frames=self.phase_debounce_frames,
            ),
            safety=SafetyMonitor(
                patient_mode=patient_mode,
                max_alerts=self.max_alerts,
                max_duration_seconds=self.max_duration_seconds,
            ),
            metadata=dict(metadata or {}),
            scores=deque(maxlen=self.score_history_size),
        )
        session.state = SessionState.ACTIVE
        session.start_time = time.time()

        self.sessions[session.session_id] = session
        logger.info(f"Session {session.session_id} started: {session.exercise} for user {user_id}")
        return session

    def get_session(self, session_id: str) -> ExerciseSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def process_frame(self, session_id: str, landmarks: Iterable[Landmark]) -> Dict[str, Any]:
        """
        Assess one frame of an active session.

        Returns:
            Dict with the assessment, rep count and any new safety alerts

        Raises:
            SessionNotFoundError: unknown session
            SessionStateError: session is not active
            LandmarkValidationError: malformed frame
        """
        session = self.get_session(session_id)
        if session.state != SessionState.ACTIVE:
            raise SessionStateError(f"Session {session_id} is {session.state.value}, not active")

        assessment = session.analyzer.analyze(landmarks, session.exercise)

        session.frame_count += 1
        session.scores.append(assessment.score)
        session.critical_counts.update(assessment.critical_errors)
        session.minor_counts.update(assessment.minor_issues)
        session.last_assessment = assessment

        rep_completed = self._update_reps(session, assessment.phase)

        new_alerts = session.safety.check(
            assessment.score,
            duration_seconds=session.duration_seconds,
            assessment=assessment,
        )

        return {
            "session_id": session_id,
            "state": session.state.value,
            "frame": session.frame_count,
            "assessment": assessment.to_dict(),
            "reps": session.rep_count,
            "rep_completed": rep_completed,
            "alerts": [alert.to_dict() for alert in new_alerts],
        }

    def _update_reps(self, session: ExerciseSession, phase: str) -> bool:
        """A rep completes on the first ascent after a descent; plank has no reps."""
        if session.exercise == ExerciseType.PLANK.value:
            return False

        if phase == Phase.DESCENDING.value:
            session.descended = True
        elif phase == Phase.ASCENDING.value and session.descended:
            session.descended = False
            session.rep_count += 1
            logger.debug(f"Session {session.session_id}: rep {session.rep_count}")
            return True
        return False

    def pause_session(self, session_id: str) -> Dict[str, Any]:
        """Pause an active session."""
        session = self.get_session(session_id)
        if session.state != SessionState.ACTIVE:
            raise SessionStateError(f"Cannot pause a {session.state.value} session")

        session.state = SessionState.PAUSED
        session.paused_at = time.time()
        return {"status": "paused", "session_id": session_id}

    def resume_session(self, session_id: str) -> Dict[str, Any]:
        """Resume a paused session."""
        session = self.get_session(session_id)
        if session.state != SessionState.PAUSED:
            raise SessionStateError(f"Cannot resume a {session.state.value} session")

        if session.paused_at is not None:
            session.paused_seconds += time.time() - session.paused_at
            session.paused_at = None
        session.state = SessionState.ACTIVE
        return {"status": "resumed", "session_id": session_id}

    def end_session(self, session_id: str) -> Dict[str, Any]:
        """
        Complete a session and generate its summary.

        Raises:
            SessionStateError: session already completed
        """
        session = self.get_session(session_id)
        if session.state == SessionState.COMPLETED:
            raise SessionStateError(f"Session {session_id} is already completed")

        now = time.time()
        if session.paused_at is not None:
            session.paused_seconds += now - session.paused_at
            session.paused_at = None
        session.state = SessionState.COMPLETED
        session.end_time = now

        summary = self._generate_summary(session)
        self._evict_completed(session.user_id)
        logger.info(
            f"Session {session_id} completed: {session.frame_count} frames, "
            f"{session.rep_count} reps, avg score {summary['summary']['average_score']}"
        )
        return summary

    def emergency_stop(self, session_id: str) -> Dict[str, Any]:
        """Pause the session and record an emergency stop alert."""
        session = self.get_session(session_id)
        alert = session.safety.emergency_stop()
        if session.state == SessionState.ACTIVE:
            session.state = SessionState.PAUSED
            session.paused_at = time.time()
        return {"status": session.state.value, "session_id": session_id, "alert": alert.to_dict()}

    def acknowledge_alert(self, session_id: str, alert_id: str) -> bool:
        return self.get_session(session_id).safety.acknowledge(alert_id)

    # ═══════════════════════════════════════════════════════════════════════════
    # REPORTING
    # ═══════════════════════════════════════════════════════════════════════════

    def _generate_summary(self, session: ExerciseSession) -> Dict[str, Any]:
        average = session.average_score

        if average >= 85:
            performance = "excellent"
            message = "Outstanding form throughout the session!"
        elif average >= 70:
            performance = "good"
            message = "Great job! Keep it up!"
        elif average >= 50:
            performance = "fair"
            message = "Good effort! Room for improvement."
        else:
            performance = "needs_improvement"
            message = "Keep practicing! Focus on the highlighted form cues."

        return {
            "status": "completed",
            "session_id": session.session_id,
            "user_id": session.user_id,
            "exercise": session.exercise,
            "summary": {
                "frames_analyzed": session.frame_count,
                "reps": session.rep_count,
                "average_score": round(average, 1),
                "best_score": max(session.scores) if session.scores else 0,
                "worst_score": min(session.scores) if session.scores else 0,
                "duration_seconds": round(session.duration_seconds, 1),
                "common_errors": [error for error, _ in session.critical_counts.most_common(3)],
                "common_issues": [issue for issue, _ in session.minor_counts.most_common(3)],
                "safety_alerts": len(session.safety.alerts),
                "performance_rating": performance,
                "message": message,
            },
            "recommendations": self._get_recommendations(session),
            "completed_at": datetime.now().isoformat(),
        }

    def _get_recommendations(self, session: ExerciseSession) -> List[str]:
        """Recommendations based on session performance."""
        recommendations = []

        if session.frame_count == 0:
            recommendations.append("No frames were analyzed - check camera positioning and try again")
        elif session.average_score < 70:
            recommendations.append("Focus on maintaining proper form over completing more reps")

        if session.critical_counts:
            top_error, _ = session.critical_counts.most_common(1)[0]
            recommendations.append(f"Work on: {top_error}")

        if session.safety.emergency_stopped:
            recommendations.append("Consider consulting with a physiotherapist before your next session")

        if not recommendations:
            recommendations.append("Great progress! Maintain this consistency")

        return recommendations

    def get_progress(self, session_id: str) -> Dict[str, Any]:
        """Current session status including unacknowledged alerts."""
        session = self.get_session(session_id)
        progress = session.to_dict()
        progress["active_alerts"] = [alert.to_dict() for alert in session.safety.active_alerts]
        return progress

    def get_user_sessions(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent sessions for a user, newest first."""
        sessions = [s for s in self.sessions.values() if s.user_id == user_id]
        sessions.sort(key=lambda s: s.start_time or 0.0, reverse=True)
        return [s.to_dict() for s in sessions[:max(0, limit)]]

    def cleanup_session(self, session_id: str) -> bool:
        """Remove a session from memory."""
        return self.sessions.pop(session_id, None) is not None

    def _evict_completed(self, user_id: str) -> None:
        """Drop a user's oldest completed sessions beyond the retention limit."""
        completed = [
            s for s in self.sessions.values()
            if s.user_id == user_id and s.state == SessionState.COMPLETED
        ]
        excess = len(completed) - max(0, self.max_completed_per_user)
        if excess <= 0:
            return

        completed.sort(key=lambda s: s.end_time or 0.0)
        for session in completed[:excess]:
            del self.sessions[session.session_id]
        logger.debug(f"Evicted {excess} completed session(s) for user {user_id}")

    def stats(self) -> Dict[str, int]:
        states = Counter(s.state.value for s in self.sessions.values())
        return {
            "total_sessions": len(self.sessions),
            "active_sessions": states.get(SessionState.ACTIVE.value, 0),
            "paused_sessions": states.get(SessionState.PAUSED.value, 0),
            "completed_sessions": states.get(SessionState.COMPLETED.value, 0),
        }
