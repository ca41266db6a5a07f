"""
FORMA Physio Service Router

Endpoints for per-frame form assessment, exercise sessions, safety alerts
and coaching feedback. Landmarks arrive as JSON from the browser-side pose
estimator; no video is processed here.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from shared.utils import handle_exceptions, log_execution_time

from .models import (
    CoachingRequest,
    CoachingService,
    ExerciseAnalyzer,
    ExerciseSessionHandler,
    ExerciseType,
    Landmark,
    LandmarkValidationError,
    SessionNotFoundError,
    SessionState,
    SessionStateError,
)

logger = logging.getLogger("forma.physio")

router = APIRouter()


# ============= Dependencies =============

def get_session_handler(request: Request) -> ExerciseSessionHandler:
    return request.app.state.session_handler


def get_coaching_service(request: Request) -> CoachingService:
    return request.app.state.coaching_service


# ============= Pydantic Models =============

class LandmarkModel(BaseModel):
    x: float
    y: float
    z: float = 0.0
    visibility: float = 1.0

    def to_landmark(self) -> Landmark:
        return Landmark(x=self.x, y=self.y, z=self.z, visibility=self.visibility)


class AnalyzeRequest(BaseModel):
    exercise: str
    landmarks: List[LandmarkModel]


class StartSessionRequest(BaseModel):
    user_id: str
    exercise: str
    patient_mode: bool = True
    metadata: Dict[str, Any] = Field(default_factory=dict)


class FrameRequest(BaseModel):
    landmarks: List[LandmarkModel]


class CoachingFeedbackRequest(BaseModel):
    exercise: str
    landmarks: List[LandmarkModel] = Field(default_factory=list)
    form_issues: List[str] = Field(default_factory=list)
    current_phase: Optional[str] = None


# ============= Helpers =============

def _to_landmarks(points: List[LandmarkModel]) -> List[Landmark]:
    return [p.to_landmark() for p in points]


def _http_error(e: Exception) -> HTTPException:
    """Map a service error to the matching HTTP status."""
    if isinstance(e, SessionNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, SessionStateError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, LandmarkValidationError):
        return HTTPException(status_code=422, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


# ============= REST Endpoints =============

@router.get("/exercises")
async def get_exercises():
    """Supported exercises and the thresholds each is graded against."""
    exercises = []
    for exercise_type in ExerciseType:
        thresholds = ExerciseAnalyzer.EXERCISE_THRESHOLDS[exercise_type]
        exercises.append({
            "id": exercise_type.value,
            "thresholds": {
                name: {"critical": critical, "minor": minor}
                for name, (critical, minor) in thresholds.items()
            },
        })
    return {"exercises": exercises, "total": len(exercises)}


@router.post("/analyze")
@log_execution_time
async def analyze_frame(request: AnalyzeRequest, handler: ExerciseSessionHandler = Depends(get_session_handler)):
    """
    One-shot analysis of a single frame with a fresh analyzer.

    Temporal measures (phase, stability, push-up range) report their
    insufficient-history defaults here; use a session for those.
    """
    analyzer = ExerciseAnalyzer(
        history_size=handler.history_size,
        trend_threshold=handler.trend_threshold,
        phase_debounce_frames=handler.phase_debounce_frames,
    )
    try:
        result = analyzer.analyze(_to_landmarks(request.landmarks), request.exercise)
    except LandmarkValidationError as e:
        raise _http_error(e)

    return {"exercise": request.exercise, "assessment": result.to_dict()}


@router.post("/session/start")
async def start_session(request: StartSessionRequest, handler: ExerciseSessionHandler = Depends(get_session_handler)):
    """Start a new exercise session; frames go to the REST or WebSocket endpoint."""
    try:
        session = handler.create_session(
            user_id=request.user_id,
            exercise=request.exercise,
            metadata=request.metadata,
            patient_mode=request.patient_mode,
        )
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid exercise type. Valid types: {[e.value for e in ExerciseType]}"
        )

    return {
        "status": "started",
        "session_id": session.session_id,
        "user_id": session.user_id,
        "exercise": session.exercise,
        "websocket_url": f"/api/physio/ws/session/{session.session_id}",
    }


@router.post("/session/{session_id}/frame")
async def submit_frame(
    session_id: str,
    request: FrameRequest,
    handler: ExerciseSessionHandler = Depends(get_session_handler),
):
    try:
        return handler.process_frame(session_id, _to_landmarks(request.landmarks))
    except (SessionNotFoundError, SessionStateError, LandmarkValidationError) as e:
        raise _http_error(e)


@router.post("/session/{session_id}/pause")
async def pause_session(session_id: str, handler: ExerciseSessionHandler = Depends(get_session_handler)):
    try:
        return handler.pause_session(session_id)
    except (SessionNotFoundError, SessionStateError) as e:
        raise _http_error(e)


@router.post("/session/{session_id}/resume")
async def resume_session(session_id: str, handler: ExerciseSessionHandler = Depends(get_session_handler)):
    try:
        return handler.resume_session(session_id)
    except (SessionNotFoundError, SessionStateError) as e:
        raise _http_error(e)


@router.post("/session/{session_id}/end")
async def end_session(session_id: str, handler: ExerciseSessionHandler = Depends(get_session_handler)):
    """Complete a session and return its summary."""
    try:
        return handler.end_session(session_id)
    except (SessionNotFoundError, SessionStateError) as e:
        raise _http_error(e)


@router.post("/session/{session_id}/emergency-stop")
async def emergency_stop(session_id: str, handler: ExerciseSessionHandler = Depends(get_session_handler)):
    try:
        return handler.emergency_stop(session_id)
    except SessionNotFoundError as e:
        raise _http_error(e)


@router.get("/session/{session_id}/progress")
async def get_session_progress(session_id: str, handler: ExerciseSessionHandler = Depends(get_session_handler)):
    try:
        return handler.get_progress(session_id)
    except SessionNotFoundError as e:
        raise _http_error(e)


@router.post("/session/{session_id}/alerts/{alert_id}/ack")
async def acknowledge_alert(
    session_id: str,
    alert_id: str,
    handler: ExerciseSessionHandler = Depends(get_session_handler),
):
    try:
        acknowledged = handler.acknowledge_alert(session_id, alert_id)
    except SessionNotFoundError as e:
        raise _http_error(e)

    if not acknowledged:
        raise HTTPException(status_code=404, detail=f"Alert not found: {alert_id}")
    return {"status": "acknowledged", "session_id": session_id, "alert_id": alert_id}


@router.post("/session/{session_id}/coaching")
async def session_coaching(
    session_id: str,
    handler: ExerciseSessionHandler = Depends(get_session_handler),
    coaching: CoachingService = Depends(get_coaching_service),
):
    """Coaching feedback for the session's most recent assessment."""
    try:
        session = handler.get_session(session_id)
    except SessionNotFoundError as e:
        raise _http_error(e)

    if session.last_assessment is None:
        raise HTTPException(status_code=409, detail=f"Session {session_id} has no analyzed frames yet")

    latest = session.analyzer.history.recent(1)
    feedback = await coaching.feedback_for_assessment(
        session.exercise,
        session.last_assessment,
        latest[0] if latest else (),
    )
    return {"session_id": session_id, "feedback": feedback.to_dict()}


@router.delete("/session/{session_id}")
async def delete_session(session_id: str, handler: ExerciseSessionHandler = Depends(get_session_handler)):
    """Drop a session and its history from memory."""
    if not handler.cleanup_session(session_id):
        raise _http_error(SessionNotFoundError(session_id))
    return {"status": "deleted", "session_id": session_id}


@router.get("/user/{user_id}/sessions")
async def get_user_sessions(
    user_id: str,
    limit: int = 10,
    handler: ExerciseSessionHandler = Depends(get_session_handler),
):
    sessions = handler.get_user_sessions(user_id, limit=limit)
    return {"user_id": user_id, "sessions": sessions, "total": len(sessions)}


@router.post("/coaching/feedback")
@handle_exceptions
async def coaching_feedback(
    request: CoachingFeedbackRequest,
    coaching: CoachingService = Depends(get_coaching_service),
):
    """Coaching suggestions for the given form issue codes."""
    feedback = await coaching.get_feedback(CoachingRequest(
        exercise=request.exercise,
        landmarks=_to_landmarks(request.landmarks),
        form_issues=request.form_issues,
        current_phase=request.current_phase,
    ))
    return feedback.to_dict()


# ============= WebSocket Endpoints =============

@router.websocket("/ws/session/{session_id}")
async def exercise_session_stream(websocket: WebSocket, session_id: str):
    """
    Real-time session stream.

    Client sends {"landmarks": [...]} per frame, or {"type": "END"} to finish.
    Server answers with FRAME_RESULT, SESSION_COMPLETED or ERROR messages.
    """
    await websocket.accept()
    handler: ExerciseSessionHandler = websocket.app.state.session_handler

    try:
        session = handler.get_session(session_id)
    except SessionNotFoundError as e:
        await websocket.send_json({"type": "ERROR", "message": str(e)})
        await websocket.close(code=4404)
        return

    try:
        await websocket.send_json({
            "type": "SESSION_CONNECTED",
            "session_id": session_id,
            "exercise": session.exercise,
            "state": session.state.value,
        })

        while True:
            message = await websocket.receive_json()

            if not isinstance(message, dict):
                await websocket.send_json({"type": "ERROR", "message": "Expected a JSON object"})
                continue

            if message.get("type") == "END":
                try:
                    summary = handler.end_session(session_id)
                except SessionNotFoundError as e:
                    await websocket.send_json({"type": "ERROR", "message": str(e)})
                    await websocket.close(code=4404)
                    break
                except SessionStateError as e:
                    await websocket.send_json({"type": "ERROR", "message": str(e)})
                    continue
                await websocket.send_json({"type": "SESSION_COMPLETED", **summary})
                await websocket.close()
                break

            try:
                points = [LandmarkModel(**p).to_landmark() for p in message.get("landmarks") or []]
                result = handler.process_frame(session_id, points)
            except SessionNotFoundError as e:
                await websocket.send_json({"type": "ERROR", "message": str(e)})
                await websocket.close(code=4404)
                break
            except (SessionStateError, LandmarkValidationError, TypeError, ValueError) as e:
                await websocket.send_json({"type": "ERROR", "message": str(e)})
                continue

            await websocket.send_json({"type": "FRAME_RESULT", **result})

    except WebSocketDisconnect:
        logger.info(f"Session {session_id} disconnected")
        # The session may have been removed while the stream was open
        if handler.sessions.get(session_id) is session and session.state == SessionState.ACTIVE:
            handler.pause_session(session_id)
