"""HTTP and WebSocket tests for the physio API."""

import pytest
from fastapi.testclient import TestClient

from main import app
from physio_service.models import JointType

from tests.physio.frames import frame_json, make_frame


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def session_id(client):
    response = client.post("/api/physio/session/start", json={"user_id": "patient-1", "exercise": "squat"})
    assert response.status_code == 200
    return response.json()["session_id"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_stats_envelope(client, session_id):
    body = client.get("/stats").json()
    assert body["success"] is True
    assert body["data"]["active_sessions"] >= 1


def test_list_exercises(client):
    body = client.get("/api/physio/exercises").json()
    assert body["total"] == 4
    squat = next(e for e in body["exercises"] if e["id"] == "squat")
    assert squat["thresholds"]["knee_valgus"] == {"critical": 15, "minor": 8}


class TestAnalyze:

    def test_squat_frame(self, client):
        response = client.post("/api/physio/analyze", json={
            "exercise": "squat",
            "landmarks": frame_json(make_frame()),
        })
        assert response.status_code == 200
        assessment = response.json()["assessment"]
        assert assessment["score"] == 75
        assert assessment["phase"] == "starting"
        assert assessment["quality"] == "good"

    def test_unknown_exercise_is_neutral(self, client):
        response = client.post("/api/physio/analyze", json={
            "exercise": "yoga",
            "landmarks": frame_json(make_frame()),
        })
        assert response.status_code == 200
        assert response.json()["assessment"]["phase"] == "unknown"

    def test_short_frame_rejected(self, client):
        response = client.post("/api/physio/analyze", json={
            "exercise": "squat",
            "landmarks": frame_json(make_frame())[:12],
        })
        assert response.status_code == 422
        assert "Expected 33 landmarks" in response.json()["detail"]

    def test_malformed_body_rejected(self, client):
        response = client.post("/api/physio/analyze", json={"exercise": "squat", "landmarks": [{"x": 1}]})
        assert response.status_code == 422

    def test_huge_coordinates_are_graded(self, client):
        frame = make_frame(overrides={
            JointType.LEFT_SHOULDER: (1e200, 1e200),
            JointType.LEFT_KNEE: (1e200, 1e200),
        })
        response = client.post("/api/physio/analyze", json={"exercise": "squat", "landmarks": frame_json(frame)})
        assert response.status_code == 200
        angles = response.json()["assessment"]["biomechanics"]["jointAngles"]
        assert all(0.0 <= angle <= 180.0 for angle in angles.values())


class TestSessions:

    def test_invalid_exercise(self, client):
        response = client.post("/api/physio/session/start", json={"user_id": "p", "exercise": "burpee"})
        assert response.status_code == 400

    def test_frame_flow(self, client, session_id):
        frame = frame_json(make_frame())
        response = client.post(f"/api/physio/session/{session_id}/frame", json={"landmarks": frame})
        assert response.status_code == 200
        body = response.json()
        assert body["frame"] == 1
        assert body["alerts"][0]["type"] == "danger"

        progress = client.get(f"/api/physio/session/{session_id}/progress").json()
        assert progress["frames_analyzed"] == 1

        summary = client.post(f"/api/physio/session/{session_id}/end").json()
        assert summary["summary"]["frames_analyzed"] == 1

    def test_paused_session_conflicts(self, client, session_id):
        assert client.post(f"/api/physio/session/{session_id}/pause").status_code == 200

        response = client.post(
            f"/api/physio/session/{session_id}/frame",
            json={"landmarks": frame_json(make_frame())},
        )
        assert response.status_code == 409

        assert client.post(f"/api/physio/session/{session_id}/resume").status_code == 200
        assert client.post(f"/api/physio/session/{session_id}/resume").status_code == 409

    def test_unknown_session(self, client):
        assert client.get("/api/physio/session/missing/progress").status_code == 404
        assert client.post("/api/physio/session/missing/end").status_code == 404
        response = client.post("/api/physio/session/missing/frame", json={"landmarks": frame_json(make_frame())})
        assert response.status_code == 404

    def test_acknowledge_alert(self, client, session_id):
        body = client.post(
            f"/api/physio/session/{session_id}/frame",
            json={"landmarks": frame_json(make_frame())},
        ).json()
        alert_id = body["alerts"][0]["id"]

        response = client.post(f"/api/physio/session/{session_id}/alerts/{alert_id}/ack")
        assert response.status_code == 200
        assert client.post(f"/api/physio/session/{session_id}/alerts/bogus/ack").status_code == 404

    def test_emergency_stop(self, client, session_id):
        body = client.post(f"/api/physio/session/{session_id}/emergency-stop").json()
        assert body["status"] == "paused"

    def test_user_sessions(self, client, session_id):
        body = client.get("/api/physio/user/patient-1/sessions", params={"limit": 50}).json()
        assert session_id in [s["session_id"] for s in body["sessions"]]

    def test_delete_session(self, client, session_id):
        response = client.delete(f"/api/physio/session/{session_id}")
        assert response.status_code == 200
        assert response.json()["status"] == "deleted"

        assert client.get(f"/api/physio/session/{session_id}/progress").status_code == 404
        assert client.delete(f"/api/physio/session/{session_id}").status_code == 404

    def test_session_coaching(self, client, session_id):
        assert client.post(f"/api/physio/session/{session_id}/coaching").status_code == 409

        client.post(f"/api/physio/session/{session_id}/frame", json={"landmarks": frame_json(make_frame())})
        response = client.post(f"/api/physio/session/{session_id}/coaching")
        assert response.status_code == 200
        feedback = response.json()["feedback"]
        assert feedback["suggestions"] == [
            "Keep your chest up and sit back into your hips more",
            "Try to get your hip crease below your knee cap",
        ]
        assert feedback["technicalExplanation"].startswith("Excessive forward lean")

    def test_session_coaching_unknown_session(self, client):
        assert client.post("/api/physio/session/missing/coaching").status_code == 404


def test_coaching_feedback(client):
    response = client.post("/api/physio/coaching/feedback", json={
        "exercise": "squat",
        "form_issues": ["knee_valgus"],
    })
    assert response.status_code == 200
    body = response.json()
    assert body["suggestions"] == ["Focus on pushing your knees out in line with your toes"]
    assert body["technicalExplanation"].startswith("Knee valgus")


class TestWebSocket:

    def test_stream_frames_and_end(self, client, session_id):
        with client.websocket_connect(f"/api/physio/ws/session/{session_id}") as ws:
            assert ws.receive_json()["type"] == "SESSION_CONNECTED"

            for y in (0.55, 0.57, 0.59):
                ws.send_json({"landmarks": frame_json(make_frame(overrides={
                    JointType.LEFT_HIP: (0.45, y),
                    JointType.RIGHT_HIP: (0.55, y),
                }))})
                message = ws.receive_json()
                assert message["type"] == "FRAME_RESULT"

            assert message["assessment"]["phase"] == "descending"

            ws.send_json({"landmarks": frame_json(make_frame())[:5]})
            assert ws.receive_json()["type"] == "ERROR"

            ws.send_json({"type": "END"})
            completed = ws.receive_json()
            assert completed["type"] == "SESSION_COMPLETED"
            assert completed["summary"]["frames_analyzed"] == 3

    def test_unknown_session(self, client):
        with client.websocket_connect("/api/physio/ws/session/missing") as ws:
            assert ws.receive_json()["type"] == "ERROR"

    def test_non_object_message_keeps_stream_open(self, client, session_id):
        with client.websocket_connect(f"/api/physio/ws/session/{session_id}") as ws:
            assert ws.receive_json()["type"] == "SESSION_CONNECTED"

            ws.send_json([1, 2, 3])
            error = ws.receive_json()
            assert error["type"] == "ERROR"
            assert error["message"] == "Expected a JSON object"

            ws.send_json({"landmarks": frame_json(make_frame())})
            assert ws.receive_json()["type"] == "FRAME_RESULT"

    def test_session_removed_mid_stream(self, client, session_id):
        with client.websocket_connect(f"/api/physio/ws/session/{session_id}") as ws:
            assert ws.receive_json()["type"] == "SESSION_CONNECTED"

            app.state.session_handler.cleanup_session(session_id)

            ws.send_json({"landmarks": frame_json(make_frame())})
            error = ws.receive_json()
            assert error["type"] == "ERROR"
            assert error["message"] == f"Session not found: {session_id}"

    def test_disconnect_after_removal(self, client, session_id):
        with client.websocket_connect(f"/api/physio/ws/session/{session_id}") as ws:
            assert ws.receive_json()["type"] == "SESSION_CONNECTED"
            app.state.session_handler.cleanup_session(session_id)

        assert client.get(f"/api/physio/session/{session_id}/progress").status_code == 404
        assert client.get("/health").status_code == 200
