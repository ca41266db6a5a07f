"""Tests for coaching feedback: local coach, text parsing and remote fallback."""

import asyncio

import pytest

from physio_service.models import (
    CoachingFeedback,
    CoachingRequest,
    CoachingService,
    CoachingServiceError,
    ExerciseAnalyzer,
    LocalCoach,
    RemoteCoachClient,
    issue_codes_for,
    parse_text_feedback,
)

from tests.physio.frames import make_frame


class FailingRemote:
    def __init__(self):
        self.calls = 0

    async def analyze(self, request):
        self.calls += 1
        raise CoachingServiceError("Coach API error: 503")


class EchoRemote:
    async def analyze(self, request):
        return CoachingFeedback(suggestions=[f"remote tip for {request.exercise}"], source="remote")


class TestLocalCoach:

    def test_squat_knee_valgus(self):
        feedback = LocalCoach().analyze(CoachingRequest(exercise="squat", form_issues=["knee_valgus"]))
        assert feedback.suggestions == ["Focus on pushing your knees out in line with your toes"]
        assert feedback.warnings == []
        assert feedback.technical_explanation.startswith("Knee valgus")
        assert feedback.encouragement is None
        assert feedback.source == "local"

    def test_pushup_sagging_hips_warns(self):
        feedback = LocalCoach().analyze(CoachingRequest(exercise="pushup", form_issues=["sagging_hips"]))
        assert feedback.warnings == ["Engage your core to prevent lower back strain"]
        assert feedback.suggestions == ["Think about holding a plank position throughout"]

    def test_unmapped_issue_uses_default_explanation(self):
        feedback = LocalCoach().analyze(CoachingRequest(exercise="lunge", form_issues=["knee_over_toe"]))
        assert feedback.warnings == ["Keep your front knee over your ankle, not past your toes"]
        assert feedback.technical_explanation == LocalCoach.DEFAULT_EXPLANATION

    def test_encouragement_when_form_is_clean(self):
        request = CoachingRequest(exercise="squat", landmarks=make_frame())
        feedback = LocalCoach().analyze(request)
        assert feedback.suggestions == []
        assert feedback.encouragement in LocalCoach.ENCOURAGEMENTS

    def test_low_visibility_prompts_repositioning(self):
        request = CoachingRequest(exercise="squat", landmarks=make_frame(visibility=0.2))
        feedback = LocalCoach().analyze(request)
        assert feedback.suggestions == ["Try to stay fully visible in the camera frame for better analysis"]
        assert feedback.encouragement is None

    def test_suggestions_and_warnings_are_capped(self):
        request = CoachingRequest(
            exercise="squat",
            landmarks=make_frame(visibility=0.2),
            form_issues=["knee_valgus", "forward_lean", "shallow_depth", "heel_lift"],
        )
        feedback = LocalCoach().analyze(request)
        assert len(feedback.suggestions) == 3
        assert feedback.warnings == ["Keep your heels planted - consider ankle mobility work"]


class TestIssueCodes:

    def test_codes_from_assessment(self):
        assessment = ExerciseAnalyzer().analyze(make_frame(), "squat")
        assert issue_codes_for(assessment) == ["forward_lean", "shallow_depth"]

    def test_unknown_findings_are_skipped(self):
        assessment = ExerciseAnalyzer().analyze(make_frame(), "tai_chi")
        assert issue_codes_for(assessment) == []


def test_parse_text_feedback():
    text = (
        "- Keep your chest up through the whole movement\n"
        "- Warning: your knees are drifting inward\n"
        "ok\n"
        "Great work overall\n"
    )
    feedback = parse_text_feedback(text)
    assert feedback.warnings == ["Warning: your knees are drifting inward"]
    assert feedback.suggestions == [
        "Keep your chest up through the whole movement",
        "Great work overall",
    ]
    assert feedback.encouragement == "Keep your chest up through the whole movement"
    assert feedback.source == "remote"


class TestCoachingService:

    def test_local_only(self):
        service = CoachingService()
        feedback = asyncio.run(service.get_feedback(CoachingRequest(exercise="plank", form_issues=["raised_hips"])))
        assert feedback.source == "local"
        assert feedback.suggestions == ["Lower your hips to create a straight line"]

    def test_remote_used_when_available(self):
        service = CoachingService(remote=EchoRemote())
        feedback = asyncio.run(service.get_feedback(CoachingRequest(exercise="squat")))
        assert feedback.source == "remote"
        assert feedback.suggestions == ["remote tip for squat"]

    def test_falls_back_on_remote_failure(self):
        remote = FailingRemote()
        service = CoachingService(remote=remote)
        feedback = asyncio.run(service.get_feedback(CoachingRequest(exercise="squat", form_issues=["knee_valgus"])))
        assert remote.calls == 1
        assert feedback.source == "local"
        assert feedback.suggestions == ["Focus on pushing your knees out in line with your toes"]

    def test_feedback_for_assessment(self):
        assessment = ExerciseAnalyzer().analyze(make_frame(), "squat")
        feedback = asyncio.run(CoachingService().feedback_for_assessment("squat", assessment, make_frame()))
        assert feedback.suggestions == [
            "Keep your chest up and sit back into your hips more",
            "Try to get your hip crease below your knee cap",
        ]


class TestRemoteCoachClient:

    def test_headers(self):
        client = RemoteCoachClient("http://coach.local/", api_key="secret")
        assert client.base_url == "http://coach.local"
        assert client._headers()["Authorization"] == "Bearer secret"
        assert "Authorization" not in RemoteCoachClient("http://coach.local")._headers()

    def test_unreachable_service_raises(self):
        client = RemoteCoachClient("http://127.0.0.1:9", timeout=2.0)
        with pytest.raises(CoachingServiceError):
            asyncio.run(client.analyze(CoachingRequest(exercise="squat")))

    def test_feedback_from_dict_caps_lists(self):
        feedback = CoachingFeedback.from_dict({
            "suggestions": ["a", "b", "c", "d"],
            "warnings": ["w1", "w2", "w3"],
            "technicalExplanation": "why",
        })
        assert feedback.suggestions == ["a", "b", "c"]
        assert feedback.warnings == ["w1", "w2"]
        assert feedback.technical_explanation == "why"
        assert feedback.source == "remote"
