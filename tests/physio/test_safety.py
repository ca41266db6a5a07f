"""Tests for the session safety monitor."""

from typing import List

from physio_service.models import AlertLevel, AssessmentResult, Biomechanics, SafetyMonitor
from physio_service.models.safety import BREAK_MESSAGE, NEEDS_WORK_MESSAGE, POOR_FORM_MESSAGE


def assessment_with(critical_errors: List[str], score: int = 50) -> AssessmentResult:
    return AssessmentResult(
        score=score,
        critical_errors=critical_errors,
        minor_issues=[],
        strengths=[],
        phase="bottom",
        biomechanics=Biomechanics(joint_angles={}, symmetry=1.0, stability=1.0, range=1.0, timing=1.0),
        exercise="squat",
    )


class TestScoreAlerts:

    def test_poor_form_is_danger(self):
        monitor = SafetyMonitor()
        (alert,) = monitor.check(30)
        assert alert.level == AlertLevel.DANGER
        assert alert.message == POOR_FORM_MESSAGE
        assert monitor.has_danger

    def test_needs_work_is_warning(self):
        (alert,) = SafetyMonitor().check(55)
        assert alert.level == AlertLevel.WARNING
        assert alert.message == NEEDS_WORK_MESSAGE

    def test_good_or_zero_score_raises_nothing(self):
        monitor = SafetyMonitor()
        assert monitor.check(85) == []
        assert monitor.check(0) == []
        assert monitor.alerts == []

    def test_duplicate_messages_are_not_repeated(self):
        monitor = SafetyMonitor()
        monitor.check(30)
        assert monitor.check(25) == []
        assert len(monitor.alerts) == 1


class TestDurationAlerts:

    def test_break_reminder_in_patient_mode(self):
        alerts = SafetyMonitor().check(90, duration_seconds=1801)
        assert [a.message for a in alerts] == [BREAK_MESSAGE]

    def test_no_reminder_outside_patient_mode(self):
        assert SafetyMonitor(patient_mode=False).check(90, duration_seconds=4000) == []

    def test_custom_duration_limit(self):
        monitor = SafetyMonitor(max_duration_seconds=60)
        assert monitor.check(90, duration_seconds=61)[0].message == BREAK_MESSAGE


class TestAssessmentAlerts:

    def test_critical_errors_become_danger_alerts(self):
        monitor = SafetyMonitor()
        alerts = monitor.check(80, assessment=assessment_with(["Knees caving inward - risk of injury"]))
        assert [(a.level, a.message) for a in alerts] == [
            (AlertLevel.DANGER, "Knees caving inward - risk of injury"),
        ]

    def test_only_most_recent_alerts_kept(self):
        monitor = SafetyMonitor(max_alerts=3)
        errors = [f"error {i}" for i in range(5)]
        monitor.check(80, assessment=assessment_with(errors))
        assert [a.message for a in monitor.alerts] == ["error 2", "error 3", "error 4"]


class TestAcknowledgement:

    def test_acknowledge_hides_alert(self):
        monitor = SafetyMonitor()
        (alert,) = monitor.check(30)
        assert monitor.acknowledge(alert.alert_id)
        assert monitor.active_alerts == []
        assert not monitor.has_danger
        assert monitor.alerts[0].to_dict()["acknowledged"] is True

    def test_unknown_alert_id(self):
        assert not SafetyMonitor().acknowledge("missing")

    def test_emergency_stop(self):
        monitor = SafetyMonitor()
        alert = monitor.emergency_stop()
        assert monitor.emergency_stopped
        assert alert.level == AlertLevel.DANGER
        assert alert.to_dict()["type"] == "danger"
        assert monitor.active_alerts == [alert]
