"""
FORMA Physio Service - Safety Monitor

Turns form scores, critical errors and session duration into safety alerts
for the patient-facing safety panel.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .exercise_analyzer import AssessmentResult

logger = logging.getLogger(__name__)


DANGER_SCORE = 40
WARNING_SCORE = 60

POOR_FORM_MESSAGE = "Poor form detected! Stop exercise immediately to prevent injury."
NEEDS_WORK_MESSAGE = "Form needs improvement. Focus on proper technique."
BREAK_MESSAGE = "Consider taking a break. You've been exercising for over 30 minutes."


class AlertLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    DANGER = "danger"


@dataclass
class SafetyAlert:
    """A single safety alert shown to the patient."""
    level: AlertLevel
    message: str
    alert_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    timestamp: float = field(default_factory=time.time)
    acknowledged: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.alert_id,
            "type": self.level.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "acknowledged": self.acknowledged,
        }


class SafetyMonitor:
    """
    Watches one session for unsafe form and over-long exercise.

    Alerts are de-duplicated by message and only the most recent
    ``max_alerts`` are kept.
    """

    def __init__(
        self,
        patient_mode: bool = True,
        max_alerts: int = 10,
        max_duration_seconds: float = 1800,
    ):
        self.patient_mode = patient_mode
        self.max_alerts = max_alerts
        self.max_duration_seconds = max_duration_seconds
        self.alerts: List[SafetyAlert] = []
        self.emergency_stopped = False

    def check(
        self,
        score: float,
        duration_seconds: float = 0.0,
        assessment: Optional[AssessmentResult] = None,
    ) -> List[SafetyAlert]:
        """
        Evaluate current conditions.

        Returns:
            Alerts raised by this check that were not already present
        """
        candidates: List[SafetyAlert] = []

        if 0 < score < DANGER_SCORE:
            candidates.append(SafetyAlert(AlertLevel.DANGER, POOR_FORM_MESSAGE))
        elif 0 < score < WARNING_SCORE:
            candidates.append(SafetyAlert(AlertLevel.WARNING, NEEDS_WORK_MESSAGE))

        if self.patient_mode and duration_seconds > self.max_duration_seconds:
            candidates.append(SafetyAlert(AlertLevel.WARNING, BREAK_MESSAGE))

        if assessment is not None:
            for error in assessment.critical_errors:
                candidates.append(SafetyAlert(AlertLevel.DANGER, error))

        existing = {alert.message for alert in self.alerts}
        new_alerts = []
        for alert in candidates:
            if alert.message not in existing:
                existing.add(alert.message)
                new_alerts.append(alert)

        if new_alerts:
            self.alerts = (self.alerts + new_alerts)[-self.max_alerts:]
            for alert in new_alerts:
                logger.info(f"Safety alert [{alert.level.value}]: {alert.message}")

        return new_alerts

    def acknowledge(self, alert_id: str) -> bool:
        for alert in self.alerts:
            if alert.alert_id == alert_id:
                alert.acknowledged = True
                return True
        return False

    @property
    def active_alerts(self) -> List[SafetyAlert]:
        return [alert for alert in self.alerts if not alert.acknowledged]

    @property
    def has_danger(self) -> bool:
        return any(alert.level == AlertLevel.DANGER for alert in self.active_alerts)

    def emergency_stop(self) -> SafetyAlert:
        """Record an emergency stop requested by the patient."""
        self.emergency_stopped = True
        alert = SafetyAlert(
            AlertLevel.DANGER,
            "Emergency stop activated. If you're experiencing pain or injury, "
            "please consult a healthcare professional.",
        )
        self.alerts = (self.alerts + [alert])[-self.max_alerts:]
        logger.warning("Emergency stop activated")
        return alert
