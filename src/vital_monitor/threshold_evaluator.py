"""
Threshold Evaluation for Vital-Sign Readings.

Maps each reading to an anomaly verdict using fixed safety bounds. Unlike a
baseline detector this keeps no history: the same reading always yields the
same verdict, so redelivered readings never change the outcome.

Out-of-domain values (a negative heart rate, say) go through the same bound
check and come out abnormal; over-alerting is preferred to a silent miss.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .models import AnomalyEvent, Reading, VitalKind, VitalsSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThresholdPolicy:
    """Per-kind safety bounds.

    Heart rate is valid within [min_heart_rate, max_heart_rate] inclusive.
    Blood oxygen is valid at or above min_blood_oxygen with no ceiling.
    Falls have no numeric bound.
    """

    min_heart_rate: float = 40.0
    max_heart_rate: float = 120.0
    min_blood_oxygen: float = 95.0

    @classmethod
    def from_settings(cls, settings) -> "ThresholdPolicy":
        return cls(
            min_heart_rate=settings.min_heart_rate,
            max_heart_rate=settings.max_heart_rate,
            min_blood_oxygen=settings.min_blood_oxygen,
        )

    def is_heart_rate_abnormal(self, value: float) -> bool:
        return value < self.min_heart_rate or value > self.max_heart_rate

    def is_blood_oxygen_abnormal(self, value: float) -> bool:
        return value < self.min_blood_oxygen


DEFAULT_POLICY = ThresholdPolicy()


class ThresholdEvaluator:
    """Turns readings into AnomalyEvents against a ThresholdPolicy."""

    def __init__(self, policy: Optional[ThresholdPolicy] = None):
        self.policy = policy or DEFAULT_POLICY
        logger.info(
            f"[THRESHOLD] Initialized evaluator: heart_rate=[{self.policy.min_heart_rate}, "
            f"{self.policy.max_heart_rate}], blood_oxygen>={self.policy.min_blood_oxygen}"
        )

    def evaluate(self, reading: Reading) -> Optional[AnomalyEvent]:
        """
        Evaluate a reading against the policy.

        Args:
            reading: The sensor sample to check

        Returns:
            AnomalyEvent with the verdict, or None when the reading has no value
            for a kind that needs one (no verdict)
        """
        if reading.kind == VitalKind.FALL:
            is_abnormal = bool(reading.value)
        elif reading.value is None:
            logger.debug(f"[THRESHOLD] No value for {reading.kind.value}, no verdict")
            return None
        elif reading.kind == VitalKind.HEART_RATE:
            is_abnormal = self.policy.is_heart_rate_abnormal(reading.value)
        else:
            is_abnormal = self.policy.is_blood_oxygen_abnormal(reading.value)

        if is_abnormal:
            logger.info(f"[THRESHOLD] Abnormal {reading.kind.value}: {reading.value}")

        return AnomalyEvent(
            kind=reading.kind,
            value=reading.value,
            is_abnormal=is_abnormal,
            timestamp=reading.timestamp,
            location=reading.location,
        )

    def is_critical(self, vitals: VitalsSnapshot) -> bool:
        """True if any vital in the snapshot breaches its bound, or a fall was seen."""
        if vitals.heart_rate is not None and self.policy.is_heart_rate_abnormal(vitals.heart_rate):
            return True
        if vitals.blood_oxygen is not None and self.policy.is_blood_oxygen_abnormal(vitals.blood_oxygen):
            return True
        return vitals.fall_detected


def is_heart_rate_abnormal(value: float) -> bool:
    """Check a heart rate in BPM against the default bounds."""
    return DEFAULT_POLICY.is_heart_rate_abnormal(value)


def is_blood_oxygen_abnormal(value: float) -> bool:
    """Check a blood oxygen percentage against the default floor."""
    return DEFAULT_POLICY.is_blood_oxygen_abnormal(value)
