"""
Alert Dispatcher.

Turns an escalation into concrete (contact, channel, message) instructions and
hands each one to the notification sink. Filtering per active contact:

- All Alerts: always notified
- Critical Only: notified when the triggering event breaches its threshold
  (for a manual SOS, when the latest vitals do)
- None: never notified

Escalations are abnormal by construction, so All and Critical Only behave
the same for every escalated event.

Dispatch never waits on delivery. Sink failures are logged and the record is
marked undelivered; the full list of attempted records is always returned.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from vital_monitor.models import (
    AnomalyEvent,
    EscalationTrigger,
    HealthAnalysis,
    VitalKind,
    VitalsSnapshot,
)
from vital_monitor.threshold_evaluator import ThresholdEvaluator

from .notifications import (
    CATEGORY_ACTIONS,
    NotificationCategory,
    NotificationSink,
    schedule_delivery,
)
from .registry import EmergencyContact, NotificationPreference

logger = logging.getLogger(__name__)

ALERT_HEADER = "EMERGENCY ALERT from LifeSignal"


class AlertChannel(str, Enum):
    """Ways a contact can be reached."""

    SMS = "sms"
    CALL = "call"


CHANNEL_CATEGORIES = {
    AlertChannel.SMS: NotificationCategory.EMERGENCY_SMS,
    AlertChannel.CALL: NotificationCategory.EMERGENCY_CALL,
}


@dataclass
class AlertRecord:
    """One dispatch instruction, as handed to the sink."""

    contact_id: str
    channel: AlertChannel
    message: str
    triggering_event: Optional[AnomalyEvent]
    trigger: EscalationTrigger
    dispatched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    delivered: bool = True

    def to_dict(self) -> dict:
        return {
            "contact_id": self.contact_id,
            "channel": self.channel.value,
            "message": self.message,
            "triggering_event": (
                self.triggering_event.to_dict() if self.triggering_event else None
            ),
            "trigger": self.trigger.value,
            "dispatched_at": self.dispatched_at.isoformat(),
            "delivered": self.delivered,
        }


def compose_message(
    event: Optional[AnomalyEvent],
    vitals: Optional[VitalsSnapshot] = None,
) -> str:
    """
    Build the alert text sent to contacts.

    The triggering event's own value takes precedence over the snapshot for
    its kind. Heart rate is shown as whole BPM, blood oxygen to one decimal.
    """
    vitals = vitals or VitalsSnapshot()
    heart_rate = vitals.heart_rate
    blood_oxygen = vitals.blood_oxygen
    fall_detected = vitals.fall_detected
    location = vitals.location

    if event is not None:
        if event.kind == VitalKind.HEART_RATE and event.value is not None:
            heart_rate = event.value
        elif event.kind == VitalKind.BLOOD_OXYGEN and event.value is not None:
            blood_oxygen = event.value
        elif event.kind == VitalKind.FALL and event.is_abnormal:
            fall_detected = True
        if event.location is not None:
            location = event.location

    message = f"{ALERT_HEADER}\n\n"

    if heart_rate is not None:
        message += f"Heart Rate: {int(heart_rate)} BPM\n"

    if blood_oxygen is not None:
        message += f"Blood Oxygen: {blood_oxygen:.1f}%\n"

    if fall_detected:
        message += "Fall Detected!\n"

    if location is not None:
        message += f"\nLocation: {location.maps_link()}"

    return message


class AlertDispatcher:
    """Fans an escalation out to emergency contacts over the enabled channels."""

    def __init__(
        self,
        sink: NotificationSink,
        channels: Sequence[AlertChannel] = (AlertChannel.SMS,),
        evaluator: Optional[ThresholdEvaluator] = None,
    ):
        self.sink = sink
        self.channels = tuple(channels)
        self.evaluator = evaluator or ThresholdEvaluator()
        self.dispatch_count = 0
        self.failure_count = 0

    def should_notify(
        self,
        contact: EmergencyContact,
        event: Optional[AnomalyEvent],
        vitals: Optional[VitalsSnapshot] = None,
    ) -> bool:
        """Apply active-state and preference filtering to one contact."""
        if not contact.is_active:
            return False
        if contact.preference == NotificationPreference.ALL:
            return True
        if contact.preference == NotificationPreference.CRITICAL_ONLY:
            return self._is_critical(event, vitals)
        return False

    def dispatch(
        self,
        event: Optional[AnomalyEvent],
        contacts: Iterable[EmergencyContact],
        vitals: Optional[VitalsSnapshot] = None,
        trigger: EscalationTrigger = EscalationTrigger.COUNTDOWN_ELAPSED,
        analysis: Optional[HealthAnalysis] = None,
    ) -> List[AlertRecord]:
        """
        Send the alert to every eligible contact on every enabled channel.

        Args:
            event: Triggering verdict, or None for a manual SOS
            contacts: Candidate contacts (inactive ones are skipped)
            vitals: Latest known readings, merged into the message
            trigger: What caused the escalation
            analysis: Optional remote risk analysis, forwarded in the payload

        Returns:
            Every AlertRecord attempted, including ones whose delivery failed
        """
        message = compose_message(event, vitals)
        records: List[AlertRecord] = []

        for contact in contacts:
            if not self.should_notify(contact, event, vitals):
                logger.debug(
                    f"[DISPATCH] Skipping {contact.id} "
                    f"(active={contact.is_active}, preference={contact.preference.value})"
                )
                continue

            for channel in self.channels:
                record = AlertRecord(
                    contact_id=contact.id,
                    channel=channel,
                    message=message,
                    triggering_event=event,
                    trigger=trigger,
                )
                record.delivered = self._send(record, contact, analysis)
                records.append(record)

        self.dispatch_count += 1
        delivered = sum(1 for r in records if r.delivered)
        logger.warning(
            f"[DISPATCH] {trigger.value}: {delivered}/{len(records)} alert(s) handed to sink"
        )
        return records

    def _send(
        self,
        record: AlertRecord,
        contact: EmergencyContact,
        analysis: Optional[HealthAnalysis],
    ) -> bool:
        category = CHANNEL_CATEGORIES[record.channel]
        payload: Dict[str, Any] = {
            "contact_id": contact.id,
            "contact_name": contact.name,
            "phone_number": contact.phone_number,
            "channel": record.channel.value,
            "trigger": record.trigger.value,
        }
        if record.triggering_event is not None:
            payload["event"] = record.triggering_event.to_dict()
        if analysis is not None:
            payload["risk_score"] = analysis.risk_score
            payload["recommendations"] = list(analysis.recommendations)

        try:
            result = self.sink.send(
                ALERT_HEADER, record.message, category, CATEGORY_ACTIONS[category], payload
            )
            schedule_delivery(result, f"{record.channel.value} to {contact.id}")
            return True
        except Exception as e:
            self.failure_count += 1
            logger.error(
                f"[DISPATCH] Sink failed for {contact.id} via {record.channel.value}: {e}"
            )
            return False

    def _is_critical(
        self,
        event: Optional[AnomalyEvent],
        vitals: Optional[VitalsSnapshot],
    ) -> bool:
        if event is not None:
            return event.is_abnormal
        return self.evaluator.is_critical(vitals or VitalsSnapshot())
