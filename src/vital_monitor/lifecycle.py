"""
Vital Monitor Lifecycle Module.

Wires one device's monitoring pipeline together and drives it:

- Sensor authorization before any reading is accepted
- Reading ingestion: threshold evaluation, user alerts, event publishing
- Escalation handling: dispatch to emergency contacts on the alerting device
- Peer events from the paired device, relayed through the event bus
- Optional Solace bridge and remote risk analysis

Every method except authorize() and the bridge callbacks runs on the device's
event loop.
"""

import asyncio
import logging
from collections import deque
from dataclasses import replace
from typing import Any, Deque, Dict, List, Optional, Protocol, Set

from emergency_contacts.dispatcher import AlertChannel, AlertDispatcher, AlertRecord
from emergency_contacts.notifications import FileNotificationSink, UserAlertNotifier
from emergency_contacts.registry import ContactRegistry
from emergency_contacts.store import JsonContactStore

from .config import MonitorSettings, get_settings
from .errors import AuthorizationFailure, SensorAuthorizationError
from .escalation import COUNTDOWN_KINDS, EscalationCoordinator
from .event_bus import BusEvent, EventBus, EventName, fall_location
from .models import (
    AnomalyEvent,
    EscalationDecision,
    EscalationTrigger,
    HealthAnalysis,
    Reading,
    VitalKind,
    VitalsSnapshot,
    _parse_timestamp,
)
from .risk_client import RiskAnalysisClient
from .threshold_evaluator import ThresholdEvaluator, ThresholdPolicy

logger = logging.getLogger(__name__)


class SensorAuthorizer(Protocol):
    """Grants access to the device's health sensors."""

    async def request_authorization(self) -> None:
        """Raise SensorAuthorizationError if access is refused or unavailable."""
        ...


class StaticAuthorizer:
    """Authorizer with a fixed answer. Used by the API server and tests."""

    def __init__(self, granted: bool = True, available: bool = True):
        self.granted = granted
        self.available = available

    async def request_authorization(self) -> None:
        if not self.available:
            raise SensorAuthorizationError(
                AuthorizationFailure.NOT_AVAILABLE, "Health data is not available on this device"
            )
        if not self.granted:
            raise SensorAuthorizationError(
                AuthorizationFailure.AUTHORIZATION_DENIED, "User denied access to health data"
            )


class MonitorService:
    """
    One device's monitoring pipeline.

    The registry and dispatcher are optional: a companion device without them
    still detects, counts down and publishes, and the paired device that holds
    the contacts performs the dispatch.
    """

    def __init__(
        self,
        bus: EventBus,
        coordinator: EscalationCoordinator,
        evaluator: Optional[ThresholdEvaluator] = None,
        notifier: Optional[UserAlertNotifier] = None,
        registry: Optional[ContactRegistry] = None,
        dispatcher: Optional[AlertDispatcher] = None,
        risk_client: Optional[RiskAnalysisClient] = None,
        authorizer: Optional[SensorAuthorizer] = None,
        bridge=None,
        decision_history: int = 50,
    ):
        self.bus = bus
        self.coordinator = coordinator
        self.evaluator = evaluator or ThresholdEvaluator()
        self.notifier = notifier
        self.registry = registry
        self.dispatcher = dispatcher
        self.risk_client = risk_client
        self.authorizer = authorizer or StaticAuthorizer()
        self.bridge = bridge

        self.authorized = False
        self.vitals = VitalsSnapshot()
        self.latest_analysis: Optional[HealthAnalysis] = None
        self.decisions: Deque[EscalationDecision] = deque(maxlen=decision_history)
        self.last_records: List[AlertRecord] = []
        self._analysis_tasks: Set[asyncio.Task] = set()

        self._stats = {
            "readings_ingested": 0,
            "readings_ignored": 0,
            "anomalies": 0,
            "peer_events": 0,
            "escalations": 0,
            "alerts_dispatched": 0,
        }

        self.coordinator.set_escalation_handler(self._on_escalated)
        self.coordinator.set_vitals_provider(lambda: self.vitals)

        self.bus.subscribe(EventName.ANOMALY_DETECTED, self._on_peer_anomaly)
        self.bus.subscribe(EventName.FALL_DETECTED, self._on_peer_fall)
        self.bus.subscribe(EventName.EMERGENCY_TRIGGERED, self._on_peer_emergency)
        self.bus.subscribe(EventName.ESCALATION_CANCELLED, self._on_peer_cancel)

    @property
    def device_id(self) -> str:
        return self.bus.device_id

    @property
    def dispatches_alerts(self) -> bool:
        return self.registry is not None and self.dispatcher is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def authorize(self, authorizer: Optional[SensorAuthorizer] = None) -> bool:
        """
        Request sensor access. May be retried after a failure.

        Raises:
            SensorAuthorizationError: access denied or no sensors on this device
        """
        authorizer = authorizer or self.authorizer
        try:
            await authorizer.request_authorization()
        except SensorAuthorizationError as e:
            self.authorized = False
            logger.warning(f"[MONITOR] Sensor authorization failed: {e}")
            raise

        self.authorized = True
        logger.info(f"[MONITOR] Sensor access granted on {self.device_id}")
        return True

    def start(self) -> Dict[str, Any]:
        """
        Start the peer bridge, if one is configured.

        Returns:
            Dict with startup status
        """
        bridge_status = {"status": "disabled"}
        if self.bridge is not None:
            bridge_status = self.bridge.start()

        logger.info(
            f"[MONITOR] Started on {self.device_id} "
            f"(dispatches_alerts={self.dispatches_alerts}, bridge={bridge_status['status']})"
        )
        return {
            "status": "started",
            "device_id": self.device_id,
            "dispatches_alerts": self.dispatches_alerts,
            "bridge": bridge_status,
        }

    def stop(self) -> None:
        """Stop countdowns, pending analyses and the bridge."""
        self.coordinator.shutdown()
        for task in list(self._analysis_tasks):
            task.cancel()
        self._analysis_tasks.clear()
        if self.bridge is not None:
            self.bridge.stop()
        logger.info(f"[MONITOR] Stopped on {self.device_id}")

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def ingest(self, reading: Reading) -> Optional[AnomalyEvent]:
        """
        Process one reading from this device's sensors.

        Args:
            reading: The sensor sample

        Returns:
            The verdict, or None when ignored (not authorized, or no value)
        """
        if not self.authorized:
            self._stats["readings_ignored"] += 1
            logger.debug(f"[MONITOR] Not authorized, ignoring {reading.kind.value} reading")
            return None

        self._stats["readings_ingested"] += 1
        self.vitals = self.vitals.with_reading(reading)

        event = self.evaluator.evaluate(reading)
        if event is None:
            return None

        if event.kind == VitalKind.FALL:
            if event.is_abnormal:
                self._on_local_anomaly(event)
                self.bus.publish_fall(event)
        elif event.is_abnormal:
            self._on_local_anomaly(event)
            self.bus.publish_anomaly(event)
        elif self.coordinator.is_counting_down(event.kind):
            # Lets the peer end its countdown for the same kind
            self.bus.publish_anomaly(event)

        self.coordinator.handle_event(event)
        return event

    def trigger_sos(self) -> EscalationDecision:
        """Manual SOS with the latest known vitals."""
        logger.warning(f"[MONITOR] SOS pressed on {self.device_id}")
        return self.coordinator.trigger_manual(self.vitals)

    def cancel(self, kind: Optional[VitalKind] = None) -> bool:
        """User cancel of one countdown, or all of them. The paired device is told too."""
        targets = [kind] if kind is not None else list(COUNTDOWN_KINDS)
        kinds = [k for k in targets if self.coordinator.is_counting_down(k)]
        keys = [key for k in kinds for key in self.coordinator.episode_keys(k)]

        cancelled = self.coordinator.cancel(kind)
        if cancelled:
            self.bus.publish_cancel(kinds, keys)
        return cancelled

    # ------------------------------------------------------------------
    # Peer events
    # ------------------------------------------------------------------

    def _on_peer_anomaly(self, bus_event: BusEvent) -> None:
        if bus_event.source_device == self.device_id:
            return
        try:
            payload = bus_event.payload
            kind = VitalKind(payload["kind"])
            value = payload.get("value")
            reading = Reading(
                kind=kind,
                value=float(value) if value is not None else None,
                timestamp=_parse_timestamp(payload.get("timestamp")),
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"[MONITOR] Malformed anomalyDetected from {bus_event.source_device}: {e}")
            return

        if kind == VitalKind.FALL:
            return

        self._stats["peer_events"] += 1
        self.vitals = self.vitals.with_reading(reading)
        event = self.evaluator.evaluate(reading)
        if event is None:
            return
        if event.is_abnormal and self.notifier is not None:
            self.notifier.vital_alert(event)
        self.coordinator.handle_event(event)

    def _on_peer_fall(self, bus_event: BusEvent) -> None:
        if bus_event.source_device == self.device_id:
            return
        try:
            reading = Reading.fall(
                True,
                location=fall_location(bus_event),
                timestamp=_parse_timestamp(bus_event.payload.get("timestamp")),
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"[MONITOR] Malformed fallDetected from {bus_event.source_device}: {e}")
            return

        self._stats["peer_events"] += 1
        self.vitals = self.vitals.with_reading(reading)
        event = self.evaluator.evaluate(reading)
        if self.notifier is not None:
            self.notifier.fall_alert(reading.location)
        self.coordinator.handle_event(event)

    def _on_peer_emergency(self, bus_event: BusEvent) -> None:
        if bus_event.source_device == self.device_id:
            return
        try:
            decision = EscalationDecision.from_dict(bus_event.payload["event"])
        except (KeyError, ValueError, TypeError) as e:
            logger.error(
                f"[MONITOR] Malformed emergencyTriggered from {bus_event.source_device}: {e}"
            )
            return

        self._stats["peer_events"] += 1
        self.coordinator.adopt_peer_escalation(decision)

    def _on_peer_cancel(self, bus_event: BusEvent) -> None:
        if bus_event.source_device == self.device_id:
            return
        try:
            kinds = [VitalKind(kind) for kind in bus_event.payload["kinds"]]
            keys = [tuple(key) for key in bus_event.payload.get("keys", [])]
        except (KeyError, ValueError, TypeError) as e:
            logger.error(
                f"[MONITOR] Malformed escalationCancelled from {bus_event.source_device}: {e}"
            )
            return

        self._stats["peer_events"] += 1
        logger.info(
            f"[MONITOR] Countdown cancelled on {bus_event.source_device}: "
            f"{', '.join(kind.value for kind in kinds)}"
        )
        self.coordinator.adopt_peer_cancel(kinds, keys)

    # ------------------------------------------------------------------
    # Escalation
    # ------------------------------------------------------------------

    def _on_local_anomaly(self, event: AnomalyEvent) -> None:
        self._stats["anomalies"] += 1
        if self.notifier is not None:
            self.notifier.vital_alert(event)
        self._start_risk_analysis()

    def _on_escalated(self, decision: EscalationDecision) -> None:
        """Coordinator callback, called once per escalated episode."""
        if decision.analysis is None and self.latest_analysis is not None:
            decision = replace(decision, analysis=self.latest_analysis)

        self._stats["escalations"] += 1
        self.decisions.append(decision)
        self.last_records = []

        if decision.trigger != EscalationTrigger.PEER_ESCALATED:
            self.bus.publish_emergency(decision)

        if not self.dispatches_alerts:
            logger.info(
                f"[MONITOR] {decision.trigger.value} escalated on {self.device_id}, "
                f"paired device dispatches"
            )
            return

        contacts = self.registry.list(active_only=True)
        records = self.dispatcher.dispatch(
            decision.event,
            contacts,
            vitals=decision.vitals,
            trigger=decision.trigger,
            analysis=decision.analysis,
        )
        self.last_records = records
        self._stats["alerts_dispatched"] += sum(1 for r in records if r.delivered)

        if self.notifier is None:
            return
        confirmed = set()
        for record in records:
            if not record.delivered or record.contact_id in confirmed:
                continue
            confirmed.add(record.contact_id)
            contact = next((c for c in contacts if c.id == record.contact_id), None)
            if contact is not None:
                self.notifier.contact_alert_sent(contact)

    def _start_risk_analysis(self) -> None:
        if self.risk_client is None or not self.risk_client.enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("[MONITOR] No running loop, skipping risk analysis")
            return

        task = loop.create_task(self._analyze(self.vitals))
        self._analysis_tasks.add(task)
        task.add_done_callback(self._analysis_tasks.discard)

    async def _analyze(self, vitals: VitalsSnapshot) -> None:
        analysis = await self.risk_client.analyze(vitals)
        if analysis is not None:
            self.latest_analysis = analysis

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        """Current monitor state for status views."""
        return {
            "device_id": self.device_id,
            "authorized": self.authorized,
            "dispatches_alerts": self.dispatches_alerts,
            "escalation": self.coordinator.snapshot(),
            "vitals": self.vitals.to_dict(),
            "latest_analysis": self.latest_analysis.to_dict() if self.latest_analysis else None,
            "last_decision": self.decisions[-1].to_dict() if self.decisions else None,
            "bridge": self.bridge.get_status() if self.bridge is not None else None,
            "stats": dict(self._stats),
        }


def build_monitor_service(settings: Optional[MonitorSettings] = None) -> MonitorService:
    """
    Assemble a MonitorService from settings.

    Args:
        settings: Monitor settings (defaults to the environment)

    Returns:
        A service ready for authorize() and start()
    """
    settings = settings or get_settings()

    evaluator = ThresholdEvaluator(ThresholdPolicy.from_settings(settings))
    bus = EventBus(device_id=settings.device_id)
    coordinator = EscalationCoordinator(
        countdown_seconds=settings.countdown_seconds,
        tick_seconds=settings.tick_seconds,
    )
    sink = FileNotificationSink(settings.notification_log_path)

    registry = None
    dispatcher = None
    if settings.dispatches_alerts:
        registry = ContactRegistry(JsonContactStore(settings.contacts_path))
        dispatcher = AlertDispatcher(
            sink,
            channels=[AlertChannel(channel) for channel in settings.alert_channels],
            evaluator=evaluator,
        )

    bridge = None
    if settings.bridge_enabled:
        from .solace_bridge import SolaceEventBridge

        bridge = SolaceEventBridge(bus, settings)

    return MonitorService(
        bus=bus,
        coordinator=coordinator,
        evaluator=evaluator,
        notifier=UserAlertNotifier(sink),
        registry=registry,
        dispatcher=dispatcher,
        risk_client=RiskAnalysisClient(
            settings.risk_service_url, timeout=settings.risk_service_timeout
        ),
        bridge=bridge,
    )
