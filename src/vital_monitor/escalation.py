"""
Escalation Coordinator.

Turns transient anomaly verdicts into a debounced, cancellable decision to
alert emergency contacts. Heart rate and blood oxygen each run their own
state machine:

    Idle --abnormal--> CountingDown(30s) --timer 0--> Escalated --> Idle
    CountingDown --normal reading--> Idle
    CountingDown --user cancel--> Cancelled --> Idle

Falls skip the countdown and escalate immediately. A manual SOS escalates at
once and stops every running countdown.

All methods must be called from the device's event loop. Each countdown is a
single asyncio task that wakes once per tick; an episode can fire at most
once no matter whether its timer, an SOS or a peer device gets there first.
"""

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Set, Tuple

from .models import (
    AnomalyEvent,
    EscalationDecision,
    EscalationPhase,
    EscalationState,
    EscalationTrigger,
    VitalKind,
    VitalsSnapshot,
)

logger = logging.getLogger(__name__)

EscalationHandler = Callable[[EscalationDecision], None]
StateListener = Callable[[VitalKind, EscalationState], None]
VitalsProvider = Callable[[], VitalsSnapshot]

DEFAULT_COUNTDOWN_SECONDS = 30
COUNTDOWN_KINDS = (VitalKind.HEART_RATE, VitalKind.BLOOD_OXYGEN)


@dataclass
class _Episode:
    """One countdown, from the first abnormal reading until it resolves."""

    kind: VitalKind
    event: AnomalyEvent
    remaining: int
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    keys: Set[Tuple] = field(default_factory=set)
    timer: Optional[asyncio.Task] = None
    closed: bool = False


class EscalationCoordinator:
    """
    Per-kind escalation state machine with a cancellable countdown.

    Configuration:
        countdown_seconds: Grace period before an anomaly escalates
        tick_seconds: Wall-clock length of one countdown step
        auto_start_timer: Start a timer task per countdown; when False the
            countdown only advances through tick()
    """

    def __init__(
        self,
        on_escalate: Optional[EscalationHandler] = None,
        countdown_seconds: int = DEFAULT_COUNTDOWN_SECONDS,
        tick_seconds: float = 1.0,
        auto_start_timer: bool = True,
        vitals_provider: Optional[VitalsProvider] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        history_size: int = 256,
    ):
        self.countdown_seconds = countdown_seconds
        self.tick_seconds = tick_seconds
        self.auto_start_timer = auto_start_timer
        self._on_escalate = on_escalate
        self._vitals_provider = vitals_provider
        self._sleep = sleep

        self._states: Dict[VitalKind, EscalationState] = {
            kind: EscalationState.idle() for kind in VitalKind
        }
        self._episodes: Dict[VitalKind, _Episode] = {}
        self._listeners: List[StateListener] = []

        # Event keys already handled, and keys of escalated or cancelled episodes
        self._seen_keys: Deque[Tuple] = deque(maxlen=history_size)
        self._escalated_keys: Deque[Tuple] = deque(maxlen=history_size)
        self._cancelled_keys: Deque[Tuple] = deque(maxlen=history_size)
        self._adopted_episodes: Deque[str] = deque(maxlen=history_size)

        self.escalation_count = 0

        logger.info(
            f"[ESCALATION] Initialized coordinator: countdown={countdown_seconds}s, "
            f"tick={tick_seconds}s"
        )

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def set_escalation_handler(self, handler: EscalationHandler) -> None:
        self._on_escalate = handler

    def set_vitals_provider(self, provider: VitalsProvider) -> None:
        self._vitals_provider = provider

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback invoked with (kind, state) on every transition."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def state(self, kind: VitalKind) -> EscalationState:
        return self._states[kind]

    def remaining(self, kind: VitalKind) -> Optional[int]:
        """Seconds left on the countdown for ``kind``, or None when not counting."""
        return self._states[kind].remaining

    def is_counting_down(self, kind: VitalKind) -> bool:
        return self._states[kind].phase == EscalationPhase.COUNTING_DOWN

    def episode_keys(self, kind: VitalKind) -> List[Tuple]:
        """Event keys belonging to the running countdown for ``kind``."""
        episode = self._episodes.get(kind)
        return sorted(episode.keys, key=str) if episode is not None else []

    def snapshot(self) -> Dict[str, dict]:
        return {kind.value: state.to_dict() for kind, state in self._states.items()}

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def handle_event(self, event: AnomalyEvent) -> EscalationState:
        """
        Feed an anomaly verdict into the state machine.

        Args:
            event: Verdict from the threshold evaluator, local or from a peer

        Returns:
            The state for the event's kind after the transition
        """
        if event.key in self._seen_keys:
            logger.debug(f"[ESCALATION] Duplicate {event.kind.value} event ignored")
            return self._states[event.kind]
        self._seen_keys.append(event.key)

        if event.kind == VitalKind.FALL:
            if event.is_abnormal:
                self._escalate_fall(event)
            return self._states[event.kind]

        episode = self._episodes.get(event.kind)

        if event.is_abnormal:
            if episode is None:
                self._start_countdown(event)
            else:
                # Sustained anomaly: the running countdown is not restarted
                episode.keys.add(event.key)
                logger.debug(
                    f"[ESCALATION] {event.kind.value} still abnormal, "
                    f"{episode.remaining}s remaining"
                )
        elif episode is not None:
            self._close(episode)
            logger.info(
                f"[ESCALATION] {event.kind.value} returned to normal "
                f"({event.value}), countdown cancelled"
            )
            self._transition(event.kind, EscalationState.idle())

        return self._states[event.kind]

    def tick(self, kind: VitalKind) -> EscalationState:
        """Advance the countdown for ``kind`` by one step."""
        episode = self._episodes.get(kind)
        if episode is None or episode.closed:
            return self._states[kind]

        episode.remaining -= 1
        if episode.remaining <= 0:
            self._escalate(episode, EscalationTrigger.COUNTDOWN_ELAPSED)
        else:
            self._transition(
                kind, EscalationState.counting_down(episode.remaining, episode.started_at)
            )
        return self._states[kind]

    def cancel(self, kind: Optional[VitalKind] = None) -> bool:
        """
        User-initiated abort of a running countdown.

        Args:
            kind: Kind to cancel, or None to cancel every running countdown

        Returns:
            True if at least one countdown was cancelled
        """
        kinds = [kind] if kind is not None else list(self._episodes.keys())
        cancelled = False

        for target in kinds:
            episode = self._episodes.get(target)
            if episode is None:
                continue
            self._close(episode)
            self._cancelled_keys.extend(episode.keys)
            logger.info(f"[ESCALATION] {target.value} countdown cancelled by user")
            self._transition(target, EscalationState.cancelled())
            self._transition(target, EscalationState.idle())
            cancelled = True

        return cancelled

    def trigger_manual(self, vitals: Optional[VitalsSnapshot] = None) -> EscalationDecision:
        """
        Manual SOS: escalate now, bypassing and stopping any countdown.

        Args:
            vitals: Latest known readings (defaults to the vitals provider)

        Returns:
            The decision handed to the escalation handler
        """
        interrupted = [episode for episode in self._episodes.values() if not episode.closed]
        for episode in interrupted:
            self._close(episode)
            self._escalated_keys.extend(episode.keys)
            self._transition(episode.kind, EscalationState.escalated())

        decision = EscalationDecision(
            trigger=EscalationTrigger.MANUAL_SOS,
            vitals=vitals if vitals is not None else self._current_vitals(),
        )
        logger.warning(
            f"[ESCALATION] Manual SOS triggered "
            f"({len(interrupted)} countdown(s) short-circuited)"
        )
        self._fire(decision)

        for episode in interrupted:
            self._transition(episode.kind, EscalationState.idle())
        return decision

    def adopt_peer_cancel(self, kinds: List[VitalKind], keys: List[Tuple]) -> bool:
        """
        Apply a user cancel made on the paired device.

        Running countdowns for ``kinds`` are cancelled. The episode's keys are
        remembered so a late relay of the same anomaly does not restart the
        countdown and a peer escalation of that episode is not adopted.

        Returns:
            True if a local countdown was cancelled
        """
        for key in keys:
            self._seen_keys.append(key)
        self._cancelled_keys.extend(keys)

        cancelled = False
        for kind in kinds:
            episode = self._episodes.get(kind)
            if episode is None:
                continue
            self._close(episode)
            self._cancelled_keys.extend(episode.keys)
            logger.info(f"[ESCALATION] {kind.value} countdown cancelled on paired device")
            self._transition(kind, EscalationState.cancelled())
            self._transition(kind, EscalationState.idle())
            cancelled = True

        return cancelled

    def adopt_peer_escalation(self, decision: EscalationDecision) -> Optional[EscalationDecision]:
        """
        Converge on an escalation decided by the paired device.

        Closes the matching local countdown so it cannot fire a second time.
        Decisions already escalated locally, already adopted, or whose episode
        the user cancelled here are ignored.

        Returns:
            The local decision handed to the escalation handler, or None if ignored
        """
        if decision.episode_id in self._adopted_episodes:
            logger.debug(f"[ESCALATION] Peer episode {decision.episode_id} already adopted")
            return None
        if decision.event is not None and decision.event.key in self._escalated_keys:
            logger.debug("[ESCALATION] Peer escalation already handled locally")
            return None
        if decision.event is not None and decision.event.key in self._cancelled_keys:
            logger.info("[ESCALATION] Peer escalation ignored, episode was cancelled by user")
            return None
        self._adopted_episodes.append(decision.episode_id)

        if decision.kind is None:
            kinds = list(self._episodes.keys())
        else:
            kinds = [decision.kind] if decision.kind in self._episodes else []

        if decision.event is not None:
            self._seen_keys.append(decision.event.key)
            self._escalated_keys.append(decision.event.key)

        for kind in kinds:
            episode = self._episodes[kind]
            self._close(episode)
            self._escalated_keys.extend(episode.keys)
            self._transition(kind, EscalationState.escalated())

        adopted = EscalationDecision(
            trigger=EscalationTrigger.PEER_ESCALATED,
            kind=decision.kind,
            event=decision.event,
            vitals=decision.vitals,
            analysis=decision.analysis,
            episode_id=decision.episode_id,
        )
        logger.info(
            f"[ESCALATION] Adopted peer escalation {decision.episode_id} "
            f"({decision.trigger.value})"
        )
        self._fire(adopted)

        for kind in kinds:
            self._transition(kind, EscalationState.idle())
        return adopted

    def shutdown(self) -> None:
        """Stop all countdown timers without escalating."""
        for episode in list(self._episodes.values()):
            self._close(episode)
            self._transition(episode.kind, EscalationState.idle())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_countdown(self, event: AnomalyEvent) -> None:
        episode = _Episode(kind=event.kind, event=event, remaining=self.countdown_seconds)
        episode.keys.add(event.key)
        self._episodes[event.kind] = episode

        logger.info(
            f"[ESCALATION] Abnormal {event.kind.value} ({event.value}), "
            f"starting {self.countdown_seconds}s countdown"
        )
        self._transition(
            event.kind, EscalationState.counting_down(episode.remaining, episode.started_at)
        )

        if not self.auto_start_timer:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "[ESCALATION] No running event loop, countdown advances only via tick()"
            )
            return
        episode.timer = loop.create_task(self._run_timer(episode))

    async def _run_timer(self, episode: _Episode) -> None:
        """One wake-up per tick until the episode resolves."""
        while not episode.closed:
            await self._sleep(self.tick_seconds)
            if episode.closed:
                return
            self.tick(episode.kind)

    def _escalate_fall(self, event: AnomalyEvent) -> None:
        episode = _Episode(kind=event.kind, event=event, remaining=0)
        episode.keys.add(event.key)
        logger.warning("[ESCALATION] Fall detected, escalating immediately")
        self._escalate(episode, EscalationTrigger.FALL_DETECTED)

    def _escalate(self, episode: _Episode, trigger: EscalationTrigger) -> None:
        if episode.closed:
            return
        self._close(episode)
        self._escalated_keys.extend(episode.keys)
        self._transition(episode.kind, EscalationState.escalated())

        vitals = self._current_vitals()
        if vitals == VitalsSnapshot():
            vitals = VitalsSnapshot.from_event(episode.event)

        decision = EscalationDecision(
            trigger=trigger,
            kind=episode.kind,
            event=episode.event,
            vitals=vitals,
            episode_id=episode.id,
        )
        logger.warning(
            f"[ESCALATION] {episode.kind.value} escalated ({trigger.value}), "
            f"episode {episode.id}"
        )
        self._fire(decision)
        self._transition(episode.kind, EscalationState.idle())

    def _fire(self, decision: EscalationDecision) -> None:
        self.escalation_count += 1
        if self._on_escalate is None:
            logger.warning("[ESCALATION] No escalation handler registered")
            return
        try:
            self._on_escalate(decision)
        except Exception as e:
            # The episode counts as delivered-as-attempted; no retry
            logger.error(f"[ESCALATION] Escalation handler failed: {e}", exc_info=True)

    def _close(self, episode: _Episode) -> None:
        episode.closed = True
        if self._episodes.get(episode.kind) is episode:
            del self._episodes[episode.kind]

        timer = episode.timer
        episode.timer = None
        if timer is None or timer.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if timer is not current:
            timer.cancel()

    def _current_vitals(self) -> VitalsSnapshot:
        if self._vitals_provider is None:
            return VitalsSnapshot()
        return self._vitals_provider()

    def _transition(self, kind: VitalKind, state: EscalationState) -> None:
        self._states[kind] = state
        for listener in list(self._listeners):
            try:
                listener(kind, state)
            except Exception as e:
                logger.error(f"[ESCALATION] State listener failed: {e}")
