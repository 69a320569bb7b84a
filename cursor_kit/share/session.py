"""
Transfer Session State Machine

Design Decision: Completion Semantics
=====================================

Options Considered:
1. Transfer is complete when the response stream finishes
   - Only proves bytes left this machine, not that the receiver wrote them
2. Transfer is complete when the receiver calls GET /confirm
   - Proves the receiver extracted successfully
   - Needs a fallback for receivers that never confirm

Decision: Explicit confirmation with a timeout fallback
- /confirm moves the session to `confirmed`
- If the stream finished and no confirmation arrives within the window,
  the session is confirmed as *assumed* (logged as a warning)

State Diagram:
```
idle --listen_started--> listening --connection_received--> sending
sending --stream_finished--> sent-awaiting-confirmation
sending --stream_interrupted--> listening          (client dropped; may retry)
sending --stream_failed--> failed                  (archive build error)
listening|sending|sent-awaiting-confirmation --confirm_received--> confirmed
sent-awaiting-confirmation --timeout_fired--> confirmed
confirmed|failed|idle --shutdown_complete--> closed
any live state --interrupt_requested--> closed
```

Every state change goes through fire(); there are no other flags.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CONFIRM_TIMEOUT = 30.0


class SessionState(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    SENDING = "sending"
    AWAITING_CONFIRMATION = "sent-awaiting-confirmation"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CLOSED = "closed"


class SessionEvent(Enum):
    LISTEN_STARTED = "listen_started"
    CONNECTION_RECEIVED = "connection_received"
    STREAM_FINISHED = "stream_finished"
    STREAM_INTERRUPTED = "stream_interrupted"
    STREAM_FAILED = "stream_failed"
    CONFIRM_RECEIVED = "confirm_received"
    TIMEOUT_FIRED = "timeout_fired"
    INTERRUPT_REQUESTED = "interrupt_requested"
    SHUTDOWN_COMPLETE = "shutdown_complete"


class ConfirmationSource(Enum):
    EXPLICIT = "explicit"
    ASSUMED = "assumed"


_S = SessionState
_E = SessionEvent

TRANSITIONS: Dict[Tuple[SessionState, SessionEvent], SessionState] = {
    (_S.IDLE, _E.LISTEN_STARTED): _S.LISTENING,
    (_S.LISTENING, _E.CONNECTION_RECEIVED): _S.SENDING,
    (_S.SENDING, _E.STREAM_FINISHED): _S.AWAITING_CONFIRMATION,
    (_S.SENDING, _E.STREAM_INTERRUPTED): _S.LISTENING,
    (_S.SENDING, _E.STREAM_FAILED): _S.FAILED,
    (_S.LISTENING, _E.CONFIRM_RECEIVED): _S.CONFIRMED,
    (_S.SENDING, _E.CONFIRM_RECEIVED): _S.CONFIRMED,
    (_S.AWAITING_CONFIRMATION, _E.CONFIRM_RECEIVED): _S.CONFIRMED,
    (_S.AWAITING_CONFIRMATION, _E.TIMEOUT_FIRED): _S.CONFIRMED,
    (_S.IDLE, _E.SHUTDOWN_COMPLETE): _S.CLOSED,
    (_S.CONFIRMED, _E.SHUTDOWN_COMPLETE): _S.CLOSED,
    (_S.FAILED, _E.SHUTDOWN_COMPLETE): _S.CLOSED,
}

for _state in (_S.IDLE, _S.LISTENING, _S.SENDING, _S.AWAITING_CONFIRMATION,
               _S.CONFIRMED, _S.FAILED):
    TRANSITIONS[(_state, _E.INTERRUPT_REQUESTED)] = _S.CLOSED


Transition = Tuple[SessionState, SessionEvent, SessionState]
TransitionCallback = Callable[[SessionState, SessionEvent, SessionState], None]


class TransferSession:
    """
    Owns the lifecycle of one share session.

    Observers registered with on_transition() are called synchronously
    after each state change, in registration order.

    Must be driven from a single event loop; the confirmation timer is a
    loop.call_later handle, armed on entering sent-awaiting-confirmation.
    """

    def __init__(self, confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT):
        self.confirm_timeout = confirm_timeout
        self._state = SessionState.IDLE
        self._history: List[Transition] = []
        self._callbacks: List[TransitionCallback] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._closed_event: Optional[asyncio.Event] = None

        # Statistics
        self.attempts = 0
        self.bytes_sent = 0
        self.last_error: Optional[str] = None
        self.started_at: Optional[float] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def history(self) -> List[Transition]:
        return list(self._history)

    @property
    def is_closed(self) -> bool:
        return self._state is SessionState.CLOSED

    @property
    def confirmation(self) -> Optional[ConfirmationSource]:
        """How the session got confirmed, derived from its history."""
        for _, event, new_state in self._history:
            if new_state is SessionState.CONFIRMED:
                if event is SessionEvent.TIMEOUT_FIRED:
                    return ConfirmationSource.ASSUMED
                return ConfirmationSource.EXPLICIT
        return None

    @property
    def failed(self) -> bool:
        return any(new is SessionState.FAILED for _, _, new in self._history)

    def on_transition(self, callback: TransitionCallback):
        """Register an observer for state changes."""
        self._callbacks.append(callback)

    def fire(self, event: SessionEvent) -> bool:
        """
        Apply an event.

        Returns:
            True if it caused a transition, False if it does not apply
            to the current state (the event is then ignored)
        """
        old_state = self._state
        new_state = TRANSITIONS.get((old_state, event))
        if new_state is None:
            logger.debug(f"Ignoring {event.value} in state {old_state.value}")
            return False

        self._state = new_state
        self._history.append((old_state, event, new_state))
        logger.debug(f"Session {old_state.value} --{event.value}--> {new_state.value}")

        self._apply_side_effects(old_state, event, new_state)

        for callback in self._callbacks:
            try:
                callback(old_state, event, new_state)
            except Exception as e:
                logger.error(f"Transition callback error: {e}", exc_info=True)

        return True

    # === Named events ===

    def listen_started(self) -> bool:
        return self.fire(SessionEvent.LISTEN_STARTED)

    def connection_received(self) -> bool:
        if self.fire(SessionEvent.CONNECTION_RECEIVED):
            self.attempts += 1
            if self.started_at is None:
                self.started_at = time.time()
            return True
        return False

    def stream_finished(self) -> bool:
        return self.fire(SessionEvent.STREAM_FINISHED)

    def stream_interrupted(self, reason: str = "Client disconnected before transfer completed") -> bool:
        self.last_error = reason
        return self.fire(SessionEvent.STREAM_INTERRUPTED)

    def stream_failed(self, reason: str) -> bool:
        self.last_error = reason
        return self.fire(SessionEvent.STREAM_FAILED)

    def confirm(self) -> bool:
        """Record a confirmation. Returns False if one was already recorded."""
        return self.fire(SessionEvent.CONFIRM_RECEIVED)

    def interrupt(self) -> bool:
        return self.fire(SessionEvent.INTERRUPT_REQUESTED)

    def shutdown_complete(self) -> bool:
        return self.fire(SessionEvent.SHUTDOWN_COMPLETE)

    async def wait_closed(self):
        """Wait until the session reaches `closed`."""
        if self.is_closed:
            return
        if self._closed_event is None:
            self._closed_event = asyncio.Event()
        await self._closed_event.wait()

    # === Internals ===

    def _apply_side_effects(self, old_state: SessionState, event: SessionEvent,
                            new_state: SessionState):
        if old_state is SessionState.AWAITING_CONFIRMATION:
            self._cancel_timer()

        if new_state is SessionState.AWAITING_CONFIRMATION:
            self._arm_timer()
            logger.info(f"Archive sent, waiting up to {self.confirm_timeout:.0f}s for confirmation")
        elif new_state is SessionState.CONFIRMED:
            if event is SessionEvent.TIMEOUT_FIRED:
                logger.warning(
                    f"No confirmation within {self.confirm_timeout:.0f}s, "
                    f"assuming the transfer completed"
                )
            else:
                logger.info("Receiver confirmed the transfer")
        elif new_state is SessionState.FAILED:
            logger.error(f"Transfer failed: {self.last_error}")
        elif event is SessionEvent.STREAM_INTERRUPTED:
            logger.error(f"Transfer interrupted: {self.last_error}; waiting for a new connection")
        elif new_state is SessionState.CLOSED:
            self._cancel_timer()
            if self._closed_event is not None:
                self._closed_event.set()

    def _arm_timer(self):
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.confirm_timeout, self._on_timeout)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self):
        self._timer = None
        self.fire(SessionEvent.TIMEOUT_FIRED)

    def get_stats(self) -> dict:
        return {
            'state': self._state.value,
            'attempts': self.attempts,
            'bytes_sent': self.bytes_sent,
            'confirmation': self.confirmation.value if self.confirmation else None,
            'last_error': self.last_error,
        }
