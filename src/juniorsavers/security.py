"""Session identity and the guardian PIN authorization gate."""

from __future__ import annotations

import hmac
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional
from uuid import uuid4

from .admin import AuditLog
from .commands import Command, CommandDispatcher
from .exceptions import (
    GateBusyError,
    GateError,
    GuardianSecretMissingError,
    ProfileNotLoadedError,
    SecretAlreadySetError,
    SessionAbsentError,
)
from .models import (
    GRADE_LEVEL,
    GUARDIAN_CONTACT,
    GUARDIAN_SECRET,
    PIN_LENGTH,
    is_valid_secret,
    validate_profile_field,
)
from .ops import StructuredLogger
from .sync import PROFILE_TOPIC, SyncEngine
from .timers import Scheduler, TimerHandle

ERROR_DISPLAY_SECONDS = 1.0
HISTORY_LIMIT = 32
ONBOARDING_FIELDS = (GUARDIAN_CONTACT, GRADE_LEVEL)

SessionListener = Callable[[Optional[str]], None]


class SessionProvider:
    """Hand out one anonymous session id per provider and announce changes."""

    def __init__(self, *, session_id: Optional[str] = None) -> None:
        self._session_id = session_id
        self._listeners: List[SessionListener] = []

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    def on_change(self, listener: SessionListener) -> Callable[[], None]:
        """Register ``listener`` and call it right away with the current session."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        listener(self._session_id)
        return unsubscribe

    def sign_in_anonymously(self) -> str:
        if self._session_id is None:
            self._session_id = uuid4().hex
            self._notify()
        return self._session_id

    def sign_out(self) -> None:
        if self._session_id is None:
            return
        self._session_id = None
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._session_id)


class GateState(str, Enum):
    IDLE = "idle"
    ONBOARDING = "onboarding"
    CHALLENGING = "challenging"
    ERROR = "error"
    AUTHORIZED = "authorized"


class GateMode(str, Enum):
    SETUP = "setup"
    VERIFY = "verify"


class AuthorizationGate:
    """Collect a 4-digit PIN and release a deferred :class:`Command` on success.

    In setup mode the digits become the guardian PIN; in verify mode they are
    compared against it. A wrong PIN shows the error state for
    ``error_delay`` seconds before the input is cleared. Each scheduled clear
    carries a generation number so a clear from an abandoned attempt never
    wipes newer input.
    """

    def __init__(
        self,
        engine: SyncEngine,
        dispatcher: CommandDispatcher,
        scheduler: Scheduler,
        *,
        audit: AuditLog | None = None,
        logger: StructuredLogger | None = None,
        error_delay: float = ERROR_DISPLAY_SECONDS,
    ) -> None:
        self._engine = engine
        self._dispatcher = dispatcher
        self._scheduler = scheduler
        self._audit = audit or AuditLog()
        self._logger = (logger or StructuredLogger()).bind("gate")
        self._error_delay = error_delay
        self._state = GateState.IDLE
        self._mode: Optional[GateMode] = None
        self._digits: List[str] = []
        self._command: Optional[Command] = None
        self._profile_fields: Dict[str, Any] = {}
        self._timer: Optional[TimerHandle] = None
        self._generation = 0
        self._saving = False
        self.history: Deque[GateState] = deque([GateState.IDLE], maxlen=HISTORY_LIMIT)
        engine.add_listener(self._on_mirror_change)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    @property
    def state(self) -> GateState:
        return self._state

    @property
    def mode(self) -> Optional[GateMode]:
        return self._mode

    @property
    def entered(self) -> int:
        """Number of digits currently entered (the digits themselves stay private)."""

        return len(self._digits)

    @property
    def pending_command(self) -> Optional[Command]:
        return self._command

    @property
    def audit(self) -> AuditLog:
        return self._audit

    # ------------------------------------------------------------------
    # Starting a challenge
    # ------------------------------------------------------------------
    def begin_onboarding(self, command: Command, *, profile_fields: Optional[Mapping[str, Any]] = None) -> None:
        """Collect a brand new guardian PIN, saved together with ``profile_fields``."""

        self._ensure_idle()
        if self._engine.is_attached and not self._engine.profile_loaded:
            raise ProfileNotLoadedError("The profile is still loading; try again once it has arrived.")
        if self._engine.profile.is_onboarded:
            raise SecretAlreadySetError("A guardian PIN is already set for this profile.")
        fields = dict(profile_fields or {})
        for key, value in fields.items():
            if key not in ONBOARDING_FIELDS:
                raise ValueError(f"'{key}' cannot be set during onboarding.")
            validate_profile_field(key, value)
        self._command = command
        self._profile_fields = fields
        self._mode = GateMode.SETUP
        self._transition(GateState.ONBOARDING)

    def request(self, command: Command) -> None:
        """Challenge the guardian before ``command`` may run."""

        self._ensure_idle()
        if not self._engine.profile.is_onboarded:
            raise GuardianSecretMissingError("Set a guardian PIN before using privileged actions.")
        self._command = command
        self._mode = GateMode.VERIFY
        self._transition(GateState.CHALLENGING)

    def _ensure_idle(self) -> None:
        if self._state is not GateState.IDLE:
            raise GateBusyError(f"The gate is already {self._state.value}.")

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------
    def press(self, digit: int | str) -> bool:
        """Append one digit; returns ``False`` when the input was dropped."""

        key = str(digit)
        if len(key) != 1 or key not in "0123456789":
            raise ValueError(f"Expected a single digit, got {digit!r}.")
        if self._state is GateState.ERROR:
            # A new attempt supersedes the pending error clear.
            self._cancel_timer()
            self._digits.clear()
            self._transition(GateState.CHALLENGING)
        if self._state not in (GateState.ONBOARDING, GateState.CHALLENGING):
            return False
        if len(self._digits) >= PIN_LENGTH:
            return False
        self._digits.append(key)
        if len(self._digits) == PIN_LENGTH:
            self._submit()
        return True

    def backspace(self) -> bool:
        if self._state not in (GateState.ONBOARDING, GateState.CHALLENGING) or not self._digits:
            return False
        self._digits.pop()
        return True

    def cancel(self) -> bool:
        """Abandon a verification challenge without running its command."""

        if self._state is GateState.IDLE:
            return False
        if self._state is GateState.ONBOARDING:
            raise GateError("Onboarding cannot be cancelled; a guardian PIN is required.")
        command = self._command
        self._cancel_timer()
        self._reset()
        self._transition(GateState.IDLE)
        self._logger.log("challenge_cancelled", command=command.kind.value if command else None)
        return True

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------
    def _submit(self) -> Any:
        pin = "".join(self._digits)
        if self._state is GateState.ONBOARDING:
            patch = {**self._profile_fields, GUARDIAN_SECRET: pin}
            self._saving = True
            try:
                self._engine.commit_profile(patch)
            except Exception:
                self._digits.clear()
                raise
            finally:
                self._saving = False
            if self._engine.profile.guardian_secret != pin:
                self._digits.clear()
                raise SessionAbsentError("No session is attached; the guardian PIN was not saved.")
            return self._authorize("guardian_pin_set")
        secret = self._engine.profile.guardian_secret
        if is_valid_secret(secret) and hmac.compare_digest(pin, secret):
            return self._authorize("guardian_verified")
        self._reject()
        return None

    def _authorize(self, action: str) -> Any:
        command = self._command
        self._transition(GateState.AUTHORIZED)
        self._cancel_timer()
        self._reset()
        self._transition(GateState.IDLE)
        target = command.kind.value if command else "none"
        self._audit.record("guardian", action, target)
        self._logger.log(action, command=target)
        if command is None:
            return None
        return self._dispatcher.dispatch(command)

    def _reject(self) -> None:
        self._transition(GateState.ERROR)
        self._logger.log("pin_mismatch", level="warning")
        self._cancel_timer()
        generation = self._generation
        self._timer = self._scheduler.call_later(self._error_delay, lambda: self._clear_error(generation))

    def _clear_error(self, generation: int) -> None:
        if generation != self._generation or self._state is not GateState.ERROR:
            return
        self._timer = None
        self._digits.clear()
        self._transition(GateState.CHALLENGING)

    def _on_mirror_change(self, topic: str) -> None:
        if topic != PROFILE_TOPIC or self._state is not GateState.ONBOARDING or self._saving:
            return
        if not self._engine.profile.is_onboarded:
            return
        # A PIN saved from another device wins; the one being typed here is dropped.
        command = self._command
        self._cancel_timer()
        self._reset()
        self._transition(GateState.IDLE)
        self._logger.warning(
            "onboarding_abandoned",
            reason="secret_set_remotely",
            command=command.kind.value if command else None,
        )

    def _cancel_timer(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _reset(self) -> None:
        self._digits.clear()
        self._command = None
        self._profile_fields = {}
        self._mode = None

    def _transition(self, state: GateState) -> None:
        self._state = state
        self.history.append(state)


__all__ = [
    "AuthorizationGate",
    "ERROR_DISPLAY_SECONDS",
    "GateMode",
    "GateState",
    "HISTORY_LIMIT",
    "SessionProvider",
]
