import pytest

from juniorsavers.commands import Command, CommandDispatcher, CommandKind
from juniorsavers.context import SyncContext
from juniorsavers.exceptions import (
    CommandNotRegisteredError,
    GateBusyError,
    GateError,
    GuardianSecretMissingError,
    ProfileNotLoadedError,
    SecretAlreadySetError,
    SessionAbsentError,
    StoreUnavailableError,
)
from juniorsavers.security import HISTORY_LIMIT, AuthorizationGate, GateMode, GateState, SessionProvider
from juniorsavers.sync import SyncEngine
from juniorsavers.timers import ManualScheduler

OPEN_ADMIN = Command(CommandKind.OPEN_ADMIN)
ENTER_DASHBOARD = Command(CommandKind.ENTER_DASHBOARD)


class Harness:
    def __init__(self, *, secret: str | None = None, attach: bool = True, auto_deliver: bool = True) -> None:
        self.context = SyncContext.in_memory(auto_deliver=auto_deliver)
        self.store = self.context.store
        self.scheduler: ManualScheduler = self.context.scheduler  # type: ignore[assignment]
        self.engine = SyncEngine(self.context)
        if attach:
            self.engine.attach("kid-1")
        if secret is not None:
            self.engine.commit_profile({"guardianSecret": secret})
        self.calls: list[Command] = []
        self.dispatcher = CommandDispatcher()
        for kind in CommandKind:
            self.dispatcher.register(kind, self.calls.append)
        self.gate = AuthorizationGate(self.engine, self.dispatcher, self.scheduler)

    def type(self, digits: str) -> None:
        for digit in digits:
            self.gate.press(digit)


def test_onboarding_sets_secret_and_fires_command_once() -> None:
    harness = Harness()
    gate = harness.gate

    gate.begin_onboarding(ENTER_DASHBOARD, profile_fields={"guardianContact": "dad@example.com", "gradeLevel": 6})
    assert gate.state is GateState.ONBOARDING
    assert gate.mode is GateMode.SETUP
    harness.type("4821")

    assert harness.engine.profile.guardian_secret == "4821"
    assert harness.engine.profile.grade_level == 6
    assert harness.store.get("profile/kid-1").data["guardianContact"] == "dad@example.com"
    assert harness.calls == [ENTER_DASHBOARD]
    assert gate.state is GateState.IDLE
    assert list(gate.history)[-2:] == [GateState.AUTHORIZED, GateState.IDLE]
    assert gate.entered == 0
    assert gate.audit.latest().action == "guardian_pin_set"


def test_onboarding_refused_when_secret_exists() -> None:
    harness = Harness(secret="1111")

    with pytest.raises(SecretAlreadySetError):
        harness.gate.begin_onboarding(ENTER_DASHBOARD)


def test_onboarding_rejects_protected_fields() -> None:
    harness = Harness()

    with pytest.raises(ValueError):
        harness.gate.begin_onboarding(ENTER_DASHBOARD, profile_fields={"balance": 1000})
    assert harness.gate.state is GateState.IDLE


def test_onboarding_cannot_be_cancelled() -> None:
    harness = Harness()
    harness.gate.begin_onboarding(ENTER_DASHBOARD)

    with pytest.raises(GateError):
        harness.gate.cancel()
    assert harness.gate.state is GateState.ONBOARDING


def test_onboarding_without_session_keeps_collecting() -> None:
    harness = Harness(attach=False)
    harness.gate.begin_onboarding(ENTER_DASHBOARD)

    with pytest.raises(SessionAbsentError):
        harness.type("1234")

    assert harness.gate.state is GateState.ONBOARDING
    assert harness.gate.entered == 0
    assert harness.calls == []


def test_onboarding_store_failure_returns_to_onboarding() -> None:
    harness = Harness()
    harness.gate.begin_onboarding(ENTER_DASHBOARD)
    harness.store.set_online(False)

    with pytest.raises(StoreUnavailableError):
        harness.type("1234")

    assert harness.gate.state is GateState.ONBOARDING
    assert harness.gate.entered == 0
    harness.store.set_online(True)
    harness.type("1234")
    assert harness.calls == [ENTER_DASHBOARD]


def test_onboarding_waits_for_first_profile_snapshot() -> None:
    harness = Harness(auto_deliver=False)
    harness.store.merge_write("profile/kid-1", {"guardianSecret": "1234"})

    with pytest.raises(ProfileNotLoadedError):
        harness.gate.begin_onboarding(ENTER_DASHBOARD)
    assert harness.gate.state is GateState.IDLE

    harness.store.deliver_pending()
    with pytest.raises(SecretAlreadySetError):
        harness.gate.begin_onboarding(ENTER_DASHBOARD)
    assert harness.store.get("profile/kid-1").data["guardianSecret"] == "1234"


def test_secret_set_elsewhere_during_onboarding_abandons_it() -> None:
    harness = Harness(auto_deliver=False)
    harness.store.deliver_pending()
    gate = harness.gate
    gate.begin_onboarding(ENTER_DASHBOARD)
    harness.type("56")

    harness.store.merge_write("profile/kid-1", {"guardianSecret": "1234"})
    harness.store.deliver_pending()

    assert gate.state is GateState.IDLE
    assert gate.entered == 0
    assert gate.press("7") is False
    assert harness.calls == []
    gate.request(OPEN_ADMIN)
    harness.type("1234")
    assert harness.calls == [OPEN_ADMIN]
    assert harness.store.get("profile/kid-1").data["guardianSecret"] == "1234"


def test_history_keeps_only_recent_transitions() -> None:
    harness = Harness(secret="2468")
    gate = harness.gate

    for _ in range(HISTORY_LIMIT):
        gate.request(OPEN_ADMIN)
        gate.cancel()

    assert len(gate.history) == HISTORY_LIMIT
    assert gate.history[-1] is GateState.IDLE


def test_request_requires_secret() -> None:
    harness = Harness()

    with pytest.raises(GuardianSecretMissingError):
        harness.gate.request(OPEN_ADMIN)


def test_request_while_busy_is_rejected() -> None:
    harness = Harness(secret="2468")
    harness.gate.request(OPEN_ADMIN)

    with pytest.raises(GateBusyError):
        harness.gate.request(OPEN_ADMIN)


def test_correct_pin_runs_deferred_command_once() -> None:
    harness = Harness(secret="2468")
    gate = harness.gate
    gate.request(OPEN_ADMIN)
    assert gate.mode is GateMode.VERIFY
    assert gate.pending_command == OPEN_ADMIN

    harness.type("2468")
    assert gate.press("2") is False

    assert harness.calls == [OPEN_ADMIN]
    assert gate.state is GateState.IDLE
    assert gate.pending_command is None
    assert GateState.AUTHORIZED in gate.history


def test_mismatch_shows_error_then_clears_after_delay() -> None:
    harness = Harness(secret="2468")
    gate = harness.gate
    gate.request(OPEN_ADMIN)

    harness.type("1357")
    assert gate.state is GateState.ERROR
    assert gate.entered == 4

    harness.scheduler.advance(0.5)
    assert gate.state is GateState.ERROR

    harness.scheduler.advance(0.5)
    assert gate.state is GateState.CHALLENGING
    assert gate.entered == 0
    assert harness.calls == []
    assert harness.engine.profile.guardian_secret == "2468"


def test_retry_after_mismatch_is_unlimited() -> None:
    harness = Harness(secret="2468")
    harness.gate.request(OPEN_ADMIN)

    for _ in range(10):
        harness.type("0000")
        harness.scheduler.advance(1.0)
    harness.type("2468")

    assert harness.calls == [OPEN_ADMIN]


def test_stale_error_clear_does_not_wipe_new_input() -> None:
    harness = Harness(secret="2468")
    gate = harness.gate
    gate.request(OPEN_ADMIN)
    harness.type("1111")

    harness.scheduler.advance(0.4)
    harness.type("24")
    harness.scheduler.advance(1.0)

    assert gate.state is GateState.CHALLENGING
    assert gate.entered == 2
    harness.type("68")
    assert harness.calls == [OPEN_ADMIN]


def test_cancel_discards_command() -> None:
    harness = Harness(secret="2468")
    gate = harness.gate
    gate.request(OPEN_ADMIN)
    harness.type("24")

    assert gate.cancel() is True

    assert gate.state is GateState.IDLE
    assert gate.pending_command is None
    assert harness.engine.profile.guardian_secret == "2468"
    harness.type("68")
    assert harness.calls == []


def test_cancel_during_error_stops_pending_clear() -> None:
    harness = Harness(secret="2468")
    gate = harness.gate
    gate.request(OPEN_ADMIN)
    harness.type("9999")

    gate.cancel()
    harness.scheduler.advance(2.0)

    assert gate.state is GateState.IDLE
    assert harness.scheduler.pending == 0


def test_cancel_when_idle_is_a_no_op() -> None:
    harness = Harness(secret="2468")

    assert harness.gate.cancel() is False


def test_backspace_removes_last_digit() -> None:
    harness = Harness(secret="2468")
    gate = harness.gate
    gate.request(OPEN_ADMIN)

    assert gate.backspace() is False
    harness.type("25")
    assert gate.backspace() is True
    harness.type("468")

    assert harness.calls == [OPEN_ADMIN]


def test_press_rejects_non_digits() -> None:
    harness = Harness(secret="2468")
    harness.gate.request(OPEN_ADMIN)

    with pytest.raises(ValueError):
        harness.gate.press("a")
    with pytest.raises(ValueError):
        harness.gate.press(12)
    assert harness.gate.press(2) is True


def test_press_while_idle_is_ignored() -> None:
    harness = Harness(secret="2468")

    assert harness.gate.press("1") is False


def test_unregistered_command_surfaces_after_reset() -> None:
    harness = Harness(secret="2468")
    harness.dispatcher.unregister(CommandKind.OPEN_ADMIN)
    harness.gate.request(OPEN_ADMIN)

    with pytest.raises(CommandNotRegisteredError):
        harness.type("2468")

    assert harness.gate.state is GateState.IDLE


def test_session_provider_issues_stable_id() -> None:
    provider = SessionProvider()
    seen = []
    unsubscribe = provider.on_change(seen.append)

    first = provider.sign_in_anonymously()
    second = provider.sign_in_anonymously()
    provider.sign_out()
    unsubscribe()
    provider.sign_in_anonymously()

    assert first == second
    assert seen == [None, first, None]


def test_session_provider_restores_known_id() -> None:
    provider = SessionProvider(session_id="known")
    seen = []

    provider.on_change(seen.append)

    assert seen == ["known"]
    assert provider.sign_in_anonymously() == "known"
