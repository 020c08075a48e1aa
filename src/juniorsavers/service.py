"""High level service wiring sessions, sync and the guardian gate together."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from .admin import AuditLog
from .commands import Command, CommandDispatcher, CommandKind
from .context import SyncContext
from .curriculum import LessonModule
from .models import GRADE_LEVEL, GUARDIAN_CONTACT, Profile, View, is_valid_grade
from .security import AuthorizationGate, GateState, SessionProvider
from .sync import PROFILE_TOPIC, SyncEngine


class JuniorSavers:
    """One running copy of the app: a session, its mirrors and the PIN gate."""

    __slots__ = (
        "_context",
        "_sessions",
        "_engine",
        "_dispatcher",
        "_audit_log",
        "_gate",
        "_logger",
        "_view",
        "_grade",
        "_unsubscribe_session",
    )

    def __init__(
        self,
        context: Optional[SyncContext] = None,
        *,
        sessions: Optional[SessionProvider] = None,
        audit_log: Optional[AuditLog] = None,
    ) -> None:
        self._context = context or SyncContext.in_memory()
        self._sessions = sessions or SessionProvider()
        self._logger = self._context.logger.bind("app")
        self._engine = SyncEngine(self._context)
        self._dispatcher = CommandDispatcher()
        self._audit_log = audit_log or AuditLog()
        self._gate = AuthorizationGate(
            self._engine,
            self._dispatcher,
            self._context.scheduler,
            audit=self._audit_log,
            logger=self._context.logger,
        )
        self._view = View.LANDING
        self._grade: Optional[int] = None
        self._unsubscribe_session: Optional[Callable[[], None]] = None
        self._dispatcher.register(CommandKind.ENTER_DASHBOARD, self._enter_dashboard)
        self._dispatcher.register(CommandKind.OPEN_ADMIN, self._open_admin)
        self._dispatcher.register(CommandKind.PUBLISH_CURRICULUM, self._publish_authorized)
        self._engine.add_listener(self._on_mirror_change)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def engine(self) -> SyncEngine:
        return self._engine

    @property
    def gate(self) -> AuthorizationGate:
        return self._gate

    @property
    def sessions(self) -> SessionProvider:
        return self._sessions

    @property
    def audit_log(self) -> AuditLog:
        return self._audit_log

    @property
    def view(self) -> View:
        return self._view

    @property
    def profile(self) -> Profile:
        return self._engine.profile

    @property
    def grade(self) -> Optional[int]:
        return self.profile.grade_level or self._grade

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    def start(self) -> Optional[str]:
        """Listen for session changes and sign in anonymously."""

        if self._unsubscribe_session is None:
            self._unsubscribe_session = self._sessions.on_change(self._on_session_change)
        return self._sessions.sign_in_anonymously()

    def stop(self) -> None:
        if self._unsubscribe_session is not None:
            self._unsubscribe_session()
            self._unsubscribe_session = None
        self._engine.detach()

    def _on_session_change(self, session_id: Optional[str]) -> None:
        if session_id is None:
            self._engine.detach()
            return
        self._engine.attach(session_id)

    def _on_mirror_change(self, topic: str) -> None:
        if topic != PROFILE_TOPIC:
            return
        profile = self._engine.profile
        if profile.grade_level:
            self._grade = profile.grade_level
        if not profile.is_onboarded:
            return
        # While the gate is still onboarding the PIN being saved is our own.
        if self._view is View.LANDING or (
            self._view is View.ONBOARDING and self._gate.state is not GateState.ONBOARDING
        ):
            reason = "returning_profile" if self._view is View.LANDING else "secret_set_remotely"
            self._view = View.DASHBOARD
            self._logger.log("view_changed", view=self._view.value, reason=reason)

    # ------------------------------------------------------------------
    # Onboarding
    # ------------------------------------------------------------------
    def begin_onboarding(self, grade: int, contact: str) -> None:
        """Record grade and guardian contact, then ask for a new PIN."""

        if not is_valid_grade(grade):
            raise ValueError("Grade must be between 1 and 12.")
        self._gate.begin_onboarding(
            Command(CommandKind.ENTER_DASHBOARD),
            profile_fields={GUARDIAN_CONTACT: contact.strip(), GRADE_LEVEL: grade},
        )
        self._grade = grade
        self._view = View.ONBOARDING

    def _enter_dashboard(self, command: Command) -> View:
        self._view = View.DASHBOARD
        self._logger.log("view_changed", view=self._view.value, reason=command.kind.value)
        return self._view

    # ------------------------------------------------------------------
    # Learner actions
    # ------------------------------------------------------------------
    def complete_lesson(self, module_id: str) -> bool:
        module = self._engine.find_module(module_id)
        if module is None:
            raise KeyError(f"Unknown lesson '{module_id}'.")
        return self._engine.complete_lesson(module.id, module.reward_points)

    def dashboard(self) -> Dict[str, Any]:
        """Summary used by the learner home screen."""

        profile = self.profile
        grade = self.grade
        roadmap: List[Dict[str, Any]] = []
        for week, module in enumerate(self._engine.modules_for(grade) if grade else (), start=1):
            roadmap.append(
                {
                    "week": week,
                    "id": module.id,
                    "title": module.title,
                    "reward_points": module.reward_points,
                    "completed": profile.has_completed(module.id),
                }
            )
        return {
            "grade": grade,
            "balance": profile.balance,
            "wallet": profile.formatted_balance(),
            "xp": profile.xp,
            "completed": len(profile.completed_lessons),
            "roadmap": roadmap,
        }

    # ------------------------------------------------------------------
    # Guardian actions
    # ------------------------------------------------------------------
    def request_admin(self) -> None:
        self._gate.request(Command(CommandKind.OPEN_ADMIN))

    def request_publish(self) -> None:
        self._gate.request(Command(CommandKind.PUBLISH_CURRICULUM))

    def _open_admin(self, command: Command) -> View:
        self._view = View.ADMIN
        self._logger.log("view_changed", view=self._view.value, reason=command.kind.value)
        return self._view

    def _publish_authorized(self, command: Command) -> bool:
        published = self._engine.publish_curriculum()
        if published:
            self._audit_log.record("guardian", "curriculum_published", "curriculum")
        return published

    def _require_admin(self) -> None:
        if self._view is not View.ADMIN:
            raise PermissionError("Curriculum changes require guardian verification.")

    def edit_module(self, grade: int, week_index: int, **fields: Any) -> LessonModule:
        self._require_admin()
        return self._engine.edit_module(grade, week_index, **fields)

    def publish_curriculum(self) -> bool:
        self._require_admin()
        published = self._engine.publish_curriculum()
        if published:
            self._audit_log.record(
                "guardian",
                "curriculum_published",
                "curriculum",
                details={"session": self._engine.session_id},
            )
            self._view = View.DASHBOARD
        return published

    def close_admin(self) -> None:
        if self._view is View.ADMIN:
            self._view = View.DASHBOARD


__all__ = ["JuniorSavers"]
