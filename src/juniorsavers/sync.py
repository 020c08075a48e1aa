"""Reconcile the local Profile and Curriculum mirrors with the document store."""

from __future__ import annotations

from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple

from .context import SyncContext
from .curriculum import (
    Curriculum,
    LessonModule,
    curriculum_from_document,
    curriculum_to_document,
    find_module,
    generate_default_curriculum,
)
from .exceptions import JuniorSaversError, MalformedDocumentError, ProfileNotLoadedError, StoreError
from .models import (
    BALANCE,
    COMPLETED_LESSONS,
    GUARDIAN_SECRET,
    PROFILE_FIELDS,
    XP,
    Profile,
    default_profile_document,
    is_valid_secret,
    validate_profile_field,
)
from .store import DocumentSnapshot, SnapshotListener, Unsubscribe, curriculum_path, profile_path

ChangeListener = Callable[[str], None]

PROFILE_TOPIC = "profile"
CURRICULUM_TOPIC = "curriculum"


class SyncEngine:
    """Own the Profile and Curriculum mirrors for one app instance.

    Local changes are written to the store first and folded into the mirror
    once the write resolved; remote snapshots are merged (profile) or
    swapped in wholesale (curriculum) whenever they arrive. Snapshot
    handlers may run any number of times and in any order.
    """

    __slots__ = (
        "_context",
        "_store",
        "_logger",
        "_session_id",
        "_unsubscribers",
        "_generation",
        "_profile",
        "_profile_loaded",
        "_curriculum",
        "_dirty_grades",
        "_listeners",
        "last_error",
    )

    def __init__(self, context: SyncContext) -> None:
        self._context = context
        self._store = context.store
        self._logger = context.logger.bind("sync")
        self._session_id: Optional[str] = None
        self._unsubscribers: List[Unsubscribe] = []
        self._generation = 0
        self._profile: Dict[str, Any] = default_profile_document()
        self._profile_loaded = False
        self._curriculum: Curriculum = {}
        self._dirty_grades: set[int] = set()
        self._listeners: List[ChangeListener] = []
        self.last_error: Optional[JuniorSaversError] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def is_attached(self) -> bool:
        return self._session_id is not None

    @property
    def profile_loaded(self) -> bool:
        """Whether a profile snapshot arrived since the current session attached."""

        return self._profile_loaded

    @property
    def profile(self) -> Profile:
        return Profile.from_document(self._profile)

    @property
    def profile_document(self) -> Dict[str, Any]:
        """Copy of the raw profile mirror, local-only fields included."""

        return {key: list(value) if isinstance(value, list) else value for key, value in self._profile.items()}

    @property
    def curriculum(self) -> Dict[int, Tuple[LessonModule, ...]]:
        return {grade: tuple(modules) for grade, modules in sorted(self._curriculum.items())}

    @property
    def unpublished_grades(self) -> FrozenSet[int]:
        return frozenset(self._dirty_grades)

    def modules_for(self, grade: int) -> Tuple[LessonModule, ...]:
        return tuple(self._curriculum.get(grade, ()))

    def find_module(self, lesson_id: str) -> Optional[LessonModule]:
        found = find_module(self._curriculum, lesson_id)
        return found[2] if found else None

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    # ------------------------------------------------------------------
    # Subscription lifecycle
    # ------------------------------------------------------------------
    def attach(self, session_id: Optional[str]) -> bool:
        """Subscribe to the session's profile and the shared curriculum."""

        if not session_id:
            self._logger.log("attach_skipped", reason="session_absent")
            return False
        self._teardown()
        if session_id != self._session_id:
            self._profile = default_profile_document()
        self._generation += 1
        self._profile_loaded = False
        generation = self._generation
        self._session_id = session_id
        namespace = self._context.namespace
        try:
            self._unsubscribers.append(
                self._store.subscribe(
                    profile_path(session_id, namespace=namespace),
                    self._guarded(generation, self.on_profile_snapshot),
                )
            )
            self._unsubscribers.append(
                self._store.subscribe(
                    curriculum_path(namespace=namespace),
                    self._guarded(generation, self.on_curriculum_snapshot),
                )
            )
        except StoreError as exc:
            self._teardown()
            self._session_id = None
            self._record(exc, "attach_failed")
            raise
        self._logger.log("attached", session=session_id)
        return True

    def detach(self) -> None:
        """Drop the subscriptions and forget the session; mirrors are kept."""

        self._teardown()
        self._generation += 1
        self._profile_loaded = False
        if self._session_id is not None:
            self._logger.log("detached", session=self._session_id)
        self._session_id = None

    def _teardown(self) -> None:
        while self._unsubscribers:
            unsubscribe = self._unsubscribers.pop()
            unsubscribe()

    def _guarded(self, generation: int, handler: SnapshotListener) -> SnapshotListener:
        # Snapshots queued for a torn-down subscription must not reach the mirror.
        def deliver(snapshot: DocumentSnapshot) -> None:
            if generation != self._generation:
                self._logger.log("stale_snapshot_ignored", path=snapshot.path, level="debug")
                return
            handler(snapshot)

        return deliver

    # ------------------------------------------------------------------
    # Snapshot handlers
    # ------------------------------------------------------------------
    def on_profile_snapshot(self, snapshot: DocumentSnapshot) -> None:
        self._profile_loaded = True
        if not snapshot.exists:
            return
        data = snapshot.data
        if not isinstance(data, Mapping):
            self._record(
                MalformedDocumentError(f"Profile document at '{snapshot.path}' is not a mapping."),
                "profile_malformed",
            )
            return
        incoming: Dict[str, Any] = {}
        for key, value in data.items():
            try:
                incoming[key] = validate_profile_field(key, value)
            except ValueError as exc:
                self._logger.warning("profile_field_dropped", field=key, reason=str(exc))
        merged = {**self._profile, **incoming}
        if merged != self._profile:
            self._profile = merged
            self._emit(PROFILE_TOPIC)

    def on_curriculum_snapshot(self, snapshot: DocumentSnapshot) -> None:
        if not snapshot.exists:
            if not self._curriculum:
                self._seed("missing")
            return
        try:
            catalogue = curriculum_from_document(snapshot.data)
        except MalformedDocumentError as exc:
            self._record(exc, "curriculum_malformed")
            if not self._curriculum:
                self._seed("malformed")
            return
        if self._dirty_grades:
            self._logger.warning("unpublished_edits_replaced", grades=sorted(self._dirty_grades))
        self._curriculum = catalogue
        self._dirty_grades.clear()
        self._emit(CURRICULUM_TOPIC)

    def _seed(self, reason: str) -> None:
        self._curriculum = generate_default_curriculum()
        self._logger.log("curriculum_seeded", reason=reason, grades=len(self._curriculum))
        self._emit(CURRICULUM_TOPIC)

    # ------------------------------------------------------------------
    # Profile writes
    # ------------------------------------------------------------------
    def commit_profile(self, patch: Mapping[str, Any]) -> bool:
        """Merge-write the changed profile fields.

        Returns ``False`` without touching the store when no session is
        attached or nothing differs from the mirror. Store failures are
        logged once and re-raised; the mirror is left as it was. Setting the
        guardian PIN raises :class:`ProfileNotLoadedError` until the first
        profile snapshot of the session arrived.
        """

        if not self._session_id:
            self._logger.log("commit_skipped", reason="session_absent", fields=sorted(patch))
            return False
        if GUARDIAN_SECRET in patch and not self._profile_loaded:
            # The remote profile may already hold a PIN that this write would replace.
            raise ProfileNotLoadedError("The profile has not been read yet; the guardian PIN cannot be set.")
        changes: Dict[str, Any] = {}
        for key, raw in patch.items():
            if key not in PROFILE_FIELDS:
                raise ValueError(f"'{key}' is not a profile field.")
            value = validate_profile_field(key, raw)
            current = self._profile.get(key)
            if key in (BALANCE, XP) and value < (current or 0):
                raise ValueError(f"{key} cannot decrease ({current} -> {value}).")
            if key == GUARDIAN_SECRET and is_valid_secret(current) and value != current:
                raise ValueError("guardianSecret is already set.")
            if current != value:
                changes[key] = value
        if not changes:
            return False
        path = profile_path(self._session_id, namespace=self._context.namespace)
        try:
            self._store.merge_write(path, changes)
        except StoreError as exc:
            self._record(exc, "profile_write_failed")
            raise
        self._logger.log("profile_committed", fields=sorted(changes))
        merged = {**self._profile, **changes}
        if merged != self._profile:
            self._profile = merged
            self._emit(PROFILE_TOPIC)
        return True

    def complete_lesson(self, module_id: str, reward_points: int) -> bool:
        """Credit ``reward_points`` to balance and xp the first time a lesson completes."""

        if isinstance(reward_points, bool) or not isinstance(reward_points, int) or reward_points < 0:
            raise ValueError("reward_points must be a non-negative integer.")
        completed: List[str] = list(self._profile.get(COMPLETED_LESSONS) or [])
        if module_id in completed:
            self._logger.log("lesson_already_completed", lesson=module_id)
            return False
        return self.commit_profile(
            {
                BALANCE: self._profile.get(BALANCE, 0) + reward_points,
                XP: self._profile.get(XP, 0) + reward_points,
                COMPLETED_LESSONS: [*completed, module_id],
            }
        )

    def set_transient(self, key: str, value: Any) -> None:
        """Store a local-only field that is never written to the store."""

        if key in PROFILE_FIELDS:
            raise ValueError(f"'{key}' is persisted; use commit_profile instead.")
        self._profile[key] = value
        self._emit(PROFILE_TOPIC)

    # ------------------------------------------------------------------
    # Curriculum editing
    # ------------------------------------------------------------------
    def edit_module(self, grade: int, week_index: int, **fields: Any) -> LessonModule:
        """Change a module in the local mirror only; see :meth:`publish_curriculum`."""

        modules = self._curriculum.get(grade)
        if modules is None:
            raise KeyError(f"Grade {grade} is not in the curriculum.")
        if not 0 <= week_index < len(modules):
            raise IndexError(f"Grade {grade} has no week index {week_index}.")
        updated = modules[week_index].with_changes(**fields)
        modules[week_index] = updated
        self._dirty_grades.add(grade)
        self._logger.log("module_edited", grade=grade, module=updated.id, fields=sorted(fields))
        self._emit(CURRICULUM_TOPIC)
        return updated

    def publish_curriculum(self) -> bool:
        """Replace the remote curriculum with every grade held locally."""

        if not self._session_id:
            self._logger.log("publish_skipped", reason="session_absent")
            return False
        document = curriculum_to_document(self._curriculum)
        dirty = set(self._dirty_grades)
        self._dirty_grades.clear()
        try:
            self._store.replace_write(curriculum_path(namespace=self._context.namespace), document)
        except StoreError as exc:
            self._dirty_grades |= dirty
            self._record(exc, "curriculum_publish_failed")
            raise
        self._logger.log("curriculum_published", grades=len(self._curriculum), edited=sorted(dirty))
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _record(self, error: JuniorSaversError, event: str) -> None:
        self.last_error = error
        self._logger.error(event, error=type(error).__name__, message=str(error))

    def _emit(self, topic: str) -> None:
        for listener in list(self._listeners):
            listener(topic)


__all__ = ["CURRICULUM_TOPIC", "PROFILE_TOPIC", "SyncEngine"]
