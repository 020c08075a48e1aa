"""Domain models used by the Junior Savers package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

PIN_LENGTH = 4
MIN_GRADE = 1
MAX_GRADE = 12

BALANCE = "balance"
XP = "xp"
COMPLETED_LESSONS = "completedLessons"
GUARDIAN_SECRET = "guardianSecret"
GUARDIAN_CONTACT = "guardianContact"
GRADE_LEVEL = "gradeLevel"

PROFILE_FIELDS: Tuple[str, ...] = (
    BALANCE,
    XP,
    COMPLETED_LESSONS,
    GUARDIAN_SECRET,
    GUARDIAN_CONTACT,
    GRADE_LEVEL,
)


def is_valid_secret(value: Any) -> bool:
    """Return ``True`` when ``value`` is exactly four ASCII digits."""

    return isinstance(value, str) and len(value) == PIN_LENGTH and all(ch in "0123456789" for ch in value)


def is_valid_grade(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and MIN_GRADE <= value <= MAX_GRADE


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def validate_profile_field(name: str, value: Any) -> Any:
    """Return a normalised copy of ``value`` for profile field ``name``.

    Raises :class:`ValueError` when the value cannot be stored under that
    field. Fields that are not part of the persisted profile shape are
    returned untouched so local-only keys survive merges.
    """

    if name in (BALANCE, XP):
        if not _is_count(value):
            raise ValueError(f"{name} must be a non-negative integer, got {value!r}.")
        return value
    if name == COMPLETED_LESSONS:
        if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple)):
            raise ValueError(f"{name} must be a list of lesson identifiers.")
        lessons: List[str] = []
        for lesson_id in value:
            if not isinstance(lesson_id, str) or not lesson_id:
                raise ValueError(f"{name} contains an invalid lesson identifier {lesson_id!r}.")
            if lesson_id not in lessons:
                lessons.append(lesson_id)
        return lessons
    if name == GUARDIAN_SECRET:
        if value == "":
            return value
        if not is_valid_secret(value):
            raise ValueError("guardianSecret must be exactly 4 digits.")
        return value
    if name == GUARDIAN_CONTACT:
        if not isinstance(value, str):
            raise ValueError("guardianContact must be text.")
        return value
    if name == GRADE_LEVEL:
        if value is None:
            return value
        if not is_valid_grade(value):
            raise ValueError(f"gradeLevel must be between {MIN_GRADE} and {MAX_GRADE}.")
        return value
    return value


def default_profile_document() -> Dict[str, Any]:
    """Return the document a session starts with before any snapshot arrives."""

    return {
        BALANCE: 0,
        XP: 0,
        COMPLETED_LESSONS: [],
        GUARDIAN_SECRET: "",
        GUARDIAN_CONTACT: "",
        GRADE_LEVEL: None,
    }


@dataclass(slots=True, frozen=True)
class Profile:
    """Read-only view over a session's profile mirror."""

    balance: int = 0
    xp: int = 0
    completed_lessons: Tuple[str, ...] = ()
    guardian_secret: str = ""
    guardian_contact: str = ""
    grade_level: Optional[int] = None

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "Profile":
        defaults = default_profile_document()
        values: Dict[str, Any] = {}
        for name in PROFILE_FIELDS:
            raw = document.get(name, defaults[name])
            try:
                values[name] = validate_profile_field(name, raw)
            except ValueError:
                values[name] = defaults[name]
        return cls(
            balance=values[BALANCE],
            xp=values[XP],
            completed_lessons=tuple(values[COMPLETED_LESSONS]),
            guardian_secret=values[GUARDIAN_SECRET],
            guardian_contact=values[GUARDIAN_CONTACT],
            grade_level=values[GRADE_LEVEL],
        )

    @property
    def is_onboarded(self) -> bool:
        """True once the guardian has set a valid PIN."""

        return is_valid_secret(self.guardian_secret)

    def has_completed(self, lesson_id: str) -> bool:
        return lesson_id in self.completed_lessons

    def formatted_balance(self) -> str:
        """Return the wallet balance in Kwacha notation (e.g. ``K25``)."""

        return f"K{self.balance:,}"


@dataclass(slots=True)
class AuditEvent:
    """Represents an auditable guardian action."""

    actor: str
    action: str
    target: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    details: Dict[str, Any] = field(default_factory=dict)


class View(str, Enum):
    """Top-level screens the presentation layer switches between."""

    LANDING = "landing"
    ONBOARDING = "onboarding"
    DASHBOARD = "dashboard"
    ADMIN = "admin"
