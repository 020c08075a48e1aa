"""Curriculum catalogue: lesson modules, default seed and document codec."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .exceptions import MalformedDocumentError
from .models import MAX_GRADE, MIN_GRADE

WEEKS_PER_GRADE = 40
PAYLOAD_KEY = "data"

GRADE_THEMES: Dict[int, str] = {
    1: "Meeting the Coins",
    2: "Needs vs Wants",
    3: "Working to Earn",
    4: "The Home Bank",
    5: "Simple Banking",
    6: "Mobile Money",
    7: "Mini-Entrepreneur",
    8: "Master Budget",
    9: "Inflation",
    10: "ZRA & Tax",
    11: "PACRA & Law",
    12: "Investing & LuSE",
}

EDITABLE_FIELDS = ("title", "description", "reward_points")

# Older documents used the short keys ``desc``/``reward``.
_LEGACY_ALIASES = {"description": "desc", "rewardPoints": "reward"}

Curriculum = Dict[int, List["LessonModule"]]


def module_id(grade: int, week: int) -> str:
    """Return the stable identifier for ``week`` (1-based) of ``grade``."""

    return f"g{grade}w{week}"


def base_reward(grade: int) -> int:
    return 10 + grade * 5


@dataclass(slots=True, frozen=True)
class LessonModule:
    """A single weekly lesson inside a grade's roadmap."""

    id: str
    title: str
    description: str
    reward_points: int

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Lesson modules require an identifier.")
        if isinstance(self.reward_points, bool) or not isinstance(self.reward_points, int):
            raise ValueError("reward_points must be an integer.")
        if self.reward_points < 0:
            raise ValueError("reward_points cannot be negative.")

    def with_changes(self, **fields: Any) -> "LessonModule":
        """Return a copy with ``title``/``description``/``reward_points`` changed."""

        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot edit lesson fields: {', '.join(sorted(unknown))}.")
        if "title" in fields and not isinstance(fields["title"], str):
            raise ValueError("title must be text.")
        if "description" in fields and not isinstance(fields["description"], str):
            raise ValueError("description must be text.")
        return replace(self, **fields)

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "rewardPoints": self.reward_points,
        }

    @classmethod
    def from_document(cls, payload: Any) -> "LessonModule":
        if not isinstance(payload, Mapping):
            raise MalformedDocumentError(f"Lesson module must be a mapping, got {type(payload).__name__}.")

        def pick(key: str) -> Any:
            if key in payload:
                return payload[key]
            alias = _LEGACY_ALIASES.get(key)
            if alias is not None and alias in payload:
                return payload[alias]
            raise MalformedDocumentError(f"Lesson module is missing '{key}'.")

        identifier = pick("id")
        title = pick("title")
        description = pick("description")
        reward = pick("rewardPoints")
        if not isinstance(identifier, str) or not isinstance(title, str) or not isinstance(description, str):
            raise MalformedDocumentError(f"Lesson module {identifier!r} has non-text fields.")
        try:
            return cls(id=identifier, title=title, description=description, reward_points=reward)
        except ValueError as exc:
            raise MalformedDocumentError(f"Lesson module {identifier!r}: {exc}") from exc


def generate_default_curriculum(weeks: int = WEEKS_PER_GRADE) -> Curriculum:
    """Build the deterministic seed catalogue (12 grades x ``weeks`` modules)."""

    catalogue: Curriculum = {}
    for grade, theme in GRADE_THEMES.items():
        catalogue[grade] = [
            LessonModule(
                id=module_id(grade, week),
                title=f"{theme} - Week {week}",
                description=f"Curriculum Module: {theme}. Complete the weekly action task to earn XP.",
                reward_points=base_reward(grade),
            )
            for week in range(1, weeks + 1)
        ]
    return catalogue


def curriculum_to_document(curriculum: Mapping[int, List[LessonModule]]) -> Dict[str, Any]:
    """Serialise the whole catalogue in the shape stored remotely."""

    return {
        PAYLOAD_KEY: {
            str(grade): [module.to_document() for module in modules]
            for grade, modules in sorted(curriculum.items())
        }
    }


def _parse_grade(key: Any) -> int:
    try:
        grade = int(key)
    except (TypeError, ValueError) as exc:
        raise MalformedDocumentError(f"Curriculum grade key {key!r} is not a number.") from exc
    if not MIN_GRADE <= grade <= MAX_GRADE:
        raise MalformedDocumentError(f"Curriculum grade {grade} is out of range.")
    return grade


def curriculum_from_document(document: Any) -> Curriculum:
    """Parse a remote curriculum document.

    Raises :class:`MalformedDocumentError` when the document carries no
    payload or any grade/module has the wrong shape.
    """

    if not isinstance(document, Mapping):
        raise MalformedDocumentError("Curriculum document must be a mapping.")
    payload = document.get(PAYLOAD_KEY)
    if not payload:
        raise MalformedDocumentError("Curriculum document has no payload.")
    if not isinstance(payload, Mapping):
        raise MalformedDocumentError("Curriculum payload must map grades to module lists.")
    catalogue: Curriculum = {}
    for key, modules in payload.items():
        grade = _parse_grade(key)
        if isinstance(modules, (str, bytes)) or not isinstance(modules, (list, tuple)):
            raise MalformedDocumentError(f"Grade {grade} must hold a list of modules.")
        catalogue[grade] = [LessonModule.from_document(item) for item in modules]
    return catalogue


def find_module(curriculum: Mapping[int, List[LessonModule]], lesson_id: str) -> Optional[Tuple[int, int, LessonModule]]:
    """Return ``(grade, week_index, module)`` for ``lesson_id`` if present."""

    for grade, modules in curriculum.items():
        for index, module in enumerate(modules):
            if module.id == lesson_id:
                return grade, index, module
    return None


__all__ = [
    "Curriculum",
    "EDITABLE_FIELDS",
    "GRADE_THEMES",
    "LessonModule",
    "PAYLOAD_KEY",
    "WEEKS_PER_GRADE",
    "base_reward",
    "curriculum_from_document",
    "curriculum_to_document",
    "find_module",
    "generate_default_curriculum",
    "module_id",
]
