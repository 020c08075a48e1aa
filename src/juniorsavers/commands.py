"""Tagged commands deferred behind the guardian PIN and their dispatcher."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping

from .exceptions import CommandNotRegisteredError


class CommandKind(str, Enum):
    """Privileged operations the authorization gate can release."""

    ENTER_DASHBOARD = "enter_dashboard"
    OPEN_ADMIN = "open_admin"
    PUBLISH_CURRICULUM = "publish_curriculum"


@dataclass(slots=True, frozen=True)
class Command:
    """A deferred action described as data instead of a captured closure."""

    kind: CommandKind
    payload: Mapping[str, Any] = field(default_factory=dict)


CommandHandler = Callable[[Command], Any]


class CommandDispatcher:
    """Resolve :class:`Command` values to registered handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[CommandKind, CommandHandler] = {}

    def register(self, kind: CommandKind, handler: CommandHandler) -> None:
        self._handlers[kind] = handler

    def unregister(self, kind: CommandKind) -> None:
        self._handlers.pop(kind, None)

    def is_registered(self, kind: CommandKind) -> bool:
        return kind in self._handlers

    def dispatch(self, command: Command) -> Any:
        handler = self._handlers.get(command.kind)
        if handler is None:
            raise CommandNotRegisteredError(f"No handler registered for '{command.kind.value}'.")
        return handler(command)


__all__ = ["Command", "CommandDispatcher", "CommandHandler", "CommandKind"]
