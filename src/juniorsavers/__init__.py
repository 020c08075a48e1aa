"""Junior Savers: guardian-gated financial literacy lessons with synced progress."""

from .admin import AuditLog
from .commands import Command, CommandDispatcher, CommandKind
from .context import SyncContext
from .curriculum import GRADE_THEMES, LessonModule, generate_default_curriculum, module_id
from .exceptions import (
    CommandNotRegisteredError,
    GateBusyError,
    GateError,
    GuardianSecretMissingError,
    JuniorSaversError,
    MalformedDocumentError,
    PermissionDeniedError,
    ProfileNotLoadedError,
    SecretAlreadySetError,
    SessionAbsentError,
    StoreError,
    StoreUnavailableError,
)
from .models import AuditEvent, Profile, View
from .ops import StructuredLogger
from .security import AuthorizationGate, GateMode, GateState, SessionProvider
from .service import JuniorSavers
from .store import DocumentSnapshot, DocumentStore, InMemoryDocumentStore
from .sync import SyncEngine
from .timers import AsyncioScheduler, ManualScheduler

__all__ = [
    "AsyncioScheduler",
    "AuditEvent",
    "AuditLog",
    "AuthorizationGate",
    "Command",
    "CommandDispatcher",
    "CommandKind",
    "CommandNotRegisteredError",
    "DocumentSnapshot",
    "DocumentStore",
    "GRADE_THEMES",
    "GateBusyError",
    "GateError",
    "GateMode",
    "GateState",
    "GuardianSecretMissingError",
    "InMemoryDocumentStore",
    "JuniorSavers",
    "JuniorSaversError",
    "LessonModule",
    "MalformedDocumentError",
    "ManualScheduler",
    "PermissionDeniedError",
    "ProfileNotLoadedError",
    "Profile",
    "SecretAlreadySetError",
    "SessionAbsentError",
    "SessionProvider",
    "StoreError",
    "StoreUnavailableError",
    "StructuredLogger",
    "SyncContext",
    "SyncEngine",
    "View",
    "generate_default_curriculum",
    "module_id",
]
