"""Custom exception hierarchy for the Junior Savers package."""

from __future__ import annotations


class JuniorSaversError(Exception):
    """Base class for all Junior Savers specific errors."""


class SessionAbsentError(JuniorSaversError):
    """Raised when an operation strictly requires an attached session."""


class StoreError(JuniorSaversError):
    """Base class for failures reported by a document store."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class StoreUnavailableError(StoreError):
    """Raised when the document store cannot be reached or a read/write fails."""


class PermissionDeniedError(StoreError):
    """Raised when the document store refuses access to a path."""


class MalformedDocumentError(JuniorSaversError):
    """Raised when a remote document does not have the expected shape."""


class GateError(JuniorSaversError):
    """Raised when the authorization gate is driven through an invalid transition."""


class GateBusyError(GateError):
    """Raised when a challenge is requested while another one is running."""


class GuardianSecretMissingError(GateError):
    """Raised when a privileged action is requested before a guardian PIN exists."""


class SecretAlreadySetError(GateError):
    """Raised when onboarding is attempted for a profile that already has a PIN."""


class CommandNotRegisteredError(JuniorSaversError):
    """Raised when a deferred command has no registered handler."""


class ProfileNotLoadedError(JuniorSaversError):
    """Raised when the attached session's profile has not been read from the store yet."""
