"""Document store contract and the in-memory implementation.

A document store keeps JSON-like documents under slash separated paths and
offers three primitives: a point read, a merge-write (shallow, field level)
and a whole-document replace. Subscribers registered for a path receive the
current snapshot immediately and a fresh snapshot after every write to it.
"""

from __future__ import annotations

import copy
import re
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple

from .exceptions import PermissionDeniedError, StoreError, StoreUnavailableError
from .ops import StructuredLogger

PROFILE_COLLECTION = "profile"
CURRICULUM_PATH = "curriculum/global"


@dataclass(slots=True, frozen=True)
class DocumentSnapshot:
    """Point-in-time read of a document, including an existence flag."""

    path: str
    exists: bool
    data: Any = None


SnapshotListener = Callable[[DocumentSnapshot], None]
Unsubscribe = Callable[[], None]


def sanitize_app_id(raw: str) -> str:
    """Replace anything outside ``[A-Za-z0-9]`` with underscores."""

    return re.sub(r"[^a-zA-Z0-9]", "_", raw)


def _prefix(namespace: Optional[str]) -> str:
    return f"artifacts/{sanitize_app_id(namespace)}/" if namespace else ""


def profile_path(session_id: str, *, namespace: Optional[str] = None) -> str:
    if not session_id:
        raise ValueError("A session id is required to address a profile.")
    return f"{_prefix(namespace)}{PROFILE_COLLECTION}/{session_id}"


def curriculum_path(*, namespace: Optional[str] = None) -> str:
    return f"{_prefix(namespace)}{CURRICULUM_PATH}"


class DocumentStore:
    """Base class handling subscriptions; subclasses implement storage."""

    def __init__(self, *, logger: Optional[StructuredLogger] = None) -> None:
        self._subscribers: Dict[str, List[SnapshotListener]] = {}
        self._logger = (logger or StructuredLogger()).bind("store")

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------
    def get(self, path: str) -> DocumentSnapshot:
        raise NotImplementedError

    def merge_write(self, path: str, fields: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def replace_write(self, path: str, document: Mapping[str, Any]) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def subscribe(self, path: str, listener: SnapshotListener) -> Unsubscribe:
        """Register ``listener`` for ``path`` and deliver the current snapshot."""

        snapshot = self.get(path)
        listeners = self._subscribers.setdefault(path, [])
        listeners.append(listener)

        def unsubscribe() -> None:
            try:
                listeners.remove(listener)
            except ValueError:
                pass

        self._deliver(listener, snapshot)
        return unsubscribe

    def subscriber_count(self, path: str) -> int:
        return len(self._subscribers.get(path, ()))

    def _notify(self, path: str) -> None:
        listeners = list(self._subscribers.get(path, ()))
        if not listeners:
            return
        try:
            snapshot = self.get(path)
        except StoreError as exc:
            # The write itself is committed; subscribers catch up on the next change.
            self._logger.warning("notify_failed", path=path, error=type(exc).__name__, message=str(exc))
            return
        for listener in listeners:
            self._deliver(listener, snapshot)

    def _deliver(self, listener: SnapshotListener, snapshot: DocumentSnapshot) -> None:
        listener(snapshot)


class InMemoryDocumentStore(DocumentStore):
    """Process-local document store used for tests and offline play.

    With ``auto_deliver=False`` snapshots are queued until
    :meth:`deliver_pending` is called, mimicking a remote store whose echo
    arrives some time after the write resolved.
    """

    def __init__(self, *, auto_deliver: bool = True, logger: Optional[StructuredLogger] = None) -> None:
        super().__init__(logger=logger)
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._auto_deliver = auto_deliver
        self._pending: Deque[Tuple[SnapshotListener, DocumentSnapshot]] = deque()
        self._online = True
        self._denied: set[str] = set()
        self.write_log: list[Tuple[str, str, Dict[str, Any]]] = []

    # Failure simulation ----------------------------------------------------
    def set_online(self, online: bool) -> None:
        self._online = online

    def deny(self, path: str) -> None:
        self._denied.add(path)

    def allow(self, path: str) -> None:
        self._denied.discard(path)

    def _check(self, path: str) -> None:
        if not self._online:
            raise StoreUnavailableError(f"Document store is unavailable for '{path}'.", path=path)
        if path in self._denied:
            raise PermissionDeniedError(f"Permission denied for '{path}'.", path=path)

    # Primitives ----------------------------------------------------------------
    def get(self, path: str) -> DocumentSnapshot:
        self._check(path)
        if path not in self._documents:
            return DocumentSnapshot(path=path, exists=False)
        return DocumentSnapshot(path=path, exists=True, data=copy.deepcopy(self._documents[path]))

    def merge_write(self, path: str, fields: Mapping[str, Any]) -> None:
        self._check(path)
        document = self._documents.setdefault(path, {})
        document.update(copy.deepcopy(dict(fields)))
        self.write_log.append(("merge", path, copy.deepcopy(dict(fields))))
        self._notify(path)

    def replace_write(self, path: str, document: Mapping[str, Any]) -> None:
        self._check(path)
        self._documents[path] = copy.deepcopy(dict(document))
        self.write_log.append(("replace", path, copy.deepcopy(dict(document))))
        self._notify(path)

    def put_raw(self, path: str, data: Any) -> None:
        """Store ``data`` verbatim, bypassing shape checks, and notify subscribers."""

        self._documents[path] = data
        self._notify(path)

    def delete(self, path: str) -> None:
        self._check(path)
        self._documents.pop(path, None)
        self._notify(path)

    # Delivery ------------------------------------------------------------------
    def _deliver(self, listener: SnapshotListener, snapshot: DocumentSnapshot) -> None:
        if self._auto_deliver:
            listener(snapshot)
        else:
            self._pending.append((listener, snapshot))

    def deliver_pending(self) -> int:
        """Flush queued snapshots in arrival order and return how many fired."""

        delivered = 0
        while self._pending:
            listener, snapshot = self._pending.popleft()
            listener(snapshot)
            delivered += 1
        return delivered

    @property
    def pending_deliveries(self) -> int:
        return len(self._pending)


__all__ = [
    "CURRICULUM_PATH",
    "DocumentSnapshot",
    "DocumentStore",
    "InMemoryDocumentStore",
    "SnapshotListener",
    "Unsubscribe",
    "curriculum_path",
    "profile_path",
    "sanitize_app_id",
]
