"""Explicit dependency bundle passed to the sync engine and gate."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .ops import StructuredLogger
from .store import DocumentStore, InMemoryDocumentStore
from .timers import ManualScheduler, Scheduler


@dataclass(slots=True)
class SyncContext:
    """Collaborators shared by one running app instance."""

    store: DocumentStore
    scheduler: Scheduler
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    namespace: Optional[str] = None

    @classmethod
    def in_memory(cls, *, auto_deliver: bool = True, namespace: Optional[str] = None) -> "SyncContext":
        """Context backed by an in-memory store and a manual clock."""

        return cls(
            store=InMemoryDocumentStore(auto_deliver=auto_deliver),
            scheduler=ManualScheduler(),
            namespace=namespace,
        )


__all__ = ["SyncContext"]
