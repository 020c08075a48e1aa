"""SQLModel-backed document store for the Junior Savers web frontend."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, Session, SQLModel, create_engine

from ..exceptions import StoreUnavailableError
from ..ops import StructuredLogger
from ..store import DocumentSnapshot, DocumentStore
from .config import DATABASE_URL


# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
class StoredDocument(SQLModel, table=True):
    __tablename__ = "documents"  # type: ignore[assignment]

    path: str = Field(primary_key=True)
    body: str
    updated_at: datetime = Field(default_factory=datetime.utcnow)


def create_store_engine(url: str = DATABASE_URL) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, connect_args=connect_args)


def _decode(body: str) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
class SQLDocumentStore(DocumentStore):
    """Keep each document as one JSON row keyed by its path.

    Subscribers are process local: they are notified after this store
    commits a write, which is how every instance of the web app shares
    curriculum changes.
    """

    def __init__(
        self,
        engine: Optional[Engine] = None,
        *,
        create_tables: bool = True,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        super().__init__(logger=logger)
        self.engine = engine or create_store_engine()
        if create_tables:
            self.create_tables()

    def create_tables(self) -> None:
        try:
            SQLModel.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Could not prepare document tables: {exc}") from exc

    def has_tables(self) -> bool:
        return inspect(self.engine).has_table(StoredDocument.__tablename__)

    def get(self, path: str) -> DocumentSnapshot:
        try:
            with Session(self.engine) as session:
                row = session.get(StoredDocument, path)
                body = row.body if row is not None else None
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Reading '{path}' failed: {exc}", path=path) from exc
        if body is None:
            return DocumentSnapshot(path=path, exists=False)
        return DocumentSnapshot(path=path, exists=True, data=_decode(body))

    def merge_write(self, path: str, fields: Mapping[str, Any]) -> None:
        try:
            with Session(self.engine) as session:
                row = session.get(StoredDocument, path)
                current: Dict[str, Any] = {}
                if row is not None:
                    existing = _decode(row.body)
                    if isinstance(existing, dict):
                        current = existing
                current.update(fields)
                self._save(session, row, path, current)
                session.commit()
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Merging into '{path}' failed: {exc}", path=path) from exc
        self._notify(path)

    def replace_write(self, path: str, document: Mapping[str, Any]) -> None:
        try:
            with Session(self.engine) as session:
                row = session.get(StoredDocument, path)
                self._save(session, row, path, dict(document))
                session.commit()
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Replacing '{path}' failed: {exc}", path=path) from exc
        self._notify(path)

    def _save(self, session: Session, row: Optional[StoredDocument], path: str, document: Dict[str, Any]) -> None:
        body = json.dumps(document, sort_keys=True)
        if row is None:
            row = StoredDocument(path=path, body=body)
        else:
            row.body = body
            row.updated_at = datetime.utcnow()
        session.add(row)


__all__ = ["SQLDocumentStore", "StoredDocument", "create_store_engine"]
