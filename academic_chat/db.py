"""
Document store abstraction for Postgres and an in-memory test implementation.

Documents are flat JSON objects grouped by collection. Returned documents
carry the system fields `$id`, `$collectionId`, `$createdAt` and
`$updatedAt` next to their data fields.
"""

from __future__ import annotations

import copy
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional, Protocol, Sequence

from sqlalchemy import JSON, Column, Float, Integer, String, UniqueConstraint, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from academic_chat.errors import DocumentNotFoundError, StoreError
from academic_chat.query import Query, apply_queries
from academic_chat.realtime import RealtimeHub, document_event

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _to_iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, timezone.utc).isoformat(
        timespec="microseconds"
    )


def _strip_system_fields(data: dict) -> dict:
    return {key: value for key, value in data.items() if not key.startswith("$")}


@dataclass
class DocumentList:
    documents: list[dict] = field(default_factory=list)
    total: int = 0


class DbClient(Protocol):
    """Interface for document access."""

    database_id: str
    publisher: Optional[RealtimeHub]

    def create_document(
        self, collection: str, data: dict, document_id: str | None = None
    ) -> dict:
        ...

    def get_document(self, collection: str, document_id: str) -> dict:
        ...

    def list_documents(
        self, collection: str, queries: Sequence[Query] = ()
    ) -> DocumentList:
        ...

    def update_document(self, collection: str, document_id: str, data: dict) -> dict:
        ...

    def delete_document(self, collection: str, document_id: str) -> None:
        ...


@dataclass
class DocumentRecord:
    document_id: str
    collection: str
    data: dict
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        document = copy.deepcopy(self.data)
        document.update(
            {
                "$id": self.document_id,
                "$collectionId": self.collection,
                "$createdAt": _to_iso(self.created_at),
                "$updatedAt": _to_iso(self.updated_at),
            }
        )
        return document


def _publish(client: "DbClient", collection: str, action: str, document: dict) -> None:
    """Notify subscribers of a committed change. Publish failures are logged only."""
    if client.publisher is None:
        return
    try:
        client.publisher.publish(
            document_event(client.database_id, collection, action, document)
        )
    except Exception:
        logger.exception(
            "Failed to publish %s event for %s/%s", action, collection, document.get("$id")
        )


class InMemoryDbClient:
    """Simple in-memory document store for development and tests."""

    def __init__(
        self,
        database_id: str = "academic_chat_db",
        publisher: Optional[RealtimeHub] = None,
    ):
        self.database_id = database_id
        self.publisher = publisher
        self.collections: Dict[str, Dict[str, DocumentRecord]] = {}

    def _get_record(self, collection: str, document_id: str) -> DocumentRecord:
        record = self.collections.get(collection, {}).get(document_id)
        if record is None:
            raise DocumentNotFoundError(collection, document_id)
        return record

    def create_document(
        self, collection: str, data: dict, document_id: str | None = None
    ) -> dict:
        document_id = document_id or uuid.uuid4().hex
        records = self.collections.setdefault(collection, {})
        if document_id in records:
            raise StoreError(f"Document {document_id} already exists in {collection}")
        record = DocumentRecord(
            document_id=document_id,
            collection=collection,
            data=copy.deepcopy(_strip_system_fields(data)),
        )
        records[document_id] = record
        document = record.as_dict()
        _publish(self, collection, "create", document)
        return document

    def get_document(self, collection: str, document_id: str) -> dict:
        return self._get_record(collection, document_id).as_dict()

    def list_documents(
        self, collection: str, queries: Sequence[Query] = ()
    ) -> DocumentList:
        documents = [
            record.as_dict() for record in self.collections.get(collection, {}).values()
        ]
        results = apply_queries(documents, queries)
        return DocumentList(documents=results, total=len(results))

    def update_document(self, collection: str, document_id: str, data: dict) -> dict:
        record = self._get_record(collection, document_id)
        record.data.update(copy.deepcopy(_strip_system_fields(data)))
        record.updated_at = time.time()
        document = record.as_dict()
        _publish(self, collection, "update", document)
        return document

    def delete_document(self, collection: str, document_id: str) -> None:
        record = self._get_record(collection, document_id)
        del self.collections[collection][document_id]
        _publish(self, collection, "delete", record.as_dict())

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.collections.clear()


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).

    Collection scoping and creation ordering happen in SQL; query predicates
    are evaluated with the shared `apply_queries` evaluator.
    """

    def __init__(
        self,
        database_url: str,
        database_id: str = "academic_chat_db",
        publisher: Optional[RealtimeHub] = None,
    ):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.database_id = database_id
        self.publisher = publisher
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    @staticmethod
    def _find_row(
        session: Session, collection: str, document_id: str
    ) -> Optional["DocumentRow"]:
        stmt = select(DocumentRow).where(
            DocumentRow.collection == collection,
            DocumentRow.document_id == document_id,
        )
        return session.execute(stmt).scalar_one_or_none()

    @staticmethod
    def _to_record(row: "DocumentRow") -> DocumentRecord:
        return DocumentRecord(
            document_id=row.document_id,
            collection=row.collection,
            data=dict(row.data or {}),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def create_document(
        self, collection: str, data: dict, document_id: str | None = None
    ) -> dict:
        now = time.time()
        document_id = document_id or uuid.uuid4().hex
        with self._session() as session:
            if self._find_row(session, collection, document_id) is not None:
                raise StoreError(
                    f"Document {document_id} already exists in {collection}"
                )
            row = DocumentRow(
                collection=collection,
                document_id=document_id,
                data=_strip_system_fields(data),
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            document = self._to_record(row).as_dict()
        _publish(self, collection, "create", document)
        return document

    def get_document(self, collection: str, document_id: str) -> dict:
        with self._session() as session:
            row = self._find_row(session, collection, document_id)
            if row is None:
                raise DocumentNotFoundError(collection, document_id)
            return self._to_record(row).as_dict()

    def list_documents(
        self, collection: str, queries: Sequence[Query] = ()
    ) -> DocumentList:
        with self._session() as session:
            stmt = (
                select(DocumentRow)
                .where(DocumentRow.collection == collection)
                .order_by(DocumentRow.seq.asc())
            )
            rows = session.execute(stmt).scalars().all()
            documents = [self._to_record(row).as_dict() for row in rows]
        results = apply_queries(documents, queries)
        return DocumentList(documents=results, total=len(results))

    def update_document(self, collection: str, document_id: str, data: dict) -> dict:
        with self._session() as session:
            row = self._find_row(session, collection, document_id)
            if row is None:
                raise DocumentNotFoundError(collection, document_id)
            merged = dict(row.data or {})
            merged.update(_strip_system_fields(data))
            # Reassign so SQLAlchemy sees the JSON column change.
            row.data = merged
            row.updated_at = time.time()
            session.commit()
            session.refresh(row)
            document = self._to_record(row).as_dict()
        _publish(self, collection, "update", document)
        return document

    def delete_document(self, collection: str, document_id: str) -> None:
        with self._session() as session:
            row = self._find_row(session, collection, document_id)
            if row is None:
                raise DocumentNotFoundError(collection, document_id)
            document = self._to_record(row).as_dict()
            session.delete(row)
            session.commit()
        _publish(self, collection, "delete", document)


Base = declarative_base()


class DocumentRow(Base):
    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("collection", "document_id", name="uq_documents_collection_id"),
    )

    seq = Column(Integer, primary_key=True, autoincrement=True)
    collection = Column(String, nullable=False, index=True)
    document_id = Column(String, nullable=False)
    data = Column(JSON, nullable=False)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)
