"""
Persistence layer for medication entries.

Three interchangeable clients share the `DbClient` interface: MongoDB
(the canonical document store), any SQLAlchemy URL (Postgres in
production, SQLite in tests) and an in-memory store for development.
"""

from __future__ import annotations

import contextlib
import itertools
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING, MongoClient
from pymongo.errors import PyMongoError
from sqlalchemy import Column, DateTime, Integer, String, create_engine, delete, select, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator


class StorageUnavailable(Exception):
    """The store could not be reached or rejected the operation."""


class DbClient(Protocol):
    """Interface for medication entry storage."""

    def insert(self, name: str, pattern: str, relation: str) -> "MedicationRecord":
        ...

    def list_all(self) -> list["MedicationRecord"]:
        ...

    def delete_by_id(self, entry_id: str) -> bool:
        ...

    def ping(self) -> None:
        ...


def utc_now() -> datetime:
    """Current UTC time at the millisecond resolution the document store keeps."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


@dataclass(frozen=True)
class MedicationRecord:
    id: str
    name: str
    pattern: str
    relation: str
    created_at: datetime

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "pattern": self.pattern,
            "relation": self.relation,
            "created_at": self.created_at,
        }


class InMemoryDbClient:
    """Simple in-memory store for development and tests."""

    def __init__(self):
        self.entries: dict[str, tuple[int, MedicationRecord]] = {}
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def insert(self, name: str, pattern: str, relation: str) -> MedicationRecord:
        record = MedicationRecord(
            id=uuid.uuid4().hex,
            name=name,
            pattern=pattern,
            relation=relation,
            created_at=utc_now(),
        )
        with self._lock:
            self.entries[record.id] = (next(self._seq), record)
        return record

    def list_all(self) -> list[MedicationRecord]:
        with self._lock:
            items = list(self.entries.values())
        items.sort(key=lambda item: (item[1].created_at, item[0]), reverse=True)
        return [record for _, record in items]

    def delete_by_id(self, entry_id: str) -> bool:
        with self._lock:
            return self.entries.pop(entry_id, None) is not None

    def ping(self) -> None:
        return None

    def reset(self) -> None:
        """Clear all stored entries (useful in tests)."""
        with self._lock:
            self.entries.clear()


class MongoDbClient:
    """
    pymongo-backed implementation. The database is taken from the path of
    the connection URL, e.g. mongodb://127.0.0.1:27017/med_reminder_db.
    """

    def __init__(
        self,
        mongo_url: str,
        collection: str = "medications",
        timeout_ms: int = 5000,
    ):
        if not mongo_url:
            raise ValueError("MONGO_URL is required for MongoDbClient")
        self.mongo_url = mongo_url
        self.collection_name = collection
        self.timeout_ms = timeout_ms
        self._client: MongoClient | None = None
        self._collection = None
        self._indexed = False
        self._lock = threading.Lock()

    def _get_client(self) -> MongoClient:
        # SRV URLs resolve DNS inside MongoClient(), so it is only built on
        # first use where its errors map to StorageUnavailable.
        with self._lock:
            if self._client is None:
                client = MongoClient(
                    self.mongo_url,
                    serverSelectionTimeoutMS=self.timeout_ms,
                    tz_aware=True,
                )
                db = client.get_default_database(default="med_reminder_db")
                self._collection = db[self.collection_name]
                self._client = client
            return self._client

    def _get_collection(self):
        self._get_client()
        if not self._indexed:
            self._collection.create_index([("createdAt", DESCENDING)])
            self._indexed = True
        return self._collection

    @staticmethod
    def _to_record(doc: dict) -> MedicationRecord:
        created_at = doc.get("createdAt")
        if created_at is not None and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return MedicationRecord(
            id=str(doc["_id"]),
            name=doc.get("name") or "",
            pattern=doc.get("pattern") or "",
            relation=doc.get("relation") or "",
            created_at=created_at,
        )

    def insert(self, name: str, pattern: str, relation: str) -> MedicationRecord:
        doc = {
            "_id": ObjectId(),
            "name": name,
            "pattern": pattern,
            "relation": relation,
            "createdAt": utc_now(),
        }
        try:
            self._get_collection().insert_one(doc)
        except PyMongoError as exc:
            raise StorageUnavailable(f"insert failed: {exc}") from exc
        return self._to_record(doc)

    def list_all(self) -> list[MedicationRecord]:
        try:
            cursor = self._get_collection().find().sort(
                [("createdAt", DESCENDING), ("_id", DESCENDING)]
            )
            return [self._to_record(doc) for doc in cursor]
        except PyMongoError as exc:
            raise StorageUnavailable(f"list failed: {exc}") from exc

    def delete_by_id(self, entry_id: str) -> bool:
        try:
            object_id = ObjectId(entry_id)
        except (InvalidId, TypeError):
            return False
        try:
            result = self._get_collection().delete_one({"_id": object_id})
        except PyMongoError as exc:
            raise StorageUnavailable(f"delete failed: {exc}") from exc
        return result.deleted_count > 0

    def ping(self) -> None:
        try:
            self._get_client().admin.command("ping")
        except PyMongoError as exc:
            raise StorageUnavailable(f"ping failed: {exc}") from exc


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        url = make_url(database_url)
        engine_options = {}
        # A memory database lives in one connection; every worker thread must
        # share it, one session at a time.
        self._lock = contextlib.nullcontext()
        if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
            engine_options = {
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            }
            self._lock = threading.RLock()
        self.engine = create_engine(
            url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
            **engine_options,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        self._schema_ready = False

    def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        Base.metadata.create_all(self.engine)
        self._schema_ready = True

    @staticmethod
    def _to_record(row: "MedicationRow") -> MedicationRecord:
        return MedicationRecord(
            id=row.id,
            name=row.name or "",
            pattern=row.pattern or "",
            relation=row.relation or "",
            created_at=row.created_at,
        )

    def insert(self, name: str, pattern: str, relation: str) -> MedicationRecord:
        try:
            with self._lock:
                self._ensure_schema()
                with self.Session() as session:
                    row = MedicationRow(
                        id=uuid.uuid4().hex,
                        name=name,
                        pattern=pattern,
                        relation=relation,
                        created_at=utc_now(),
                    )
                    session.add(row)
                    session.commit()
                    session.refresh(row)
                    return self._to_record(row)
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"insert failed: {exc}") from exc

    def list_all(self) -> list[MedicationRecord]:
        try:
            with self._lock:
                self._ensure_schema()
                with self.Session() as session:
                    stmt = select(MedicationRow).order_by(
                        MedicationRow.created_at.desc(), MedicationRow.seq.desc()
                    )
                    return [self._to_record(row) for row in session.scalars(stmt)]
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"list failed: {exc}") from exc

    def delete_by_id(self, entry_id: str) -> bool:
        try:
            with self._lock:
                self._ensure_schema()
                with self.Session() as session:
                    result = session.execute(
                        delete(MedicationRow).where(MedicationRow.id == entry_id)
                    )
                    session.commit()
                    return (result.rowcount or 0) > 0
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"delete failed: {exc}") from exc

    def ping(self) -> None:
        try:
            with self._lock, self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"ping failed: {exc}") from exc


class UtcDateTime(TypeDecorator):
    """Stores aware datetimes as naive UTC and hands them back as aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


Base = declarative_base()


class MedicationRow(Base):
    __tablename__ = "medications"

    # Surrogate key only used to break created_at ties in insertion order.
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(32), nullable=False, unique=True, index=True)
    name = Column(String, nullable=False, default="")
    pattern = Column(String, nullable=False, default="")
    relation = Column(String, nullable=False, default="")
    created_at = Column(UtcDateTime, nullable=False, index=True)
