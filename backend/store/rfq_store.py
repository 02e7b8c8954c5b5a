"""
RFQ session store and quote intake.

Both come in two flavours sharing one interface: process-local memory
(default) and SQLModel tables for a database URL. ``put`` replaces the whole
RFQ record under one lock / transaction, so readers see either the old or the
new record and never a mix of both.
"""
from __future__ import annotations

import copy
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

from backend.app.errors import UnknownRfq
from backend.app.models import RFQ

logger = logging.getLogger("crontal.store")


# --- Memory backend ---

class MemoryRfqStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: Dict[str, RFQ] = {}

    def put(self, rfq: RFQ) -> None:
        snapshot = rfq.model_copy(deep=True)
        with self._lock:
            self._items[snapshot.rfq_id] = snapshot

    def get(self, rfq_id: str) -> RFQ:
        with self._lock:
            rfq = self._items.get(rfq_id)
        if rfq is None:
            raise UnknownRfq(rfq_id)
        return rfq.model_copy(deep=True)

    def exists(self, rfq_id: str) -> bool:
        with self._lock:
            return rfq_id in self._items

    def close(self) -> None:
        with self._lock:
            self._items.clear()


class MemoryQuoteStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._quotes: Dict[str, List[Any]] = {}

    def submit(self, rfq_id: str, payload: Any) -> None:
        entry = copy.deepcopy(payload)
        with self._lock:
            self._quotes.setdefault(rfq_id, []).append(entry)

    def quotes_for(self, rfq_id: str) -> List[Any]:
        with self._lock:
            return copy.deepcopy(self._quotes.get(rfq_id, []))

    def close(self) -> None:
        with self._lock:
            self._quotes.clear()


# --- SQLModel backend ---

_UPSERT_INSERTS = {"sqlite": sqlite_insert, "postgresql": pg_insert}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RfqRecord(SQLModel, table=True):
    __tablename__ = "rfqs"

    rfq_id: str = Field(primary_key=True)
    payload: str
    updated_at: datetime = Field(default_factory=_utcnow)


class QuoteRecord(SQLModel, table=True):
    __tablename__ = "quotes"

    id: Optional[int] = Field(default=None, primary_key=True)
    rfq_id: str = Field(index=True)
    payload: str
    created_at: datetime = Field(default_factory=_utcnow)


def _ensure_sqlite_dir(url: str) -> None:
    if not url.startswith("sqlite:///"):
        return
    filename = url.replace("sqlite:///", "", 1)
    if filename and filename != ":memory:":
        Path(filename).parent.mkdir(parents=True, exist_ok=True)


def create_db_engine(url: str):
    if url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every thread sees its own empty db
        return create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    _ensure_sqlite_dir(url)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, connect_args=connect_args)


class SqlRfqStore:
    def __init__(self, engine) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        SQLModel.metadata.create_all(engine)

    def put(self, rfq: RFQ) -> None:
        values = {"rfq_id": rfq.rfq_id, "payload": rfq.model_dump_json(), "updated_at": _utcnow()}
        with self._lock, Session(self._engine) as session:
            dialect = self._engine.dialect.name
            if dialect in _UPSERT_INSERTS:
                # one statement, last writer wins across processes too
                stmt = _UPSERT_INSERTS[dialect](RfqRecord).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["rfq_id"],
                    set_={"payload": values["payload"], "updated_at": values["updated_at"]},
                )
                session.exec(stmt)
            else:
                session.merge(RfqRecord(**values))
            session.commit()

    def get(self, rfq_id: str) -> RFQ:
        with Session(self._engine) as session:
            record = session.get(RfqRecord, rfq_id)
            if record is None:
                raise UnknownRfq(rfq_id)
            return RFQ.model_validate_json(record.payload)

    def exists(self, rfq_id: str) -> bool:
        with Session(self._engine) as session:
            return session.get(RfqRecord, rfq_id) is not None

    def close(self) -> None:
        self._engine.dispose()


class SqlQuoteStore:
    def __init__(self, engine) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        SQLModel.metadata.create_all(engine)

    def submit(self, rfq_id: str, payload: Any) -> None:
        with self._lock, Session(self._engine) as session:
            session.add(QuoteRecord(rfq_id=rfq_id, payload=json.dumps(payload)))
            session.commit()

    def quotes_for(self, rfq_id: str) -> List[Any]:
        with Session(self._engine) as session:
            rows = session.exec(
                select(QuoteRecord).where(QuoteRecord.rfq_id == rfq_id).order_by(QuoteRecord.id)
            ).all()
            return [json.loads(row.payload) for row in rows]

    def close(self) -> None:
        self._engine.dispose()


def create_stores(db_url: Optional[str] = None) -> Tuple[Any, Any]:
    """Build the RFQ store and the quote store; memory when no URL is given."""
    if not db_url:
        logger.info("Using in-memory RFQ and quote stores")
        return MemoryRfqStore(), MemoryQuoteStore()
    engine = create_db_engine(db_url)
    logger.info("Using SQL RFQ and quote stores at %s", engine.url.render_as_string(hide_password=True))
    return SqlRfqStore(engine), SqlQuoteStore(engine)
