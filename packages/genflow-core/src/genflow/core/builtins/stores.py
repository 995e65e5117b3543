from __future__ import annotations

import copy
import datetime as _dt
import json
import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from genflow.core.connectors import require
from genflow.core.connectors.base import BaseConnector, ConnectorInit
from genflow.core.exception import ConnectorError, NotFound, StoreUnavailable
from genflow.core.registry.connectors import register_connector

log = logging.getLogger("genflow.core.builtin.stores")

Doc = Dict[str, Any]


def new_doc_id() -> str:
    return uuid.uuid4().hex


def _utcnow_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


def _sqlite_path(config: dict) -> str:
    url = (config.get("url") or "").strip()
    if url in ("sqlite:///:memory:", ":memory:"):
        return ":memory:"
    if url.startswith("sqlite:///"):
        return url[len("sqlite:///"):]
    p = config.get("path")
    if p:
        return str(p)
    raise ConnectorError("sqlite3 store requires GENFLOW_STORE_URL (sqlite:///path/to/db.sqlite)")


@register_connector("store", "memory")
class MemoryStore(BaseConnector):
    """In-process document store. Every call holds one lock; values are copied in and out.

    Data belongs to the instance and is dropped on close(), so it lasts only as
    long as the connector cache keeps the instance (see connector_cache_default).
    """

    def __init__(self, init: ConnectorInit):
        super().__init__(init)
        self._lock = threading.Lock()
        self._data: Dict[str, Dict[str, Doc]] = {}

    def add(self, collection: str, data: Doc) -> str:
        doc_id = new_doc_id()
        with self._lock:
            self._data.setdefault(collection, {})[doc_id] = copy.deepcopy(data)
        return doc_id

    def get(self, collection: str, doc_id: str) -> Optional[Doc]:
        with self._lock:
            doc = self._data.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def merge(self, collection: str, doc_id: str, data: Doc) -> None:
        with self._lock:
            coll = self._data.setdefault(collection, {})
            coll[doc_id] = {**coll.get(doc_id, {}), **copy.deepcopy(data)}

    def update(self, collection: str, doc_id: str, data: Doc) -> None:
        with self._lock:
            coll = self._data.get(collection, {})
            if doc_id not in coll:
                raise NotFound(collection, doc_id)
            coll[doc_id] = {**coll[doc_id], **copy.deepcopy(data)}

    def stream(self, collection: str) -> List[Tuple[str, Doc]]:
        with self._lock:
            return [(k, copy.deepcopy(v)) for k, v in self._data.get(collection, {}).items()]

    def ping(self) -> str:
        return _utcnow_iso()

    def close(self) -> None:
        with self._lock:
            self._data.clear()


@register_connector("store", "noop")
class NoopStore(BaseConnector):
    """Simulated persistence: accepts writes, logs them, keeps nothing."""

    def add(self, collection: str, data: Doc) -> str:
        doc_id = new_doc_id()
        log.info("noop store: add %s/%s (not persisted)", collection, doc_id)
        return doc_id

    def get(self, collection: str, doc_id: str) -> Optional[Doc]:
        return None

    def merge(self, collection: str, doc_id: str, data: Doc) -> None:
        log.info("noop store: merge %s/%s fields=%s (not persisted)", collection, doc_id, sorted(data))

    def update(self, collection: str, doc_id: str, data: Doc) -> None:
        log.info("noop store: update %s/%s fields=%s (not persisted)", collection, doc_id, sorted(data))

    def stream(self, collection: str) -> List[Tuple[str, Doc]]:
        return []

    def ping(self) -> str:
        return _utcnow_iso()


_SQLITE_DDL = (
    "CREATE TABLE IF NOT EXISTS documents ("
    " collection TEXT NOT NULL,"
    " id TEXT NOT NULL,"
    " data TEXT NOT NULL,"
    " PRIMARY KEY (collection, id))"
)


@register_connector("store", "sqlite3")
class SQLiteStore(BaseConnector):
    """Document store on the stdlib sqlite3 driver.

    Documents are JSON text in a single `documents` table keyed by
    (collection, id). One connection is shared and serialized by a lock.

    Config:
      - url: sqlite:///path/to/db.sqlite (or sqlite:///:memory:)
      - or path: /path/to/db.sqlite
    """

    def __init__(self, init: ConnectorInit):
        super().__init__(init)
        self._lock = threading.Lock()
        self._conn = None

    def _connection(self):
        import sqlite3

        if self._conn is None:
            try:
                self._conn = sqlite3.connect(_sqlite_path(self.config), check_same_thread=False)
                with self._conn:
                    self._conn.execute(_SQLITE_DDL)
            except sqlite3.Error as e:
                self._conn = None
                raise StoreUnavailable(f"sqlite3 store unavailable: {e}") from e
        return self._conn

    @contextmanager
    def _tx(self) -> Iterator[Any]:
        import sqlite3

        with self._lock:
            conn = self._connection()
            try:
                with conn:
                    yield conn
            except sqlite3.Error as e:
                raise StoreUnavailable(f"sqlite3 store failed: {e}") from e

    @staticmethod
    def _load(raw: str) -> Doc:
        return json.loads(raw)

    def add(self, collection: str, data: Doc) -> str:
        doc_id = new_doc_id()
        with self._tx() as conn:
            conn.execute(
                "INSERT INTO documents (collection, id, data) VALUES (?, ?, ?)",
                (collection, doc_id, json.dumps(data, ensure_ascii=False)),
            )
        return doc_id

    def get(self, collection: str, doc_id: str) -> Optional[Doc]:
        with self._tx() as conn:
            row = conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND id = ?", (collection, doc_id)
            ).fetchone()
        return self._load(row[0]) if row else None

    def _write(self, collection: str, doc_id: str, data: Doc, *, must_exist: bool) -> None:
        with self._tx() as conn:
            row = conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND id = ?", (collection, doc_id)
            ).fetchone()
            if row is None and must_exist:
                raise NotFound(collection, doc_id)
            merged = {**(self._load(row[0]) if row else {}), **data}
            conn.execute(
                "INSERT OR REPLACE INTO documents (collection, id, data) VALUES (?, ?, ?)",
                (collection, doc_id, json.dumps(merged, ensure_ascii=False)),
            )

    def merge(self, collection: str, doc_id: str, data: Doc) -> None:
        self._write(collection, doc_id, data, must_exist=False)

    def update(self, collection: str, doc_id: str, data: Doc) -> None:
        self._write(collection, doc_id, data, must_exist=True)

    def stream(self, collection: str) -> List[Tuple[str, Doc]]:
        with self._tx() as conn:
            rows = conn.execute("SELECT id, data FROM documents WHERE collection = ?", (collection,)).fetchall()
        return [(r[0], self._load(r[1])) for r in rows]

    def ping(self) -> str:
        with self._tx() as conn:
            row = conn.execute("SELECT strftime('%Y-%m-%dT%H:%M:%fZ', 'now')").fetchone()
        return str(row[0])

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                finally:
                    self._conn = None


@register_connector("store", "sqlalchemy")
class SQLAlchemyStore(BaseConnector):
    """Document store on any SQLAlchemy engine.

    Config:
      - url: SQLAlchemy database URL
    Options:
      - pool: {size, max_overflow, recycle_seconds, pre_ping}
    """

    def __init__(self, init: ConnectorInit):
        super().__init__(init)
        self._engine = None
        self._table = None

    def _sa(self):
        return require("sqlalchemy")

    def engine(self):
        sa = self._sa()
        if self._engine is None:
            url = self.config.get("url")
            if not url:
                raise ConnectorError("sqlalchemy store requires GENFLOW_STORE_URL")
            kwargs: Dict[str, Any] = {}
            pool_cfg = self.options.get("pool") or {}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared in-memory database across worker threads.
                kwargs["poolclass"] = sa.pool.StaticPool
                kwargs["connect_args"] = {"check_same_thread": False}
            else:
                kwargs["pool_pre_ping"] = bool(pool_cfg.get("pre_ping", True))
                if "size" in pool_cfg:
                    kwargs["pool_size"] = int(pool_cfg["size"])
                if "max_overflow" in pool_cfg:
                    kwargs["max_overflow"] = int(pool_cfg["max_overflow"])
                if "recycle_seconds" in pool_cfg:
                    kwargs["pool_recycle"] = int(pool_cfg["recycle_seconds"])
            md = sa.MetaData()
            table = sa.Table(
                "documents",
                md,
                sa.Column("collection", sa.String(128), primary_key=True),
                sa.Column("id", sa.String(64), primary_key=True),
                sa.Column("data", sa.Text, nullable=False),
            )
            # Bad URLs and missing DBAPI modules surface as StoreUnavailable.
            try:
                eng = sa.create_engine(url, **kwargs)
                md.create_all(eng)
            except (sa.exc.SQLAlchemyError, ImportError) as e:
                raise StoreUnavailable(f"sqlalchemy store unavailable: {e}") from e
            self._engine, self._table = eng, table
        return self._engine

    @contextmanager
    def connect(self) -> Iterator[Any]:
        # transaction-aware connection (BEGIN/COMMIT)
        sa = self._sa()
        eng = self.engine()
        try:
            with eng.begin() as conn:
                yield conn
        except sa.exc.SQLAlchemyError as e:
            raise StoreUnavailable(f"sqlalchemy store failed: {e}") from e

    def _select(self, conn, collection: str, doc_id: str) -> Optional[Doc]:
        t = self._table
        row = conn.execute(
            t.select().with_only_columns(t.c.data).where(t.c.collection == collection, t.c.id == doc_id)
        ).first()
        return json.loads(row[0]) if row else None

    def add(self, collection: str, data: Doc) -> str:
        doc_id = new_doc_id()
        with self.connect() as conn:
            conn.execute(self._table.insert().values(collection=collection, id=doc_id, data=json.dumps(data, ensure_ascii=False)))
        return doc_id

    def get(self, collection: str, doc_id: str) -> Optional[Doc]:
        with self.connect() as conn:
            return self._select(conn, collection, doc_id)

    def _write(self, collection: str, doc_id: str, data: Doc, *, must_exist: bool) -> None:
        t = self._table
        with self.connect() as conn:
            current = self._select(conn, collection, doc_id)
            if current is None:
                if must_exist:
                    raise NotFound(collection, doc_id)
                conn.execute(t.insert().values(collection=collection, id=doc_id, data=json.dumps(data, ensure_ascii=False)))
                return
            merged = json.dumps({**current, **data}, ensure_ascii=False)
            conn.execute(t.update().where(t.c.collection == collection, t.c.id == doc_id).values(data=merged))

    def merge(self, collection: str, doc_id: str, data: Doc) -> None:
        self._write(collection, doc_id, data, must_exist=False)

    def update(self, collection: str, doc_id: str, data: Doc) -> None:
        self._write(collection, doc_id, data, must_exist=True)

    def stream(self, collection: str) -> List[Tuple[str, Doc]]:
        with self.connect() as conn:
            t = self._table
            rows = conn.execute(t.select().with_only_columns(t.c.id, t.c.data).where(t.c.collection == collection)).fetchall()
        return [(r[0], json.loads(r[1])) for r in rows]

    def ping(self) -> str:
        sa = self._sa()
        with self.connect() as conn:
            value = conn.execute(sa.text("SELECT CURRENT_TIMESTAMP")).scalar()
        return value.isoformat() if hasattr(value, "isoformat") else str(value)

    def close(self) -> None:
        if self._engine is not None:
            try:
                self._engine.dispose()
            finally:
                self._engine = None
