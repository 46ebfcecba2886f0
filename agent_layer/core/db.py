"""Record store backends for places and leads.

Two interchangeable backends implement :class:`RecordStore`:

* :class:`SQLiteStore` keeps everything in a single file and opens one
  connection per operation.
* :class:`PostgresStore` uses a shared ``psycopg2`` connection pool.

``open_store`` picks one from a ``DATABASE_URL``.
"""

import json
import logging
import sqlite3
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import asdict, fields
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

import psycopg2
from psycopg2 import extras, pool

from agent_layer.core.config import ConfigError
from agent_layer.core.models import LeadRecord, PlaceDraft, PlaceRecord, SourceRef

logger = logging.getLogger(__name__)

PLACE_JSON_COLUMNS = ("images", "tags", "sources", "site_refs", "raw_data")
LEAD_JSON_COLUMNS = ("place_ids", "payload")
PLACE_COLUMNS = tuple(f.name for f in fields(PlaceRecord))
LEAD_COLUMNS = tuple(f.name for f in fields(LeadRecord))
_DRAFT_COLUMNS = tuple(f.name for f in fields(PlaceDraft))


def generate_id(prefix: str, namespace: Optional[str] = None) -> str:
    ns = f"{namespace}_" if namespace else ""
    return f"{prefix}_{ns}{uuid.uuid4().hex[:12]}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _parse_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def place_from_row(row: Mapping[str, Any]) -> PlaceRecord:
    sources = [
        SourceRef(**{key: item.get(key) for key in ("kind", "external_id", "url", "fetched_at")})
        for item in _parse_json(row["sources"], [])
    ]
    rating = row["rating"]
    return PlaceRecord(
        id=row["id"],
        name=row["name"],
        slug=row["slug"],
        vertical=row["vertical"],
        province=row["province"],
        city=row["city"],
        neighborhood=row["neighborhood"],
        address=row["address"],
        lat=row["lat"],
        lng=row["lng"],
        phone=row["phone"],
        website=row["website"],
        booking_url=row["booking_url"],
        email=row["email"],
        description=row["description"],
        images=_parse_json(row["images"], []),
        rating=float(rating) if rating is not None else None,
        review_count=row["review_count"] or 0,
        tags=_parse_json(row["tags"], []),
        sources=sources,
        site_refs=_parse_json(row["site_refs"], {}),
        raw_data=_parse_json(row["raw_data"], {}),
        last_verified=_parse_datetime(row["last_verified"]),
        created_at=_parse_datetime(row["created_at"]),
        updated_at=_parse_datetime(row["updated_at"]),
    )


def lead_from_row(row: Mapping[str, Any]) -> LeadRecord:
    values = {column: row[column] for column in LEAD_COLUMNS}
    values["place_ids"] = _parse_json(values["place_ids"], [])
    values["payload"] = _parse_json(values["payload"], {})
    values["created_at"] = _parse_datetime(values["created_at"])
    values["updated_at"] = _parse_datetime(values["updated_at"])
    return LeadRecord(**values)


def merge_sources(existing: List[SourceRef], incoming: List[SourceRef]) -> List[SourceRef]:
    """Append incoming provenance entries whose ``(kind, external_id)`` is not recorded yet."""
    merged = list(existing)
    known = {(source.kind, source.external_id) for source in existing}
    for source in incoming:
        key = (source.kind, source.external_id)
        if key not in known:
            known.add(key)
            merged.append(source)
    return merged


def build_place(draft: PlaceDraft, *, place_id: str, slug: str, now: datetime) -> PlaceRecord:
    values = {column: getattr(draft, column) for column in _DRAFT_COLUMNS}
    values.update(id=place_id, slug=slug, created_at=now, updated_at=now)
    return PlaceRecord(**values)


def apply_draft(existing: PlaceRecord, draft: PlaceDraft, site_refs: Dict[str, str], now: datetime) -> PlaceRecord:
    """Overlay a connector draft on a stored row; identity, slug and creation time are kept."""
    values = {column: getattr(draft, column) for column in _DRAFT_COLUMNS}
    values.update(
        id=existing.id,
        slug=existing.slug,
        sources=merge_sources(existing.sources, draft.sources),
        site_refs=site_refs,
        created_at=existing.created_at,
        updated_at=max(now, existing.created_at),
    )
    if draft.city != existing.city:
        logger.info("Place %s moved from %s to %s", existing.id, existing.city, draft.city)
    return PlaceRecord(**values)


class RecordStore(ABC):
    """Repository interface shared by the search, sync and lead components."""

    @abstractmethod
    def init_schema(self) -> None: ...

    @abstractmethod
    def ping(self) -> None: ...

    # ---------- places ----------

    @abstractmethod
    def scan_places(self, vertical: Optional[str] = None) -> List[PlaceRecord]: ...

    @abstractmethod
    def get_place(self, place_id: str, vertical: Optional[str] = None) -> Optional[PlaceRecord]: ...

    @abstractmethod
    def get_place_by_slug(self, slug: str, city: str, vertical: Optional[str] = None) -> Optional[PlaceRecord]: ...

    @abstractmethod
    def insert_place(self, draft: PlaceDraft) -> PlaceRecord: ...

    @abstractmethod
    def update_place(self, place_id: str, draft: PlaceDraft) -> Optional[PlaceRecord]: ...

    @abstractmethod
    def find_by_site_ref(self, site_id: str, external_id: str) -> Optional[PlaceRecord]: ...

    @abstractmethod
    def upsert_by_site_ref(self, site_id: str, external_id: str, draft: PlaceDraft) -> Tuple[PlaceRecord, bool]: ...

    @abstractmethod
    def count_places_by_vertical(self) -> Dict[str, int]: ...

    # ---------- leads ----------

    @abstractmethod
    def insert_lead(self, lead: LeadRecord) -> LeadRecord: ...

    @abstractmethod
    def get_lead(self, lead_id: str) -> Optional[LeadRecord]: ...

    @abstractmethod
    def update_lead(
        self,
        lead_id: str,
        *,
        status: str,
        assigned_to: Optional[str],
        check: Optional[Callable[[str, str], None]] = None,
    ) -> Optional[LeadRecord]:
        """Set a lead's status atomically.

        ``check(current, target)`` runs against the locked row; raising from it aborts the update.
        """

    @abstractmethod
    def list_leads(
        self,
        *,
        status: Optional[str] = None,
        vertical: Optional[str] = None,
        priority: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[LeadRecord]: ...

    @abstractmethod
    def count_leads(self) -> int: ...


# ---------- SQLite ----------

_SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS places (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    slug TEXT NOT NULL,
    vertical TEXT NOT NULL,
    province TEXT NOT NULL,
    city TEXT NOT NULL,
    neighborhood TEXT,
    address TEXT,
    lat REAL,
    lng REAL,
    phone TEXT,
    website TEXT,
    booking_url TEXT,
    email TEXT,
    description TEXT,
    images TEXT NOT NULL DEFAULT '[]',
    rating REAL,
    review_count INTEGER NOT NULL DEFAULT 0,
    tags TEXT NOT NULL DEFAULT '[]',
    sources TEXT NOT NULL DEFAULT '[]',
    site_refs TEXT NOT NULL DEFAULT '{}',
    raw_data TEXT NOT NULL DEFAULT '{}',
    last_verified TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS places_slug_city_idx ON places (slug, city);
CREATE INDEX IF NOT EXISTS places_vertical_idx ON places (vertical);
CREATE INDEX IF NOT EXISTS places_city_idx ON places (city);

CREATE TABLE IF NOT EXISTS leads (
    id TEXT PRIMARY KEY,
    action_type TEXT NOT NULL,
    vertical TEXT NOT NULL,
    province TEXT NOT NULL,
    city TEXT,
    email TEXT NOT NULL,
    phone TEXT,
    name TEXT,
    place_ids TEXT NOT NULL DEFAULT '[]',
    message TEXT,
    requirements TEXT,
    timing TEXT,
    payload TEXT NOT NULL DEFAULT '{}',
    status TEXT NOT NULL DEFAULT 'new',
    priority TEXT NOT NULL DEFAULT 'medium',
    assigned_to TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS leads_status_idx ON leads (status);
CREATE INDEX IF NOT EXISTS leads_created_idx ON leads (created_at);
"""


def _sqlite_value(column: str, value: Any, json_columns: Tuple[str, ...]) -> Any:
    if column in json_columns:
        if column == "sources":
            value = [asdict(source) if isinstance(source, SourceRef) else source for source in value]
        return json.dumps(value, ensure_ascii=False, default=str)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class SQLiteStore(RecordStore):
    """File-backed store; every call opens its own connection so worker threads never share one."""

    def __init__(self, path: str) -> None:
        if not path:
            raise ConfigError("SQLite store needs a file path")
        self.path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SQLITE_SCHEMA)
        logger.info("SQLite schema ready at %s", self.path)

    def ping(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1 FROM places LIMIT 1").fetchall()

    # ---------- places ----------

    def scan_places(self, vertical: Optional[str] = None) -> List[PlaceRecord]:
        sql = "SELECT * FROM places"
        params: Tuple[Any, ...] = ()
        if vertical:
            sql += " WHERE vertical = ?"
            params = (vertical,)
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [place_from_row(row) for row in rows]

    def get_place(self, place_id: str, vertical: Optional[str] = None) -> Optional[PlaceRecord]:
        sql = "SELECT * FROM places WHERE id = ?"
        params: Tuple[Any, ...] = (place_id,)
        if vertical:
            sql += " AND vertical = ?"
            params += (vertical,)
        with self._connect() as conn:
            row = conn.execute(sql, params).fetchone()
        return place_from_row(row) if row else None

    def get_place_by_slug(self, slug: str, city: str, vertical: Optional[str] = None) -> Optional[PlaceRecord]:
        sql = "SELECT * FROM places WHERE slug = ? AND city = ?"
        params: Tuple[Any, ...] = (slug, city)
        if vertical:
            sql += " AND vertical = ?"
            params += (vertical,)
        with self._connect() as conn:
            row = conn.execute(sql, params).fetchone()
        return place_from_row(row) if row else None

    def _unique_slug(self, conn: sqlite3.Connection, slug: str, city: str, exclude_id: Optional[str] = None) -> str:
        rows = conn.execute(
            "SELECT slug FROM places WHERE city = ? AND (slug = ? OR slug LIKE ?) AND id IS NOT ?",
            (city, slug, f"{slug}-%", exclude_id),
        ).fetchall()
        taken = {row["slug"] for row in rows}
        candidate, counter = slug, 2
        while candidate in taken:
            candidate = f"{slug}-{counter}"
            counter += 1
        return candidate

    def _write_place(self, conn: sqlite3.Connection, record: PlaceRecord, *, insert: bool) -> None:
        values = {column: _sqlite_value(column, getattr(record, column), PLACE_JSON_COLUMNS) for column in PLACE_COLUMNS}
        if insert:
            columns = ", ".join(PLACE_COLUMNS)
            placeholders = ", ".join(f":{column}" for column in PLACE_COLUMNS)
            conn.execute(f"INSERT INTO places ({columns}) VALUES ({placeholders})", values)
        else:
            assignments = ", ".join(f"{column} = :{column}" for column in PLACE_COLUMNS if column != "id")
            conn.execute(f"UPDATE places SET {assignments} WHERE id = :id", values)

    def _insert(self, conn: sqlite3.Connection, draft: PlaceDraft) -> PlaceRecord:
        slug = self._unique_slug(conn, draft.slug, draft.city)
        record = build_place(draft, place_id=generate_id("place", draft.city), slug=slug, now=utcnow())
        self._write_place(conn, record, insert=True)
        return record

    def _update(self, conn: sqlite3.Connection, existing: PlaceRecord, draft: PlaceDraft, site_refs: Dict[str, str]) -> PlaceRecord:
        record = apply_draft(existing, draft, site_refs, utcnow())
        if record.city != existing.city:
            record.slug = self._unique_slug(conn, record.slug, record.city, exclude_id=record.id)
        self._write_place(conn, record, insert=False)
        return record

    def insert_place(self, draft: PlaceDraft) -> PlaceRecord:
        with self._transaction() as conn:
            record = self._insert(conn, draft)
        logger.debug("Inserted place %s (%s)", record.id, record.name)
        return record

    def update_place(self, place_id: str, draft: PlaceDraft) -> Optional[PlaceRecord]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM places WHERE id = ?", (place_id,)).fetchone()
            if row is None:
                return None
            existing = place_from_row(row)
            site_refs = {**existing.site_refs, **draft.site_refs}
            return self._update(conn, existing, draft, site_refs)

    def _select_by_site_ref(self, conn: sqlite3.Connection, site_id: str, external_id: str) -> Optional[PlaceRecord]:
        row = conn.execute(
            "SELECT * FROM places WHERE json_extract(site_refs, ?) = ? ORDER BY created_at, id LIMIT 1",
            (f'$."{site_id}"', external_id),
        ).fetchone()
        return place_from_row(row) if row else None

    def find_by_site_ref(self, site_id: str, external_id: str) -> Optional[PlaceRecord]:
        with self._connect() as conn:
            return self._select_by_site_ref(conn, site_id, external_id)

    def upsert_by_site_ref(self, site_id: str, external_id: str, draft: PlaceDraft) -> Tuple[PlaceRecord, bool]:
        # BEGIN IMMEDIATE takes the write lock before the lookup, so two syncs cannot both insert.
        with self._transaction() as conn:
            existing = self._select_by_site_ref(conn, site_id, external_id)
            if existing is not None:
                site_refs = {**existing.site_refs, site_id: external_id}
                return self._update(conn, existing, draft, site_refs), False
            draft.site_refs = {site_id: external_id}
            return self._insert(conn, draft), True

    def count_places_by_vertical(self) -> Dict[str, int]:
        with self._connect() as conn:
            rows = conn.execute("SELECT vertical, COUNT(*) AS n FROM places GROUP BY vertical").fetchall()
        return {row["vertical"]: row["n"] for row in rows}

    # ---------- leads ----------

    def insert_lead(self, lead: LeadRecord) -> LeadRecord:
        values = {column: _sqlite_value(column, getattr(lead, column), LEAD_JSON_COLUMNS) for column in LEAD_COLUMNS}
        columns = ", ".join(LEAD_COLUMNS)
        placeholders = ", ".join(f":{column}" for column in LEAD_COLUMNS)
        with self._transaction() as conn:
            conn.execute(f"INSERT INTO leads ({columns}) VALUES ({placeholders})", values)
        return lead

    def get_lead(self, lead_id: str) -> Optional[LeadRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM leads WHERE id = ?", (lead_id,)).fetchone()
        return lead_from_row(row) if row else None

    def update_lead(
        self,
        lead_id: str,
        *,
        status: str,
        assigned_to: Optional[str],
        check: Optional[Callable[[str, str], None]] = None,
    ) -> Optional[LeadRecord]:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM leads WHERE id = ?", (lead_id,)).fetchone()
            if row is None:
                return None
            lead = lead_from_row(row)
            if check is not None:
                check(lead.status, status)
            lead.status = status
            if assigned_to:
                lead.assigned_to = assigned_to
            lead.updated_at = max(utcnow(), lead.created_at)
            conn.execute(
                "UPDATE leads SET status = ?, assigned_to = ?, updated_at = ? WHERE id = ?",
                (lead.status, lead.assigned_to, lead.updated_at.isoformat(), lead.id),
            )
        return lead

    def list_leads(
        self,
        *,
        status: Optional[str] = None,
        vertical: Optional[str] = None,
        priority: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[LeadRecord]:
        clauses, params = [], []
        for column, value in (("status", status), ("vertical", vertical), ("priority", priority)):
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        sql = "SELECT * FROM leads"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [lead_from_row(row) for row in rows]

    def count_leads(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM leads").fetchone()[0]


# ---------- PostgreSQL ----------

_POSTGRES_SCHEMA = """
CREATE TABLE IF NOT EXISTS places (
    id VARCHAR(64) PRIMARY KEY,
    name VARCHAR(255) NOT NULL,
    slug VARCHAR(255) NOT NULL,
    vertical VARCHAR(32) NOT NULL,
    province VARCHAR(8) NOT NULL,
    city VARCHAR(64) NOT NULL,
    neighborhood VARCHAR(64),
    address TEXT,
    lat DOUBLE PRECISION,
    lng DOUBLE PRECISION,
    phone VARCHAR(32),
    website TEXT,
    booking_url TEXT,
    email VARCHAR(255),
    description TEXT,
    images JSONB NOT NULL DEFAULT '[]',
    rating REAL,
    review_count INTEGER NOT NULL DEFAULT 0,
    tags JSONB NOT NULL DEFAULT '[]',
    sources JSONB NOT NULL DEFAULT '[]',
    site_refs JSONB NOT NULL DEFAULT '{}',
    raw_data JSONB NOT NULL DEFAULT '{}',
    last_verified TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE UNIQUE INDEX IF NOT EXISTS places_slug_city_idx ON places (slug, city);
CREATE INDEX IF NOT EXISTS places_vertical_idx ON places (vertical);
CREATE INDEX IF NOT EXISTS places_site_refs_idx ON places USING gin (site_refs jsonb_path_ops);

CREATE TABLE IF NOT EXISTS leads (
    id VARCHAR(64) PRIMARY KEY,
    action_type VARCHAR(64) NOT NULL,
    vertical VARCHAR(32) NOT NULL,
    province VARCHAR(8) NOT NULL,
    city VARCHAR(64),
    email VARCHAR(255) NOT NULL,
    phone VARCHAR(32),
    name VARCHAR(128),
    place_ids JSONB NOT NULL DEFAULT '[]',
    message TEXT,
    requirements TEXT,
    timing VARCHAR(32),
    payload JSONB NOT NULL DEFAULT '{}',
    status VARCHAR(16) NOT NULL DEFAULT 'new',
    priority VARCHAR(8) NOT NULL DEFAULT 'medium',
    assigned_to VARCHAR(64),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS leads_status_idx ON leads (status);
CREATE INDEX IF NOT EXISTS leads_created_idx ON leads (created_at);
"""


def _pg_params(record: Any, columns: Tuple[str, ...], json_columns: Tuple[str, ...]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    for column in columns:
        value = getattr(record, column)
        if column in json_columns:
            if column == "sources":
                value = [asdict(source) for source in value]
            value = extras.Json(value)
        params[column] = value
    return params


_PG_INSERT_PLACE = "INSERT INTO places ({columns}) VALUES ({values})".format(
    columns=", ".join(PLACE_COLUMNS),
    values=", ".join(f"%({column})s" for column in PLACE_COLUMNS),
)
_PG_UPDATE_PLACE = "UPDATE places SET {assignments} WHERE id = %(id)s".format(
    assignments=", ".join(f"{column} = %({column})s" for column in PLACE_COLUMNS if column != "id"),
)
_PG_INSERT_LEAD = "INSERT INTO leads ({columns}) VALUES ({values})".format(
    columns=", ".join(LEAD_COLUMNS),
    values=", ".join(f"%({column})s" for column in LEAD_COLUMNS),
)


class PostgresStore(RecordStore):
    """PostgreSQL store backed by a ``psycopg2`` connection pool."""

    def __init__(self, dsn: str, minconn: int = 1, maxconn: int = 5) -> None:
        if not dsn:
            raise ConfigError("DATABASE_URL is required for database connections")
        self.dsn = dsn
        self.minconn = minconn
        self.maxconn = maxconn
        self._pool: Optional[pool.SimpleConnectionPool] = None

    def init_pool(self) -> pool.SimpleConnectionPool:
        """Initialise and return the shared connection pool."""
        if self._pool is None:
            self._pool = pool.SimpleConnectionPool(
                self.minconn,
                self.maxconn,
                dsn=self.dsn,
                connect_timeout=10,
            )
            logger.info("Database connection pool initialised")
        return self._pool

    @contextmanager
    def get_connection(self):
        """Context manager yielding a pooled connection; commits on success, rolls back on error."""
        pg_pool = self.init_pool()
        conn = pg_pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            pg_pool.putconn(conn)

    def _fetchall(self, sql: str, params: Any = None) -> List[Dict[str, Any]]:
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                return list(cur.fetchall())

    def _fetchone(self, sql: str, params: Any = None) -> Optional[Dict[str, Any]]:
        rows = self._fetchall(sql, params)
        return rows[0] if rows else None

    def init_schema(self) -> None:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_POSTGRES_SCHEMA)
        logger.info("PostgreSQL schema ready")

    def ping(self) -> None:
        self._fetchall("SELECT 1 AS ok")

    # ---------- places ----------

    def scan_places(self, vertical: Optional[str] = None) -> List[PlaceRecord]:
        if vertical:
            rows = self._fetchall("SELECT * FROM places WHERE vertical = %(vertical)s", {"vertical": vertical})
        else:
            rows = self._fetchall("SELECT * FROM places")
        return [place_from_row(row) for row in rows]

    def get_place(self, place_id: str, vertical: Optional[str] = None) -> Optional[PlaceRecord]:
        sql = "SELECT * FROM places WHERE id = %(id)s"
        if vertical:
            sql += " AND vertical = %(vertical)s"
        row = self._fetchone(sql, {"id": place_id, "vertical": vertical})
        return place_from_row(row) if row else None

    def get_place_by_slug(self, slug: str, city: str, vertical: Optional[str] = None) -> Optional[PlaceRecord]:
        sql = "SELECT * FROM places WHERE slug = %(slug)s AND city = %(city)s"
        if vertical:
            sql += " AND vertical = %(vertical)s"
        row = self._fetchone(sql, {"slug": slug, "city": city, "vertical": vertical})
        return place_from_row(row) if row else None

    def _unique_slug(self, cur, slug: str, city: str, exclude_id: Optional[str] = None) -> str:
        cur.execute(
            "SELECT slug FROM places WHERE city = %(city)s AND (slug = %(slug)s OR slug LIKE %(prefix)s)"
            " AND id IS DISTINCT FROM %(exclude)s",
            {"city": city, "slug": slug, "prefix": f"{slug}-%", "exclude": exclude_id},
        )
        taken = {row["slug"] for row in cur.fetchall()}
        candidate, counter = slug, 2
        while candidate in taken:
            candidate = f"{slug}-{counter}"
            counter += 1
        return candidate

    def _insert(self, cur, draft: PlaceDraft) -> PlaceRecord:
        slug = self._unique_slug(cur, draft.slug, draft.city)
        record = build_place(draft, place_id=generate_id("place", draft.city), slug=slug, now=utcnow())
        cur.execute(_PG_INSERT_PLACE, _pg_params(record, PLACE_COLUMNS, PLACE_JSON_COLUMNS))
        return record

    def _update(self, cur, existing: PlaceRecord, draft: PlaceDraft, site_refs: Dict[str, str]) -> PlaceRecord:
        record = apply_draft(existing, draft, site_refs, utcnow())
        if record.city != existing.city:
            record.slug = self._unique_slug(cur, record.slug, record.city, exclude_id=record.id)
        cur.execute(_PG_UPDATE_PLACE, _pg_params(record, PLACE_COLUMNS, PLACE_JSON_COLUMNS))
        return record

    def insert_place(self, draft: PlaceDraft) -> PlaceRecord:
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                return self._insert(cur, draft)

    def update_place(self, place_id: str, draft: PlaceDraft) -> Optional[PlaceRecord]:
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute("SELECT * FROM places WHERE id = %(id)s FOR UPDATE", {"id": place_id})
                row = cur.fetchone()
                if row is None:
                    return None
                existing = place_from_row(row)
                return self._update(cur, existing, draft, {**existing.site_refs, **draft.site_refs})

    def _select_by_site_ref(self, cur, site_id: str, external_id: str) -> Optional[PlaceRecord]:
        cur.execute(
            "SELECT * FROM places WHERE site_refs @> %(ref)s ORDER BY created_at, id LIMIT 1",
            {"ref": extras.Json({site_id: external_id})},
        )
        row = cur.fetchone()
        return place_from_row(row) if row else None

    def find_by_site_ref(self, site_id: str, external_id: str) -> Optional[PlaceRecord]:
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                return self._select_by_site_ref(cur, site_id, external_id)

    def upsert_by_site_ref(self, site_id: str, external_id: str, draft: PlaceDraft) -> Tuple[PlaceRecord, bool]:
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                # Serialises concurrent upserts of the same external record for this transaction.
                cur.execute("SELECT pg_advisory_xact_lock(hashtext(%(key)s))", {"key": f"{site_id}:{external_id}"})
                existing = self._select_by_site_ref(cur, site_id, external_id)
                if existing is not None:
                    site_refs = {**existing.site_refs, site_id: external_id}
                    return self._update(cur, existing, draft, site_refs), False
                draft.site_refs = {site_id: external_id}
                return self._insert(cur, draft), True

    def count_places_by_vertical(self) -> Dict[str, int]:
        rows = self._fetchall("SELECT vertical, COUNT(*) AS n FROM places GROUP BY vertical")
        return {row["vertical"]: row["n"] for row in rows}

    # ---------- leads ----------

    def insert_lead(self, lead: LeadRecord) -> LeadRecord:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_PG_INSERT_LEAD, _pg_params(lead, LEAD_COLUMNS, LEAD_JSON_COLUMNS))
        return lead

    def get_lead(self, lead_id: str) -> Optional[LeadRecord]:
        row = self._fetchone("SELECT * FROM leads WHERE id = %(id)s", {"id": lead_id})
        return lead_from_row(row) if row else None

    def update_lead(
        self,
        lead_id: str,
        *,
        status: str,
        assigned_to: Optional[str],
        check: Optional[Callable[[str, str], None]] = None,
    ) -> Optional[LeadRecord]:
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute("SELECT status FROM leads WHERE id = %(id)s FOR UPDATE", {"id": lead_id})
                current = cur.fetchone()
                if current is None:
                    return None
                if check is not None:
                    check(current["status"], status)
                cur.execute(
                    """
                    UPDATE leads SET
                        status = %(status)s,
                        assigned_to = COALESCE(%(assigned_to)s, assigned_to),
                        updated_at = GREATEST(NOW(), created_at)
                    WHERE id = %(id)s
                    RETURNING *
                    """,
                    {"id": lead_id, "status": status, "assigned_to": assigned_to or None},
                )
                return lead_from_row(cur.fetchone())

    def list_leads(
        self,
        *,
        status: Optional[str] = None,
        vertical: Optional[str] = None,
        priority: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[LeadRecord]:
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        clauses = []
        for column, value in (("status", status), ("vertical", vertical), ("priority", priority)):
            if value:
                clauses.append(f"{column} = %({column})s")
                params[column] = value
        sql = "SELECT * FROM leads"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, id DESC LIMIT %(limit)s OFFSET %(offset)s"
        return [lead_from_row(row) for row in self._fetchall(sql, params)]

    def count_leads(self) -> int:
        row = self._fetchone("SELECT COUNT(*) AS n FROM leads")
        return row["n"] if row else 0


def open_store(database_url: str, *, init_schema: bool = True) -> RecordStore:
    """Build the store named by ``database_url`` (``sqlite:///path`` or ``postgres[ql]://...``)."""
    if database_url.startswith(("postgres://", "postgresql://")):
        store: RecordStore = PostgresStore(database_url)
    elif database_url.startswith("sqlite:///"):
        store = SQLiteStore(database_url[len("sqlite:///"):])
    else:
        raise ConfigError(f"Unsupported DATABASE_URL scheme: {database_url.split(':', 1)[0]!r}")

    if init_schema:
        try:
            store.init_schema()
        except (sqlite3.Error, psycopg2.Error) as exc:
            raise ConfigError(f"Could not initialise the record store: {exc}") from exc
    return store
