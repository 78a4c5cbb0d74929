"""
Marketplace — Database Layer
File-based JSON document store with PostgreSQL upgrade path.

Every collection is a list of dict records keyed by `id`. Handlers load the
whole state with get_db(), mutate it in place and persist it with save_db().
"""
import os, json, uuid, math
from datetime import datetime, timezone, timedelta
from marketplace.config import DB_PATH, UPLOAD_DIR, PERSIST_DATA

# ============================================================
# DATABASE URL (PostgreSQL optional, file-based default)
# ============================================================
DATABASE_URL = os.environ.get("DATABASE_URL")

# ============================================================
# EMPTY DB SCHEMA
# ============================================================
EMPTY_DB = {
    "vendors": [], "pending_vendors": [], "denied_vendors": [],
    "otps": [], "approval_tokens": [], "superadmins": [],
    "categories": [], "products": [], "customers": [], "banners": [],
    "activity_log": []
}

# Collections whose records carry an `expiresAt` and are dropped once it passes
TTL_COLLECTIONS = ("otps", "approval_tokens", "denied_vendors")

def _fresh_db():
    """Return a fresh empty database."""
    return json.loads(json.dumps(EMPTY_DB))

def _ensure_collections(db: dict) -> dict:
    for k, v in EMPTY_DB.items():
        if k not in db:
            db[k] = type(v)()
    return db

# ============================================================
# FILE BACKEND
# ============================================================
_db_cache = None

def _file_load():
    global _db_cache
    if PERSIST_DATA and DB_PATH.exists():
        try:
            with open(DB_PATH) as f:
                _db_cache = _ensure_collections(json.load(f))
        except (json.JSONDecodeError, IOError) as e:
            print(f"[DB] Could not read {DB_PATH.name} ({e}), starting empty")
            _db_cache = _fresh_db()
    else:
        _db_cache = _fresh_db()
    return _db_cache

def _file_save(db):
    global _db_cache
    _db_cache = db
    if PERSIST_DATA:
        tmp = DB_PATH.with_suffix(".tmp")
        with open(tmp, "w") as f:
            json.dump(db, f, indent=2, default=str)
        tmp.replace(DB_PATH)

def _file_get():
    if _db_cache is None:
        return _file_load()
    return _db_cache

# ============================================================
# POSTGRES BACKEND (optional)
# ============================================================
_pg_pool = None

def _pg_connect():
    """Initialize PostgreSQL connection pool."""
    global _pg_pool
    if DATABASE_URL and not _pg_pool:
        try:
            from psycopg2.pool import SimpleConnectionPool
            _pg_pool = SimpleConnectionPool(1, 5, DATABASE_URL)
            _pg_init()
            print("[DB] Connected to PostgreSQL")
        except Exception as e:
            print(f"[DB] PostgreSQL connection failed: {e}")
            raise

def _pg_init():
    """Create the state table if it does not exist."""
    conn = _pg_pool.getconn()
    try:
        cur = conn.cursor()
        cur.execute("""
            CREATE TABLE IF NOT EXISTS app_state (
                id TEXT PRIMARY KEY DEFAULT 'main',
                data JSONB NOT NULL DEFAULT '{}',
                updated_at TIMESTAMP DEFAULT NOW()
            )
        """)
        cur.execute("INSERT INTO app_state (id, data) VALUES ('main', %s) ON CONFLICT DO NOTHING",
                    (json.dumps(EMPTY_DB),))
        conn.commit()
    except Exception as e:
        print(f"[DB] pg_init error: {e}")
        conn.rollback()
        raise
    finally:
        _pg_pool.putconn(conn)

def _pg_load():
    conn = _pg_pool.getconn()
    try:
        cur = conn.cursor()
        cur.execute("SELECT data FROM app_state WHERE id='main'")
        row = cur.fetchone()
        return _ensure_collections(row[0]) if row else _fresh_db()
    finally:
        _pg_pool.putconn(conn)

def _pg_save(db):
    conn = _pg_pool.getconn()
    try:
        cur = conn.cursor()
        cur.execute("UPDATE app_state SET data=%s, updated_at=NOW() WHERE id='main'",
                    (json.dumps(db, default=str),))
        conn.commit()
    finally:
        _pg_pool.putconn(conn)

# ============================================================
# PUBLIC API
# ============================================================
if DATABASE_URL:
    print("[DB] Using PostgreSQL backend")
    _pg_connect()
    save_db = _pg_save
    get_db = _pg_load
else:
    print(f"[DB] Using file backend (db.json, persist={PERSIST_DATA})")
    save_db = _file_save
    get_db = _file_get

def reset_db() -> dict:
    """Wipe every collection and persist the empty state."""
    db = _fresh_db()
    save_db(db)
    return db

# ============================================================
# FILE STORAGE
# ============================================================
def save_uploaded_file(filename: str, content: bytes) -> None:
    """Save an uploaded file to local filesystem."""
    path = UPLOAD_DIR / filename
    path.write_bytes(content)

def delete_uploaded_file(filename: str) -> bool:
    path = UPLOAD_DIR / filename
    if path.exists():
        path.unlink()
        return True
    return False

# ============================================================
# IDS & TIMESTAMPS
# ============================================================
def new_id() -> str:
    return uuid.uuid4().hex[:24]

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def iso(dt) -> str:
    return dt.isoformat() if dt else None

def parse_dt(value):
    """ISO string / datetime → aware UTC datetime. None/empty/garbage → None."""
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

def stamp(record: dict, now: datetime = None) -> dict:
    """Set createdAt (first time) and updatedAt."""
    ts = iso(now or utcnow())
    record.setdefault("createdAt", ts)
    record["updatedAt"] = ts
    return record

# ============================================================
# QUERY HELPERS
# ============================================================
def find_by_id(collection: list, rid: str):
    if not rid:
        return None
    return next((r for r in collection if r.get("id") == rid), None)

def find_one(collection: list, **match):
    return next((r for r in collection if all(r.get(k) == v for k, v in match.items())), None)

def remove_where(db: dict, name: str, predicate) -> int:
    """Delete records matching predicate from a collection; return count removed."""
    before = len(db[name])
    db[name] = [r for r in db[name] if not predicate(r)]
    return before - len(db[name])

def get_path(record: dict, dotted: str):
    """Read 'address.city' style paths."""
    value = record
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value

def matches_search(record: dict, term: str, fields: tuple) -> bool:
    """Case-insensitive substring match on any of the given fields (lists included)."""
    if not term:
        return True
    needle = term.strip().lower()
    for f in fields:
        value = get_path(record, f)
        if isinstance(value, list):
            if any(needle in str(v).lower() for v in value):
                return True
        elif value is not None and needle in str(value).lower():
            return True
    return False

def sort_records(records: list, sort_by: str, order: str = "desc") -> list:
    """Stable sort by a (dotted) field; missing values always sort last."""
    present = [r for r in records if get_path(r, sort_by) is not None]
    missing = [r for r in records if get_path(r, sort_by) is None]
    try:
        present.sort(key=lambda r: get_path(r, sort_by), reverse=(order != "asc"))
    except TypeError:
        present.sort(key=lambda r: str(get_path(r, sort_by)), reverse=(order != "asc"))
    return present + missing

def paginate(records: list, page: int = 1, limit: int = 20) -> tuple:
    """Return (page_items, pagination_block)."""
    page = max(1, page)
    limit = max(1, limit)
    total = len(records)
    start = (page - 1) * limit
    return records[start:start + limit], {
        "current": page,
        "pages": math.ceil(total / limit),
        "total": total,
        "hasNext": page * limit < total,
        "hasPrev": page > 1,
    }

def public(record: dict, *hidden) -> dict:
    """Shallow copy without secret fields."""
    drop = set(hidden) | {"password"}
    return {k: v for k, v in record.items() if k not in drop}

# ============================================================
# TTL EMULATION
# ============================================================
def expires_in(now: datetime, **delta) -> str:
    return iso(now + timedelta(**delta))

def purge_expired(db: dict, now: datetime = None) -> dict:
    """Drop OTPs, approval tokens and denied-vendor records past their expiresAt."""
    now = now or utcnow()
    removed = {}
    for name in TTL_COLLECTIONS:
        removed[name] = remove_where(
            db, name, lambda r: (parse_dt(r.get("expiresAt")) or now) < now)
    return removed

# ============================================================
# ACTIVITY LOG
# ============================================================
ACTIVITY_LOG_MAX = 5000

def record_activity(db: dict, action: str, actor: dict = None, details: dict = None,
                    status: str = "success") -> dict:
    """Append an audit entry. actor is the guard context user ({id, role, email})."""
    actor = actor or {}
    entry = {
        "id": new_id(), "action": action,
        "actorId": actor.get("id"), "actorRole": actor.get("role", "system"),
        "actorEmail": actor.get("email"),
        "details": details or {}, "status": status,
        "timestamp": iso(utcnow()),
    }
    db["activity_log"].append(entry)
    if len(db["activity_log"]) > ACTIVITY_LOG_MAX:
        db["activity_log"] = db["activity_log"][-ACTIVITY_LOG_MAX:]
    return entry
