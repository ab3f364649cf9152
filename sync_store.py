# Local document store: SQLite + JSON bodies keyed by (collection, doc_id)
import datetime as dt
import json
import sqlite3
from typing import Any, Dict, List, Optional

from sync_config import POS_DB_PATH


def iso_now() -> str:
    """UTC timestamp with millisecond precision, e.g. 2024-01-01T00:00:00.000Z"""
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: Optional[str]) -> Optional[dt.datetime]:
    """Parse an ISO-8601 string (accepting a trailing Z) into an aware datetime."""
    if not value:
        return None
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def connect(db_path: str = POS_DB_PATH) -> sqlite3.Connection:
    # The connection is handed to the event-loop thread, so it is not pinned
    # to the thread that opened it.
    conn = sqlite3.connect(db_path, timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    if db_path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _ensure_documents_table(conn)
    return conn


def _ensure_documents_table(conn: sqlite3.Connection):
    """Make sure the documents table exists."""
    conn.execute("""
    CREATE TABLE IF NOT EXISTS documents (
      collection   TEXT NOT NULL,
      doc_id       TEXT NOT NULL,
      body_json    TEXT NOT NULL,
      written_utc  TEXT NOT NULL,
      PRIMARY KEY (collection, doc_id)
    )
    """)
    conn.execute("""
    CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection)
    """)
    conn.commit()


def _dumps(record: Dict[str, Any]) -> str:
    return json.dumps(record, separators=(",", ":"), default=str)


class DocumentStore:
    """Keyed document store over one SQLite connection.

    The methods are coroutines so callers treat every read and write as a
    suspension point; they must all be awaited from the same event loop.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @classmethod
    def open(cls, db_path: str = POS_DB_PATH) -> "DocumentStore":
        return cls(connect(db_path))

    def close(self):
        self.conn.close()

    async def get_all(self, collection: str) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT body_json FROM documents WHERE collection=? ORDER BY doc_id", (collection,)
        ).fetchall()
        return [json.loads(row["body_json"]) for row in rows]

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute(
            "SELECT body_json FROM documents WHERE collection=? AND doc_id=?", (collection, str(doc_id))
        ).fetchone()
        return json.loads(row["body_json"]) if row else None

    async def put(self, collection: str, doc_id: str, record: Dict[str, Any]):
        """Create or fully replace one document."""
        self.conn.execute("""
        INSERT INTO documents (collection, doc_id, body_json, written_utc) VALUES (?,?,?,?)
        ON CONFLICT(collection, doc_id) DO UPDATE SET body_json=excluded.body_json, written_utc=excluded.written_utc
        """, (collection, str(doc_id), _dumps(record), iso_now()))
        self.conn.commit()

    async def add(self, collection: str, doc_id: str, record: Dict[str, Any]) -> bool:
        """Insert-only write. Returns False (and writes nothing) when the key exists."""
        cur = self.conn.execute(
            "INSERT OR IGNORE INTO documents (collection, doc_id, body_json, written_utc) VALUES (?,?,?,?)",
            (collection, str(doc_id), _dumps(record), iso_now()),
        )
        self.conn.commit()
        return cur.rowcount == 1

    async def update_fields(self, collection: str, doc_id: str, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Merge `partial` into an existing document; raises KeyError when it is missing."""
        current = await self.get(collection, doc_id)
        if current is None:
            raise KeyError(f"{collection}/{doc_id} does not exist")
        current.update(partial)
        await self.put(collection, doc_id, current)
        return current

    async def count(self, collection: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS c FROM documents WHERE collection=?", (collection,)
        ).fetchone()
        return int(row["c"]) if row else 0
