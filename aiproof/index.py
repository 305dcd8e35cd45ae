"""
Discovery index: output hash -> signed provenance cids.

A hint for "paste content, find its provenance". Nothing here is trusted;
every candidate it returns is verified like any other envelope.
"""

import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Union


class DiscoveryIndex:
    def record(self, output_hash: str, provenance_cid: str) -> None:
        raise NotImplementedError

    def lookup(self, output_hash: str) -> List[str]:
        raise NotImplementedError


class InMemoryDiscoveryIndex(DiscoveryIndex):
    """Process-local index, for tests and single-process deployments."""

    def __init__(self):
        self._entries: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def record(self, output_hash: str, provenance_cid: str) -> None:
        key = output_hash.lower()
        with self._lock:
            cids = self._entries.setdefault(key, [])
            if provenance_cid not in cids:
                cids.append(provenance_cid)

    def lookup(self, output_hash: str) -> List[str]:
        with self._lock:
            return list(self._entries.get(output_hash.lower(), []))


class SqliteDiscoveryIndex(DiscoveryIndex):
    """
    SQLite-backed index shared by workers on one host.

    Connections are thread-local and reused; WAL mode lets readers run
    alongside the single writer.
    """

    def __init__(self, path: Union[str, Path] = "data/aiproof_index.db"):
        self.path = Path(path)
        self._local = threading.local()
        self.init_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            self._local.conn = conn
        return conn

    @contextmanager
    def _transaction(self):
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def init_db(self) -> None:
        """Create the schema. Safe to call multiple times."""
        with self._transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS provenance_index (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                output_hash TEXT NOT NULL,
                provenance_cid TEXT NOT NULL,
                recorded_at INTEGER NOT NULL,
                UNIQUE(output_hash, provenance_cid)
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_provenance_index_hash
            ON provenance_index(output_hash);""")

    def record(self, output_hash: str, provenance_cid: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO provenance_index(output_hash, provenance_cid, recorded_at) VALUES(?,?,?)",
                (output_hash.lower(), provenance_cid, int(time.time())),
            )

    def lookup(self, output_hash: str) -> List[str]:
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT provenance_cid FROM provenance_index WHERE output_hash=? ORDER BY seq",
            (output_hash.lower(),),
        ).fetchall()
        return [r[0] for r in rows]

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
