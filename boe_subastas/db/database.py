"""
BOE SUBASTAS — Database Abstraction Layer
==========================================
SQLite repository. All queries go through this module.

One Repository is opened per process run by the orchestrator CLI, passed
explicitly to every component that persists or reads history, and closed
at run end. The connection is created lazily on first use.

Idempotency guarantees the pipeline relies on:
  - boe_subastas_pdfs UNIQUE(raw_id, checksum)   : re-downloads are no-ops
  - boe_subastas UNIQUE(identificador)           : normalizer upserts
  - scrape_runs status CHECK                     : only known statuses
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS boe_subastas_raw (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    fuente      TEXT NOT NULL DEFAULT 'BOE',
    fetched_at  TEXT NOT NULL,
    url         TEXT NOT NULL,
    payload_raw TEXT NOT NULL,
    checksum    TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_raw_fuente ON boe_subastas_raw(fuente, id);

CREATE TABLE IF NOT EXISTS boe_subastas_pdfs (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    raw_id      INTEGER NOT NULL REFERENCES boe_subastas_raw(id),
    boe_uid     TEXT,
    pdf_type    TEXT,
    file_path   TEXT NOT NULL,
    checksum    TEXT NOT NULL,
    fetched_at  TEXT NOT NULL,
    UNIQUE (raw_id, checksum)
);

CREATE TABLE IF NOT EXISTS scrape_runs (
    run_id      TEXT PRIMARY KEY,
    pipeline    TEXT NOT NULL,
    started_at  TEXT NOT NULL,
    finished_at TEXT,
    status      TEXT NOT NULL CHECK (status IN ('running', 'ok', 'degraded', 'error')),
    stats_json  TEXT NOT NULL DEFAULT '{}',
    error       TEXT
);

CREATE TABLE IF NOT EXISTS boe_subastas (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    normalized_at    TEXT NOT NULL,
    url              TEXT NOT NULL,
    identificador    TEXT NOT NULL UNIQUE,
    tipo_subasta     TEXT NOT NULL,
    estado           TEXT,
    estado_detalle   TEXT,
    valor_subasta    TEXT,
    tasacion         TEXT,
    importe_deposito TEXT,
    checksum         TEXT NOT NULL
);
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Repository:
    """SQLite-backed persistence for raw pages, PDFs, runs and normalized rows."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn: Optional[sqlite3.Connection] = None

    # ── Connection management ────────────────────────────────────────

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, timeout=30)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.executescript(SCHEMA_SQL)
            conn.commit()
            self._conn = conn
            log.debug("Database ready at %s", self.db_path)
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> Repository:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # ── Raw artifacts ────────────────────────────────────────────────

    def insert_raw(self, url: str, payload: str, checksum: str, source: str = "BOE") -> int:
        """Store one fetched page and return its identity."""
        cur = self.conn.execute(
            """INSERT INTO boe_subastas_raw (fuente, fetched_at, url, payload_raw, checksum)
               VALUES (?, ?, ?, ?, ?)""",
            [source, _now_iso(), url, payload, checksum],
        )
        self.conn.commit()
        return int(cur.lastrowid)

    def recent_detail_urls(self, limit: int, source: str = "BOE_DETAIL") -> list[str]:
        """Newest-first detail URLs that carry the idSub parameter."""
        rows = self.conn.execute(
            """SELECT url FROM boe_subastas_raw
               WHERE fuente = ? AND url LIKE '%idSub=%'
               ORDER BY id DESC
               LIMIT ?""",
            [source, int(limit)],
        ).fetchall()
        return [r["url"] for r in rows]

    def known_detail_urls(self, source: str = "BOE_DETAIL") -> set[str]:
        rows = self.conn.execute(
            "SELECT DISTINCT url FROM boe_subastas_raw WHERE fuente = ?", [source]
        ).fetchall()
        return {r["url"] for r in rows}

    def raw_details(self, limit: int, source: str = "BOE_DETAIL") -> list[sqlite3.Row]:
        return self.conn.execute(
            """SELECT id, url, payload_raw FROM boe_subastas_raw
               WHERE fuente = ?
               ORDER BY id DESC
               LIMIT ?""",
            [source, int(limit)],
        ).fetchall()

    # ── PDFs ─────────────────────────────────────────────────────────

    def upsert_pdf_record(
        self,
        raw_id: int,
        stable_id: Optional[str],
        kind: Optional[str],
        file_path: str,
        checksum: str,
    ) -> bool:
        """INSERT OR IGNORE on (raw_id, checksum). Returns True if a row was added."""
        rows = self.conn.execute(
            """INSERT OR IGNORE INTO boe_subastas_pdfs
                   (raw_id, boe_uid, pdf_type, file_path, checksum, fetched_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            [raw_id, stable_id, kind, file_path, checksum, _now_iso()],
        ).rowcount
        self.conn.commit()
        return rows > 0

    def count_pdfs_since(self, since_iso: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM boe_subastas_pdfs WHERE fetched_at >= ?", [since_iso]
        ).fetchone()
        return int(row[0] or 0)

    # ── Runs ─────────────────────────────────────────────────────────

    def insert_run_record(self, run_id: str, pipeline: str, started_at: str) -> None:
        self.conn.execute(
            """INSERT INTO scrape_runs (run_id, pipeline, started_at, status, stats_json)
               VALUES (?, ?, ?, 'running', '{}')""",
            [run_id, pipeline, started_at],
        )
        self.conn.commit()

    def update_run_record(
        self,
        run_id: str,
        status: str,
        stats: dict,
        error: Optional[str] = None,
        finished_at: Optional[str] = None,
    ) -> None:
        """Terminal write: status, stats and error land in one statement."""
        updated = self.conn.execute(
            """UPDATE scrape_runs
               SET status = ?, stats_json = ?, error = ?, finished_at = ?
               WHERE run_id = ? AND status = 'running'""",
            [status, json.dumps(stats, default=str, sort_keys=True), error,
             finished_at or _now_iso(), run_id],
        ).rowcount
        self.conn.commit()
        if updated != 1:
            raise RuntimeError(f"scrape_runs {run_id} is not in 'running' state")

    def get_run(self, run_id: str) -> Optional[dict]:
        row = self.conn.execute(
            "SELECT * FROM scrape_runs WHERE run_id = ?", [run_id]
        ).fetchone()
        if row is None:
            return None
        data = dict(row)
        data["stats"] = json.loads(data.pop("stats_json") or "{}")
        return data

    # ── Normalized auctions ──────────────────────────────────────────

    def upsert_normalized(self, rows: list[dict]) -> int:
        if not rows:
            return 0
        now = _now_iso()
        with self.conn:
            for row in rows:
                self.conn.execute(
                    """INSERT INTO boe_subastas
                           (normalized_at, url, identificador, tipo_subasta, estado,
                            estado_detalle, valor_subasta, tasacion, importe_deposito, checksum)
                       VALUES (?,?,?,?,?,?,?,?,?,?)
                       ON CONFLICT(identificador) DO UPDATE SET
                           url              = excluded.url,
                           tipo_subasta     = excluded.tipo_subasta,
                           estado           = excluded.estado,
                           estado_detalle   = excluded.estado_detalle,
                           valor_subasta    = excluded.valor_subasta,
                           tasacion         = excluded.tasacion,
                           importe_deposito = excluded.importe_deposito,
                           checksum         = excluded.checksum,
                           normalized_at    = excluded.normalized_at
                    """,
                    [
                        now, row["url"], row["identificador"], row["tipo_subasta"],
                        row.get("estado"), row.get("estado_detalle"),
                        row.get("valor_subasta"), row.get("tasacion"),
                        row.get("importe_deposito"), row["checksum"],
                    ],
                )
        return len(rows)
