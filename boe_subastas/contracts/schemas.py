"""
BOE SUBASTAS — Record Contracts
================================
Records passed between pipeline stages within one run. Plain dataclasses;
the run tracker persists RunRecord field by field.

  Candidate     : listing / network / inference output, pool entry
  DetailRecord  : detail walker output, PDF queue input
  QueueItem     : one planned PDF download
  PdfRecord     : stored PDF metadata (boe_subastas_pdfs row)
  RunRecord     : one scrape_runs audit row
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional


# ── Enum-style constants ─────────────────────────────────────────────

SOURCE_DOM = "dom"
SOURCE_NETWORK = "network"
SOURCE_INFERRED = "inferred"

# Pool priority follows this order.
CANDIDATE_SOURCES = (SOURCE_DOM, SOURCE_NETWORK, SOURCE_INFERRED)

STATUS_RUNNING = "running"
STATUS_OK = "ok"
STATUS_DEGRADED = "degraded"
STATUS_ERROR = "error"

TERMINAL_STATUSES = frozenset({STATUS_OK, STATUS_DEGRADED, STATUS_ERROR})

RAW_SOURCE_DETAIL = "BOE_DETAIL"
RAW_SOURCE_LISTING = "BOE_LISTING"


# ── Helpers ──────────────────────────────────────────────────────────

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _uuid4() -> str:
    return str(uuid.uuid4())


# ── Candidate ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Candidate:
    url: str                      # canonical detail URL
    source: str = SOURCE_DOM

    def __post_init__(self):
        if self.source not in CANDIDATE_SOURCES:
            raise ValueError(f"unknown candidate source {self.source!r}")


# ── DetailRecord ─────────────────────────────────────────────────────

@dataclass
class DetailRecord:
    source_url: str
    raw_id: Optional[int]         # None in dry-run (nothing persisted)
    stable_id: Optional[str] = None
    document_links: list[str] = field(default_factory=list)
    lot_sum: Optional[float] = None
    end_date: Optional[date] = None
    asset_type: Optional[str] = None
    auction_id: Optional[int] = None
    checksum: str = ""


# ── QueueItem ────────────────────────────────────────────────────────

@dataclass
class QueueItem:
    record: DetailRecord
    url: str                      # first discovered document link
    kind: str = "pdf"


# ── PdfRecord ────────────────────────────────────────────────────────

@dataclass
class PdfRecord:
    raw_id: int
    stable_id: Optional[str]
    kind: Optional[str]
    file_path: str
    checksum: str
    fetched_at: str = field(default_factory=_now_iso)


# ── RunRecord ────────────────────────────────────────────────────────

@dataclass
class RunRecord:
    run_id: str = field(default_factory=_uuid4)
    pipeline: str = "boe_subastas"
    started_at: str = field(default_factory=_now_iso)
    finished_at: Optional[str] = None
    status: str = STATUS_RUNNING
    stats: dict = field(default_factory=dict)
    error: Optional[str] = None
