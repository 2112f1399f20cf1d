"""
BOE SUBASTAS — Run Tracker
===========================
One scrape_runs row per orchestrator invocation.

  start()   → INSERT status='running'
  stats     → in-memory bag, enriched during the run
  finish()  → single UPDATE with terminal status + stats + error

finish() can only happen once; a second call is a programming error.
resolve_status() is the single dispatch point that turns the run outcome
(counts + the error that stopped it, if any) into ok / degraded / error.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from boe_subastas.contracts.schemas import (
    STATUS_DEGRADED,
    STATUS_ERROR,
    STATUS_OK,
    TERMINAL_STATUSES,
    RunRecord,
)
from boe_subastas.core.errors import ScrapeError, Severity
from boe_subastas.db.database import Repository

log = logging.getLogger(__name__)


def resolve_status(
    candidates_total: int,
    details_ok: int,
    error: Optional[BaseException] = None,
) -> str:
    """Map a finished (or aborted) run onto its terminal status.

    ok        : at least one validated detail and no error
    degraded  : nothing usable (zero candidates or all discarded), an EXPECTED
                signal such as zero search results, or a validation-only
                failure before any detail validated
    error     : every other FATAL kind (blocks, missing session id, runtime
                ceiling) and anything that is not a ScrapeError

    `error` may be a signal that was never raised (EXPECTED severity).
    """
    if error is None or (isinstance(error, ScrapeError) and error.severity is Severity.SOFT):
        if candidates_total == 0 or details_ok == 0:
            return STATUS_DEGRADED
        return STATUS_OK
    if not isinstance(error, ScrapeError):
        return STATUS_ERROR
    if error.severity is Severity.EXPECTED:
        return STATUS_DEGRADED
    if error.is_validation and details_ok == 0:
        return STATUS_DEGRADED
    return STATUS_ERROR


class RunTracker:
    """Owns the run's audit row and statistics bag."""

    def __init__(self, repo: Repository, pipeline: str = "boe_subastas"):
        self.repo = repo
        self.record = RunRecord(pipeline=pipeline)
        self._started = False

    @property
    def run_id(self) -> str:
        return self.record.run_id

    @property
    def stats(self) -> dict:
        return self.record.stats

    @property
    def finished(self) -> bool:
        return self.record.status in TERMINAL_STATUSES

    def start(self) -> RunRecord:
        self.repo.insert_run_record(self.run_id, self.record.pipeline, self.record.started_at)
        self._started = True
        log.info("run_started run_id=%s pipeline=%s", self.run_id, self.record.pipeline)
        return self.record

    def incr(self, key: str, n: int = 1) -> None:
        self.stats[key] = self.stats.get(key, 0) + n

    def finish(self, status: str, error: Optional[str] = None) -> RunRecord:
        if not self._started:
            raise RuntimeError("run was never started")
        if self.finished:
            raise RuntimeError(f"run {self.run_id} already finalized as {self.record.status}")
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"not a terminal status: {status!r}")

        finished_at = datetime.now(timezone.utc).isoformat()
        self.repo.update_run_record(self.run_id, status, self.stats, error, finished_at)
        self.record.status = status
        self.record.error = error
        self.record.finished_at = finished_at

        level = logging.ERROR if status == STATUS_ERROR else logging.INFO
        log.log(level, "run_finished run_id=%s status=%s error=%s stats=%s",
                self.run_id, status, error, self.stats)
        return self.record
