"""
BOE SUBASTAS — PDF Queue Manager
=================================
Plans and drains the per-run PDF downloads for validated detail records.

Queue:
  - eligible: at least one document link, real-estate asset type when
    real_estate_only is set, end date (when known) within the look-ahead
  - order: soonest end date first (undated last), higher lot sum first
  - capped at pdf_queue_max

Drain:
  - budget decremented once per attempted item, success or failure
  - dry-run logs the intended download and still spends the budget
  - per item: jittered delay, GET first document link, 2xx + PDF
    content-type + size cap, else PdfAborted (recorded, loop continues)
  - the blocking GET runs in a worker thread so the browser session keeps
    its event loop
  - stored at <pdf_dir>/<stable_id>/<sha256>.pdf, row keyed by
    (raw_id, checksum) so re-runs are no-ops; a folder resolving outside
    pdf_dir aborts the item
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

import requests

from boe_subastas.config.settings import ScraperSettings
from boe_subastas.contracts.schemas import DetailRecord, PdfRecord, QueueItem
from boe_subastas.core.detector import is_real_estate
from boe_subastas.core.errors import ErrorKind, ScrapeError, Severity
from boe_subastas.core.extract import document_kind
from boe_subastas.db.database import Repository
from boe_subastas.utils.checksum import sha256_bytes
from boe_subastas.utils.stealth import StealthSession

log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass
class DrainResult:
    downloaded: int = 0
    failed: int = 0
    skipped: int = 0
    deferred: int = 0             # left in the queue once the budget ran out
    budget_left: int = 0
    paths: list[str] = field(default_factory=list)
    failures: dict = field(default_factory=dict)


def queue_sort_key(item: QueueItem):
    record = item.record
    return (
        record.end_date is None,
        record.end_date or date.max,
        -(record.lot_sum or 0.0),
    )


class PdfQueueManager:
    def __init__(
        self,
        http: StealthSession,
        repo: Repository,
        settings: ScraperSettings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.http = http
        self.repo = repo
        self.settings = settings
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.eligible = 0

    # ── Queue ────────────────────────────────────────────────────────

    def _ineligible_reason(self, record: DetailRecord, today: date, horizon: date) -> Optional[str]:
        if not record.document_links:
            return "no-documents"
        if self.settings.real_estate_only and not is_real_estate(record.asset_type):
            return "not-real-estate"
        if record.end_date is not None and not (today <= record.end_date <= horizon):
            return "outside-window"
        return None

    def build_queue(self, records: Iterable[DetailRecord], now: Optional[date] = None) -> list[QueueItem]:
        today = now or date.today()
        horizon = today + timedelta(days=self.settings.pdf_lookahead_days)

        items = []
        for record in records:
            reason = self._ineligible_reason(record, today, horizon)
            if reason:
                log.debug("pdf_ineligible stable_id=%s reason=%s", record.stable_id, reason)
                continue
            url = record.document_links[0]
            items.append(QueueItem(record=record, url=url, kind=document_kind(url)))

        items.sort(key=queue_sort_key)
        self.eligible = len(items)
        queue = items[: self.settings.pdf_queue_max]
        log.info("pdf_queue_built eligible=%d queued=%d horizon=%s",
                 len(items), len(queue), horizon.isoformat())
        return queue

    # ── Download ─────────────────────────────────────────────────────

    def _fetch(self, url: str) -> bytes:
        cap = self.settings.pdf_max_bytes
        try:
            resp = self.http.get(url, stream=True)
        except requests.RequestException as exc:
            raise ScrapeError(ErrorKind.PDF_ABORTED, f"request-failed:{type(exc).__name__}", url)

        try:
            if not 200 <= resp.status_code < 300:
                raise ScrapeError(ErrorKind.PDF_ABORTED, f"http_{resp.status_code}", url)
            content_type = (resp.headers.get("Content-Type") or "").lower()
            if "pdf" not in content_type:
                raise ScrapeError(ErrorKind.PDF_ABORTED, f"content-type:{content_type or 'none'}", url)
            declared = resp.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > cap:
                raise ScrapeError(ErrorKind.PDF_ABORTED, "too-large", url)

            chunks = []
            total = 0
            for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                total += len(chunk)
                if total > cap:
                    raise ScrapeError(ErrorKind.PDF_ABORTED, "too-large", url)
                chunks.append(chunk)
            return b"".join(chunks)
        except requests.RequestException as exc:
            raise ScrapeError(ErrorKind.PDF_ABORTED, f"stream-failed:{type(exc).__name__}", url)
        finally:
            resp.close()

    def _folder_for(self, item: QueueItem) -> Path:
        root = Path(self.settings.pdf_dir).resolve()
        folder = (root / (item.record.stable_id or "unknown")).resolve()
        if folder == root or root not in folder.parents:
            raise ScrapeError(ErrorKind.PDF_ABORTED, "unsafe-path", item.url)
        return folder

    async def download(self, item: QueueItem) -> PdfRecord:
        folder = self._folder_for(item)
        data = await asyncio.to_thread(self._fetch, item.url)
        checksum = sha256_bytes(data)
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / f"{checksum}.pdf"
        if not path.exists():
            path.write_bytes(data)

        pdf = PdfRecord(
            raw_id=item.record.raw_id,
            stable_id=item.record.stable_id,
            kind=item.kind,
            file_path=str(path),
            checksum=checksum,
        )
        added = self.repo.upsert_pdf_record(pdf.raw_id, pdf.stable_id, pdf.kind,
                                            pdf.file_path, pdf.checksum)
        log.info("pdf_stored stable_id=%s bytes=%d new=%s path=%s",
                 pdf.stable_id, len(data), added, path)
        return pdf

    async def drain(self, queue: list[QueueItem], budget: int) -> DrainResult:
        result = DrainResult()
        remaining = max(0, budget)

        for index, item in enumerate(queue):
            if remaining <= 0:
                result.deferred = len(queue) - index
                log.info("pdf_budget_exhausted deferred=%d", result.deferred)
                break
            remaining -= 1

            if self.settings.dry_run:
                result.skipped += 1
                log.info("pdf_dry_run stable_id=%s url=%s", item.record.stable_id, item.url)
                continue

            await self._sleep(self._rng.uniform(self.settings.pdf_delay_min, self.settings.pdf_delay_max))
            try:
                pdf = await self.download(item)
            except ScrapeError as exc:
                if exc.severity is not Severity.SOFT:
                    raise
                result.failed += 1
                result.failures[item.url] = exc.reason
                log.warning("pdf_failed stable_id=%s url=%s reason=%s",
                            item.record.stable_id, item.url, exc.reason)
                continue
            result.downloaded += 1
            result.paths.append(pdf.file_path)

        result.budget_left = remaining
        log.info("pdf_drain_done downloaded=%d failed=%d skipped=%d deferred=%d",
                 result.downloaded, result.failed, result.skipped, result.deferred)
        return result
