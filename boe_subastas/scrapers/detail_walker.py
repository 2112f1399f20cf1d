"""
BOE SUBASTAS — Detail Walker
=============================
Sequential visits of pooled candidates on the run's single browser tab.

Per candidate:
  1. polite delay (uniform visit_delay_min..visit_delay_max)
  2. primary view; block -> DetailBlocked (fatal for the run),
     landing page / missing markers -> validation error (fatal, may degrade)
  3. lot view (ver=3) -> per-lot "Valor subasta" sum
  4. primary view again; this HTML is what gets stored
  5. sha256 of that HTML, lot sum appended as an HTML comment
  6. extended validation: stable id, end date, asset type, authority
     -> soft discard when anything is missing
  7. persist the raw artifact (skipped in dry-run) -> DetailRecord

Run ceilings live here too: runtime overrun is fatal, an exhausted request
budget ends the loop quietly.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional

from boe_subastas.config.settings import ScraperSettings
from boe_subastas.contracts.schemas import RAW_SOURCE_DETAIL, Candidate, DetailRecord
from boe_subastas.core.budget import RequestBudget, RuntimeBudget
from boe_subastas.core.detector import classify_block, has_required_detail_markers, is_landing_page
from boe_subastas.core.errors import ErrorKind, ScrapeError
from boe_subastas.core.extract import (
    auction_number,
    extract_asset_type,
    extract_authority_mention,
    extract_document_links,
    extract_end_date,
    extract_lot_values,
    extract_stable_id,
)
from boe_subastas.core.normalize import LOT_VIEW, with_view
from boe_subastas.db.database import Repository
from boe_subastas.scrapers.transport import BrowserTransport, PageSnapshot
from boe_subastas.utils.checksum import sha256_text

log = logging.getLogger(__name__)

# primary view, lot view, primary view again
NAVIGATIONS_PER_VISIT = 3

STOP_REQUEST_BUDGET = "request-budget"
STOP_MAX_DETAILS = "max-details"


def lot_sum_annotation(lot_sum: float) -> str:
    return f"\n<!-- boe:lot_sum={lot_sum:.2f} -->\n"


@dataclass
class WalkResult:
    records: list[DetailRecord] = field(default_factory=list)
    discarded: int = 0
    discard_reasons: dict = field(default_factory=dict)
    visited: int = 0
    stopped_reason: Optional[str] = None

    @property
    def details_ok(self) -> int:
        return len(self.records)


class DetailWalker:
    def __init__(
        self,
        transport: BrowserTransport,
        repo: Repository,
        settings: ScraperSettings,
        request_budget: RequestBudget,
        runtime_budget: RuntimeBudget,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.transport = transport
        self.repo = repo
        self.settings = settings
        self.request_budget = request_budget
        self.runtime_budget = runtime_budget
        self._sleep = sleep
        self._rng = rng or random.Random()
        # partial counts stay readable after a fatal abort
        self.result = WalkResult()

    async def _open(self, url: str) -> PageSnapshot:
        self.request_budget.consume(1)
        snapshot = await self.transport.navigate(url)
        reason = classify_block(snapshot.html, snapshot.url, self.settings.base_url)
        if reason:
            log.error("detail_blocked reason=%s url=%s", reason, url)
            raise ScrapeError(ErrorKind.DETAIL_BLOCKED, reason, url, snapshot.html)
        return snapshot

    def _missing_fields(self, stable_id, end_date, asset_type, authority) -> list[str]:
        missing = []
        if not stable_id:
            missing.append("missing-stable-id")
        if end_date is None:
            missing.append("missing-end-date")
        if not asset_type:
            missing.append("missing-asset-type")
        if not authority:
            missing.append("missing-authority")
        return missing

    async def visit(self, candidate: Candidate) -> Optional[DetailRecord]:
        """Visit one candidate. None means a soft discard; fatal problems raise."""
        url = candidate.url
        delay = self._rng.uniform(self.settings.visit_delay_min, self.settings.visit_delay_max)
        await self._sleep(delay)

        primary = await self._open(url)
        if is_landing_page(primary.html):
            log.error("detail_landing_page url=%s", url)
            raise ScrapeError(ErrorKind.LANDING_PAGE, "", url, primary.html)
        if not has_required_detail_markers(primary.html):
            log.error("detail_missing_markers url=%s", url)
            raise ScrapeError(ErrorKind.MISSING_DETAIL_MARKERS, "", url, primary.html)

        lots = await self._open(with_view(url, LOT_VIEW))
        lot_values = extract_lot_values(lots.html)
        lot_sum = round(sum(lot_values), 2) if lot_values else None

        final = await self._open(url)
        html = final.html
        checksum = sha256_text(html)
        payload = html + lot_sum_annotation(lot_sum) if lot_sum is not None else html

        stable_id = extract_stable_id(url, html)
        end_date = extract_end_date(html)
        asset_type = extract_asset_type(html)
        authority = extract_authority_mention(html)
        missing = self._missing_fields(stable_id, end_date, asset_type, authority)
        if missing:
            reasons = self.result.discard_reasons
            reasons[missing[0]] = reasons.get(missing[0], 0) + 1
            log.info("detail_discarded url=%s source=%s reasons=%s",
                     url, candidate.source, ",".join(missing))
            return None

        raw_id = None
        if self.settings.dry_run:
            log.info("detail_dry_run url=%s stable_id=%s (not persisted)", url, stable_id)
        else:
            raw_id = self.repo.insert_raw(url, payload, checksum, RAW_SOURCE_DETAIL)

        record = DetailRecord(
            source_url=url,
            raw_id=raw_id,
            stable_id=stable_id,
            document_links=extract_document_links(html, final.url, self.settings.base_url),
            lot_sum=lot_sum,
            end_date=end_date,
            asset_type=asset_type,
            auction_id=auction_number(stable_id),
            checksum=checksum,
        )
        log.info(
            "detail_ok url=%s stable_id=%s end_date=%s lots=%d lot_sum=%s docs=%d",
            url, stable_id, end_date, len(lot_values), lot_sum, len(record.document_links),
        )
        return record

    async def walk(self, candidates: Iterable[Candidate]) -> WalkResult:
        result = self.result
        for candidate in candidates:
            if result.visited >= self.settings.max_details:
                result.stopped_reason = STOP_MAX_DETAILS
                break
            self.runtime_budget.check()
            if not self.request_budget.can_afford(NAVIGATIONS_PER_VISIT):
                result.stopped_reason = STOP_REQUEST_BUDGET
                log.warning("request_budget_exhausted used=%d limit=%d",
                            self.request_budget.used, self.request_budget.limit)
                break

            result.visited += 1
            record = await self.visit(candidate)
            if record is None:
                result.discarded += 1
            else:
                result.records.append(record)

        log.info(
            "walk_done visited=%d ok=%d discarded=%d stopped=%s",
            result.visited, result.details_ok, result.discarded, result.stopped_reason,
        )
        return result
