"""
BOE SUBASTAS — Listing Discovery
=================================
Drives the advanced-search form once per run and harvests detail links.

  navigate listing -> block check -> consent (best effort)
  -> clear province filter -> date window today..today+N -> submit
  -> block check -> harvest detail-shaped links -> search session id

Zero links is not an error: wait degraded_wait_seconds and return an empty
result. The search is never re-submitted with different parameters.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Awaitable, Callable, Optional

from bs4 import BeautifulSoup

from boe_subastas.config.settings import ScraperSettings
from boe_subastas.core.budget import RequestBudget
from boe_subastas.core.detector import classify_block
from boe_subastas.core.errors import ErrorKind, ScrapeError
from boe_subastas.core.extract import extract_search_session_id
from boe_subastas.core.normalize import normalize_candidate
from boe_subastas.scrapers.transport import BrowserTransport, PageSnapshot

log = logging.getLogger(__name__)


@dataclass
class ListingResult:
    document: str
    final_url: str
    links: list[str] = field(default_factory=list)
    session_id: Optional[str] = None


def harvest_detail_links(document: str, page_url: str, base_url: str, detail_path: str) -> list[str]:
    """Canonical detail URLs of every anchor on the page, in page order."""
    soup = BeautifulSoup(document or "", "lxml")
    links = []
    for a in soup.find_all("a", href=True):
        canonical = normalize_candidate(a["href"], base_url, detail_path)
        if canonical:
            links.append(canonical)
    return list(dict.fromkeys(links))


class ListingDiscovery:
    def __init__(
        self,
        transport: BrowserTransport,
        settings: ScraperSettings,
        budget: RequestBudget,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        today: Callable[[], date] = date.today,
    ):
        self.transport = transport
        self.settings = settings
        self.budget = budget
        self._sleep = sleep
        self._today = today

    def _check_block(self, snapshot: PageSnapshot) -> None:
        reason = classify_block(snapshot.html, snapshot.url, self.settings.base_url)
        if reason:
            log.error("listing_blocked reason=%s url=%s", reason, snapshot.url)
            raise ScrapeError(ErrorKind.LISTING_BLOCKED, reason, snapshot.url, snapshot.html)

    async def _prepare_form(self) -> None:
        s = self.settings
        consent = await self.transport.click_if_present(s.selector("consent"))
        cleared = await self.transport.fill_if_present(s.selector("province_filter"), "")

        start = self._today()
        end = start + timedelta(days=s.search_window_days)
        date_from = start.strftime(s.date_format)
        date_to = end.strftime(s.date_format)
        await self.transport.fill_if_present(s.selector("date_from"), date_from)
        await self.transport.fill_if_present(s.selector("date_to"), date_to)
        log.info(
            "listing_form consent=%s province_cleared=%s window=%s..%s",
            consent, cleared, date_from, date_to,
        )

    async def discover(self) -> ListingResult:
        s = self.settings
        self.budget.consume(1)
        landing = await self.transport.navigate(s.listing_url)
        self._check_block(landing)

        await self._prepare_form()

        self.budget.consume(1)
        result = await self.transport.submit(s.selector("submit"))
        if result is None:
            log.error("search_form_not_found url=%s", landing.url)
            raise ScrapeError(ErrorKind.SEARCH_FORM_NOT_FOUND, "no-submit-control",
                              landing.url, landing.html)
        self._check_block(result)

        links = harvest_detail_links(result.html, result.url, s.base_url, s.detail_path)
        if not links:
            log.warning(
                "listing_zero_results url=%s waiting=%.0fs",
                result.url, s.degraded_wait_seconds,
            )
            await self._sleep(s.degraded_wait_seconds)
            return ListingResult(document=result.html, final_url=result.url)

        session_id = extract_search_session_id(result.url, result.html)
        if not session_id:
            log.error("missing_session_id url=%s links=%d", result.url, len(links))
            raise ScrapeError(ErrorKind.MISSING_SESSION_ID, "", result.url, result.html)

        log.info("listing_discovered links=%d session=%s", len(links), session_id)
        return ListingResult(
            document=result.html, final_url=result.url, links=links, session_id=session_id
        )
