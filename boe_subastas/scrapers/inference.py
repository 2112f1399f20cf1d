"""
BOE SUBASTAS — Inference Channel
=================================
Gap-filling discovery independent of the listing UI. BOE identifiers are
sequential per (authority code, year) prefix, so the successors of recently
stored ids are good guesses for auctions the search may have omitted.

  1. newest N stored detail URLs carrying idSub
  2. SUB-XX-YYYY-NNNN -> ("SUB-XX-YYYY-", "NNNN"), max suffix per prefix
  3. propose max+1 and max+2, zero padding preserved
  4. plain GET per proposal; keep 200 responses with a big enough body

Every check costs one unit of the run request budget. Checks run in a
worker thread; the caller's event loop keeps serving the browser.
"""

from __future__ import annotations

import asyncio
import logging

import requests

from boe_subastas.config.settings import ScraperSettings
from boe_subastas.core.budget import RequestBudget
from boe_subastas.core.extract import split_stable_id
from boe_subastas.core.normalize import ID_PARAM, normalize_candidate, sub_id_of
from boe_subastas.db.database import Repository
from boe_subastas.utils.stealth import StealthSession

log = logging.getLogger(__name__)

SUCCESSOR_STEPS = (1, 2)


def propose_successors(stable_ids, steps=SUCCESSOR_STEPS) -> list[str]:
    """Successor ids for the highest numeric suffix seen under each prefix."""
    highest: dict[str, tuple[int, int]] = {}
    for stable_id in stable_ids:
        parts = split_stable_id(stable_id)
        if parts is None:
            continue
        prefix, suffix = parts
        number, width = int(suffix), len(suffix)
        if prefix not in highest or number > highest[prefix][0]:
            highest[prefix] = (number, width)

    proposals = []
    for prefix, (number, width) in highest.items():
        for step in steps:
            proposals.append(f"{prefix}{number + step:0{width}d}")
    return proposals


class InferenceChannel:
    def __init__(
        self,
        repo: Repository,
        http: StealthSession,
        settings: ScraperSettings,
        budget: RequestBudget,
    ):
        self.repo = repo
        self.http = http
        self.settings = settings
        self.budget = budget
        self.checked = 0

    def _detail_url(self, stable_id: str) -> str | None:
        return normalize_candidate(
            f"{self.settings.detail_path}?{ID_PARAM}={stable_id}",
            self.settings.base_url,
            self.settings.detail_path,
        )

    async def _exists(self, url: str) -> bool:
        self.budget.consume(1)
        self.checked += 1
        try:
            resp = await asyncio.to_thread(self.http.get, url)
        except requests.RequestException as exc:
            log.warning("inference_check_failed url=%s error=%s", url, exc)
            return False
        size = len(resp.content or b"")
        if resp.status_code != 200 or size < self.settings.inference_min_bytes:
            log.debug("inference_miss url=%s status=%s bytes=%d", url, resp.status_code, size)
            return False
        return True

    async def infer_candidates(self, lookback: int | None = None) -> list[str]:
        lookback = self.settings.inference_lookback if lookback is None else lookback
        if lookback <= 0:
            return []

        recent = self.repo.recent_detail_urls(lookback)
        known = {normalize_candidate(u, self.settings.base_url, self.settings.detail_path)
                 for u in self.repo.known_detail_urls()}
        stable_ids = [(sub_id_of(u) or "").upper() for u in recent]

        found: list[str] = []
        for stable_id in propose_successors(stable_ids):
            url = self._detail_url(stable_id)
            if url is None or url in known or url in found:
                continue
            if not self.budget.can_afford(1):
                log.info("inference_budget_exhausted checked=%d", self.checked)
                break
            if await self._exists(url):
                found.append(url)

        log.info(
            "inference_done history=%d checked=%d found=%d",
            len(recent), self.checked, len(found),
        )
        return found
