"""
BOE SUBASTAS — orchestrator.py

One supervised scrape run, start to terminal status.

Steps:
  1. scrape_runs row inserted as 'running'
  2. browser session acquired for the whole run
  3. listing discovery, network observer subscribed meanwhile; zero search
     results end the run here as degraded (no inference, no detail visits)
  4. candidate pool: dom -> network -> inferred
  5. detail walk (sequential)
  6. PDF queue drained against today's remaining budget (HTTP in a worker
     thread, delays awaited on the run's loop)
  7. terminal status resolved once (ok / degraded / error), evidence saved
     for degraded runs, scrape_runs updated, browser released

Fatal errors are re-raised after the run row is finalized.

Usage:
    python -m boe_subastas.jobs.orchestrator
    python -m boe_subastas.jobs.orchestrator --dry-run --max-details 5
    python -m boe_subastas.jobs.orchestrator --headful --no-pdfs
    python -m boe_subastas.jobs.orchestrator --normalize
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional

from boe_subastas.config.settings import ScraperSettings, load_settings
from boe_subastas.contracts.schemas import (
    RAW_SOURCE_LISTING,
    SOURCE_DOM,
    SOURCE_INFERRED,
    SOURCE_NETWORK,
    STATUS_DEGRADED,
    STATUS_ERROR,
)
from boe_subastas.core.budget import RequestBudget, RuntimeBudget
from boe_subastas.core.errors import ErrorKind, ScrapeError
from boe_subastas.db.database import Repository
from boe_subastas.db.run_tracker import RunTracker, resolve_status
from boe_subastas.jobs.normalizer import normalize_from_raw
from boe_subastas.jobs.pdf_queue import PdfQueueManager
from boe_subastas.scrapers.candidate_pool import CandidatePool
from boe_subastas.scrapers.detail_walker import DetailWalker, WalkResult
from boe_subastas.scrapers.inference import InferenceChannel
from boe_subastas.scrapers.listing import ListingDiscovery, ListingResult
from boe_subastas.scrapers.network_observer import NetworkObserver
from boe_subastas.scrapers.playwright_transport import PlaywrightTransport
from boe_subastas.scrapers.transport import BrowserTransport
from boe_subastas.utils.checksum import sha256_text
from boe_subastas.utils.stealth import StealthSession

log = logging.getLogger(__name__)

PIPELINE = "boe_subastas"


@dataclass
class RunOutcome:
    run_id: str
    status: str
    stats: dict = field(default_factory=dict)
    error: Optional[str] = None


def local_midnight_utc() -> str:
    """Start of the local calendar day, as a UTC ISO timestamp."""
    midnight = datetime.now().astimezone().replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc).isoformat()


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, ScrapeError):
        return str(exc)
    return f"{type(exc).__name__}: {exc}"


class ScrapeOrchestrator:
    def __init__(
        self,
        settings: ScraperSettings,
        repo: Repository,
        http: Optional[StealthSession] = None,
        transport_factory: Callable[[ScraperSettings], BrowserTransport] = PlaywrightTransport,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
        download_pdfs: bool = True,
    ):
        self.settings = settings
        self.repo = repo
        self.http = http or StealthSession(settings.base_url)
        self._transport_factory = transport_factory
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()
        self.download_pdfs = download_pdfs

        self.tracker: Optional[RunTracker] = None
        self.request_budget: Optional[RequestBudget] = None
        self._listing: Optional[ListingResult] = None

    # ── Run ──────────────────────────────────────────────────────────

    async def run(self) -> RunOutcome:
        tracker = self.tracker = RunTracker(self.repo, PIPELINE)
        tracker.start()
        tracker.stats.update(dry_run=self.settings.dry_run, candidates_total=0, details_ok=0)
        self.request_budget = RequestBudget(self.settings.max_requests)
        self._listing = None

        error: Optional[BaseException] = None
        try:
            async with self._transport_factory(self.settings) as transport:
                try:
                    signal = await self._scrape(transport, tracker)
                except Exception as exc:
                    error = signal = exc
                    if isinstance(exc, ScrapeError) and exc.is_fatal:
                        log.error("run_aborted kind=%s reason=%s url=%s",
                                  exc.kind.value, exc.reason, exc.url)
                status = resolve_status(
                    tracker.stats["candidates_total"], tracker.stats["details_ok"], signal
                )
                if status == STATUS_DEGRADED:
                    await self._save_evidence(transport, tracker, error)
                tracker.stats["requests_used"] = self.request_budget.used
                tracker.finish(status, describe_error(error) if error else None)
        except BaseException as exc:
            # setup failures and interruptions (Ctrl+C, cancellation)
            if not tracker.finished:
                tracker.finish(STATUS_ERROR, describe_error(exc))
            raise

        if tracker.record.status == STATUS_ERROR:
            raise error
        return RunOutcome(
            run_id=tracker.run_id,
            status=tracker.record.status,
            stats=dict(tracker.stats),
            error=tracker.record.error,
        )

    async def _scrape(self, transport: BrowserTransport, tracker: RunTracker) -> Optional[ScrapeError]:
        """Run the phases; return an EXPECTED signal instead of raising one."""
        s = self.settings
        stats = tracker.stats
        runtime = RuntimeBudget(s.max_runtime_seconds, self._clock)

        # 1. Listing + network observation
        observer = NetworkObserver(s.candidate_pool_cap, s.base_url, s.detail_path)
        unsubscribe = transport.subscribe_responses(observer)
        try:
            listing = await ListingDiscovery(transport, s, self.request_budget, self._sleep).discover()
        finally:
            unsubscribe()
            network_urls = observer.stop()
        self._listing = listing
        stats["search_session_id"] = listing.session_id
        if listing.document and not s.dry_run:
            stats["listing_raw_id"] = self.repo.insert_raw(
                listing.final_url, listing.document, sha256_text(listing.document),
                RAW_SOURCE_LISTING,
            )

        if not listing.links:
            # the search itself came back empty: no other channel runs
            stats.update(links_dom=0, links_network=len(network_urls), links_inferred=0,
                         candidates_total=0, zero_results=True)
            log.warning("zero_results url=%s network_seen=%d", listing.final_url, len(network_urls))
            return ScrapeError(ErrorKind.ZERO_RESULTS, "no-links", listing.final_url)

        adopted = self.http.adopt_cookies(await transport.cookies())
        log.debug("cookies_adopted count=%d", adopted)

        # 2. Pool, in channel priority order
        pool = CandidatePool(s.candidate_pool_cap, s.base_url, s.detail_path)
        pool.add_many(listing.links, SOURCE_DOM)
        pool.add_many(network_urls, SOURCE_NETWORK)
        inferred = await InferenceChannel(self.repo, self.http, s, self.request_budget).infer_candidates(
            s.inference_lookback
        )
        pool.add_many(inferred, SOURCE_INFERRED)

        stats.update(
            links_dom=len(listing.links),
            links_network=len(network_urls),
            links_inferred=len(inferred),
            candidates_total=len(pool),
            candidates_by_source=pool.count_by_source(),
            pool_rejected=pool.rejected,
            pool_duplicates=pool.duplicates,
            pool_overflow=pool.overflow,
        )
        log.info(
            "candidates_pooled total=%d dom=%d network=%d inferred=%d",
            len(pool), len(listing.links), len(network_urls), len(inferred),
        )
        if not len(pool):
            log.warning("no_candidates session=%s", listing.session_id)
            return None

        # 3. Detail walk
        walker = DetailWalker(
            transport, self.repo, s, self.request_budget, runtime, self._sleep, self._rng
        )
        try:
            walk = await walker.walk(pool.take(s.max_details))
        finally:
            self._record_walk(stats, walker.result)

        # 4. PDFs
        if self.download_pdfs and walk.records:
            await self._drain_pdfs(stats, walk)
        return None

    def _record_walk(self, stats: dict, walk: WalkResult) -> None:
        stats.update(
            details_visited=walk.visited,
            details_ok=walk.details_ok,
            discarded=walk.discarded,
            discard_reasons=dict(walk.discard_reasons),
            walk_stopped=walk.stopped_reason,
        )

    async def _drain_pdfs(self, stats: dict, walk: WalkResult) -> None:
        s = self.settings
        stored_today = self.repo.count_pdfs_since(local_midnight_utc())
        budget = max(0, s.pdf_daily_budget - stored_today)

        manager = PdfQueueManager(self.http, self.repo, s, self._sleep, self._rng)
        queue = manager.build_queue(walk.records)
        drained = await manager.drain(queue, budget)
        stats.update(
            pdf_eligible=manager.eligible,
            pdf_queued=len(queue),
            pdf_budget=budget,
            pdfs_downloaded=drained.downloaded,
            pdfs_failed=drained.failed,
            pdfs_skipped=drained.skipped,
            pdfs_deferred=drained.deferred,
        )

    # ── Evidence ─────────────────────────────────────────────────────

    async def _save_evidence(
        self, transport: BrowserTransport, tracker: RunTracker, error: Optional[BaseException]
    ) -> None:
        folder = Path(self.settings.evidence_dir) / tracker.run_id
        folder.mkdir(parents=True, exist_ok=True)
        paths = []

        if isinstance(error, ScrapeError) and error.document:
            page = folder / "detail.html"
            page.write_text(error.document, encoding="utf-8")
            paths.append(str(page))
        if self._listing is not None and self._listing.document:
            page = folder / "listing.html"
            page.write_text(self._listing.document, encoding="utf-8")
            paths.append(str(page))

        shot = folder / "screenshot.png"
        if await transport.screenshot(str(shot)):
            paths.append(str(shot))

        tracker.stats["evidence"] = paths
        log.warning("degraded_evidence run_id=%s files=%d dir=%s", tracker.run_id, len(paths), folder)


# ── CLI ──────────────────────────────────────────────────────────────

def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="BOE subastas supervised scrape run")
    parser.add_argument("--dry-run", action="store_true", help="Visit and validate, persist nothing")
    parser.add_argument("--headful", action="store_true", help="Show the browser window")
    parser.add_argument("--max-details", type=int, default=None, help="Override max details per run")
    parser.add_argument("--config", default=None, help="Settings YAML (default: packaged boe.yaml)")
    parser.add_argument("--no-pdfs", action="store_true", help="Skip the PDF queue")
    parser.add_argument("--normalize", action="store_true", help="Run the normalizer after the scrape")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    settings = load_settings(
        args.config,
        dry_run=True if args.dry_run else None,
        headless=False if args.headful else None,
        max_details=args.max_details,
    )

    with Repository(settings.db_path) as repo, StealthSession(settings.base_url) as http:
        orchestrator = ScrapeOrchestrator(settings, repo, http=http, download_pdfs=not args.no_pdfs)
        try:
            outcome = asyncio.run(orchestrator.run())
        except ScrapeError as exc:
            log.error("run_aborted error=%s", exc)
            return 1

        log.info("run_complete run_id=%s status=%s", outcome.run_id, outcome.status)
        if args.normalize and not settings.dry_run:
            normalize_from_raw(repo)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
