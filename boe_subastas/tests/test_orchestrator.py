"""End-to-end runs over the scripted transport: terminal statuses and stats."""

import asyncio
import random
from dataclasses import replace
from pathlib import Path

import pytest

from boe_subastas.core.errors import ErrorKind, ScrapeError
from boe_subastas.jobs.orchestrator import ScrapeOrchestrator
from boe_subastas.scrapers.transport import PageSnapshot
from boe_subastas.tests.fakes import (
    BASE,
    FILLER,
    RESULTS_URL,
    FakeHttp,
    FakeResponse,
    FakeTransport,
    captcha_html,
    detail_html,
    detail_pages,
    detail_url,
    listing_html,
    pdf_response,
)

LISTING_URL = f"{BASE}/subastas_ava.php"


def _site(sub_ids, details=None, response_urls=()):
    """Listing returning sub_ids, plus primary/lot views for each of them."""
    pages = {LISTING_URL: listing_html()}
    for sub_id in sub_ids:
        html = (details or {}).get(sub_id) or detail_html(
            sub_id=sub_id, documents=(f"/documentos/{sub_id}/edicto.pdf",)
        )
        pages.update(detail_pages(sub_id, html=html))
    result = PageSnapshot(url=RESULTS_URL, html=listing_html(tuple(sub_ids)), status=200)
    return FakeTransport(pages=pages, submit_result=result, response_urls=response_urls)


def _orchestrator(settings, repo, transport, sleeper, http=None):
    return ScrapeOrchestrator(
        settings,
        repo,
        http=http or FakeHttp(),
        transport_factory=transport,
        sleep=sleeper,
        clock=lambda: 0.0,
        rng=random.Random(11),
    )


def test_zero_results_is_degraded_after_one_bounded_wait(repo, settings, sleeper):
    transport = _site([])
    orchestrator = _orchestrator(settings, repo, transport, sleeper)

    outcome = asyncio.run(orchestrator.run())

    assert outcome.status == "degraded"
    assert outcome.error is None
    assert transport.navigations == [LISTING_URL]
    assert transport.submits == 1
    assert sleeper.calls == [settings.degraded_wait_seconds]
    assert transport.closed

    row = repo.get_run(outcome.run_id)
    assert row["status"] == "degraded"
    assert row["stats"]["candidates_total"] == 0
    evidence = row["stats"]["evidence"]
    assert any(p.endswith("listing.html") for p in evidence)
    assert any(p.endswith("screenshot.png") for p in evidence)
    assert all(Path(p).exists() for p in evidence)

    listing_rows = repo.conn.execute(
        "SELECT COUNT(*) FROM boe_subastas_raw WHERE fuente = 'BOE_LISTING'"
    ).fetchone()[0]
    assert listing_rows == 1


def test_zero_results_skip_inference_and_detail_visits(repo, settings, sleeper):
    known = "SUB-JA-2026-000100"
    successor = "SUB-JA-2026-000101"
    repo.insert_raw(detail_url(known), detail_html(sub_id=known), "c", "BOE_DETAIL")
    transport = _site([successor], response_urls=(detail_url(successor),))
    transport.submit_result = PageSnapshot(url=RESULTS_URL, html=listing_html(), status=200)
    http = FakeHttp({detail_url(successor): FakeResponse(200, b"x" * 5000, {"Content-Type": "text/html"})})

    outcome = asyncio.run(_orchestrator(settings, repo, transport, sleeper, http).run())

    assert outcome.status == "degraded"
    assert outcome.error is None
    assert [u for u in transport.navigations if "detalleSubasta" in u] == []
    assert http.requests == []
    stats = outcome.stats
    assert stats["zero_results"] is True
    assert stats["links_dom"] == 0
    assert stats["links_network"] == 1
    assert stats["links_inferred"] == 0
    assert stats["candidates_total"] == 0
    assert "listing.html" in " ".join(stats["evidence"])


def test_three_validated_two_discarded_is_ok(repo, settings, sleeper):
    subs = [f"SUB-JA-2026-00010{n}" for n in range(1, 6)]
    details = {
        subs[1]: detail_html(sub_id=subs[1], authority=False),
        subs[3]: detail_html(sub_id=subs[3], asset_type=None),
    }
    transport = _site(subs, details)
    http = FakeHttp({f"{BASE}/documentos/{s}/edicto.pdf": pdf_response() for s in subs})
    orchestrator = _orchestrator(settings, repo, transport, sleeper, http)

    outcome = asyncio.run(orchestrator.run())

    assert outcome.status == "ok"
    stats = repo.get_run(outcome.run_id)["stats"]
    assert stats["candidates_total"] == 5
    assert stats["links_dom"] == 5
    assert stats["details_ok"] == 3
    assert stats["discarded"] == 2
    assert stats["discard_reasons"] == {"missing-authority": 1, "missing-asset-type": 1}
    assert stats["pdf_queued"] == 3
    assert stats["pdfs_downloaded"] == 3
    assert stats["pdfs_failed"] == 0
    assert "evidence" not in stats
    assert http.cookies and http.cookies[0]["name"] == "PHPSESSID"
    assert transport.closed

    detail_rows = repo.conn.execute(
        "SELECT COUNT(*) FROM boe_subastas_raw WHERE fuente = 'BOE_DETAIL'"
    ).fetchone()[0]
    assert detail_rows == 3


def test_captcha_on_detail_aborts_with_error(repo, settings, sleeper):
    subs = ["SUB-JA-2026-1", "SUB-JA-2026-2", "SUB-JA-2026-3"]
    transport = _site(subs, {"SUB-JA-2026-1": captcha_html()})
    orchestrator = _orchestrator(settings, repo, transport, sleeper)

    with pytest.raises(ScrapeError) as err:
        asyncio.run(orchestrator.run())

    assert err.value.kind is ErrorKind.DETAIL_BLOCKED
    detail_visits = [u for u in transport.navigations if "detalleSubasta" in u]
    assert detail_visits == [detail_url("SUB-JA-2026-1")]
    assert transport.closed

    row = repo.get_run(orchestrator.tracker.run_id)
    assert row["status"] == "error"
    assert row["error"].startswith("DetailBlocked:captcha-detected")
    assert row["stats"]["details_ok"] == 0


def test_landing_page_before_any_success_degrades(repo, settings, sleeper):
    landing = f"<html><h1>Portal de Subastas Electrónicas</h1>{FILLER}</html>"
    transport = _site(["SUB-JA-2026-1"], {"SUB-JA-2026-1": landing})

    outcome = asyncio.run(_orchestrator(settings, repo, transport, sleeper).run())

    assert outcome.status == "degraded"
    assert outcome.error.startswith("LandingPage")
    evidence = repo.get_run(outcome.run_id)["stats"]["evidence"]
    assert any(p.endswith("detail.html") for p in evidence)


def test_missing_session_id_is_an_error(repo, settings, sleeper):
    transport = _site(["SUB-JA-2026-1"])
    html = listing_html(("SUB-JA-2026-1",)).replace("idBus=_SESSION42", "x=1")
    transport.submit_result = PageSnapshot(url=LISTING_URL, html=html, status=200)
    orchestrator = _orchestrator(settings, repo, transport, sleeper)

    with pytest.raises(ScrapeError):
        asyncio.run(orchestrator.run())
    assert repo.get_run(orchestrator.tracker.run_id)["status"] == "error"
    assert transport.submits == 1


def test_channels_pool_in_priority_order(repo, settings, sleeper):
    subs = ["SUB-JA-2026-000200", "SUB-JA-2026-000201"]
    transport = _site(
        subs,
        response_urls=(
            f"{BASE}/detalleSubasta.php?idSub={subs[0]}&ver=1&idBus=_S",
            f"{BASE}/detalleSubasta.php?idSub={subs[1]}&ver=1",
        ),
    )
    # listing only shows the first one; the second is seen on the wire
    transport.submit_result = PageSnapshot(
        url=RESULTS_URL, html=listing_html((subs[0],)), status=200
    )

    outcome = asyncio.run(_orchestrator(settings, repo, transport, sleeper).run())

    stats = outcome.stats
    assert stats["candidates_by_source"] == {"dom": 1, "network": 1, "inferred": 0}
    assert stats["pool_duplicates"] == 1
    assert stats["details_ok"] == 2


def test_dry_run_persists_nothing(repo, settings, sleeper):
    subs = ["SUB-JA-2026-1"]
    transport = _site(subs)
    http = FakeHttp()
    orchestrator = _orchestrator(replace(settings, dry_run=True), repo, transport, sleeper, http)

    outcome = asyncio.run(orchestrator.run())

    assert outcome.status == "ok"
    assert repo.conn.execute("SELECT COUNT(*) FROM boe_subastas_raw").fetchone()[0] == 0
    assert outcome.stats["pdfs_skipped"] == 1
    assert http.requests == []


class _CancelledOnSubmit(FakeTransport):
    async def submit(self, selector):
        self.submits += 1
        raise asyncio.CancelledError()


def test_cancelled_run_is_finalized_as_error(repo, settings, sleeper):
    transport = _CancelledOnSubmit(pages={LISTING_URL: listing_html()})
    orchestrator = _orchestrator(settings, repo, transport, sleeper)

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(orchestrator.run())

    row = repo.get_run(orchestrator.tracker.run_id)
    assert row["status"] == "error"
    assert row["error"].startswith("CancelledError")
    assert transport.closed
