"""Sequential-id inference channel."""

import asyncio
import threading

import requests

from boe_subastas.core.budget import RequestBudget
from boe_subastas.scrapers.inference import InferenceChannel, propose_successors
from boe_subastas.tests.fakes import FakeHttp, FakeResponse, detail_url

BIG_PAGE = FakeResponse(200, b"x" * 5000, {"Content-Type": "text/html"})
SMALL_PAGE = FakeResponse(200, b"x" * 100, {"Content-Type": "text/html"})


def _store(repo, *sub_ids):
    for sub_id in sub_ids:
        repo.insert_raw(detail_url(sub_id), "<html></html>", "c", "BOE_DETAIL")


def test_successors_use_highest_suffix_per_prefix_and_keep_padding():
    proposals = propose_successors([
        "SUB-JA-2026-000123", "SUB-JA-2026-000120", "SUB-MA-2025-99", "garbage", None,
    ])
    assert proposals == [
        "SUB-JA-2026-000124", "SUB-JA-2026-000125",
        "SUB-MA-2025-100", "SUB-MA-2025-101",
    ]


def test_keeps_only_existing_large_pages(repo, settings):
    _store(repo, "SUB-JA-2026-000123")
    http = FakeHttp({
        detail_url("SUB-JA-2026-000124"): BIG_PAGE,
        detail_url("SUB-JA-2026-000125"): SMALL_PAGE,
    })
    budget = RequestBudget(150)

    found = asyncio.run(InferenceChannel(repo, http, settings, budget).infer_candidates(20))

    assert found == [detail_url("SUB-JA-2026-000124")]
    assert budget.used == 2


def test_skips_urls_already_stored_outside_the_lookback(repo, settings):
    _store(repo, "SUB-JA-2026-000124", "SUB-JA-2026-000123")
    http = FakeHttp({detail_url("SUB-JA-2026-000125"): BIG_PAGE})

    found = asyncio.run(InferenceChannel(repo, http, settings, RequestBudget(150)).infer_candidates(1))

    assert found == [detail_url("SUB-JA-2026-000125")]
    assert http.requests == [detail_url("SUB-JA-2026-000125")]


def test_network_errors_drop_the_candidate(repo, settings):
    _store(repo, "SUB-JA-2026-000123")
    http = FakeHttp({
        detail_url("SUB-JA-2026-000124"): requests.ConnectionError("reset"),
        detail_url("SUB-JA-2026-000125"): BIG_PAGE,
    })
    found = asyncio.run(InferenceChannel(repo, http, settings, RequestBudget(150)).infer_candidates(20))
    assert found == [detail_url("SUB-JA-2026-000125")]


def test_respects_request_budget(repo, settings):
    _store(repo, "SUB-JA-2026-000123")
    http = FakeHttp({detail_url("SUB-JA-2026-000124"): BIG_PAGE, detail_url("SUB-JA-2026-000125"): BIG_PAGE})
    budget = RequestBudget(1)

    found = asyncio.run(InferenceChannel(repo, http, settings, budget).infer_candidates(20))

    assert found == [detail_url("SUB-JA-2026-000124")]
    assert len(http.requests) == 1


def test_empty_history_or_zero_lookback(repo, settings):
    http = FakeHttp()
    channel = InferenceChannel(repo, http, settings, RequestBudget(150))
    assert asyncio.run(channel.infer_candidates(20)) == []
    _store(repo, "SUB-JA-2026-000123")
    assert asyncio.run(channel.infer_candidates(0)) == []
    assert http.requests == []


def test_checks_run_off_the_event_loop_thread(repo, settings):
    _store(repo, "SUB-JA-2026-000123")
    http = FakeHttp({detail_url("SUB-JA-2026-000124"): BIG_PAGE})

    asyncio.run(InferenceChannel(repo, http, settings, RequestBudget(150)).infer_candidates(20))

    assert http.threads
    assert threading.get_ident() not in http.threads
