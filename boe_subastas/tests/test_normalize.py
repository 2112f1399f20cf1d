"""Canonical detail URLs."""

import pytest

from boe_subastas.core.normalize import normalize_candidate, sub_id_of, with_view
from boe_subastas.tests.fakes import BASE

CANONICAL = f"{BASE}/detalleSubasta.php?idSub=SUB-JA-2026-000123&ver=1"


@pytest.mark.parametrize("raw", [
    "./detalleSubasta.php?idSub=SUB-JA-2026-000123&ver=1&idBus=_ABC&numPagBus=",
    "detalleSubasta.php?idSub=SUB-JA-2026-000123",
    "/detalleSubasta.php?ver=1&idSub=SUB-JA-2026-000123#top",
    "HTTPS://SUBASTAS.BOE.ES/detalleSubasta.php?idSub=SUB-JA-2026-000123",
    CANONICAL,
])
def test_variants_share_one_canonical_form(raw):
    assert normalize_candidate(raw) == CANONICAL


@pytest.mark.parametrize("raw", [
    None,
    "",
    "   ",
    "./detalleSubasta.php?ver=1",
    "./detalleSubasta.php?idSub=&ver=1",
    "/subastas_ava.php?idSub=SUB-JA-2026-000123",
    "https://www.boe.es/detalleSubasta.php?idSub=SUB-JA-2026-000123",
    "mailto:info@boe.es",
    "javascript:void(0)",
])
def test_rejects_non_detail_urls(raw):
    assert normalize_candidate(raw) is None


@pytest.mark.parametrize("raw", [
    "./detalleSubasta.php?idSub=SUB-JA-2026-000123&ver=3&idBus=x",
    "detalleSubasta.php?idSub=SUB-MA-2025-42",
    "/detalleSubasta.php?idSub=sub_ja-7",
])
def test_idempotent(raw):
    once = normalize_candidate(raw)
    assert once is not None
    assert normalize_candidate(once) == once


def test_existing_view_is_kept():
    url = normalize_candidate("detalleSubasta.php?idSub=X&ver=5")
    assert url.endswith("idSub=X&ver=5")


def test_with_view_and_sub_id():
    lot = with_view(CANONICAL, "3")
    assert lot == f"{BASE}/detalleSubasta.php?idSub=SUB-JA-2026-000123&ver=3"
    assert normalize_candidate(lot) == lot
    assert sub_id_of(lot) == "SUB-JA-2026-000123"
    assert sub_id_of(f"{BASE}/subastas_ava.php") is None


@pytest.mark.parametrize("sub_id", [
    "../../../escaped",
    "..%2F..%2Fescaped",
    "SUB-JA-2026-1/../../x",
    "A%20B",
    "SUB-JA-2026-1%0A",
])
def test_rejects_ids_that_are_not_plain_tokens(sub_id):
    assert normalize_candidate(f"detalleSubasta.php?idSub={sub_id}") is None
