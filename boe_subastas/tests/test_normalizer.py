"""Raw detail pages -> boe_subastas rows."""

from boe_subastas.jobs.normalizer import normalize_from_raw, parse_detail_html
from boe_subastas.tests.fakes import detail_html, detail_url


def test_parse_detail_fields():
    row = parse_detail_html(detail_html(sub_id="SUB-JA-2026-000123"), detail_url("SUB-JA-2026-000123"))

    assert row.identificador == "SUB-JA-2026-000123"
    assert row.tipo_subasta == "JUDICIAL EN VIA DE APREMIO"
    assert row.valor_subasta == "150.000,00 €"
    assert row.importe_deposito == "7.500,00 €"
    assert row.tasacion is None
    assert row.estado == "Activa"
    assert row.estado_detalle is None


def test_status_from_notice_box():
    html = detail_html().replace(
        "<table>", '<div class="caja gris aviso">  Subasta   CANCELADA por resolución </div><table>', 1
    )
    row = parse_detail_html(html, detail_url("SUB-JA-2026-000123"))
    assert row.estado == "Cancelada"
    assert row.estado_detalle == "Subasta CANCELADA por resolución"


def test_required_fields():
    html = "<table><tr><th>Identificador</th><td>SUB-X</td></tr></table>"
    assert parse_detail_html(html, "u") is None


def test_normalize_from_raw_dedupes_newest_first(repo):
    url = detail_url("SUB-JA-2026-000123")
    old = detail_html(sub_id="SUB-JA-2026-000123")
    new = old.replace("150.000,00 €", "140.000,00 €")
    repo.insert_raw(url, old, "c1", "BOE_DETAIL")
    repo.insert_raw(url, new, "c2", "BOE_DETAIL")
    repo.insert_raw(url, "<html>listado</html>", "c3", "BOE_LISTING")
    repo.insert_raw(detail_url("SUB-X"), "<html>roto</html>", "c4", "BOE_DETAIL")

    stats = normalize_from_raw(repo, limit=10)

    assert stats == {"raw": 3, "valid": 2, "upserted": 1}
    rows = repo.conn.execute("SELECT identificador, valor_subasta FROM boe_subastas").fetchall()
    assert [tuple(r) for r in rows] == [("SUB-JA-2026-000123", "140.000,00 €")]

    normalize_from_raw(repo, limit=10)
    assert repo.conn.execute("SELECT COUNT(*) FROM boe_subastas").fetchone()[0] == 1
