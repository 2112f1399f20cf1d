"""
BOE SUBASTAS — Raw -> normalized job

Reads stored BOE_DETAIL pages and upserts one boe_subastas row per auction
identifier. Never touches the raw table.

Usage:
    python -m boe_subastas.jobs.normalizer
    python -m boe_subastas.jobs.normalizer --limit 500
"""

from __future__ import annotations

import argparse
import logging
import re
from dataclasses import asdict, dataclass
from typing import Optional

from bs4 import BeautifulSoup

from boe_subastas.config.settings import load_settings
from boe_subastas.contracts.schemas import RAW_SOURCE_DETAIL
from boe_subastas.db.database import Repository
from boe_subastas.utils.checksum import sha256_text

log = logging.getLogger(__name__)

STATUS_BOX_SELECTOR = ".caja.gris.aviso"


@dataclass
class NormalizedAuction:
    url: str
    identificador: str
    tipo_subasta: str
    estado: Optional[str]
    estado_detalle: Optional[str]
    valor_subasta: Optional[str]
    tasacion: Optional[str]
    importe_deposito: Optional[str]
    checksum: str

    def to_dict(self) -> dict:
        return asdict(self)


def _value_by_th(soup: BeautifulSoup, label: str) -> Optional[str]:
    wanted = label.lower()
    for th in soup.find_all("th"):
        if th.get_text(" ", strip=True).lower() != wanted:
            continue
        row = th.find_parent("tr")
        td = row.find("td") if row is not None else None
        if td is None:
            return None
        text = re.sub(r"\s+", " ", td.get_text(" ")).strip()
        return text or None
    return None


def _status(notice: Optional[str]) -> str:
    lower = (notice or "").lower()
    if "cancelad" in lower:
        return "Cancelada"
    if "finaliz" in lower:
        return "Finalizada"
    return "Activa"


def parse_detail_html(html: str, url: str) -> Optional[NormalizedAuction]:
    """Normalized row for one detail page, or None if required fields are missing.

    Required: identificador, tipo de subasta, and valor subasta or tasación.
    """
    soup = BeautifulSoup(html or "", "lxml")
    box = soup.select_one(STATUS_BOX_SELECTOR)
    notice = re.sub(r"\s+", " ", box.get_text(" ")).strip() if box else ""

    row = NormalizedAuction(
        url=url,
        identificador=_value_by_th(soup, "Identificador") or "",
        tipo_subasta=_value_by_th(soup, "Tipo de subasta") or "",
        estado=_status(notice),
        estado_detalle=notice or None,
        valor_subasta=_value_by_th(soup, "Valor subasta"),
        tasacion=_value_by_th(soup, "Tasación"),
        importe_deposito=_value_by_th(soup, "Importe del depósito"),
        checksum=sha256_text(html or ""),
    )
    if not (row.identificador and row.tipo_subasta and (row.valor_subasta or row.tasacion)):
        return None
    return row


def normalize_from_raw(repo: Repository, limit: int = 200) -> dict:
    raw_rows = repo.raw_details(limit, RAW_SOURCE_DETAIL)

    # raw_details is newest first, so the first row seen per id wins
    by_id: dict[str, NormalizedAuction] = {}
    parsed = 0
    for raw in raw_rows:
        row = parse_detail_html(raw["payload_raw"], raw["url"])
        if row is None:
            log.debug("normalize_skipped raw_id=%s url=%s", raw["id"], raw["url"])
            continue
        parsed += 1
        by_id.setdefault(row.identificador, row)

    written = repo.upsert_normalized([r.to_dict() for r in by_id.values()])
    stats = {"raw": len(raw_rows), "valid": parsed, "upserted": written}
    log.info("normalize_done raw=%d valid=%d upserted=%d", len(raw_rows), parsed, written)
    return stats


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="BOE raw -> normalized auctions")
    parser.add_argument("--limit", type=int, default=200, help="Newest raw detail rows to read")
    parser.add_argument("--config", default=None, help="Settings YAML (default: packaged boe.yaml)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    settings = load_settings(args.config)
    with Repository(settings.db_path) as repo:
        normalize_from_raw(repo, args.limit)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
