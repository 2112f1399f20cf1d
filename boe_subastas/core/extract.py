"""
BOE SUBASTAS — Field Extractor
===============================
Pure functions mapping page HTML to candidate fields. Every extractor
returns None (or an empty collection) on absence or parse failure; none
of them raise.

BOE detail pages render fields as <th>Label</th><td>Value</td> rows, so the
label lookup goes through the table first and falls back to a regex over
the flattened page text.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Optional
from urllib.parse import parse_qsl, urljoin, urlparse

from bs4 import BeautifulSoup

from boe_subastas.core.detector import BASE_URL, origin_of
from boe_subastas.core.normalize import ID_PARAM

END_DATE_LABELS = ("fecha de conclusión", "fecha de conclusion", "fecha fin")
ASSET_TYPE_LABELS = ("tipo de bien", "clase de bien")
LOT_VALUE_LABELS = ("valor subasta", "valor de subasta")

AUTHORITY_MARKERS = (
    "autoridad gestora", "órgano gestor", "organo gestor", "juzgado",
    "agencia tributaria", "seguridad social", "ayuntamiento", "notar",
)

STABLE_ID_RE = re.compile(r"\bSUB-[A-Z]{2}-\d{4}-\d+\b", re.I)
STABLE_ID_PARTS_RE = re.compile(r"^(SUB-[A-Z]{2}-\d{4}-)(\d+)$", re.I)
DMY_RE = re.compile(r"(\d{1,2})[-/.](\d{1,2})[-/.](\d{4})")
END_DATE_TEXT_RE = re.compile(
    r"fecha\s+de\s+conclusi[oó]n\s*:?\s*(\d{1,2})[-/.](\d{1,2})[-/.](\d{4})", re.I
)
BIEN_HEADING_RE = re.compile(r"^\s*bien\s+\d+\s*-\s*(.+?)\s*$", re.I | re.M)
LOT_VALUE_TEXT_RE = re.compile(r"valor\s+(?:de\s+)?subasta\s*:?\s*(\d[\d.,]*)", re.I)
SESSION_ID_RE = re.compile(r"(?:id_busqueda|idBus)=([A-Za-z0-9_\-]+)")

# Generic conditions PDF linked from every detail page; not evidence of documents.
BOILERPLATE_DOC_RE = re.compile(r"condiciones[_\-\s]?generales", re.I)
DOC_HREF_RE = re.compile(r"(\.pdf$|subastas_ava_doc\.php|/documentos?/)", re.I)

SESSION_PARAMS = ("id_busqueda", "idBus")


def _soup(document: Optional[str]) -> BeautifulSoup:
    return BeautifulSoup(document or "", "lxml")


def _plain_text(soup: BeautifulSoup) -> str:
    """Visible text, one non-empty line per text node."""
    lines = (line.strip() for line in soup.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)


def _clean_label(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip().rstrip(":").strip().lower()


def _labeled_values(soup: BeautifulSoup, labels: tuple[str, ...]) -> list[str]:
    """All <td>/<dd> values whose <th>/<dt> label matches one of labels."""
    values = []
    for cell in soup.find_all(["th", "dt"]):
        if _clean_label(cell.get_text(" ")) not in labels:
            continue
        value_cell = cell.find_next_sibling(["td", "dd"])
        if value_cell is None:
            continue
        text = re.sub(r"\s+", " ", value_cell.get_text(" ")).strip()
        if text:
            values.append(text)
    return values


# ── Scalars ─────────────────────────────────────────────────────────


def parse_money(text: Optional[str]) -> Optional[float]:
    """Parse a Spanish-formatted amount.

    The rightmost separator is the decimal point; any other separator is
    thousands grouping. "1.234,56 €" -> 1234.56, "500 €" -> 500.0.
    """
    if not text:
        return None
    cleaned = re.sub(r"[^\d.,]", "", text).rstrip(".,")
    if not cleaned or not re.search(r"\d", cleaned):
        return None
    last_sep = max(cleaned.rfind("."), cleaned.rfind(","))
    if last_sep == -1:
        number = cleaned
    else:
        integer = re.sub(r"[.,]", "", cleaned[:last_sep])
        decimals = cleaned[last_sep + 1:]
        if re.search(r"[.,]", decimals):
            return None
        number = f"{integer or '0'}.{decimals or '0'}"
    try:
        return float(number)
    except ValueError:
        return None


def _parse_dmy(text: str) -> Optional[date]:
    m = DMY_RE.search(text or "")
    if not m:
        return None
    day, month, year = (int(g) for g in m.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def extract_end_date(document: Optional[str]) -> Optional[date]:
    soup = _soup(document)
    for value in _labeled_values(soup, END_DATE_LABELS):
        parsed = _parse_dmy(value)
        if parsed:
            return parsed
    m = END_DATE_TEXT_RE.search(_plain_text(soup).replace("\n", " "))
    if not m:
        return None
    day, month, year = (int(g) for g in m.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def extract_asset_type(document: Optional[str]) -> Optional[str]:
    soup = _soup(document)
    for value in _labeled_values(soup, ASSET_TYPE_LABELS):
        return value
    m = BIEN_HEADING_RE.search(_plain_text(soup))
    if m:
        return m.group(1).strip() or None
    return None


def extract_stable_id(url: Optional[str], document: Optional[str]) -> Optional[str]:
    """Site identifier (SUB-XX-YYYY-NNNN) from the URL, else from the body."""
    params = dict(parse_qsl(urlparse(url or "").query))
    from_url = (params.get(ID_PARAM) or "").strip()
    if from_url:
        return from_url.upper()
    m = STABLE_ID_RE.search(document or "")
    return m.group(0).upper() if m else None


def split_stable_id(stable_id: Optional[str]) -> Optional[tuple[str, str]]:
    """("SUB-JA-2024-", "000123") or None if the id does not follow the pattern."""
    m = STABLE_ID_PARTS_RE.match((stable_id or "").strip())
    if not m:
        return None
    return m.group(1).upper(), m.group(2)


def auction_number(stable_id: Optional[str]) -> Optional[int]:
    parts = split_stable_id(stable_id)
    return int(parts[1]) if parts else None


def extract_authority_mention(document: Optional[str]) -> bool:
    lower = (document or "").lower()
    return any(m in lower for m in AUTHORITY_MARKERS)


# ── Collections ─────────────────────────────────────────────────────


def extract_document_links(
    document: Optional[str], page_url: str, base_url: str = BASE_URL
) -> list[str]:
    """Absolute same-origin document links in page order, boilerplate excluded."""
    soup = _soup(document)
    base_origin = origin_of(base_url)
    links: list[str] = []
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if not href or href.startswith(("javascript:", "mailto:", "#")):
            continue
        absolute = urljoin(page_url, href).split("#", 1)[0]
        if origin_of(absolute) != base_origin:
            continue
        if not DOC_HREF_RE.search(urlparse(absolute).path):
            continue
        if BOILERPLATE_DOC_RE.search(absolute) or BOILERPLATE_DOC_RE.search(a.get_text(" ")):
            continue
        links.append(absolute)
    return list(dict.fromkeys(links))


def extract_lot_values(document: Optional[str]) -> list[float]:
    """Per-lot "Valor subasta" amounts, in page order."""
    soup = _soup(document)
    raw = _labeled_values(soup, LOT_VALUE_LABELS)
    if not raw:
        raw = LOT_VALUE_TEXT_RE.findall(_plain_text(soup).replace("\n", " "))
    values = []
    for text in raw:
        amount = parse_money(text)
        if amount is not None:
            values.append(amount)
    return values


def extract_search_session_id(url: Optional[str], document: Optional[str]) -> Optional[str]:
    params = dict(parse_qsl(urlparse(url or "").query))
    for name in SESSION_PARAMS:
        if params.get(name):
            return params[name]
    m = SESSION_ID_RE.search(document or "")
    return m.group(1) if m else None


def document_kind(url: str) -> str:
    return "pdf" if urlparse(url).path.lower().endswith(".pdf") else "documento"
