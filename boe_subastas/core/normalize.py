"""Canonical detail-page URLs for candidate dedup.

A canonical URL is ``<base origin><detail path>?idSub=<id>&ver=<view>``:
  - resolved against the detail route (relative hrefs from listings work)
  - scheme + host lowercased, fragment dropped
  - idSub must be a plain token (letters, digits, "-" and "_")
  - only the identifying ``idSub`` and the ``ver`` view parameter survive
    (listing links carry per-search noise such as idBus / numPagBus)
  - ``ver`` defaults to the general-information view

normalize_candidate(normalize_candidate(u)) == normalize_candidate(u)
"""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from boe_subastas.core.detector import BASE_URL

DETAIL_PATH = "/detalleSubasta.php"
ID_PARAM = "idSub"
VIEW_PARAM = "ver"
DEFAULT_VIEW = "1"
LOT_VIEW = "3"

# idSub doubles as a folder name under pdf_dir.
SAFE_ID_RE = re.compile(r"[A-Za-z0-9_-]+")


def normalize_candidate(
    raw_url: Optional[str],
    base_url: str = BASE_URL,
    detail_path: str = DETAIL_PATH,
) -> Optional[str]:
    """Return the canonical detail URL, or None if raw_url is not a detail page."""
    if not raw_url or not raw_url.strip():
        return None
    base = urlparse(base_url)
    absolute = urljoin(f"{base.scheme}://{base.netloc}{detail_path}", raw_url.strip())
    p = urlparse(absolute)

    if p.scheme.lower() not in ("http", "https"):
        return None
    if p.netloc.lower() != base.netloc.lower():
        return None
    if p.path.rstrip("/").lower() != detail_path.lower():
        return None

    params = dict(parse_qsl(p.query, keep_blank_values=True))
    sub_id = (params.get(ID_PARAM) or "").strip()
    if not SAFE_ID_RE.fullmatch(sub_id):
        return None
    view = (params.get(VIEW_PARAM) or "").strip() or DEFAULT_VIEW

    query = urlencode([(ID_PARAM, sub_id), (VIEW_PARAM, view)])
    return urlunparse((base.scheme.lower(), base.netloc.lower(), detail_path, "", query, ""))


def with_view(canonical_url: str, view: str) -> str:
    """Same record, different tab (``ver``)."""
    p = urlparse(canonical_url)
    kept = [(k, v) for k, v in parse_qsl(p.query, keep_blank_values=True) if k != VIEW_PARAM]
    kept.append((VIEW_PARAM, view))
    return urlunparse((p.scheme, p.netloc, p.path, "", urlencode(kept), ""))


def sub_id_of(url: str) -> Optional[str]:
    params = dict(parse_qsl(urlparse(url or "").query))
    return params.get(ID_PARAM) or None
