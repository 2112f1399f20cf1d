"""
BOE SUBASTAS — Block / Landing Detector
========================================
Pure keyword predicates over raw page HTML. No state, never raises.

  classify_block()               : ban / captcha / redirect signals
  is_landing_page()              : generic portal page instead of a detail
  has_required_detail_markers()  : minimum markers of a real detail page
  is_real_estate()               : asset-type heuristic for the PDF filter

Page markers are exact lowercase substrings so a result can be reproduced
by grepping the stored payload. Asset types match whole words only
("local" is not "localidad").
"""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlparse

BASE_URL = "https://subastas.boe.es"

MIN_DOCUMENT_CHARS = 500

CAPTCHA_MARKERS = ("captcha",)
DENIED_MARKERS = ("acceso denegado", "access denied")

LANDING_MARKERS = ("portal de subastas electr",)
DETAIL_MARKERS = ("expediente", "importe base", "tipo de subasta")

ID_MARKER = "identificador"
TYPE_MARKER = "tipo de subasta"
VALUE_MARKERS = ("importe del dep", "valor subasta")

REAL_ESTATE_KEYWORDS = (
    "inmueble", "vivienda", "piso", "local", "garaje", "plaza de aparcamiento",
    "trastero", "solar", "finca", "terreno", "nave", "edificio", "chalet",
    "apartamento", "casa",
)
# "locales" and "solares" are also adjectives (placas solares), singular only.
SINGULAR_ONLY = frozenset({"local", "solar"})
REAL_ESTATE_RE = re.compile(
    "|".join(
        rf"\b{re.escape(kw)}\b" if kw in SINGULAR_ONLY else rf"\b{re.escape(kw)}(?:s|es)?\b"
        for kw in REAL_ESTATE_KEYWORDS
    )
)

# Block reasons, highest priority first.
TOO_SHORT = "too-short"
CAPTCHA = "captcha-detected"
ACCESS_DENIED = "access-denied"
UNEXPECTED_REDIRECT = "unexpected-redirect"


def origin_of(url: str) -> str:
    p = urlparse(url or "")
    return f"{(p.scheme or '').lower()}://{(p.netloc or '').lower()}"


def classify_block(
    document: Optional[str], current_url: str, base_url: str = BASE_URL
) -> Optional[str]:
    """Return the block reason for a fetched page, or None if it looks usable."""
    text = document or ""
    if len(text.strip()) < MIN_DOCUMENT_CHARS:
        return TOO_SHORT
    lower = text.lower()
    if any(m in lower for m in CAPTCHA_MARKERS):
        return CAPTCHA
    if any(m in lower for m in DENIED_MARKERS):
        return ACCESS_DENIED
    if origin_of(current_url) != origin_of(base_url):
        return UNEXPECTED_REDIRECT
    return None


def is_landing_page(document: Optional[str]) -> bool:
    """Generic portal page with none of the detail markers.

    Detail markers win: a detail page that also renders the portal header
    is not a landing page.
    """
    lower = (document or "").lower()
    has_landing = any(m in lower for m in LANDING_MARKERS)
    has_detail = any(m in lower for m in DETAIL_MARKERS)
    return has_landing and not has_detail


def has_required_detail_markers(document: Optional[str]) -> bool:
    lower = (document or "").lower()
    return (
        ID_MARKER in lower
        and TYPE_MARKER in lower
        and any(m in lower for m in VALUE_MARKERS)
    )


def is_real_estate(asset_type: Optional[str]) -> bool:
    if not asset_type:
        return False
    return REAL_ESTATE_RE.search(asset_type.lower()) is not None
