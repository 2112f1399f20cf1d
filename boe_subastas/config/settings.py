"""
BOE SUBASTAS — Settings
========================
Config-driven run profile. boe.yaml holds the defaults, BOE_* environment
variables override them, and every numeric knob is clamped to a safe range
before any component sees it. Clamping is logged, never silent.

Usage:
    settings = load_settings()                      # packaged boe.yaml + env
    settings = load_settings(Path("my_profile.yaml"))
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Mapping, Optional

import yaml

from boe_subastas.core.errors import ConfigError

log = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).resolve().parent / "boe.yaml"
DATA_DIR = Path(__file__).resolve().parent.parent / "data"

DEFAULT_SELECTORS = {
    "consent": "#cookies-accept, button:has-text('Aceptar'), a:has-text('Aceptar')",
    "province_filter": "select[name*='provincia'], select[id*='provincia']",
    "date_from": "input[name*='fecha_desde'], input[id*='desde']",
    "date_to": "input[name*='fecha_hasta'], input[id*='hasta']",
    "submit": "input[type='submit'][value*='Buscar'], button:has-text('Buscar')",
}


@dataclass
class ScraperSettings:
    base_url: str = "https://subastas.boe.es"
    listing_path: str = "/subastas_ava.php"
    detail_path: str = "/detalleSubasta.php"

    # Discovery
    search_window_days: int = 30
    date_format: str = "%d-%m-%Y"
    degraded_wait_seconds: float = 30.0
    candidate_pool_cap: int = 200
    inference_lookback: int = 20
    inference_min_bytes: int = 2000

    # Detail walk
    max_details: int = 20
    visit_delay_min: float = 5.0
    visit_delay_max: float = 10.0
    max_runtime_seconds: int = 1800
    max_requests: int = 150

    # PDF queue
    pdf_daily_budget: int = 5
    pdf_lookahead_days: int = 30
    pdf_queue_max: int = 20
    pdf_delay_min: float = 2.0
    pdf_delay_max: float = 6.0
    pdf_max_bytes: int = 25 * 1024 * 1024
    real_estate_only: bool = False

    # Run mode
    dry_run: bool = False
    headless: bool = True
    nav_timeout_ms: int = 30000

    # Storage
    db_path: str = str(DATA_DIR / "boe_subastas.db")
    pdf_dir: str = str(DATA_DIR / "pdfs")
    evidence_dir: str = str(DATA_DIR / "evidence")
    storage_state_path: str = ""

    selectors: dict = field(default_factory=lambda: dict(DEFAULT_SELECTORS))

    @property
    def listing_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.listing_path}"

    def selector(self, key: str) -> str:
        return self.selectors.get(key) or DEFAULT_SELECTORS[key]


# (low, high) for every numeric knob.
BOUNDS = {
    "search_window_days": (1, 180),
    "degraded_wait_seconds": (0.0, 300.0),
    "candidate_pool_cap": (1, 1000),
    "inference_lookback": (0, 200),
    "inference_min_bytes": (500, 1_000_000),
    "max_details": (1, 100),
    "visit_delay_min": (1.0, 120.0),
    "visit_delay_max": (1.0, 300.0),
    "max_runtime_seconds": (60, 7200),
    "max_requests": (10, 1000),
    "pdf_daily_budget": (0, 200),
    "pdf_lookahead_days": (1, 365),
    "pdf_queue_max": (1, 200),
    "pdf_delay_min": (0.5, 60.0),
    "pdf_delay_max": (0.5, 120.0),
    "pdf_max_bytes": (1024 * 1024, 100 * 1024 * 1024),
    "nav_timeout_ms": (5000, 120000),
}

ENV_OVERRIDES = {
    "base_url": ("BOE_BASE_URL",),
    "max_details": ("BOE_MAX_ITEMS", "BOE_MAX_PAGES"),
    "visit_delay_min": ("BOE_DELAY_MIN",),
    "visit_delay_max": ("BOE_DELAY_MAX",),
    "search_window_days": ("BOE_SEARCH_DAYS",),
    "degraded_wait_seconds": ("BOE_DEGRADED_WAIT",),
    "candidate_pool_cap": ("BOE_POOL_CAP",),
    "inference_lookback": ("BOE_INFERENCE_LOOKBACK",),
    "max_runtime_seconds": ("BOE_MAX_RUNTIME",),
    "max_requests": ("BOE_MAX_REQUESTS",),
    "pdf_daily_budget": ("BOE_PDF_LIMIT", "BOE_PDF_DAILY_BUDGET"),
    "pdf_lookahead_days": ("BOE_PDF_LOOKAHEAD_DAYS",),
    "pdf_max_bytes": ("BOE_PDF_MAX_BYTES",),
    "real_estate_only": ("BOE_ONLY_INMUEBLES",),
    "dry_run": ("BOE_DRY_RUN", "DRY_RUN"),
    "headless": ("BOE_HEADLESS",),
    "db_path": ("BOE_DB_PATH",),
    "pdf_dir": ("BOE_PDF_DIR",),
    "evidence_dir": ("BOE_EVIDENCE_DIR",),
    "storage_state_path": ("BOE_STORAGE_STATE_PATH",),
}

_TRUE = {"1", "true", "yes", "on"}


def _coerce(name: str, raw, default):
    if isinstance(default, bool):
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() in _TRUE
    if isinstance(default, int):
        try:
            return int(float(raw))
        except (TypeError, ValueError):
            raise ConfigError(f"{name}: expected an integer, got {raw!r}")
    if isinstance(default, float):
        try:
            return float(raw)
        except (TypeError, ValueError):
            raise ConfigError(f"{name}: expected a number, got {raw!r}")
    if isinstance(default, dict):
        if not isinstance(raw, dict):
            raise ConfigError(f"{name}: expected a mapping")
        return raw
    return str(raw)


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        log.info("Settings file %s not found; using built-in defaults", path)
        return {}
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data.get("scraper", data)


def clamp_settings(settings: ScraperSettings) -> ScraperSettings:
    """Return a copy with every numeric knob inside BOUNDS."""
    changes = {}
    for name, (low, high) in BOUNDS.items():
        value = getattr(settings, name)
        clamped = min(max(value, low), high)
        if clamped != value:
            log.warning("Clamped %s=%s into [%s, %s] -> %s", name, value, low, high, clamped)
            changes[name] = clamped
    settings = replace(settings, **changes)

    if settings.visit_delay_max < settings.visit_delay_min:
        log.warning("visit_delay_max < visit_delay_min; using min for both")
        settings = replace(settings, visit_delay_max=settings.visit_delay_min)
    if settings.pdf_delay_max < settings.pdf_delay_min:
        log.warning("pdf_delay_max < pdf_delay_min; using min for both")
        settings = replace(settings, pdf_delay_max=settings.pdf_delay_min)

    if not settings.base_url.startswith(("https://", "http://")):
        raise ConfigError(f"base_url must be an http(s) origin, got {settings.base_url!r}")
    return replace(settings, base_url=settings.base_url.rstrip("/"))


def load_settings(
    path: Optional[Path | str] = None,
    env: Optional[Mapping[str, str]] = None,
    **overrides,
) -> ScraperSettings:
    """YAML defaults -> environment -> explicit overrides -> clamp."""
    env = os.environ if env is None else env
    defaults = ScraperSettings()
    known = {f.name: getattr(defaults, f.name) for f in fields(ScraperSettings)}

    values: dict = {}
    for name, raw in _load_yaml(Path(path) if path else CONFIG_PATH).items():
        if name not in known:
            log.warning("Ignoring unknown setting %r", name)
            continue
        if raw is None:
            # `key:` with no value keeps the default
            continue
        values[name] = _coerce(name, raw, known[name])

    for name, env_names in ENV_OVERRIDES.items():
        for env_name in env_names:
            raw = env.get(env_name)
            if raw is not None and str(raw).strip() != "":
                values[name] = _coerce(name, raw, known[name])
                break

    for name, raw in overrides.items():
        if raw is None:
            continue
        if name not in known:
            raise ConfigError(f"unknown setting {name!r}")
        values[name] = _coerce(name, raw, known[name])

    if "selectors" in values:
        values["selectors"] = {**DEFAULT_SELECTORS, **values["selectors"]}

    return clamp_settings(ScraperSettings(**values))
