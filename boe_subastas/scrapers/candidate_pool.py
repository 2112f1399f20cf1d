"""Bounded, deduplicating candidate pool keyed by canonical detail URL."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterator

from boe_subastas.contracts.schemas import CANDIDATE_SOURCES, Candidate
from boe_subastas.core.detector import BASE_URL
from boe_subastas.core.normalize import DETAIL_PATH, normalize_candidate

log = logging.getLogger(__name__)


class CandidatePool:
    """Insertion-ordered map canonical URL -> Candidate.

    The first channel to report a URL owns it; later reports are counted as
    duplicates and never overwrite the source tag. Once `cap` entries are
    held, further URLs are counted as overflow and dropped.
    """

    def __init__(self, cap: int, base_url: str = BASE_URL, detail_path: str = DETAIL_PATH):
        self.cap = max(0, int(cap))
        self.base_url = base_url
        self.detail_path = detail_path
        self._items: dict[str, Candidate] = {}
        self.rejected = 0
        self.duplicates = 0
        self.overflow = 0

    def add(self, raw_url: str, source: str) -> bool:
        if source not in CANDIDATE_SOURCES:
            raise ValueError(f"unknown candidate source {source!r}")
        canonical = normalize_candidate(raw_url, self.base_url, self.detail_path)
        if canonical is None:
            self.rejected += 1
            log.debug("candidate_rejected source=%s url=%s", source, raw_url)
            return False
        if canonical in self._items:
            self.duplicates += 1
            return False
        if len(self._items) >= self.cap:
            self.overflow += 1
            return False
        self._items[canonical] = Candidate(url=canonical, source=source)
        return True

    def add_many(self, raw_urls, source: str) -> int:
        return sum(1 for url in raw_urls if self.add(url, source))

    def take(self, n: int) -> list[Candidate]:
        """First n candidates in discovery order."""
        return list(self._items.values())[: max(0, n)]

    def count_by_source(self) -> dict[str, int]:
        counts = Counter(c.source for c in self._items.values())
        return {source: counts.get(source, 0) for source in CANDIDATE_SOURCES}

    def __contains__(self, raw_url: str) -> bool:
        return normalize_candidate(raw_url, self.base_url, self.detail_path) in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Candidate]:
        return iter(self._items.values())
