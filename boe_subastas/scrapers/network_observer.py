"""Network-observation channel: detail-shaped URLs the browser fetched on its own."""

from __future__ import annotations

import logging

from boe_subastas.core.normalize import normalize_candidate

log = logging.getLogger(__name__)


class NetworkObserver:
    """Passive response-URL collector, bounded by the pool cap.

    Subscribed to the transport for the duration of listing discovery only;
    stop() freezes the collected set.
    """

    def __init__(self, cap: int, base_url: str, detail_path: str):
        self.cap = max(0, int(cap))
        self.base_url = base_url
        self.detail_path = detail_path
        self._urls: dict[str, None] = {}
        self.active = True
        self.seen = 0

    def __call__(self, url: str) -> None:
        if not self.active:
            return
        self.seen += 1
        canonical = normalize_candidate(url, self.base_url, self.detail_path)
        if canonical is None or canonical in self._urls:
            return
        if len(self._urls) >= self.cap:
            return
        self._urls[canonical] = None
        log.debug("network_candidate url=%s", canonical)

    def stop(self) -> list[str]:
        self.active = False
        log.info("network_observer_stopped responses=%d candidates=%d", self.seen, len(self._urls))
        return self.urls

    @property
    def urls(self) -> list[str]:
        return list(self._urls)
