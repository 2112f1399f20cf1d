"""
BOE SUBASTAS — Stealth HTTP Session

Lightweight requests session for the non-browser calls of a run
(inference existence checks, PDF downloads):
  - one browser-like user agent for the whole session
  - Spanish Accept-Language, same-site Referer
  - no automatic retries: a failed request is reported, never replayed
"""

from __future__ import annotations

import logging
import random
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

log = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_5) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
]


class StealthSession:
    """requests.Session with a fixed per-session UA and retries disabled."""

    def __init__(self, base_url: str, timeout: int = 30, user_agent: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent or random.choice(USER_AGENTS)
        self.session = requests.Session()

        retry = Retry(total=0, connect=0, read=0, redirect=5, status=0, raise_on_status=False)
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    def _headers(self) -> dict:
        return {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,application/pdf;q=0.9,*/*;q=0.8",
            "Accept-Language": "es-ES,es;q=0.9,en;q=0.6",
            "DNT": "1",
            "Connection": "keep-alive",
            "Referer": f"{self.base_url}/",
        }

    def adopt_cookies(self, cookies: list[dict]) -> int:
        """Copy browser-context cookies (Playwright format) into this session."""
        count = 0
        for c in cookies:
            if not c.get("name"):
                continue
            self.session.cookies.set(
                c["name"], c.get("value", ""), domain=c.get("domain"), path=c.get("path", "/")
            )
            count += 1
        return count

    def get(self, url: str, **kwargs) -> requests.Response:
        headers = self._headers()
        headers.update(kwargs.pop("headers", {}))
        kwargs.setdefault("timeout", self.timeout)
        log.debug("GET %s", url)
        return self.session.get(url, headers=headers, **kwargs)

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> StealthSession:
        return self

    def __exit__(self, *args) -> None:
        self.close()
