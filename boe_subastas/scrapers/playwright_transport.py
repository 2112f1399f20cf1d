"""
BOE SUBASTAS — Playwright Transport
====================================
Single-tab Chromium session for one run. Acquired by the orchestrator at
run start (``async with PlaywrightTransport(settings) as transport``) and
released on every exit path.

  - one browser, one context, one page: never parallel navigations
  - Spanish locale, desktop viewport, fixed UA
  - optional storageState cookie file from the manual session renewal
  - response URLs fanned out to subscribers (network-observation channel)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from boe_subastas.config.settings import ScraperSettings
from boe_subastas.scrapers.transport import PageSnapshot

log = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)
VIEWPORT = {"width": 1280, "height": 800}
BEST_EFFORT_TIMEOUT_MS = 5000


class PlaywrightTransport:
    """BrowserTransport backed by Playwright's async API."""

    def __init__(self, settings: ScraperSettings):
        self.settings = settings
        self._pw = None
        self._browser = None
        self._context = None
        self._page = None
        self._subscribers: list[Callable[[str], None]] = []

    async def __aenter__(self) -> PlaywrightTransport:
        await self.open()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def open(self) -> None:
        self._pw = await async_playwright().start()
        try:
            self._browser = await self._pw.chromium.launch(
                headless=self.settings.headless, args=["--no-sandbox"]
            )
            context_kwargs = {
                "user_agent": USER_AGENT,
                "viewport": VIEWPORT,
                "locale": "es-ES",
            }
            state_path = self.settings.storage_state_path
            if state_path and Path(state_path).exists():
                context_kwargs["storage_state"] = state_path
                log.info("Loaded session state from %s", state_path)
            self._context = await self._browser.new_context(**context_kwargs)
            self._page = await self._context.new_page()
            self._page.set_default_timeout(self.settings.nav_timeout_ms)
            self._page.on("response", self._dispatch_response)
        except BaseException:
            # __aexit__ never runs when __aenter__ fails
            await self.close()
            raise
        log.info("Browser session opened (headless=%s)", self.settings.headless)

    async def close(self) -> None:
        # Each step runs even if an earlier one failed; the browser must not leak.
        for closer in (self._context, self._browser):
            if closer is None:
                continue
            try:
                await closer.close()
            except PlaywrightError as exc:
                log.warning("Browser close step failed: %s", exc)
        if self._pw is not None:
            await self._pw.stop()
        self._pw = self._browser = self._context = self._page = None
        log.info("Browser session closed")

    def _dispatch_response(self, response) -> None:
        for callback in list(self._subscribers):
            callback(response.url)

    async def _snapshot(self, status: Optional[int] = None) -> PageSnapshot:
        return PageSnapshot(url=self._page.url, html=await self._page.content(), status=status)

    async def navigate(self, url: str, wait_until: str = "networkidle") -> PageSnapshot:
        response = await self._page.goto(
            url, wait_until=wait_until, timeout=self.settings.nav_timeout_ms
        )
        return await self._snapshot(response.status if response else None)

    async def click_if_present(self, selector: str) -> bool:
        locator = self._page.locator(selector)
        try:
            if await locator.count() == 0:
                return False
            await locator.first.click(timeout=BEST_EFFORT_TIMEOUT_MS)
            await self._page.wait_for_load_state("networkidle", timeout=BEST_EFFORT_TIMEOUT_MS * 3)
            return True
        except PlaywrightError as exc:
            log.debug("click_if_present(%s) failed: %s", selector, exc)
            return False

    async def fill_if_present(self, selector: str, value: str) -> bool:
        locator = self._page.locator(selector)
        try:
            if await locator.count() == 0:
                return False
            target = locator.first
            tag = (await target.evaluate("el => el.tagName")).lower()
            if tag == "select":
                await target.select_option(value=value, timeout=BEST_EFFORT_TIMEOUT_MS)
            else:
                await target.fill(value, timeout=BEST_EFFORT_TIMEOUT_MS)
            return True
        except PlaywrightError as exc:
            log.debug("fill_if_present(%s) failed: %s", selector, exc)
            return False

    async def submit(self, selector: str) -> Optional[PageSnapshot]:
        locator = self._page.locator(selector)
        if await locator.count() == 0:
            return None
        async with self._page.expect_navigation(
            wait_until="networkidle", timeout=self.settings.nav_timeout_ms
        ) as nav:
            await locator.first.click()
        response = await nav.value
        return await self._snapshot(response.status if response else None)

    def subscribe_responses(self, callback: Callable[[str], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def screenshot(self, path: str) -> bool:
        try:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            await self._page.screenshot(path=path, full_page=True)
            return True
        except PlaywrightError as exc:
            log.warning("Screenshot failed (%s): %s", path, exc)
            return False

    async def cookies(self) -> list[dict]:
        return list(await self._context.cookies())
