"""Playwright transport lifecycle, with the driver replaced by stand-ins."""

import asyncio

import pytest

from boe_subastas.scrapers import playwright_transport
from boe_subastas.scrapers.playwright_transport import PlaywrightTransport


class _Browser:
    def __init__(self, context_error=None):
        self.context_error = context_error
        self.closed = False

    async def new_context(self, **kwargs):
        raise self.context_error

    async def close(self):
        self.closed = True


class _Chromium:
    def __init__(self, browser=None, launch_error=None):
        self.browser = browser
        self.launch_error = launch_error

    async def launch(self, **kwargs):
        if self.launch_error is not None:
            raise self.launch_error
        return self.browser


class _Driver:
    def __init__(self, chromium):
        self.chromium = chromium
        self.stopped = False

    async def stop(self):
        self.stopped = True


class _Starter:
    def __init__(self, driver):
        self.driver = driver

    async def start(self):
        return self.driver


def _patch_driver(monkeypatch, chromium):
    driver = _Driver(chromium)
    monkeypatch.setattr(playwright_transport, "async_playwright", lambda: _Starter(driver))
    return driver


async def _enter(transport):
    async with transport:
        pass


def test_failed_launch_stops_the_driver(monkeypatch, settings):
    driver = _patch_driver(monkeypatch, _Chromium(launch_error=RuntimeError("no chromium")))
    transport = PlaywrightTransport(settings)

    with pytest.raises(RuntimeError, match="no chromium"):
        asyncio.run(_enter(transport))

    assert driver.stopped
    assert transport._pw is None


def test_failed_context_closes_the_browser_and_driver(monkeypatch, settings):
    browser = _Browser(context_error=RuntimeError("bad storage state"))
    driver = _patch_driver(monkeypatch, _Chromium(browser=browser))
    transport = PlaywrightTransport(settings)

    with pytest.raises(RuntimeError, match="bad storage state"):
        asyncio.run(_enter(transport))

    assert browser.closed
    assert driver.stopped
    assert transport._browser is None
