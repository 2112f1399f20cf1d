"""
BOE SUBASTAS — Browser Transport Protocol
==========================================
Structural protocol for the browser capability the discovery and detail
stages drive. PlaywrightTransport implements it; tests use an in-memory fake.

Best-effort operations (click_if_present, fill_if_present, screenshot)
return a bool instead of raising: their failure is expected and non-fatal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol, runtime_checkable


@dataclass
class PageSnapshot:
    """Rendered document plus the URL the browser ended up on."""

    url: str
    html: str
    status: Optional[int] = None


@runtime_checkable
class BrowserTransport(Protocol):
    """Protocol every browser transport must satisfy."""

    async def navigate(self, url: str, wait_until: str = "networkidle") -> PageSnapshot:
        """Load url in the single tab and return the rendered document."""
        ...

    async def click_if_present(self, selector: str) -> bool:
        ...

    async def fill_if_present(self, selector: str, value: str) -> bool:
        """Fill an input, or select an option value on a <select>. "" clears."""
        ...

    async def submit(self, selector: str) -> Optional[PageSnapshot]:
        """Activate the first matching control and wait for navigation to settle.

        Returns None when no actionable control matches selector.
        """
        ...

    def subscribe_responses(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Call callback(url) for every response; returns an unsubscribe function."""
        ...

    async def screenshot(self, path: str) -> bool:
        ...

    async def cookies(self) -> list[dict]:
        ...
