"""
BOE SUBASTAS — Error taxonomy
==============================
Every run-affecting failure is a ScrapeError tagged with an ErrorKind.
The kind decides the severity; the orchestrator dispatches on it in one
place (db.run_tracker.resolve_status) instead of parsing message prefixes.

  FATAL    : stop the run now (block, missing session id, runtime ceiling)
  SOFT     : record and continue with the next item (PDF download)
  EXPECTED : not a failure (zero search results)
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class Severity(str, Enum):
    FATAL = "fatal"
    SOFT = "soft"
    EXPECTED = "expected"


class ErrorKind(str, Enum):
    LISTING_BLOCKED = "ListingBlocked"
    SEARCH_FORM_NOT_FOUND = "SearchFormNotFound"
    MISSING_SESSION_ID = "MissingSessionId"
    DETAIL_BLOCKED = "DetailBlocked"
    LANDING_PAGE = "LandingPage"
    MISSING_DETAIL_MARKERS = "MissingDetailMarkers"
    MAX_RUNTIME_EXCEEDED = "MaxRuntimeExceeded"
    PDF_ABORTED = "PdfAborted"
    ZERO_RESULTS = "ZeroResults"


SEVERITY = {
    ErrorKind.LISTING_BLOCKED: Severity.FATAL,
    ErrorKind.SEARCH_FORM_NOT_FOUND: Severity.FATAL,
    ErrorKind.MISSING_SESSION_ID: Severity.FATAL,
    ErrorKind.DETAIL_BLOCKED: Severity.FATAL,
    ErrorKind.LANDING_PAGE: Severity.FATAL,
    ErrorKind.MISSING_DETAIL_MARKERS: Severity.FATAL,
    ErrorKind.MAX_RUNTIME_EXCEEDED: Severity.FATAL,
    ErrorKind.PDF_ABORTED: Severity.SOFT,
    ErrorKind.ZERO_RESULTS: Severity.EXPECTED,
}

# Kinds that signal "site structure or filters look wrong" rather than a ban.
VALIDATION_KINDS = frozenset({
    ErrorKind.LANDING_PAGE,
    ErrorKind.MISSING_DETAIL_MARKERS,
})


class ConfigError(ValueError):
    """Configuration that cannot be clamped into a usable value."""


class ScrapeError(Exception):
    """A tagged pipeline failure.

    `reason` is a short machine-friendly token (e.g. "captcha-detected",
    "http_404"); `url` names the offending page when there is one.
    `document` optionally carries the HTML that triggered the error so the
    orchestrator can keep it as evidence.
    """

    def __init__(
        self,
        kind: ErrorKind,
        reason: str = "",
        url: Optional[str] = None,
        document: Optional[str] = None,
    ):
        self.kind = kind
        self.reason = reason
        self.url = url
        self.document = document
        super().__init__(str(self))

    @property
    def severity(self) -> Severity:
        return SEVERITY[self.kind]

    @property
    def is_fatal(self) -> bool:
        return self.severity is Severity.FATAL

    @property
    def is_validation(self) -> bool:
        return self.kind in VALIDATION_KINDS

    def __str__(self) -> str:
        text = self.kind.value
        if self.reason:
            text = f"{text}:{self.reason}"
        if self.url:
            text = f"{text} ({self.url})"
        return text
