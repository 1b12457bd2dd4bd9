# rentscout/errors.py
"""Failure taxonomy for a crawl pass.

Blocks and structural changes stop the search phase; transient errors are
retried with backoff and otherwise deferred to the next pass; login failures
only disable gated fields.
"""


class ScrapeError(Exception):
    """Base class for crawl failures."""


class BlockedError(ScrapeError):
    """The marketplace is serving an anti-bot page. Back off, never hot-retry."""

    def __init__(self, url, reason):
        super().__init__(f"blocked on {url}: {reason}")
        self.url = url
        self.reason = reason


class StructuralChangeError(ScrapeError):
    """Every known selector matched nothing: the page template changed."""

    def __init__(self, url, detail="no known selector matched"):
        super().__init__(f"structural change on {url}: {detail}")
        self.url = url
        self.detail = detail


class TransientNetworkError(ScrapeError):
    """Timeout, connection reset or 5xx."""


class LoginFailure(ScrapeError):
    """Login could not be completed. Gated fields are skipped for the pass."""


class PartialExtractionWarning(UserWarning):
    """Some fields of a listing could not be resolved."""

    def __init__(self, external_id, fields):
        super().__init__(f"listing {external_id}: unresolved {', '.join(fields)}")
        self.external_id = external_id
        self.fields = list(fields)
