# rentscout/fetch.py
"""Search page retrieval: plain HTTP first, headless rendering when blocked."""
import re
import time
from typing import Callable, NamedTuple, Optional, Tuple

import httpx

from .config import settings as default_settings
from .errors import BlockedError, TransientNetworkError
from .summary import count_result_cards
from .utils import logger, retry

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "de-DE,de;q=0.9,en-US;q=0.8,en;q=0.7",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}

BLOCK_STATUS = (403, 429)
CAPTCHA_MARKERS = (
    "g-recaptcha",
    "h-captcha",
    "data-sitekey",
    "recaptcha/api",
    "hcaptcha.com",
    'id="captcha"',
    "bitte lösen sie das captcha",
    "cf-challenge",
)
SUSPICIOUS_TITLES = (
    "überprüfung",
    "sicherheit",
    "just a moment",
    "checking your browser",
    "access denied",
    "attention required",
)

_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.I | re.S)

Renderer = Callable[[str], Tuple[str, Optional[int]]]


class FetchResult(NamedTuple):
    url: str
    html: str
    status: Optional[int]
    via: str
    card_count: int


def detect_block(html: Optional[str], status_code: Optional[int] = None) -> Optional[str]:
    """Reason string when the response looks like an anti-bot page, else None."""
    if status_code in BLOCK_STATUS:
        return f"HTTP {status_code}"
    lowered = (html or "").lower()
    for marker in CAPTCHA_MARKERS:
        if marker in lowered:
            return f"captcha markup ({marker})"
    m = _TITLE_RE.search(html or "")
    if m:
        title = " ".join(m.group(1).split()).lower()
        for word in SUSPICIOUS_TITLES:
            if word in title:
                return f"suspicious title ({title})"
    return None


def http_get(client: httpx.Client, url: str) -> httpx.Response:
    try:
        response = client.get(url, headers=BROWSER_HEADERS)
    except httpx.HTTPError as e:
        raise TransientNetworkError(f"{type(e).__name__} fetching {url}: {e}") from e
    if response.status_code >= 500:
        raise TransientNetworkError(f"HTTP {response.status_code} for {url}")
    return response


def fetch_search_page(url: str, client: Optional[httpx.Client] = None, render: Optional[Renderer] = None,
                      prior_count: int = 0, settings=None, sleep=time.sleep) -> FetchResult:
    """Fetch one results page.

    Block signals (403/429, captcha markup, a challenge title, or zero cards
    where earlier passes saw at least ZERO_RESULT_ESCALATION_MIN) escalate to
    `render`. Still blocked, or no renderer: BlockedError.
    """
    settings = settings or default_settings
    get = retry(
        TransientNetworkError,
        tries=settings.HTTP_RETRIES,
        delay=settings.RETRY_DELAY,
        max_delay=settings.RETRY_MAX_DELAY,
        sleep=sleep,
    )(http_get)

    own_client = client is None
    if own_client:
        client = httpx.Client(timeout=settings.HTTP_TIMEOUT, follow_redirects=True)
    try:
        response = get(client, url)
    finally:
        if own_client:
            client.close()

    html, status = response.text, response.status_code
    cards = count_result_cards(html)
    reason = detect_block(html, status)
    if reason is None and cards == 0 and prior_count >= settings.ZERO_RESULT_ESCALATION_MIN:
        reason = f"zero results where earlier passes saw {prior_count}"
    if reason is None:
        return FetchResult(url, html, status, "http", cards)

    if render is None:
        raise BlockedError(url, reason)
    logger.warning("Plain fetch of %s looks blocked (%s), escalating to headless browser", url, reason)
    html, status = render(url)
    still_blocked = detect_block(html, status)
    if still_blocked:
        raise BlockedError(url, still_blocked)
    return FetchResult(url, html, status, "browser", count_result_cards(html))
