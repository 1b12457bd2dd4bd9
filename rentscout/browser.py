# rentscout/browser.py
"""Scoped Playwright resources.

Every browser, context and page is acquired through a context manager so the
Chromium process is gone on every exit path, exceptions included.
"""
from contextlib import contextmanager

from playwright.sync_api import sync_playwright, Error as PWError, TimeoutError as PWTimeout

from .errors import TransientNetworkError
from .utils import logger

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-dev-shm-usage",
]
CONTEXT_OPTIONS = {
    "locale": "de-DE",
    "timezone_id": "Europe/Berlin",
    "viewport": {"width": 1920, "height": 1080},
    "user_agent": USER_AGENT,
    "extra_http_headers": {"Accept-Language": "de-DE,de;q=0.9,en;q=0.8"},
}
HIDE_WEBDRIVER = "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"

COOKIE_SELECTORS = (
    "#cmpbntyestxt",
    "#cmpwelcomebtnyes",
    ".cmpboxbtnyes",
    'button:has-text("Alle akzeptieren")',
    'button:has-text("Akzeptieren")',
)


@contextmanager
def browser_context(headless=True, storage_state=None):
    """A fresh Chromium + context, closed on exit."""
    with sync_playwright() as p:
        browser = p.chromium.launch(headless=headless, args=LAUNCH_ARGS)
        try:
            context = browser.new_context(storage_state=storage_state, **CONTEXT_OPTIONS)
            context.add_init_script(HIDE_WEBDRIVER)
            try:
                yield context
            finally:
                context.close()
        finally:
            browser.close()


@contextmanager
def open_page(context):
    page = context.new_page()
    try:
        yield page
    finally:
        page.close()


def accept_cookies(page, timeout_ms=1500) -> bool:
    for selector in COOKIE_SELECTORS:
        try:
            button = page.query_selector(selector)
            if button and button.is_visible():
                button.click(timeout=timeout_ms)
                page.wait_for_timeout(300)
                return True
        except PWError as e:
            logger.debug("Cookie button %s not clickable: %s", selector, e)
    return False


def hydrate(page, steps=3):
    """Scroll through the page so lazy galleries and panels render."""
    for _ in range(steps):
        try:
            page.evaluate("window.scrollBy(0, document.body.scrollHeight / 3)")
        except PWError as e:
            logger.debug("Scroll failed: %s", e)
            break
        page.wait_for_timeout(400)
    try:
        page.wait_for_load_state("networkidle", timeout=5000)
    except PWTimeout:
        logger.debug("Network never went idle, continuing with what rendered")


class BrowserRenderer:
    """Headless fallback for search pages, started on first use.

    Call it with a URL to get `(html, status)`; use as a context manager so the
    browser is closed afterwards.
    """

    def __init__(self, headless=True, timeout_ms=60000, storage_state=None):
        self.headless = headless
        self.timeout_ms = timeout_ms
        self.storage_state = storage_state
        self._playwright = None
        self._browser = None
        self._context = None

    def _start(self):
        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.launch(headless=self.headless, args=LAUNCH_ARGS)
        self._context = self._browser.new_context(storage_state=self.storage_state, **CONTEXT_OPTIONS)
        self._context.add_init_script(HIDE_WEBDRIVER)
        logger.info("Started headless browser for search rendering")

    def __call__(self, url):
        try:
            if self._context is None:
                self._start()
            with open_page(self._context) as page:
                response = page.goto(url, timeout=self.timeout_ms, wait_until="domcontentloaded")
                accept_cookies(page)
                hydrate(page)
                return page.content(), (response.status if response is not None else None)
        except PWTimeout as e:
            raise TransientNetworkError(f"timeout rendering {url}: {e}") from e
        except PWError as e:
            raise TransientNetworkError(f"browser error rendering {url}: {e}") from e

    def close(self):
        if self._context is not None:
            self._context.close()
        if self._browser is not None:
            self._browser.close()
        if self._playwright is not None:
            self._playwright.stop()
        self._playwright = self._browser = self._context = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
