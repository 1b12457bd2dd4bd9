# rentscout/scrape.py
"""One crawl pass: search pages, detail pages, upsert, sweep, match.

Detail pages are fetched by a bounded pool of worker threads. Each worker
owns one browser context for the whole pass and opens a fresh page per
listing. Results come back to the calling thread, which does all database
work, one commit per listing.
"""
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, NamedTuple, Optional
from urllib.parse import urlsplit

from . import crud
from .browser import BrowserRenderer, browser_context, open_page
from .config import settings as default_settings
from .db import SessionLocal
from .detail import scrape_detail
from .errors import BlockedError, StructuralChangeError, TransientNetworkError
from .fetch import fetch_search_page
from .normalize import canonical_district_set, normalize_district
from .schemas import PLATFORM_WG_GESUCHT, CrawlSummary, ListingStub, RawListing, SearchFilters
from .services import ingest_listing, match_listings
from .session import SessionManager
from .summary import deduplicate_stubs, parse_search_page
from .urls import build_search_url, page_url
from .utils import logger


class HostThrottle:
    """Politeness gate shared by all workers.

    Consecutive requests to one host are at least `delay` seconds apart, and
    every `batch_size` requests the gap is `batch_delay` instead.
    """

    def __init__(self, delay: float, batch_size: int = 0, batch_delay: float = 0.0,
                 clock=time.monotonic, sleep=time.sleep):
        self.delay = delay
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.clock = clock
        self.sleep = sleep
        self._lock = threading.Lock()
        self._next_slot = {}
        self._count = {}

    def wait(self, url: str) -> float:
        host = urlsplit(url).netloc
        with self._lock:
            now = self.clock()
            count = self._count.get(host, 0)
            slot = max(now, self._next_slot.get(host, now))
            gap = self.delay
            if self.batch_size and (count + 1) % self.batch_size == 0:
                gap = self.batch_delay
            self._next_slot[host] = slot + gap
            self._count[host] = count + 1
        pause = slot - now
        if pause > 0:
            self.sleep(pause)
        return pause


class DetailOutcome(NamedTuple):
    stub: ListingStub
    raw: Optional[RawListing] = None
    error: Optional[str] = None
    transient: bool = False
    blocked: bool = False
    warnings: tuple = ()


def filters_from_settings(settings) -> SearchFilters:
    return SearchFilters(
        min_rent=settings.SEARCH_MIN_RENT,
        max_rent=settings.SEARCH_MAX_RENT,
        property_types=settings.SEARCH_PROPERTY_TYPES,
        districts=settings.SEARCH_DISTRICTS,
        city=settings.CITY,
        city_id=settings.CITY_ID,
    )


def filter_districts(stubs: List[ListingStub], districts) -> List[ListingStub]:
    """Keep stubs in the wanted districts. Unknown districts are kept for the detail page to decide."""
    wanted = canonical_district_set(districts)
    if not wanted:
        return list(stubs)
    return [s for s in stubs if not s.district or normalize_district(s.district) in wanted]


def collect_stubs(filters: SearchFilters, settings, summary: CrawlSummary, throttle: HostThrottle,
                  prior_count: int = 0, client=None, render=None) -> List[ListingStub]:
    """Walk result pages until one is empty, the cap is hit, or the site pushes back."""
    base = build_search_url(filters, settings.BASE_URL)
    stubs = []
    for page_no in range(filters.page, filters.page + settings.MAX_PAGES):
        link = page_url(base, page_no)
        throttle.wait(link)
        try:
            result = fetch_search_page(
                link, client=client, render=render,
                prior_count=prior_count if page_no == filters.page else 0,
                settings=settings,
            )
            parsed = parse_search_page(result.html, settings.BASE_URL, link)
        except BlockedError as e:
            summary.blocked = True
            summary.errors.append(str(e))
            logger.warning("Search blocked, backing off until the next pass: %s", e)
            break
        except StructuralChangeError as e:
            summary.structural_change = True
            summary.errors.append(str(e))
            logger.error("Search page template changed, needs review: %s", e)
            break
        except TransientNetworkError as e:
            summary.errors.append(str(e))
            logger.warning("Giving up on %s for this pass: %s", link, e)
            break
        summary.pages += 1
        logger.info("Search page %d: %d cards, %d offers (via %s)", page_no, parsed.card_count, len(parsed.stubs), result.via)
        if not parsed.stubs:
            break
        stubs.extend(parsed.stubs)
        if len(stubs) >= settings.SCRAPE_MAX_ITEMS:
            break
    return stubs


def default_detail_fn(session_manager, settings) -> Callable:
    def detail(context, stub, warn):
        with open_page(context) as page:
            return scrape_detail(
                page, stub, session_manager,
                timeout_ms=settings.DETAIL_TIMEOUT_MS,
                max_images=settings.MAX_IMAGES,
                warn=warn,
            )
    return detail


def _detail_worker(work: queue.Queue, results: queue.Queue, stop: threading.Event,
                   resource_factory, detail_fn, throttle: HostThrottle):
    with resource_factory() as context:
        while not stop.is_set():
            try:
                stub = work.get_nowait()
            except queue.Empty:
                return
            throttle.wait(stub.url)
            warnings = []
            try:
                raw = detail_fn(context, stub, warnings.append)
                results.put(DetailOutcome(stub, raw=raw, warnings=tuple(warnings)))
            except BlockedError as e:
                logger.warning("Blocked on %s, stopping detail fetches: %s", stub.url, e)
                stop.set()
                results.put(DetailOutcome(stub, error=str(e), blocked=True))
            except TransientNetworkError as e:
                logger.warning("Transient failure on %s, retry next pass: %s", stub.url, e)
                results.put(DetailOutcome(stub, error=str(e), transient=True))
            except Exception as e:
                logger.exception("Failed to scrape %s: %s", stub.url, e)
                results.put(DetailOutcome(stub, error=f"{type(e).__name__}: {e}"))


def run_details(stubs: List[ListingStub], settings, resource_factory, detail_fn, throttle: HostThrottle):
    """Yield one DetailOutcome per processed stub as workers finish them.

    Stubs left in the queue when a block stops the pool are not yielded.
    """
    if not stubs:
        return
    work = queue.Queue()
    for stub in stubs:
        work.put(stub)
    results = queue.Queue()
    stop = threading.Event()
    workers = max(1, min(settings.CRAWL_CONCURRENCY, len(stubs)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="detail") as pool:
        futures = [
            pool.submit(_detail_worker, work, results, stop, resource_factory, detail_fn, throttle)
            for _ in range(workers)
        ]
        while True:
            try:
                yield results.get(timeout=0.2)
            except queue.Empty:
                if all(f.done() for f in futures) and results.empty():
                    break
        for f in futures:
            # worker-level failures, e.g. the browser did not start
            exc = f.exception()
            if exc is not None:
                raise exc


def run_crawl(filters: Optional[SearchFilters] = None, settings=None, db=None, client=None, render=None,
              resource_factory=None, detail_fn=None, session_manager=None, throttle=None) -> CrawlSummary:
    """Run one pass and return its summary. Never raises for per-listing failures."""
    settings = settings or default_settings
    filters = filters or filters_from_settings(settings)
    summary = CrawlSummary(started_at=crud.utcnow())
    session_manager = session_manager or SessionManager.from_settings(settings)
    throttle = throttle or HostThrottle(settings.REQUEST_DELAY, settings.BATCH_SIZE, settings.BATCH_DELAY)
    resource_factory = resource_factory or (
        lambda: browser_context(headless=settings.HEADLESS, storage_state=session_manager.storage_state())
    )
    detail_fn = detail_fn or default_detail_fn(session_manager, settings)

    own_db = db is None
    db = db or SessionLocal()
    try:
        prior = crud.count_active_listings(db, PLATFORM_WG_GESUCHT)
        try:
            if render is None:
                with BrowserRenderer(headless=settings.HEADLESS, timeout_ms=settings.DETAIL_TIMEOUT_MS) as renderer:
                    stubs = collect_stubs(filters, settings, summary, throttle, prior, client, renderer)
            else:
                stubs = collect_stubs(filters, settings, summary, throttle, prior, client, render)
        except Exception as e:
            logger.exception("Search phase failed: %s", e)
            summary.errors.append(f"search: {type(e).__name__}: {e}")
            stubs = []

        stubs = deduplicate_stubs(stubs)
        summary.seen = len(stubs)
        crud.touch_listings(db, PLATFORM_WG_GESUCHT, [s.external_id for s in stubs],
                            availability_grace_days=settings.AVAILABILITY_GRACE_DAYS)
        stubs = filter_districts(stubs, filters.districts)[: settings.SCRAPE_MAX_ITEMS]
        summary.found = len(stubs)
        logger.info("Found %d candidate listings", len(stubs))

        refetch = set()
        if not summary.blocked:
            rows = crud.listings_needing_refetch(
                db, PLATFORM_WG_GESUCHT, settings.REFETCH_BATCH, exclude=[s.external_id for s in stubs]
            )
            if rows:
                logger.info("Re-visiting %d listings stored without images or with missing fields", len(rows))
            refetch = {r.external_id for r in rows}
            stubs = stubs + [ListingStub(external_id=r.external_id, url=r.url) for r in rows]
            summary.refetched = len(rows)

        touched, processed = [], set()
        try:
            for outcome in run_details(stubs, settings, resource_factory, detail_fn, throttle):
                processed.add(outcome.stub.external_id)
                if outcome.raw is None:
                    summary.failed += 1
                    summary.errors.append(f"{outcome.stub.external_id}: {outcome.error}")
                    if outcome.transient or outcome.blocked:
                        summary.retry_later.append(outcome.stub.external_id)
                    summary.blocked = summary.blocked or outcome.blocked
                    continue
                summary.warnings.extend(str(w) for w in outcome.warnings)
                try:
                    obj, created = ingest_listing(
                        db, outcome.raw, outcome.stub, settings.MAX_IMAGES,
                        observed=outcome.stub.external_id not in refetch,
                        availability_grace_days=settings.AVAILABILITY_GRACE_DAYS,
                    )
                except Exception as e:
                    db.rollback()
                    logger.exception("Failed to store %s: %s", outcome.stub.external_id, e)
                    summary.failed += 1
                    summary.errors.append(f"{outcome.stub.external_id}: {type(e).__name__}: {e}")
                    continue
                summary.saved += 1
                summary.created += int(created)
                summary.updated += int(not created)
                touched.append(obj.id)
        except Exception as e:
            logger.exception("Detail workers failed: %s", e)
            summary.errors.append(f"workers: {type(e).__name__}: {e}")
        summary.retry_later.extend(s.external_id for s in stubs if s.external_id not in processed)
        summary.login_failed = settings.has_credentials() and not session_manager.enabled

        if summary.healthy:
            summary.deactivated = crud.sweep_stale_listings(
                db,
                pass_started_at=summary.started_at,
                missed_pass_threshold=settings.STALE_MISSED_PASSES,
                availability_grace_days=settings.AVAILABILITY_GRACE_DAYS,
            )
        else:
            logger.warning("Skipping stale sweep after an unhealthy pass")
        summary.matches = match_listings(db, touched, settings)
    finally:
        if own_db:
            db.close()

    summary.finished_at = crud.utcnow()
    logger.info(
        "Crawl finished: found=%d saved=%d (new %d, updated %d) failed=%d deactivated=%d matches=%d",
        summary.found, summary.saved, summary.created, summary.updated, summary.failed,
        summary.deactivated, summary.matches,
    )
    return summary
