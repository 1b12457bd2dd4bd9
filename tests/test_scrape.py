import contextlib
from datetime import timedelta

import httpx
import pytest
from playwright.sync_api import Error as PWError

from rentscout import crud
from rentscout.browser import BrowserRenderer
from rentscout.detail import extract_fields
from rentscout.errors import BlockedError, PartialExtractionWarning, TransientNetworkError
from rentscout.schemas import ListingStub, RawListing, SearchFilters
from rentscout.scrape import HostThrottle, filter_districts, run_crawl

EMPTY = "<html><body><p>Keine Ergebnisse</p></body></html>"
IMAGE = "https://img.wg-gesucht.de/media/up/2026/10/{}.large.jpg"


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.pauses = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.pauses.append(seconds)
        self.now += seconds


def search_client(first_page):
    def handler(request):
        if request.url.path.endswith(".0.html"):
            return httpx.Response(200, text=first_page)
        return httpx.Response(200, text=EMPTY)
    return httpx.Client(transport=httpx.MockTransport(handler))


def no_render(url):
    raise AssertionError(f"unexpected browser escalation for {url}")


def no_resources():
    return contextlib.nullcontext(None)


def make_detail_fn(detail_html, fail=None):
    fail = fail or {}

    def detail(context, stub, warn):
        if stub.external_id in fail:
            raise fail[stub.external_id]
        if stub.external_id == "10138526":
            raw = extract_fields(detail_html, stub.url, stub.external_id)
        else:
            raw = RawListing(external_id=stub.external_id, url=stub.url, description="Schöne Wohnung")
            warn(PartialExtractionWarning(stub.external_id, ["size"]))
        raw.images = [IMAGE.format(stub.external_id)]
        return raw
    return detail


def seed_stale_listing(db, settings):
    settings.STALE_MISSED_PASSES = 1
    past = crud.utcnow() - timedelta(days=1)
    crud.upsert_listing(db, {
        "platform": "wg_gesucht", "external_id": "555",
        "url": "https://www.wg-gesucht.de/wohnungen-in-Berlin-Mitte.555.html", "title": "Alt",
    }, now=past)


def test_throttle_spaces_requests_and_pauses_between_batches():
    clock = FakeClock()
    throttle = HostThrottle(2.0, batch_size=3, batch_delay=10.0, clock=clock, sleep=clock.sleep)
    pauses = [throttle.wait("https://www.wg-gesucht.de/a.html") for _ in range(4)]
    assert pauses == [0, 2.0, 2.0, 10.0]
    assert throttle.wait("https://img.wg-gesucht.de/x.jpg") == 0


def test_filter_districts_keeps_unknown():
    stubs = [
        ListingStub(external_id="1", url="https://x/1", district="Kreuzberg"),
        ListingStub(external_id="2", url="https://x/2", district="Spandau"),
        ListingStub(external_id="3", url="https://x/3"),
    ]
    assert [s.external_id for s in filter_districts(stubs, ["Friedrichshain"])] == ["1", "3"]
    assert len(filter_districts(stubs, [])) == 3


def test_full_pass(db, settings, search_html, detail_html):
    seed_stale_listing(db, settings)
    crud.create_preference(db, {"user_id": "u1", "max_rent": 2000, "districts": [], "property_types": []})
    detail_fn = make_detail_fn(detail_html, fail={
        "10300003": TransientNetworkError("timeout"),
        "10300004": RuntimeError("parser exploded"),
    })

    summary = run_crawl(
        settings=settings, db=db, client=search_client(search_html), render=no_render,
        resource_factory=no_resources, detail_fn=detail_fn,
    )

    assert summary.pages == 2
    assert summary.seen == 18
    assert summary.found == 18
    assert summary.saved == 16
    assert summary.created == 16
    assert summary.failed == 2
    assert summary.retry_later == ["10300003"]
    assert len(summary.errors) == 2
    assert len(summary.warnings) == 15
    assert summary.blocked is False and summary.structural_change is False
    assert summary.deactivated == 1
    assert summary.matches == 16
    assert summary.finished_at >= summary.started_at

    first = crud.get_listing_by_key(db, "wg_gesucht", "10138526")
    assert float(first.price) == 950
    assert first.district == "Friedrichshain-Kreuzberg"
    assert first.images == [IMAGE.format("10138526")]
    card_only = crud.get_listing_by_key(db, "wg_gesucht", "10200001")
    assert float(card_only.price) == 590
    assert card_only.property_type == "wg_room"
    assert crud.get_listing_by_key(db, "wg_gesucht", "555").is_active is False
    assert crud.get_listing_by_key(db, "wg_gesucht", "10300004") is None


def test_second_pass_updates_without_duplicates(db, settings, search_html, detail_html):
    kwargs = dict(settings=settings, db=db, client=search_client(search_html), render=no_render,
                  resource_factory=no_resources, detail_fn=make_detail_fn(detail_html))
    first = run_crawl(**kwargs)
    second = run_crawl(**kwargs)
    assert first.created == 18
    assert second.created == 0
    assert second.updated == 18
    assert crud.count_active_listings(db, "wg_gesucht") == 18


def test_district_filter_limits_detail_fetches(db, settings, search_html, detail_html):
    fetched = []
    detail_fn = make_detail_fn(detail_html)

    def recording(context, stub, warn):
        fetched.append(stub.external_id)
        return detail_fn(context, stub, warn)

    summary = run_crawl(
        filters=SearchFilters(districts=["Kreuzberg"]), settings=settings, db=db,
        client=search_client(search_html), render=no_render, resource_factory=no_resources, detail_fn=recording,
    )
    assert summary.seen == 18
    assert summary.found == 2
    assert sorted(fetched) == ["10138526", "10300003"]


def test_blocked_search_skips_sweep(db, settings):
    seed_stale_listing(db, settings)
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(403, text="Forbidden")))
    captcha = '<html><body><div class="g-recaptcha"></div></body></html>'
    summary = run_crawl(
        settings=settings, db=db, client=client, render=lambda url: (captcha, 200),
        resource_factory=no_resources, detail_fn=lambda context, stub, warn: pytest.fail("no details expected"),
    )
    assert summary.blocked is True
    assert summary.found == 0
    assert summary.deactivated == 0
    assert crud.get_listing_by_key(db, "wg_gesucht", "555").is_active is True


def test_changed_template_is_reported(db, settings):
    seed_stale_listing(db, settings)
    page = "<html><body><div class='results-v2'><article>Wohnung</article></div></body></html>"
    summary = run_crawl(
        settings=settings, db=db, client=search_client(page), render=no_render,
        resource_factory=no_resources, detail_fn=lambda context, stub, warn: pytest.fail("no details expected"),
    )
    assert summary.structural_change is True
    assert summary.deactivated == 0
    assert crud.get_listing_by_key(db, "wg_gesucht", "555").is_active is True


def test_block_during_details_stops_the_pool(db, settings, search_html, detail_html):
    seed_stale_listing(db, settings)
    settings.CRAWL_CONCURRENCY = 1
    detail_fn = make_detail_fn(detail_html, fail={"10300000": BlockedError("https://x", "HTTP 429")})
    summary = run_crawl(
        settings=settings, db=db, client=search_client(search_html), render=no_render,
        resource_factory=no_resources, detail_fn=detail_fn,
    )
    assert summary.blocked is True
    assert summary.saved == 2
    assert summary.failed == 1
    assert len(summary.retry_later) == 16
    assert summary.retry_later[0] == "10300000"
    assert summary.deactivated == 0


def test_browser_crash_during_search_still_returns_summary(db, settings):
    seed_stale_listing(db, settings)
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(403, text="Forbidden")))

    def crashing_render(url):
        raise PWError("net::ERR_CONNECTION_RESET")

    summary = run_crawl(
        settings=settings, db=db, client=client, render=crashing_render,
        resource_factory=no_resources, detail_fn=lambda context, stub, warn: pytest.fail("no details expected"),
    )
    assert summary.finished_at is not None
    assert summary.seen == 0
    assert any("ERR_CONNECTION_RESET" in e for e in summary.errors)
    assert summary.deactivated == 0
    assert crud.get_listing_by_key(db, "wg_gesucht", "555").is_active is True


def test_renderer_reports_browser_failures_as_transient(monkeypatch):
    renderer = BrowserRenderer()

    def broken_start():
        raise PWError("Executable doesn't exist")

    monkeypatch.setattr(renderer, "_start", broken_start)
    with pytest.raises(TransientNetworkError):
        renderer("https://www.wg-gesucht.de/wohnungen-in-Berlin.8.2.1.0.html")
    renderer.close()


def test_listings_without_images_are_revisited(db, settings, search_html, detail_html):
    settings.REFETCH_BATCH = 5
    past = crud.utcnow() - timedelta(days=1)
    crud.upsert_listing(db, {
        "platform": "wg_gesucht", "external_id": "777",
        "url": "https://www.wg-gesucht.de/wohnungen-in-Berlin-Mitte.777.html", "title": "Ohne Bilder", "images": [],
    }, now=past)
    fetched = []
    detail_fn = make_detail_fn(detail_html)

    def recording(context, stub, warn):
        fetched.append(stub.external_id)
        return detail_fn(context, stub, warn)

    summary = run_crawl(
        settings=settings, db=db, client=search_client(search_html), render=no_render,
        resource_factory=no_resources, detail_fn=recording,
    )
    assert summary.found == 18
    assert summary.refetched == 1
    assert "777" in fetched
    assert summary.created == 18
    assert summary.updated == 1

    db.expire_all()
    revisited = crud.get_listing_by_key(db, "wg_gesucht", "777")
    assert revisited.images == [IMAGE.format("777")]
    assert revisited.needs_image_refetch is False
    assert revisited.title == "Ohne Bilder"
    # a re-visit is not a sighting on the result pages
    assert revisited.last_seen_at.replace(tzinfo=None) == past.replace(tzinfo=None)
    assert revisited.missed_passes == 1
