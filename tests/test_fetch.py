import httpx
import pytest

from rentscout.errors import BlockedError, TransientNetworkError
from rentscout.fetch import detect_block, fetch_search_page

URL = "https://www.wg-gesucht.de/wohnungen-in-Berlin.8.2.1.0.html"
CAPTCHA = '<html><head><title>Sicherheitsüberprüfung</title></head><body><div class="g-recaptcha" data-sitekey="x"></div></body></html>'
EMPTY = "<html><body><p>Keine Ergebnisse</p></body></html>"


def client_for(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def no_sleep(seconds):
    pass


def test_plain_fetch_returns_cards(settings, search_html):
    client = client_for(lambda request: httpx.Response(200, text=search_html))
    result = fetch_search_page(URL, client=client, settings=settings, sleep=no_sleep)
    assert result.via == "http"
    assert result.status == 200
    assert result.card_count == 20


def test_403_escalates_to_renderer(settings, search_html):
    rendered = []

    def render(url):
        rendered.append(url)
        return search_html, 200

    client = client_for(lambda request: httpx.Response(403, text="Forbidden"))
    result = fetch_search_page(URL, client=client, render=render, settings=settings, sleep=no_sleep)
    assert rendered == [URL]
    assert result.via == "browser"
    assert result.card_count == 20


def test_captcha_after_render_is_blocked(settings):
    client = client_for(lambda request: httpx.Response(200, text=CAPTCHA))
    with pytest.raises(BlockedError) as exc:
        fetch_search_page(URL, client=client, render=lambda url: (CAPTCHA, 200), settings=settings, sleep=no_sleep)
    assert exc.value.url == URL
    assert "captcha" in exc.value.reason


def test_blocked_without_renderer(settings):
    client = client_for(lambda request: httpx.Response(429, text=""))
    with pytest.raises(BlockedError):
        fetch_search_page(URL, client=client, settings=settings, sleep=no_sleep)


def test_zero_results_escalate_only_after_earlier_results(settings, search_html):
    client = client_for(lambda request: httpx.Response(200, text=EMPTY))
    result = fetch_search_page(URL, client=client, prior_count=0, settings=settings, sleep=no_sleep)
    assert result.via == "http"
    assert result.card_count == 0

    result = fetch_search_page(URL, client=client, render=lambda url: (search_html, 200), prior_count=40,
                               settings=settings, sleep=no_sleep)
    assert result.via == "browser"


def test_server_errors_are_retried_then_raised(settings):
    calls, pauses = [], []

    def handler(request):
        calls.append(request.url)
        return httpx.Response(503, text="unavailable")

    settings.HTTP_RETRIES = 3
    settings.RETRY_DELAY = 1
    with pytest.raises(TransientNetworkError):
        fetch_search_page(URL, client=client_for(handler), settings=settings, sleep=pauses.append)
    assert len(calls) == 3
    assert pauses == [1, 2]


def test_connection_errors_become_transient(settings, search_html):
    attempts = []

    def handler(request):
        attempts.append(1)
        if len(attempts) == 1:
            raise httpx.ConnectError("connection reset", request=request)
        return httpx.Response(200, text=search_html)

    result = fetch_search_page(URL, client=client_for(handler), settings=settings, sleep=no_sleep)
    assert len(attempts) == 2
    assert result.card_count == 20


def test_redirect_loops_become_transient(settings):
    def handler(request):
        raise httpx.TooManyRedirects("Exceeded maximum allowed redirects", request=request)

    with pytest.raises(TransientNetworkError):
        fetch_search_page(URL, client=client_for(handler), settings=settings, sleep=no_sleep)


def test_detect_block():
    assert detect_block("", 403) == "HTTP 403"
    assert detect_block(CAPTCHA, 200).startswith("captcha markup")
    assert detect_block("<title>Just a moment...</title>", 200).startswith("suspicious title")
    assert detect_block("<title>Wohnungen in Berlin</title>", 200) is None
