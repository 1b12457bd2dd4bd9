# rentscout/summary.py
"""Search-result page parsing: cards in, `ListingStub`s out."""
import re
from typing import List, NamedTuple, Optional, Tuple
from urllib.parse import urljoin, urlsplit

from .errors import StructuralChangeError
from .normalize import parse_price, parse_rooms, parse_size
from .schemas import ListingStub, PropertyType
from .urls import BASE_URL
from .utils import clean_text, logger, make_soup

CARD_SELECTORS = (
    ".wgg_card.offer_list_item",
    ".offer_list_item[data-id]",
    "div[id^='liste-details-ad-']",
)
EMPTY_RESULT_MARKERS = (
    "keine ergebnisse",
    "keine passenden anzeigen",
    "keine anzeigen gefunden",
    "leider keine",
    "no results",
)
PARTNER_MARKERS = ("housinganywhere", "spotahome", "airbnb")
REQUEST_MARKERS = ("gesuch", "request")

_ID_RE = re.compile(r"\.(\d+)\.html")


class SearchPage(NamedTuple):
    stubs: List[ListingStub]
    card_count: int
    skipped: int


def find_cards(soup) -> Tuple[list, Optional[str]]:
    for selector in CARD_SELECTORS:
        cards = soup.select(selector)
        if cards:
            return cards, selector
    return [], None


def count_result_cards(html) -> int:
    soup = make_soup(html) if isinstance(html, str) else html
    return len(find_cards(soup)[0])


def is_empty_results_page(soup) -> bool:
    text = soup.get_text(" ", strip=True).lower()
    return any(marker in text for marker in EMPTY_RESULT_MARKERS)


def is_request_card(card) -> bool:
    """Request posts ("Gesuche") share the offer container class."""
    classes = " ".join(card.get("class") or []).lower()
    if any(m in classes for m in REQUEST_MARKERS):
        return True
    if card.select_one(".gesuch, .listenansicht-gesuch"):
        return True
    return any("gesuch" in urlsplit(a.get("href") or "").path.lower() for a in card.find_all("a"))


def is_partner_ad(card) -> bool:
    return any(m in (a.get("href") or "").lower() for a in card.find_all("a") for m in PARTNER_MARKERS)


def _title_and_url(card, base_url):
    anchor = card.select_one("a[title]")
    if anchor is not None and anchor.get("href"):
        title = re.sub(r"^Anzeige ansehen:\s*", "", anchor["title"]).strip()
        return clean_text(title), urljoin(base_url, anchor["href"])
    anchor = card.select_one(".truncate_title a, h3 a") or card.find("a", href=_ID_RE)
    if anchor is None or not anchor.get("href"):
        return None, None
    return clean_text(anchor.get_text(" ", strip=True)), urljoin(base_url, anchor["href"])


def _price_and_size(card):
    price = size = None
    for cell in card.select(".col-xs-3"):
        text = cell.get_text(" ", strip=True)
        if price is None and "€" in text:
            price = parse_price(text)
        elif size is None and re.search(r"m²|m2|qm", text):
            size = parse_size(text)
    return price, size


def _location(card):
    """("2-Zimmer-Wohnung", "Friedrichshain", "Boxhagener Str. 12") from the info line."""
    span = card.select_one(".col-xs-11 span") or card.select_one(".col-xs-11")
    if span is None:
        return None, None, None
    parts = [p.strip() for p in span.get_text(" ", strip=True).split("|")]
    kind = parts[0] if parts else None
    district = re.sub(r"^Berlin\s*", "", parts[1]).strip() if len(parts) > 1 else None
    address = parts[2] if len(parts) > 2 else None
    return clean_text(kind), clean_text(district), clean_text(address)


def _rooms_and_type(kind):
    if not kind:
        return None, None
    lowered = kind.lower()
    if "wg" in lowered:
        return 1.0, PropertyType.wg_room
    if "haus" in lowered:
        return parse_rooms(kind), PropertyType.house
    rooms = parse_rooms(kind)
    if rooms is not None and rooms <= 1:
        return rooms, PropertyType.studio
    if "wohnung" in lowered:
        return rooms, PropertyType.apartment
    return rooms, None


def _thumbnail(card, base_url):
    img = card.select_one("img[src*='/scaler/'], img[data-src], img[src]")
    if img is None:
        return None
    src = img.get("data-src") or img.get("src")
    return urljoin(base_url, src) if src and not src.startswith("data:") else None


def parse_card(card, base_url: str = BASE_URL) -> Optional[ListingStub]:
    title, url = _title_and_url(card, base_url)
    if not url:
        return None
    external_id = card.get("data-id")
    if not external_id:
        m = _ID_RE.search(url)
        external_id = m.group(1) if m else None
    if not external_id:
        return None
    price, size = _price_and_size(card)
    kind, district, address = _location(card)
    rooms, ptype = _rooms_and_type(kind)
    return ListingStub(
        external_id=str(external_id),
        url=url,
        title=title,
        price=price,
        size_sqm=size,
        rooms=rooms,
        district=district,
        address=address,
        property_type=ptype,
        thumbnail=_thumbnail(card, base_url),
    )


def parse_search_page(html: str, base_url: str = BASE_URL, url: Optional[str] = None) -> SearchPage:
    """Offer stubs from one results page.

    Raises StructuralChangeError when no known card selector matches and the page
    does not say it has no results.
    """
    soup = make_soup(html)
    cards, selector = find_cards(soup)
    if not cards:
        if is_empty_results_page(soup):
            return SearchPage([], 0, 0)
        raise StructuralChangeError(url or "search page", "no result card selector matched")

    stubs, skipped = [], 0
    for card in cards:
        if is_request_card(card) or is_partner_ad(card):
            skipped += 1
            continue
        stub = parse_card(card, base_url)
        if stub is None:
            skipped += 1
            continue
        stubs.append(stub)
    logger.debug("Parsed %d stubs from %d cards via %s (%d skipped)", len(stubs), len(cards), selector, skipped)
    return SearchPage(stubs, len(cards), skipped)


def deduplicate_stubs(stubs) -> List[ListingStub]:
    """First occurrence of each (platform, external_id) in crawl order."""
    seen, out = set(), []
    for stub in stubs:
        key = (stub.platform, stub.external_id)
        if key in seen:
            continue
        seen.add(key)
        out.append(stub)
    return out
