# rentscout/detail.py
"""Listing detail extraction.

Every field is resolved by an ordered cascade of small strategies; the first one
that yields non-empty text wins and its name is recorded in `RawListing.sources`.
Strategies see a `DetailDocument`: the full soup for selector work (checked with
`regions.is_excluded`) and `text`, the page text with foreign-listing containers
already removed, for regex work.
"""
import re
from collections import namedtuple
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from playwright.sync_api import Error as PWError, TimeoutError as PWTimeout

from .browser import accept_cookies, hydrate
from .contact import parse_contact_panel, reveal_contact
from .errors import BlockedError, LoginFailure, PartialExtractionWarning, TransientNetworkError
from .fetch import detect_block
from .images import extract_images
from .normalize import parse_price
from .regions import is_excluded, strip_excluded
from .schemas import ListingStub, RawListing
from .utils import clean_text, logger, make_soup

Strategy = namedtuple("Strategy", ["name", "func"])

CORE_FIELDS = ("title", "price", "size", "rooms", "district", "description")

_NUM = r"(\d[\d.,]*)"
_EURO = r"\s*(?:€|eur\b|euro\b)"
_SQM = r"\s*(?:m²|m2|qm\b)"
_ID_RE = re.compile(r"\.(\d+)\.html")
_POSTAL_RE = re.compile(r"\b\d{5}\s+Berlin\b")
_POSTAL_DISTRICT_RE = re.compile(r"\b\d{5}\s+Berlin[\s,-]+([A-ZÄÖÜ][\wäöüß-]+(?:[ -][A-ZÄÖÜ][\wäöüß-]+)?)")
_SLUG_DISTRICT_RE = re.compile(r"-in-Berlin-([A-Za-zÄÖÜäöüß-]+)\.\d+\.html")
_LABEL_DISTRICT_RE = re.compile(r"(?:Stadtteil|Bezirk)\s*:?\s*([A-ZÄÖÜ][\wäöüß-]+(?:[ -][A-ZÄÖÜ][\wäöüß-]+)?)")
_ROOMS_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*-?\s*Zimmer", re.I)
_ROOMS_WORD_RE = re.compile(r"\b(ein|eine|zwei|drei|vier|fünf|sechs|sieben|acht|neun|zehn)\s*-?\s*Zimmer", re.I)
_WG_TITLE_RE = re.compile(r"wg[-\s]?zimmer|zimmer in|\d+er[-\s]?wg|\bwg\b", re.I)
_DATE_LABEL_RE = re.compile(r"(?:frei ab|verfügbar ab|einzugsdatum|available from)\s*:?\s*(\d{1,2}\.\d{1,2}\.\d{2,4})", re.I)
_FLOOR_RE = re.compile(r"\b\d{1,2}\.\s*(?:Stock|Etage|OG)\b|\b(?:Erdgeschoss|Hochparterre|Dachgeschoss)\b", re.I)
_TOTAL_FLOORS_RE = re.compile(r"(?:von|of)\s*(\d{1,2})\s*(?:Etagen|Stockwerken|Geschossen|floors)|(\d{1,2})\s*-?\s*geschossig", re.I)
_LAT_RE = re.compile(r"[\"']?lat(?:itude)?[\"']?\s*[:=]\s*[\"']?(-?\d{1,2}\.\d{3,})")
_LNG_RE = re.compile(r"[\"']?(?:lng|lon|longitude)[\"']?\s*[:=]\s*[\"']?(-?\d{1,3}\.\d{3,})")

AMENITY_PATTERNS = {
    "balcony": r"balkon|loggia",
    "terrace": r"terrasse",
    "garden": r"garten(?!haus)|gartennutzung",
    "cellar": r"keller",
    "elevator": r"aufzug|fahrstuhl|lift\b",
    "furnished": r"möbliert|moebliert|furnished",
    "fitted_kitchen": r"einbauküche|ebk\b",
    "dishwasher": r"spülmaschine|geschirrspüler",
    "washing_machine": r"waschmaschine",
    "internet": r"internet|wlan|wifi|dsl\b",
    "parking": r"parkplatz|stellplatz|tiefgarage",
    "pets_allowed": r"haustiere erlaubt|haustiere willkommen|pets allowed",
    "bathtub": r"badewanne",
    "wheelchair_accessible": r"barrierefrei|rollstuhl",
}
_NEGATION = r"\bkein(?:e|en|er)?\s+(?:\w+\s+)?"


def _clean(value) -> Optional[str]:
    return clean_text(value)


class DetailDocument:
    """One parsed detail page plus values resolved so far."""

    def __init__(self, html: str, url: str):
        self.url = url
        self.soup = make_soup(html)
        self.clean = strip_excluded(make_soup(html))
        self.text = self.clean.get_text(" ", strip=True)
        title = self.soup.title.string if self.soup.title and self.soup.title.string else ""
        self.page_title = " ".join(title.split())
        self.resolved: Dict[str, Optional[str]] = {}
        self._facts = None

    @property
    def facts(self) -> List[Tuple[str, str]]:
        if self._facts is None:
            self._facts = key_facts(self.soup)
        return self._facts

    def fact(self, *labels, exclude=()) -> Optional[str]:
        for label, value in self.facts:
            if any(label.startswith(l) for l in labels) and not any(x in label for x in exclude):
                return value
        return None

    def search(self, pattern, group=1) -> Optional[str]:
        m = re.search(pattern, self.text, re.I) if isinstance(pattern, str) else pattern.search(self.text)
        return _clean(m.group(group)) if m else None

    def select_text(self, selector, sep=" ") -> Optional[str]:
        for tag in self.soup.select(selector):
            if is_excluded(tag):
                continue
            text = _clean(tag.get_text(sep, strip=True))
            if text:
                return text
        return None


def _label(text) -> str:
    return (_clean(text) or "").lower().rstrip(":").strip()


def key_facts(soup) -> List[Tuple[str, str]]:
    """(label, value) pairs from the key-fact panels and cost tables."""
    pairs = []
    for value_cls, label_cls in (("key_fact_value", "key_fact_detail"), ("section_panel_value", "section_panel_detail")):
        for value in soup.select(f".{value_cls}"):
            if is_excluded(value):
                continue
            parent = value.parent
            label = parent.select_one(f".{label_cls}") if parent is not None else None
            if label is not None:
                pairs.append((_label(label.get_text(" ", strip=True)), _clean(value.get_text(" ", strip=True)) or ""))
    for row in soup.select("table tr"):
        if is_excluded(row):
            continue
        cells = row.find_all(["td", "th"])
        if len(cells) >= 2:
            pairs.append((_label(cells[0].get_text(" ", strip=True)), _clean(cells[1].get_text(" ", strip=True)) or ""))
    return [(label, value) for label, value in pairs if label and value]


# title

def title_headline(doc):
    return doc.select_text(".headline-detailed-view-title, #sliderTopTitle")

def title_h1(doc):
    return doc.select_text("h1")

def title_og(doc):
    meta = doc.soup.find("meta", property="og:title")
    return _clean(meta.get("content")) if meta else None

def title_tag(doc):
    return _clean(re.split(r"\s+[-|]\s+WG-Gesucht", doc.page_title, flags=re.I)[0]) if doc.page_title else None


# rent

def price_key_fact(doc):
    return doc.fact("miete", "kaltmiete", exclude=("gesamt", "warm", "neben"))

def price_labelled(doc):
    m = re.search(r"\b(?:kalt)?miete\s*:?\s*" + _NUM + _EURO, doc.text, re.I)
    return f"{m.group(1)} €" if m else None

def price_headline(doc):
    for label, value in doc.facts:
        if "€" in value and "gesamt" not in label and "kaution" not in label and "neben" not in label:
            return value
    return None

def price_title(doc):
    m = re.search(_NUM + _EURO, doc.resolved.get("title") or doc.page_title, re.I)
    return f"{m.group(1)} €" if m else None


def warm_key_fact(doc):
    return doc.fact("gesamtmiete", "warmmiete")

def warm_labelled(doc):
    m = re.search(r"\b(?:gesamt|warm)miete\s*:?\s*" + _NUM + _EURO, doc.text, re.I)
    return f"{m.group(1)} €" if m else None

def warm_from_costs(doc):
    cold = parse_price(doc.resolved.get("price"))
    extra = parse_price(doc.fact("nebenkosten") or doc.search(r"nebenkosten\s*:?\s*" + _NUM + _EURO))
    if cold is None or extra is None:
        return None
    return f"{int(cold + extra) if (cold + extra).is_integer() else cold + extra} €"


# size

def size_key_fact(doc):
    for label, value in doc.facts:
        if re.search(_NUM + _SQM, value, re.I) and "miete" not in label:
            return value
    return None

def size_labelled(doc):
    m = re.search(r"(?:zimmergröße|wohnungsgröße|wohnfläche|größe)\s*:?\s*" + _NUM + _SQM, doc.text, re.I)
    return f"{m.group(1)} m²" if m else None

def size_first_in_text(doc):
    m = re.search(_NUM + _SQM, doc.text, re.I)
    return f"{m.group(1)} m²" if m else None

def size_title(doc):
    m = re.search(_NUM + _SQM, doc.resolved.get("title") or doc.page_title, re.I)
    return f"{m.group(1)} m²" if m else None


# rooms

def rooms_size_anchored(doc):
    """"3 Zimmer | 75 m²" or "75 m² | 3 Zimmer" around the size already found."""
    size = doc.resolved.get("size")
    m = re.search(r"\d[\d.,]*", size or "")
    if not m:
        return None
    num = re.escape(m.group(0))
    patterns = (
        r"(\d+(?:[.,]\d+)?)\s*-?\s*Zimmer(?:-?Wohnung)?\s*\|\s*" + num + _SQM,
        r"\b" + num + _SQM + r"\s*\|\s*(\d+(?:[.,]\d+)?)\s*-?\s*Zimmer",
    )
    for pattern in patterns:
        found = re.search(pattern, doc.text, re.I)
        if found:
            return f"{found.group(1)} Zimmer"
    return None

def rooms_bold(doc):
    for tag in doc.soup.find_all(["b", "strong"]):
        if is_excluded(tag):
            continue
        text = _clean(tag.get_text(" ", strip=True)) or ""
        if "zimmer" in text.lower() and (_ROOMS_RE.search(text) or _ROOMS_WORD_RE.search(text)):
            return text
    return None

def rooms_title(doc):
    for source in (doc.page_title, doc.resolved.get("title") or ""):
        m = _ROOMS_RE.search(source) or _ROOMS_WORD_RE.search(source)
        if m:
            return m.group(0)
    return None

def rooms_wg_room(doc):
    title = doc.resolved.get("title") or doc.page_title
    return "1" if title and _WG_TITLE_RE.search(title) else None


# location

def address_block(doc):
    for string in doc.clean.find_all(string=_POSTAL_RE):
        parent = string.parent
        text = _clean(parent.get_text(" ", strip=True)) if parent is not None else None
        if text and len(text) < 200:
            return text
    return None

def district_postal_line(doc):
    m = _POSTAL_DISTRICT_RE.search(doc.resolved.get("address") or "") or _POSTAL_DISTRICT_RE.search(doc.text)
    return m.group(1) if m else None

def district_breadcrumb(doc):
    parts = [_clean(li.get_text(" ", strip=True)) for li in doc.soup.select(".breadcrumb li, ol.breadcrumb a, nav.breadcrumb a")]
    parts = [p for p in parts if p]
    for i, part in enumerate(parts[:-1]):
        if part.lower().startswith("berlin") and i + 1 < len(parts):
            candidate = parts[i + 1]
            if not re.search(r"anzeige|wg-zimmer|wohnung", candidate, re.I):
                return candidate
    return None

def district_url_slug(doc):
    m = _SLUG_DISTRICT_RE.search(doc.url or "")
    return m.group(1).replace("-", " ") if m else None

def district_labelled(doc):
    return doc.search(_LABEL_DISTRICT_RE)


# text

def description_main(doc):
    node = doc.clean.select_one("#ad_description_text")
    if node is None:
        return None
    for junk in node.select("[id^=div-gpt], .ad, .advertisement"):
        junk.decompose()
    return node.get_text("\n", strip=True) or None

def description_freitext(doc):
    sections = [s.get_text("\n", strip=True) for s in doc.clean.select(".freitext, [id^=freitext_]")]
    text = "\n\n".join(s for s in sections if s)
    return text or None

def description_meta(doc):
    for attrs in ({"name": "description"}, {"property": "og:description"}):
        meta = doc.soup.find("meta", attrs=attrs)
        if meta and meta.get("content"):
            return _clean(meta["content"])
    return None


def available_key_fact(doc):
    return doc.fact("frei ab", "verfügbar ab", "einzugsdatum")

def available_labelled(doc):
    return doc.search(_DATE_LABEL_RE)

def floor_key_fact(doc):
    return doc.fact("etage", "stockwerk", "geschoss")

def floor_text(doc):
    return doc.search(_FLOOR_RE, group=0)

def total_floors_text(doc):
    m = _TOTAL_FLOORS_RE.search(doc.text)
    return (m.group(1) or m.group(2)) if m else None

def contact_name_profile(doc):
    return doc.select_text(".contact_box_user_name, .user_profile_info .text-capitalise, .profile_name")

def latitude_script(doc):
    for node in doc.soup.select("[data-lat]"):
        return node.get("data-lat")
    for script in doc.soup.find_all("script"):
        m = _LAT_RE.search(script.get_text() or "")
        if m:
            return m.group(1)
    return None

def longitude_script(doc):
    for node in doc.soup.select("[data-lng], [data-lon]"):
        return node.get("data-lng") or node.get("data-lon")
    for script in doc.soup.find_all("script"):
        m = _LNG_RE.search(script.get_text() or "")
        if m:
            return m.group(1)
    return None


FIELD_CASCADES: Sequence[Tuple[str, Sequence[Strategy]]] = (
    ("title", (Strategy("headline", title_headline), Strategy("h1", title_h1),
               Strategy("og_title", title_og), Strategy("title_tag", title_tag))),
    ("price", (Strategy("key_fact", price_key_fact), Strategy("labelled", price_labelled),
               Strategy("headline", price_headline), Strategy("title", price_title))),
    ("warm_rent", (Strategy("key_fact", warm_key_fact), Strategy("labelled", warm_labelled),
                   Strategy("cold_plus_costs", warm_from_costs))),
    ("size", (Strategy("key_fact", size_key_fact), Strategy("labelled", size_labelled),
              Strategy("first_in_text", size_first_in_text), Strategy("title", size_title))),
    ("rooms", (Strategy("size_anchored", rooms_size_anchored), Strategy("bold", rooms_bold),
               Strategy("title", rooms_title), Strategy("wg_room", rooms_wg_room))),
    ("address", (Strategy("postal_block", address_block),)),
    ("district", (Strategy("postal_line", district_postal_line), Strategy("breadcrumb", district_breadcrumb),
                  Strategy("url_slug", district_url_slug), Strategy("labelled", district_labelled))),
    ("description", (Strategy("main", description_main), Strategy("freitext", description_freitext),
                     Strategy("meta", description_meta))),
    ("available_from", (Strategy("key_fact", available_key_fact), Strategy("labelled", available_labelled))),
    ("floor", (Strategy("key_fact", floor_key_fact), Strategy("text", floor_text))),
    ("total_floors", (Strategy("text", total_floors_text),)),
    ("contact_name", (Strategy("profile", contact_name_profile),)),
    ("latitude", (Strategy("script", latitude_script),)),
    ("longitude", (Strategy("script", longitude_script),)),
)


def run_cascade(doc: DetailDocument, strategies: Sequence[Strategy]) -> Tuple[Optional[str], Optional[str]]:
    """First non-empty strategy result and the strategy's name."""
    for strategy in strategies:
        value = strategy.func(doc)
        if value is not None and str(value).strip():
            return str(value).strip(), strategy.name
    return None, None


def extract_amenities(text: str) -> Dict[str, bool]:
    lowered = text.lower()
    out = {}
    for key, pattern in AMENITY_PATTERNS.items():
        if re.search(_NEGATION + r"(?:" + pattern + r")", lowered):
            out[key] = False
        elif re.search(pattern, lowered):
            out[key] = True
    return out


def property_type_hint(url: str) -> Optional[str]:
    path = (url or "").lower()
    for marker, ptype in (("/wg-zimmer-in-", "wg_room"), ("/1-zimmer-wohnungen-in-", "studio"),
                          ("/wohnungen-in-", "apartment"), ("/haeuser-in-", "house")):
        if marker in path:
            return ptype
    return None


def external_id_from_url(url: str) -> Optional[str]:
    m = _ID_RE.search(url or "")
    return m.group(1) if m else None


def extract_fields(html: str, url: str, external_id: Optional[str] = None) -> RawListing:
    """Pure: same HTML in, same RawListing out."""
    doc = DetailDocument(html, url)
    sources = {}
    for field, strategies in FIELD_CASCADES:
        value, name = run_cascade(doc, strategies)
        doc.resolved[field] = value
        if name:
            sources[field] = name
    data = dict(doc.resolved)
    missing = [f for f in CORE_FIELDS if not data.get(f)]
    return RawListing(
        external_id=external_id or external_id_from_url(url) or url,
        url=url,
        amenities=extract_amenities(doc.text),
        property_type=property_type_hint(url),
        allows_auto_apply=doc.soup.select_one("#contact_request_form, a[href*='nachricht-senden'], .message_button") is not None,
        sources=sources,
        missing_fields=missing,
        **data,
    )


def scrape_detail(page, stub: ListingStub, session_manager=None, timeout_ms: int = 45000,
                  max_images: int = 20, warn: Optional[Callable] = None) -> RawListing:
    """Visit one listing in an open Playwright page and extract everything."""
    page.set_default_timeout(timeout_ms)
    try:
        response = page.goto(stub.url, timeout=timeout_ms, wait_until="domcontentloaded")
    except PWTimeout as e:
        raise TransientNetworkError(f"timeout loading {stub.url}: {e}") from e
    except PWError as e:
        raise TransientNetworkError(f"browser error loading {stub.url}: {e}") from e
    status = response.status if response is not None else None
    if status is not None and status >= 500:
        raise TransientNetworkError(f"HTTP {status} for {stub.url}")

    accept_cookies(page)
    html = page.content()
    reason = detect_block(html, status)
    if reason:
        raise BlockedError(stub.url, reason)
    hydrate(page)
    html = page.content()

    raw = extract_fields(html, stub.url, stub.external_id)
    raw.images = extract_images(html, stub.url, limit=max_images)

    # published contacts are read without a login; only the reveal is gated
    contact = parse_contact_panel(html)
    if session_manager is not None and session_manager.enabled:
        try:
            contact = reveal_contact(page, session_manager)
        except LoginFailure as e:
            logger.warning("Login failed, skipping phone numbers for this pass: %s", e)
        except PWError as e:
            logger.warning("Phone reveal failed on %s, keeping the listing without it: %s", stub.url, e)
    raw.contact_name = contact.name or raw.contact_name
    raw.contact_phone = contact.phone or raw.contact_phone
    raw.contact_email = contact.email or raw.contact_email

    if raw.missing_fields and warn is not None:
        warn(PartialExtractionWarning(stub.external_id, raw.missing_fields))
    return raw
