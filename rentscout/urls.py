# rentscout/urls.py
"""Search URL grammar for wg-gesucht.de.

    /wg-zimmer-und-wohnungen-in-Berlin.8.0+2.1.0.html?offer_filter=1&city_id=8&...
     '--- segments ---'          city  id codes  | page
                                               rent type

Segment names follow category code order and are joined with "-und-"; codes are
joined with "+". A wrong join returns an empty result page, not an error.
"""
import re
from typing import List
from urllib.parse import urlencode, urlsplit, urlunsplit

from .schemas import PropertyType, SearchFilters

BASE_URL = "https://www.wg-gesucht.de"

CATEGORY_SEGMENTS = {
    0: "wg-zimmer",
    1: "1-zimmer-wohnungen",
    2: "wohnungen",
}

CATEGORY_FOR_TYPE = {
    PropertyType.wg_room: 0,
    PropertyType.studio: 1,
    PropertyType.apartment: 2,
    PropertyType.house: 2,
}

RENT_TYPE = 1  # long-term offers

_PAGE_RE = re.compile(r"\.(\d+)\.html$")


def category_codes(filters: SearchFilters) -> List[int]:
    codes = {CATEGORY_FOR_TYPE[PropertyType(t)] for t in filters.property_types if PropertyType(t) in CATEGORY_FOR_TYPE}
    if not codes:
        if filters.min_rooms is None or filters.min_rooms <= 1:
            codes.update((0, 1))
        if filters.max_rooms is None or filters.max_rooms >= 2:
            codes.add(2)
    return sorted(codes)


def build_search_url(filters: SearchFilters, base_url: str = BASE_URL) -> str:
    codes = category_codes(filters)
    segments = "-und-".join(CATEGORY_SEGMENTS[c] for c in codes)
    code_part = "+".join(str(c) for c in codes)
    path = f"/{segments}-in-{filters.city}.{filters.city_id}.{code_part}.{RENT_TYPE}.{max(filters.page, 0)}.html"

    params = [
        ("offer_filter", 1),
        ("city_id", filters.city_id),
        ("sort_order", 0),
        ("noDeact", 1),
    ]
    params.extend(("categories[]", c) for c in codes)
    if filters.min_rent is not None:
        params.append(("rent_from", int(filters.min_rent)))
    if filters.max_rent is not None:
        params.append(("rent_to", int(filters.max_rent)))
    return f"{base_url.rstrip('/')}{path}?{urlencode(params, safe='[]')}"


def page_url(url: str, page: int) -> str:
    """Same search, zero-based result page `page`."""
    parts = urlsplit(url)
    if not _PAGE_RE.search(parts.path):
        raise ValueError(f"not a paginated search url: {url}")
    path = _PAGE_RE.sub(f".{max(page, 0)}.html", parts.path)
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))
