# rentscout/regions.py
"""Page regions that belong to the listing itself, and those that don't.

Detail pages also render other listings: "similar offers" carousels, the map
card, sidebar teasers. Anything inside such a container is rejected by every
extraction strategy.
"""
from bs4 import Tag

EXCLUDED_MARKERS = (
    "similar",
    "recommend",
    "map_card",
    "offer_list_item",
    "listing-item",
    "list-details-ad",
    "sidebar",
    "rhs_",
    "related",
    "footer",
    "cookie",
)
EXCLUDED_TAGS = ("aside", "nav", "footer")

MAIN_SELECTORS = (
    "#main_column",
    ".main_column",
    "#main_content",
    "main",
    "[role=main]",
)


def _markers(tag: Tag) -> str:
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = [classes]
    return (" ".join(classes) + " " + (tag.get("id") or "")).lower()


def is_excluded(tag) -> bool:
    """True when `tag` or one of its ancestors is a foreign-listing container."""
    node = tag
    while node is not None and isinstance(node, Tag):
        if node.name in EXCLUDED_TAGS:
            return True
        markers = _markers(node)
        if any(m in markers for m in EXCLUDED_MARKERS):
            return True
        node = node.parent
    return False


def main_region(soup):
    for selector in MAIN_SELECTORS:
        for node in soup.select(selector):
            if not is_excluded(node):
                return node
    return soup.body or soup


def strip_excluded(soup):
    """Remove foreign-listing containers, scripts and styles in place."""
    for node in soup.find_all(["script", "style", "noscript", "template"]):
        node.decompose()
    for node in soup.find_all(True):
        if node.decomposed:
            continue
        if node.name in EXCLUDED_TAGS or any(m in _markers(node) for m in EXCLUDED_MARKERS):
            node.decompose()
    return soup
