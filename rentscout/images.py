# rentscout/images.py
"""Full-resolution photo recovery for a listing detail page.

Detail pages have shipped several incompatible gallery templates, so four
independent techniques run on every page and their results are merged:

    (a) gallery thumbnails rewritten to their full-size filename
    (b) the ImageGallery script payload, read by pattern matching
    (c) CSS background-image URLs inside the main content region
    (d) <img> tags inside the main content region

Output order is first-seen across (a) to (d), so the cover photo stays first.
"""
import json
import re
from typing import Iterable, List, Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

from .regions import is_excluded, main_region
from .utils import logger, make_soup

IMAGE_BASE_URL = "https://img.wg-gesucht.de/"
MAX_IMAGES = 20
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp")

SIZE_SUBSTITUTIONS = (
    (re.compile(r"\.(?:small|thumb|medium)\."), ".sized."),
    (re.compile(r"_(?:small|thumb)\."), ".sized."),
    (re.compile(r"/thumbnail\."), "/sized."),
    (re.compile(r"/scaler/\d+/\d+/"), "/scaler/1920/1080/"),
)

BLACKLIST = (
    "placeholder", "logo", "avatar", "profile", "user_", "user-", "icon", "blank",
    "/profilepics/", "/users/", "default_", "noimage", "no_image", "plus.png", "dummy",
    "sprite", "spinner", "loading",
)
THUMB_MARKERS = ("_thumb", ".thumb.", ".small.", "_small.", "/thumbnail", "/thumbs/", "-thumb.")

GALLERY_SELECTORS = (
    ".sp-slides .sp-slide img",
    ".sp-thumbnails .sp-thumbnail img",
    ".sp-thumbnail img",
    "[data-large]",
    "#WG-Pictures img",
    ".gallery img",
)
GALLERY_ATTRS = ("data-large", "data-full", "data-medium", "data-default", "data-src", "src")
IMG_ATTRS = ("data-large", "data-src", "data-lazy", "src")

# keys inside ImageGallery objects, best first
PAYLOAD_KEYS = ("large", "sized", "original", "small", "thumb", "url", "src")

_SIZE_VARIANT_RE = re.compile(r"\.(?:large|sized|medium|small|thumb)\.")
_BACKGROUND_RE = re.compile(r"background(?:-image)?\s*:[^;]*url\(\s*(['\"]?)(.*?)\1\s*\)", re.I)
_GALLERY_CALL_RE = re.compile(r"ImageGallery\s*\(")
_IMAGES_KEY_RE = re.compile(r"[\"']?images[\"']?\s*:\s*\[")
_JS_OBJECT_RE = re.compile(r"\{[^{}]*\}")
_JS_PAIR_RE = re.compile(r"[\"']?(\w+)[\"']?\s*:\s*[\"']([^\"']+)[\"']")
_JS_STRING_RE = re.compile(r"[\"']([^\"']+\.(?:jpe?g|png|webp)[^\"']*)[\"']", re.I)


def to_full_resolution(url: str) -> str:
    for pattern, replacement in SIZE_SUBSTITUTIONS:
        url = pattern.sub(replacement, url)
    return url


def canonical_url(url: str) -> str:
    """Comparison key: size variant folded, no query string or fragment."""
    parts = urlsplit(to_full_resolution(url.strip()))
    path = _SIZE_VARIANT_RE.sub(".sized.", parts.path)
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, "", ""))


def is_valid_image_url(url: Optional[str]) -> bool:
    if not url or url.startswith("data:"):
        return False
    lowered = url.lower()
    path = urlsplit(lowered).path
    if not path.endswith(IMAGE_EXTENSIONS):
        return False
    if any(b in lowered for b in BLACKLIST):
        return False
    if any(t in path for t in THUMB_MARKERS):
        return False
    return True


def _first_attr(tag, attrs):
    for attr in attrs:
        value = tag.get(attr)
        if value and not value.startswith("data:"):
            return value.strip()
    return None


def gallery_thumbnail_urls(soup, page_url: str) -> List[str]:
    """(a) thumbnails and slides mapped to full resolution."""
    out = []
    for selector in GALLERY_SELECTORS:
        for tag in soup.select(selector):
            if is_excluded(tag):
                continue
            src = _first_attr(tag, GALLERY_ATTRS)
            if src:
                out.append(to_full_resolution(urljoin(page_url, src)))
    return out


def _bracket_block(text: str, start: int) -> Optional[str]:
    """The [...] literal opening at text[start], quotes respected."""
    depth, quote, escaped = 0, None, False
    for i in range(start, len(text)):
        ch = text[i]
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in "\"'":
            quote = ch
        elif ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def _parse_js_array(literal: str) -> list:
    try:
        value = json.loads(literal)
        if isinstance(value, list):
            return value
    except ValueError:
        pass
    objects = _JS_OBJECT_RE.findall(literal)
    if objects:
        return [dict(_JS_PAIR_RE.findall(obj)) for obj in objects]
    return _JS_STRING_RE.findall(literal)


def _payload_item_url(item, image_base: str) -> Optional[str]:
    if isinstance(item, str):
        return urljoin(image_base, item)
    if not isinstance(item, dict):
        return None
    for key in PAYLOAD_KEYS:
        value = item.get(key)
        if not value or not isinstance(value, str):
            continue
        if value.startswith(("http://", "https://", "//")):
            return urljoin(image_base, value)
        if key == "original":
            return urljoin(image_base, "media/up/" + value.lstrip("/"))
        return urljoin(image_base, value.lstrip("/"))
    return None


def script_payload_urls(soup, image_base: str = IMAGE_BASE_URL) -> List[str]:
    """(b) image arrays embedded in inline scripts. Never executed.

    Scripts inside foreign-listing containers are ignored. A script that calls
    ImageGallery(...) only contributes that call's images array; other
    scripts contribute every `images: [...]` literal they hold.
    """
    out = []
    for script in soup.find_all("script"):
        if is_excluded(script):
            continue
        text = script.string or script.get_text() or ""
        if "images" not in text:
            continue
        starts = []
        for call in _GALLERY_CALL_RE.finditer(text):
            key = _IMAGES_KEY_RE.search(text, call.end())
            if key and key.end() - 1 not in starts:
                starts.append(key.end() - 1)
        if not starts:
            starts = [key.end() - 1 for key in _IMAGES_KEY_RE.finditer(text)]
        for start in starts:
            literal = _bracket_block(text, start)
            if not literal:
                continue
            for item in _parse_js_array(literal):
                url = _payload_item_url(item, image_base)
                if url:
                    out.append(to_full_resolution(url))
    return out


def css_background_urls(region, page_url: str) -> List[str]:
    """(c) background-image URLs inside the main region."""
    out = []
    for tag in region.find_all(style=True):
        if is_excluded(tag):
            continue
        for _, url in _BACKGROUND_RE.findall(tag["style"]):
            if url:
                out.append(urljoin(page_url, url.strip()))
    return out


def img_tag_urls(region, page_url: str) -> List[str]:
    """(d) plain <img> tags inside the main region."""
    out = []
    for tag in region.find_all("img"):
        if is_excluded(tag):
            continue
        src = _first_attr(tag, IMG_ATTRS)
        if src:
            out.append(urljoin(page_url, src))
    return out


def merge_image_urls(*groups: Iterable[str], limit: int = MAX_IMAGES) -> List[str]:
    seen, out = set(), []
    for group in groups:
        for url in group:
            if not is_valid_image_url(url):
                continue
            key = canonical_url(url)
            if key in seen:
                continue
            seen.add(key)
            out.append(url)
            if len(out) >= limit:
                return out
    return out


def extract_images(html, page_url: str, limit: int = MAX_IMAGES, image_base: str = IMAGE_BASE_URL) -> List[str]:
    soup = make_soup(html) if isinstance(html, str) else html
    region = main_region(soup)
    gallery = gallery_thumbnail_urls(soup, page_url)
    payload = script_payload_urls(soup, image_base)
    backgrounds = css_background_urls(region, page_url)
    tags = img_tag_urls(region, page_url)
    images = merge_image_urls(gallery, payload, backgrounds, tags, limit=limit)
    logger.debug(
        "Images for %s: gallery=%d script=%d css=%d img=%d merged=%d",
        page_url, len(gallery), len(payload), len(backgrounds), len(tags), len(images),
    )
    return images
