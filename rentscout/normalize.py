# rentscout/normalize.py
"""Coerce extracted strings into typed, bounded listing fields.

German listings write "1.200 €" for twelve hundred and "2,5 Zimmer" for two and a
half rooms, so number parsing has to know which separator is which. Every parser
here returns None on garbage instead of raising.
"""
import re
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from .images import canonical_url, is_valid_image_url
from .schemas import ListingCreate, ListingStub, PropertyType, RawListing
from .utils import clean_text

PRICE_BOUNDS = (50, 20000)
SIZE_BOUNDS = (5, 1000)
ROOM_BOUNDS = (0.5, 20)
FLOOR_BOUNDS = (-2, 100)
CORE_FIELDS = ("title", "price", "size_sqm", "rooms", "district", "description")

_NUMBER_RE = re.compile(r"\d[\d.,]*")
_DOT_THOUSANDS_RE = re.compile(r"^\d{1,3}(\.\d{3})+$")
_COMMA_THOUSANDS_RE = re.compile(r"^\d{1,3}(,\d{3}){2,}$")

NUMBER_WORDS = {
    "ein": 1, "eine": 1, "einem": 1, "einer": 1, "eins": 1,
    "zwei": 2, "drei": 3, "vier": 4, "fünf": 5, "fuenf": 5,
    "sechs": 6, "sieben": 7, "acht": 8, "neun": 9, "zehn": 10,
}
_ROOMS_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*-?\s*(?:zimmer|zi\b|zi\.|räume|raum|rooms?)", re.I)
_ROOMS_WORD_RE = re.compile(r"\b(" + "|".join(NUMBER_WORDS) + r")\s*-?\s*(?:zimmer|raum)", re.I)
_DATE_RE = re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{2,4})")
_ISO_DATE_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")
_FLOOR_RE = re.compile(r"(-?\d+)\s*\.?\s*(?:stock|etage|og|obergeschoss|floor)", re.I)
_GROUND_FLOOR_RE = re.compile(r"\b(eg|erdgeschoss|hochparterre|parterre|ground floor)\b", re.I)
_BASEMENT_RE = re.compile(r"\b(ug|untergeschoss|souterrain|keller(?:geschoss)?)\b", re.I)
_EMAIL_RE = re.compile(r"^[\w.+-]+@[\w-]+(\.[\w-]+)+$")


def parse_number(text, thousands_dot: bool = True) -> Optional[float]:
    """First number in `text`, German separators by default.

    With both separators present the last one is the decimal mark. A lone dot
    followed by exactly three digits is a thousands separator when
    `thousands_dot` is set; a lone comma is a decimal mark.
    """
    if text is None:
        return None
    if isinstance(text, (int, float)):
        return float(text)
    m = _NUMBER_RE.search(str(text))
    if not m:
        return None
    token = m.group(0).rstrip(".,")
    if "." in token and "," in token:
        if token.rfind(",") > token.rfind("."):
            token = token.replace(".", "").replace(",", ".")
        else:
            token = token.replace(",", "")
    elif "," in token:
        if _COMMA_THOUSANDS_RE.match(token):
            token = token.replace(",", "")
        else:
            token = token.replace(",", ".", 1).replace(",", "")
    elif "." in token:
        if thousands_dot and _DOT_THOUSANDS_RE.match(token):
            token = token.replace(".", "")
        elif token.count(".") > 1:
            token = token.replace(".", "")
    try:
        return float(token)
    except ValueError:
        return None


def parse_price(text) -> Optional[float]:
    return parse_number(text, thousands_dot=True)


def parse_size(text) -> Optional[float]:
    return parse_number(text, thousands_dot=True)


def parse_rooms(text) -> Optional[float]:
    """Room count from "2,5 Zimmer", "3-Zimmer-Wohnung", "Zwei Zimmer" or a bare number."""
    if text is None:
        return None
    if isinstance(text, (int, float)):
        return float(text)
    s = str(text)
    m = _ROOMS_RE.search(s)
    if m:
        return parse_number(m.group(1), thousands_dot=False)
    m = _ROOMS_WORD_RE.search(s)
    if m:
        return float(NUMBER_WORDS[m.group(1).lower()])
    if re.fullmatch(r"\s*\d+(?:[.,]\d+)?\s*", s):
        return parse_number(s, thousands_dot=False)
    return None


def parse_int(text) -> Optional[int]:
    n = parse_number(text)
    return int(n) if n is not None else None


def parse_floor(text) -> Optional[int]:
    if text is None:
        return None
    s = str(text)
    m = _FLOOR_RE.search(s)
    if m:
        return int(m.group(1))
    if _GROUND_FLOOR_RE.search(s):
        return 0
    if _BASEMENT_RE.search(s):
        return -1
    if re.fullmatch(r"\s*-?\d+\s*", s):
        return int(s)
    return None


def parse_coordinate(text) -> Optional[float]:
    if text is None:
        return None
    try:
        value = float(str(text).strip().replace(",", "."))
    except ValueError:
        return None
    return value if -180 <= value <= 180 else None


def parse_german_date(text) -> Optional[date]:
    """dd.mm.yyyy, dd.mm.yy or ISO dates. "sofort" and friends give None."""
    if text is None:
        return None
    if isinstance(text, datetime):
        return text.date()
    if isinstance(text, date):
        return text
    s = str(text)
    m = _DATE_RE.search(s)
    try:
        if m:
            day, month, year = (int(g) for g in m.groups())
            if year < 100:
                year += 2000
            return date(year, month, day)
        m = _ISO_DATE_RE.search(s)
        if m:
            year, month, day = (int(g) for g in m.groups())
            return date(year, month, day)
    except ValueError:
        return None
    return None


def clamp(value, low, high):
    """Implausible values become None rather than being pinned to the edge."""
    if value is None:
        return None
    if value < low or value > high:
        return None
    return value


# canonical Berlin boroughs and the Ortsteile listings name instead
BOROUGHS = {
    "Mitte": ["mitte", "moabit", "wedding", "gesundbrunnen", "tiergarten", "hansaviertel"],
    "Friedrichshain-Kreuzberg": ["friedrichshain", "kreuzberg", "friedrichshain-kreuzberg", "xberg"],
    "Pankow": ["pankow", "prenzlauer berg", "prenzlberg", "weißensee", "heinersdorf", "niederschönhausen",
               "französisch buchholz", "rosenthal", "buch", "blankenburg", "karow", "wilhelmsruh"],
    "Charlottenburg-Wilmersdorf": ["charlottenburg", "wilmersdorf", "charlottenburg-wilmersdorf", "westend",
                                   "grunewald", "halensee", "schmargendorf", "charlottenburg-nord"],
    "Spandau": ["spandau", "staaken", "siemensstadt", "haselhorst", "kladow", "gatow", "hakenfelde"],
    "Steglitz-Zehlendorf": ["steglitz", "zehlendorf", "steglitz-zehlendorf", "lichterfelde", "lankwitz",
                            "dahlem", "wannsee", "nikolassee"],
    "Tempelhof-Schöneberg": ["tempelhof", "schöneberg", "tempelhof-schöneberg", "friedenau", "mariendorf",
                             "marienfelde", "lichtenrade"],
    "Neukölln": ["neukölln", "britz", "buckow", "rudow", "gropiusstadt"],
    "Treptow-Köpenick": ["treptow", "köpenick", "treptow-köpenick", "alt-treptow", "adlershof",
                         "baumschulenweg", "johannisthal", "niederschöneweide", "oberschöneweide",
                         "plänterwald", "friedrichshagen", "grünau", "altglienicke", "rahnsdorf"],
    "Marzahn-Hellersdorf": ["marzahn", "hellersdorf", "marzahn-hellersdorf", "biesdorf", "kaulsdorf",
                            "mahlsdorf"],
    "Lichtenberg": ["lichtenberg", "friedrichsfelde", "karlshorst", "rummelsburg", "hohenschönhausen",
                    "alt-hohenschönhausen", "neu-hohenschönhausen", "fennpfuhl", "malchow"],
    "Reinickendorf": ["reinickendorf", "tegel", "wittenau", "hermsdorf", "frohnau", "heiligensee",
                      "märkisches viertel", "borsigwalde", "waidmannslust", "lübars"],
}


def fold_text(text: str) -> str:
    s = text.lower()
    for src, dst in (("ä", "ae"), ("ö", "oe"), ("ü", "ue"), ("ß", "ss")):
        s = s.replace(src, dst)
    return " ".join(re.sub(r"[^a-z0-9]+", " ", s).split())

_DISTRICT_ALIASES = sorted(
    ((fold_text(alias), borough) for borough, aliases in BOROUGHS.items() for alias in aliases),
    key=lambda pair: len(pair[0]),
    reverse=True,
)
_DISTRICT_EXACT = dict(_DISTRICT_ALIASES)


def normalize_district(name) -> Optional[str]:
    """Map a district or Ortsteil spelling onto one of the twelve boroughs.

    Unknown names are returned cleaned up but otherwise untouched.
    """
    name = clean_text(name)
    if not name:
        return None
    key = fold_text(name)
    if key in _DISTRICT_EXACT:
        return _DISTRICT_EXACT[key]
    padded = f" {key} "
    for alias, borough in _DISTRICT_ALIASES:
        if f" {alias} " in padded:
            return borough
    cleaned = re.sub(r"^\d{5}\s+", "", name)
    cleaned = re.sub(r"^berlin[\s,-]+", "", cleaned, flags=re.I).strip(" ,-")
    return cleaned or None


def canonical_district_set(names: Iterable[str]) -> set:
    return {d for d in (normalize_district(n) for n in names or []) if d}


_TYPE_KEYWORDS = [
    (PropertyType.wg_room, re.compile(r"wg[-\s]?zimmer|\bwg\b|mitbewohner|zimmer in (?:einer|der|\d)|\d+er[-\s]?wg|shared flat", re.I)),
    (PropertyType.house, re.compile(r"einfamilienhaus|reihenhaus|doppelhaush\w*|\bhaus\b|\bhouse\b", re.I)),
    (PropertyType.studio, re.compile(r"\b(?:1|ein)[-\s]?zimmer[-\s]?wohnung|einzimmerwohnung|\bstudio\b|\bapartment\b|\bappartement\b", re.I)),
    (PropertyType.apartment, re.compile(r"wohnung|\bflat\b|maisonette|altbau|neubau", re.I)),
]


def derive_property_type(title=None, description=None, rooms=None, hint=None) -> PropertyType:
    if hint:
        try:
            return PropertyType(hint)
        except ValueError:
            pass
    for text in (title, description):
        if not text:
            continue
        for ptype, pattern in _TYPE_KEYWORDS:
            if pattern.search(text):
                return ptype
    if rooms is not None:
        return PropertyType.studio if rooms <= 1 else PropertyType.apartment
    return PropertyType.other


def normalize_title(title) -> Optional[str]:
    title = clean_text(title)
    if not title:
        return None
    title = re.sub(r"^Anzeige ansehen:\s*", "", title)
    return title[:500] or None


def normalize_description(text) -> Optional[str]:
    if not text:
        return None
    lines = [" ".join(line.split()) for line in str(text).splitlines()]
    out = re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()
    return out[:10000] or None


def normalize_images(urls: Iterable[str], limit: int = 20) -> List[str]:
    seen, out = set(), []
    for url in urls or []:
        if not url or not url.startswith(("http://", "https://")):
            continue
        if not is_valid_image_url(url):
            continue
        key = canonical_url(url)
        if key in seen:
            continue
        seen.add(key)
        out.append(url)
        if len(out) >= limit:
            break
    return out


def normalize_amenities(amenities: Dict) -> Dict[str, bool]:
    return {str(k).strip().lower(): bool(v) for k, v in (amenities or {}).items() if str(k).strip()}


def normalize_phone(phone) -> Optional[str]:
    phone = clean_text(phone)
    if not phone:
        return None
    phone = re.sub(r"^tel:", "", phone, flags=re.I)
    phone = re.sub(r"[^\d+()/ -]", "", phone).strip()
    return phone if len(re.sub(r"\D", "", phone)) >= 6 else None


def normalize_email(email) -> Optional[str]:
    email = clean_text(email)
    if not email:
        return None
    email = re.sub(r"^mailto:", "", email, flags=re.I).split("?")[0].lower()
    return email if _EMAIL_RE.match(email) else None


def missing_core_fields(data: Dict) -> List[str]:
    return [f for f in CORE_FIELDS if data.get(f) in (None, "")]


def normalize_listing(raw: RawListing, stub: Optional[ListingStub] = None, max_images: int = 20) -> ListingCreate:
    """Turn detail-page strings into a typed record; card values fill the gaps."""
    price = clamp(parse_price(raw.price), *PRICE_BOUNDS)
    size = clamp(parse_size(raw.size), *SIZE_BOUNDS)
    rooms = clamp(parse_rooms(raw.rooms), *ROOM_BOUNDS)
    district = normalize_district(raw.district)
    title = normalize_title(raw.title)
    address = clean_text(raw.address)
    if stub is not None:
        price = price if price is not None else clamp(stub.price, *PRICE_BOUNDS)
        size = size if size is not None else clamp(stub.size_sqm, *SIZE_BOUNDS)
        rooms = rooms if rooms is not None else clamp(stub.rooms, *ROOM_BOUNDS)
        district = district or normalize_district(stub.district)
        title = title or normalize_title(stub.title)
        address = address or clean_text(stub.address)

    warm_rent = clamp(parse_price(raw.warm_rent), *PRICE_BOUNDS)
    description = normalize_description(raw.description)
    hint = raw.property_type or (stub.property_type.value if stub is not None and stub.property_type else None)
    images = normalize_images(raw.images, limit=max_images)
    if warm_rent is not None and price is not None and warm_rent < price:
        warm_rent = None

    data = {
        "platform": raw.platform,
        "external_id": raw.external_id,
        "url": raw.url,
        "title": title,
        "description": description,
        "price": price,
        "warm_rent": warm_rent,
        "size_sqm": size,
        "rooms": rooms,
        "floor": clamp(parse_floor(raw.floor), *FLOOR_BOUNDS),
        "total_floors": clamp(parse_int(raw.total_floors), 1, FLOOR_BOUNDS[1]),
        "district": district,
        "address": address,
        "latitude": clamp(parse_coordinate(raw.latitude), -90, 90),
        "longitude": parse_coordinate(raw.longitude),
        "property_type": derive_property_type(title, description, rooms, hint),
        "available_from": parse_german_date(raw.available_from),
        "images": images,
        "amenities": normalize_amenities(raw.amenities),
        "contact_name": clean_text(raw.contact_name),
        "contact_phone": normalize_phone(raw.contact_phone),
        "contact_email": normalize_email(raw.contact_email),
        "allows_auto_apply": raw.allows_auto_apply,
        "needs_image_refetch": not images,
    }
    data["missing_fields"] = missing_core_fields(data)
    return ListingCreate(**data)


def validate_listing(data: ListingCreate) -> List[str]:
    """Problems that make a record unstorable. Missing optional fields are not problems."""
    problems = []
    if not data.external_id or not data.external_id.strip():
        problems.append("external_id missing")
    if not data.url or not data.url.startswith(("http://", "https://")):
        problems.append("url is not http(s)")
    if data.rooms is not None and data.rooms <= 0:
        problems.append("rooms must be positive")
    return problems
