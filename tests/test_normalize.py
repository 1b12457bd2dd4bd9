from datetime import date

import pytest
from pydantic import ValidationError

from rentscout.normalize import (
    clamp, derive_property_type, normalize_district, normalize_email, normalize_listing,
    normalize_phone, parse_floor, parse_german_date, parse_number, parse_price, parse_rooms,
    parse_size, validate_listing,
)
from rentscout.schemas import ListingStub, Platform, PropertyType, RawListing


@pytest.mark.parametrize("text,expected", [
    ("890 €", 890),
    ("1.200 €", 1200),
    ("1.200,50 €", 1200.5),
    ("12.500€", 12500),
    ("ca. 750,- €", 750),
    ("Miete: 1,250.00 EUR", 1250),
    ("n.a.", None),
    ("", None),
    (None, None),
])
def test_parse_price(text, expected):
    assert parse_price(text) == expected


def test_parse_size_with_decimal_comma():
    assert parse_size("65,5 m²") == 65.5
    assert parse_size("18m²") == 18


@pytest.mark.parametrize("text,expected", [
    ("2,5 Zimmer", 2.5),
    ("3-Zimmer-Wohnung", 3),
    ("1 Zi.", 1),
    ("Zwei Zimmer in Kreuzberg", 2),
    ("4", 4),
    ("Zimmer frei", None),
])
def test_parse_rooms(text, expected):
    assert parse_rooms(text) == expected


def test_parse_number_keeps_dot_decimal_when_asked():
    assert parse_number("2.5", thousands_dot=False) == 2.5
    assert parse_number("1.500", thousands_dot=False) == 1.5
    assert parse_number("1.500") == 1500


def test_parse_floor():
    assert parse_floor("3. OG") == 3
    assert parse_floor("Erdgeschoss") == 0
    assert parse_floor("EG") == 0
    assert parse_floor("UG") == -1
    assert parse_floor("Dach") is None


def test_parse_german_date():
    assert parse_german_date("01.11.2026") == date(2026, 11, 1)
    assert parse_german_date("frei ab 1.3.27") == date(2027, 3, 1)
    assert parse_german_date("2026-12-15") == date(2026, 12, 15)
    assert parse_german_date("sofort") is None
    assert parse_german_date("31.02.2026") is None


def test_clamp_rejects_implausible_values():
    assert clamp(5, 50, 20000) is None
    assert clamp(950, 50, 20000) == 950
    assert clamp(None, 0, 1) is None


@pytest.mark.parametrize("name,expected", [
    ("Friedrichshain", "Friedrichshain-Kreuzberg"),
    ("Prenzlauer Berg", "Pankow"),
    ("Neukoelln", "Neukölln"),
    ("10245 Berlin Friedrichshain", "Friedrichshain-Kreuzberg"),
    ("Berlin Wedding", "Mitte"),
    ("Potsdam", "Potsdam"),
    ("", None),
])
def test_normalize_district(name, expected):
    assert normalize_district(name) == expected


def test_derive_property_type():
    assert derive_property_type("Zimmer in 3er WG") == PropertyType.wg_room
    assert derive_property_type("Gemütliche 1-Zimmer-Wohnung") == PropertyType.studio
    assert derive_property_type("Altbauwohnung mit Balkon") == PropertyType.apartment
    assert derive_property_type("Reihenhaus mit Garten") == PropertyType.house
    assert derive_property_type("Nachmieter gesucht", rooms=1) == PropertyType.studio
    assert derive_property_type("Nachmieter gesucht", rooms=3) == PropertyType.apartment
    assert derive_property_type(None) == PropertyType.other
    assert derive_property_type("Zimmer in 3er WG", hint="apartment") == PropertyType.apartment


def test_contact_normalization():
    assert normalize_phone("tel:+49 170 1234567") == "+49 170 1234567"
    assert normalize_phone("123") is None
    assert normalize_email("mailto:Anna.Schmidt@Example.org?subject=WG") == "anna.schmidt@example.org"
    assert normalize_email("not an email") is None


def test_normalize_listing_types_and_bounds():
    raw = RawListing(
        external_id="10138526",
        url="https://www.wg-gesucht.de/wohnungen-in-Berlin-Friedrichshain.10138526.html",
        title="  Helle   Wohnung ",
        description="Erste Zeile\n\n\n\nZweite   Zeile",
        price="950€",
        warm_rent="1.200€",
        size="65m²",
        rooms="2,5 Zimmer",
        floor="3. OG",
        district="Friedrichshain",
        latitude="52.5101",
        longitude="13.4589",
        available_from="01.11.2026",
        property_type="apartment",
        images=[
            "https://img.wg-gesucht.de/media/up/2026/10/a1.large.jpg",
            "https://img.wg-gesucht.de/media/up/2026/10/a1.sized.jpg",
            "/relative.jpg",
        ],
        amenities={"Balcony": True},
    )
    out = normalize_listing(raw)
    assert out.title == "Helle Wohnung"
    assert out.description == "Erste Zeile\n\nZweite Zeile"
    assert out.price == 950
    assert out.warm_rent == 1200
    assert out.size_sqm == 65
    assert out.rooms == 2.5
    assert out.floor == 3
    assert out.district == "Friedrichshain-Kreuzberg"
    assert out.latitude == pytest.approx(52.5101)
    assert out.available_from == date(2026, 11, 1)
    assert out.property_type == PropertyType.apartment
    assert out.images == ["https://img.wg-gesucht.de/media/up/2026/10/a1.large.jpg"]
    assert out.amenities == {"balcony": True}
    assert out.needs_image_refetch is False
    assert out.missing_fields == []


def test_normalize_listing_falls_back_to_card_values():
    raw = RawListing(external_id="1", url="https://www.wg-gesucht.de/x.1.html", price="gratis", size="999999 m²")
    stub = ListingStub(
        external_id="1", url="https://www.wg-gesucht.de/x.1.html", title="3er WG",
        price=590, size_sqm=18, rooms=1, district="Neukölln", property_type=PropertyType.wg_room,
    )
    out = normalize_listing(raw, stub)
    assert out.price == 590
    assert out.size_sqm == 18
    assert out.rooms == 1
    assert out.district == "Neukölln"
    assert out.title == "3er WG"
    assert out.property_type == PropertyType.wg_room
    assert out.images == []
    assert out.needs_image_refetch is True
    assert out.missing_fields == ["description"]


def test_warm_rent_below_cold_rent_is_dropped():
    raw = RawListing(external_id="1", url="https://www.wg-gesucht.de/x.1.html", price="900 €", warm_rent="700 €")
    out = normalize_listing(raw)
    assert out.price == 900
    assert out.warm_rent is None


def test_validate_listing():
    raw = RawListing(external_id="1", url="https://www.wg-gesucht.de/x.1.html")
    assert validate_listing(normalize_listing(raw)) == []
    bad = normalize_listing(RawListing(external_id=" ", url="ftp://example.org/x"))
    assert validate_listing(bad) == ["external_id missing", "url is not http(s)"]


def test_platform_is_typed():
    data = normalize_listing(RawListing(external_id="1", url="https://www.wg-gesucht.de/x.1.html"))
    assert data.platform is Platform.wg_gesucht
    with pytest.raises(ValidationError):
        ListingStub(platform="immoscout", external_id="1", url="https://x/1")
