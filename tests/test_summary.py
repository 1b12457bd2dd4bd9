import pytest

from rentscout.errors import StructuralChangeError
from rentscout.schemas import ListingStub, PropertyType
from rentscout.summary import count_result_cards, deduplicate_stubs, parse_search_page


def test_fixture_yields_only_offers(search_html):
    page = parse_search_page(search_html)
    assert page.card_count == 20
    assert len(page.stubs) == 18
    assert page.skipped == 2
    ids = [s.external_id for s in page.stubs]
    assert "9900001" not in ids and "9900002" not in ids
    assert len(set(ids)) == 18


def test_first_card_fields(search_html):
    stub = parse_search_page(search_html).stubs[0]
    assert stub.external_id == "10138526"
    assert stub.url == "https://www.wg-gesucht.de/wohnungen-in-Berlin-Friedrichshain.10138526.html"
    assert stub.title == "Helle 2,5-Zimmer-Wohnung am Boxhagener Platz"
    assert stub.price == 1200
    assert stub.size_sqm == 65
    assert stub.rooms == 2.5
    assert stub.district == "Friedrichshain"
    assert stub.address == "Boxhagener Str. 12"
    assert stub.property_type == PropertyType.apartment


def test_title_falls_back_to_anchor_text(search_html):
    stub = parse_search_page(search_html).stubs[1]
    assert stub.title == "Sonniges Zimmer in 3er WG nahe Weserstraße"
    assert stub.property_type == PropertyType.wg_room
    assert stub.rooms == 1.0
    assert stub.price == 590


def test_partner_ads_and_cards_without_links_are_skipped():
    html = """
    <div class="wgg_card offer_list_item" data-id="1"><a href="https://www.spotahome.com/berlin" title="Anzeige ansehen: Partner">x</a></div>
    <div class="wgg_card offer_list_item" data-id="2"><span>kein Link</span></div>
    <div class="wgg_card offer_list_item" data-id="3"><h3 class="truncate_title"><a href="/wohnungen-in-Berlin-Mitte.3.html">Wohnung</a></h3></div>
    """
    page = parse_search_page(html)
    assert [s.external_id for s in page.stubs] == ["3"]
    assert page.skipped == 2


def test_explicit_empty_page_is_not_a_structural_change():
    page = parse_search_page("<html><body><p>Leider keine Ergebnisse gefunden.</p></body></html>")
    assert page.stubs == [] and page.card_count == 0


def test_unknown_template_raises_structural_change():
    with pytest.raises(StructuralChangeError):
        parse_search_page("<html><body><div class='new-card'>Wohnung</div></body></html>", url="https://x/1.0.html")


def test_count_result_cards(search_html):
    assert count_result_cards(search_html) == 20
    assert count_result_cards("<html></html>") == 0


def test_deduplicate_stubs_keeps_first():
    a = ListingStub(external_id="1", url="https://www.wg-gesucht.de/a.1.html", title="first")
    b = ListingStub(external_id="1", url="https://www.wg-gesucht.de/a.1.html", title="second")
    c = ListingStub(external_id="2", url="https://www.wg-gesucht.de/b.2.html")
    assert [s.title for s in deduplicate_stubs([a, b, c])] == ["first", None]
