import pytest

from catalog_sync.errors import ParseError
from catalog_sync.extractors.feed_parser import (
    FeedExtractor,
    ParserState,
    on_end,
    on_start,
    on_text,
    parse_feed,
)

from conftest import feed_xml, product_xml, variant_xml

TICIMAX_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<Root>
  <Urunler>
    <Urun>
      <UrunKartiID>1001</UrunKartiID>
      <Aktif>Evet</Aktif>
      <UrunAdi>Kilim Halı</UrunAdi>
      <OnYazi><![CDATA[<p>El dokuma</p>]]></OnYazi>
      <Marka>BM Home</Marka>
      <Resimler>
        <Resim>https://cdn.example.com/1001-a.jpg</Resim>
        <Resim>https://cdn.example.com/1001-b.jpg</Resim>
      </Resimler>
      <TeknikDetaylar>
        <TeknikDetay>
          <OzellikTanim>Style</OzellikTanim>
          <DegerTanim>Modern</DegerTanim>
        </TeknikDetay>
      </TeknikDetaylar>
      <UrunSecenek>
        <Secenek>
          <Aktif>Evet</Aktif>
          <StokKodu>1001-80</StokKodu>
          <StokDurumu>3</StokDurumu>
          <SatisFiyati>100</SatisFiyati>
          <IndirimliFiyat>80</IndirimliFiyat>
          <ParaBirimiKodu>USD</ParaBirimiKodu>
          <EkSecenekOzellik>
            <Ozellik Tanim="Ebat" Deger="80x150 cm">80x150 cm</Ozellik>
          </EkSecenekOzellik>
        </Secenek>
        <Secenek>
          <Aktif>Evet</Aktif>
          <StokKodu>1001-120</StokKodu>
          <StokDurumu>0</StokDurumu>
          <SatisFiyati>180</SatisFiyati>
          <SecenekAdi>Ebat</SecenekAdi>
          <SecenekDeger>120x180</SecenekDeger>
        </Secenek>
        <Secenek>
          <Aktif>Evet</Aktif>
          <StokKodu>1001-OZEL</StokKodu>
          <StokDurumu>1</StokDurumu>
          <SecenekOzellik>
            <Tanim>Ölçü</Tanim>
            <Deger>Özel Ölçü</Deger>
          </SecenekOzellik>
        </Secenek>
      </UrunSecenek>
    </Urun>
  </Urunler>
</Root>
""".encode("utf-8")


def test_state_transitions_without_io() -> None:
    state = ParserState()
    on_start(state, "Urun", {})
    on_start(state, "UrunKartiID", {})
    on_text(state, " 42 ")
    assert on_end(state, "UrunKartiID") is None
    on_start(state, "UrunAdi", {})
    on_text(state, "Jute ")
    on_text(state, "Rug")
    on_end(state, "UrunAdi")

    product = on_end(state, "Urun")

    assert product is not None
    assert product.id == "42"
    assert product.name == "Jute Rug"
    assert state.product is None
    assert state.take_completed() == [product]
    assert state.take_completed() == []


def test_variant_fields_do_not_leak_into_product() -> None:
    state = ParserState()
    on_start(state, "Urun", {})
    on_start(state, "Aktif", {})
    on_text(state, "Evet")
    on_end(state, "Aktif")
    on_start(state, "Secenek", {})
    on_start(state, "Aktif", {})
    on_text(state, "Hayir")
    on_end(state, "Aktif")
    on_end(state, "Secenek")
    product = on_end(state, "Urun")

    assert product.active == "Evet"
    assert product.variants[0].active == "Hayir"


def test_parse_ticimax_feed() -> None:
    products = parse_feed(TICIMAX_FEED)

    assert len(products) == 1
    product = products[0]
    assert product.id == "1001"
    assert product.name == "Kilim Halı"
    assert product.short_html == "<p>El dokuma</p>"
    assert product.brand == "BM Home"
    assert product.images == [
        "https://cdn.example.com/1001-a.jpg",
        "https://cdn.example.com/1001-b.jpg",
    ]
    assert [(d.key, d.value) for d in product.technical_details] == [("Style", "Modern")]
    assert [v.sku for v in product.variants] == ["1001-80", "1001-120", "1001-OZEL"]
    assert [v.size for v in product.variants] == ["80x150 cm", "120x180", "Özel Ölçü"]
    assert product.variants[0].discounted_price == "80"
    assert product.variants[0].currency == "USD"


def test_first_size_candidate_wins() -> None:
    variant = (
        "<Variant><Active>true</Active><Size>80x150</Size><Size>120x180</Size></Variant>"
    )
    products = parse_feed(feed_xml(product_xml("7", variants=[variant])))

    assert products[0].variants[0].size == "80x150"


def test_non_size_option_is_ignored() -> None:
    variant = (
        "<Variant><Active>true</Active>"
        '<Option Tanim="Renk" Deger="Kırmızı"/>'
        "<Size>160x230</Size></Variant>"
    )
    products = parse_feed(feed_xml(product_xml("8", variants=[variant])))

    assert products[0].variants[0].size == "160x230"


def test_chunked_feed_matches_whole_feed() -> None:
    whole = parse_feed(TICIMAX_FEED)
    chunks = [TICIMAX_FEED[i : i + 7] for i in range(0, len(TICIMAX_FEED), 7)]

    chunked = parse_feed(chunks)

    assert chunked == whole


def test_extractor_emits_products_in_document_order() -> None:
    data = feed_xml(*(product_xml(str(code)) for code in range(1, 6)))
    extractor = FeedExtractor()
    seen: list[str] = []
    for start in range(0, len(data), 64):
        seen.extend(p.id for p in extractor.feed(data[start : start + 64]))
    seen.extend(p.id for p in extractor.close())

    assert seen == ["1", "2", "3", "4", "5"]
    assert extractor.bytes_read == len(data)


def test_malformed_feed_raises_parse_error() -> None:
    data = feed_xml(product_xml("1")) + b"<Product><ExternalId>2</Product>"

    with pytest.raises(ParseError) as excinfo:
        parse_feed(data)

    assert "line" in excinfo.value.context


def test_truncated_feed_raises_on_close() -> None:
    extractor = FeedExtractor()
    completed = extractor.feed(b"<Catalog>" + product_xml("1").encode("utf-8") + b"<Product>")

    assert [p.id for p in completed] == ["1"]
    with pytest.raises(ParseError):
        extractor.close()


def test_variant_helper_builds_english_vocabulary() -> None:
    products = parse_feed(feed_xml(product_xml("9", variants=[variant_xml(price="55", size="Özel Ölçü")])))

    variant = products[0].variants[0]
    assert variant.price == "55"
    assert variant.size == "Özel Ölçü"
    assert variant.stock_status == "available"
