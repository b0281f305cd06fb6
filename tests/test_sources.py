from datetime import timedelta
import httpx
import pytest
from autohunt.exceptions import SourceFetchError
from autohunt.services.cache import TTLCache
from autohunt.services.sources import (
    CandidateQuery, HttpListingSource, SqlFingerprintStore, SqlListingSource,
)
from conftest import NOW, make_fingerprint, make_listing

def _query(**kw):
    base = dict(make="Toyota", model="HiLux", year_min=2018, year_max=2022,
                first_seen_after=NOW - timedelta(days=14), limit=500)
    base.update(kw)
    return CandidateQuery(**base)

def test_sql_source_filters_candidates(db):
    keep = make_listing(db)
    make_listing(db, model="Hilux SR5 Cab Chassis")
    make_listing(db, year=2015)
    make_listing(db, make="Ford", model="Ranger")
    make_listing(db, delisted_at=NOW)
    make_listing(db, first_seen_at=NOW - timedelta(days=30))
    records = SqlListingSource(db).fetch_candidates(_query())
    assert [r["id"] for r in records][0] == keep.id
    assert len(records) == 2

def test_sql_source_respects_sources_and_private_flag(db):
    make_listing(db, source="pickles")
    make_listing(db, source="gumtree_private", seller_type="private")
    make_listing(db, source="carsales")
    source = SqlListingSource(db)
    assert {r["source"] for r in source.fetch_candidates(_query(sources=("pickles", "gumtree_private")))} \
        == {"pickles", "gumtree_private"}
    assert {r["source"] for r in source.fetch_candidates(_query(include_private=False))} == {"pickles", "carsales"}

def test_sql_source_pages_up_to_limit(db):
    for _ in range(7):
        make_listing(db)
    source = SqlListingSource(db, page_size=2)
    assert len(source.fetch_candidates(_query())) == 7
    assert len(source.fetch_candidates(_query(limit=5))) == 5

def test_fingerprint_store_caches_and_hides_retired(db):
    fp = make_fingerprint(db)
    store = SqlFingerprintStore(db, cache=TTLCache(maxsize=10))
    shape = store.get(fp.id)
    assert shape.make == "Toyota" and shape.exit_value == 45000
    fp.sell_price = 1
    db.commit()
    assert store.get(fp.id).exit_value == 45000

    retired = make_fingerprint(db, retired_at=NOW)
    assert store.get(retired.id) is None
    assert store.get(424242) is None

def test_fingerprint_store_lists_proven_only(db):
    make_fingerprint(db)
    make_fingerprint(db, sample_count=2)
    make_fingerprint(db, make="Ford", model="Ranger", sample_count=9)
    make_fingerprint(db, retired_at=NOW)
    store = SqlFingerprintStore(db)
    assert len(store.list_proven(min_samples=3)) == 2
    assert [f.model for f in store.list_proven(make="ford", min_samples=3)] == ["Ranger"]

def _item(external_id, **kw):
    item = {"source": "pickles", "source_class": "auction", "external_id": external_id, "make": "Toyota",
            "model": "Hilux", "variant": "SR5", "year": 2020, "km": 60000, "asking_price": 36000,
            "first_seen_at": "2026-10-16T09:00:00"}
    item.update(kw)
    return item

def test_http_source_follows_pages():
    seen_pages = []

    def handler(request: httpx.Request):
        page = int(request.url.params["page"])
        seen_pages.append(page)
        assert request.url.params["make"] == "Toyota"
        assert request.url.params["year_min"] == "2018"
        if page == 1:
            return httpx.Response(200, json={"items": [_item("A"), _item("B")], "next_page": 2})
        return httpx.Response(200, json={"items": [_item("C")], "next_page": None})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    source = HttpListingSource("https://listings.test/api/", client=client)
    records = source.fetch_candidates(_query())
    assert seen_pages == [1, 2]
    assert [r["external_id"] for r in records] == ["A", "B", "C"]
    assert records[0]["first_seen_at"] == NOW - timedelta(days=1)
    assert "id" not in records[0]

def test_http_source_skips_malformed_items():
    def handler(request):
        return httpx.Response(200, json={"items": [_item("A"), {"make": "Toyota"}], "next_page": None})

    source = HttpListingSource("https://listings.test", client=httpx.Client(transport=httpx.MockTransport(handler)))
    assert [r["external_id"] for r in source.fetch_candidates(_query())] == ["A"]

def test_http_error_status_raises_source_fetch_error():
    def handler(request):
        return httpx.Response(503, json={"error": "down"})

    source = HttpListingSource("https://listings.test", client=httpx.Client(transport=httpx.MockTransport(handler)))
    with pytest.raises(SourceFetchError, match="503"):
        source.fetch_candidates(_query())

def test_http_timeout_raises_source_fetch_error():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    source = HttpListingSource("https://listings.test", client=httpx.Client(transport=httpx.MockTransport(handler)))
    with pytest.raises(SourceFetchError):
        source.fetch_candidates(_query())

def test_sql_source_matches_make_and_model_spellings(db):
    hilux = make_listing(db, model="Hi-Lux")
    spaced = make_listing(db, model="HI LUX SR5")
    make_listing(db, model="HiAce")
    records = SqlListingSource(db).fetch_candidates(_query())
    assert [r["id"] for r in records] == [hilux.id, spaced.id]

    amarok = make_listing(db, make="VW", model="Amarok")
    records = SqlListingSource(db).fetch_candidates(_query(make="Volkswagen", model="Amarok"))
    assert [r["id"] for r in records] == [amarok.id]

def test_sql_source_keeps_landcruiser_and_prado_apart(db):
    prado = make_listing(db, model="Landcruiser Prado", variant="GXL")
    wagon = make_listing(db, model="Land Cruiser", variant="GXL 200 Series")
    source = SqlListingSource(db, page_size=1)
    assert [r["id"] for r in source.fetch_candidates(_query(model="Prado"))] == [prado.id]
    assert [r["id"] for r in source.fetch_candidates(_query(model="LandCruiser"))] == [wagon.id]
