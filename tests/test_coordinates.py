import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from venue_pipeline.models import Coordinates, CoordinateSource, GeoCacheEntry, Unresolvable
from venue_pipeline.normalizer import normalize_row
from venue_pipeline.resolvers import CoordinateResolver, GeoCache, parse_coordinate_hint, venue_cache_key
from tests.factories import venue_row


def make_geocoder(result):
    geocoder = MagicMock()
    geocoder.geocode = AsyncMock(return_value=result)
    return geocoder


def entry(key, lat, lng, source):
    return GeoCacheEntry(key=key, coordinates=Coordinates(lat, lng), source=source, resolved_at="2024-01-01T00:00:00+00:00")


def test_cache_key_ignores_case_whitespace_and_other_columns():
    a = venue_cache_key("Joe's Diner", "1 Main St")
    assert a == venue_cache_key("  joe's   DINER ", "1 main st ")
    assert a != venue_cache_key("Joe's Diner", "2 Main St")
    assert len(a) == 64

    r1 = normalize_row(venue_row(1, Tags="a", Reviewer="x"))
    r2 = normalize_row(venue_row(1, Tags="b", Reviewer="y", **{"Bigger Belly Rating": "2"}))
    assert venue_cache_key(r1.name, r1.address) == venue_cache_key(r2.name, r2.address)


@pytest.mark.parametrize("text, expected", [
    ("30.26, -97.74", Coordinates(30.26, -97.74)),
    ("  -33.9,151.2 ", Coordinates(-33.9, 151.2)),
    ("", None),
    ("#NAME?", None),
    ("#ERROR!", None),
    ("30.26", None),
    ("1,2,3", None),
    ("abc, def", None),
    ("91, 0", None),
    ("0, 181", None),
])
def test_parse_coordinate_hint(text, expected):
    assert parse_coordinate_hint(text) == expected


@pytest.mark.asyncio
async def test_hint_wins_and_produces_pending_authoritative_entry():
    cache = GeoCache()
    geocoder = make_geocoder((1.0, 1.0))
    record = normalize_row(venue_row(1, **{"GeoCode Script": "30.5, -97.5"}))

    result = await CoordinateResolver(cache, geocoder).resolve(record)

    assert result.coordinates == Coordinates(30.5, -97.5)
    assert result.source is CoordinateSource.AUTHORITATIVE_SCRIPT
    assert result.pending_entry.source is CoordinateSource.AUTHORITATIVE_SCRIPT
    assert len(cache) == 0  # nothing written during resolution
    geocoder.geocode.assert_not_awaited()


@pytest.mark.asyncio
async def test_malformed_hint_falls_through_to_cache():
    record = normalize_row(venue_row(1, **{"GeoCode Script": "#NAME?"}))
    key = venue_cache_key(record.name, record.address)
    cache = GeoCache(entries={key: entry(key, 10.0, 20.0, CoordinateSource.EXTERNAL_SERVICE)})
    geocoder = make_geocoder((1.0, 1.0))

    result = await CoordinateResolver(cache, geocoder).resolve(record)

    assert result.coordinates == Coordinates(10.0, 20.0)
    assert result.source is CoordinateSource.CACHE
    assert result.pending_entry is None
    assert result.hint_malformed is True
    geocoder.geocode.assert_not_awaited()


@pytest.mark.asyncio
async def test_geocoder_used_on_cache_miss():
    record = normalize_row(venue_row(1, **{"GeoCode Script": ""}))
    geocoder = make_geocoder((40.7, -74.0))

    result = await CoordinateResolver(GeoCache(), geocoder).resolve(record)

    geocoder.geocode.assert_awaited_once_with(record.address)
    assert result.source is CoordinateSource.EXTERNAL_SERVICE
    assert result.pending_entry.key == venue_cache_key(record.name, record.address)
    assert result.pending_entry.coordinates == Coordinates(40.7, -74.0)


@pytest.mark.asyncio
@pytest.mark.parametrize("geocoded", [None, (95.0, 0.0), (0.0, -200.0)])
async def test_geocoder_failure_or_invalid_result_is_unresolvable(geocoded):
    record = normalize_row(venue_row(1, **{"GeoCode Script": ""}))

    result = await CoordinateResolver(GeoCache(), make_geocoder(geocoded)).resolve(record)

    assert isinstance(result, Unresolvable)


@pytest.mark.asyncio
async def test_without_geocoder_unresolved_rows_are_unresolvable():
    record = normalize_row(venue_row(1, **{"GeoCode Script": ""}))

    result = await CoordinateResolver(GeoCache(), None).resolve(record)

    assert isinstance(result, Unresolvable)


def test_upsert_never_lets_external_result_replace_authoritative():
    cache = GeoCache()
    assert cache.upsert(entry("k", 1.0, 1.0, CoordinateSource.AUTHORITATIVE_SCRIPT))
    assert not cache.upsert(entry("k", 2.0, 2.0, CoordinateSource.EXTERNAL_SERVICE))
    assert cache.lookup("k").coordinates == Coordinates(1.0, 1.0)

    # An explicit manual edit replaces the previous manual value
    assert cache.upsert(entry("k", 3.0, 3.0, CoordinateSource.AUTHORITATIVE_SCRIPT))
    assert cache.lookup("k").coordinates == Coordinates(3.0, 3.0)


def test_upsert_upgrades_external_to_authoritative():
    cache = GeoCache()
    assert cache.upsert(entry("k", 1.0, 1.0, CoordinateSource.EXTERNAL_SERVICE))
    assert not cache.upsert(entry("k", 5.0, 5.0, CoordinateSource.EXTERNAL_SERVICE))
    assert cache.upsert(entry("k", 2.0, 2.0, CoordinateSource.AUTHORITATIVE_SCRIPT))
    assert cache.lookup("k").source is CoordinateSource.AUTHORITATIVE_SCRIPT


def test_cache_round_trips_through_disk(tmp_path):
    path = tmp_path / "data" / "geocode-cache.json"
    cache = GeoCache(str(path))
    cache.upsert(entry("abc", 30.0, -97.0, CoordinateSource.EXTERNAL_SERVICE))

    assert cache.save() is True
    assert cache.save() is False  # nothing changed

    loaded = GeoCache.load(str(path))
    assert loaded.lookup("abc").coordinates == Coordinates(30.0, -97.0)
    assert loaded.lookup("abc").source is CoordinateSource.EXTERNAL_SERVICE
    assert loaded.stats() == {"entries": 1, "external-service": 1}


def test_load_tolerates_missing_corrupt_and_malformed_entries(tmp_path):
    assert len(GeoCache.load(str(tmp_path / "missing.json"))) == 0

    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{not json")
    assert len(GeoCache.load(str(corrupt))) == 0

    partial = tmp_path / "partial.json"
    partial.write_text(json.dumps({"version": "2.0.0", "entries": {
        "good": {"lat": 1, "lng": 2, "source": "external-service"},
        "bad": {"lat": "x", "lng": 2},
        "out": {"lat": 100, "lng": 2},
    }}))
    loaded = GeoCache.load(str(partial))
    assert len(loaded) == 1
    assert "good" in loaded


def test_cache_file_uses_shared_restaurants_layout(tmp_path):
    path = tmp_path / "geocode-cache.json"
    cache = GeoCache(str(path))
    key = venue_cache_key("Venue 1", "101 Main St")
    cache.upsert(GeoCacheEntry(
        key=key,
        coordinates=Coordinates(30.0, -97.0),
        source=CoordinateSource.AUTHORITATIVE_SCRIPT,
        resolved_at="2024-01-01T00:00:00+00:00",
        name="Venue 1",
        address="101 Main St",
    ))
    cache.save()

    doc = json.loads(path.read_text())
    assert set(doc) == {"version", "lastUpdated", "restaurants"}
    assert doc["restaurants"][key] == {
        "name": "Venue 1",
        "address": "101 Main St",
        "coordinates": {"lat": 30.0, "lng": -97.0},
        "source": "csv_geocode",
        "lastGeocoded": "2024-01-01T00:00:00+00:00",
    }


def test_load_reads_slug_keyed_cache_and_rekeys_entries(tmp_path):
    path = tmp_path / "geocode-cache.json"
    path.write_text(json.dumps({"version": "1.0.0", "lastUpdated": "2024-01-01", "restaurants": {
        "venue_1_101_main_st": {
            "name": "Venue 1",
            "address": "101 Main St",
            "location": "Austin, TX",
            "coordinates": {"lat": 30.1, "lng": -97.1},
            "source": "geocode_api",
            "lastGeocoded": "2024-01-01T00:00:00.000Z",
        },
        "venue_2_102_main_st": {
            "name": "Venue 2",
            "address": "102 Main St",
            "coordinates": {"lat": 30.2, "lng": -97.2},
            "source": "csv_geocode",
        },
        "no_coordinates": {"name": "Venue 3", "address": "103 Main St", "source": "geocode_api"},
    }}))

    loaded = GeoCache.load(str(path))

    assert len(loaded) == 2
    first = loaded.lookup(venue_cache_key("venue 1", "101  Main St"))
    assert first.coordinates == Coordinates(30.1, -97.1)
    assert first.source is CoordinateSource.EXTERNAL_SERVICE
    assert first.resolved_at == "2024-01-01T00:00:00.000Z"
    assert loaded.lookup(venue_cache_key("Venue 2", "102 Main St")).source is CoordinateSource.AUTHORITATIVE_SCRIPT

    # the re-keyed entries are written back on the next save
    assert loaded.save() is True
    assert set(json.loads(path.read_text())["restaurants"]) == {
        venue_cache_key("Venue 1", "101 Main St"),
        venue_cache_key("Venue 2", "102 Main St"),
    }
