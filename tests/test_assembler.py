import json

from venue_pipeline.assembler import assemble, serialize, write_dataset
from venue_pipeline.models import (
    CoordinateResolution,
    Coordinates,
    CoordinateSource,
    ImageRef,
    ImageResolution,
    ResolvedRecord,
)
from venue_pipeline.normalizer import normalize_row
from tests.factories import venue_row


def resolved(i, **overrides):
    record = normalize_row(venue_row(i, **overrides), index=i)
    coordinates = CoordinateResolution(Coordinates(30.0 + i, -97.0 - i), CoordinateSource.CACHE)
    image = ImageResolution(ImageRef(f"thumbnails/{7000 + i}.jpeg", f"https://cdn.example.com/{i}.jpeg"))
    return ResolvedRecord(record, coordinates, image)


def test_assemble_preserves_order_and_counts():
    items = [resolved(3), resolved(1), resolved(2, Tags="Ramen", Reviewer="Alex")]

    dataset = assemble(items, generated_at="2024-06-01T00:00:00+00:00")

    assert dataset.total_records == 3
    assert [r.name for r in dataset.records] == ["Venue 3", "Venue 1", "Venue 2"]
    assert dataset.stats["tags"] == ["bbq", "ramen", "tacos"]
    assert dataset.stats["reviewers"] == ["alex", "sam"]
    assert dataset.stats["cities"] == ["austin"]
    assert dataset.stats["averageRating"] == 8.5


def test_output_record_uses_front_end_key_names():
    dataset = assemble([resolved(1)], generated_at="2024-06-01T00:00:00+00:00")
    doc = json.loads(serialize(dataset))

    assert set(doc) == {"version", "lastUpdated", "totalRestaurants", "stats", "restaurants"}
    assert doc["totalRestaurants"] == 1
    assert doc["lastUpdated"] == "2024-06-01T00:00:00+00:00"
    assert doc["restaurants"][0] == {
        "restaurant": "Venue 1",
        "address": "101 Main St, Austin, TX",
        "location": "Austin, TX",
        "locationData": {
            "city": "Austin",
            "region": "TX",
            "fullRegion": "Texas",
            "fullLocation": "Austin, Texas",
            "originalLocation": "Austin, TX",
            "cityStandardized": "austin",
            "fullRegionStandardized": "texas",
            "fullLocationStandardized": "austin, texas",
        },
        "city": "austin",
        "tags": ["tacos", "bbq"],
        "reviewer": "sam",
        "rating": 8.5,
        "latitude": 31.0,
        "longitude": -98.0,
        "tikTokVideo": "https://www.tiktok.com/@bb/video/7001",
        "tikTokThumbnail": "thumbnails/7001.jpeg",
        "tikTokThumbnailFallback": "https://cdn.example.com/1.jpeg",
        "googleMapsLink": "https://maps.google.com/?q=venue1",
        "datePosted": "2024-05-01",
    }


def test_serialization_is_deterministic():
    a = serialize(assemble([resolved(1), resolved(2)], generated_at="t"))
    b = serialize(assemble([resolved(1), resolved(2)], generated_at="t"))
    assert a == b
    assert a.endswith("\n")


def test_version_tracks_content_not_time():
    first = assemble([resolved(1)], generated_at="2024-01-01")
    later = assemble([resolved(1)], generated_at="2024-02-01")
    changed = assemble([resolved(1, **{"Bigger Belly Rating": "9"})], generated_at="2024-01-01")

    assert first.version == later.version
    assert first.version != changed.version


def test_write_dataset_skips_unchanged_content(tmp_path):
    path = str(tmp_path / "data" / "restaurants.json")

    assert write_dataset(assemble([resolved(1)], generated_at="2024-01-01"), path) is True
    before = open(path, "rb").read()

    assert write_dataset(assemble([resolved(1)], generated_at="2024-02-01"), path) is False
    assert open(path, "rb").read() == before

    assert write_dataset(assemble([resolved(1), resolved(2)], generated_at="2024-02-01"), path) is True
    assert json.loads(open(path).read())["totalRestaurants"] == 2


def test_empty_dataset():
    dataset = assemble([], generated_at="t")
    assert dataset.total_records == 0
    assert dataset.stats["averageRating"] == 0.0
