"""
Dataset assembly and serialization.

The published JSON is the contract consumed by the map/list front end. Keys
are sorted and the `version` marker is a hash of the record payload, so an
unchanged source produces an unchanged file.
"""
import hashlib
import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Dict, List, Optional

from loguru import logger

from venue_pipeline.models import (
    CoordinateResolution,
    ImageResolution,
    NormalizedRecord,
    OutputDataset,
    OutputRecord,
    ParsedLocation,
    ResolvedRecord,
)
from venue_pipeline.normalizer import collect_facets, standardize


def build_output_record(
    record: NormalizedRecord,
    coordinates: CoordinateResolution,
    image: ImageResolution,
) -> OutputRecord:
    return OutputRecord(
        name=record.name,
        address=record.address,
        location=record.raw_location_text,
        location_data=record.parsed_location,
        city=standardize(record.parsed_location.city),
        tags=record.tags,
        reviewer=record.reviewer,
        rating=record.rating,
        latitude=coordinates.coordinates.lat,
        longitude=coordinates.coordinates.lng,
        video_url=record.referenced_video_url,
        thumbnail=image.ref.thumbnail,
        thumbnail_fallback=image.ref.fallback,
        map_link=record.external_map_link,
        date_posted=record.posted_date,
    )


def location_data_to_dict(location: ParsedLocation, original: str) -> Dict[str, str]:
    return {
        "city": location.city,
        "region": location.region_code,
        "fullRegion": location.region_full_name,
        "fullLocation": location.display_location,
        "originalLocation": original,
        "cityStandardized": standardize(location.city),
        "fullRegionStandardized": standardize(location.region_full_name),
        "fullLocationStandardized": standardize(location.display_location),
    }


def record_to_dict(record: OutputRecord) -> Dict[str, object]:
    """Render one record under the key names the map/list front end reads."""
    return {
        "restaurant": record.name,
        "address": record.address,
        "location": record.location,
        "locationData": location_data_to_dict(record.location_data, record.location),
        "city": record.city,
        "tags": list(record.tags),
        "reviewer": record.reviewer,
        "rating": record.rating,
        "latitude": record.latitude,
        "longitude": record.longitude,
        "tikTokVideo": record.video_url,
        "tikTokThumbnail": record.thumbnail,
        "tikTokThumbnailFallback": record.thumbnail_fallback,
        "googleMapsLink": record.map_link,
        "datePosted": record.date_posted,
    }


def _content_version(records: List[Dict[str, object]], stats: Dict[str, object]) -> str:
    payload = json.dumps({"records": records, "stats": stats}, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def assemble(resolved: List[ResolvedRecord], generated_at: Optional[str] = None) -> OutputDataset:
    """
    Merge resolved records into the output dataset, preserving input order.

    Args:
        resolved (List[ResolvedRecord]): Fully resolved records in row order.
        generated_at (str): ISO timestamp; defaults to now (UTC).
    """
    records = tuple(build_output_record(r.record, r.coordinates, r.image) for r in resolved)
    tags, reviewers, cities = collect_facets(r.record for r in resolved)
    ratings = [r.rating for r in records]
    stats = {
        "tags": tags,
        "reviewers": reviewers,
        "cities": cities,
        "averageRating": round(sum(ratings) / len(ratings), 2) if ratings else 0.0,
    }
    version = _content_version([record_to_dict(r) for r in records], stats)
    return OutputDataset(
        version=version,
        generated_at=generated_at or datetime.now(timezone.utc).isoformat(),
        total_records=len(records),
        stats=stats,
        records=records,
    )


def dataset_to_dict(dataset: OutputDataset) -> Dict[str, object]:
    return {
        "version": dataset.version,
        "lastUpdated": dataset.generated_at,
        "totalRestaurants": dataset.total_records,
        "stats": dataset.stats,
        "restaurants": [record_to_dict(r) for r in dataset.records],
    }


def serialize(dataset: OutputDataset) -> str:
    """Deterministic JSON rendering: sorted keys, two-space indent, trailing newline."""
    return json.dumps(dataset_to_dict(dataset), sort_keys=True, indent=2, ensure_ascii=False) + "\n"


def _existing_version(path: str) -> Optional[str]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f).get("version")
    except (OSError, ValueError, AttributeError):
        return None


def write_dataset(dataset: OutputDataset, path: str) -> bool:
    """
    Atomically write the dataset to `path`.

    Returns:
        bool: False when the file already holds the same content version and
              was left untouched, True when it was (re)written.
    """
    if _existing_version(path) == dataset.version:
        logger.info(f"🟰 {path} already at version {dataset.version}, leaving it untouched")
        return False

    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".dataset-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(serialize(dataset))
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    logger.info(f"🎉 Successfully wrote {dataset.total_records} records to {path}")
    return True
