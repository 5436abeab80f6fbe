from datetime import datetime, timezone
from typing import Optional, Union

from loguru import logger

from venue_pipeline.clients import GeocodingClient
from venue_pipeline.config import FORMULA_ERROR_SENTINELS
from venue_pipeline.models import (
    CoordinateResolution,
    Coordinates,
    CoordinateSource,
    GeoCacheEntry,
    NormalizedRecord,
    Unresolvable,
)
from venue_pipeline.resolvers.geo_cache import GeoCache
from venue_pipeline.resolvers.keys import venue_cache_key


def parse_coordinate_hint(text: str) -> Optional[Coordinates]:
    """
    Parse a "lat, lng" string written by the sheet's geocode column.

    Returns None for empty, formula-error, malformed or out-of-bounds values.
    """
    text = (text or "").strip()
    if not text or any(s in text for s in FORMULA_ERROR_SENTINELS):
        return None
    parts = [p.strip() for p in text.split(",")]
    if len(parts) != 2:
        return None
    try:
        coordinates = Coordinates(float(parts[0]), float(parts[1]))
    except ValueError:
        return None
    return coordinates if coordinates.is_valid() else None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CoordinateResolver:
    """
    Resolve a record's coordinates: in-row hint, then cache, then geocoder.

    Resolution never mutates the cache; new entries are returned as
    `pending_entry` and written by the commit phase.
    """

    def __init__(self, cache: GeoCache, geocoder: Optional[GeocodingClient] = None):
        self.cache = cache
        self.geocoder = geocoder

    async def resolve(self, record: NormalizedRecord) -> Union[CoordinateResolution, Unresolvable]:
        key = venue_cache_key(record.name, record.address)

        hint_malformed = False
        if record.coordinate_hint:
            hinted = parse_coordinate_hint(record.coordinate_hint)
            if hinted is not None:
                entry = GeoCacheEntry(
                    key=key,
                    coordinates=hinted,
                    source=CoordinateSource.AUTHORITATIVE_SCRIPT,
                    resolved_at=_now(),
                    name=record.name,
                    address=record.address,
                )
                return CoordinateResolution(hinted, CoordinateSource.AUTHORITATIVE_SCRIPT, pending_entry=entry)
            hint_malformed = True
            logger.info(f"ℹ️ {record.name}: ignoring malformed coordinate hint '{record.coordinate_hint}'")

        cached = self.cache.lookup(key)
        if cached is not None:
            return CoordinateResolution(cached.coordinates, CoordinateSource.CACHE, hint_malformed=hint_malformed)

        if self.geocoder is None:
            logger.debug(f"{record.name}: no cache entry and no geocoder configured")
            return Unresolvable("no coordinates in row or cache")

        result = await self.geocoder.geocode(record.address)
        if result is None:
            logger.warning(f"⚠️ Skipping {record.name}: unable to geocode address")
            return Unresolvable("geocoding failed")

        coordinates = Coordinates(*result)
        if not coordinates.is_valid():
            logger.warning(f"⚠️ Skipping {record.name}: invalid coordinates from geocoding {result}")
            return Unresolvable("geocoder returned out-of-range coordinates")

        entry = GeoCacheEntry(
            key=key,
            coordinates=coordinates,
            source=CoordinateSource.EXTERNAL_SERVICE,
            resolved_at=_now(),
            name=record.name,
            address=record.address,
        )
        return CoordinateResolution(
            coordinates, CoordinateSource.EXTERNAL_SERVICE, pending_entry=entry, hint_malformed=hint_malformed
        )
