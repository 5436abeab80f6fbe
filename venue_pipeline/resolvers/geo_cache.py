"""
Persistent geocode cache stored as a single JSON document.

The file uses the `restaurants` layout the browser-side reader expects.
Entries are keyed by venue_cache_key and carry their provenance, so a result
from the geocoding service never replaces coordinates that came from the
sheet's own geocode column.
"""
import json
import os
import tempfile
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, Optional

from loguru import logger

from venue_pipeline.models import Coordinates, CoordinateSource, GeoCacheEntry
from venue_pipeline.resolvers.keys import venue_cache_key

CACHE_FORMAT_VERSION = "2.0.0"

# Provenance names used in the cache file, shared with the browser-side reader
_SOURCE_NAMES = {
    CoordinateSource.AUTHORITATIVE_SCRIPT: "csv_geocode",
    CoordinateSource.EXTERNAL_SERVICE: "geocode_api",
}
_SOURCES_BY_NAME = {
    "csv_geocode": CoordinateSource.AUTHORITATIVE_SCRIPT,
    "geocode_api": CoordinateSource.EXTERNAL_SERVICE,
    "cache": CoordinateSource.EXTERNAL_SERVICE,
    CoordinateSource.AUTHORITATIVE_SCRIPT.value: CoordinateSource.AUTHORITATIVE_SCRIPT,
    CoordinateSource.EXTERNAL_SERVICE.value: CoordinateSource.EXTERNAL_SERVICE,
}


def _entry_to_dict(entry: GeoCacheEntry) -> dict:
    return {
        "name": entry.name,
        "address": entry.address,
        "coordinates": {"lat": entry.coordinates.lat, "lng": entry.coordinates.lng},
        "source": _SOURCE_NAMES.get(entry.source, "geocode_api"),
        "lastGeocoded": entry.resolved_at,
    }


def _entry_from_dict(key: str, data: dict) -> Optional[GeoCacheEntry]:
    """
    Read one stored entry.

    Accepts the `{"coordinates": {"lat", "lng"}, "lastGeocoded"}` shape as well
    as the flat `{"lat", "lng", "resolvedAt"}` one. Entries that carry their
    name and address are re-keyed with venue_cache_key so slug-keyed files
    join against current records.
    """
    try:
        point = data["coordinates"] if "coordinates" in data else data
        coordinates = Coordinates(float(point["lat"]), float(point["lng"]))
        source = _SOURCES_BY_NAME[data.get("source", "geocode_api")]
    except (KeyError, TypeError, ValueError):
        return None
    if not coordinates.is_valid():
        return None
    name = str(data.get("name") or "")
    address = str(data.get("address") or "")
    return GeoCacheEntry(
        key=venue_cache_key(name, address) if name and address else key,
        coordinates=coordinates,
        source=source,
        resolved_at=str(data.get("lastGeocoded") or data.get("resolvedAt") or ""),
        name=name,
        address=address,
    )


def should_replace(existing: Optional[GeoCacheEntry], new: GeoCacheEntry) -> bool:
    """Upgrade policy: never let a lower-confidence source overwrite a higher one."""
    if existing is None:
        return True
    if new.source is CoordinateSource.AUTHORITATIVE_SCRIPT and existing.source is CoordinateSource.AUTHORITATIVE_SCRIPT:
        return new.coordinates != existing.coordinates
    return new.source.rank > existing.source.rank


class GeoCache:
    """Keyed store of GeoCacheEntry with exact lookup and upsert."""

    def __init__(self, path: Optional[str] = None, entries: Optional[Dict[str, GeoCacheEntry]] = None):
        self.path = path
        self._entries: Dict[str, GeoCacheEntry] = dict(entries or {})
        self._dirty = False

    @classmethod
    def load(cls, path: str) -> "GeoCache":
        """Load the cache file; a missing or unreadable file yields an empty cache."""
        if not os.path.exists(path):
            logger.info(f"📦 No geocode cache at {path}, starting empty")
            return cls(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"⚠️ Failed to load geocode cache {path}: {e}")
            return cls(path)

        if not isinstance(raw, dict):
            logger.warning(f"⚠️ Geocode cache {path} is not a JSON object, starting empty")
            return cls(path)

        # older files keep flat lat/lng records under "entries"
        stored = raw.get("restaurants") or raw.get("entries") or {}
        if not isinstance(stored, dict):
            stored = {}
        entries = {}
        rekeyed = 0
        for key, data in stored.items():
            entry = _entry_from_dict(key, data)
            if entry is None:
                logger.warning(f"⚠️ Ignoring malformed geocode cache entry {key}")
                continue
            rekeyed += entry.key != key
            if should_replace(entries.get(entry.key), entry):
                entries[entry.key] = entry
        logger.info(f"📦 Loaded geocode cache v{raw.get('version', '?')} ({len(entries)} entries)")
        cache = cls(path, entries)
        if rekeyed:
            logger.info(f"🔁 Re-keyed {rekeyed} geocode cache entries; the file is rewritten on save")
            cache._dirty = True
        return cache

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def lookup(self, key: str) -> Optional[GeoCacheEntry]:
        return self._entries.get(key)

    def upsert(self, entry: GeoCacheEntry) -> bool:
        """Insert or upgrade an entry. Returns True when the store changed."""
        if not should_replace(self._entries.get(entry.key), entry):
            return False
        self._entries[entry.key] = entry
        self._dirty = True
        return True

    def stats(self) -> Dict[str, int]:
        counts = Counter(entry.source.value for entry in self._entries.values())
        return {"entries": len(self._entries), **dict(sorted(counts.items()))}

    def save(self, path: Optional[str] = None) -> bool:
        """Atomically write the cache if anything changed. Returns True when written."""
        path = path or self.path
        if not path:
            raise ValueError("GeoCache has no path to save to")
        if not self._dirty and os.path.exists(path):
            return False

        document = {
            "version": CACHE_FORMAT_VERSION,
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
            "restaurants": {key: _entry_to_dict(e) for key, e in sorted(self._entries.items())},
        }
        directory = os.path.dirname(path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".geocode-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, sort_keys=True, ensure_ascii=False)
                f.write("\n")
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        self._dirty = False
        logger.info(f"💾 Saved geocode cache ({len(self._entries)} entries) to {path}")
        return True
