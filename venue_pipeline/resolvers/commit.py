"""
Serial commit phase.

Runs once per pass after every per-row resolution has finished, so the
geo-cache and the thumbnail directory have a single writer.
"""
import os
import tempfile
from dataclasses import replace
from typing import Iterable, List, Set

from loguru import logger

from venue_pipeline.models import GeoCacheEntry, ImageRef, ImageResolution, PendingImage, ResolvedRecord
from venue_pipeline.resolvers.geo_cache import GeoCache


def _write_image(path: str, data: bytes) -> None:
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".part")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def _persist(pending: PendingImage, failed: Set[str]) -> bool:
    """Write a pending thumbnail once; an existing file counts as success."""
    if pending.path in failed:
        return False
    if os.path.isfile(pending.path):
        return True
    try:
        _write_image(pending.path, pending.data)
    except OSError as e:
        failed.add(pending.path)
        logger.warning(f"⚠️ Could not write thumbnail {pending.path}: {e}")
        return False
    logger.info(f"✅ Downloaded and compressed thumbnail to {pending.path}")
    return True


def commit_resolutions(
    resolved: List[ResolvedRecord],
    cache: GeoCache,
    orphan_entries: Iterable[GeoCacheEntry] = (),
) -> List[ResolvedRecord]:
    """
    Persist pending cache entries and thumbnails, then save the cache.

    `orphan_entries` are coordinates resolved for rows that were later dropped
    for another reason (no image); they are still worth caching.

    A thumbnail that cannot be written falls back to its remote URL; if there
    is none the record is dropped, keeping every returned record fully resolved.

    Returns:
        List[ResolvedRecord]: The committed records, in input order.
    """
    committed: List[ResolvedRecord] = []
    failed: Set[str] = set()
    upserts = sum(1 for entry in orphan_entries if cache.upsert(entry))

    for item in resolved:
        entry = item.coordinates.pending_entry
        if entry is not None and cache.upsert(entry):
            upserts += 1

        pending = item.image.pending
        if pending is not None and not _persist(pending, failed):
            if not pending.remote_url:
                logger.warning(f"⚠️ Skipping {item.record.name}: thumbnail could not be saved")
                continue
            item = replace(item, image=ImageResolution(ImageRef(pending.remote_url, pending.remote_url)))

        committed.append(item)

    if upserts:
        logger.info(f"📍 {upserts} geocode cache entries added or upgraded")
    if cache.path:
        cache.save()
    return committed
