import asyncio
import io
import os
import re
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

from loguru import logger
from PIL import Image

from venue_pipeline.clients import PreviewClient
from venue_pipeline.config import FORMULA_ERROR_SENTINELS, THUMBNAIL_MAX_WIDTH, THUMBNAIL_QUALITY
from venue_pipeline.models import ImageRef, ImageResolution, NormalizedRecord, PendingImage, Unresolvable
from venue_pipeline.resolvers.keys import extract_video_id, image_cache_key

_URL_RE = re.compile(r"^https://.+\..+")


def is_valid_image_url(url) -> bool:
    """Accept only absolute https URLs with a dotted host and no formula-error text."""
    if not isinstance(url, str):
        return False
    url = url.strip()
    if not url or "Error:" in url or any(s in url for s in FORMULA_ERROR_SENTINELS):
        return False
    if not _URL_RE.match(url):
        return False
    parsed = urlparse(url)
    return parsed.scheme == "https" and "." in parsed.netloc


def thumbnail_path(video_id: str, thumbnail_dir: str) -> Path:
    """Deterministic location of the compressed thumbnail for a video id."""
    return Path(thumbnail_dir) / f"{image_cache_key(video_id)}.jpeg"


def recompress_image(data: bytes, max_width: int = THUMBNAIL_MAX_WIDTH, quality: int = THUMBNAIL_QUALITY) -> bytes:
    """Resize to at most `max_width` (never enlarging) and re-encode as progressive JPEG."""
    with Image.open(io.BytesIO(data)) as img:
        img = img.convert("RGB")
        if img.width > max_width:
            height = max(1, round(img.height * max_width / img.width))
            img = img.resize((max_width, height), Image.LANCZOS)
        out = io.BytesIO()
        img.save(out, format="JPEG", quality=quality, progressive=True, optimize=True)
    return out.getvalue()


class ImageResolver:
    """
    Resolve a record's preview image.

    Order: an already-downloaded file on disk, then a valid thumbnail URL from
    the row, then the preview collaborator (download + recompress). Bytes
    fetched here are returned as a PendingImage; nothing is written to disk.
    """

    def __init__(self, thumbnail_dir: str, preview: Optional[PreviewClient] = None,
                 max_width: int = THUMBNAIL_MAX_WIDTH, quality: int = THUMBNAIL_QUALITY):
        self.thumbnail_dir = thumbnail_dir
        self.preview = preview
        self.max_width = max_width
        self.quality = quality

    async def resolve(self, record: NormalizedRecord) -> Union[ImageResolution, Unresolvable]:
        video_url = record.referenced_video_url
        video_id = extract_video_id(video_url)
        local_path = thumbnail_path(video_id, self.thumbnail_dir) if video_id else None
        row_url = record.thumbnail_url if is_valid_image_url(record.thumbnail_url) else ""

        # 1) Existing file wins: stat it, no external calls.
        if local_path is not None and os.path.isfile(local_path):
            return ImageResolution(ImageRef(local_path.as_posix(), row_url))

        # 2) Row-supplied URL, used without downloading.
        if row_url:
            return ImageResolution(ImageRef(row_url, row_url))

        # 3) Preview collaborator.
        if self.preview is None or not video_url:
            return Unresolvable("no thumbnail available")

        calls = 1
        remote_url = await self.preview.thumbnail_url(video_url)
        if not remote_url or not is_valid_image_url(remote_url):
            logger.warning(f"⚠️ Skipping {record.name}: no valid thumbnail available")
            return Unresolvable("preview metadata has no thumbnail")

        if local_path is None:
            return ImageResolution(ImageRef(remote_url, remote_url), external_calls=calls)

        calls += 1
        data = await self.preview.download(remote_url)
        if data is None:
            return ImageResolution(ImageRef(remote_url, remote_url), external_calls=calls)

        try:
            compressed = await asyncio.to_thread(recompress_image, data, self.max_width, self.quality)
        except Exception as e:
            logger.debug(f"⚠️ Could not recompress thumbnail for {record.name}: {e}")
            return ImageResolution(ImageRef(remote_url, remote_url), external_calls=calls)

        pending = PendingImage(path=local_path.as_posix(), data=compressed, remote_url=remote_url)
        # The fallback stays the row URL so the published record is the same
        # on this run and on later runs that find the file on disk.
        return ImageResolution(ImageRef(pending.path, row_url), pending=pending, external_calls=calls)
