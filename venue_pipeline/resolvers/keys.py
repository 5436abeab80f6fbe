import hashlib
import re
from typing import Optional

from venue_pipeline.parser import collapse_whitespace

_VIDEO_ID_RE = re.compile(r"/video/(\d+)")


def _canonical(value: str) -> str:
    return collapse_whitespace(value).casefold()


def venue_cache_key(name: str, address: str) -> str:
    """
    Stable join key between a venue and its cached coordinates.

    Only name and address participate; case and whitespace differences
    collapse to the same key.
    """
    payload = f"{_canonical(name)}\x1f{_canonical(address)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def extract_video_id(url: str) -> Optional[str]:
    """Pull the numeric video id out of a ".../video/<id>" URL."""
    match = _VIDEO_ID_RE.search(url or "")
    return match.group(1) if match else None


def image_cache_key(video_id: str) -> str:
    return video_id
