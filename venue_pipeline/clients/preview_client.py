import asyncio
from typing import Optional
from loguru import logger

from venue_pipeline.clients.http_client import HttpClient
from venue_pipeline.config import PREVIEW_OEMBED_URL


class PreviewClient:
    """oEmbed preview-metadata lookup and thumbnail download."""

    def __init__(self, endpoint: str = PREVIEW_OEMBED_URL):
        self.endpoint = endpoint

    async def thumbnail_url(self, video_url: str) -> Optional[str]:
        """Return the thumbnail URL advertised for a video, or None."""
        if not video_url:
            return None
        try:
            data = await HttpClient().get_json(self.endpoint, params={"url": video_url})
            thumbnail = data.get("thumbnail_url") if isinstance(data, dict) else None
        except asyncio.TimeoutError:
            logger.debug(f"⏱️ TIMEOUT fetching preview metadata for {video_url}")
            return None
        except Exception as e:
            logger.debug(f"⚠️ Preview metadata fetch failed for {video_url}: {e}")
            return None
        if not isinstance(thumbnail, str) or not thumbnail.strip():
            logger.debug(f"⚠️ No usable thumbnail_url for {video_url}: {thumbnail!r}")
            return None
        return thumbnail.strip()

    async def download(self, url: str) -> Optional[bytes]:
        """Download image bytes, or None on failure."""
        try:
            data = await HttpClient().get_bytes(url)
        except asyncio.TimeoutError:
            logger.debug(f"⏱️ TIMEOUT downloading thumbnail {url}")
            return None
        except Exception as e:
            logger.debug(f"⚠️ Thumbnail download failed for {url}: {e}")
            return None
        return data if isinstance(data, bytes) and data else None
