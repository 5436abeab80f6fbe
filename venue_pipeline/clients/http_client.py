"""
Singleton HTTP client with rate limiting using aiolimiter.
"""
from aiohttp import ClientSession, ClientTimeout
from aiolimiter import AsyncLimiter
from typing import Dict, Any, Optional
from loguru import logger

from venue_pipeline.config import CONCURRENCY, HTTP_TIMEOUT


class HttpClient:
    """
    Singleton client shared by the fetcher and both collaborators.
    Every request goes through one token-bucket limiter so the per-row
    fan-out never exceeds CONCURRENCY requests per second.
    """
    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not HttpClient._initialized:
            self.rate_limiter = AsyncLimiter(max_rate=CONCURRENCY, time_period=1.0)
            self._session: Optional[ClientSession] = None
            HttpClient._initialized = True

    async def _get_session(self) -> ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=ClientTimeout(total=HTTP_TIMEOUT))
        return self._session

    async def get_text(self, url: str) -> str:
        """
        GET a URL and return the decoded body.

        Raises:
            aiohttp.ClientError: on transport failure or a non-2xx status.
        """
        async with self.rate_limiter:
            session = await self._get_session()
            try:
                async with session.get(url) as resp:
                    resp.raise_for_status()
                    return await resp.text()
            except Exception as e:
                logger.debug(f"⚠️ GET {url} failed: {e}")
                raise

    async def get_json(self, url: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """GET a URL and return the parsed JSON body."""
        async with self.rate_limiter:
            session = await self._get_session()
            try:
                async with session.get(url, params=params) as resp:
                    resp.raise_for_status()
                    return await resp.json(content_type=None)
            except Exception as e:
                logger.debug(f"⚠️ GET (json) {url} failed: {e}")
                raise

    async def get_bytes(self, url: str) -> bytes:
        """GET a URL and return the raw body."""
        async with self.rate_limiter:
            session = await self._get_session()
            try:
                async with session.get(url) as resp:
                    resp.raise_for_status()
                    return await resp.read()
            except Exception as e:
                logger.debug(f"⚠️ GET (bytes) {url} failed: {e}")
                raise

    async def close(self):
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
