import asyncio
from typing import Optional, Tuple
from loguru import logger

from venue_pipeline.clients.http_client import HttpClient
from venue_pipeline.config import GEOCODE_URL


class GeocodingClient:
    """Google Geocoding API wrapper returning the best-match lat/lng or None."""

    def __init__(self, api_key: str, url: str = GEOCODE_URL):
        if not api_key:
            raise ValueError("GeocodingClient requires an API key")
        self.api_key = api_key
        self.url = url

    async def geocode(self, address: str) -> Optional[Tuple[float, float]]:
        """
        Geocode a free-text address.

        Args:
            address (str): Street address as written in the sheet.

        Returns:
            Optional[Tuple[float, float]]: (lat, lng) of the first result, or None on a
                                           non-OK status, an empty or malformed result,
                                           or any failure.
        """
        if not address:
            return None
        try:
            data = await HttpClient().get_json(
                self.url, params={"address": address, "key": self.api_key}
            )
            if not isinstance(data, dict):
                logger.debug(f"⚠️ Unexpected geocoding payload for '{address}': {data!r}")
                return None

            status = data.get("status")
            results = data.get("results")
            if status != "OK" or not isinstance(results, list) or not results:
                logger.debug(f"⚠️ Address not found: {address} (status: {status})")
                return None

            location = results[0]["geometry"]["location"]
            return float(location["lat"]), float(location["lng"])
        except asyncio.TimeoutError:
            logger.debug(f"⏱️ TIMEOUT geocoding '{address}'")
            return None
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.debug(f"⚠️ Geocoding result for '{address}' has no usable location: {e!r}")
            return None
        except Exception as e:
            logger.debug(f"⚠️ Geocoding request failed for '{address}': {e}")
            return None
