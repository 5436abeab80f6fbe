"""Client singletons for external API interactions."""
from venue_pipeline.clients.http_client import HttpClient
from venue_pipeline.clients.geocoding_client import GeocodingClient
from venue_pipeline.clients.preview_client import PreviewClient

__all__ = ["HttpClient", "GeocodingClient", "PreviewClient"]
