"""Coordinate and image resolution, plus the persistent geo-cache."""
from venue_pipeline.resolvers.keys import venue_cache_key, image_cache_key, extract_video_id
from venue_pipeline.resolvers.geo_cache import GeoCache
from venue_pipeline.resolvers.coordinates import CoordinateResolver, parse_coordinate_hint
from venue_pipeline.resolvers.images import ImageResolver, is_valid_image_url, thumbnail_path
from venue_pipeline.resolvers.commit import commit_resolutions

__all__ = [
    "venue_cache_key",
    "image_cache_key",
    "extract_video_id",
    "GeoCache",
    "CoordinateResolver",
    "parse_coordinate_hint",
    "ImageResolver",
    "is_valid_image_url",
    "thumbnail_path",
    "commit_resolutions",
]
