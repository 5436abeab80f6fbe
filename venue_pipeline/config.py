# venue_pipeline/config.py
from dotenv import load_dotenv
import os

load_dotenv()


class ConfigurationError(Exception):
    """Raised when the pipeline cannot start because required settings are missing."""


def source_url_from_env(environ=os.environ) -> str:
    """SHEET_CSV_URL, falling back to GOOGLE_SHEETS_URL."""
    return (environ.get("SHEET_CSV_URL") or environ.get("GOOGLE_SHEETS_URL") or "").strip()


# Source and API keys
# GOOGLE_SHEETS_URL is the name the scheduled workflow already sets
SHEET_CSV_URL = source_url_from_env()
GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY", "").strip() or None
PREVIEW_OEMBED_URL = os.getenv("PREVIEW_OEMBED_URL", "https://www.tiktok.com/oembed").strip()
GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"

# Runtime parameters
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
BATCH_SIZE = 15
CONCURRENCY = 10
HTTP_TIMEOUT = 60
RUN_TIMEOUT_SECONDS = float(os.getenv("RUN_TIMEOUT_SECONDS", "1800"))

# Fetch retries (linear backoff: attempt * base delay)
FETCH_MAX_ATTEMPTS = 5
FETCH_BASE_DELAY = 10.0

# Whole-pipeline retries
PIPELINE_MAX_ATTEMPTS = 3
PIPELINE_COOLDOWN = 30.0
FAILURE_RATE_THRESHOLD = 0.5
FAILURE_COUNT_FLOOR = 10

# Ratings
RATING_MIN = 0.0
RATING_MAX = 10.0

# Thumbnails
THUMBNAIL_MAX_WIDTH = 300
THUMBNAIL_QUALITY = 80

# File names
DATA_DIR = os.getenv("DATA_DIR", "data")
THUMBNAIL_DIR = os.getenv("THUMBNAIL_DIR", "thumbnails")
OUTPUT_JSON = os.path.join(DATA_DIR, "restaurants.json")
GEOCODE_CACHE_JSON = os.path.join(DATA_DIR, "geocode-cache.json")

# Spreadsheet columns
COLUMNS = {
    "name": "Restaurant",
    "address": "Address",
    "tags": "Tags",
    "reviewer": "Reviewer",
    "rating": "Bigger Belly Rating",
    "location": "Location",
    "video_url": "TikTok Video",
    "thumbnail_url": "TikTok Thumbnail",
    "coordinate_hint": "GeoCode Script",
    "map_link": "Google Maps Link",
    "posted_date": "Date of Posted Video",
}

# Values Google Sheets writes into cells whose formula failed to evaluate
FORMULA_ERROR_SENTINELS = ("#NAME?", "#ERROR!", "#REF!", "#VALUE!")


def require_source_url(url: str = None) -> str:
    """Return the configured export URL or raise ConfigurationError."""
    url = SHEET_CSV_URL if url is None else url.strip()
    if not url:
        raise ConfigurationError("SHEET_CSV_URL (or GOOGLE_SHEETS_URL) environment variable is required")
    return url
