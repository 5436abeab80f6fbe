import asyncio
import sys
from loguru import logger

from venue_pipeline.clients import GeocodingClient, HttpClient, PreviewClient
from venue_pipeline.config import (
    GOOGLE_MAPS_API_KEY,
    LOG_LEVEL,
    PREVIEW_OEMBED_URL,
    RUN_TIMEOUT_SECONDS,
    ConfigurationError,
    require_source_url,
)
from venue_pipeline.orchestrator import PipelineExhausted, PipelineOrchestrator, PipelineSettings


def build_orchestrator(source_url: str) -> PipelineOrchestrator:
    """Wire collaborators from the environment, degrading when credentials are absent."""
    geocoder = None
    if GOOGLE_MAPS_API_KEY:
        geocoder = GeocodingClient(GOOGLE_MAPS_API_KEY)
    else:
        logger.warning("⚠️ GOOGLE_MAPS_API_KEY not set: coordinates limited to sheet hints and cache")

    preview = None
    if PREVIEW_OEMBED_URL:
        preview = PreviewClient(PREVIEW_OEMBED_URL)
    else:
        logger.warning("⚠️ Preview metadata lookups disabled: thumbnails limited to disk and sheet URLs")

    return PipelineOrchestrator(PipelineSettings(source_url=source_url), geocoder=geocoder, preview=preview)


async def main() -> int:
    """
    Run one scheduled update of the venue dataset.

    Returns:
        int: Process exit code. 0 on success, 1 when every attempt failed or the
             run budget was exceeded, 2 on a configuration error.
    """
    logger.remove()  # Remove default handler
    logger.add(sys.stderr, level=LOG_LEVEL, format="<green>{time:HH:mm:ss}</green> | <level>{level: <7}</level> | <level>{message}</level>")

    try:
        source_url = require_source_url()
    except ConfigurationError as e:
        logger.error(f"❌ {e}")
        return 2

    orchestrator = build_orchestrator(source_url)
    try:
        if RUN_TIMEOUT_SECONDS > 0:
            await asyncio.wait_for(orchestrator.run(), timeout=RUN_TIMEOUT_SECONDS)
        else:
            await orchestrator.run()
    except PipelineExhausted as e:
        logger.error(f"❌ {e}")
        return 1
    except asyncio.TimeoutError:
        logger.error(f"❌ Run exceeded its {RUN_TIMEOUT_SECONDS:g}s budget; dataset left unchanged")
        return 1
    finally:
        # Cleanup: close the shared session to prevent unclosed connector warnings
        await HttpClient().close()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
