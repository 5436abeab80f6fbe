import asyncio
import re
import time
from typing import Awaitable, Callable, Optional
from loguru import logger

from venue_pipeline.clients import HttpClient
from venue_pipeline.config import FETCH_BASE_DELAY, FETCH_MAX_ATTEMPTS, FORMULA_ERROR_SENTINELS

_SENTINEL_RE = re.compile("|".join(re.escape(s) for s in FORMULA_ERROR_SENTINELS))


class FetchExhausted(Exception):
    """Every fetch attempt failed before a usable body was obtained."""


def count_formula_errors(text: str) -> int:
    """Count formula-error markers (#NAME?, #REF!, ...) in an export body."""
    return len(_SENTINEL_RE.findall(text or ""))


async def fetch_tabular(
    url: str,
    max_attempts: int = FETCH_MAX_ATTEMPTS,
    base_delay: float = FETCH_BASE_DELAY,
    client: Optional[HttpClient] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> str:
    """
    Fetch the spreadsheet export, retrying on transport failures and on bodies
    that still contain unevaluated formula errors.

    The wait between attempts grows linearly (attempt * base_delay). On the last
    attempt a corrupted but non-empty body is returned as-is so that the valid
    rows can still be salvaged.

    Args:
        url (str): CSV export URL.
        max_attempts (int): Total number of attempts.
        base_delay (float): Seconds multiplied by the attempt number between attempts.
        client (HttpClient): Optional client, defaults to the shared singleton.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        str: The raw export text.

    Raises:
        FetchExhausted: If the final attempt fails at the transport level.
    """
    client = client or HttpClient()
    last_error: Optional[BaseException] = None

    for attempt in range(1, max_attempts + 1):
        start = time.perf_counter()
        logger.info(f"📊 Fetching CSV (attempt {attempt}/{max_attempts})...")
        try:
            text = await client.get_text(url)
            if not text or not text.strip():
                raise ValueError("export body is empty")
        except Exception as e:
            last_error = e
            logger.warning(f"❌ CSV fetch failed on attempt {attempt}: {e}")
            if attempt == max_attempts:
                raise FetchExhausted(f"CSV fetch failed after {max_attempts} attempts: {e}") from e
        else:
            errors = count_formula_errors(text)
            if errors == 0:
                logger.info(
                    f"✅ CSV fetch successful on attempt {attempt} "
                    f"({time.perf_counter() - start:.2f}s)"
                )
                return text
            logger.warning(f"⚠️ CSV contains {errors} formula errors on attempt {attempt}")
            if attempt == max_attempts:
                logger.warning(f"❌ Max retries reached, proceeding with {errors} errors")
                return text

        wait_time = base_delay * attempt
        logger.info(f"⏱️ Waiting {wait_time:g} seconds before retry...")
        await sleep(wait_time)

    # Only reachable when max_attempts < 1
    raise FetchExhausted(f"CSV fetch made no attempts (max_attempts={max_attempts})") from last_error
