"""
Whole-pipeline orchestration.

One pass runs fetch -> parse -> normalize -> resolve -> commit -> assemble.
If an abnormally large share of rows cannot be geocoded, the pass is treated
as having read a half-evaluated sheet and the whole pass is retried after a
cool-down. The dataset file is only written once a pass is accepted.
"""
import asyncio
import enum
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, List, Optional, Sequence, Tuple, Union

from loguru import logger

from venue_pipeline.assembler import assemble, write_dataset
from venue_pipeline.clients import GeocodingClient, PreviewClient
from venue_pipeline.config import (
    BATCH_SIZE,
    FAILURE_COUNT_FLOOR,
    FAILURE_RATE_THRESHOLD,
    FETCH_BASE_DELAY,
    FETCH_MAX_ATTEMPTS,
    GEOCODE_CACHE_JSON,
    OUTPUT_JSON,
    PIPELINE_COOLDOWN,
    PIPELINE_MAX_ATTEMPTS,
    THUMBNAIL_DIR,
)
from venue_pipeline.fetcher import FetchExhausted, fetch_tabular
from venue_pipeline.models import (
    CoordinateResolution,
    ImageResolution,
    NormalizedRecord,
    OutputDataset,
    ResolvedRecord,
    RunResult,
    Unresolvable,
)
from venue_pipeline.normalizer import normalize_rows
from venue_pipeline.parser import parse_rows
from venue_pipeline.resolvers import CoordinateResolver, GeoCache, ImageResolver, commit_resolutions


class PipelineState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PROCESSING = "processing"
    EVALUATING = "evaluating"
    RETRYING = "retrying"
    DONE = "done"
    FAILED = "failed"


class PipelineExhausted(Exception):
    """Every whole-pipeline attempt failed; nothing was written."""


@dataclass
class PipelineSettings:
    source_url: str
    output_path: str = OUTPUT_JSON
    cache_path: str = GEOCODE_CACHE_JSON
    thumbnail_dir: str = THUMBNAIL_DIR
    fetch_max_attempts: int = FETCH_MAX_ATTEMPTS
    fetch_base_delay: float = FETCH_BASE_DELAY
    max_attempts: int = PIPELINE_MAX_ATTEMPTS
    cooldown: float = PIPELINE_COOLDOWN
    failure_rate_threshold: float = FAILURE_RATE_THRESHOLD
    failure_count_floor: int = FAILURE_COUNT_FLOOR
    batch_size: int = BATCH_SIZE


RowOutcome = Tuple[
    NormalizedRecord,
    Union[CoordinateResolution, Unresolvable],
    Optional[Union[ImageResolution, Unresolvable]],
]


def batch_iter(records: Sequence, batch_size: int) -> Iterator[Tuple[int, Sequence]]:
    """
    Yield index and record slices of size `batch_size` for batched processing.
    """
    n = len(records)
    for i in range(0, n, batch_size):
        yield i, records[i:i + batch_size]


def should_retry(
    result: RunResult,
    threshold: float = FAILURE_RATE_THRESHOLD,
    floor: int = FAILURE_COUNT_FLOOR,
) -> bool:
    """
    Best-effort corruption signal: more than `threshold` of all rows failed
    geocoding AND more than `floor` rows failed in absolute terms.
    """
    return result.failure_rate > threshold and result.coordinate_resolution_failures > floor


class PipelineOrchestrator:
    """Runs the pipeline as one unit of work with bounded whole-pipeline retries."""

    def __init__(
        self,
        settings: PipelineSettings,
        geocoder: Optional[GeocodingClient] = None,
        preview: Optional[PreviewClient] = None,
        fetch: Callable[..., Awaitable[str]] = fetch_tabular,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Optional[Callable[[], str]] = None,
    ):
        self.settings = settings
        self.geocoder = geocoder
        self.preview = preview
        self.fetch = fetch
        self.sleep = sleep
        self.clock = clock
        self.state = PipelineState.IDLE
        self.history: List[PipelineState] = [PipelineState.IDLE]

    def _transition(self, state: PipelineState) -> None:
        logger.debug(f"Pipeline state {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    async def _resolve_one(
        self,
        record: NormalizedRecord,
        coordinate_resolver: CoordinateResolver,
        image_resolver: ImageResolver,
    ) -> RowOutcome:
        """
        Resolve coordinates, then the image only if coordinates succeeded.

        An unexpected error in either stage only drops this row.
        """
        try:
            coordinates = await coordinate_resolver.resolve(record)
        except Exception as e:
            logger.warning(f"⚠️ Skipping {record.name}: coordinate resolution error: {e!r}")
            coordinates = Unresolvable(f"coordinate resolution error: {e!r}")
        if isinstance(coordinates, Unresolvable):
            return record, coordinates, None

        try:
            image = await image_resolver.resolve(record)
        except Exception as e:
            logger.warning(f"⚠️ Skipping {record.name}: image resolution error: {e!r}")
            image = Unresolvable(f"image resolution error: {e!r}")
        return record, coordinates, image

    async def _resolve_all(
        self,
        records: List[NormalizedRecord],
        coordinate_resolver: CoordinateResolver,
        image_resolver: ImageResolver,
    ) -> List[RowOutcome]:
        outcomes: List[RowOutcome] = []
        for start_idx, batch in batch_iter(records, self.settings.batch_size):
            logger.debug(f"Resolving rows {start_idx}..{start_idx + len(batch) - 1}")
            outcomes.extend(await asyncio.gather(
                *[self._resolve_one(r, coordinate_resolver, image_resolver) for r in batch]
            ))
        return outcomes

    async def run_once(self) -> Tuple[RunResult, OutputDataset]:
        """
        Execute a single fetch-to-assemble pass without writing the dataset.

        Raises:
            FetchExhausted: If the export could not be fetched at all.
        """
        s = self.settings
        self._transition(PipelineState.FETCHING)
        raw_text = await self.fetch(
            s.source_url,
            max_attempts=s.fetch_max_attempts,
            base_delay=s.fetch_base_delay,
            sleep=self.sleep,
        )

        self._transition(PipelineState.PROCESSING)
        rows = parse_rows(raw_text)
        logger.info(f"📋 Processing {len(rows)} rows from CSV...")
        batch = normalize_rows(rows)

        cache = GeoCache.load(s.cache_path)
        coordinate_resolver = CoordinateResolver(cache, self.geocoder)
        image_resolver = ImageResolver(s.thumbnail_dir, self.preview)
        outcomes = await self._resolve_all(batch.records, coordinate_resolver, image_resolver)

        result = RunResult(total_rows=len(rows))
        resolved: List[ResolvedRecord] = []
        orphans = []
        for record, coordinates, image in outcomes:
            if isinstance(coordinates, Unresolvable):
                result.coordinate_resolution_failures += 1
                continue
            result.malformed_hints += coordinates.hint_malformed
            if isinstance(image, ImageResolution):
                result.preview_calls += image.external_calls
            if isinstance(image, Unresolvable):
                result.image_resolution_failures += 1
                if coordinates.pending_entry is not None:
                    orphans.append(coordinates.pending_entry)
                continue
            resolved.append(ResolvedRecord(record, coordinates, image))

        committed = commit_resolutions(resolved, cache, orphans)
        result.image_resolution_failures += len(resolved) - len(committed)
        result.accepted_count = len(committed)
        result.rejected_count = result.total_rows - result.accepted_count

        logger.info(f"✅ Processed {result.accepted_count} valid restaurants, skipped {result.rejected_count}")
        logger.info(
            f"📍 Coordinate errors: {result.coordinate_resolution_failures}/{result.total_rows} restaurants "
            f"(cache: {cache.stats()})"
        )
        logger.info(f"🖼️ Preview calls: {result.preview_calls}, malformed coordinate hints: {result.malformed_hints}")
        generated_at = self.clock() if self.clock else None
        return result, assemble(committed, generated_at=generated_at)

    async def run(self) -> RunResult:
        """
        Run the state machine until a pass is accepted or attempts run out.

        Returns:
            RunResult: Counters of the accepted pass.

        Raises:
            PipelineExhausted: After `max_attempts` failed passes. The output
                               dataset is left untouched in that case.
        """
        s = self.settings
        for attempt in range(1, s.max_attempts + 1):
            logger.info(f"🚀 Main processing attempt {attempt}/{s.max_attempts}")
            try:
                result, dataset = await self.run_once()
            except FetchExhausted as e:
                logger.error(f"❌ Attempt {attempt} failed: {e}")
            else:
                self._transition(PipelineState.EVALUATING)
                if not should_retry(result, s.failure_rate_threshold, s.failure_count_floor):
                    write_dataset(dataset, s.output_path)
                    self._transition(PipelineState.DONE)
                    return result
                logger.error(
                    f"❌ Attempt {attempt} failed: high coordinate error rate "
                    f"({result.failure_rate:.0%}) - likely CSV formula errors"
                )

            if attempt == s.max_attempts:
                break
            self._transition(PipelineState.RETRYING)
            logger.info(f"⏱️ Waiting {s.cooldown:g} seconds before retry...")
            await self.sleep(s.cooldown)

        self._transition(PipelineState.FAILED)
        raise PipelineExhausted(f"All {s.max_attempts} pipeline attempts failed")
