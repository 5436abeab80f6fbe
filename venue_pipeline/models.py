"""
Typed data models for the venue resolution pipeline.
All data structures passed between stages are defined here.
"""
import enum
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

RawRow = Dict[str, str]


@dataclass(frozen=True)
class ParsedLocation:
    """Location split from the "City, Region" column."""
    city: str = ""
    region_code: str = ""
    region_full_name: str = ""
    display_location: str = ""


@dataclass(frozen=True)
class NormalizedRecord:
    """Validated venue record built from exactly one RawRow."""
    name: str
    address: str
    raw_location_text: str
    parsed_location: ParsedLocation
    tags: Tuple[str, ...]
    reviewer: str
    rating: float
    referenced_video_url: str = ""
    external_map_link: str = ""
    posted_date: str = ""
    thumbnail_url: str = ""  # optional image URL supplied on the row
    coordinate_hint: str = ""  # "lat,lng" written by the manual geocode step
    row_index: int = 0
    defects: Tuple[str, ...] = ()


class RejectionReason(str, enum.Enum):
    MISSING_REQUIRED_FIELD = "MissingRequiredField"


@dataclass(frozen=True)
class Rejection:
    """A row the normalizer refused, and why."""
    row_index: int
    reason: RejectionReason
    missing: Tuple[str, ...] = ()


@dataclass
class NormalizationBatch:
    """Result of folding the normalizer over every parsed row."""
    records: List[NormalizedRecord] = field(default_factory=list)
    rejections: List[Rejection] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    reviewers: List[str] = field(default_factory=list)
    cities: List[str] = field(default_factory=list)


class CoordinateSource(str, enum.Enum):
    """Where a coordinate pair came from, with a confidence rank."""
    CACHE = "cache"
    AUTHORITATIVE_SCRIPT = "authoritative-script"
    EXTERNAL_SERVICE = "external-service"

    @property
    def rank(self) -> int:
        return {
            CoordinateSource.CACHE: 0,
            CoordinateSource.EXTERNAL_SERVICE: 1,
            CoordinateSource.AUTHORITATIVE_SCRIPT: 2,
        }[self]


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float

    def is_valid(self) -> bool:
        return (
            math.isfinite(self.lat)
            and math.isfinite(self.lng)
            and -90.0 <= self.lat <= 90.0
            and -180.0 <= self.lng <= 180.0
        )


@dataclass(frozen=True)
class GeoCacheEntry:
    """Persisted coordinates for one CacheKey."""
    key: str
    coordinates: Coordinates
    source: CoordinateSource
    resolved_at: str
    name: str = ""
    address: str = ""


@dataclass(frozen=True)
class Unresolvable:
    """Terminal per-record state: enrichment could not be obtained."""
    reason: str


@dataclass(frozen=True)
class CoordinateResolution:
    coordinates: Coordinates
    source: CoordinateSource
    pending_entry: Optional[GeoCacheEntry] = None  # written during the commit phase
    hint_malformed: bool = False


@dataclass(frozen=True)
class ImageRef:
    """Primary thumbnail (local path or remote URL) plus a remote fallback."""
    thumbnail: str
    fallback: str = ""


@dataclass(frozen=True)
class PendingImage:
    """Recompressed image bytes waiting to be written to their deterministic path."""
    path: str
    data: bytes
    remote_url: str = ""


@dataclass(frozen=True)
class ImageResolution:
    ref: ImageRef
    pending: Optional[PendingImage] = None
    external_calls: int = 0


@dataclass(frozen=True)
class ResolvedRecord:
    """A record whose coordinates and image both resolved."""
    record: NormalizedRecord
    coordinates: CoordinateResolution
    image: ImageResolution


@dataclass(frozen=True)
class OutputRecord:
    """One entry of the published dataset."""
    name: str
    address: str
    location: str
    location_data: ParsedLocation
    city: str
    tags: Tuple[str, ...]
    reviewer: str
    rating: float
    latitude: float
    longitude: float
    video_url: str
    thumbnail: str
    thumbnail_fallback: str
    map_link: str
    date_posted: str


@dataclass(frozen=True)
class OutputDataset:
    version: str
    generated_at: str
    total_records: int
    stats: Dict[str, object]
    records: Tuple[OutputRecord, ...]


@dataclass
class RunResult:
    """Counters for one orchestrator attempt, used to decide on a retry."""
    total_rows: int = 0
    accepted_count: int = 0
    rejected_count: int = 0
    coordinate_resolution_failures: int = 0
    image_resolution_failures: int = 0
    preview_calls: int = 0
    malformed_hints: int = 0

    @property
    def failure_rate(self) -> float:
        if self.total_rows == 0:
            return 0.0
        return self.coordinate_resolution_failures / self.total_rows
