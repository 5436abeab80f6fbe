"""
Row normalization: required-field validation plus tag, reviewer, rating and
location standardization. Pure functions, no I/O.
"""
import math
from typing import Iterable, List, Optional, Tuple, Union

from loguru import logger

from venue_pipeline.config import COLUMNS, RATING_MAX, RATING_MIN
from venue_pipeline.models import (
    NormalizationBatch,
    NormalizedRecord,
    ParsedLocation,
    RawRow,
    Rejection,
    RejectionReason,
)
from venue_pipeline.parser import collapse_whitespace

REGION_NAMES = {
    # US states and territories
    'AL': 'Alabama', 'AK': 'Alaska', 'AZ': 'Arizona', 'AR': 'Arkansas', 'CA': 'California',
    'CO': 'Colorado', 'CT': 'Connecticut', 'DE': 'Delaware', 'FL': 'Florida', 'GA': 'Georgia',
    'HI': 'Hawaii', 'ID': 'Idaho', 'IL': 'Illinois', 'IN': 'Indiana', 'IA': 'Iowa',
    'KS': 'Kansas', 'KY': 'Kentucky', 'LA': 'Louisiana', 'ME': 'Maine', 'MD': 'Maryland',
    'MA': 'Massachusetts', 'MI': 'Michigan', 'MN': 'Minnesota', 'MS': 'Mississippi', 'MO': 'Missouri',
    'MT': 'Montana', 'NE': 'Nebraska', 'NV': 'Nevada', 'NH': 'New Hampshire', 'NJ': 'New Jersey',
    'NM': 'New Mexico', 'NY': 'New York', 'NC': 'North Carolina', 'ND': 'North Dakota', 'OH': 'Ohio',
    'OK': 'Oklahoma', 'OR': 'Oregon', 'PA': 'Pennsylvania', 'RI': 'Rhode Island', 'SC': 'South Carolina',
    'SD': 'South Dakota', 'TN': 'Tennessee', 'TX': 'Texas', 'UT': 'Utah', 'VT': 'Vermont',
    'VA': 'Virginia', 'WA': 'Washington', 'WV': 'West Virginia', 'WI': 'Wisconsin', 'WY': 'Wyoming',
    'PR': 'Puerto Rico', 'DC': 'District of Columbia',
    # Countries (common abbreviations; DE stays Delaware)
    'MX': 'Mexico', 'JP': 'Japan', 'UK': 'United Kingdom', 'FR': 'France',
    'IT': 'Italy', 'ES': 'Spain', 'AU': 'Australia', 'NZ': 'New Zealand', 'SG': 'Singapore',
    'TH': 'Thailand', 'PH': 'Philippines', 'KR': 'South Korea', 'TW': 'Taiwan', 'HK': 'Hong Kong',
}

REQUIRED_FIELDS = ("name", "address")
DEFAULT_REVIEWER = "unknown"


def standardize(value: Optional[str]) -> str:
    """Lower-case and whitespace-normalize free text used as a tag."""
    return collapse_whitespace(value or "").lower()


def _field(row: RawRow, key: str) -> str:
    return collapse_whitespace(row.get(COLUMNS[key], ""))


def normalize_tags(text: str) -> Tuple[str, ...]:
    """Split a comma separated tag cell into an ordered, de-duplicated tuple."""
    seen = []
    for token in (text or "").split(","):
        tag = standardize(token)
        if tag and tag not in seen:
            seen.append(tag)
    return tuple(seen)


def parse_rating(text: str) -> Tuple[float, Optional[str]]:
    """
    Parse a rating out of 10.

    Returns:
        Tuple[float, Optional[str]]: (rating, defect). Unparsable, non-finite or
        out-of-range values become 0.0 with a "rating_invalid" defect; an empty
        cell is 0.0 without one.
    """
    text = (text or "").strip()
    if not text:
        return 0.0, None
    try:
        value = float(text)
    except ValueError:
        return 0.0, "rating_invalid"
    if not math.isfinite(value) or not (RATING_MIN <= value <= RATING_MAX):
        return 0.0, "rating_invalid"
    return value, None


def parse_location(text: str) -> ParsedLocation:
    """
    Parse the "City, Region" location column.

    The region token is expanded through REGION_NAMES; unknown tokens are
    kept verbatim as the display region.
    """
    text = collapse_whitespace(text)
    if not text:
        return ParsedLocation()

    parts = [p.strip() for p in text.split(",")]
    if len(parts) >= 2 and parts[1]:
        city, region = parts[0], parts[1]
        full_region = REGION_NAMES.get(region.upper(), region)
        return ParsedLocation(
            city=city,
            region_code=region,
            region_full_name=full_region,
            display_location=f"{city}, {full_region}" if city else full_region,
        )
    return ParsedLocation(city=parts[0], display_location=parts[0])


def normalize_row(row: RawRow, index: int = 0) -> Union[NormalizedRecord, Rejection]:
    """
    Validate and standardize one parsed row.

    Args:
        row (RawRow): Column -> value mapping from the parser.
        index (int): Position of the row in the export, kept for logging and ordering.

    Returns:
        NormalizedRecord, or a Rejection when name or address is empty.
    """
    missing = tuple(key for key in REQUIRED_FIELDS if not _field(row, key))
    if missing:
        return Rejection(row_index=index, reason=RejectionReason.MISSING_REQUIRED_FIELD, missing=missing)

    defects = []
    rating, rating_defect = parse_rating(_field(row, "rating"))
    if rating_defect:
        defects.append(rating_defect)

    raw_location = _field(row, "location")
    location = parse_location(raw_location)
    if location.region_code and location.region_code.upper() not in REGION_NAMES:
        defects.append("unknown_region")

    return NormalizedRecord(
        name=_field(row, "name"),
        address=_field(row, "address"),
        raw_location_text=raw_location,
        parsed_location=location,
        tags=normalize_tags(_field(row, "tags")),
        reviewer=standardize(_field(row, "reviewer")) or DEFAULT_REVIEWER,
        rating=rating,
        referenced_video_url=_field(row, "video_url"),
        external_map_link=_field(row, "map_link"),
        posted_date=_field(row, "posted_date"),
        thumbnail_url=_field(row, "thumbnail_url"),
        coordinate_hint=_field(row, "coordinate_hint"),
        row_index=index,
        defects=tuple(defects),
    )


def collect_facets(records: Iterable[NormalizedRecord]) -> Tuple[List[str], List[str], List[str]]:
    """Return the sorted distinct tags, reviewers and cities across records."""
    tags, reviewers, cities = set(), set(), set()
    for record in records:
        tags.update(record.tags)
        reviewers.add(record.reviewer)
        city = standardize(record.parsed_location.city)
        if city:
            cities.add(city)
    return sorted(tags), sorted(reviewers), sorted(cities)


def normalize_rows(rows: Iterable[RawRow]) -> NormalizationBatch:
    """Fold normalize_row over every row, keeping input order."""
    batch = NormalizationBatch()
    for index, row in enumerate(rows):
        result = normalize_row(row, index)
        if isinstance(result, Rejection):
            logger.warning(f"⚠️ Skipping row {index}: missing {', '.join(result.missing)}")
            batch.rejections.append(result)
            continue
        for defect in result.defects:
            logger.info(f"ℹ️ Row {index} ({result.name}): {defect}")
        batch.records.append(result)

    batch.tags, batch.reviewers, batch.cities = collect_facets(batch.records)
    return batch
