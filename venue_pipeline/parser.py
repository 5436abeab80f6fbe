"""
CSV export parsing.

Quoted fields may contain commas and newlines, so the text is tokenised as a
whole by pandas rather than split line by line. Every value comes back as a
plain string with whitespace runs collapsed, and short rows are padded with
empty strings; validation is left to the normalizer.
"""
import io
import re
import warnings
from typing import List

import pandas as pd
from loguru import logger

from venue_pipeline.models import RawRow

_WS_RE = re.compile(r"\s+")


def collapse_whitespace(value: str) -> str:
    """Collapse newlines and whitespace runs to single spaces and trim."""
    return _WS_RE.sub(" ", value or "").strip()


def _read_header(raw_text: str) -> List[str]:
    header = pd.read_csv(io.StringIO(raw_text), nrows=0, dtype=object, engine="python")
    return [str(c) for c in header.columns]


def parse_rows(raw_text: str) -> List[RawRow]:
    """
    Parse an export into an ordered list of column -> value mappings.

    Args:
        raw_text (str): Full CSV text, header line first.

    Returns:
        List[RawRow]: One mapping per logical record, in file order.
    """
    if not raw_text or not raw_text.strip():
        return []

    try:
        width = len(_read_header(raw_text))
    except pd.errors.EmptyDataError:
        return []

    truncated = []

    def truncate(fields):
        # Rows wider than the header keep their first `width` fields
        truncated.append(len(fields))
        return fields[:width]

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", pd.errors.ParserWarning)
        df = pd.read_csv(
            io.StringIO(raw_text),
            dtype=object,
            keep_default_na=False,
            na_filter=False,
            skip_blank_lines=True,
            index_col=False,
            engine="python",
            on_bad_lines=truncate,
        )
    for w in caught:
        if issubclass(w.category, pd.errors.ParserWarning):
            logger.warning(f"✂️ Rows wider than the {width}-column header were truncated: {w.message}")
        else:
            warnings.warn_explicit(w.message, w.category, w.filename, w.lineno)
    if truncated:
        logger.warning(f"✂️ Truncated {len(truncated)} rows wider than the {width}-column header")
    columns = [collapse_whitespace(str(c)) for c in df.columns]

    rows: List[RawRow] = []
    for values in df.itertuples(index=False, name=None):
        cells = [collapse_whitespace("" if pd.isna(v) else str(v)) for v in values]
        if not any(cells):
            continue
        rows.append(dict(zip(columns, cells)))
    return rows
