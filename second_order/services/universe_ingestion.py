"""
Universe ingestion - turn an uploaded company universe CSV into scored-ready rows.

Handles:
- Header aliases (Company Name, company_name, companyname -> company_name)
- exp_* exposure columns, clamped to [-1, 1] (unparseable -> 0)
- Duplicate symbols, invalid asset types and all-zero exposure rows (dropped with a warning)
- Max position given as a decimal or a percentage
- Ragged rows (trailing commas, missing cells) read by header position
"""
import csv
import io
import logging
import re
from typing import Dict, List, Optional, Tuple

import pandas as pd

from second_order.core.errors import UniverseParseError
from second_order.core.text import normalize_text_key
from second_order.core.types import ASSET_TYPES, UniverseRow

logger = logging.getLogger(__name__)

EXPOSURE_PREFIX = "exp_"
DEFAULT_MAX_POSITION_PCT = 0.05
DEFAULT_LIQUIDITY_CLASS = "daily"

COLUMN_MAPPINGS: Dict[str, List[str]] = {
    "symbol": ["symbol"],
    "company_name": ["company_name", "companyname"],
    "asset_type": ["asset_type", "assettype"],
    "liquidity_class": ["liquidity_class", "liquidityclass"],
    "region": ["region"],
    "currency": ["currency"],
    "max_position_pct": ["max_position_pct", "maxpositionpct"],
    "tags": ["tags"],
}
REQUIRED_COLUMNS = ("symbol", "company_name", "asset_type", "liquidity_class")

_HEADER_CHARS = re.compile(r"[^a-z0-9_]")
_TAG_SPLIT = re.compile(r"[|,;]")


def normalize_header(value: str) -> str:
    return _HEADER_CHARS.sub("", str(value).strip().lower())


def parse_tags(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [t.strip() for t in _TAG_SPLIT.split(value) if t.strip()]


def parse_max_position(value: Optional[str]) -> float:
    """Decimal or percentage (>1), clamped to [0, 1]; blank or garbage -> default."""
    if value is None or not str(value).strip():
        return DEFAULT_MAX_POSITION_PCT
    parsed = pd.to_numeric(str(value).strip(), errors="coerce")
    if pd.isna(parsed):
        return DEFAULT_MAX_POSITION_PCT
    parsed = float(parsed)
    if parsed > 1:
        parsed = parsed / 100
    return min(1.0, max(0.0, parsed))


def _read_frame(text: str) -> pd.DataFrame:
    """Header-positioned frame of str cells; short rows padded, extra trailing cells dropped."""
    lines = [line for line in (text or "").splitlines() if line.strip()]
    try:
        rows = list(csv.reader(io.StringIO("\n".join(lines)), skipinitialspace=True))
    except csv.Error as e:
        raise UniverseParseError(f"Universe CSV is malformed: {e}") from e
    if len(rows) < 2:
        raise UniverseParseError("Universe CSV must include a header and at least one data row.")
    header = rows[0]
    width = len(header)
    body = [(row + [""] * width)[:width] for row in rows[1:]]
    return pd.DataFrame(body, columns=header, dtype=str)


def _resolve_columns(headers: List[str]) -> Dict[str, str]:
    """Map standard names to the first matching normalized header."""
    resolved: Dict[str, str] = {}
    for standard, aliases in COLUMN_MAPPINGS.items():
        for header in headers:
            if header in aliases:
                resolved[standard] = header
                break
    return resolved


def parse_universe_csv(text: str) -> Tuple[List[UniverseRow], List[str]]:
    """
    Parse universe CSV text into rows plus non-fatal warnings.

    Args:
        text: Raw CSV content with a header row

    Returns:
        (rows, warnings) with rows in file order

    Raises:
        UniverseParseError: If the table is empty, lacks required or exposure
            columns, or no row survives validation
    """
    frame = _read_frame(text)
    frame.columns = [normalize_header(c) for c in frame.columns]
    frame = frame.apply(lambda col: col.str.strip())

    exposure_columns = [c for c in frame.columns if c.startswith(EXPOSURE_PREFIX) and len(c) > len(EXPOSURE_PREFIX)]
    if not exposure_columns:
        raise UniverseParseError("Universe CSV must include at least one exp_* exposure column.")

    columns = _resolve_columns(list(frame.columns))
    missing = [c for c in REQUIRED_COLUMNS if c not in columns]
    if missing:
        raise UniverseParseError(
            "Universe CSV missing one of required columns: symbol, company_name, asset_type, liquidity_class."
        )

    exposures = (
        frame[exposure_columns]
        .apply(pd.to_numeric, errors="coerce")
        .fillna(0.0)
        .clip(lower=-1.0, upper=1.0)
    )
    exposures.columns = [c[len(EXPOSURE_PREFIX):] for c in exposure_columns]

    def cell(record: pd.Series, standard: str) -> Optional[str]:
        column = columns.get(standard)
        if column is None:
            return None
        return record[column] or None

    seen = set()
    warnings: List[str] = []
    rows: List[UniverseRow] = []

    for idx, record in frame.iterrows():
        symbol = (cell(record, "symbol") or "").upper()
        if not symbol:
            continue
        key = normalize_text_key(symbol)
        if key in seen:
            warnings.append(f"Duplicate symbol dropped: {symbol}")
            continue
        seen.add(key)

        asset_type = (cell(record, "asset_type") or "").upper()
        if asset_type not in ASSET_TYPES:
            warnings.append(f"Invalid asset_type for {symbol}; row skipped.")
            continue

        vector = {factor: float(value) for factor, value in exposures.loc[idx].items()}
        if not any(abs(v) > 0 for v in vector.values()):
            warnings.append(f"All-zero exposures dropped: {symbol}")
            continue

        rows.append(UniverseRow(
            symbol=symbol,
            company_name=cell(record, "company_name") or symbol,
            asset_type=asset_type,
            liquidity_class=cell(record, "liquidity_class") or DEFAULT_LIQUIDITY_CLASS,
            exposure_vector=vector,
            max_position_default_pct=parse_max_position(cell(record, "max_position_pct")),
            region=cell(record, "region"),
            currency=cell(record, "currency"),
            tags=parse_tags(cell(record, "tags")),
        ))

    if not rows:
        raise UniverseParseError("Universe CSV did not produce any valid rows.")

    logger.info(
        "Universe parsed",
        extra={"rows": len(rows), "dropped": len(warnings), "factors": list(exposures.columns)},
    )
    return rows, warnings
