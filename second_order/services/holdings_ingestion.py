"""
Holdings ingestion - read spreadsheet exports of a portfolio into HoldingInput records.

Handles:
- Header row in the wrong position (first row carrying a name column wins)
- Different column names (Holding Name, Asset Name -> name; Symbol -> ticker)
- Currency symbols, thousands separators and % signs in numeric cells
- Percentage vs decimal weights (5 -> 0.05)
- Dated value columns (the most recent date column is used as the amount)
- Footer/summary rows ("Summary", "Grand Total", pivot "Bucket | Sum of ...")
"""
import csv
import io
import logging
import re
from typing import Dict, List, Optional, Tuple

import pandas as pd

from second_order.core.errors import HoldingsParseError
from second_order.core.types import (
    CONSTRAINT_FREE, HOLDING_CONSTRAINTS, HOLDING_PURPOSES, LEVEL_MED,
    PURPOSE_LONG_TERM_GROWTH, SENSITIVITY_LEVELS, HoldingInput,
)

logger = logging.getLogger(__name__)

# Column name mappings, compared after normalize_header
COLUMN_MAPPINGS: Dict[str, List[str]] = {
    "name": ["name", "holding", "holdingname", "assetname"],
    "ticker": ["ticker", "symbol"],
    "weight": ["weight", "allocation", "portfolioweight"],
    "weight_pct": ["weightpct", "weightpercent", "weightpercentage", "allocationpct"],
    "amount": [
        "amount", "value", "marketvalue", "positionvalue", "gbpamount",
        "amountgbp", "valuegbp", "holdingvalue",
    ],
    "sensitivity": ["sensitivity", "exposuresensitivity"],
    "constraint": ["constraint", "capitalconstraint"],
    "purpose": ["purpose", "bucketpurpose"],
    "tags": ["tags", "exposuretags"],
}
HEADER_MARKERS = ("name", "holdingname", "assetname")
HEADER_DATE_FORMATS = ("%d/%m/%Y", "%Y-%m-%d", "%d %b %Y", "%d %B %Y")
WEIGHT_DECIMALS = 6

_HEADER_CHARS = re.compile(r"[^a-z0-9]")
_NUMERIC_NOISE = re.compile(r"[£$,%\s]")
_TAG_SPLIT = re.compile(r"[|;,]")


def normalize_header(value: str) -> str:
    return _HEADER_CHARS.sub("", (value or "").lower())


def parse_header_date(value: str) -> Optional[pd.Timestamp]:
    """Timestamp for a date-like header ("31/01/2025", "2025-01-31"), else None."""
    value = (value or "").strip()
    if not value:
        return None
    for fmt in HEADER_DATE_FORMATS:
        parsed = pd.to_datetime(value, format=fmt, errors="coerce")
        if not pd.isna(parsed):
            return parsed
    return None


def parse_numeric(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    cleaned = _NUMERIC_NOISE.sub("", value)
    if not cleaned:
        return None
    parsed = pd.to_numeric(cleaned, errors="coerce")
    if pd.isna(parsed):
        return None
    return float(parsed)


def to_decimal_weight(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return value / 100 if value > 1 else value


def _choice(value: str, allowed, default: str) -> str:
    value = (value or "").strip().upper()
    return value if value in allowed else default


def _find_header_row(rows: List[List[str]]) -> int:
    for idx, row in enumerate(rows):
        normalized = [normalize_header(c) for c in row]
        if any(marker in normalized for marker in HEADER_MARKERS):
            return idx
    raise HoldingsParseError("CSV must include a `name` column.")


def _resolve_columns(header: List[str]) -> Dict[str, int]:
    normalized = [normalize_header(c) for c in header]
    resolved: Dict[str, int] = {}
    for standard, aliases in COLUMN_MAPPINGS.items():
        for idx, h in enumerate(normalized):
            if h in aliases:
                resolved[standard] = idx
                break
    return resolved


def _amount_column(header: List[str], columns: Dict[str, int]) -> Optional[int]:
    """Latest dated column if any, else the amount alias column."""
    dated = [(parse_header_date(h), idx) for idx, h in enumerate(header)]
    dated = [(ts, idx) for ts, idx in dated if ts is not None]
    if dated:
        return max(dated, key=lambda item: item[0])[1]
    return columns.get("amount")


def _is_footer(cells: List[str], name_idx: int) -> bool:
    name = normalize_header(cells[name_idx] if name_idx < len(cells) else "")
    second = normalize_header(cells[1] if len(cells) > 1 else "")
    return name in ("summary", "grandtotal") or (name == "bucket" and second.startswith("sumof"))


def parse_holdings_csv(text: str) -> List[HoldingInput]:
    """
    Parse a holdings export into HoldingInput records.

    Weights come from the weight column, then the weight-percent column.
    When no row carries an explicit weight but amounts exist, weights are
    amount / total positive amount rounded to 6 dp. An all-zero amount
    column leaves weights unset (equal weighting downstream).

    Raises:
        HoldingsParseError: If the CSV is empty, has no name column or has no
            holding rows
    """
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    if not lines:
        raise HoldingsParseError("CSV is empty.")
    rows = [[c.strip() for c in row] for row in csv.reader(io.StringIO("\n".join(lines)))]

    header_idx = _find_header_row(rows)
    header = rows[header_idx]
    columns = _resolve_columns(header)
    name_idx = columns["name"]
    amount_idx = _amount_column(header, columns)

    def cell(cells: List[str], standard: str) -> str:
        idx = columns.get(standard)
        if idx is None or idx >= len(cells):
            return ""
        return cells[idx]

    staged: List[Tuple[HoldingInput, Optional[float]]] = []
    for cells in rows[header_idx + 1:]:
        if _is_footer(cells, name_idx):
            break
        name = cells[name_idx] if name_idx < len(cells) else ""
        if not name or normalize_header(name) == "bucket":
            continue

        weight = parse_numeric(cell(cells, "weight"))
        if weight is None:
            weight = parse_numeric(cell(cells, "weight_pct"))
        amount = None
        if amount_idx is not None and amount_idx < len(cells):
            amount = parse_numeric(cells[amount_idx])

        holding = HoldingInput(
            name=name,
            ticker=cell(cells, "ticker") or None,
            weight=to_decimal_weight(weight),
            sensitivity=_choice(cell(cells, "sensitivity"), SENSITIVITY_LEVELS, LEVEL_MED),
            constraint=_choice(cell(cells, "constraint"), HOLDING_CONSTRAINTS, CONSTRAINT_FREE),
            purpose=_choice(cell(cells, "purpose"), HOLDING_PURPOSES, PURPOSE_LONG_TERM_GROWTH),
            exposure_tags=[t.strip() for t in _TAG_SPLIT.split(cell(cells, "tags")) if t.strip()],
        )
        staged.append((holding, amount))

    if not staged:
        raise HoldingsParseError("No valid holding rows found in CSV.")

    has_weight = any(h.has_weight for h, _ in staged)
    has_amount = any(a is not None and a > 0 for _, a in staged)
    if not has_weight and has_amount:
        total = sum(a for _, a in staged if a is not None and a > 0)
        for holding, amount in staged:
            if amount is not None and amount > 0:
                holding.weight = round(amount / total, WEIGHT_DECIMALS)

    holdings = [h for h, _ in staged]
    logger.info(
        "Holdings parsed",
        extra={"holdings": len(holdings), "header_row": header_idx, "weights_from_amounts": not has_weight and has_amount},
    )
    return holdings
