"""Value normalization for raw platform data.

Ingestion data is messy (currency symbols, thousands separators, three
different date encodings across ad platforms). Nothing here raises on a bad
value: numbers degrade to 0 and dates pass through unchanged.
"""

from __future__ import annotations

import datetime
import math
import numbers
import re
from decimal import ROUND_HALF_UP, Decimal

import pandas as pd

from backend.blending.mappings import Transform

MICROS_TO_CURRENCY = 1_000_000
RATIO_TO_PERCENTAGE = 100

_CURRENCY_CHARS = re.compile(r"[$,€£¥]")
# Leading float literal, the way a lenient float parser reads "12.5 USD"
_FLOAT_PREFIX = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_COMPACT_DATE = re.compile(r"^\d{8}$")
# pandas fills a missing year from the clock, so only hand it full dates
_HAS_YEAR = re.compile(r"\d{4}")


def is_absent(value) -> bool:
    """None, NaN and empty strings all count as a missing value."""
    if value is None or (isinstance(value, str) and value == ""):
        return True
    return isinstance(value, float) and math.isnan(value)


def round_half_up(value: float, decimals: int = 2) -> float:
    """Round half away from zero at the given precision.

    Goes through the shortest decimal repr so float artifacts such as
    0.1 + 0.2 land on 0.3 and 1.235 rounds to 1.24.
    """
    if not math.isfinite(value):
        return 0.0
    quantum = Decimal(1).scaleb(-decimals)
    return float(Decimal(str(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


def parse_numeric(value) -> float:
    """Parse a raw value as a number, returning 0 for anything unusable."""
    if is_absent(value) or isinstance(value, bool):
        return 0
    if isinstance(value, numbers.Real):
        return value if math.isfinite(value) else 0
    if isinstance(value, Decimal):
        return float(value) if value.is_finite() else 0
    if not isinstance(value, str):
        return 0

    cleaned = _CURRENCY_CHARS.sub("", value).strip()
    match = _FLOAT_PREFIX.match(cleaned)
    if not match:
        return 0
    parsed = float(match.group(0))
    return parsed if math.isfinite(parsed) else 0


def normalize_date(value) -> str | None:
    """Normalize a date-ish value to YYYY-MM-DD.

    Accepts YYYY-MM-DD, GA4-style YYYYMMDD and any timestamp with a four-digit
    year that pandas can parse. Timestamps with an offset resolve to their UTC
    day. Unparseable values come back unchanged as strings.
    """
    if is_absent(value):
        return None
    if isinstance(value, datetime.datetime):
        if value.tzinfo is not None:
            value = value.astimezone(datetime.timezone.utc)
        return value.date().isoformat()
    if isinstance(value, datetime.date):
        return value.isoformat()

    text = str(value).strip()
    if not text:
        return None
    if _ISO_DATE.match(text):
        return text
    if _COMPACT_DATE.match(text):
        return f"{text[:4]}-{text[4:6]}-{text[6:8]}"
    if not _HAS_YEAR.search(text):
        return text

    try:
        parsed = pd.to_datetime(text, errors="coerce", utc=True)
    except (ValueError, OverflowError):
        parsed = pd.NaT
    if pd.isna(parsed):
        return text
    return parsed.date().isoformat()


def normalize_value(value, field_name: str):
    """Normalize a dimension value: dates by field name, strings trimmed."""
    if value is None:
        return None
    if "date" in field_name.lower():
        return normalize_date(value)
    if isinstance(value, str):
        return value.strip()
    return value


def apply_transform(value, transform: Transform, field_name: str):
    """Apply a mapping transform to a present (non-absent) raw value."""
    if transform is Transform.NONE:
        return normalize_value(value, field_name)
    if transform is Transform.DATE:
        return normalize_date(value)
    if transform is Transform.NUMERIC:
        return parse_numeric(value)
    if transform is Transform.CURRENCY_FROM_MICROS:
        return parse_numeric(value) / MICROS_TO_CURRENCY
    if transform is Transform.RATIO_TO_PERCENTAGE:
        return parse_numeric(value) * RATIO_TO_PERCENTAGE
    raise ValueError(f"Unsupported transform: {transform}")
