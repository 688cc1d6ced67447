"""Canonical blended column schema and the pandera contract for stored blends."""

from __future__ import annotations

import copy

import pandas as pd
import pandera.pandas as pa
from pandera.pandas import Column


class ValidationError(Exception):
    def __init__(self, message: str, details: list[str] | None = None):
        self.message = message
        self.details = details or []
        super().__init__(message)


# Every column that can appear in a harmonized/blended row.
# type: "dimension" (grouping key) | "metric" (additive measure) | "meta"
BLENDED_COLUMNS = {
    "date": {"type": "dimension", "required": True},
    "source_platform": {"type": "meta", "required": True},
    "campaign_name": {"type": "dimension", "required": False},
    "ad_group_name": {"type": "dimension", "required": False},
    "ad_name": {"type": "dimension", "required": False},
    "impressions": {"type": "metric", "required": False},
    "clicks": {"type": "metric", "required": False},
    "spend": {"type": "metric", "required": False},
    "conversions": {"type": "metric", "required": False},
    "revenue": {"type": "metric", "required": False},
    "ctr": {"type": "metric", "required": False, "derived": True},
    "cpc": {"type": "metric", "required": False, "derived": True},
}

DIMENSION_COLUMNS = [
    name for name, spec in BLENDED_COLUMNS.items() if spec["type"] == "dimension"
]

# Additive measures only; derived ratios are recomputed, never summed.
METRIC_COLUMNS = [
    name for name, spec in BLENDED_COLUMNS.items()
    if spec["type"] == "metric" and not spec.get("derived")
]

DERIVED_COLUMNS = [name for name, spec in BLENDED_COLUMNS.items() if spec.get("derived")]

# Summed metrics that are counts; everything else keeps two decimals.
INTEGER_METRICS = {"impressions", "clicks"}


def get_blended_schema() -> dict:
    """Return a copy of the blended column registry."""
    return copy.deepcopy(BLENDED_COLUMNS)


blended_schema = pa.DataFrameSchema(
    columns={
        "date": Column(object, nullable=True, required=False),
        "source_platform": Column(str, nullable=False, required=False),
        "campaign_name": Column(object, nullable=True, required=False),
        "ad_group_name": Column(object, nullable=True, required=False),
        "ad_name": Column(object, nullable=True, required=False),
        "impressions": Column(float, coerce=True, nullable=False),
        "clicks": Column(float, coerce=True, nullable=False),
        "spend": Column(float, coerce=True, nullable=False),
        "conversions": Column(float, coerce=True, nullable=False),
        "revenue": Column(float, coerce=True, nullable=False),
        "ctr": Column(float, coerce=True, nullable=False),
        "cpc": Column(float, coerce=True, nullable=False),
    },
    strict=False,  # platform-specific extras (reach, sessions, ...) pass through
    coerce=True,
)


def to_frame(rows: list[dict]) -> pd.DataFrame:
    """Build a DataFrame from canonical rows and validate it against the blended schema.

    Missing metric columns are zero-filled, missing dimensions become None, and
    canonical columns come first in registry order. The input rows are not modified.
    Raises ValidationError when a column cannot be coerced to its declared type.
    """
    df = pd.DataFrame.from_records([dict(r) for r in rows])

    for name in METRIC_COLUMNS + DERIVED_COLUMNS:
        if name not in df.columns:
            df[name] = 0.0
        else:
            df[name] = df[name].fillna(0.0)
    for name in DIMENSION_COLUMNS:
        if name not in df.columns:
            df[name] = None
        df[name] = df[name].astype(object).where(df[name].notna(), None)

    canonical = [c for c in BLENDED_COLUMNS if c in df.columns]
    extras = [c for c in df.columns if c not in BLENDED_COLUMNS]
    df = df[canonical + extras]

    try:
        return blended_schema.validate(df, lazy=True)
    except pa.errors.SchemaErrors as exc:
        details = []
        for _, row in exc.failure_cases.iterrows():
            details.append(
                f"Column '{row.get('column', '?')}': {row.get('check', '?')} "
                f"(index {row.get('index', '?')})"
            )
        raise ValidationError("Blended data failed schema validation", details=details) from exc
