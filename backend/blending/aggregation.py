"""Group-level aggregation and dataset-wide summary statistics for blended data."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Sequence

from backend.blending.columns import INTEGER_METRICS, METRIC_COLUMNS
from backend.blending.metrics import calculate_cpc, calculate_ctr, calculate_roas
from backend.blending.normalize import parse_numeric, round_half_up

logger = logging.getLogger(__name__)

DEFAULT_GROUP_BY = ("date", "source_platform")


def _round_metrics(totals: dict) -> None:
    for name in METRIC_COLUMNS:
        if name in INTEGER_METRICS:
            totals[name] = int(round_half_up(totals[name], 0))
        else:
            totals[name] = round_half_up(totals[name], 2)


def _key_part(value) -> str | None:
    return None if value is None else str(value)


def aggregate_data(rows: Sequence[dict], group_by: Sequence[str] = DEFAULT_GROUP_BY) -> list[dict]:
    """Group canonical rows by ``group_by`` and sum their metrics.

    Dimension values are compared as strings, so 7 and "7" share a group;
    the output row keeps the first value seen. A row missing a group-by
    dimension falls into the group whose value for that dimension is None.
    With an empty ``group_by`` every row lands in a single group. Groups come
    out in order of first appearance; ctr/cpc are recomputed from the summed
    measures.
    """
    groups: dict[tuple, dict] = {}

    for row in rows:
        key = tuple(_key_part(row.get(dim)) for dim in group_by)
        group = groups.get(key)
        if group is None:
            group = {dim: row.get(dim) for dim in group_by}
            for name in METRIC_COLUMNS:
                group[name] = 0
            groups[key] = group

        for name in METRIC_COLUMNS:
            group[name] += parse_numeric(row.get(name))

    aggregated = []
    for group in groups.values():
        group["ctr"] = calculate_ctr(group)
        group["cpc"] = calculate_cpc(group)
        _round_metrics(group)
        aggregated.append(group)

    logger.debug("Aggregated %d rows into %d groups by %s", len(rows), len(aggregated), list(group_by))
    return aggregated


@dataclass
class DateRange:
    start: str | None = None
    end: str | None = None


@dataclass
class SummaryStats:
    total_rows: int
    date_range: DateRange = field(default_factory=DateRange)
    platforms: list[str] = field(default_factory=list)
    totals: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


def get_summary_stats(rows: Sequence[dict]) -> SummaryStats:
    """Totals, date range, platform set and blended-level ctr/cpc/roas for a dataset."""
    date_range = DateRange()
    platforms: dict[str, None] = {}
    totals = {name: 0 for name in METRIC_COLUMNS}

    for row in rows:
        platform = row.get("source_platform")
        if platform:
            platforms[platform] = None

        date = row.get("date")
        if date:
            if date_range.start is None or date < date_range.start:
                date_range.start = date
            if date_range.end is None or date > date_range.end:
                date_range.end = date

        for name in METRIC_COLUMNS:
            totals[name] += parse_numeric(row.get(name))

    totals["ctr"] = calculate_ctr(totals)
    totals["cpc"] = calculate_cpc(totals)
    totals["roas"] = calculate_roas(totals)
    _round_metrics(totals)

    return SummaryStats(
        total_rows=len(rows),
        date_range=date_range,
        platforms=list(platforms),
        totals=totals,
    )
