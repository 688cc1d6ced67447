"""Derived ratio metrics.

Ratios are always recomputed from summed measures, never summed themselves.
Missing or null inputs count as 0 and a zero denominator yields 0.
"""

from __future__ import annotations

from backend.blending.normalize import parse_numeric, round_half_up


def _ratio(numerator, denominator, scale: float = 1) -> float:
    num = parse_numeric(numerator)
    den = parse_numeric(denominator)
    if den > 0:
        return round_half_up(num / den * scale, 2)
    return 0


def calculate_ctr(row: dict) -> float:
    """Click-through rate as a percentage: clicks / impressions * 100."""
    return _ratio(row.get("clicks"), row.get("impressions"), scale=100)


def calculate_cpc(row: dict) -> float:
    """Cost per click: spend / clicks."""
    return _ratio(row.get("spend"), row.get("clicks"))


def calculate_roas(row: dict) -> float:
    """Return on ad spend: revenue / spend."""
    return _ratio(row.get("revenue"), row.get("spend"))
