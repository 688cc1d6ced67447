"""Row and dataset harmonization: raw platform rows -> canonical rows."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from backend.blending.mappings import FieldMapping, get_mapping
from backend.blending.metrics import calculate_cpc, calculate_ctr
from backend.blending.normalize import apply_transform, is_absent

logger = logging.getLogger(__name__)


def harmonize_row(
    row: dict,
    platform_id: str,
    mapping: Sequence[FieldMapping] | None = None,
) -> dict:
    """Translate one raw platform row into a canonical row.

    ``mapping`` overrides the platform's default field mapping (e.g. one
    resolved with client overrides). Absent values (None, NaN, "") are skipped
    rather than written as nulls. ``ctr`` and ``cpc`` are always recomputed.

    Raises UnknownPlatformError if no mapping is given and the platform has none.
    """
    if mapping is None:
        mapping = get_mapping(platform_id)

    harmonized = {"source_platform": platform_id}
    for entry in mapping:
        value = row.get(entry.source_field)
        if is_absent(value):
            continue
        harmonized[entry.target_field] = apply_transform(
            value, entry.transform, entry.target_field
        )

    harmonized["ctr"] = calculate_ctr(harmonized)
    harmonized["cpc"] = calculate_cpc(harmonized)
    return harmonized


def harmonize_dataset(
    rows: Iterable[dict],
    platform_id: str,
    mapping: Sequence[FieldMapping] | None = None,
) -> list[dict]:
    """Harmonize every row of a single-platform dataset, preserving order."""
    if mapping is None:
        mapping = get_mapping(platform_id)
    harmonized = [harmonize_row(row, platform_id, mapping) for row in rows]
    logger.debug("Harmonized %d %s rows", len(harmonized), platform_id)
    return harmonized
