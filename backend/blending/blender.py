"""Merge harmonized data from multiple platforms into one ordered dataset."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from backend.blending.harmonizer import harmonize_dataset
from backend.blending.mappings import FieldMapping

logger = logging.getLogger(__name__)


@dataclass
class BlendSource:
    """Raw rows from one platform, plus an optional client-resolved mapping."""
    platform_id: str
    data: list[dict] | None
    mapping: Sequence[FieldMapping] | None = None


def _blend_sort_key(row: dict) -> tuple[str, str]:
    return (str(row.get("date") or ""), str(row.get("source_platform") or ""))


def blend_sources(sources: Iterable[BlendSource]) -> list[dict]:
    """Harmonize and merge every non-empty source.

    Sources with empty or missing data are skipped. The result is sorted by
    date then source platform; rows that tie keep their input order.
    """
    blended: list[dict] = []
    used = 0
    for source in sources:
        if not source.data:
            continue
        blended.extend(harmonize_dataset(source.data, source.platform_id, source.mapping))
        used += 1

    logger.debug("Blended %d rows from %d sources", len(blended), used)
    return sorted(blended, key=_blend_sort_key)
