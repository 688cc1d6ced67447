"""Blend orchestration over stored client data: source rows, custom mappings, blend batches."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.blending.aggregation import SummaryStats, aggregate_data, get_summary_stats
from backend.blending.blender import BlendSource, blend_sources
from backend.blending.columns import BLENDED_COLUMNS, to_frame
from backend.blending.mappings import (
    FieldMapping,
    Transform,
    UnknownPlatformError,
    canonical_field_ids,
    get_mapping,
    has_platform_mapping,
    resolve_mapping,
)
from backend.db.models import BlendedRecord, CustomMapping, SourceRecord

logger = logging.getLogger(__name__)

FIELD_TYPES = ("dimension", "metric")


@dataclass
class BlendResult:
    batch_id: str
    rows_blended: int
    sources_blended: list[str]
    stats: SummaryStats
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _require_platform(platform_id: str) -> None:
    if not has_platform_mapping(platform_id):
        raise UnknownPlatformError(platform_id)


# ---- source data ----

def store_source_rows(
    db: Session,
    client_id: str,
    platform_id: str,
    rows: list[dict],
    replace: bool = True,
) -> int:
    """Store already-parsed raw rows for a client's platform.

    Replaces the platform's previous rows unless ``replace`` is False.
    Returns the number of rows stored.
    """
    _require_platform(platform_id)

    if replace:
        db.query(SourceRecord).filter_by(client_id=client_id, platform_id=platform_id).delete()

    db.bulk_save_objects([
        SourceRecord(client_id=client_id, platform_id=platform_id, row_json=json.dumps(row))
        for row in rows
    ])
    db.commit()
    logger.info("Stored %d %s rows for client %s", len(rows), platform_id, client_id)
    return len(rows)


def get_source_data(db: Session, client_id: str, platform_id: str) -> list[dict]:
    """Return a client's raw rows for a platform in insertion order."""
    records = (
        db.query(SourceRecord)
        .filter_by(client_id=client_id, platform_id=platform_id)
        .order_by(SourceRecord.id)
        .all()
    )
    return [json.loads(r.row_json) for r in records]


# ---- custom mappings ----

def _validate_transform(transform: str | None) -> str | None:
    if transform is None:
        return None
    try:
        return Transform(transform).value
    except ValueError:
        raise ValueError(
            f"Unknown transform '{transform}'. Available: {[t.value for t in Transform]}"
        )


def list_custom_mappings(
    db: Session, client_id: str, platform_id: str | None = None,
) -> list[CustomMapping]:
    query = db.query(CustomMapping).filter_by(client_id=client_id)
    if platform_id is not None:
        query = query.filter_by(platform_id=platform_id)
    return query.order_by(CustomMapping.id).all()


def create_custom_mapping(
    db: Session,
    client_id: str,
    platform_id: str,
    field_type: str,
    canonical_id: str,
    platform_field_name: str,
    transform: str | None = None,
) -> CustomMapping:
    """Register a client override for one canonical field on a platform.

    Raises ValueError for an invalid field type, canonical id or transform,
    or when an override for the same field already exists.
    """
    _require_platform(platform_id)
    if field_type not in FIELD_TYPES:
        raise ValueError('field_type must be "dimension" or "metric"')
    if canonical_id not in canonical_field_ids(field_type):
        raise ValueError(
            f"{field_type.capitalize()} {canonical_id} not found in canonical definitions"
        )
    if not platform_field_name:
        raise ValueError("platform_field_name is required")
    transform = _validate_transform(transform)

    existing = db.query(CustomMapping).filter_by(
        client_id=client_id,
        platform_id=platform_id,
        field_type=field_type,
        canonical_id=canonical_id,
    ).first()
    if existing:
        raise ValueError(
            f"Custom mapping for {field_type} {canonical_id} already exists. Use update instead."
        )

    mapping = CustomMapping(
        client_id=client_id,
        platform_id=platform_id,
        field_type=field_type,
        canonical_id=canonical_id,
        platform_field_name=platform_field_name,
        transform=transform,
    )
    db.add(mapping)
    db.commit()
    logger.info(
        "Client %s now reads %s.%s from '%s'",
        client_id, platform_id, canonical_id, platform_field_name,
    )
    return mapping


def update_custom_mapping(
    db: Session,
    mapping_id: int,
    platform_field_name: str | None = None,
    transform: str | None = None,
) -> CustomMapping:
    """Change the native field or transform of an existing override.

    None (or an empty field name) leaves that attribute unchanged; delete and
    recreate the override to drop a transform back to the platform default.
    Raises ValueError if the mapping doesn't exist or the transform is unknown.
    """
    mapping = db.query(CustomMapping).filter_by(id=mapping_id).first()
    if not mapping:
        raise ValueError(f"Custom mapping {mapping_id} not found")

    if platform_field_name:
        mapping.platform_field_name = platform_field_name
    if transform is not None:
        mapping.transform = _validate_transform(transform)
    db.commit()
    return mapping


def delete_custom_mapping(db: Session, mapping_id: int) -> None:
    """Delete an override; the field reverts to the platform default."""
    mapping = db.query(CustomMapping).filter_by(id=mapping_id).first()
    if not mapping:
        raise ValueError(f"Custom mapping {mapping_id} not found")
    db.delete(mapping)
    db.commit()


def get_client_mapping(db: Session, client_id: str, platform_id: str) -> tuple[FieldMapping, ...]:
    """Return the platform mapping with the client's overrides applied."""
    overrides = list_custom_mappings(db, client_id, platform_id)
    if not overrides:
        return get_mapping(platform_id)
    return resolve_mapping(platform_id, overrides)


# ---- blending ----

def run_blend(
    db: Session,
    client_id: str,
    platform_ids: list[str],
    group_by: list[str] | None = None,
) -> BlendResult:
    """Blend a client's stored source data and replace their stored blend.

    1. Reject unknown platforms before reading anything
    2. Read each platform's rows (unreadable platforms are skipped with a warning)
    3. Blend, aggregate if ``group_by`` is given, summarise, validate
    4. Replace the client's blended rows under a new batch id

    Raises UnknownPlatformError, ValueError when there is nothing to blend,
    or ValidationError when the blended rows fail the schema.
    """
    if not platform_ids:
        raise ValueError("No platforms configured. Add platforms first.")
    for platform_id in platform_ids:
        _require_platform(platform_id)

    sources: list[BlendSource] = []
    warnings: list[str] = []
    for platform_id in platform_ids:
        try:
            data = get_source_data(db, client_id, platform_id)
        except (ValueError, SQLAlchemyError) as exc:
            logger.warning("Could not read data for platform %s: %s", platform_id, exc)
            warnings.append(f"Could not read data for platform {platform_id}")
            continue
        if data:
            sources.append(BlendSource(
                platform_id=platform_id,
                data=data,
                mapping=get_client_mapping(db, client_id, platform_id),
            ))

    if not sources:
        raise ValueError("No source data found. Upload data to platforms first.")

    blended = blend_sources(sources)
    if group_by:
        blended = aggregate_data(blended, group_by)
    stats = get_summary_stats(blended)
    to_frame(blended)

    batch_id = f"blend-{uuid.uuid4().hex[:8]}"
    source_platforms = [s.platform_id for s in sources]
    platforms_json = json.dumps(source_platforms)

    db.query(BlendedRecord).filter_by(client_id=client_id).delete()
    db.bulk_save_objects([
        BlendedRecord(
            client_id=client_id,
            batch_id=batch_id,
            row_json=json.dumps(row),
            source_platforms=platforms_json,
        )
        for row in blended
    ])
    db.commit()
    logger.info(
        "Blend %s for client %s: %d rows from %s",
        batch_id, client_id, len(blended), source_platforms,
    )

    return BlendResult(
        batch_id=batch_id,
        rows_blended=len(blended),
        sources_blended=source_platforms,
        stats=stats,
        warnings=warnings,
    )


def get_blended_data(db: Session, client_id: str) -> list[dict]:
    """Return the client's stored blended rows in blend order."""
    records = (
        db.query(BlendedRecord)
        .filter_by(client_id=client_id)
        .order_by(BlendedRecord.id)
        .all()
    )
    return [json.loads(r.row_json) for r in records]


def get_blended_preview(
    db: Session, client_id: str, limit: int | None = 10, offset: int = 0,
) -> dict:
    """Paginated slice of the stored blend with its column list.

    ``limit=None`` returns every row from ``offset`` on.
    """
    rows = get_blended_data(db, client_id)

    columns: list[str] = []
    for row in rows:
        for name in row:
            if name not in columns:
                columns.append(name)
    # canonical columns in registry order, extras after in first-seen order
    order = {name: i for i, name in enumerate(BLENDED_COLUMNS)}
    columns.sort(key=lambda c: order.get(c, len(order)))

    page = rows[offset:] if limit is None else rows[offset:offset + limit]
    return {
        "columns": columns,
        "rows": page,
        "total_rows": len(rows),
        "limit": limit,
        "offset": offset,
    }
