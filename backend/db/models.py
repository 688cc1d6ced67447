import datetime
from sqlalchemy import String, DateTime, Text, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from backend.db.config import Base


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class SourceRecord(Base):
    """One raw row of platform data for a client, stored as delivered."""
    __tablename__ = "source_records"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[str] = mapped_column(String(64))
    platform_id: Mapped[str] = mapped_column(String(50))  # meta_ads | google_ads | ga4 | ...
    row_json: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_source_records_client_platform", "client_id", "platform_id"),
    )


class BlendedRecord(Base):
    """One harmonized (and optionally aggregated) row from a blend run."""
    __tablename__ = "blended_records"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[str] = mapped_column(String(64), index=True)
    batch_id: Mapped[str] = mapped_column(String(32))  # "blend-<8 hex>"
    row_json: Mapped[str] = mapped_column(Text)
    source_platforms: Mapped[str] = mapped_column(Text)  # JSON list
    blended_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=_utcnow)


class CustomMapping(Base):
    """Client override of the native field a canonical field is read from."""
    __tablename__ = "custom_mappings"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[str] = mapped_column(String(64))
    platform_id: Mapped[str] = mapped_column(String(50))
    field_type: Mapped[str] = mapped_column(String(20))  # "dimension" | "metric"
    canonical_id: Mapped[str] = mapped_column(String(100))
    platform_field_name: Mapped[str] = mapped_column(String(255))
    transform: Mapped[str | None] = mapped_column(String(50), nullable=True)  # None keeps the default
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        UniqueConstraint(
            "client_id", "platform_id", "field_type", "canonical_id",
            name="uq_client_platform_field",
        ),
    )
