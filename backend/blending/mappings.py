"""Platform field mappings: the single source of truth for cross-platform harmonization.

Each platform maps native field names onto canonical field ids, tagging every
field with the value transform to apply. Adding a platform is a data change
here; the harmonizer never branches on platform ids.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Iterable


class UnknownPlatformError(ValueError):
    """Raised when a platform has no registered field mapping."""

    def __init__(self, platform_id: str):
        self.platform_id = platform_id
        super().__init__(f"No mapping found for platform: {platform_id}")


class Transform(str, enum.Enum):
    NONE = "none"
    NUMERIC = "numeric"
    DATE = "date"
    CURRENCY_FROM_MICROS = "currency-from-micros"
    RATIO_TO_PERCENTAGE = "ratio-to-percentage"


@dataclass(frozen=True)
class FieldMapping:
    source_field: str
    target_field: str
    transform: Transform
    field_type: str  # "dimension" | "metric"


def _platform(
    dimensions: dict[str, str],
    metrics: dict[str, str],
    transforms: dict[str, Transform] | None = None,
) -> tuple[FieldMapping, ...]:
    """Build an ordered mapping from canonical_id -> native field tables."""
    transforms = transforms or {}
    entries = []
    for canonical_id, native in dimensions.items():
        default = Transform.DATE if canonical_id == "date" else Transform.NONE
        entries.append(FieldMapping(
            native, canonical_id, transforms.get(canonical_id, default), "dimension",
        ))
    for canonical_id, native in metrics.items():
        entries.append(FieldMapping(
            native, canonical_id, transforms.get(canonical_id, Transform.NUMERIC), "metric",
        ))
    return tuple(entries)


_MAPPINGS = {
    # Meta Ads (Facebook & Instagram)
    "meta_ads": _platform(
        dimensions={
            "date": "date_start",
            "campaign_name": "campaign_name",
            "campaign_id": "campaign_id",
            "ad_group_name": "adset_name",
            "ad_group_id": "adset_id",
            "ad_name": "ad_name",
            "ad_id": "ad_id",
            "device_type": "publisher_platform",
            "placement": "placement",
            "age_range": "age",
            "gender": "gender",
            "country": "country",
            "region": "region",
        },
        metrics={
            "impressions": "impressions",
            "reach": "reach",
            "frequency": "frequency",
            "clicks": "link_clicks",
            "engagements": "actions",
            "likes": "post_reactions",
            "shares": "post_shares",
            "comments": "post_comments",
            "video_views": "video_view",
            "spend": "spend",
            "cpm": "cpm",
            "cpa": "cost_per_action_type",
            "conversions": "actions",
            "conversion_rate": "conversion_rate",
            "purchases": "purchase",
            "add_to_carts": "add_to_cart",
        },
    ),
    "google_ads": _platform(
        dimensions={
            "date": "segments.date",
            "campaign_name": "campaign.name",
            "campaign_id": "campaign.id",
            "campaign_type": "campaign.advertising_channel_type",
            "campaign_status": "campaign.status",
            "ad_group_name": "ad_group.name",
            "ad_group_id": "ad_group.id",
            "ad_name": "ad_group_ad.ad.name",
            "ad_id": "ad_group_ad.ad.id",
            "device_type": "segments.device",
            "country": "geographic_view.country_criterion_id",
            "age_range": "ad_group_criterion.age_range.type",
            "gender": "ad_group_criterion.gender.type",
        },
        metrics={
            "impressions": "metrics.impressions",
            "clicks": "metrics.clicks",
            "spend": "metrics.cost_micros",
            "cpm": "metrics.average_cpm",
            "conversions": "metrics.conversions",
            "conversion_rate": "metrics.conversions_from_interactions_rate",
            "conversion_value": "metrics.conversions_value",
            "quality_score": "metrics.quality_score",
            "position": "metrics.average_position",
        },
        # Google Ads reports money in micros and rates as ratios
        transforms={
            "spend": Transform.CURRENCY_FROM_MICROS,
            "cpm": Transform.CURRENCY_FROM_MICROS,
            "conversion_value": Transform.CURRENCY_FROM_MICROS,
            "conversion_rate": Transform.RATIO_TO_PERCENTAGE,
        },
    ),
    "ga4": _platform(
        dimensions={
            "date": "date",
            "campaign_name": "sessionCampaignName",
            "source": "sessionSource",
            "medium": "sessionMedium",
            "device_type": "deviceCategory",
            "device_platform": "platform",
            "browser": "browser",
            "country": "country",
            "city": "city",
            "age_range": "userAgeBracket",
            "gender": "userGender",
            "new_vs_returning": "newVsReturning",
            "landing_page": "landingPage",
        },
        metrics={
            "sessions": "sessions",
            "users": "activeUsers",
            "new_users": "newUsers",
            "pageviews": "screenPageViews",
            "pages_per_session": "screenPageViewsPerSession",
            "bounce_rate": "bounceRate",
            "average_session_duration": "averageSessionDuration",
            "conversions": "conversions",
            "revenue": "totalRevenue",
            "engagements": "engagements",
            "engagement_rate": "engagementRate",
            "purchases": "ecommercePurchases",
        },
        transforms={
            "bounce_rate": Transform.RATIO_TO_PERCENTAGE,
            "engagement_rate": Transform.RATIO_TO_PERCENTAGE,
        },
    ),
    "tiktok_ads": _platform(
        dimensions={
            "date": "stat_time_day",
            "campaign_name": "campaign_name",
            "campaign_id": "campaign_id",
            "ad_group_name": "adgroup_name",
            "ad_group_id": "adgroup_id",
            "ad_name": "ad_name",
            "ad_id": "ad_id",
            "age_range": "age",
            "gender": "gender",
            "country": "country_code",
            "placement": "placement",
        },
        metrics={
            "impressions": "impressions",
            "clicks": "clicks",
            "spend": "spend",
            "cpm": "cpm",
            "conversions": "conversion",
            "conversion_rate": "conversion_rate",
            "video_views": "video_views",
            "video_completion_rate": "video_watched_6s_rate",
        },
    ),
    "shopify": _platform(
        dimensions={
            "date": "created_at",
            "utm_source": "source_name",
            "utm_medium": "landing_site",
            "country": "billing_address.country",
            "device_type": "client_details.browser_name",
        },
        metrics={
            "orders": "total_orders",
            "revenue": "total_sales",
            "average_order_value": "average_order_value",
            "customers": "customer_count",
        },
    ),
    # User-defined sources arrive already keyed by canonical names
    "custom": _platform(
        dimensions={
            "date": "date",
            "campaign_name": "campaign_name",
            "ad_group_name": "ad_group_name",
            "ad_name": "ad_name",
        },
        metrics={
            "impressions": "impressions",
            "clicks": "clicks",
            "spend": "spend",
            "conversions": "conversions",
            "revenue": "revenue",
        },
    ),
}

# Read-only, process-wide.
PLATFORM_MAPPINGS = MappingProxyType(_MAPPINGS)


def get_mapping(platform_id: str) -> tuple[FieldMapping, ...]:
    """Return the ordered field mappings for a platform.

    Raises UnknownPlatformError if the platform has no mapping.
    """
    mapping = PLATFORM_MAPPINGS.get(platform_id)
    if mapping is None:
        raise UnknownPlatformError(platform_id)
    return mapping


def has_platform_mapping(platform_id: str) -> bool:
    return platform_id in PLATFORM_MAPPINGS


def list_platforms() -> list[str]:
    """Return all platform ids with mappings."""
    return sorted(PLATFORM_MAPPINGS.keys())


def get_field_mapping(platform_id: str, canonical_id: str) -> FieldMapping | None:
    """Return the mapping entry feeding a canonical field, or None if the platform doesn't map it."""
    for entry in get_mapping(platform_id):
        if entry.target_field == canonical_id:
            return entry
    return None


def canonical_id_for(platform_id: str, native_field: str) -> str | None:
    """Reverse lookup: the first canonical id a native field maps onto."""
    for entry in get_mapping(platform_id):
        if entry.source_field == native_field:
            return entry.target_field
    return None


def platforms_supporting(canonical_id: str) -> list[str]:
    """Return every platform that maps the given canonical field."""
    return [
        platform_id for platform_id in list_platforms()
        if any(e.target_field == canonical_id for e in PLATFORM_MAPPINGS[platform_id])
    ]


def canonical_field_ids(field_type: str | None = None) -> set[str]:
    """Return the catalogue of canonical ids mapped by any platform."""
    return {
        entry.target_field
        for entries in PLATFORM_MAPPINGS.values()
        for entry in entries
        if field_type is None or entry.field_type == field_type
    }


def resolve_mapping(platform_id: str, overrides: Iterable) -> tuple[FieldMapping, ...]:
    """Apply client overrides on top of a platform's default mapping.

    Each override needs ``canonical_id``, ``field_type``, ``platform_field_name``
    and ``transform`` (None keeps the default transform) attributes. Overrides
    replace the matching default entry in place; overrides for canonical ids the
    platform doesn't map are appended in the order given.
    """
    resolved = list(get_mapping(platform_id))
    for override in overrides:
        transform = Transform(override.transform) if override.transform else None
        for i, entry in enumerate(resolved):
            if entry.target_field == override.canonical_id and entry.field_type == override.field_type:
                resolved[i] = replace(
                    entry,
                    source_field=override.platform_field_name,
                    transform=transform or entry.transform,
                )
                break
        else:
            if transform is None:
                transform = Transform.NUMERIC if override.field_type == "metric" else Transform.NONE
            resolved.append(FieldMapping(
                override.platform_field_name,
                override.canonical_id,
                transform,
                override.field_type,
            ))
    return tuple(resolved)
