"""Tests for harmonization, blending, aggregation and summary statistics.

Covers the full in-memory pipeline: raw platform rows -> canonical rows ->
blended dataset -> aggregated groups / summary stats.
"""

import copy

import pandas as pd
import pytest

from backend.blending.aggregation import SummaryStats, aggregate_data, get_summary_stats
from backend.blending.blender import BlendSource, blend_sources
from backend.blending.columns import BLENDED_COLUMNS, ValidationError, get_blended_schema, to_frame
from backend.blending.harmonizer import harmonize_dataset, harmonize_row
from backend.blending.mappings import FieldMapping, Transform, UnknownPlatformError


# ---- helpers ----

def _meta_row(date="2024-01-15", **overrides) -> dict:
    base = {
        "date_start": date,
        "campaign_name": "Test Campaign",
        "campaign_id": "camp_123",
        "adset_name": "Test Ad Set",
        "impressions": 10000,
        "link_clicks": 500,
        "spend": 250.50,
    }
    base.update(overrides)
    return base


def _google_row(date="2024-01-15", **overrides) -> dict:
    base = {
        "segments.date": date,
        "campaign.name": "Google Campaign",
        "metrics.impressions": 5000,
        "metrics.clicks": 100,
        "metrics.cost_micros": 50_000_000,
    }
    base.update(overrides)
    return base


def _blended_row(date, platform, impressions, clicks, spend, conversions=0, revenue=0) -> dict:
    return {
        "date": date,
        "source_platform": platform,
        "impressions": impressions,
        "clicks": clicks,
        "spend": spend,
        "conversions": conversions,
        "revenue": revenue,
    }


BLENDED = [
    _blended_row("2024-01-15", "meta_ads", 1000, 50, 100, 10, 500),
    _blended_row("2024-01-15", "meta_ads", 2000, 100, 200, 20, 1000),
    _blended_row("2024-01-16", "meta_ads", 1500, 75, 150, 15, 750),
    _blended_row("2024-01-15", "google_ads", 500, 25, 50, 5, 250),
]


# ---- harmonize_row ----

class TestHarmonizeRow:
    def test_meta_fields_mapped(self):
        result = harmonize_row(_meta_row(), "meta_ads")

        assert result["source_platform"] == "meta_ads"
        assert result["date"] == "2024-01-15"
        assert result["campaign_name"] == "Test Campaign"
        assert result["ad_group_name"] == "Test Ad Set"
        assert result["impressions"] == 10000
        assert result["clicks"] == 500
        assert result["spend"] == 250.50

    def test_derived_metrics(self):
        result = harmonize_row(_meta_row(), "meta_ads")
        assert result["ctr"] == 5.0
        assert result["cpc"] == 0.5

    def test_google_micros_converted(self):
        result = harmonize_row(_google_row(), "google_ads")
        assert result["source_platform"] == "google_ads"
        assert result["campaign_name"] == "Google Campaign"
        assert result["spend"] == 50
        assert result["cpc"] == 0.5

    def test_ga4_compact_date(self):
        row = {"date": "20240115", "sessionCampaignName": "GA4 Campaign", "sessions": 1000}
        result = harmonize_row(row, "ga4")
        assert result["date"] == "2024-01-15"
        assert result["campaign_name"] == "GA4 Campaign"
        assert result["sessions"] == 1000

    def test_shopify_timestamp_and_revenue(self):
        row = {"created_at": "2024-01-15T18:22:00-05:00", "total_sales": "$1,250.40", "total_orders": "12"}
        result = harmonize_row(row, "shopify")
        assert result["date"] == "2024-01-15"
        assert result["revenue"] == 1250.40
        assert result["orders"] == 12

    def test_shopify_evening_order_lands_on_utc_day(self):
        result = harmonize_row({"created_at": "2024-01-15T22:00:00-08:00"}, "shopify")
        assert result["date"] == "2024-01-16"

    def test_strings_trimmed(self):
        result = harmonize_row(_meta_row(campaign_name="  Spring Sale "), "meta_ads")
        assert result["campaign_name"] == "Spring Sale"

    def test_unknown_platform(self):
        with pytest.raises(UnknownPlatformError, match="not_a_real_platform"):
            harmonize_row({}, "not_a_real_platform")

    @pytest.mark.parametrize("value", [None, ""])
    def test_absent_values_skipped(self, value):
        result = harmonize_row({"date_start": "2024-01-15", "campaign_name": value}, "meta_ads")
        assert "campaign_name" not in result

    def test_missing_fields_skipped(self):
        result = harmonize_row({"date_start": "2024-01-15"}, "meta_ads")
        assert "campaign_name" not in result
        assert "impressions" not in result
        assert result["ctr"] == 0
        assert result["cpc"] == 0

    def test_raw_ratios_ignored(self):
        result = harmonize_row(_meta_row(ctr=99.9, cpc=42), "meta_ads")
        assert result["ctr"] == 5.0
        assert result["cpc"] == 0.5

    def test_idempotent(self):
        row = _google_row()
        assert harmonize_row(row, "google_ads") == harmonize_row(row, "google_ads")

    def test_input_not_mutated(self):
        row = _meta_row()
        snapshot = copy.deepcopy(row)
        harmonize_row(row, "meta_ads")
        assert row == snapshot

    def test_explicit_mapping(self):
        mapping = (
            FieldMapping("day", "date", Transform.DATE, "dimension"),
            FieldMapping("cost", "spend", Transform.NUMERIC, "metric"),
        )
        result = harmonize_row({"day": "20240201", "cost": "€12.50"}, "custom", mapping)
        assert result == {
            "source_platform": "custom",
            "date": "2024-02-01",
            "spend": 12.5,
            "ctr": 0,
            "cpc": 0,
        }


class TestHarmonizeDataset:
    def test_all_rows(self):
        rows = [_meta_row("2024-01-16"), _meta_row("2024-01-15")]
        result = harmonize_dataset(rows, "meta_ads")
        assert [r["date"] for r in result] == ["2024-01-16", "2024-01-15"]
        assert all(r["source_platform"] == "meta_ads" for r in result)

    def test_empty(self):
        assert harmonize_dataset([], "meta_ads") == []

    def test_empty_rows_still_emitted(self):
        result = harmonize_dataset([{}, {"unrelated": 1}], "tiktok_ads")
        assert len(result) == 2
        assert result[0] == {"source_platform": "tiktok_ads", "ctr": 0, "cpc": 0}


# ---- blend_sources ----

class TestBlendSources:
    def test_multiple_platforms(self):
        result = blend_sources([
            BlendSource("meta_ads", [_meta_row()]),
            BlendSource("google_ads", [_google_row()]),
        ])
        assert len(result) == 2
        assert {r["source_platform"] for r in result} == {"meta_ads", "google_ads"}

    def test_sorted_by_date_then_platform(self):
        result = blend_sources([
            BlendSource("meta_ads", [_meta_row("2024-01-16", impressions=100)]),
            BlendSource("google_ads", [_google_row("2024-01-15")]),
            BlendSource("meta_ads", [_meta_row("2024-01-15", impressions=300)]),
        ])
        assert [(r["date"], r["source_platform"]) for r in result] == [
            ("2024-01-15", "google_ads"),
            ("2024-01-15", "meta_ads"),
            ("2024-01-16", "meta_ads"),
        ]

    def test_stable_for_ties(self):
        result = blend_sources([
            BlendSource("meta_ads", [
                _meta_row(campaign_name="first"),
                _meta_row(campaign_name="second"),
                _meta_row(campaign_name="third"),
            ]),
        ])
        assert [r["campaign_name"] for r in result] == ["first", "second", "third"]

    def test_undated_rows_first(self):
        result = blend_sources([
            BlendSource("meta_ads", [_meta_row("2024-01-15"), {"impressions": 5}]),
        ])
        assert "date" not in result[0]

    def test_mixed_date_encodings_sort_together(self):
        result = blend_sources([
            BlendSource("ga4", [{"date": "20240117", "sessions": 10}]),
            BlendSource("shopify", [{"created_at": "2024-01-16T09:00:00Z", "total_sales": 10}]),
        ])
        assert [r["date"] for r in result] == ["2024-01-16", "2024-01-17"]

    def test_skips_empty_sources(self):
        result = blend_sources([
            BlendSource("meta_ads", [_meta_row()]),
            BlendSource("google_ads", []),
            BlendSource("tiktok_ads", None),
        ])
        assert len(result) == 1
        assert result[0]["source_platform"] == "meta_ads"

    def test_no_sources(self):
        assert blend_sources([]) == []

    def test_all_sources_empty(self):
        assert blend_sources([BlendSource("meta_ads", []), BlendSource("google_ads", None)]) == []

    def test_empty_source_with_unknown_platform_skipped(self):
        assert blend_sources([BlendSource("not_a_platform", [])]) == []

    def test_unknown_platform_with_data_raises(self):
        with pytest.raises(UnknownPlatformError):
            blend_sources([BlendSource("not_a_platform", [{"x": 1}])])

    def test_source_mapping_used(self):
        mapping = (FieldMapping("day", "date", Transform.DATE, "dimension"),)
        result = blend_sources([BlendSource("custom", [{"day": "20240105"}], mapping)])
        assert result[0]["date"] == "2024-01-05"


# ---- aggregate_data ----

class TestAggregateData:
    def test_default_group_by(self):
        result = aggregate_data(BLENDED)
        assert len(result) == 3

        meta15 = next(r for r in result if r["date"] == "2024-01-15" and r["source_platform"] == "meta_ads")
        assert meta15["impressions"] == 3000
        assert meta15["clicks"] == 150
        assert meta15["spend"] == 300

    def test_groups_in_first_seen_order(self):
        result = aggregate_data(BLENDED)
        assert [(r["date"], r["source_platform"]) for r in result] == [
            ("2024-01-15", "meta_ads"),
            ("2024-01-16", "meta_ads"),
            ("2024-01-15", "google_ads"),
        ]

    def test_ratios_recomputed_not_averaged(self):
        rows = [
            {**_blended_row("2024-01-15", "meta_ads", 1000, 10, 100), "ctr": 1.0, "cpc": 10.0},
            {**_blended_row("2024-01-15", "meta_ads", 2000, 190, 100), "ctr": 9.5, "cpc": 0.53},
        ]
        [group] = aggregate_data(rows)
        assert group["impressions"] == 3000
        assert group["ctr"] == 6.67  # 200 / 3000, not mean(1.0, 9.5)
        assert group["cpc"] == 1.0   # 200 / 200

    def test_derived_metrics(self):
        meta15 = aggregate_data(BLENDED)[0]
        assert meta15["ctr"] == 5.0
        assert meta15["cpc"] == 2.0

    def test_rounding(self):
        rows = [_blended_row("2024-01-15", "test", 3, 1, 10.333, 0.5, 1.234)]
        [group] = aggregate_data(rows)
        assert group["impressions"] == 3
        assert isinstance(group["impressions"], int)
        assert group["clicks"] == 1
        assert isinstance(group["clicks"], int)
        assert group["spend"] == 10.33
        assert group["conversions"] == 0.5
        assert group["revenue"] == 1.23

    def test_float_sums_rounded(self):
        rows = [
            _blended_row("2024-01-15", "meta_ads", 1, 1, 0.1),
            _blended_row("2024-01-15", "meta_ads", 1, 1, 0.2),
        ]
        [group] = aggregate_data(rows)
        assert group["spend"] == 0.3

    def test_custom_group_by(self):
        result = aggregate_data(BLENDED, ["date"])
        assert len(result) == 2
        jan15 = next(r for r in result if r["date"] == "2024-01-15")
        assert jan15["impressions"] == 3500
        assert "source_platform" not in jan15

    def test_missing_group_dimension_shares_none_bucket(self):
        # Known edge case: rows without a group-by value merge into one group
        rows = [
            {"source_platform": "meta_ads", "impressions": 100},
            {"source_platform": "meta_ads", "impressions": 200},
        ]
        result = aggregate_data(rows, ["date", "source_platform"])
        assert len(result) == 1
        assert result[0]["date"] is None
        assert result[0]["impressions"] == 300

    def test_dimension_values_compared_as_strings(self):
        rows = [
            {"campaign_name": 7, "impressions": 100},
            {"campaign_name": "7", "impressions": 50},
        ]
        result = aggregate_data(rows, ["campaign_name"])
        assert len(result) == 1
        assert result[0]["campaign_name"] == 7
        assert result[0]["impressions"] == 150

    def test_none_not_merged_with_string_none(self):
        rows = [
            {"campaign_name": None, "impressions": 1},
            {"campaign_name": "None", "impressions": 2},
        ]
        assert len(aggregate_data(rows, ["campaign_name"])) == 2

    def test_missing_metrics_count_as_zero(self):
        rows = [
            {"date": "2024-01-15", "source_platform": "ga4", "conversions": 4},
            {"date": "2024-01-15", "source_platform": "ga4", "impressions": 10, "clicks": 1},
        ]
        [group] = aggregate_data(rows)
        assert group["conversions"] == 4
        assert group["impressions"] == 10
        assert group["spend"] == 0

    def test_currency_strings_parsed(self):
        rows = [{"date": "2024-01-15", "source_platform": "test",
                 "impressions": "$1,234", "clicks": "567", "spend": "$89.99"}]
        [group] = aggregate_data(rows)
        assert group["impressions"] == 1234
        assert group["clicks"] == 567
        assert group["spend"] == 89.99

    def test_empty_group_by_single_bucket(self):
        result = aggregate_data(BLENDED, [])
        assert len(result) == 1
        assert result[0]["impressions"] == 5000

    def test_empty_input(self):
        assert aggregate_data([]) == []

    def test_input_not_mutated(self):
        snapshot = copy.deepcopy(BLENDED)
        aggregate_data(BLENDED)
        assert BLENDED == snapshot


# ---- get_summary_stats ----

class TestSummaryStats:
    ROWS = [
        _blended_row("2024-01-15", "meta_ads", 1000, 50, 100, 10, 500),
        _blended_row("2024-01-17", "google_ads", 2000, 100, 200, 20, 1000),
        _blended_row("2024-01-16", "meta_ads", 1500, 75, 150, 15, 750),
    ]

    def test_total_rows(self):
        assert get_summary_stats(self.ROWS).total_rows == 3

    def test_date_range(self):
        stats = get_summary_stats(self.ROWS)
        assert stats.date_range.start == "2024-01-15"
        assert stats.date_range.end == "2024-01-17"

    def test_platforms(self):
        stats = get_summary_stats(self.ROWS)
        assert set(stats.platforms) == {"meta_ads", "google_ads"}
        assert len(stats.platforms) == 2

    def test_totals(self):
        totals = get_summary_stats(self.ROWS).totals
        assert totals["impressions"] == 4500
        assert totals["clicks"] == 225
        assert totals["spend"] == 450
        assert totals["conversions"] == 45
        assert totals["revenue"] == 2250

    def test_derived_totals(self):
        totals = get_summary_stats(self.ROWS).totals
        assert totals["ctr"] == 5.0
        assert totals["cpc"] == 2.0
        assert totals["roas"] == 5.0

    def test_zero_spend_roas(self):
        stats = get_summary_stats([{"impressions": 100, "clicks": 10, "spend": 0, "revenue": 500}])
        assert stats.totals["roas"] == 0

    def test_empty(self):
        stats = get_summary_stats([])
        assert stats.to_dict() == {
            "total_rows": 0,
            "date_range": {"start": None, "end": None},
            "platforms": [],
            "totals": {
                "impressions": 0, "clicks": 0, "spend": 0, "conversions": 0,
                "revenue": 0, "ctr": 0, "cpc": 0, "roas": 0,
            },
        }

    def test_missing_metrics(self):
        rows = [
            {"date": "2024-01-15", "source_platform": "meta_ads", "impressions": 1000},
            {"date": "2024-01-16", "source_platform": "meta_ads", "clicks": 50, "spend": 100},
        ]
        totals = get_summary_stats(rows).totals
        assert totals["impressions"] == 1000
        assert totals["clicks"] == 50
        assert totals["spend"] == 100

    def test_undated_rows_ignored_for_range(self):
        stats = get_summary_stats([{"source_platform": "custom", "impressions": 1}])
        assert stats.date_range.start is None
        assert stats.date_range.end is None

    def test_returns_dataclass(self):
        assert isinstance(get_summary_stats(self.ROWS), SummaryStats)
        assert '"total_rows": 3' in get_summary_stats(self.ROWS).to_json()


# ---- blended schema ----

class TestBlendedSchema:
    def test_copy_returned(self):
        schema = get_blended_schema()
        assert schema == BLENDED_COLUMNS
        assert schema is not BLENDED_COLUMNS
        schema["date"]["required"] = False
        assert BLENDED_COLUMNS["date"]["required"] is True

    def test_required_columns(self):
        schema = get_blended_schema()
        assert schema["date"]["type"] == "dimension"
        assert schema["date"]["required"] is True
        assert schema["source_platform"]["type"] == "meta"

    def test_derived_flags(self):
        schema = get_blended_schema()
        assert schema["ctr"]["derived"] is True
        assert schema["cpc"]["derived"] is True


class TestToFrame:
    def test_zero_fills_and_orders_columns(self):
        rows = blend_sources([BlendSource("ga4", [{"date": "20240115", "sessions": 12}])])
        df = to_frame(rows)
        assert list(df.columns[:len(BLENDED_COLUMNS)]) == list(BLENDED_COLUMNS)
        assert df["impressions"].iloc[0] == 0.0
        assert df["sessions"].iloc[0] == 12
        assert df["campaign_name"].iloc[0] is None

    def test_empty_rows(self):
        df = to_frame([])
        assert len(df) == 0

    def test_uncoercible_metric_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            to_frame([{"source_platform": "custom", "spend": "lots"}])
        assert exc_info.value.details

    def test_rows_not_mutated(self):
        rows = [{"source_platform": "custom", "date": "2024-01-15"}]
        to_frame(rows)
        assert rows == [{"source_platform": "custom", "date": "2024-01-15"}]

    def test_returns_dataframe(self):
        assert isinstance(to_frame(BLENDED), pd.DataFrame)


# ---- end to end ----

class TestPipeline:
    def test_blend_aggregate_stats(self):
        sources = [
            BlendSource("meta_ads", [
                {"date_start": "2024-01-15", "campaign_name": "Campaign A",
                 "impressions": 10000, "link_clicks": 500, "spend": 250},
                {"date_start": "2024-01-15", "campaign_name": "Campaign B",
                 "impressions": 5000, "link_clicks": 200, "spend": 100},
            ]),
            BlendSource("google_ads", [
                {"segments.date": "2024-01-15", "campaign.name": "Campaign C",
                 "metrics.impressions": 8000, "metrics.clicks": 400,
                 "metrics.cost_micros": 200000000},
            ]),
        ]

        blended = blend_sources(sources)
        assert len(blended) == 3

        [day] = aggregate_data(blended, ["date"])
        assert day["impressions"] == 23000
        assert day["clicks"] == 1100
        assert day["spend"] == 550
        assert day["ctr"] == 4.78
        assert day["cpc"] == 0.5

        stats = get_summary_stats(blended)
        assert stats.total_rows == 3
        assert set(stats.platforms) == {"meta_ads", "google_ads"}

    def test_repeated_calls_identical(self):
        sources = [BlendSource("meta_ads", [_meta_row()]), BlendSource("google_ads", [_google_row()])]
        first = blend_sources(sources)
        second = blend_sources(sources)
        assert first == second
        assert aggregate_data(first) == aggregate_data(second)
        assert get_summary_stats(first) == get_summary_stats(second)
