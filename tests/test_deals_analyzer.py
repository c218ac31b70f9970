"""Tests for the deals pipeline analyzer (aggregation engine)."""

import json
import math

import pytest

from models.deal_models import DateWindow, DealFilters, StatusPartition
from scripts.deals_analyzer import (
    BrokerAnalyzer,
    KPIAnalyzer,
    LeadSourceAnalyzer,
    NewDealsAnalyzer,
    analyze_deals,
    build_arg_parser,
    broker_double_ring,
    broker_weekly_average,
    partition_statuses,
    run_deals_analysis,
    status_distribution,
)
from scripts.lib.errors import FormatError
from scripts.lib.utils import format_rate, rate_pct

JUNE_WEEK_1 = DateWindow(start="2025-06-01", end="2025-06-07")


def labels(items):
    return [(i.label, i.value) for i in items]


class TestKPIAnalyzer:
    def test_mixed_book(self, pipeline_deals):
        kpi = KPIAnalyzer().analyze(pipeline_deals)
        assert kpi.total_deals == 4
        assert kpi.settled_count == 1
        assert kpi.lost_count == 1
        assert kpi.converted_count == 2
        assert kpi.settled_rate == pytest.approx(25.0)
        assert kpi.conversion_rate == pytest.approx(50.0)
        assert kpi.total_value == 1_050_000
        assert kpi.settled_value == 500_000

    def test_empty(self):
        kpi = KPIAnalyzer().analyze([])
        assert kpi.total_deals == 0
        assert kpi.settled_rate == 0
        assert kpi.conversion_rate == 0
        assert kpi.total_value == 0


class TestBrokerAnalyzer:
    def test_all_settled_broker(self, make_deal):
        deals = [
            make_deal(broker_name="Amy", value=v, settled="2025-06-06")
            for v in (100, 200, 300)
        ]
        (amy,) = BrokerAnalyzer().analyze(deals)
        assert amy.name == "Amy"
        assert amy.total == 3
        assert amy.settled == 3
        assert amy.value == 600
        assert amy.settled_rate == "100.0"

    def test_breakdown_and_order(self, pipeline_deals):
        amy, jo = BrokerAnalyzer().analyze(pipeline_deals)

        assert amy.name == "Amy"
        assert (amy.total, amy.settled, amy.value) == (2, 1, 500_000)
        assert (amy.converted, amy.lost, amy.in_progress, amy.in_progress_converted) == (1, 0, 1, 0)
        assert amy.conversion_rate == "50.0"
        assert [s.source for s in amy.source_breakdown] == ["RedNote", "Referral"]

        assert jo.name == "Jo"
        assert jo.value == 0
        assert (jo.converted, jo.lost, jo.in_progress, jo.in_progress_converted) == (1, 1, 1, 1)
        assert jo.settled_rate == "0.0"
        lifex, referral = jo.source_breakdown
        assert (lifex.source, lifex.total, lifex.lost) == ("LifeX", 1, 1)
        assert (referral.source, referral.in_progress_converted) == ("Referral", 1)

    def test_value_counts_settled_deals_only(self, make_deal):
        deals = [
            make_deal(broker_name="Amy", value=100, settled="2025-06-06"),
            make_deal(broker_name="Amy", value=900, application="2025-06-06"),
        ]
        assert BrokerAnalyzer().analyze(deals)[0].value == 100

    def test_equal_values_keep_first_seen_order(self, make_deal):
        deals = [make_deal(broker_name=b) for b in ("Zed", "Amy", "Mo")]
        assert [b.name for b in BrokerAnalyzer().analyze(deals)] == ["Zed", "Amy", "Mo"]

    def test_empty(self):
        assert BrokerAnalyzer().analyze([]) == []


class TestBrokerRing:
    def test_weekly_average_shares_week_count(self, pipeline_deals):
        # latest dates fall in the weeks of 2025-06-02 and 2025-06-09
        assert broker_weekly_average(pipeline_deals) == {"Amy": 1.0, "Jo": 1.0}

    def test_weekly_average_without_dates(self, make_deal):
        assert broker_weekly_average([make_deal()]) == {}

    def test_double_ring_top_n(self, pipeline_deals):
        brokers = BrokerAnalyzer().analyze(pipeline_deals)
        ring = broker_double_ring(brokers, {"Amy": 1.5}, top_n=1)
        assert labels(ring.outer) == [("Amy", 2)]
        assert labels(ring.inner) == [("Amy", 1.5)]

    def test_double_ring_missing_average_is_zero(self, pipeline_deals):
        brokers = BrokerAnalyzer().analyze(pipeline_deals)
        ring = broker_double_ring(brokers, {})
        assert [i.value for i in ring.inner] == [0, 0]


class TestDistributions:
    def test_lead_sources(self, pipeline_deals):
        stats = LeadSourceAnalyzer().analyze(pipeline_deals)
        assert [(s.label, s.value) for s in stats] == [("Referral", 2), ("RedNote", 1), ("LifeX", 1)]
        referral = stats[0]
        assert referral.converted_count == 1
        assert referral.conversion_rate == "50.0"
        assert referral.settle_rate == "0.0"

    def test_lead_sources_empty(self):
        assert LeadSourceAnalyzer().analyze([]) == []

    def test_status_distribution_in_pipeline_order(self, pipeline_deals, make_deal):
        deals = pipeline_deals + [make_deal(status="Paused")]
        assert labels(status_distribution(deals)) == [
            ("Enquiry Leads", 1),
            ("2. Assessment", 1),
            ("6. Settled", 1),
            ("Lost", 1),
        ]


class TestPartition:
    def test_every_deal_in_one_bucket(self, pipeline_deals):
        part = partition_statuses(pipeline_deals)
        assert part == StatusPartition(conversion=1, settled=1, lost=1, no_status=1)
        assert part.total == len(pipeline_deals)

    def test_lost_beats_settled(self, make_deal):
        part = partition_statuses([make_deal(status="Lost", settled="2025-06-01")])
        assert (part.lost, part.settled) == (1, 0)


class TestNewDealsAnalyzer:
    def test_select_uses_created_time(self, pipeline_deals):
        selected = NewDealsAnalyzer().select(pipeline_deals, JUNE_WEEK_1)
        # sorted by status: enquiry, settled, lost
        assert [d.id for d in selected] == ["a2", "a1", "j1"]

    def test_report(self, pipeline_deals):
        analyzer = NewDealsAnalyzer()
        report = analyzer.analyze(analyzer.select(pipeline_deals, JUNE_WEEK_1))

        assert report.summary.total_new_deals == 3
        assert report.summary.total_new_value == 800_000
        assert report.summary.non_zero_deals_count == 2

        assert report.partition == StatusPartition(settled=1, lost=1, no_status=1)
        assert labels(report.conversion) == [("Settled", 1), ("Lost", 1)]
        assert labels(report.value_status) == [("Settled", 1), ("Lost", 1)]

        assert labels(report.broker_distribution) == [("Amy", 2), ("Jo", 1)]
        assert labels(report.source_distribution) == [("RedNote", 1), ("LifeX", 1), ("Referral", 1)]
        assert labels(report.source_by_broker["Amy"]) == [("RedNote", 1), ("Referral", 1)]
        assert list(report.broker_by_source) == ["RedNote", "LifeX", "Referral"]
        assert labels(report.broker_by_source["LifeX"]) == [("Jo", 1)]
        assert [i.label for i in report.status_distribution] == ["Enquiry Leads", "6. Settled", "Lost"]

    def test_no_status_shown_only_in_value_view(self, make_deal):
        deals = [make_deal(value=10, created_time="2025-06-02")]
        report = NewDealsAnalyzer().analyze(deals)
        assert report.conversion == []
        assert labels(report.value_status) == [("No Status", 1)]

    def test_empty(self):
        report = NewDealsAnalyzer().analyze([])
        assert report.summary.total_new_deals == 0
        assert report.broker_distribution == []


class TestAnalyzeDeals:
    def test_kpi_ignores_source_selector(self, pipeline_deals):
        views = analyze_deals(pipeline_deals, DealFilters(source="rednote"))
        assert views["kpi"]["total_deals"] == 4
        assert [d["deal_id"] for d in views["deals"]] == ["a1"]
        assert [b["name"] for b in views["brokers"]] == ["Amy"]

    def test_views_present(self, pipeline_deals):
        views = analyze_deals(pipeline_deals, DealFilters(window=JUNE_WEEK_1))
        assert set(views) >= {
            "kpi", "deals", "brokers", "broker_ring", "lead_sources",
            "status_distribution", "new_deals", "pipeline_flow", "weekly", "treemap",
        }
        assert views["new_deals"]["summary"]["total_new_deals"] == 3
        assert views["treemap"]["value"] == 500_000
        assert "Lost" in views["pipeline_flow"]["positions"]

    def test_flow_extras_and_years(self, pipeline_deals):
        views = analyze_deals(pipeline_deals, DealFilters(window=JUNE_WEEK_1))
        flow = views["pipeline_flow"]
        assert [e["target"] for e in flow["edges_by_source"]["Opportunity"]] == ["1. Application", "Lost"]
        assert [d["deal_id"] for d in flow["lost_deals"]] == ["j1"]
        assert views["weekly"]["years"] == [2025]

    def test_treemap_zoom_and_grouping(self, pipeline_deals):
        zoomed = analyze_deals(pipeline_deals, zoom_path=["Amy"])
        assert zoomed["treemap"]["id"] == "Amy"
        assert zoomed["treemap"]["width"] == 800

        flat = analyze_deals(pipeline_deals, config={"group_treemap_by_broker": False})
        assert [c["id"] for c in flat["treemap"]["children"]] == ["a1"]

    def test_no_deals(self):
        views = analyze_deals([])
        assert views["deals"] == []
        assert views["treemap"] is None
        assert views["weekly"]["average"] is None


RATE_KEYS = {"settled_rate", "conversion_rate", "settle_rate"}


def collect_rates(node, found=None):
    """Every rate value anywhere in a views payload."""
    found = [] if found is None else found
    if isinstance(node, dict):
        for key, value in node.items():
            if key in RATE_KEYS and value is not None:
                found.append((key, float(value)))
            else:
                collect_rates(value, found)
    elif isinstance(node, list):
        for item in node:
            collect_rates(item, found)
    return found


class TestRateBounds:
    def test_zero_denominator_is_zero(self):
        assert rate_pct(0, 0) == 0
        assert rate_pct(3, 0) == 0
        assert format_rate(3, 0) == "0"

    def test_views_rates_within_bounds(self, pipeline_deals, make_deal):
        deals = pipeline_deals + [
            make_deal(broker_name="Lee", status="Lost", lost_date="2025-06-03", created_time="2025-06-03"),
            make_deal(broker_name="Lee", value=50, settled="2025-06-04", latest_date="2025-06-04"),
            make_deal(broker_name="Kim", enquiry_leads="2025-06-05", created_time="2025-06-05"),
        ]
        for window in (None, JUNE_WEEK_1, DateWindow(start="2030-01-01", end="2030-01-07")):
            views = analyze_deals(deals, DealFilters(window=window or DateWindow()))
            rates = collect_rates(views)
            assert rates
            for key, value in rates:
                assert math.isfinite(value), key
                assert 0 <= value <= 100, key

    def test_empty_book_rates_are_zero(self):
        rates = collect_rates(analyze_deals([]))
        assert rates
        assert all(value == 0 for _, value in rates)


class TestRunDealsAnalysis:
    def test_writes_output(self, tmp_path, pipeline_deals):
        source = tmp_path / "deals.json"
        source.write_text(
            json.dumps([d.model_dump(by_alias=True) for d in pipeline_deals]),
            encoding="utf-8",
        )
        output_path = tmp_path / "out" / "deals_metrics.json"

        result = run_deals_analysis(source, output_path=output_path)

        assert result["record_count"] == 4
        saved = json.loads(output_path.read_text(encoding="utf-8"))
        assert saved["kpi"]["settled_value"] == 500_000
        assert saved["source_file"] == str(source)

    def test_bad_file_raises(self, tmp_path):
        source = tmp_path / "deals.json"
        source.write_text('{"rows": []}', encoding="utf-8")
        with pytest.raises(FormatError):
            run_deals_analysis(source, output_path=tmp_path / "out.json")


class TestSortArgs:
    def test_parse(self):
        args = build_arg_parser().parse_args(["deals.json", "--sort", "broker_name", "--sort", "deal_value:desc"])
        assert [(k.field, k.direction) for k in args.sort] == [("broker_name", "asc"), ("deal_value", "desc")]

    def test_none(self):
        assert build_arg_parser().parse_args(["deals.json"]).sort is None

    def test_bad_direction_is_a_usage_error(self, capsys):
        with pytest.raises(SystemExit) as exc:
            build_arg_parser().parse_args(["deals.json", "--sort", "deal_value:bogus"])
        assert exc.value.code == 2
        assert "FIELD[:asc|desc]" in capsys.readouterr().err


class TestProcessedDir:
    def test_dotenv_data_dir_is_honoured(self, tmp_path, monkeypatch):
        import importlib
        import os

        import dotenv

        import scripts.deals_analyzer as deals_analyzer

        def fake_load_dotenv(*args, **kwargs):
            os.environ["DEALS_DATA_DIR"] = str(tmp_path)
            return True

        monkeypatch.delenv("DEALS_DATA_DIR", raising=False)
        monkeypatch.setattr(dotenv, "load_dotenv", fake_load_dotenv)
        try:
            reloaded = importlib.reload(deals_analyzer)
            assert reloaded.PROCESSED_DIR == tmp_path / "processed"
        finally:
            monkeypatch.undo()
            importlib.reload(deals_analyzer)
