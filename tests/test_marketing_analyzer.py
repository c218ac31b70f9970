"""Tests for the marketing spend analyzer."""

import json

import pytest

from models.deal_models import DateWindow, SortKey
from models.marketing_models import MarketingFilters
from scripts.lib.errors import DataFetchError, FormatError
from scripts.marketing_analyzer import (
    MarketingAnalyzer,
    args_to_request,
    build_arg_parser,
    filter_marketing,
    load_marketing,
    normalize_marketing,
    platforms,
    run_marketing_analysis,
    sort_marketing,
)

ROWS = [
    {"时间": "2025-06-02", "消费": "120.5", "平台": "聚光", "impressions": 1000, "clicks": 50},
    {"date": "2025-06-02", "cost": 80, "platform": "Meta", "impressions": 3000, "clicks": 30},
    {"date": "2025-06-03", "spend": "$40", "platform": "Meta", "clicks": 10},
    {"date": "2025-06-04", "cost": 0, "platform": "Meta"},
]


@pytest.fixture
def records():
    return normalize_marketing(ROWS)


class TestNormalize:
    def test_header_aliases_and_zero_cost(self, records):
        assert len(records) == 3
        first = records[0]
        assert (first.date, first.cost, first.platform) == ("2025-06-02", 120.5, "聚光")
        assert records[2].cost == 40
        assert records[2].impressions is None

    def test_defaults(self):
        (rec,) = normalize_marketing([{"cost": 5}])
        assert rec.id == "row_1"
        assert rec.platform == "Unknown"
        assert len(rec.date) == 10


class TestLoadMarketing:
    def test_json_data_key(self, tmp_path):
        path = tmp_path / "marketing.json"
        path.write_text(json.dumps({"data": ROWS}, ensure_ascii=False), encoding="utf-8")
        assert len(load_marketing(path)) == 3

    def test_csv(self, tmp_path):
        path = tmp_path / "marketing.csv"
        path.write_text("date,cost,platform\n2025-06-02,10,Meta\n2025-06-03,,Meta\n", encoding="utf-8")
        (rec,) = load_marketing(path)
        assert rec.cost == 10

    def test_bad_json_structure(self, tmp_path):
        path = tmp_path / "marketing.json"
        path.write_text('{"rows": []}', encoding="utf-8")
        with pytest.raises(FormatError):
            load_marketing(path)

    def test_json_not_utf8(self, tmp_path):
        path = tmp_path / "marketing.json"
        path.write_bytes(b'[{"platform": "\xff"}]')
        with pytest.raises(FormatError, match="not UTF-8"):
            load_marketing(path)

    def test_missing_and_unsupported(self, tmp_path):
        with pytest.raises(DataFetchError):
            load_marketing(tmp_path / "missing.json")
        path = tmp_path / "marketing.txt"
        path.write_text("x")
        with pytest.raises(FormatError):
            load_marketing(path)


class TestFilterAndSort:
    def test_platform_and_window(self, records):
        filters = MarketingFilters(platform="Meta", window=DateWindow(end="2025-06-02"))
        assert [r.cost for r in filter_marketing(records, filters)] == [80]

    def test_search(self, records):
        assert len(filter_marketing(records, MarketingFilters(search="06-03"))) == 1
        assert len(filter_marketing(records, MarketingFilters(search="meta"))) == 2

    def test_sort_missing_values_last(self, records):
        asc = sort_marketing(records, SortKey(field="impressions"))
        desc = sort_marketing(records, SortKey(field="impressions", direction="desc"))
        assert [r.impressions for r in asc] == [1000, 3000, None]
        assert [r.impressions for r in desc] == [3000, 1000, None]

    def test_unknown_sort_field(self, records):
        assert sort_marketing(records, SortKey(field="colour")) == records

    def test_platforms(self, records):
        assert platforms(records) == ["Meta", "聚光"]


class TestMarketingAnalyzer:
    def test_metrics(self, records):
        metrics = MarketingAnalyzer().analyze(records)
        assert metrics.total_cost == pytest.approx(240.5)
        assert metrics.total_clicks == 90
        assert metrics.avg_ctr == pytest.approx(90 / 4000 * 100)
        assert metrics.avg_cpc == pytest.approx(240.5 / 90)
        assert metrics.avg_cpm == pytest.approx(240.5 / 4000 * 1000)
        assert metrics.campaign_count == 3

    def test_empty(self):
        metrics = MarketingAnalyzer().analyze([])
        assert metrics.avg_ctr == 0
        assert metrics.avg_cpc == 0

    def test_daily(self, records):
        days = MarketingAnalyzer().daily(records)
        assert [(d.date, d.cost) for d in days] == [("2025-06-02", 200.5), ("2025-06-03", 40)]

    def test_by_platform(self, records):
        spend = MarketingAnalyzer().by_platform(records)
        assert [(p.platform, p.cost, p.campaigns) for p in spend] == [("聚光", 120.5, 1), ("Meta", 120, 2)]


def test_run_marketing_analysis(tmp_path):
    path = tmp_path / "marketing.json"
    path.write_text(json.dumps(ROWS, ensure_ascii=False), encoding="utf-8")
    output_path = tmp_path / "out.json"

    result = run_marketing_analysis(path, output_path=output_path)

    assert result["record_count"] == 3
    saved = json.loads(output_path.read_text(encoding="utf-8"))
    assert saved["metrics"]["campaign_count"] == 3
    assert saved["platforms"] == ["Meta", "聚光"]


def test_dotenv_data_dir_is_honoured(tmp_path, monkeypatch):
    import importlib
    import os

    import dotenv

    import scripts.marketing_analyzer as marketing_analyzer

    def fake_load_dotenv(*args, **kwargs):
        os.environ["DEALS_DATA_DIR"] = str(tmp_path)
        return True

    monkeypatch.delenv("DEALS_DATA_DIR", raising=False)
    monkeypatch.setattr(dotenv, "load_dotenv", fake_load_dotenv)
    try:
        reloaded = importlib.reload(marketing_analyzer)
        assert reloaded.PROCESSED_DIR == tmp_path / "processed"
    finally:
        monkeypatch.undo()
        importlib.reload(marketing_analyzer)


class TestArgs:
    def test_sort_key(self):
        args = build_arg_parser().parse_args(["m.json", "--sort", "cost:desc", "--platform", "Meta"])
        filters, sort_key = args_to_request(args)
        assert filters.platform == "Meta"
        assert sort_key == SortKey(field="cost", direction="desc")

    def test_bad_sort_direction(self):
        with pytest.raises(SystemExit):
            build_arg_parser().parse_args(["m.json", "--sort", "cost:bogus"])
