"""
Deals Pipeline Analyzer
=========================
Aggregations behind the deals dashboard, computed from a normalized record
set plus the current filter / sort parameters:

  - KPI summary (source selector ignored, like the KPI cards)
  - per-broker breakdown with a per-source sub-breakdown
  - lead-source and status distributions
  - broker weekly average and the top-broker double ring
  - new deals in the window (keyed by created_time, not the reference date)
  - weekly stats, pipeline flow and settled-value treemap

Every reducer is total: zero deals give zero-valued or empty results, and a
zero denominator gives a rate of 0.

Outputs to data/processed/deals_metrics.json.

Usage:
    python scripts/deals_analyzer.py exports/deals.xlsx
    python scripts/deals_analyzer.py exports/deals.json --start 2025-06-02 --end 2025-06-08
    python scripts/deals_analyzer.py exports/deals.xlsx --broker "Jo Chen" --source rednote
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from collections import Counter, defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup
# ---------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

load_dotenv(BASE_DIR / ".env")

PROCESSED_DIR = Path(os.getenv("DEALS_DATA_DIR", str(BASE_DIR / "data"))) / "processed"

from models.deal_models import (  # noqa: E402
    BrokerBreakdown,
    DateWindow,
    Deal,
    DealFilters,
    DistributionItem,
    DoubleRing,
    KPISummary,
    LeadSourceStat,
    NewDealsReport,
    NewDealsSummary,
    SortKey,
    SourceBreakdown,
    StatusPartition,
)
from scripts.lib.deal_query import (  # noqa: E402
    DEFAULT_SORT,
    filter_by_window,
    filter_deals,
    sort_deals,
    sort_key_arg,
)
from scripts.lib.stages import (  # noqa: E402
    LEAD_SOURCES,
    STATUS_ORDER,
    display_status,
    in_conversion,
    is_converted,
    is_in_progress,
    is_lost,
    is_settled,
    lead_source,
)
from scripts.lib.treemap import build_hierarchy, current_view  # noqa: E402
from scripts.lib.utils import atomic_write_json, format_rate, json_safe, rate_pct, week_start  # noqa: E402
from scripts.pipeline_flow import (  # noqa: E402
    build_flow,
    edges_by_source,
    layout_flow,
    lost_deals_in_window,
    lost_reason_distribution,
)
from scripts.weekly_analyzer import (  # noqa: E402
    available_years,
    previous_week_range,
    weekly_average,
    weekly_stats,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Default configuration
# ---------------------------------------------------------------------------
DEFAULT_CONFIG: Dict[str, Any] = {
    "top_brokers": 10,
    "group_treemap_by_broker": True,
    "treemap_width": float(os.getenv("TREEMAP_WIDTH", "800")),
    "treemap_height": float(os.getenv("TREEMAP_HEIGHT", "500")),
    "new_deals_sort": [{"field": "status", "direction": "asc"}],
}

CONVERSION_LABEL = "Conversion (excl. Settled)"
SETTLED_LABEL = "Settled"
LOST_LABEL = "Lost"
NO_STATUS_LABEL = "No Status"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# KPI summary
# ============================================================================

class KPIAnalyzer:
    """Headline counts, rates and values for the KPI cards."""

    def analyze(self, deals: Sequence[Deal]) -> KPISummary:
        total = len(deals)
        settled = [d for d in deals if is_settled(d)]
        converted = sum(1 for d in deals if is_converted(d))
        return KPISummary(
            total_deals=total,
            settled_count=len(settled),
            lost_count=sum(1 for d in deals if is_lost(d)),
            converted_count=converted,
            settled_rate=rate_pct(len(settled), total),
            conversion_rate=rate_pct(converted, total),
            total_value=sum(d.value for d in deals),
            settled_value=sum(d.value for d in settled),
        )


# ============================================================================
# Broker breakdown
# ============================================================================

def _metric_set(deals: Sequence[Deal]) -> Dict[str, Any]:
    """Shared broker / source metrics. Value is settled value only."""
    total = len(deals)
    settled = [d for d in deals if is_settled(d)]
    converted = sum(1 for d in deals if is_converted(d))
    in_progress = [d for d in deals if is_in_progress(d)]
    return {
        "total": total,
        "settled": len(settled),
        "value": sum(d.value for d in settled),
        "converted": converted,
        "lost": sum(1 for d in deals if is_lost(d)),
        "in_progress": len(in_progress),
        "in_progress_converted": sum(1 for d in in_progress if is_converted(d)),
        "conversion_rate": format_rate(converted, total),
        "settled_rate": format_rate(len(settled), total),
    }


class BrokerAnalyzer:
    """Per-broker performance table, highest settled value first."""

    def analyze(self, deals: Sequence[Deal]) -> List[BrokerBreakdown]:
        by_broker: Dict[str, List[Deal]] = defaultdict(list)
        for deal in deals:
            by_broker[deal.broker_name].append(deal)

        rows = []
        for name, broker_deals in by_broker.items():
            by_source: Dict[str, List[Deal]] = defaultdict(list)
            for deal in broker_deals:
                by_source[lead_source(deal)].append(deal)
            sources = [
                SourceBreakdown(source=source, **_metric_set(by_source[source]))
                for source in LEAD_SOURCES
                if by_source.get(source)
            ]
            rows.append(BrokerBreakdown(name=name, source_breakdown=sources, **_metric_set(broker_deals)))

        # Stable: equal values keep first-seen broker order.
        return sorted(rows, key=lambda b: -b.value)


def broker_weekly_average(deals: Sequence[Deal]) -> Dict[str, float]:
    """Deals per broker divided by the number of distinct latest_date weeks.

    Uses the full record set; the denominator is shared by every broker.
    """
    weeks = {week_start(d.latest_date) for d in deals}
    weeks.discard(None)
    if not weeks:
        return {}
    counts = Counter(d.broker_name for d in deals)
    return {broker: count / len(weeks) for broker, count in counts.items()}


def broker_double_ring(
    brokers: Sequence[BrokerBreakdown],
    weekly_avg: Dict[str, float],
    top_n: int = 10,
) -> DoubleRing:
    top = list(brokers)[:top_n]
    return DoubleRing(
        outer=[DistributionItem(label=b.name, value=b.total) for b in top],
        inner=[DistributionItem(label=b.name, value=weekly_avg.get(b.name, 0.0)) for b in top],
    )


# ============================================================================
# Distributions
# ============================================================================

class LeadSourceAnalyzer:
    """Per source class counts and rates; empty classes dropped, largest first."""

    def analyze(self, deals: Sequence[Deal]) -> List[LeadSourceStat]:
        by_source: Dict[str, List[Deal]] = defaultdict(list)
        for deal in deals:
            by_source[lead_source(deal)].append(deal)

        stats = []
        for source in LEAD_SOURCES:
            source_deals = by_source.get(source, [])
            total = len(source_deals)
            if total == 0:
                continue
            converted = sum(1 for d in source_deals if is_converted(d))
            settled = sum(1 for d in source_deals if is_settled(d))
            stats.append(LeadSourceStat(
                label=source,
                value=total,
                converted_count=converted,
                settled_count=settled,
                conversion_rate=format_rate(converted, total),
                settle_rate=format_rate(settled, total),
            ))
        return sorted(stats, key=lambda s: -s.value)


def status_distribution(deals: Sequence[Deal]) -> List[DistributionItem]:
    """Display-status counts in pipeline order. Statuses outside the order are left out."""
    counts = Counter(display_status(d) for d in deals)
    return [
        DistributionItem(label=status, value=counts[status])
        for status in STATUS_ORDER
        if counts.get(status, 0) > 0
    ]


def status_distribution_by_count(deals: Sequence[Deal]) -> List[DistributionItem]:
    """Every display status, most frequent first."""
    counts = Counter(display_status(d) for d in deals)
    items = [DistributionItem(label=k, value=v) for k, v in counts.items()]
    return sorted(items, key=lambda item: -item.value)


# ============================================================================
# New deals in window
# ============================================================================

def partition_statuses(deals: Sequence[Deal]) -> StatusPartition:
    """Lost, then Settled, then in a conversion stage, else No Status.

    Every deal lands in exactly one bucket.
    """
    part = {"conversion": 0, "settled": 0, "lost": 0, "no_status": 0}
    for deal in deals:
        if is_lost(deal):
            part["lost"] += 1
        elif is_settled(deal):
            part["settled"] += 1
        elif in_conversion(deal):
            part["conversion"] += 1
        else:
            part["no_status"] += 1
    return StatusPartition(**part)


def _partition_items(part: StatusPartition, include_no_status: bool) -> List[DistributionItem]:
    items = [
        DistributionItem(label=CONVERSION_LABEL, value=part.conversion),
        DistributionItem(label=SETTLED_LABEL, value=part.settled),
        DistributionItem(label=LOST_LABEL, value=part.lost),
    ]
    if include_no_status:
        items.append(DistributionItem(label=NO_STATUS_LABEL, value=part.no_status))
    return [item for item in items if item.value > 0]


class NewDealsAnalyzer:
    """Deals created inside the window and their status / broker / source mix."""

    def select(
        self,
        deals: Sequence[Deal],
        window: DateWindow,
        sort_keys: Optional[Sequence[SortKey]] = None,
    ) -> List[Deal]:
        selected = filter_by_window(deals, window)
        if sort_keys is None:
            sort_keys = [SortKey(**k) for k in DEFAULT_CONFIG["new_deals_sort"]]
        return sort_deals(selected, sort_keys)

    def analyze(self, new_deals: Sequence[Deal]) -> NewDealsReport:
        if not new_deals:
            return NewDealsReport()

        with_value = [d for d in new_deals if d.value > 0]
        partition = partition_statuses(new_deals)
        value_partition = partition_statuses(with_value)

        broker_counts = Counter(d.broker_name for d in new_deals)
        # Stable on first-seen order for equal counts.
        broker_order = [b for b, _ in sorted(broker_counts.items(), key=lambda kv: -kv[1])]
        rank = {broker: i for i, broker in enumerate(broker_order)}

        source_by_broker: Dict[str, Counter] = defaultdict(Counter)
        broker_by_source: Dict[str, Counter] = defaultdict(Counter)
        for deal in new_deals:
            source = lead_source(deal)
            source_by_broker[deal.broker_name][source] += 1
            broker_by_source[source][deal.broker_name] += 1

        source_counts = Counter(lead_source(d) for d in new_deals)

        return NewDealsReport(
            summary=NewDealsSummary(
                total_new_deals=len(new_deals),
                total_new_value=sum(d.value for d in new_deals),
                non_zero_deals_count=len(with_value),
            ),
            partition=partition,
            conversion=_partition_items(partition, include_no_status=False),
            value_partition=value_partition,
            value_status=_partition_items(value_partition, include_no_status=True),
            broker_distribution=[
                DistributionItem(label=b, value=broker_counts[b]) for b in broker_order
            ],
            source_distribution=[
                DistributionItem(label=s, value=source_counts[s])
                for s in LEAD_SOURCES if source_counts.get(s)
            ],
            source_by_broker={
                broker: [
                    DistributionItem(label=s, value=counts[s])
                    for s in LEAD_SOURCES if counts.get(s)
                ]
                for broker, counts in source_by_broker.items()
            },
            broker_by_source={
                source: [
                    DistributionItem(label=b, value=counts[b])
                    for b in sorted(counts, key=lambda b: rank.get(b, len(rank)))
                ]
                for source, counts in sorted(
                    broker_by_source.items(), key=lambda kv: LEAD_SOURCES.index(kv[0])
                )
            },
            status_distribution=status_distribution_by_count(new_deals),
        )


# ============================================================================
# Orchestrator
# ============================================================================

def analyze_deals(
    deals: Sequence[Deal],
    filters: Optional[DealFilters] = None,
    sort_keys: Optional[Sequence[SortKey]] = None,
    year: Optional[int] = None,
    zoom_path: Sequence[str] = (),
    config: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Every dashboard view for one parameter set, as plain data."""
    config = {**DEFAULT_CONFIG, **(config or {})}
    filters = filters or DealFilters()
    sort_keys = DEFAULT_SORT if sort_keys is None else list(sort_keys)

    kpi_deals = filter_deals(deals, filters, apply_source=False)
    filtered = filter_deals(deals, filters)
    logger.info("Filtered %d of %d deals (%d for KPI cards)", len(filtered), len(deals), len(kpi_deals))

    logger.info("Running KPIAnalyzer...")
    kpi = KPIAnalyzer().analyze(kpi_deals)

    logger.info("Running BrokerAnalyzer...")
    brokers = BrokerAnalyzer().analyze(filtered)
    ring = broker_double_ring(brokers, broker_weekly_average(deals), config["top_brokers"])

    logger.info("Running LeadSourceAnalyzer...")
    lead_sources = LeadSourceAnalyzer().analyze(filtered)

    logger.info("Running NewDealsAnalyzer...")
    new_deals_analyzer = NewDealsAnalyzer()
    new_deals = new_deals_analyzer.select(deals, filters.window)
    new_deals_report = new_deals_analyzer.analyze(new_deals)

    logger.info("Building pipeline flow...")
    flow = build_flow(filtered, filters.window)
    positions = layout_flow(flow)

    logger.info("Computing weekly stats...")
    weekly = weekly_stats(filtered)
    average = weekly_average(deals, year)

    root = build_hierarchy(filtered, group_by_broker=config["group_treemap_by_broker"])
    treemap = current_view(root, zoom_path, config["treemap_width"], config["treemap_height"])

    return {
        "kpi": kpi.model_dump(),
        "deals": [d.model_dump(by_alias=True) for d in sort_deals(filtered, sort_keys)],
        "brokers": [b.model_dump() for b in brokers],
        "broker_ring": ring.model_dump(),
        "lead_sources": [s.model_dump() for s in lead_sources],
        "status_distribution": [s.model_dump() for s in status_distribution(filtered)],
        "new_deals": {
            "deals": [d.model_dump(by_alias=True) for d in new_deals],
            **new_deals_report.model_dump(),
        },
        "pipeline_flow": {
            **flow.model_dump(),
            "positions": {k: v.model_dump() for k, v in positions.items()},
            "edges_by_source": {
                source: [e.model_dump() for e in edges]
                for source, edges in edges_by_source(flow, positions).items()
            },
            "lost_reasons": [r.model_dump() for r in lost_reason_distribution(flow)],
            "lost_deals": [
                d.model_dump(by_alias=True) for d in lost_deals_in_window(filtered, filters.window)
            ],
        },
        "weekly": {
            "weeks": [w.model_dump() for w in weekly],
            "average": average.model_dump() if average else None,
            "years": available_years(deals),
        },
        "treemap": treemap.model_dump() if treemap else None,
    }


def run_deals_analysis(
    path: str | Path,
    filters: Optional[DealFilters] = None,
    sort_keys: Optional[Sequence[SortKey]] = None,
    year: Optional[int] = None,
    zoom_path: Sequence[str] = (),
    config: Optional[Dict[str, Any]] = None,
    output_path: Optional[Path] = None,
) -> Dict[str, Any]:
    """Load a deals file, compute every view and save the output.

    Returns the full metrics dictionary.

    Raises:
        HubError: the file could not be loaded or normalized.
    """
    from scripts.lib.deal_loader import load_deals

    config = {**DEFAULT_CONFIG, **(config or {})}
    logger.info("=== Deals analysis: %s ===", path)

    deals = load_deals(path)
    views = analyze_deals(deals, filters, sort_keys, year, zoom_path, config)

    output = json_safe({
        "generated_at": _now_utc().isoformat(),
        "source_file": str(path),
        "record_count": len(deals),
        "filters": (filters or DealFilters()).model_dump(),
        "zoom_path": list(zoom_path),
        **views,
        "config_used": config,
    })

    output_path = Path(output_path) if output_path else PROCESSED_DIR / "deals_metrics.json"
    if atomic_write_json(output, output_path):
        logger.info("Analysis complete. Output saved to %s", output_path)
    else:
        logger.error("Analysis complete but output could not be saved to %s", output_path)
    return output


# ============================================================================
# Standalone entry point
# ============================================================================

def build_arg_parser(parser: Optional[argparse.ArgumentParser] = None) -> argparse.ArgumentParser:
    parser = parser or argparse.ArgumentParser(description="Deals pipeline analytics.")
    parser.add_argument("path", help="Deals file (.json / .xlsx / .xls / .csv)")
    parser.add_argument("--search", default="", help="Substring of deal or broker name")
    parser.add_argument("--status", default="all")
    parser.add_argument("--broker", default="all")
    parser.add_argument("--source", default="all", choices=["all", "rednote", "lifex", "referral"])
    parser.add_argument("--start", default=None, help="Window start, YYYY-MM-DD")
    parser.add_argument("--end", default=None, help="Window end, YYYY-MM-DD")
    parser.add_argument(
        "--last-week", action="store_true",
        help="Use last Monday..Sunday as the window (overrides --start / --end)",
    )
    parser.add_argument("--year", type=int, default=None, help="Year for the weekly average baseline")
    parser.add_argument(
        "--sort", action="append", type=sort_key_arg, default=None, metavar="FIELD[:asc|desc]",
        help="Sort key, repeatable; first is primary",
    )
    parser.add_argument(
        "--zoom", action="append", default=[], metavar="NODE_ID",
        help="Treemap zoom path from the root, repeatable",
    )
    parser.add_argument("--flat-treemap", action="store_true", help="Do not group the treemap by broker")
    parser.add_argument("--output", default=None, help="Output JSON path")
    return parser


def filters_from_args(args: argparse.Namespace) -> DealFilters:
    start, end = args.start, args.end
    if args.last_week:
        start, end = previous_week_range()
    return DealFilters(
        search=args.search,
        status=args.status,
        broker=args.broker,
        source=args.source,
        window=DateWindow(start=start, end=end),
    )


def main(argv: Optional[List[str]] = None) -> int:
    from scripts.lib.errors import HubError

    args = build_arg_parser().parse_args(argv)
    try:
        results = run_deals_analysis(
            args.path,
            filters=filters_from_args(args),
            sort_keys=args.sort,
            year=args.year,
            zoom_path=args.zoom,
            config={"group_treemap_by_broker": not args.flat_treemap},
            output_path=Path(args.output) if args.output else None,
        )
    except HubError as e:
        logger.error("Analysis failed: %s", e.message)
        return 1

    print(f"\nAnalysis complete. {results['record_count']} deals processed.")
    print(f"Output: {args.output or PROCESSED_DIR / 'deals_metrics.json'}")
    return 0


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    sys.exit(main())
