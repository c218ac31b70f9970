"""
Weekly Performance Analyzer
=============================
Buckets deals into Monday-aligned weeks by their reference date and reports
per-week totals, settled value, settled rate and conversion rate, each with a
change against the previous week.

    - counts and values: percentage change, +inf when the previous week was 0
      and this week is not, -100 when this week dropped to 0
    - rates: point change (current - previous), never a percentage of a
      percentage

The all-time average is a separate baseline over every week in the full
record set (not the filtered one), optionally limited to one calendar year.

Usage:
    python scripts/weekly_analyzer.py exports/deals.xlsx
    python scripts/weekly_analyzer.py exports/deals.xlsx --year 2025
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections import defaultdict
from datetime import date, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup
# ---------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

load_dotenv(BASE_DIR / ".env")

from models.deal_models import Deal, WeeklyAverage, WeeklyStat  # noqa: E402
from scripts.lib.deal_query import reference_date  # noqa: E402
from scripts.lib.stages import is_converted, is_settled  # noqa: E402
from scripts.lib.utils import json_safe, local_day, rate_pct, week_start  # noqa: E402

logger = logging.getLogger(__name__)

INF = float("inf")


# ---------------------------------------------------------------------------
# Deltas
# ---------------------------------------------------------------------------

def percent_change(current: float, previous: float) -> float:
    """Week-over-week change in percent."""
    if previous == 0:
        return INF if current > 0 else 0.0
    if current == 0 and previous > 0:
        return -100.0
    return (current - previous) / previous * 100


def point_change(current: float, previous: float) -> float:
    return current - previous


# ---------------------------------------------------------------------------
# Buckets
# ---------------------------------------------------------------------------

def group_by_week(deals: Sequence[Deal]) -> Dict[str, List[Deal]]:
    """Monday (YYYY-MM-DD) -> deals whose reference date falls in that week."""
    groups: Dict[str, List[Deal]] = defaultdict(list)
    skipped = 0
    for deal in deals:
        week = week_start(reference_date(deal))
        if week is None:
            skipped += 1
            continue
        groups[week].append(deal)
    if skipped:
        logger.debug("Skipped %d deals without a usable reference date", skipped)
    return groups


def _week_stat(week: str, deals: Sequence[Deal]) -> WeeklyStat:
    total = len(deals)
    settled = [d for d in deals if is_settled(d)]
    converted = sum(1 for d in deals if is_converted(d))
    return WeeklyStat(
        week=week,
        total_deals=total,
        settled_value=sum(d.value for d in settled),
        settled_rate=rate_pct(len(settled), total),
        conversion_rate=rate_pct(converted, total),
    )


def _bucket_stats(deals: Sequence[Deal]) -> List[WeeklyStat]:
    """Per-week stats without deltas, oldest week first."""
    groups = group_by_week(deals)
    return [_week_stat(week, groups[week]) for week in sorted(groups)]


def weekly_stats(deals: Sequence[Deal], newest_first: bool = True) -> List[WeeklyStat]:
    """Weekly stats with changes against the previous (chronologically) week.

    The oldest week has no changes. Weeks with no deals are not emitted, so
    "previous" means the previous week that had deals.
    """
    stats = _bucket_stats(deals)
    with_changes: List[WeeklyStat] = []
    for index, stat in enumerate(stats):
        if index == 0:
            with_changes.append(stat)
            continue
        prev = stats[index - 1]
        with_changes.append(stat.model_copy(update={
            "total_deals_change": percent_change(stat.total_deals, prev.total_deals),
            "settled_value_change": percent_change(stat.settled_value, prev.settled_value),
            "settled_rate_change": point_change(stat.settled_rate, prev.settled_rate),
            "conversion_rate_change": point_change(stat.conversion_rate, prev.conversion_rate),
        }))
    if newest_first:
        with_changes.reverse()
    return with_changes


def reference_year(deal: Deal) -> Optional[int]:
    day = local_day(reference_date(deal))
    return int(day[:4]) if day else None


def available_years(deals: Sequence[Deal]) -> List[int]:
    """Distinct reference years, newest first, for the year selector."""
    years = {reference_year(d) for d in deals}
    return sorted((y for y in years if y is not None), reverse=True)


def weekly_average(deals: Sequence[Deal], year: Optional[int] = None) -> Optional[WeeklyAverage]:
    """Mean of each weekly metric over every week; None when there are no weeks.

    Rates are averaged per week, not pooled, so a quiet week weighs as much
    as a busy one.
    """
    if year is not None:
        deals = [d for d in deals if reference_year(d) == year]
    stats = _bucket_stats(deals)
    if not stats:
        return None
    weeks = len(stats)
    return WeeklyAverage(
        weeks=weeks,
        total_deals=sum(s.total_deals for s in stats) / weeks,
        settled_value=sum(s.settled_value for s in stats) / weeks,
        settled_rate=sum(s.settled_rate for s in stats) / weeks,
        conversion_rate=sum(s.conversion_rate for s in stats) / weeks,
    )


# ---------------------------------------------------------------------------
# Week navigation
# ---------------------------------------------------------------------------

def week_range(day: date) -> Tuple[str, str]:
    """(Monday, Sunday) of the week containing ``day``."""
    monday = day - timedelta(days=day.weekday())
    return monday.isoformat(), (monday + timedelta(days=6)).isoformat()


def shift_week(
    start: Optional[str],
    end: Optional[str],
    direction: str,
    today: Optional[date] = None,
) -> Tuple[str, str]:
    """Move a window one week back ("prev") or forward ("next").

    With no current window, snap to the week containing ``today``. The new
    window is always seven days starting from the shifted start.
    """
    if not start or not end:
        return week_range(today or date.today())
    offset = -7 if direction == "prev" else 7
    new_start = date.fromisoformat(start) + timedelta(days=offset)
    return new_start.isoformat(), (new_start + timedelta(days=6)).isoformat()


def previous_week_range(today: Optional[date] = None) -> Tuple[str, str]:
    """Last full Monday..Sunday before the current week."""
    today = today or date.today()
    return week_range(today - timedelta(days=7))


def today_range(today: Optional[date] = None) -> Tuple[str, str]:
    day = (today or date.today()).isoformat()
    return day, day


# ============================================================================
# Standalone entry point
# ============================================================================

def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Weekly performance for a deals export.")
    parser.add_argument("path", help="Deals file (.json / .xlsx / .xls / .csv)")
    parser.add_argument("--year", type=int, default=None, help="Limit the all-time average to one year")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    from scripts.lib.deal_loader import load_deals
    from scripts.lib.errors import HubError

    args = _parse_args(argv)
    try:
        deals = load_deals(args.path)
    except HubError as e:
        logger.error("Could not load %s: %s", args.path, e.message)
        return 1

    average = weekly_average(deals, args.year)
    output = {
        "weeks": [s.model_dump() for s in weekly_stats(deals)],
        "average": average.model_dump() if average else None,
        "years": available_years(deals),
    }
    print(json.dumps(json_safe(output), indent=2))
    return 0


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    sys.exit(main())
